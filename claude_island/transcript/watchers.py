"""File watchers for live transcript activity.

``InterruptWatcher`` spots user interrupts in a session transcript faster
than the hooks report them. ``AgentFileWatcher`` follows a sub-agent
transcript and reports its tool calls as they happen.

Both watch the transcript's directory with a watchdog observer so a file
that does not exist yet is picked up when it is created. Callbacks run on
the observer thread.
"""

import os
import threading

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Optional, Set, Tuple, Union

import structlog

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .models import SubagentToolInfo
from .parser import ConversationParser
from .paths import agent_file_path, session_file_path


logger = structlog.get_logger()

INTERRUPT_CONTENT_PATTERNS = (
    "Interrupted by user",
    "interrupted by user",
    "user doesn't want to proceed",
    "[Request interrupted by user",
)

OBSERVER_JOIN_TIMEOUT = 1.0


def is_interrupt_line(line: str) -> bool:
    """Whether a raw JSONL line records a user interrupt."""
    if '"type":"user"' in line:
        if (
            "[Request interrupted by user]" in line
            or "[Request interrupted by user for tool use]" in line
        ):
            return True

    if '"tool_result"' in line and '"is_error":true' in line:
        if any(pattern in line for pattern in INTERRUPT_CONTENT_PATTERNS):
            return True

    return '"interrupted":true' in line


class _PathEventHandler(FileSystemEventHandler):
    """Forward events touching one file to a callback."""

    def __init__(self, path: Path, on_change: Callable[[], None]):
        super().__init__()
        self._path = os.path.abspath(path)
        self._on_change = on_change

    def _matches(self, raw_path: Union[str, bytes]) -> bool:
        return os.path.abspath(os.fsdecode(raw_path)) == self._path

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            self._on_change()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.src_path):
            self._on_change()

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory and self._matches(event.dest_path):
            self._on_change()


class _TranscriptFileWatcher(ABC):
    """Observer plus read handle for a single transcript file.

    ``stop`` stops and joins the observer before the handle is closed, and
    the handle is closed exactly once.
    """

    def __init__(self, path: Path, label: str):
        self.path = path
        self.label = label
        self._lock = threading.Lock()
        self._observer: Optional[Observer] = None
        self._handle: Optional[BinaryIO] = None
        self._offset = 0
        self._stopped = True

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> bool:
        self.stop()

        directory = self.path.parent
        if not directory.is_dir():
            logger.warning("Transcript directory does not exist", directory=str(directory))
            return False

        notify = False
        with self._lock:
            self._stopped = False
            if self.path.exists() and self._open():
                notify = self._on_opened()

        observer = Observer()
        observer.daemon = True
        observer.schedule(
            _PathEventHandler(self.path, self._on_fs_event), str(directory), recursive=False
        )
        observer.start()
        self._observer = observer

        logger.debug(
            "Started transcript watcher",
            watcher=self.label,
            file_present=self._handle is not None,
        )

        if notify:
            self._notify()
        return True

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        with self._lock:
            self._stopped = True

        if observer is not None:
            observer.stop()
            if observer is not threading.current_thread():
                observer.join(timeout=OBSERVER_JOIN_TIMEOUT)
            logger.debug("Stopped transcript watcher", watcher=self.label)

        self._close_handle()

    def _on_fs_event(self) -> None:
        with self._lock:
            if self._stopped:
                return
            if self._handle is None:
                if not self.path.exists() or not self._open():
                    return
                changed = self._on_opened()
            else:
                changed = self._read_changes()
        if changed:
            self._notify()

    def _open(self) -> bool:
        try:
            self._handle = self.path.open("rb")
        except OSError as e:
            logger.warning("Failed to open transcript", path=str(self.path), error=str(e))
            return False
        self._offset = 0
        return True

    def _close_handle(self) -> None:
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()

    def _file_size(self) -> Optional[int]:
        if self._handle is None:
            return None
        self._handle.seek(0, os.SEEK_END)
        return self._handle.tell()

    @abstractmethod
    def _on_opened(self) -> bool:
        """Called with the lock held right after the file is opened."""

    @abstractmethod
    def _read_changes(self) -> bool:
        """Called with the lock held on every change; True to notify."""

    @abstractmethod
    def _notify(self) -> None:
        """Report a change; called without the lock."""


class InterruptWatcher(_TranscriptFileWatcher):
    """Report interrupts appended to a session transcript."""

    def __init__(
        self,
        session_id: str,
        cwd: str,
        on_interrupt: Callable[[str], Any],
        projects_dir: Optional[Union[str, Path]] = None,
    ):
        super().__init__(
            session_file_path(session_id, cwd, projects_dir), f"interrupt:{session_id[:8]}"
        )
        self.session_id = session_id
        self.on_interrupt = on_interrupt

    def _on_opened(self) -> bool:
        # Only lines written after watching began count
        self._offset = self._file_size() or 0
        return False

    def _read_changes(self) -> bool:
        handle = self._handle
        if handle is None:
            return False
        try:
            size = handle.seek(0, os.SEEK_END)
            if size < self._offset:
                self._offset = size
                return False
            if size == self._offset:
                return False
            handle.seek(self._offset)
            data = handle.read(size - self._offset)
        except OSError as e:
            logger.warning("Failed to read transcript", watcher=self.label, error=str(e))
            return False

        # A trailing partial line is read again once its newline arrives
        end = data.rfind(b"\n")
        if end < 0:
            return False
        self._offset += end + 1
        text = data[: end + 1].decode("utf-8", errors="replace")
        return any(is_interrupt_line(line) for line in text.split("\n") if line)

    def _notify(self) -> None:
        logger.info("Detected interrupt", session_id=self.session_id[:8])
        self.on_interrupt(self.session_id)


ToolsUpdateCallback = Callable[[str, str, List[SubagentToolInfo]], Any]


class AgentFileWatcher(_TranscriptFileWatcher):
    """Report the tool list of a sub-agent whenever it changes."""

    def __init__(
        self,
        session_id: str,
        task_tool_id: str,
        agent_id: str,
        cwd: str,
        on_tools_update: ToolsUpdateCallback,
        parser: Optional[ConversationParser] = None,
    ):
        self.parser = parser or ConversationParser()
        super().__init__(
            agent_file_path(agent_id, cwd, self.parser.projects_dir),
            f"agent:{agent_id[:8]}",
        )
        self.session_id = session_id
        self.task_tool_id = task_tool_id
        self.agent_id = agent_id
        self.cwd = cwd
        self.on_tools_update = on_tools_update
        self._seen_tool_ids: Set[str] = set()

    def _on_opened(self) -> bool:
        self._offset = self._file_size() or 0
        return True

    def _read_changes(self) -> bool:
        try:
            size = self._file_size()
        except OSError:
            return False
        if size is None or size == self._offset:
            return False
        self._offset = size
        return True

    def _notify(self) -> None:
        tools = self.parser.parse_subagent_tools(self.agent_id, self.cwd)
        tool_ids = {tool.id for tool in tools}
        with self._lock:
            if tool_ids == self._seen_tool_ids:
                return
            self._seen_tool_ids = tool_ids

        logger.debug("Sub-agent tools updated", agent_id=self.agent_id[:8], tools=len(tools))
        self.on_tools_update(self.session_id, self.task_tool_id, tools)


class InterruptWatcherManager:
    """One interrupt watcher per session."""

    def __init__(
        self,
        on_interrupt: Callable[[str], Any],
        projects_dir: Optional[Union[str, Path]] = None,
    ):
        self.on_interrupt = on_interrupt
        self.projects_dir = projects_dir
        self._watchers: Dict[str, InterruptWatcher] = {}

    def start_watching(self, session_id: str, cwd: str) -> None:
        if session_id in self._watchers:
            return
        watcher = InterruptWatcher(session_id, cwd, self.on_interrupt, self.projects_dir)
        # Left untracked on failure; the next event retries
        if watcher.start():
            self._watchers[session_id] = watcher

    def stop_watching(self, session_id: str) -> None:
        watcher = self._watchers.pop(session_id, None)
        if watcher is not None:
            watcher.stop()

    def stop_all(self) -> None:
        for session_id in list(self._watchers):
            self.stop_watching(session_id)

    def is_watching(self, session_id: str) -> bool:
        return session_id in self._watchers


class AgentFileWatcherManager:
    """Agent file watchers keyed by session and Task tool id."""

    def __init__(
        self, on_tools_update: ToolsUpdateCallback, parser: Optional[ConversationParser] = None
    ):
        self.on_tools_update = on_tools_update
        self.parser = parser or ConversationParser()
        self._watchers: Dict[Tuple[str, str], AgentFileWatcher] = {}

    def start_watching(
        self, session_id: str, task_tool_id: str, agent_id: str, cwd: str
    ) -> None:
        key = (session_id, task_tool_id)
        if key in self._watchers:
            return
        watcher = AgentFileWatcher(
            session_id, task_tool_id, agent_id, cwd, self.on_tools_update, self.parser
        )
        if not watcher.start():
            return
        self._watchers[key] = watcher
        logger.info(
            "Started agent watcher",
            session_id=session_id[:8],
            task_tool_id=task_tool_id[:12],
        )

    def stop_watching(self, session_id: str, task_tool_id: str) -> None:
        watcher = self._watchers.pop((session_id, task_tool_id), None)
        if watcher is not None:
            watcher.stop()

    def stop_watching_session(self, session_id: str) -> None:
        for key in [key for key in self._watchers if key[0] == session_id]:
            self.stop_watching(*key)

    def stop_all(self) -> None:
        for key in list(self._watchers):
            self.stop_watching(*key)

    def is_watching(self, session_id: str, task_tool_id: str) -> bool:
        return (session_id, task_tool_id) in self._watchers
