"""Session monitor: applies hook events, decisions and transcript activity
to per-session state.

The monitor is the single consumer of the hook socket server. Everything it
mutates is owned by the event loop; watcher callbacks arriving on observer
threads are handed over with ``call_soon_threadsafe``.
"""

import asyncio

from typing import Dict, List, Optional

import structlog

from ..config.settings import Settings
from ..exceptions import TmuxError
from ..hooks.events import HookEvent
from ..hooks.socket_server import UnixSocketServer
from ..process.tree import ProcessTreeBuilder, is_in_tmux
from ..tmux.client import TmuxClient, find_tmux_target
from ..transcript.models import IncrementalParseResult, SubagentToolInfo
from ..transcript.parser import ConversationParser
from ..transcript.tool_results import TaskResult
from ..transcript.watchers import AgentFileWatcherManager, InterruptWatcherManager
from .phase import IDLE, PROCESSING, PhaseKind
from .state import SessionState


logger = structlog.get_logger()

# Hook events after which the transcript has new content worth reading
TRANSCRIPT_SYNC_EVENTS = {
    "UserPromptSubmit",
    "PostToolUse",
    "Stop",
    "SubagentStop",
    "PreCompact",
    "SessionStart",
}


class SessionMonitor:
    """Track Claude sessions and broker their permission requests."""

    def __init__(
        self,
        settings: Settings,
        server: Optional[UnixSocketServer] = None,
        parser: Optional[ConversationParser] = None,
        tree_builder: Optional[ProcessTreeBuilder] = None,
    ):
        self.settings = settings
        self.server = server or UnixSocketServer(settings)
        self.parser = parser or ConversationParser(
            settings.claude_projects_dir,
            max_full_load_size=settings.max_full_load_file_size,
            tail_bytes=settings.large_file_tail_bytes,
        )
        self.tree_builder = tree_builder or ProcessTreeBuilder()
        self.interrupt_watchers = InterruptWatcherManager(
            self._interrupt_from_watcher, self.parser.projects_dir
        )
        self.agent_watchers = AgentFileWatcherManager(
            self._tools_from_watcher, self.parser
        )

        self._sessions: Dict[str, SessionState] = {}
        self._sync_locks: Dict[str, asyncio.Lock] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        # Track background tasks for proper cleanup
        self.background_tasks: List[asyncio.Task] = []

    @property
    def sessions(self) -> List[SessionState]:
        """Sessions, most recently active first."""
        return sorted(self._sessions.values(), key=lambda s: s.last_activity, reverse=True)

    @property
    def pending_sessions(self) -> List[SessionState]:
        """Sessions waiting on the user."""
        return [s for s in self.sessions if s.needs_attention]

    def session(self, session_id: str) -> Optional[SessionState]:
        return self._sessions.get(session_id)

    def _create_background_task(self, coro):
        """Create a background task and track it for cleanup."""
        task = asyncio.ensure_future(coro)
        self.background_tasks.append(task)

        # Clean up completed tasks
        self.background_tasks = [t for t in self.background_tasks if not t.done()]

        return task

    async def start(self) -> bool:
        self._loop = asyncio.get_running_loop()
        started = await self.server.start(
            self.handle_hook_event, self.handle_permission_failure
        )
        logger.info("Session monitor started", listening=started)
        return started

    async def stop(self) -> None:
        self.interrupt_watchers.stop_all()
        self.agent_watchers.stop_all()
        await self.server.stop()

        for task in self.background_tasks:
            if not task.done():
                task.cancel()
        if self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)
        self.background_tasks.clear()

        logger.info("Session monitor stopped", sessions=len(self._sessions))

    # Hook events

    def handle_hook_event(self, event: HookEvent) -> None:
        """Apply one hook event to its session."""
        state = self._sessions.get(event.session_id)
        if state is None:
            state = SessionState(session_id=event.session_id, cwd=event.cwd)
            self._sessions[event.session_id] = state
            logger.info("Tracking new session", session_id=event.session_id[:8], cwd=event.cwd)

        if event.pid is not None:
            state.pid = event.pid
        if event.tty:
            state.tty = event.tty
        state.last_event = event.event
        state.touch()

        target = event.session_phase
        previous = state.phase
        if state.apply_phase(target):
            if previous != state.phase:
                logger.debug(
                    "Session phase changed",
                    session_id=event.session_id[:8],
                    from_phase=str(previous),
                    to_phase=str(state.phase),
                    hook_event=event.event,
                )
        else:
            logger.warning(
                "Rejected session phase transition",
                session_id=event.session_id[:8],
                from_phase=str(previous),
                to_phase=str(target),
                hook_event=event.event,
            )

        if state.phase.kind is PhaseKind.PROCESSING:
            self.interrupt_watchers.start_watching(event.session_id, event.cwd)

        if event.status == "ended":
            self.interrupt_watchers.stop_watching(event.session_id)
            self.agent_watchers.stop_watching_session(event.session_id)

        if event.event == "Stop":
            self.server.cancel_pending_permissions(event.session_id)

        if event.event == "PostToolUse" and event.tool_use_id:
            self.server.cancel_pending_permission(event.tool_use_id)

        if event.event in TRANSCRIPT_SYNC_EVENTS and not state.is_ended:
            self._create_background_task(self.sync_transcript(event.session_id))

    def handle_permission_failure(self, session_id: str, tool_use_id: str) -> None:
        """The hook connection for a permission request timed out or vanished."""
        state = self._sessions.get(session_id)
        if state is None:
            return

        permission = state.active_permission
        if permission is None:
            return
        if permission.tool_use_id and permission.tool_use_id != tool_use_id:
            return

        state.apply_phase(IDLE)
        logger.warning(
            "Permission request failed",
            session_id=session_id[:8],
            tool_use_id=tool_use_id[:12],
        )

    def handle_interrupt(self, session_id: str) -> None:
        state = self._sessions.get(session_id)
        if state is not None and state.apply_phase(IDLE):
            logger.info("Session interrupted", session_id=session_id[:8])
        self.interrupt_watchers.stop_watching(session_id)

    def handle_subagent_tools(
        self, session_id: str, task_tool_id: str, tools: List[SubagentToolInfo]
    ) -> None:
        state = self._sessions.get(session_id)
        if state is not None:
            state.subagent_tools[task_tool_id] = tools

    # Decisions

    def approve_permission(self, session_id: str) -> bool:
        """Allow the session's pending tool."""
        return self._decide(session_id, "allow")

    def deny_permission(self, session_id: str, reason: Optional[str] = None) -> bool:
        """Deny the session's pending tool."""
        return self._decide(session_id, "deny", reason)

    def _decide(self, session_id: str, decision: str, reason: Optional[str] = None) -> bool:
        state = self._sessions.get(session_id)
        permission = state.active_permission if state else None
        if state is None or permission is None:
            logger.info("No permission to answer", session_id=session_id[:8])
            return False

        if permission.tool_use_id:
            self.server.respond_to_permission(permission.tool_use_id, decision, reason)
        else:
            self.server.respond_to_permission_by_session(session_id, decision, reason)

        state.apply_phase(PROCESSING)
        logger.info(
            "Permission answered",
            session_id=session_id[:8],
            tool=permission.tool_name,
            decision=decision,
        )
        return True

    def archive_session(self, session_id: str) -> None:
        """Forget a session and release everything held for it."""
        self.server.cancel_pending_permissions(session_id)
        self.interrupt_watchers.stop_watching(session_id)
        self.agent_watchers.stop_watching_session(session_id)
        self.parser.reset_state(session_id)
        self._sessions.pop(session_id, None)
        self._sync_locks.pop(session_id, None)

    # Transcript

    async def sync_transcript(self, session_id: str) -> Optional[IncrementalParseResult]:
        """Read new transcript content into the session state."""
        state = self._sessions.get(session_id)
        if state is None:
            return None

        lock = self._sync_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            result = await asyncio.to_thread(
                self.parser.parse_incremental, session_id, state.cwd
            )
            state.conversation_info = await asyncio.to_thread(
                self.parser.parse, session_id, state.cwd
            )

        if result.clear_detected:
            logger.info("Conversation cleared", session_id=session_id[:8])
            state.subagent_tools.clear()
            self.agent_watchers.stop_watching_session(session_id)
        state.messages = result.all_messages

        for tool_use_id, structured in result.structured_results.items():
            if isinstance(structured, TaskResult) and structured.agent_id:
                self.agent_watchers.start_watching(
                    session_id, tool_use_id, structured.agent_id, state.cwd
                )

        return result

    # Terminal

    async def send_message(self, session_id: str, message: str) -> bool:
        """Type a message into the session's tmux pane."""
        client = await self.tmux_client_for(session_id)
        if client is None:
            return False
        return await client.send_message(message)

    async def tmux_client_for(self, session_id: str) -> Optional[TmuxClient]:
        state = self._sessions.get(session_id)
        if state is None or state.pid is None:
            return None

        tree = await self.tree_builder.build_indexed_tree()
        if not is_in_tmux(state.pid, tree):
            return None

        try:
            target = await find_tmux_target(state.pid, tree)
        except TmuxError as e:
            logger.warning("Could not resolve tmux pane", session_id=session_id[:8], error=str(e))
            return None
        return TmuxClient(target) if target else None

    # Watcher callbacks (observer threads)

    def _interrupt_from_watcher(self, session_id: str) -> None:
        self._call_on_loop(self.handle_interrupt, session_id)

    def _tools_from_watcher(
        self, session_id: str, task_tool_id: str, tools: List[SubagentToolInfo]
    ) -> None:
        self._call_on_loop(self.handle_subagent_tools, session_id, task_tool_id, tools)

    def _call_on_loop(self, func, *args) -> None:
        if self._loop is None or self._loop.is_closed():
            func(*args)
            return
        self._loop.call_soon_threadsafe(func, *args)
