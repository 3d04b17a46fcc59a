"""Parse Claude Code JSONL transcripts.

``parse`` summarizes a whole transcript for session lists and is cached by
modification time. ``parse_incremental`` is the hot path used while a
session is active: it only reads bytes appended since the previous call and
keeps per-session accumulators between calls.
"""

import json
import os
import threading

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple, Union

import structlog

from ..exceptions import TranscriptError
from ..utils.constants import (
    CLEAR_COMMAND_MARKER,
    INTERRUPT_MARKER,
    LARGE_FILE_TAIL_BYTES,
    MAX_FULL_LOAD_FILE_SIZE,
)
from .models import (
    ChatMessage,
    ChatRole,
    ConversationInfo,
    IncrementalParseResult,
    IncrementalParseState,
    MessageBlock,
    SubagentToolInfo,
    ToolResult,
    ToolUseBlock,
    UsageInfo,
)
from .paths import agent_file_path, session_file_path
from .tool_results import ToolResultData, parse_structured_result


logger = structlog.get_logger()

# Input key shown for a tool in one-line summaries
TOOL_INPUT_KEYS = {
    "Read": "file_path",
    "Write": "file_path",
    "Edit": "file_path",
    "Bash": "command",
    "Grep": "pattern",
    "Glob": "pattern",
    "Task": "description",
    "WebFetch": "url",
    "WebSearch": "query",
}
_FILE_TOOLS = {"Read", "Write", "Edit"}

# User lines that wrap slash commands rather than real prompts
_WRAPPER_PREFIXES = ("<command-name>", "<local-command", "Caveat:")

_TOOL_RESULT_MARKER = '"tool_result"'
_MESSAGE_MARKERS = ('"type":"user"', '"type":"assistant"')


def truncate_message(message: Optional[str], max_length: int = 80) -> Optional[str]:
    """Single-line preview, ellipsized to ``max_length`` characters."""
    if message is None:
        return None
    cleaned = message.strip().replace("\n", " ")
    if len(cleaned) > max_length:
        return cleaned[: max_length - 3] + "..."
    return cleaned


def format_tool_input(tool_input: Optional[Dict[str, Any]], tool_name: str) -> str:
    """The most telling input value of a tool call."""
    if not tool_input:
        return ""

    key = TOOL_INPUT_KEYS.get(tool_name)
    if key:
        value = tool_input.get(key)
        if isinstance(value, str):
            return os.path.basename(value) if tool_name in _FILE_TOOLS else value

    for value in tool_input.values():
        if isinstance(value, str) and value:
            return value
    return ""


def stringify_input(tool_input: Any) -> Dict[str, str]:
    """Flatten tool input to strings, keeping only scalar values."""
    if not isinstance(tool_input, dict):
        return {}
    result = {}
    for key, value in tool_input.items():
        if isinstance(value, str):
            result[key] = value
        elif isinstance(value, bool):
            result[key] = "true" if value else "false"
        elif isinstance(value, int):
            result[key] = str(value)
    return result


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _is_wrapper(content: str) -> bool:
    return content.startswith(_WRAPPER_PREFIXES)


def _loads(line: Union[str, bytes]) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(line)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _result_content(block: Dict[str, Any]) -> Optional[str]:
    content = block.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [
            item.get("text")
            for item in content
            if isinstance(item, dict) and isinstance(item.get("text"), str)
        ]
        return "\n".join(texts) if texts else None
    return None


class ConversationParser:
    """Transcript parser with mtime cache and per-session incremental state.

    Incremental calls for the same session must not run concurrently; the
    internal lock only protects the bookkeeping dictionaries.
    """

    def __init__(
        self,
        projects_dir: Optional[Union[str, Path]] = None,
        max_full_load_size: int = MAX_FULL_LOAD_FILE_SIZE,
        tail_bytes: int = LARGE_FILE_TAIL_BYTES,
    ):
        self.projects_dir = Path(projects_dir).expanduser() if projects_dir else None
        self.max_full_load_size = max_full_load_size
        self.tail_bytes = tail_bytes
        self._lock = threading.Lock()
        self._cache: Dict[Path, Tuple[int, ConversationInfo]] = {}
        self._states: Dict[str, IncrementalParseState] = {}

    def session_file(self, session_id: str, cwd: str) -> Path:
        return session_file_path(session_id, cwd, self.projects_dir)

    # Summary

    def parse(self, session_id: str, cwd: str) -> ConversationInfo:
        """Summary of a session transcript; empty if the file is missing."""
        path = self.session_file(session_id, cwd)
        try:
            stat = path.stat()
        except OSError:
            return ConversationInfo()

        with self._lock:
            cached = self._cache.get(path)
        if cached is not None and cached[0] == stat.st_mtime_ns:
            return cached[1]

        try:
            if stat.st_size > self.max_full_load_size:
                logger.info(
                    "Transcript exceeds full load size, parsing tail",
                    session_id=session_id[:8],
                    size=stat.st_size,
                )
                content = self._read_tail(path)
            else:
                content = self._read_text(path)
        except TranscriptError as e:
            logger.warning("Could not read transcript", session_id=session_id[:8], error=str(e))
            return ConversationInfo()

        info = self.parse_content(content)
        with self._lock:
            self._cache[path] = (stat.st_mtime_ns, info)
        return info

    def parse_content(self, content: str) -> ConversationInfo:
        """Summarize JSONL text."""
        entries = [entry for entry in map(_loads, content.splitlines()) if entry]

        usage = self._aggregate_usage(entries)
        first_user_message = None
        for entry in entries:
            text = self._user_prompt_text(entry)
            if text is not None:
                first_user_message = truncate_message(text, 50)
                break

        summary: Optional[str] = None
        last_message: Optional[str] = None
        last_role: Optional[str] = None
        last_tool: Optional[str] = None
        last_user_date: Optional[datetime] = None
        found_last_user = False

        for entry in reversed(entries):
            entry_type = entry.get("type")

            if last_message is None and entry_type in ("user", "assistant"):
                last_message, last_role, last_tool = self._last_message_of(entry)

            if not found_last_user and self._user_prompt_text(entry) is not None:
                last_user_date = parse_timestamp(entry.get("timestamp"))
                found_last_user = True

            if summary is None and entry_type == "summary":
                value = entry.get("summary")
                if isinstance(value, str):
                    summary = value

            if summary is not None and last_message is not None and found_last_user:
                break

        return ConversationInfo(
            summary=summary,
            last_message=truncate_message(last_message, 80),
            last_message_role=last_role,
            last_tool_name=last_tool,
            first_user_message=first_user_message,
            last_user_message_date=last_user_date,
            usage=usage,
        )

    @staticmethod
    def _aggregate_usage(entries: List[Dict[str, Any]]) -> Optional[UsageInfo]:
        totals = [0, 0, 0, 0]
        keys = (
            "input_tokens",
            "output_tokens",
            "cache_read_input_tokens",
            "cache_creation_input_tokens",
        )
        for entry in entries:
            usage = entry.get("usage")
            if not isinstance(usage, dict):
                message = entry.get("message")
                usage = message.get("usage") if isinstance(message, dict) else None
            if not isinstance(usage, dict):
                continue
            for index, key in enumerate(keys):
                value = usage.get(key)
                if isinstance(value, int) and not isinstance(value, bool):
                    totals[index] += value

        if totals[0] + totals[1] <= 0:
            return None
        return UsageInfo(*totals)

    @staticmethod
    def _user_prompt_text(entry: Dict[str, Any]) -> Optional[str]:
        """Text of a real (non-meta, non-command) user prompt."""
        if entry.get("type") != "user" or entry.get("isMeta") is True:
            return None
        message = entry.get("message")
        if not isinstance(message, dict):
            return None
        content = message.get("content")
        if isinstance(content, str) and not _is_wrapper(content):
            return content
        return None

    @staticmethod
    def _last_message_of(
        entry: Dict[str, Any]
    ) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        entry_type = entry.get("type")
        message = entry.get("message")
        if entry.get("isMeta") is True or not isinstance(message, dict):
            return None, None, None

        content = message.get("content")
        if isinstance(content, str):
            if _is_wrapper(content):
                return None, None, None
            return content, entry_type, None

        if isinstance(content, list):
            for block in reversed(content):
                if not isinstance(block, dict):
                    continue
                if block.get("type") == "tool_use":
                    name = block.get("name") or "Tool"
                    return format_tool_input(block.get("input"), name), "tool", name
                text = block.get("text")
                if block.get("type") == "text" and isinstance(text, str):
                    if not text.startswith(INTERRUPT_MARKER):
                        return text, entry_type, None

        return None, None, None

    # Incremental

    def parse_incremental(self, session_id: str, cwd: str) -> IncrementalParseResult:
        """Messages appended since the previous call for this session."""
        path = self.session_file(session_id, cwd)
        if not path.exists():
            return IncrementalParseResult()

        state = self._state_for(session_id)
        new_messages = self._read_incremental(path, session_id, state)

        clear_detected = state.clear_pending
        state.clear_pending = False

        return IncrementalParseResult(
            new_messages=new_messages,
            all_messages=list(state.messages),
            completed_tool_ids=set(state.completed_tool_ids),
            tool_results=dict(state.tool_results),
            structured_results=dict(state.structured_results),
            clear_detected=clear_detected,
        )

    def parse_full_conversation(self, session_id: str, cwd: str) -> List[ChatMessage]:
        """All messages of a session, bringing the incremental state up to date."""
        path = self.session_file(session_id, cwd)
        if not path.exists():
            return []

        state = self._state_for(session_id)
        self._read_incremental(path, session_id, state)
        return list(state.messages)

    def completed_tool_ids(self, session_id: str) -> Set[str]:
        with self._lock:
            state = self._states.get(session_id)
        return set(state.completed_tool_ids) if state else set()

    def tool_results(self, session_id: str) -> Dict[str, ToolResult]:
        with self._lock:
            state = self._states.get(session_id)
        return dict(state.tool_results) if state else {}

    def structured_results(self, session_id: str) -> Dict[str, ToolResultData]:
        with self._lock:
            state = self._states.get(session_id)
        return dict(state.structured_results) if state else {}

    def reset_state(self, session_id: str) -> None:
        with self._lock:
            self._states.pop(session_id, None)

    def check_and_consume_clear_detected(self, session_id: str) -> bool:
        """True once after a /clear was seen; consumes the flag."""
        with self._lock:
            state = self._states.get(session_id)
            if state is None or not state.clear_pending:
                return False
            state.clear_pending = False
            return True

    def _state_for(self, session_id: str) -> IncrementalParseState:
        with self._lock:
            return self._states.setdefault(session_id, IncrementalParseState())

    def _read_incremental(
        self, path: Path, session_id: str, state: IncrementalParseState
    ) -> List[ChatMessage]:
        try:
            with path.open("rb") as handle:
                handle.seek(0, os.SEEK_END)
                size = handle.tell()

                if size < state.last_file_offset:
                    # Rewritten file: start over and read it from the beginning
                    logger.info(
                        "Transcript truncated, resetting parse state",
                        session_id=session_id[:8],
                        previous_offset=state.last_file_offset,
                        size=size,
                    )
                    state.reset()

                if size == state.last_file_offset:
                    return []

                handle.seek(state.last_file_offset)
                new_messages = self._process_lines(
                    self._iter_lines(handle, size - state.last_file_offset), state
                )
        except OSError as e:
            logger.warning(
                "Failed to read transcript", session_id=session_id[:8], error=str(e)
            )
            return []

        state.last_file_offset = size
        return new_messages

    @staticmethod
    def _iter_lines(handle, limit: int) -> Iterator[str]:
        """Decoded lines, reading at most ``limit`` bytes."""
        remaining = limit
        for raw in handle:
            if remaining <= 0:
                break
            raw = raw[:remaining]
            remaining -= len(raw)
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                yield line

    def _process_lines(
        self, lines: Iterator[str], state: IncrementalParseState
    ) -> List[ChatMessage]:
        state.clear_pending = False
        is_incremental_read = state.last_file_offset > 0
        new_messages: List[ChatMessage] = []

        for line in lines:
            if CLEAR_COMMAND_MARKER in line:
                state.clear_accumulators()
                new_messages = []
                if is_incremental_read:
                    state.clear_pending = True
                    state.last_clear_offset = state.last_file_offset
                    logger.debug("Detected /clear in transcript")
                continue

            if _TOOL_RESULT_MARKER in line:
                entry = _loads(line)
                if entry:
                    self._record_tool_results(entry, state)
            elif any(marker in line for marker in _MESSAGE_MARKERS):
                entry = _loads(line)
                message = self._parse_message(entry, state) if entry else None
                if message is not None:
                    new_messages.append(message)
                    state.messages.append(message)

        return new_messages

    @staticmethod
    def _record_tool_results(entry: Dict[str, Any], state: IncrementalParseState) -> None:
        message = entry.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            return

        tool_use_result = entry.get("toolUseResult")
        if not isinstance(tool_use_result, dict):
            tool_use_result = None
        top_level_name = entry.get("toolName")
        stdout = tool_use_result.get("stdout") if tool_use_result else None
        stderr = tool_use_result.get("stderr") if tool_use_result else None

        for block in content:
            if not isinstance(block, dict) or block.get("type") != "tool_result":
                continue
            tool_use_id = block.get("tool_use_id")
            if not isinstance(tool_use_id, str):
                continue

            is_error = block.get("is_error") is True
            state.completed_tool_ids.add(tool_use_id)
            state.tool_results[tool_use_id] = ToolResult(
                content=_result_content(block),
                stdout=stdout if isinstance(stdout, str) else None,
                stderr=stderr if isinstance(stderr, str) else None,
                is_error=is_error,
            )

            tool_name = top_level_name if isinstance(top_level_name, str) else None
            tool_name = tool_name or state.tool_id_to_name.get(tool_use_id)
            if tool_use_result is not None and tool_name:
                state.structured_results[tool_use_id] = parse_structured_result(
                    tool_name, tool_use_result, is_error
                )

    @staticmethod
    def _parse_message(
        entry: Dict[str, Any], state: IncrementalParseState
    ) -> Optional[ChatMessage]:
        entry_type = entry.get("type")
        uuid = entry.get("uuid")
        if entry_type not in ("user", "assistant") or not isinstance(uuid, str):
            return None
        if entry.get("isMeta") is True:
            return None
        message = entry.get("message")
        if not isinstance(message, dict):
            return None

        timestamp = parse_timestamp(entry.get("timestamp")) or datetime.now(timezone.utc)
        blocks: List[MessageBlock] = []
        content = message.get("content")

        if isinstance(content, str):
            if _is_wrapper(content):
                return None
            if content.startswith(INTERRUPT_MARKER):
                blocks.append(MessageBlock.interrupted_block())
            else:
                blocks.append(MessageBlock.text_block(content))
        elif isinstance(content, list):
            for block in content:
                if not isinstance(block, dict):
                    continue
                block_type = block.get("type")

                if block_type == "text" and isinstance(block.get("text"), str):
                    text = block["text"]
                    if text.startswith(INTERRUPT_MARKER):
                        blocks.append(MessageBlock.interrupted_block())
                    else:
                        blocks.append(MessageBlock.text_block(text))

                elif block_type == "tool_use":
                    tool_id = block.get("id")
                    name = block.get("name")
                    if isinstance(tool_id, str):
                        # Streaming writes repeat tool_use blocks
                        if tool_id in state.seen_tool_ids:
                            continue
                        state.seen_tool_ids.add(tool_id)
                        if isinstance(name, str):
                            state.tool_id_to_name[tool_id] = name
                    if isinstance(tool_id, str) and isinstance(name, str):
                        blocks.append(
                            MessageBlock.tool_use_block(
                                ToolUseBlock(
                                    id=tool_id,
                                    name=name,
                                    input=stringify_input(block.get("input")),
                                )
                            )
                        )

                elif block_type == "thinking" and isinstance(block.get("thinking"), str):
                    blocks.append(MessageBlock.thinking_block(block["thinking"]))

        if not blocks:
            return None

        role = ChatRole.USER if entry_type == "user" else ChatRole.ASSISTANT
        return ChatMessage(id=uuid, role=role, timestamp=timestamp, content=blocks)

    # Sub-agents

    def parse_subagent_tools(self, agent_id: str, cwd: str) -> List[SubagentToolInfo]:
        """Tool calls recorded in a sub-agent transcript, in call order."""
        path = agent_file_path(agent_id, cwd, self.projects_dir)
        try:
            content = self._read_text(path)
        except TranscriptError:
            return []

        tools: Dict[str, SubagentToolInfo] = {}
        completed: Set[str] = set()

        for line in content.splitlines():
            if _TOOL_RESULT_MARKER in line:
                entry = _loads(line)
                message = entry.get("message") if entry else None
                blocks = message.get("content") if isinstance(message, dict) else None
                for block in blocks if isinstance(blocks, list) else []:
                    if isinstance(block, dict) and block.get("type") == "tool_result":
                        tool_use_id = block.get("tool_use_id")
                        if isinstance(tool_use_id, str):
                            completed.add(tool_use_id)
            elif '"type":"assistant"' in line:
                entry = _loads(line)
                message = entry.get("message") if entry else None
                blocks = message.get("content") if isinstance(message, dict) else None
                timestamp = parse_timestamp(entry.get("timestamp")) if entry else None
                for block in blocks if isinstance(blocks, list) else []:
                    if not isinstance(block, dict) or block.get("type") != "tool_use":
                        continue
                    tool_id = block.get("id")
                    name = block.get("name")
                    if isinstance(tool_id, str) and isinstance(name, str):
                        tools.setdefault(
                            tool_id,
                            SubagentToolInfo(
                                id=tool_id,
                                name=name,
                                input=stringify_input(block.get("input")),
                                timestamp=timestamp,
                            ),
                        )

        for tool in tools.values():
            tool.is_completed = tool.id in completed
        return list(tools.values())

    # File helpers

    @staticmethod
    def _read_text(path: Path) -> str:
        try:
            return path.read_bytes().decode("utf-8", errors="replace")
        except OSError as e:
            raise TranscriptError(f"Cannot read {path}: {e}") from e

    def _read_tail(self, path: Path) -> str:
        """Last ``tail_bytes`` of a file without its partial first line."""
        try:
            with path.open("rb") as handle:
                handle.seek(0, os.SEEK_END)
                size = handle.tell()
                start = max(0, size - self.tail_bytes)
                handle.seek(start)
                data = handle.read()
        except OSError as e:
            raise TranscriptError(f"Cannot read {path}: {e}") from e

        content = data.decode("utf-8", errors="replace")
        if start > 0:
            newline = content.find("\n")
            content = content[newline + 1 :] if newline >= 0 else ""
        return content
