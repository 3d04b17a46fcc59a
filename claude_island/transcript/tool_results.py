"""Structured views of the ``toolUseResult`` payloads Claude Code records."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional


@dataclass
class ToolResultData:
    """Base structured result; subclasses add tool-specific fields."""

    tool_name: str
    is_error: bool = False


@dataclass
class BashResult(ToolResultData):
    stdout: str = ""
    stderr: str = ""
    interrupted: bool = False
    background_task_id: Optional[str] = None


@dataclass
class ReadResult(ToolResultData):
    file_path: str = ""
    num_lines: int = 0
    start_line: int = 1
    total_lines: int = 0


@dataclass
class EditResult(ToolResultData):
    file_path: str = ""
    replace_all: bool = False
    user_modified: bool = False


@dataclass
class WriteResult(ToolResultData):
    file_path: str = ""
    write_type: str = "create"  # 'create' or 'update'


@dataclass
class SearchResult(ToolResultData):
    """Grep and Glob results."""

    mode: Optional[str] = None
    filenames: List[str] = field(default_factory=list)
    num_files: int = 0
    num_lines: int = 0
    truncated: bool = False


@dataclass
class TaskResult(ToolResultData):
    agent_id: Optional[str] = None
    status: Optional[str] = None
    total_tool_use_count: int = 0
    total_duration_ms: int = 0
    text: str = ""


@dataclass
class GenericResult(ToolResultData):
    raw: Dict[str, Any] = field(default_factory=dict)


def _str(data: Dict[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    return value if isinstance(value, str) else default


def _int(data: Dict[str, Any], key: str, default: int = 0) -> int:
    value = data.get(key)
    if isinstance(value, bool):
        return default
    return value if isinstance(value, int) else default


def _bool(data: Dict[str, Any], key: str) -> bool:
    return data.get(key) is True


def _parse_bash(name: str, data: Dict[str, Any], is_error: bool) -> ToolResultData:
    return BashResult(
        tool_name=name,
        is_error=is_error,
        stdout=_str(data, "stdout"),
        stderr=_str(data, "stderr"),
        interrupted=_bool(data, "interrupted"),
        background_task_id=data.get("backgroundTaskId"),
    )


def _parse_read(name: str, data: Dict[str, Any], is_error: bool) -> ToolResultData:
    file_info = data.get("file")
    if not isinstance(file_info, dict):
        file_info = data
    return ReadResult(
        tool_name=name,
        is_error=is_error,
        file_path=_str(file_info, "filePath"),
        num_lines=_int(file_info, "numLines"),
        start_line=_int(file_info, "startLine", 1),
        total_lines=_int(file_info, "totalLines"),
    )


def _parse_edit(name: str, data: Dict[str, Any], is_error: bool) -> ToolResultData:
    return EditResult(
        tool_name=name,
        is_error=is_error,
        file_path=_str(data, "filePath"),
        replace_all=_bool(data, "replaceAll"),
        user_modified=_bool(data, "userModified"),
    )


def _parse_write(name: str, data: Dict[str, Any], is_error: bool) -> ToolResultData:
    return WriteResult(
        tool_name=name,
        is_error=is_error,
        file_path=_str(data, "filePath"),
        write_type=_str(data, "type", "create"),
    )


def _parse_search(name: str, data: Dict[str, Any], is_error: bool) -> ToolResultData:
    filenames = data.get("filenames")
    if not isinstance(filenames, list):
        filenames = []
    return SearchResult(
        tool_name=name,
        is_error=is_error,
        mode=data.get("mode"),
        filenames=[f for f in filenames if isinstance(f, str)],
        num_files=_int(data, "numFiles", len(filenames)),
        num_lines=_int(data, "numLines"),
        truncated=_bool(data, "truncated"),
    )


def _parse_task(name: str, data: Dict[str, Any], is_error: bool) -> ToolResultData:
    text_parts = []
    content = data.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                text_parts.append(_str(block, "text"))
    return TaskResult(
        tool_name=name,
        is_error=is_error,
        agent_id=data.get("agentId"),
        status=data.get("status"),
        total_tool_use_count=_int(data, "totalToolUseCount"),
        total_duration_ms=_int(data, "totalDurationMs"),
        text="\n".join(part for part in text_parts if part),
    )


_PARSERS: Dict[str, Callable[[str, Dict[str, Any], bool], ToolResultData]] = {
    "Bash": _parse_bash,
    "Read": _parse_read,
    "Edit": _parse_edit,
    "MultiEdit": _parse_edit,
    "Write": _parse_write,
    "Grep": _parse_search,
    "Glob": _parse_search,
    "Task": _parse_task,
}


def parse_structured_result(
    tool_name: str, tool_use_result: Dict[str, Any], is_error: bool = False
) -> ToolResultData:
    """Build the structured result for a tool; unknown tools keep the raw mapping."""
    parser = _PARSERS.get(tool_name)
    if parser is None:
        return GenericResult(tool_name=tool_name, is_error=is_error, raw=dict(tool_use_result))
    return parser(tool_name, tool_use_result, is_error)
