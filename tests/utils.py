"""Shared test helpers for Claude Island tests."""

import asyncio
import json

from pathlib import Path
from typing import Any, Callable, Dict, List

from claude_island.transcript.paths import agent_file_path, session_file_path


def jsonl(entry: Dict[str, Any]) -> str:
    """Serialize like Claude Code does: compact, one entry per line."""
    return json.dumps(entry, separators=(",", ":")) + "\n"


def _write(path: Path, entries: List[Dict[str, Any]], mode: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open(mode, encoding="utf-8") as handle:
        for entry in entries:
            handle.write(jsonl(entry))
    return path


def write_transcript(
    projects_dir: Path,
    session_id: str,
    cwd: str,
    entries: List[Dict[str, Any]],
    mode: str = "w",
) -> Path:
    return _write(session_file_path(session_id, cwd, projects_dir), entries, mode)


def write_agent_transcript(
    projects_dir: Path,
    agent_id: str,
    cwd: str,
    entries: List[Dict[str, Any]],
    mode: str = "w",
) -> Path:
    return _write(agent_file_path(agent_id, cwd, projects_dir), entries, mode)


def user_entry(uuid: str, content: Any, **extra: Any) -> Dict[str, Any]:
    entry = {
        "type": "user",
        "uuid": uuid,
        "timestamp": "2025-01-01T10:00:00Z",
        "message": {"role": "user", "content": content},
    }
    entry.update(extra)
    return entry


def assistant_entry(uuid: str, blocks: List[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    entry = {
        "type": "assistant",
        "uuid": uuid,
        "timestamp": "2025-01-01T10:00:05Z",
        "message": {"role": "assistant", "content": blocks},
    }
    entry.update(extra)
    return entry


def tool_use(tool_id: str, name: str, tool_input: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "tool_use", "id": tool_id, "name": name, "input": tool_input}


def tool_result_entry(
    uuid: str,
    tool_id: str,
    content: str = "",
    is_error: bool = False,
    tool_use_result: Any = None,
) -> Dict[str, Any]:
    block: Dict[str, Any] = {"type": "tool_result", "tool_use_id": tool_id, "content": content}
    if is_error:
        block["is_error"] = True
    entry = user_entry(uuid, [block])
    if tool_use_result is not None:
        entry["toolUseResult"] = tool_use_result
    return entry


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll ``predicate`` on the event loop until it holds or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(0.01)
    return predicate()
