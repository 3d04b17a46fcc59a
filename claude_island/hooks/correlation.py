"""Correlate tool_use_ids from PreToolUse events with later PermissionRequests.

PermissionRequest hooks do not carry a tool_use_id, but the PreToolUse hook
for the same invocation does. Ids are queued per (session, tool, input) and
consumed oldest first.
"""

import json
import threading

from collections import deque
from typing import Deque, Dict, Optional

import structlog

from .events import HookEvent


logger = structlog.get_logger()


def canonical_input(tool_input: Optional[dict]) -> str:
    """Deterministic JSON for a tool input; keys sorted, no whitespace."""
    if tool_input is None:
        return "{}"
    try:
        return json.dumps(tool_input, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return "{}"


def cache_key(event: HookEvent) -> str:
    return f"{event.session_id}:{event.tool or 'unknown'}:{canonical_input(event.tool_input)}"


class ToolUseCorrelationCache:
    """FIFO queues of tool_use_ids keyed by session, tool and input."""

    def __init__(self):
        self._lock = threading.Lock()
        self._queues: Dict[str, Deque[str]] = {}

    def cache_tool_use_id(self, event: HookEvent) -> None:
        """Remember the tool_use_id of a PreToolUse event."""
        if not event.tool_use_id:
            return

        key = cache_key(event)
        with self._lock:
            self._queues.setdefault(key, deque()).append(event.tool_use_id)

        logger.debug(
            "Cached tool_use_id",
            session_id=event.session_id[:8],
            tool=event.tool,
            tool_use_id=event.tool_use_id[:12],
        )

    def pop_cached_tool_use_id(self, event: HookEvent) -> Optional[str]:
        """Remove and return the oldest id matching the event, if any."""
        key = cache_key(event)
        with self._lock:
            queue = self._queues.get(key)
            if not queue:
                return None
            tool_use_id = queue.popleft()
            if not queue:
                del self._queues[key]

        logger.debug(
            "Resolved tool_use_id from cache",
            session_id=event.session_id[:8],
            tool=event.tool,
            tool_use_id=tool_use_id[:12],
        )
        return tool_use_id

    def cleanup_cache(self, session_id: str) -> None:
        """Drop every cached id for a session."""
        prefix = f"{session_id}:"
        with self._lock:
            stale = [key for key in self._queues if key.startswith(prefix)]
            for key in stale:
                del self._queues[key]

        if stale:
            logger.debug(
                "Cleaned up tool_use_id cache",
                session_id=session_id[:8],
                removed=len(stale),
            )

    def __len__(self) -> int:
        with self._lock:
            return sum(len(queue) for queue in self._queues.values())
