"""Ledger of permission requests waiting for a decision.

Each entry holds the hook's open connection. Every composite operation
(lookup, remove, mark responded) runs under one lock so a response racing a
timeout or a cancellation resolves the entry exactly once.
"""

import asyncio
import threading
import time

from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import structlog

from ..utils.constants import DEFAULT_MAX_RESPONDED_PERMISSIONS
from .events import HookEvent


logger = structlog.get_logger()


@dataclass
class PendingPermission:
    """A PermissionRequest whose hook connection is held open."""

    session_id: str
    tool_use_id: str
    writer: asyncio.StreamWriter
    event: HookEvent
    received_at: float = field(default_factory=time.monotonic)

    @property
    def age(self) -> float:
        return time.monotonic() - self.received_at


class PermissionLedger:
    """Pending permissions by tool_use_id plus a bounded responded set."""

    def __init__(self, max_responded: int = DEFAULT_MAX_RESPONDED_PERMISSIONS):
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingPermission] = {}
        # Insertion ordered so trimming drops the oldest ids first
        self._responded: "OrderedDict[str, None]" = OrderedDict()
        self._max_responded = max_responded

    def add(
        self, pending: PendingPermission
    ) -> Tuple[bool, Optional[PendingPermission]]:
        """Register a pending permission.

        Returns:
            ``(accepted, displaced)``. ``accepted`` is False when the id was
            already answered; ``displaced`` is a previous entry for the same
            id whose connection the caller must close.
        """
        with self._lock:
            if pending.tool_use_id in self._responded:
                return False, None
            displaced = self._pending.get(pending.tool_use_id)
            self._pending[pending.tool_use_id] = pending
            return True, displaced

    def pop(self, tool_use_id: str) -> Optional[PendingPermission]:
        """Remove an entry for responding and mark its id responded."""
        with self._lock:
            pending = self._pending.pop(tool_use_id, None)
            if pending is not None:
                self._mark_responded(tool_use_id)
            return pending

    def pop_latest_for_session(self, session_id: str) -> Optional[PendingPermission]:
        """Like ``pop`` for the session's most recently received entry."""
        with self._lock:
            pending = self._latest_for_session(session_id)
            if pending is not None:
                del self._pending[pending.tool_use_id]
                self._mark_responded(pending.tool_use_id)
            return pending

    def discard(
        self, tool_use_id: str, mark_responded: bool = False
    ) -> Optional[PendingPermission]:
        """Remove an entry without responding."""
        with self._lock:
            pending = self._pending.pop(tool_use_id, None)
            if pending is not None and mark_responded:
                self._mark_responded(tool_use_id)
            return pending

    def discard_session(self, session_id: str) -> List[PendingPermission]:
        """Remove every entry of a session without responding."""
        with self._lock:
            removed = [p for p in self._pending.values() if p.session_id == session_id]
            for pending in removed:
                del self._pending[pending.tool_use_id]
            return removed

    def pop_expired(
        self, tool_use_id: str, session_id: str, timeout: float
    ) -> Optional[PendingPermission]:
        """Remove an entry only if it belongs to the session and has timed out."""
        with self._lock:
            pending = self._pending.get(tool_use_id)
            if pending is None or pending.session_id != session_id:
                return None
            if pending.age < timeout:
                return None
            del self._pending[tool_use_id]
            return pending

    def time_remaining(
        self, tool_use_id: str, session_id: str, timeout: float
    ) -> Optional[float]:
        """Seconds until the entry times out, or None if it is gone or due."""
        with self._lock:
            pending = self._pending.get(tool_use_id)
            if pending is None or pending.session_id != session_id:
                return None
            remaining = timeout - pending.age
            return remaining if remaining > 0 else None

    def get_for_session(self, session_id: str) -> Optional[PendingPermission]:
        with self._lock:
            return self._latest_for_session(session_id)

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return any(p.session_id == session_id for p in self._pending.values())

    def was_responded(self, tool_use_id: str) -> bool:
        with self._lock:
            return tool_use_id in self._responded

    def drain(self) -> List[PendingPermission]:
        """Remove and return all entries."""
        with self._lock:
            entries = list(self._pending.values())
            self._pending.clear()
            return entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def __contains__(self, tool_use_id: object) -> bool:
        with self._lock:
            return tool_use_id in self._pending

    def _latest_for_session(self, session_id: str) -> Optional[PendingPermission]:
        candidates = [p for p in self._pending.values() if p.session_id == session_id]
        if not candidates:
            return None
        return max(candidates, key=lambda p: p.received_at)

    def _mark_responded(self, tool_use_id: str) -> None:
        self._responded[tool_use_id] = None
        self._responded.move_to_end(tool_use_id)
        if len(self._responded) > self._max_responded:
            keep = self._max_responded // 2
            while len(self._responded) > keep:
                self._responded.popitem(last=False)
            logger.debug("Trimmed responded permission ids", kept=keep)
