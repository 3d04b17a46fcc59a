"""Explicit state machine for Claude session lifecycle.

Every phase change goes through ``SessionPhase.transition``; invalid
transitions return ``None`` and leave the caller's phase untouched.
"""

import os
import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class PhaseKind(str, Enum):
    """Phase identifiers without associated values."""

    IDLE = "idle"
    PROCESSING = "processing"
    WAITING_FOR_INPUT = "waitingForInput"
    WAITING_FOR_APPROVAL = "waitingForApproval"
    COMPACTING = "compacting"
    ENDED = "ended"


# Priority input keys shown for common tools
_PRIORITY_KEYS = {
    "Bash": "command",
    "Read": "file_path",
    "Write": "file_path",
    "Edit": "file_path",
}
_FILE_TOOLS = {"Read", "Write", "Edit"}
_MAX_INPUT_PREVIEW = 100


def _truncate(value: str, limit: int = _MAX_INPUT_PREVIEW) -> str:
    return value[:limit] + "..." if len(value) > limit else value


@dataclass(frozen=True)
class PermissionContext:
    """Tool waiting for user approval."""

    tool_use_id: str
    tool_name: str
    tool_input: Optional[Dict[str, Any]] = field(default=None, hash=False)
    received_at: float = field(default_factory=time.time)

    @property
    def formatted_input(self) -> Optional[str]:
        """Short description of the tool input for list display.

        Bash shows its command, file tools show the file name, anything else
        falls back to the first non-empty string value.
        """
        if not self.tool_input:
            return None

        key = _PRIORITY_KEYS.get(self.tool_name)
        if key:
            value = self.tool_input.get(key)
            if isinstance(value, str) and value:
                if self.tool_name in _FILE_TOOLS:
                    return os.path.basename(value)
                return _truncate(value)

        for key, value in self.tool_input.items():
            if key == "description":
                continue
            if isinstance(value, str) and value:
                return _truncate(value)

        return None

    @property
    def full_command_text(self) -> Optional[str]:
        """Untruncated input text for expanded display."""
        if not self.tool_input:
            return None

        if self.tool_name in ("Bash", "BashOutput"):
            command = self.tool_input.get("command")
            if isinstance(command, str):
                return command

        for key in ("file_path", "pattern"):
            value = self.tool_input.get(key)
            if isinstance(value, str):
                return value

        parts = [
            f"{key}: {value}"
            for key, value in self.tool_input.items()
            if isinstance(value, str)
        ]
        return "\n".join(parts) if parts else None


@dataclass(frozen=True)
class SessionPhase:
    """A session phase; ``context`` is only set for waitingForApproval."""

    kind: PhaseKind
    context: Optional[PermissionContext] = None

    @classmethod
    def waiting_for_approval(cls, context: PermissionContext) -> "SessionPhase":
        return cls(PhaseKind.WAITING_FOR_APPROVAL, context)

    @property
    def needs_attention(self) -> bool:
        """Whether the session needs user attention."""
        return self.kind in (PhaseKind.WAITING_FOR_APPROVAL, PhaseKind.WAITING_FOR_INPUT)

    @property
    def is_active(self) -> bool:
        """Whether Claude is actively working."""
        return self.kind in (PhaseKind.PROCESSING, PhaseKind.COMPACTING)

    @property
    def is_waiting_for_approval(self) -> bool:
        return self.kind is PhaseKind.WAITING_FOR_APPROVAL

    @property
    def approval_tool_name(self) -> Optional[str]:
        if self.context is not None:
            return self.context.tool_name
        return None

    def can_transition(self, to: "SessionPhase") -> bool:
        """Check if a transition to the target phase is valid."""
        # Terminal state; only staying ended is allowed
        if self.kind is PhaseKind.ENDED:
            return to.kind is PhaseKind.ENDED
        if to.kind is PhaseKind.ENDED:
            return True
        # Staying put is a no-op
        if self == to:
            return True
        return to.kind in ALLOWED_TRANSITIONS[self.kind]

    def transition(self, to: "SessionPhase") -> Optional["SessionPhase"]:
        """Return the new phase if the transition is valid, otherwise None."""
        return to if self.can_transition(to) else None

    def __str__(self) -> str:
        if self.context is not None:
            return f"{self.kind.value}({self.context.tool_name})"
        return self.kind.value


ALLOWED_TRANSITIONS: Dict[PhaseKind, FrozenSet[PhaseKind]] = {
    # waitingForInput is reachable from idle when history reveals the real state
    PhaseKind.IDLE: frozenset(
        {
            PhaseKind.PROCESSING,
            PhaseKind.WAITING_FOR_APPROVAL,
            PhaseKind.COMPACTING,
            PhaseKind.WAITING_FOR_INPUT,
        }
    ),
    PhaseKind.PROCESSING: frozenset(
        {
            PhaseKind.WAITING_FOR_INPUT,
            PhaseKind.WAITING_FOR_APPROVAL,
            PhaseKind.COMPACTING,
            PhaseKind.IDLE,
        }
    ),
    PhaseKind.WAITING_FOR_INPUT: frozenset(
        {PhaseKind.PROCESSING, PhaseKind.IDLE, PhaseKind.COMPACTING}
    ),
    PhaseKind.WAITING_FOR_APPROVAL: frozenset(
        {
            PhaseKind.PROCESSING,
            PhaseKind.IDLE,
            PhaseKind.WAITING_FOR_INPUT,
            PhaseKind.WAITING_FOR_APPROVAL,
        }
    ),
    PhaseKind.COMPACTING: frozenset(
        {PhaseKind.PROCESSING, PhaseKind.IDLE, PhaseKind.WAITING_FOR_INPUT}
    ),
    PhaseKind.ENDED: frozenset(),
}


IDLE = SessionPhase(PhaseKind.IDLE)
PROCESSING = SessionPhase(PhaseKind.PROCESSING)
WAITING_FOR_INPUT = SessionPhase(PhaseKind.WAITING_FOR_INPUT)
COMPACTING = SessionPhase(PhaseKind.COMPACTING)
ENDED = SessionPhase(PhaseKind.ENDED)
