"""Hook event and response models exchanged over the hook socket."""

import json
import time

from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..session.phase import (
    COMPACTING,
    ENDED,
    IDLE,
    PROCESSING,
    WAITING_FOR_INPUT,
    PermissionContext,
    SessionPhase,
)


PERMISSION_REQUEST_EVENT = "PermissionRequest"
WAITING_FOR_APPROVAL_STATUS = "waiting_for_approval"

_PROCESSING_STATUSES = {"running_tool", "processing", "starting"}


class HookEvent(BaseModel):
    """Event sent by the hook script for every Claude Code hook invocation."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    session_id: str
    cwd: str
    event: str
    status: str
    pid: Optional[int] = None
    tty: Optional[str] = None
    tool: Optional[str] = None
    tool_input: Optional[Dict[str, Any]] = None
    tool_use_id: Optional[str] = None
    notification_type: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def from_bytes(cls, data: Union[bytes, str]) -> "HookEvent":
        """Decode one JSON event; raises ``ValueError`` on malformed input."""
        return cls.model_validate_json(data)

    def with_tool_use_id(self, tool_use_id: str) -> "HookEvent":
        """Copy of this event carrying a resolved tool_use_id."""
        return self.model_copy(update={"tool_use_id": tool_use_id})

    @property
    def expects_response(self) -> bool:
        """Whether the hook script is waiting for a decision on the socket."""
        return (
            self.event == PERMISSION_REQUEST_EVENT
            and self.status == WAITING_FOR_APPROVAL_STATUS
        )

    @property
    def session_phase(self) -> SessionPhase:
        """Phase the session is in according to this event."""
        if self.event == "PreCompact":
            return COMPACTING

        if self.status == WAITING_FOR_APPROVAL_STATUS:
            return SessionPhase.waiting_for_approval(
                PermissionContext(
                    tool_use_id=self.tool_use_id or "",
                    tool_name=self.tool or "unknown",
                    tool_input=self.tool_input,
                    received_at=time.time(),
                )
            )
        if self.status == "waiting_for_input":
            return WAITING_FOR_INPUT
        if self.status in _PROCESSING_STATUSES:
            return PROCESSING
        if self.status == "compacting":
            return COMPACTING
        if self.status == "ended":
            return ENDED
        return IDLE


class HookResponse(BaseModel):
    """Decision written back to a waiting PermissionRequest hook."""

    decision: Literal["allow", "deny", "ask"]
    reason: Optional[str] = None

    def to_bytes(self) -> bytes:
        return json.dumps(self.model_dump(exclude_none=True)).encode("utf-8")
