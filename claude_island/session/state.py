"""Per-session record kept by the session monitor."""

import time

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..transcript.models import ChatMessage, ConversationInfo, SubagentToolInfo
from .phase import IDLE, PermissionContext, PhaseKind, SessionPhase


@dataclass
class SessionState:
    session_id: str
    cwd: str
    phase: SessionPhase = IDLE
    pid: Optional[int] = None
    tty: Optional[str] = None
    last_event: Optional[str] = None
    last_activity: float = field(default_factory=time.time)
    messages: List[ChatMessage] = field(default_factory=list)
    conversation_info: Optional[ConversationInfo] = None
    # Task tool_use_id -> tools run by that sub-agent
    subagent_tools: Dict[str, List[SubagentToolInfo]] = field(default_factory=dict)

    @property
    def needs_attention(self) -> bool:
        return self.phase.needs_attention

    @property
    def is_ended(self) -> bool:
        return self.phase.kind is PhaseKind.ENDED

    @property
    def active_permission(self) -> Optional[PermissionContext]:
        return self.phase.context if self.phase.is_waiting_for_approval else None

    @property
    def display_title(self) -> str:
        info = self.conversation_info
        if info is not None and info.title:
            return info.title
        return self.cwd.rstrip("/").rsplit("/", 1)[-1] or self.cwd

    def apply_phase(self, phase: SessionPhase) -> bool:
        """Move to ``phase`` if the transition is allowed."""
        new_phase = self.phase.transition(phase)
        if new_phase is None:
            return False
        self.phase = new_phase
        return True

    def touch(self) -> None:
        self.last_activity = time.time()
