"""Session phases and per-session state."""

from .phase import PermissionContext, PhaseKind, SessionPhase
from .state import SessionState

__all__ = [
    "PermissionContext",
    "PhaseKind",
    "SessionPhase",
    "SessionState",
]
