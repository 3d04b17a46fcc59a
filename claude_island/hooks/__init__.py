"""Hook event transport: socket server, correlation cache and permission ledger."""

from .backoff import ReconnectionBackoff
from .correlation import ToolUseCorrelationCache
from .events import HookEvent, HookResponse
from .ledger import PendingPermission, PermissionLedger
from .socket_server import UnixSocketServer

__all__ = [
    "HookEvent",
    "HookResponse",
    "PendingPermission",
    "PermissionLedger",
    "ReconnectionBackoff",
    "ToolUseCorrelationCache",
    "UnixSocketServer",
]
