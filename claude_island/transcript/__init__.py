"""Claude Code transcript parsing and watching."""

from .models import (
    ChatMessage,
    ChatRole,
    ConversationInfo,
    IncrementalParseResult,
    SubagentToolInfo,
    ToolResult,
    UsageInfo,
)
from .parser import ConversationParser
from .watchers import (
    AgentFileWatcher,
    AgentFileWatcherManager,
    InterruptWatcher,
    InterruptWatcherManager,
)

__all__ = [
    "AgentFileWatcher",
    "AgentFileWatcherManager",
    "ChatMessage",
    "ChatRole",
    "ConversationInfo",
    "ConversationParser",
    "IncrementalParseResult",
    "InterruptWatcher",
    "InterruptWatcherManager",
    "SubagentToolInfo",
    "ToolResult",
    "UsageInfo",
]
