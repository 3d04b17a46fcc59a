"""Types produced by the transcript parser."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set

from .tool_results import ToolResultData


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class BlockType(str, Enum):
    TEXT = "text"
    TOOL_USE = "tool_use"
    THINKING = "thinking"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class ToolUseBlock:
    """A tool invocation; input values are flattened to strings."""

    id: str
    name: str
    input: Dict[str, str] = field(default_factory=dict, hash=False)


@dataclass(frozen=True)
class MessageBlock:
    """One content block of a chat message."""

    type: BlockType
    text: Optional[str] = None
    tool_use: Optional[ToolUseBlock] = None

    @classmethod
    def text_block(cls, text: str) -> "MessageBlock":
        return cls(BlockType.TEXT, text=text)

    @classmethod
    def thinking_block(cls, text: str) -> "MessageBlock":
        return cls(BlockType.THINKING, text=text)

    @classmethod
    def interrupted_block(cls) -> "MessageBlock":
        return cls(BlockType.INTERRUPTED)

    @classmethod
    def tool_use_block(cls, tool_use: ToolUseBlock) -> "MessageBlock":
        return cls(BlockType.TOOL_USE, tool_use=tool_use)


@dataclass
class ChatMessage:
    id: str
    role: ChatRole
    timestamp: datetime
    content: List[MessageBlock] = field(default_factory=list)

    @property
    def text(self) -> str:
        """Plain text of the message's text blocks."""
        return "\n".join(
            block.text for block in self.content if block.type is BlockType.TEXT and block.text
        )

    @property
    def tool_uses(self) -> List[ToolUseBlock]:
        return [
            block.tool_use
            for block in self.content
            if block.type is BlockType.TOOL_USE and block.tool_use is not None
        ]


@dataclass(frozen=True)
class ToolResult:
    """Raw result of a tool call as recorded in the transcript."""

    content: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    is_error: bool = False

    @property
    def is_interrupted(self) -> bool:
        """Error results the user interrupted or rejected."""
        if not self.is_error or not self.content:
            return False
        return any(
            phrase in self.content
            for phrase in (
                "Interrupted by user",
                "interrupted by user",
                "user doesn't want to proceed",
            )
        )


@dataclass(frozen=True)
class UsageInfo:
    """Token usage summed over a transcript."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def formatted_total(self) -> str:
        """Compact total such as ``12.5K`` or ``1.2M``."""
        total = self.total_tokens
        if total >= 1_000_000:
            return f"{total / 1_000_000:.1f}M"
        if total >= 1000:
            return f"{total / 1000:.1f}K"
        return str(total)


@dataclass(frozen=True)
class ConversationInfo:
    """Summary of a transcript for session lists."""

    summary: Optional[str] = None
    last_message: Optional[str] = None
    last_message_role: Optional[str] = None  # 'user', 'assistant' or 'tool'
    last_tool_name: Optional[str] = None
    first_user_message: Optional[str] = None
    last_user_message_date: Optional[datetime] = None
    usage: Optional[UsageInfo] = None

    @property
    def title(self) -> Optional[str]:
        return self.summary or self.first_user_message


@dataclass
class SubagentToolInfo:
    """A tool call made inside a sub-agent (Task) transcript."""

    id: str
    name: str
    input: Dict[str, str] = field(default_factory=dict)
    is_completed: bool = False
    timestamp: Optional[datetime] = None


@dataclass
class IncrementalParseState:
    """Per-session accumulator for incremental parsing."""

    last_file_offset: int = 0
    messages: List[ChatMessage] = field(default_factory=list)
    seen_tool_ids: Set[str] = field(default_factory=set)
    tool_id_to_name: Dict[str, str] = field(default_factory=dict)
    completed_tool_ids: Set[str] = field(default_factory=set)
    tool_results: Dict[str, ToolResult] = field(default_factory=dict)
    structured_results: Dict[str, ToolResultData] = field(default_factory=dict)
    last_clear_offset: int = 0
    clear_pending: bool = False

    def clear_accumulators(self) -> None:
        self.messages = []
        self.seen_tool_ids = set()
        self.tool_id_to_name = {}
        self.completed_tool_ids = set()
        self.tool_results = {}
        self.structured_results = {}

    def reset(self) -> None:
        """Back to a never-parsed state."""
        self.clear_accumulators()
        self.last_file_offset = 0
        self.last_clear_offset = 0
        self.clear_pending = False


@dataclass
class IncrementalParseResult:
    new_messages: List[ChatMessage] = field(default_factory=list)
    all_messages: List[ChatMessage] = field(default_factory=list)
    completed_tool_ids: Set[str] = field(default_factory=set)
    tool_results: Dict[str, ToolResult] = field(default_factory=dict)
    structured_results: Dict[str, ToolResultData] = field(default_factory=dict)
    clear_detected: bool = False
