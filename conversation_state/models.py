"""Data models for conversation state.

Items are a closed tagged union keyed on ``type``. Only the structural fields
(type tag, call id, name, content presence) are inspected by the store; any
extra provider fields are kept as-is so items round-trip unchanged.
"""

from __future__ import annotations

from collections.abc import Sequence  # noqa: TC003
from dataclasses import dataclass
from datetime import datetime  # noqa: TC003
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from conversation_state.config import CompressionConfig

# --- Items ---


class ContentPart(BaseModel):
    """One text part of a message or reasoning summary."""

    model_config = ConfigDict(extra="allow")

    type: str = "input_text"
    text: str | None = None


class MessageItem(BaseModel):
    """A chat message from the user, the assistant, or the system."""

    model_config = ConfigDict(extra="allow")

    type: Literal["message"] = "message"
    role: str = "user"
    content: str | list[ContentPart] | None = None
    id: str | None = None

    def text(self) -> str:
        """Return the concatenated text of the message content."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return "".join(part.text or "" for part in self.content)


class FunctionCallItem(BaseModel):
    """A tool invocation requested by the model."""

    model_config = ConfigDict(extra="allow")

    type: Literal["function_call"] = "function_call"
    name: str | None = None
    call_id: str | None = None
    arguments: str = ""
    id: str | None = None


class FunctionCallOutputItem(BaseModel):
    """The result of a tool invocation, matched to its call by ``call_id``."""

    model_config = ConfigDict(extra="allow")

    type: Literal["function_call_output"] = "function_call_output"
    call_id: str | None = None
    output: str | None = None
    id: str | None = None


class ReasoningItem(BaseModel):
    """A reasoning trace emitted by the model."""

    model_config = ConfigDict(extra="allow")

    type: Literal["reasoning"] = "reasoning"
    summary: list[ContentPart] = Field(default_factory=list)
    encrypted_content: str | None = None
    id: str | None = None

    def text(self) -> str:
        """Return the concatenated summary text."""
        return "".join(part.text or "" for part in self.summary)


Item = Annotated[
    MessageItem | FunctionCallItem | FunctionCallOutputItem | ReasoningItem,
    Field(discriminator="type"),
]

_ITEMS_ADAPTER: TypeAdapter[list[Item]] = TypeAdapter(list[Item])


def parse_items(items: Sequence[Item | dict[str, Any]]) -> list[Item]:
    """Validate raw dicts (or already-built items) into typed items."""
    return _ITEMS_ADAPTER.validate_python(
        [item.model_dump() if isinstance(item, BaseModel) else item for item in items],
    )


def dump_items(items: Sequence[Item]) -> list[dict[str, Any]]:
    """Serialize items back to plain dicts, dropping unset optional fields."""
    return [item.model_dump(exclude_none=True) for item in items]


# --- Conversation State ---


class TokenUsage(BaseModel):
    """Token usage of a message sequence."""

    input: int = 0
    output: int = 0
    total: int = 0


class ConversationMetrics(BaseModel):
    """Counters tracked per conversation."""

    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    turn_count: int = 0
    tool_call_count: int = 0
    compression_events: int = 0
    last_compression_at: datetime | None = None


class ConversationHealth(BaseModel):
    """Structural integrity report for a conversation."""

    is_valid: bool = True
    has_invalid_responses: bool = False
    continuity_score: float = Field(1.0, ge=0.0, le=1.0)
    issues: list[str] = Field(default_factory=list)


class ConversationState(BaseModel):
    """Full state of one conversation."""

    id: str = Field(..., description="Unique conversation ID")
    messages: list[Item] = Field(default_factory=list)
    last_response_id: str | None = None
    metrics: ConversationMetrics = Field(default_factory=ConversationMetrics)
    compression: CompressionConfig = Field(default_factory=CompressionConfig)
    health: ConversationHealth = Field(default_factory=ConversationHealth)
    created_at: datetime
    updated_at: datetime
    original_message_count: int = Field(
        0,
        description="Message count after the first non-empty update",
    )


# --- Compression Results ---


class CompressionResult(BaseModel):
    """Outcome of a compression run."""

    compressed_messages: list[Item]
    compression_ratio: float = Field(
        ...,
        description="len(compressed) / len(original); lower means more compression",
    )


class SplitPointAnalysis(BaseModel):
    """Where to split a conversation into a compressible head and preserved tail."""

    split_index: int = Field(..., ge=0)
    preserved_items: list[Item]
    compressible_items: list[Item]
    reasoning: str
    confidence: int = Field(..., ge=0, le=100)


@dataclass
class MemoryStats:
    """Memory usage snapshot of a store."""

    total_conversations: int
    total_messages: int
    active_locks: int
    estimated_memory_usage: int
