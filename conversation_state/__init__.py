"""Bounded, lock-guarded conversation state for chat agents."""

from __future__ import annotations

from conversation_state.compression import (
    CompressionGateway,
    CompressionService,
    LocalCompressionService,
    SummarizerConfig,
)
from conversation_state.config import CompressionConfig, ConversationConfig
from conversation_state.errors import (
    CompressionError,
    ConversationStateError,
    LockTimeoutError,
    NotFoundError,
    ServiceUnavailableError,
    SummarizationError,
)
from conversation_state.maintenance import MaintenanceScheduler
from conversation_state.models import (
    ConversationHealth,
    ConversationMetrics,
    ConversationState,
    FunctionCallItem,
    FunctionCallOutputItem,
    Item,
    MessageItem,
    ReasoningItem,
    TokenUsage,
)
from conversation_state.store import ConversationStore

__all__ = [
    "CompressionConfig",
    "CompressionError",
    "CompressionGateway",
    "CompressionService",
    "ConversationConfig",
    "ConversationHealth",
    "ConversationMetrics",
    "ConversationState",
    "ConversationStateError",
    "ConversationStore",
    "FunctionCallItem",
    "FunctionCallOutputItem",
    "Item",
    "LocalCompressionService",
    "LockTimeoutError",
    "MaintenanceScheduler",
    "MessageItem",
    "NotFoundError",
    "ReasoningItem",
    "ServiceUnavailableError",
    "SummarizationError",
    "SummarizerConfig",
    "TokenUsage",
]
