"""Exception taxonomy for the conversation state store."""

from __future__ import annotations


class ConversationStateError(Exception):
    """Base class for all conversation state errors."""


class NotFoundError(ConversationStateError, KeyError):
    """Raised when an operation targets a conversation id that does not exist."""

    def __init__(self, conversation_id: str) -> None:
        """Store the missing id."""
        self.conversation_id = conversation_id
        super().__init__(f"Conversation {conversation_id} not found")

    def __str__(self) -> str:
        """Avoid KeyError's repr-style quoting."""
        return str(self.args[0])


class LockTimeoutError(ConversationStateError, TimeoutError):
    """Raised when a mutation gives up waiting for a conversation's lock."""

    def __init__(self, conversation_id: str, timeout: float) -> None:
        """Store the contended id and the timeout that expired."""
        self.conversation_id = conversation_id
        self.timeout = timeout
        super().__init__(
            f"Lock timeout after {timeout:g} seconds for conversation {conversation_id}",
        )


class ServiceUnavailableError(ConversationStateError):
    """Raised when compression, curation or health checks run without a service."""

    def __init__(self, capability: str) -> None:
        """Store the capability that was requested."""
        self.capability = capability
        super().__init__(f"Compression service not available for {capability}")


class CompressionError(ConversationStateError):
    """Raised when the compression service fails or returns an unusable result."""


class SummarizationError(CompressionError):
    """Raised when the LLM summary call fails."""
