"""Gateway between the store and an external compression service.

The gateway owns the compression *policy* (whether a conversation is over its
token threshold) and guards the *mechanism*: whatever the service returns is
checked before the store is allowed to replace a conversation's history.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import ValidationError

from conversation_state.errors import CompressionError
from conversation_state.models import CompressionResult, SplitPointAnalysis

if TYPE_CHECKING:
    from collections.abc import Sequence

    from conversation_state.config import CompressionConfig, CompressionStrategy
    from conversation_state.models import ConversationHealth, Item, TokenUsage

logger = logging.getLogger(__name__)


@runtime_checkable
class CompressionService(Protocol):
    """Collaborator that counts, compresses, curates and audits messages."""

    async def analyze_token_usage(self, messages: Sequence[Item]) -> TokenUsage:
        """Count the tokens in ``messages``."""
        ...

    async def compress_conversation(
        self,
        messages: Sequence[Item],
        strategy: CompressionStrategy,
    ) -> CompressionResult | dict[str, Any]:
        """Return a shorter sequence standing in for ``messages``."""
        ...

    async def validate_conversation_health(self, messages: Sequence[Item]) -> ConversationHealth:
        """Report the structural health of ``messages``."""
        ...

    async def curate_conversation(self, items: Sequence[Item]) -> list[Item]:
        """Drop invalid items from ``items``."""
        ...


def exceeds_threshold(usage: TokenUsage, config: CompressionConfig, max_tokens: int) -> bool:
    """Check whether ``usage`` has reached the compression threshold."""
    if not config.enabled:
        return False
    return usage.total / max_tokens >= config.threshold


class CompressionGateway:
    """Decides when to compress and validates what the service returns."""

    def __init__(self, service: CompressionService, max_tokens: int) -> None:
        """Initialize the gateway.

        Args:
            service: The compression service to delegate to.
            max_tokens: Conversation token budget used by the threshold policy.

        """
        if max_tokens <= 0:
            msg = f"max_tokens must be > 0, got {max_tokens}"
            raise ValueError(msg)
        self._service = service
        self._max_tokens = max_tokens

    @property
    def service(self) -> CompressionService:
        """Get the wrapped service."""
        return self._service

    @property
    def max_tokens(self) -> int:
        """Get the conversation token budget."""
        return self._max_tokens

    def should_compress(self, usage: TokenUsage, config: CompressionConfig) -> bool:
        """True iff compression is enabled and usage is at or over the threshold."""
        return exceeds_threshold(usage, config, self._max_tokens)

    async def compress(
        self,
        messages: Sequence[Item],
        strategy: CompressionStrategy,
        config: CompressionConfig,
    ) -> CompressionResult:
        """Compress ``messages`` through the service.

        Raises:
            CompressionError: If the service fails or returns a result that is
                longer than the input or outside ``(0, max_compression_ratio]``.

        """
        try:
            raw = await self._service.compress_conversation(list(messages), strategy)
        except CompressionError:
            raise
        except Exception as e:
            msg = f"Compression service failed: {e}"
            raise CompressionError(msg) from e

        try:
            result = (
                raw if isinstance(raw, CompressionResult) else CompressionResult.model_validate(raw)
            )
        except ValidationError as e:
            msg = f"Compression service returned a malformed result: {e}"
            raise CompressionError(msg) from e

        if len(result.compressed_messages) > len(messages):
            msg = (
                f"Compression grew the conversation from {len(messages)} "
                f"to {len(result.compressed_messages)} messages"
            )
            raise CompressionError(msg)
        if not 0.0 < result.compression_ratio <= config.max_compression_ratio:
            msg = (
                f"Compression ratio {result.compression_ratio:.3f} outside "
                f"(0, {config.max_compression_ratio}]"
            )
            raise CompressionError(msg)
        return result

    async def analyze_token_usage(self, messages: Sequence[Item]) -> TokenUsage:
        """Count tokens through the service."""
        return await self._service.analyze_token_usage(messages)

    async def curate(self, items: Sequence[Item]) -> list[Item]:
        """Curate items through the service."""
        return await self._service.curate_conversation(items)

    async def validate_health(self, messages: Sequence[Item]) -> ConversationHealth:
        """Validate health through the service."""
        return await self._service.validate_conversation_health(messages)

    def supports_split_point(self) -> bool:
        """Check whether the service can analyze split points."""
        return callable(getattr(self._service, "find_split_point", None))

    async def find_split_point(self, messages: Sequence[Item]) -> SplitPointAnalysis:
        """Ask the service where it would split ``messages``."""
        raw = await self._service.find_split_point(messages)  # type: ignore[attr-defined]
        if isinstance(raw, SplitPointAnalysis):
            return raw
        return SplitPointAnalysis.model_validate(raw)

    async def aclose(self) -> None:
        """Close the service if it holds resources."""
        close = getattr(self._service, "aclose", None)
        if callable(close):
            await close()
