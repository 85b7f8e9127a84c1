"""In-memory conversation store with per-conversation locking.

Every mutation of a conversation (``update``, ``compress_conversation``,
``curate_conversation``, ``validate_conversation_health``) runs while holding
that conversation's lock from the store's ``MutexRegistry``. Mutations compute
their result first and commit it only after the last suspension point, after
checking that the conversation was not deleted or evicted in the meantime.
Reads (``get``, ``list``) take no lock and return deep copies.
"""

from __future__ import annotations

import logging
import math
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from conversation_state.compression.gateway import CompressionGateway, CompressionService
from conversation_state.config import ConversationConfig
from conversation_state.constants import (
    ESTIMATED_BYTES_PER_MESSAGE,
    LOCK_TIMEOUT_SECONDS,
    MAX_CONVERSATIONS,
    MAX_MESSAGES_PER_CONVERSATION,
    TRIM_FRACTION,
)
from conversation_state.curation import curate_items
from conversation_state.errors import (
    CompressionError,
    LockTimeoutError,
    NotFoundError,
    ServiceUnavailableError,
)
from conversation_state.eviction import EvictionManager
from conversation_state.locks import MutexRegistry
from conversation_state.models import (
    ConversationState,
    FunctionCallItem,
    FunctionCallOutputItem,
    MemoryStats,
    parse_items,
)
from conversation_state.tokens import estimate_usage

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from conversation_state.config import CompressionStrategy
    from conversation_state.models import (
        CompressionResult,
        ConversationHealth,
        Item,
        SplitPointAnalysis,
        TokenUsage,
    )

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConversationStore:
    """Bounded in-memory store of conversation state."""

    def __init__(
        self,
        config: ConversationConfig | None = None,
        service: CompressionService | None = None,
        *,
        capacity: int = MAX_CONVERSATIONS,
        max_messages: int = MAX_MESSAGES_PER_CONVERSATION,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the store.

        Args:
            config: Process configuration, copied once at construction.
            service: Optional compression service. Without one the store runs
                in degraded mode: no compression, estimated token counts, and
                ``ServiceUnavailableError`` from the explicit compress, curate
                and health operations.
            capacity: Maximum number of conversations kept at once.
            max_messages: Hard cap on messages per conversation after ``update``.
            lock_timeout: Seconds a mutation waits for a busy conversation.
            clock: Source of timestamps (UTC-aware datetimes).

        """
        if max_messages < 1:
            msg = f"max_messages must be >= 1, got {max_messages}"
            raise ValueError(msg)
        self._config = (config or ConversationConfig()).model_copy(deep=True)
        self._conversations: dict[str, ConversationState] = {}
        self._locks = MutexRegistry(lock_timeout)
        self._eviction = EvictionManager(
            self._conversations,
            self._locks,
            capacity=capacity,
            log_events=self._config.log_events,
        )
        self._max_messages = max_messages
        self._clock = clock
        self._gateway: CompressionGateway | None = None
        if service is not None:
            self.attach_compression_service(service)

    # --- Introspection ---

    @property
    def config(self) -> ConversationConfig:
        """Get the store configuration."""
        return self._config

    @property
    def capacity(self) -> int:
        """Get the maximum number of conversations."""
        return self._eviction.capacity

    @property
    def has_compression_service(self) -> bool:
        """Check whether a compression service is attached."""
        return self._gateway is not None

    @property
    def locks(self) -> MutexRegistry:
        """Get the lock registry guarding mutations."""
        return self._locks

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._conversations

    def attach_compression_service(self, service: CompressionService) -> None:
        """Attach (or replace) the compression service."""
        if not isinstance(service, CompressionService):
            msg = f"{type(service).__name__} does not implement CompressionService"
            raise TypeError(msg)
        self._gateway = CompressionGateway(service, self._config.max_tokens)

    # --- Basic operations ---

    async def create(self, conversation_id: str | None = None) -> ConversationState:
        """Create a conversation, evicting old ones first if the store is full.

        Raises:
            ValueError: If ``conversation_id`` is already live.

        """
        if conversation_id is not None and conversation_id in self._conversations:
            msg = f"Conversation {conversation_id} already exists"
            raise ValueError(msg)

        if self._eviction.at_capacity():
            self._eviction.batch_evict()

        now = self._clock()
        state = ConversationState(
            id=conversation_id or str(uuid4()),
            compression=self._config.compression.model_copy(),
            created_at=now,
            updated_at=now,
        )
        self._conversations[state.id] = state
        logger.debug("Created conversation %s", state.id)
        return state.model_copy(deep=True)

    async def get(self, conversation_id: str) -> ConversationState | None:
        """Return a snapshot of the conversation, or None if it does not exist."""
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            return None
        return conversation.model_copy(deep=True)

    async def list(self) -> list[ConversationState]:
        """Return snapshots of all conversations, most recently updated first."""
        return [
            conversation.model_copy(deep=True)
            for conversation in sorted(
                self._conversations.values(),
                key=lambda c: c.updated_at,
                reverse=True,
            )
        ]

    async def delete(self, conversation_id: str) -> None:
        """Remove a conversation and revoke its lock. Missing ids are ignored."""
        if self._eviction.remove(conversation_id):
            logger.debug("Deleted conversation %s", conversation_id)

    async def clear(self) -> None:
        """Remove every conversation and revoke every lock."""
        self._locks.force_release_all()
        self._conversations.clear()

    async def update(
        self,
        conversation_id: str,
        items: Sequence[Item | dict[str, Any]],
        response_id: str | None = None,
    ) -> None:
        """Append items to a conversation.

        Curates the items, appends them, refreshes metrics, compresses when the
        token threshold is reached, and finally trims the oldest messages if the
        conversation is still over the message cap. Compression failures are
        logged and never raised.

        Raises:
            NotFoundError: If the conversation does not exist.
            LockTimeoutError: If the conversation stayed busy past the timeout;
                nothing was applied.

        """
        new_items = parse_items(items)
        async with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id)

            valid_items = await self._curate_incoming(conversation_id, new_items)
            messages = [*conversation.messages, *valid_items]

            usage = conversation.metrics.token_usage
            if self._gateway is not None:
                usage = await self._measure(messages)

            compressed: CompressionResult | None = None
            if self._gateway is not None and self._gateway.should_compress(
                usage,
                conversation.compression,
            ):
                compressed = await self._try_compress(
                    conversation_id,
                    messages,
                    conversation.compression.strategy,
                    conversation,
                )
                if compressed is not None:
                    messages = compressed.compressed_messages
                    usage = await self._measure(messages)

            messages = self._trim(conversation_id, messages)

            self._ensure_live(conversation_id, conversation)
            conversation.messages = messages
            if not conversation.original_message_count and messages:
                conversation.original_message_count = len(messages)
            metrics = conversation.metrics
            metrics.turn_count += 1
            metrics.tool_call_count += sum(
                1
                for item in valid_items
                if isinstance(item, FunctionCallItem | FunctionCallOutputItem)
            )
            metrics.token_usage = usage
            now = self._clock()
            if compressed is not None:
                metrics.compression_events += 1
                metrics.last_compression_at = now
            if response_id:
                conversation.last_response_id = response_id
            conversation.updated_at = now

    # --- Compression, curation and health ---

    async def compress_conversation(
        self,
        conversation_id: str,
        strategy: CompressionStrategy | None = None,
    ) -> None:
        """Compress a conversation now, regardless of its token usage.

        Raises:
            ServiceUnavailableError: If no compression service is attached.
            NotFoundError: If the conversation does not exist.
            CompressionError: If the service fails or returns an invalid result.
            LockTimeoutError: If the conversation stayed busy past the timeout.

        """
        gateway = self._require_gateway("compression")
        async with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id)
            result = await gateway.compress(
                conversation.messages,
                strategy or conversation.compression.strategy,
                conversation.compression,
            )
            usage = await self._measure(result.compressed_messages)

            self._ensure_live(conversation_id, conversation)
            self._log_compression(conversation_id, len(conversation.messages), result)
            conversation.messages = result.compressed_messages
            conversation.metrics.compression_events += 1
            conversation.metrics.last_compression_at = self._clock()
            conversation.metrics.token_usage = usage

    async def curate_conversation(self, conversation_id: str) -> None:
        """Drop invalid messages from a conversation and refresh its health.

        Raises:
            ServiceUnavailableError: If no compression service is attached.
            NotFoundError: If the conversation does not exist.
            LockTimeoutError: If the conversation stayed busy past the timeout.

        """
        gateway = self._require_gateway("curation")
        async with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id)
            curated = await gateway.curate(conversation.messages)
            health = await gateway.validate_health(curated)

            self._ensure_live(conversation_id, conversation)
            removed = len(conversation.messages) - len(curated)
            if removed:
                logger.debug("Curation removed %d message(s) from %s", removed, conversation_id)
            conversation.messages = list(curated)
            conversation.health = health
            conversation.updated_at = self._clock()

    async def validate_conversation_health(self, conversation_id: str) -> ConversationHealth:
        """Compute, store and return the health of a conversation.

        Raises:
            ServiceUnavailableError: If no compression service is attached.
            NotFoundError: If the conversation does not exist.
            LockTimeoutError: If the conversation stayed busy past the timeout.

        """
        gateway = self._require_gateway("health validation")
        async with self._locks.hold(conversation_id):
            conversation = self._require(conversation_id)
            health = await gateway.validate_health(list(conversation.messages))
            self._ensure_live(conversation_id, conversation)
            conversation.health = health
            return health.model_copy(deep=True)

    async def validate_all_health(self) -> int:
        """Revalidate every live conversation. Returns how many were checked.

        Conversations that vanish or stay busy during the sweep are skipped.
        """
        self._require_gateway("health validation")
        checked = 0
        for conversation_id in list(self._conversations):
            try:
                await self.validate_conversation_health(conversation_id)
            except (NotFoundError, LockTimeoutError):
                logger.debug("Skipped health check for %s", conversation_id)
                continue
            checked += 1
        return checked

    async def analyze_token_usage(self, messages: Sequence[Item | dict[str, Any]]) -> TokenUsage:
        """Count tokens in a caller-supplied snapshot of messages.

        Uses the compression service when attached, otherwise estimates
        serialized length / 4, split evenly between input and output.
        """
        items = parse_items(messages)
        if self._gateway is None:
            return estimate_usage(items)
        return await self._gateway.analyze_token_usage(items)

    async def find_split_point(
        self,
        messages: Sequence[Item | dict[str, Any]],
    ) -> SplitPointAnalysis:
        """Ask the compression service where it would split ``messages``.

        Raises:
            ServiceUnavailableError: If the service cannot analyze split points.

        """
        gateway = self._gateway
        if gateway is None or not gateway.supports_split_point():
            raise ServiceUnavailableError("split point analysis")
        return await gateway.find_split_point(parse_items(messages))

    # --- Maintenance ---

    async def perform_periodic_cleanup(self) -> int:
        """Reap empty conversations older than the retention window.

        Returns the number of conversations removed. Safe to call repeatedly.
        """
        return len(self._eviction.reap(self._clock()))

    def get_memory_stats(self) -> MemoryStats:
        """Return a snapshot of the store's size."""
        total_messages = sum(len(c.messages) for c in self._conversations.values())
        return MemoryStats(
            total_conversations=len(self._conversations),
            total_messages=total_messages,
            active_locks=self._locks.active_locks,
            estimated_memory_usage=total_messages * ESTIMATED_BYTES_PER_MESSAGE,
        )

    async def shutdown(self) -> None:
        """Drop all state and close the compression service."""
        await self.clear()
        if self._gateway is not None:
            await self._gateway.aclose()

    # --- Internals ---

    def _require(self, conversation_id: str) -> ConversationState:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError(conversation_id)
        return conversation

    def _require_gateway(self, capability: str) -> CompressionGateway:
        if self._gateway is None:
            raise ServiceUnavailableError(capability)
        return self._gateway

    def _ensure_live(self, conversation_id: str, conversation: ConversationState) -> None:
        """Fail if the conversation was removed while the operation was suspended."""
        if self._conversations.get(conversation_id) is not conversation:
            raise NotFoundError(conversation_id)

    async def _curate_incoming(self, conversation_id: str, items: list[Item]) -> list[Item]:
        if not self._config.curation_enabled:
            return items
        if self._gateway is None:
            return curate_items(items)
        try:
            return await self._gateway.curate(items)
        except Exception:
            logger.warning(
                "Curation service failed for %s, using the built-in filter",
                conversation_id,
                exc_info=True,
            )
            return curate_items(items)

    async def _measure(self, messages: list[Item]) -> TokenUsage:
        assert self._gateway is not None
        try:
            return await self._gateway.analyze_token_usage(messages)
        except Exception:
            logger.warning("Token analysis failed, estimating instead", exc_info=True)
            return estimate_usage(messages)

    async def _try_compress(
        self,
        conversation_id: str,
        messages: list[Item],
        strategy: CompressionStrategy,
        conversation: ConversationState,
    ) -> CompressionResult | None:
        """Compress inside ``update``; failures are logged and yield None."""
        assert self._gateway is not None
        try:
            result = await self._gateway.compress(messages, strategy, conversation.compression)
        except CompressionError as e:
            logger.warning("Compression failed for conversation %s: %s", conversation_id, e)
            return None
        self._log_compression(conversation_id, len(messages), result)
        return result

    def _log_compression(
        self,
        conversation_id: str,
        before: int,
        result: CompressionResult,
    ) -> None:
        if self._config.log_events:
            logger.info(
                "Compressed conversation %s: %d -> %d messages (ratio %.2f)",
                conversation_id,
                before,
                len(result.compressed_messages),
                result.compression_ratio,
            )

    def _trim(self, conversation_id: str, messages: list[Item]) -> list[Item]:
        """Drop the oldest messages in steps of 10% of the cap until under it."""
        excess = len(messages) - self._max_messages
        if excess <= 0:
            return messages
        step = max(1, math.floor(self._max_messages * TRIM_FRACTION))
        drop = math.ceil(excess / step) * step
        logger.info(
            "Conversation %s over %d messages, dropping the oldest %d",
            conversation_id,
            self._max_messages,
            drop,
        )
        return messages[drop:]
