"""In-process compression service.

Implements the compression collaborator without an external process:
token counting with tiktoken, three compaction strategies, and the shared
curation and health checks. Only the ``summarize`` strategy talks to an LLM,
and it degrades to truncation when no summarizer is configured or the call
fails.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

from conversation_state.compression.gateway import exceeds_threshold
from conversation_state.compression.summarizer import (
    build_summary_prompt,
    generate_summary,
    summary_word_budget,
)
from conversation_state.constants import (
    MIN_COMPRESSIBLE_MESSAGES,
    SUMMARY_PREFIX,
    TOKEN_OVERRUN_PENALTY,
)
from conversation_state.curation import curate_items
from conversation_state.errors import CompressionError, SummarizationError
from conversation_state.health import validate_health
from conversation_state.models import (
    CompressionResult,
    FunctionCallItem,
    FunctionCallOutputItem,
    MessageItem,
    SplitPointAnalysis,
)
from conversation_state.tokens import analyze_usage

if TYPE_CHECKING:
    from collections.abc import Sequence

    from conversation_state.compression.summarizer import SummarizerConfig
    from conversation_state.config import (
        CompressionConfig,
        CompressionStrategy,
        ConversationConfig,
    )
    from conversation_state.models import ConversationHealth, Item, TokenUsage

logger = logging.getLogger(__name__)


class LocalCompressionService:
    """Compression service that runs inside the store's process."""

    def __init__(
        self,
        config: ConversationConfig,
        summarizer: SummarizerConfig | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Store configuration (token budget, tokenizer model,
                compression ratio target).
            summarizer: LLM settings for the ``summarize`` strategy. Without
                them ``summarize`` behaves like ``truncate``.

        """
        self._config = config
        self._summarizer = summarizer

    async def analyze_token_usage(self, messages: Sequence[Item]) -> TokenUsage:
        """Count tokens per item with the configured model's tokenizer."""
        return analyze_usage(messages, self._config.model)

    def should_compress(self, usage: TokenUsage, config: CompressionConfig) -> bool:
        """Apply the threshold policy against the configured token budget."""
        return exceeds_threshold(usage, config, self._config.max_tokens)

    async def curate_conversation(self, items: Sequence[Item]) -> list[Item]:
        """Drop structurally invalid items."""
        return curate_items(items)

    async def validate_conversation_health(self, messages: Sequence[Item]) -> ConversationHealth:
        """Report orphaned tool calls, invalid items and an exceeded token budget.

        Going over ``max_tokens`` adds an issue and costs
        ``TOKEN_OVERRUN_PENALTY`` continuity, but does not make the
        conversation invalid: only orphaned tool items do.
        """
        health = validate_health(messages)
        usage = analyze_usage(messages, self._config.model)
        if usage.total <= self._config.max_tokens:
            return health
        return health.model_copy(
            update={
                "issues": [
                    *health.issues,
                    f"Token count ({usage.total}) exceeds limit ({self._config.max_tokens})",
                ],
                "continuity_score": max(0.0, health.continuity_score - TOKEN_OVERRUN_PENALTY),
            },
        )

    async def find_split_point(self, messages: Sequence[Item]) -> SplitPointAnalysis:
        """Split ``messages`` into a compressible head and a preserved tail.

        The tail is sized so that a summary plus the tail stays within the
        configured ``max_compression_ratio``. The tail never starts with a
        tool output whose call sits in the head.
        """
        total = len(messages)
        budget = math.floor(total * self._config.compression.max_compression_ratio)
        keep = max(1, budget - 1)  # one slot for the summary message
        split = max(0, total - keep)

        head_call_ids = {
            m.call_id for m in messages[:split] if isinstance(m, FunctionCallItem) and m.call_id
        }
        moved = 0
        while (
            split < total
            and isinstance(messages[split], FunctionCallOutputItem)
            and messages[split].call_id in head_call_ids
        ):
            split += 1
            moved += 1

        reasoning = f"Keep the {total - split} most recent items"
        if moved:
            reasoning += f", moving {moved} tool output(s) with their calls into the head"
        return SplitPointAnalysis(
            split_index=split,
            preserved_items=list(messages[split:]),
            compressible_items=list(messages[:split]),
            reasoning=reasoning,
            confidence=90 if not moved else 75,
        )

    async def compress_conversation(
        self,
        messages: Sequence[Item],
        strategy: CompressionStrategy = "summarize",
    ) -> CompressionResult:
        """Compress ``messages`` with ``strategy``.

        Raises:
            CompressionError: If the conversation is too short to compress.

        """
        if len(messages) < MIN_COMPRESSIBLE_MESSAGES:
            msg = (
                f"Need at least {MIN_COMPRESSIBLE_MESSAGES} messages to compress, "
                f"got {len(messages)}"
            )
            raise CompressionError(msg)

        split = await self.find_split_point(messages)
        if strategy == "truncate":
            return self._truncate(split)
        if strategy == "selective":
            return self._selective(split)
        return await self._summarize(split)

    def _truncate(self, split: SplitPointAnalysis) -> CompressionResult:
        original = len(split.compressible_items) + len(split.preserved_items)
        return CompressionResult(
            compressed_messages=split.preserved_items,
            compression_ratio=len(split.preserved_items) / original,
        )

    def _selective(self, split: SplitPointAnalysis) -> CompressionResult:
        """Keep user messages and complete tool call pairs from the head."""
        original = len(split.compressible_items) + len(split.preserved_items)
        budget = math.floor(original * self._config.compression.max_compression_ratio)
        room = max(0, budget - len(split.preserved_items))

        answered = {
            m.call_id for m in split.compressible_items if isinstance(m, FunctionCallOutputItem)
        }
        selected: list[Item] = []
        for item in split.compressible_items:
            if isinstance(item, MessageItem) and item.role == "user":
                selected.append(item)
            elif isinstance(item, FunctionCallItem) and item.call_id in answered:
                selected.append(item)
            elif isinstance(item, FunctionCallOutputItem) and item.call_id in answered:
                selected.append(item)

        # Drop the oldest selections first when the budget is tight
        selected = selected[max(0, len(selected) - room) :] if room else []
        compressed = [*selected, *split.preserved_items]
        return CompressionResult(
            compressed_messages=compressed,
            compression_ratio=len(compressed) / original,
        )

    async def _summarize(self, split: SplitPointAnalysis) -> CompressionResult:
        """Replace the head with a single summary message."""
        if not split.compressible_items:
            return self._truncate(split)
        if self._summarizer is None:
            logger.debug("No summarizer configured, truncating instead")
            return self._truncate(split)

        prompt = build_summary_prompt(
            split.compressible_items,
            preserve_context=self._config.compression.preserve_context,
            max_words=summary_word_budget(self._summarizer),
        )
        try:
            summary = await generate_summary(prompt, self._summarizer)
        except SummarizationError:
            logger.warning("Summarization failed, falling back to truncation", exc_info=True)
            return self._truncate(split)

        summary_message = MessageItem(
            role="system",
            content=SUMMARY_PREFIX.format(count=len(split.compressible_items)) + summary,
        )
        compressed = [summary_message, *split.preserved_items]
        original = len(split.compressible_items) + len(split.preserved_items)
        return CompressionResult(
            compressed_messages=compressed,
            compression_ratio=len(compressed) / original,
        )
