"""Capacity-based and age-based removal of whole conversations."""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import TYPE_CHECKING

from conversation_state.constants import EVICTION_FRACTION, MAX_CONVERSATIONS, RETENTION_SECONDS

if TYPE_CHECKING:
    from datetime import datetime

    from conversation_state.locks import MutexRegistry
    from conversation_state.models import ConversationState

logger = logging.getLogger(__name__)


class EvictionManager:
    """Removes conversations from a store's map, revoking their locks.

    Every removal goes through ``remove`` so that a conversation's lock entry
    disappears together with the conversation itself.
    """

    def __init__(
        self,
        conversations: dict[str, ConversationState],
        locks: MutexRegistry,
        *,
        capacity: int = MAX_CONVERSATIONS,
        fraction: float = EVICTION_FRACTION,
        retention_seconds: float = RETENTION_SECONDS,
        log_events: bool = True,
    ) -> None:
        """Initialize the manager over a store's conversation map and lock registry."""
        if capacity < 1:
            msg = f"capacity must be >= 1, got {capacity}"
            raise ValueError(msg)
        if not 0.0 < fraction <= 1.0:
            msg = f"fraction must be in (0, 1], got {fraction}"
            raise ValueError(msg)
        self._conversations = conversations
        self._locks = locks
        self._capacity = capacity
        self._fraction = fraction
        self._retention = timedelta(seconds=retention_seconds)
        self._log_events = log_events

    @property
    def capacity(self) -> int:
        """Get the maximum number of conversations."""
        return self._capacity

    @property
    def batch_size(self) -> int:
        """Number of conversations removed by one batch eviction."""
        return max(1, math.floor(self._capacity * self._fraction))

    def at_capacity(self) -> bool:
        """Check whether inserting one more conversation would exceed capacity."""
        return len(self._conversations) >= self._capacity

    def remove(self, conversation_id: str) -> bool:
        """Revoke the lock for ``conversation_id`` and drop the conversation."""
        self._locks.force_release(conversation_id)
        return self._conversations.pop(conversation_id, None) is not None

    def batch_evict(self) -> list[str]:
        """Remove the least recently updated conversations.

        Removes ``batch_size`` conversations, or more if the map is somehow
        further over capacity, so that one insert afterwards still fits.
        """
        count = max(self.batch_size, len(self._conversations) - self._capacity + 1)
        # sorted() is stable: ties keep insertion order, oldest first
        oldest = sorted(self._conversations.values(), key=lambda c: c.updated_at)[:count]
        removed = [c.id for c in oldest if self.remove(c.id)]
        if self._log_events:
            logger.info("Batch eviction removed %d old conversation(s)", len(removed))
        return removed

    def reap(self, now: datetime) -> list[str]:
        """Remove empty conversations not updated within the retention window."""
        cutoff = now - self._retention
        stale = [
            conversation_id
            for conversation_id, conversation in self._conversations.items()
            if conversation.updated_at < cutoff and not conversation.messages
        ]
        removed = [conversation_id for conversation_id in stale if self.remove(conversation_id)]
        if removed and self._log_events:
            logger.info("Periodic cleanup removed %d stale conversation(s)", len(removed))
        return removed
