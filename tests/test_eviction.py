"""Tests for capacity and age based eviction."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from conversation_state.eviction import EvictionManager
from conversation_state.locks import MutexRegistry
from conversation_state.models import ConversationState, parse_items
from tests.mocks.items import message

START = datetime(2025, 1, 1, tzinfo=UTC)


def _state(conversation_id: str, minutes: int, *, empty: bool = True) -> ConversationState:
    updated = START + timedelta(minutes=minutes)
    return ConversationState(
        id=conversation_id,
        messages=[] if empty else parse_items([message()]),
        created_at=updated,
        updated_at=updated,
    )


def _manager(
    conversations: dict[str, ConversationState],
    capacity: int = 10,
) -> tuple[EvictionManager, MutexRegistry]:
    locks = MutexRegistry(timeout=1.0)
    return EvictionManager(conversations, locks, capacity=capacity), locks


def test_invalid_arguments() -> None:
    """Capacity and fraction are validated."""
    with pytest.raises(ValueError, match="capacity"):
        EvictionManager({}, MutexRegistry(), capacity=0)
    with pytest.raises(ValueError, match="fraction"):
        EvictionManager({}, MutexRegistry(), fraction=0.0)


def test_batch_size() -> None:
    """A batch is 20% of capacity, at least one."""
    assert _manager({}, capacity=1000)[0].batch_size == 200
    assert _manager({}, capacity=10)[0].batch_size == 2
    assert _manager({}, capacity=3)[0].batch_size == 1


def test_batch_evict_removes_least_recently_updated() -> None:
    """The oldest ``updated_at`` entries go first."""
    conversations = {f"c{i}": _state(f"c{i}", minutes=10 - i) for i in range(10)}
    manager, _ = _manager(conversations)
    assert manager.at_capacity()

    removed = manager.batch_evict()

    assert removed == ["c9", "c8"]
    assert len(conversations) == 8
    assert not manager.at_capacity()


def test_batch_evict_ties_keep_insertion_order() -> None:
    """Equal timestamps are evicted in insertion order."""
    conversations = {f"c{i}": _state(f"c{i}", minutes=0) for i in range(10)}
    manager, _ = _manager(conversations)
    assert manager.batch_evict() == ["c0", "c1"]


def test_batch_evict_when_far_over_capacity() -> None:
    """An overfull map is brought back below capacity in one batch."""
    conversations = {f"c{i}": _state(f"c{i}", minutes=i) for i in range(15)}
    manager, _ = _manager(conversations)

    removed = manager.batch_evict()

    assert len(removed) == 6
    assert len(conversations) == 9


@pytest.mark.asyncio
async def test_remove_revokes_lock() -> None:
    """Removing a conversation drops its lock entry too."""
    conversations = {"c1": _state("c1", minutes=0)}
    manager, locks = _manager(conversations)
    await locks.acquire("c1")
    assert locks.is_locked("c1")

    assert manager.remove("c1")
    assert not locks.is_locked("c1")
    assert "c1" not in conversations
    assert not manager.remove("c1")


def test_reap_only_removes_old_empty_conversations() -> None:
    """Reaping keeps anything recent or with messages."""
    conversations = {
        "old-empty": _state("old-empty", minutes=0),
        "old-full": _state("old-full", minutes=0, empty=False),
        "new-empty": _state("new-empty", minutes=60 * 24),
    }
    manager, _ = _manager(conversations)

    now = START + timedelta(hours=24, minutes=1)
    assert manager.reap(now) == ["old-empty"]
    assert set(conversations) == {"old-full", "new-empty"}
    assert manager.reap(now) == []
