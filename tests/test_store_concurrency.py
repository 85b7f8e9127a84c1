"""Concurrency tests for per-conversation serialization in the store."""

from __future__ import annotations

import asyncio

import pytest

from conversation_state.config import CompressionConfig, ConversationConfig
from conversation_state.errors import LockTimeoutError, NotFoundError
from conversation_state.store import ConversationStore
from tests.mocks.compression import FakeCompressionService, SlowCompressionService
from tests.mocks.items import message


def _config() -> ConversationConfig:
    return ConversationConfig(
        max_tokens=1000,
        compression=CompressionConfig(enabled=True),
    )


async def _wait_for_waiter(store: ConversationStore, conversation_id: str) -> None:
    while store.locks.waiter_count(conversation_id) == 0:
        await asyncio.sleep(0)


@pytest.mark.asyncio
@pytest.mark.parametrize("with_service", [False, True])
async def test_concurrent_updates_are_serialized(with_service: bool) -> None:
    """N concurrent updates produce N turns and keep every item."""
    service = FakeCompressionService(tokens_per_item=1) if with_service else None
    store = ConversationStore(_config(), service)
    await store.create("c1")
    n = 50

    await asyncio.gather(*(store.update("c1", [message(f"u{i}")]) for i in range(n)))

    state = await store.get("c1")
    assert state is not None
    assert state.metrics.turn_count == n
    assert sorted(m.text() for m in state.messages) == sorted(f"u{i}" for i in range(n))
    assert store.locks.active_locks == 0


@pytest.mark.asyncio
async def test_two_updates_keep_both_payloads_in_acquisition_order() -> None:
    """Both payloads survive, in the order the lock was taken."""
    store = ConversationStore(_config(), FakeCompressionService(tokens_per_item=1))
    await store.create("c1")

    await asyncio.gather(
        store.update("c1", [message("a1"), message("a2")]),
        store.update("c1", [message("b1"), message("b2")]),
    )

    state = await store.get("c1")
    assert state is not None
    assert [m.text() for m in state.messages] == ["a1", "a2", "b1", "b2"]
    assert state.metrics.turn_count == 2


@pytest.mark.asyncio
async def test_updates_on_different_conversations_do_not_block() -> None:
    """A busy conversation does not delay another one."""
    service = SlowCompressionService(tokens_per_item=1)
    store = ConversationStore(_config(), service, lock_timeout=0.05)
    await store.create("busy")
    await store.create("free")

    holder = asyncio.create_task(store.update("busy", [message("slow")]))
    await service.entered.wait()
    service.entered.clear()

    # "free" goes through the same slow service, so release it right away
    service.release.set()
    await store.update("free", [message("fast")])
    await holder

    free = await store.get("free")
    assert free is not None
    assert free.metrics.turn_count == 1


@pytest.mark.asyncio
async def test_lock_timeout_fails_the_waiter_not_the_holder() -> None:
    """A waiter gives up after the timeout; the holder still commits."""
    service = SlowCompressionService(tokens_per_item=1)
    store = ConversationStore(_config(), service, lock_timeout=0.05)
    await store.create("c1")

    holder = asyncio.create_task(store.update("c1", [message("first")]))
    await service.entered.wait()

    with pytest.raises(LockTimeoutError) as exc_info:
        await store.update("c1", [message("second")])
    assert exc_info.value.conversation_id == "c1"

    # Reads never wait for the lock
    snapshot = await store.get("c1")
    assert snapshot is not None
    assert snapshot.messages == []

    service.release.set()
    await holder

    state = await store.get("c1")
    assert state is not None
    assert [m.text() for m in state.messages] == ["first"]
    assert state.metrics.turn_count == 1
    assert store.locks.active_locks == 0


@pytest.mark.asyncio
async def test_delete_while_waiting_raises_not_found() -> None:
    """Deleting a conversation fails both its holder and its queued waiters."""
    service = SlowCompressionService(tokens_per_item=1)
    store = ConversationStore(_config(), service)
    await store.create("c1")

    holder = asyncio.create_task(store.update("c1", [message("first")]))
    await service.entered.wait()
    waiter = asyncio.create_task(store.update("c1", [message("second")]))
    await _wait_for_waiter(store, "c1")

    await store.delete("c1")
    with pytest.raises(NotFoundError):
        await waiter

    service.release.set()
    with pytest.raises(NotFoundError):
        await holder

    assert await store.get("c1") is None
    assert store.locks.active_locks == 0


@pytest.mark.asyncio
async def test_recreated_conversation_is_not_overwritten_by_stale_holder() -> None:
    """A holder whose conversation was replaced does not commit into the new one."""
    service = SlowCompressionService(tokens_per_item=1)
    store = ConversationStore(_config(), service)
    await store.create("c1")

    holder = asyncio.create_task(store.update("c1", [message("stale")]))
    await service.entered.wait()

    await store.delete("c1")
    await store.create("c1")

    service.release.set()
    with pytest.raises(NotFoundError):
        await holder

    state = await store.get("c1")
    assert state is not None
    assert state.messages == []
    assert state.metrics.turn_count == 0


@pytest.mark.asyncio
async def test_clear_while_waiting() -> None:
    """Clearing the store fails queued mutations with NotFoundError."""
    service = SlowCompressionService(tokens_per_item=1)
    store = ConversationStore(_config(), service)
    await store.create("c1")

    holder = asyncio.create_task(store.update("c1", [message("first")]))
    await service.entered.wait()
    waiter = asyncio.create_task(store.compress_conversation("c1"))
    await _wait_for_waiter(store, "c1")

    await store.clear()
    with pytest.raises(NotFoundError):
        await waiter

    service.release.set()
    with pytest.raises(NotFoundError):
        await holder
