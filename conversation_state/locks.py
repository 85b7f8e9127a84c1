"""Per-conversation async mutex registry with bounded waits.

Each key gets a FIFO mutex that exists only while it is held or contended:
the entry is created by the first ``acquire`` and dropped as soon as the last
holder releases it. Ownership is handed directly from the releasing holder to
the oldest waiter, so a newcomer can never barge ahead of a queued task.

A waiter that cannot get the lock within ``timeout`` seconds gives up with
``LockTimeoutError``; the current holder is not interrupted. ``force_release``
revokes a key's entry (used when a conversation is deleted or evicted): its
queued waiters re-enter acquisition against a fresh entry and the revoked
holder's eventual ``release`` becomes a no-op.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import TYPE_CHECKING

from conversation_state.constants import LOCK_TIMEOUT_SECONDS
from conversation_state.errors import LockTimeoutError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


class _KeyLock:
    """Lock state of a single key. Present in the registry only while held."""

    __slots__ = ("key", "waiters")

    def __init__(self, key: str) -> None:
        self.key = key
        # Each waiter resolves to True when ownership is handed to it,
        # or to False when the entry was revoked and it must queue again.
        self.waiters: deque[asyncio.Future[bool]] = deque()


class LockToken:
    """Proof of ownership returned by ``MutexRegistry.acquire``."""

    __slots__ = ("_entry", "key", "released")

    def __init__(self, key: str, entry: _KeyLock) -> None:
        self.key = key
        self._entry = entry
        self.released = False

    def __repr__(self) -> str:
        return f"LockToken(key={self.key!r}, released={self.released})"


class MutexRegistry:
    """Registry of per-key FIFO mutexes with a bounded wait."""

    def __init__(self, timeout: float = LOCK_TIMEOUT_SECONDS) -> None:
        """Initialize the registry.

        Args:
            timeout: Seconds a waiter may wait before giving up.

        """
        if timeout <= 0:
            msg = f"timeout must be > 0, got {timeout}"
            raise ValueError(msg)
        self._timeout = timeout
        self._locks: dict[str, _KeyLock] = {}

    @property
    def timeout(self) -> float:
        """Get the acquisition timeout in seconds."""
        return self._timeout

    @property
    def active_locks(self) -> int:
        """Number of keys currently held."""
        return len(self._locks)

    def is_locked(self, key: str) -> bool:
        """Check whether ``key`` is currently held."""
        return key in self._locks

    def waiter_count(self, key: str) -> int:
        """Number of tasks queued behind the holder of ``key``."""
        entry = self._locks.get(key)
        if entry is None:
            return 0
        return sum(1 for fut in entry.waiters if not fut.done())

    async def acquire(self, key: str) -> LockToken:
        """Wait for ``key`` and take ownership of it.

        Raises:
            LockTimeoutError: If the lock was not obtained within the timeout.

        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout

        while True:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock(key)
                self._locks[key] = entry
                return LockToken(key, entry)

            fut: asyncio.Future[bool] = loop.create_future()
            entry.waiters.append(fut)
            try:
                granted = await asyncio.wait_for(fut, max(0.0, deadline - loop.time()))
            except TimeoutError:
                self._abandon(entry, fut)
                logger.warning(
                    "Lock timeout for conversation %s after %gs",
                    key,
                    self._timeout,
                )
                raise LockTimeoutError(key, self._timeout) from None
            except asyncio.CancelledError:
                self._abandon(entry, fut)
                raise

            if granted:
                return LockToken(key, entry)
            logger.debug("Lock for %s was revoked while waiting, re-queueing", key)

    def release(self, token: LockToken) -> None:
        """Give up ownership and hand the lock to the next waiter, if any."""
        if token.released:
            return
        token.released = True
        entry = self._locks.get(token.key)
        if entry is not token._entry:  # noqa: SLF001
            logger.debug("Ignoring release of revoked lock for %s", token.key)
            return
        self._hand_over(entry)

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[LockToken]:
        """Hold ``key`` for the duration of the ``async with`` block."""
        token = await self.acquire(key)
        try:
            yield token
        finally:
            self.release(token)

    def force_release(self, key: str) -> bool:
        """Revoke the entry for ``key``.

        Queued waiters are woken and compete for a fresh entry. Returns True if
        there was an entry to revoke.
        """
        entry = self._locks.pop(key, None)
        if entry is None:
            return False
        waiters = list(entry.waiters)
        entry.waiters.clear()
        for fut in waiters:
            if not fut.done():
                fut.set_result(False)
        logger.debug("Force-released lock for %s (%d waiter(s) re-queued)", key, len(waiters))
        return True

    def force_release_all(self) -> int:
        """Revoke every entry. Returns the number of revoked keys."""
        return sum(self.force_release(key) for key in list(self._locks))

    def _hand_over(self, entry: _KeyLock) -> None:
        while entry.waiters:
            fut = entry.waiters.popleft()
            if not fut.done():
                fut.set_result(True)
                return
        del self._locks[entry.key]

    def _abandon(self, entry: _KeyLock, fut: asyncio.Future[bool]) -> None:
        """Clean up after a waiter that stopped waiting."""
        if fut.done() and not fut.cancelled() and fut.result():
            # Ownership arrived as the wait ended; pass it on.
            self.release(LockToken(entry.key, entry))
            return
        with contextlib.suppress(ValueError):
            entry.waiters.remove(fut)
