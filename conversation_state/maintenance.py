"""Background scheduler for periodic store maintenance."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from conversation_state.store import ConversationStore

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """Runs periodic cleanup (and optional health sweeps) against a store.

    The store itself never starts timers; this scheduler is the external
    collaborator that calls ``perform_periodic_cleanup`` on an interval.
    """

    def __init__(
        self,
        store: ConversationStore,
        *,
        cleanup_interval: float = 3600.0,
        health_check_interval: float | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: The store to maintain.
            cleanup_interval: Seconds between periodic cleanups.
            health_check_interval: Seconds between health sweeps, or None to
                disable them. Sweeps only run while the store has a
                compression service attached.

        """
        if cleanup_interval <= 0:
            msg = f"cleanup_interval must be > 0, got {cleanup_interval}"
            raise ValueError(msg)
        if health_check_interval is not None and health_check_interval <= 0:
            msg = f"health_check_interval must be > 0, got {health_check_interval}"
            raise ValueError(msg)
        self._store = store
        self._cleanup_interval = cleanup_interval
        self._health_check_interval = health_check_interval
        self._tasks: list[asyncio.Task[None]] = []

    @classmethod
    def from_store_config(
        cls,
        store: ConversationStore,
        *,
        cleanup_interval: float = 3600.0,
    ) -> MaintenanceScheduler:
        """Build a scheduler whose health sweeps follow the store's configured interval."""
        return cls(
            store,
            cleanup_interval=cleanup_interval,
            health_check_interval=store.config.health_check_interval,
        )

    @property
    def running(self) -> bool:
        """Check whether the background tasks are running."""
        return bool(self._tasks)

    async def start(self) -> None:
        """Start the background tasks."""
        if self._tasks:
            return
        self._tasks.append(
            asyncio.create_task(self._every(self._cleanup_interval, self.run_cleanup)),
        )
        if self._health_check_interval is not None:
            self._tasks.append(
                asyncio.create_task(
                    self._every(self._health_check_interval, self.run_health_sweep),
                ),
            )
        logger.info(
            "Started maintenance scheduler (cleanup every %gs, health every %s)",
            self._cleanup_interval,
            f"{self._health_check_interval:g}s" if self._health_check_interval else "never",
        )

    async def stop(self) -> None:
        """Cancel the background tasks and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if tasks:
            logger.info("Stopped maintenance scheduler")

    async def run_cleanup(self) -> int:
        """Run one periodic cleanup. Returns the number of reaped conversations."""
        return await self._store.perform_periodic_cleanup()

    async def run_health_sweep(self) -> int:
        """Revalidate every conversation's health. Returns how many were checked."""
        if not self._store.has_compression_service:
            return 0
        return await self._store.validate_all_health()

    async def _every(self, interval: float, job: Callable[[], Awaitable[int]]) -> None:
        while True:
            try:
                await asyncio.sleep(interval)
                await job()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in maintenance job")
