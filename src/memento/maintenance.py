"""Periodic memory maintenance: expiry, decay and pruning."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from .logging import JSONLLogger
from .models import MaintenanceResult
from .store import MemoryStore
from .vector import VectorIndex

logger = logging.getLogger(__name__)


class MemoryMaintenance:
    """Ages and evicts stored memories.

    Steps run in order (expire, decay, prune, purge history) and each one is
    isolated: a failing step is logged and recorded in the result while the
    remaining steps still run.
    """

    def __init__(
        self,
        store: MemoryStore,
        index: VectorIndex | None = None,
        collection: str | None = None,
        superseded_retention_days: int | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        """Initialize maintenance.

        Args:
            store: The MemoryStore to maintain.
            index: Vector index whose entries are removed with deleted records.
            collection: Collection holding the memory vectors.
            superseded_retention_days: Purge superseded records older than
                this many days; None keeps them forever.
            event_log: Optional JSONL event log.
        """
        self.store = store
        self.index = index
        self.collection = collection
        self.superseded_retention_days = superseded_retention_days
        self.event_log = event_log

    async def run(
        self,
        decay_factor: float = 0.95,
        min_importance: float = 0.1,
        stale_days: int = 90,
    ) -> MaintenanceResult:
        """Run all maintenance steps.

        Args:
            decay_factor: Multiplier for importance decay.
            min_importance: Delete stale memories below this importance.
            stale_days: Consider stale if not accessed in this many days.

        Returns:
            Counts of each action.
        """
        started = time.monotonic()
        result = MaintenanceResult()
        logger.info("Starting memory maintenance")

        expired = await self._step("expire", result, self.store.cleanup_expired_memories)
        if expired is not None:
            result.expired_cleaned = len(expired)
            await self._remove_vectors(expired)

        decayed = await self._step(
            "decay", result, lambda: self.store.decay_importance(decay_factor)
        )
        if decayed is not None:
            result.decayed = decayed

        pruned = await self._step(
            "prune", result, lambda: self.store.prune_memories(min_importance, stale_days)
        )
        if pruned is not None:
            result.pruned = len(pruned)
            await self._remove_vectors(pruned)

        if self.superseded_retention_days is not None:
            retention = self.superseded_retention_days
            purged = await self._step(
                "purge_history", result, lambda: self.store.purge_superseded(retention)
            )
            if purged is not None:
                result.history_purged = len(purged)
                await self._remove_vectors(purged)

        duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            "Maintenance complete - expired: %d, decayed: %d, pruned: %d, history purged: %d",
            result.expired_cleaned,
            result.decayed,
            result.pruned,
            result.history_purged,
        )
        if self.event_log is not None:
            self.event_log.log_maintenance(
                {
                    "expired_cleaned": result.expired_cleaned,
                    "decayed": result.decayed,
                    "pruned": result.pruned,
                    "history_purged": result.history_purged,
                },
                duration_ms=duration_ms,
                errors=result.errors,
            )
        return result

    async def _step(self, name: str, result: MaintenanceResult, func: Callable):
        try:
            return func()
        except Exception:
            logger.exception("Maintenance step '%s' failed", name)
            result.errors.append(name)
            return None

    async def _remove_vectors(self, ids: list[str]) -> None:
        if not ids or self.index is None or self.collection is None:
            return
        try:
            await self.index.delete(self.collection, ids)
        except Exception as e:
            logger.warning(f"Failed to remove {len(ids)} vectors: {e}")


class MaintenanceScheduler:
    """Runs maintenance periodically in the background."""

    def __init__(
        self,
        job: Callable[[], Awaitable[MaintenanceResult]],
        interval: float = 24 * 60 * 60,
        startup_delay: float = 5 * 60,
    ) -> None:
        self._job = job
        self.interval = interval
        self.startup_delay = startup_delay
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        """Background task for periodic maintenance."""
        delay = self.startup_delay
        while True:
            try:
                await asyncio.sleep(delay)
                await self._job()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Scheduled maintenance failed")
            delay = self.interval

    def start(self) -> None:
        """Start the background maintenance task."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())

    def stop(self) -> None:
        """Stop the background maintenance task."""
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None
