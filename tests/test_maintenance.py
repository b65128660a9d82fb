"""Tests for memory maintenance."""

import asyncio
import json
import sqlite3
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from helpers import COLLECTION, FakeClock
from memento.logging import JSONLLogger
from memento.maintenance import MaintenanceScheduler, MemoryMaintenance
from memento.models import MaintenanceResult, MemoryCategory
from memento.store import MemoryStore
from memento.vector import SQLiteVectorIndex


@pytest.fixture
def maintenance(store: MemoryStore, index: SQLiteVectorIndex) -> MemoryMaintenance:
    return MemoryMaintenance(store, index, COLLECTION)


class TestMaintenanceRun:
    """Tests for a maintenance run."""

    @pytest.mark.asyncio
    async def test_prunes_only_stale(
        self, maintenance: MemoryMaintenance, store: MemoryStore, clock: FakeClock, remember
    ):
        """A record idle for 100 days is pruned, one idle for 10 days is kept."""
        stale = await remember("User once mentioned a podcast", importance=0.05)
        clock.advance(days=90)
        recent = await remember("User mentioned a newsletter", importance=0.05)
        clock.advance(days=10)

        result = await maintenance.run(stale_days=90, min_importance=0.1)

        assert result.pruned == 1
        assert result.errors == []
        assert store.get(stale.id) is None
        assert store.get(recent.id) is not None

    @pytest.mark.asyncio
    async def test_pruned_vectors_removed(
        self,
        maintenance: MemoryMaintenance,
        index: SQLiteVectorIndex,
        clock: FakeClock,
        remember,
    ):
        await remember("stale", importance=0.05)
        await remember("kept", importance=0.9)
        clock.advance(days=100)

        await maintenance.run()

        assert index.count(COLLECTION) == 1

    @pytest.mark.asyncio
    async def test_expires_temporal(
        self,
        maintenance: MemoryMaintenance,
        store: MemoryStore,
        index: SQLiteVectorIndex,
        clock: FakeClock,
        remember,
    ):
        demo = await remember("User has a demo on Tuesday", MemoryCategory.TEMPORAL, 0.9)
        clock.advance(days=8)

        result = await maintenance.run()

        assert result.expired_cleaned == 1
        assert store.get(demo.id) is None
        assert index.count(COLLECTION) == 0

    @pytest.mark.asyncio
    async def test_decays(
        self, maintenance: MemoryMaintenance, store: MemoryStore, clock: FakeClock, remember
    ):
        record = await remember("User likes chess", importance=0.8)
        clock.advance(days=8)

        result = await maintenance.run(decay_factor=0.5)

        assert result.decayed == 1
        assert store.get(record.id).importance == pytest.approx(0.4)

    @pytest.mark.asyncio
    async def test_superseded_kept_by_default(
        self, maintenance: MemoryMaintenance, store: MemoryStore, clock: FakeClock, remember
    ):
        old = await remember("Deadline is Monday", importance=0.01)
        new = await remember("Deadline is Friday", importance=0.9)
        store.mark_superseded(old.id, new.id)
        clock.advance(days=400)

        result = await maintenance.run()

        assert result.history_purged == 0
        assert store.get(old.id) is not None

    @pytest.mark.asyncio
    async def test_history_purged_with_retention(
        self, store: MemoryStore, index: SQLiteVectorIndex, clock: FakeClock, remember
    ):
        maintenance = MemoryMaintenance(store, index, COLLECTION, superseded_retention_days=30)
        old = await remember("Deadline is Monday", importance=0.9)
        new = await remember("Deadline is Friday", importance=0.9)
        store.mark_superseded(old.id, new.id)
        clock.advance(days=31)

        result = await maintenance.run()

        assert result.history_purged == 1
        assert store.get(old.id) is None
        assert store.get(new.id) is not None

    @pytest.mark.asyncio
    async def test_failing_step_is_isolated(
        self, maintenance: MemoryMaintenance, store: MemoryStore, clock: FakeClock, remember
    ):
        """A failing decay step does not stop pruning."""
        stale = await remember("stale", importance=0.05)
        clock.advance(days=100)
        store.decay_importance = Mock(side_effect=sqlite3.OperationalError("database is locked"))

        result = await maintenance.run()

        assert result.errors == ["decay"]
        assert result.pruned == 1
        assert store.get(stale.id) is None

    @pytest.mark.asyncio
    async def test_vector_failure_does_not_fail_run(
        self, store: MemoryStore, clock: FakeClock, remember
    ):
        index = AsyncMock()
        index.delete = AsyncMock(side_effect=Exception("index down"))
        maintenance = MemoryMaintenance(store, index, COLLECTION)
        await remember("stale", importance=0.05)
        clock.advance(days=100)

        result = await maintenance.run()

        assert result.pruned == 1
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_event_logged(self, store: MemoryStore, tmp_path: Path):
        event_log = JSONLLogger(log_dir=tmp_path / "logs")
        maintenance = MemoryMaintenance(store, event_log=event_log)

        await maintenance.run()

        entry = json.loads(event_log.log_path.read_text().splitlines()[0])
        assert entry["event"] == "maintenance"
        assert entry["counts"] == {
            "expired_cleaned": 0,
            "decayed": 0,
            "pruned": 0,
            "history_purged": 0,
        }


class TestMaintenanceScheduler:
    """Tests for periodic scheduling."""

    @pytest.mark.asyncio
    async def test_runs_periodically(self):
        job = AsyncMock(return_value=MaintenanceResult())
        scheduler = MaintenanceScheduler(job, interval=0.01, startup_delay=0)

        scheduler.start()
        assert scheduler.is_running
        await asyncio.sleep(0.1)
        scheduler.stop()

        assert job.await_count >= 2
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_job_failure_keeps_running(self):
        calls = []

        async def job() -> MaintenanceResult:
            calls.append(len(calls))
            if len(calls) == 1:
                raise RuntimeError("boom")
            return MaintenanceResult()

        scheduler = MaintenanceScheduler(job, interval=0.01, startup_delay=0)

        scheduler.start()
        await asyncio.sleep(0.1)
        scheduler.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_startup_delay(self):
        job = AsyncMock(return_value=MaintenanceResult())
        scheduler = MaintenanceScheduler(job, interval=60, startup_delay=60)

        scheduler.start()
        await asyncio.sleep(0.02)
        scheduler.stop()

        job.assert_not_awaited()
