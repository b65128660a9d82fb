"""Shared fixtures for memory tests."""

from pathlib import Path

import pytest

from helpers import COLLECTION, FakeClock, FakeEmbedder, FakeExtractor, FakeJudge, ManualSleep
from memento.models import CandidateMemory, MemoryCategory, MemoryRecord, VectorEntry
from memento.store import MemoryStore
from memento.vector import SQLiteVectorIndex
from memento.worker import memory_payload


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> MemoryStore:
    """Create a MemoryStore with a temporary database."""
    store = MemoryStore(tmp_path / "memory.db", now=clock)
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def index(tmp_path: Path) -> SQLiteVectorIndex:
    """Create a vector index with a temporary database."""
    index = SQLiteVectorIndex(tmp_path / "vectors.db")
    index.init_db()
    yield index
    index.close()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def judge() -> FakeJudge:
    return FakeJudge()


@pytest.fixture
def manual_sleep() -> ManualSleep:
    return ManualSleep()


@pytest.fixture
def remember(store: MemoryStore, index: SQLiteVectorIndex, embedder: FakeEmbedder):
    """Store a memory with its vector, the way the worker does."""

    async def _remember(
        content: str,
        category: MemoryCategory = MemoryCategory.FACTUAL,
        importance: float = 0.5,
    ) -> MemoryRecord:
        record = store.save_memory(CandidateMemory(content, category, importance))
        vector = await embedder.embed(content)
        await index.upsert(
            COLLECTION, [VectorEntry(id=record.id, vector=vector, payload=memory_payload(record))]
        )
        return record

    return _remember
