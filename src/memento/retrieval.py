"""Memory retrieval: semantic search ranked by importance and recency."""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Callable

from .embeddings import Embedder
from .errors import TransientIOError
from .models import FormattedContext, MemoryCategory, MemorySearchResult, MemoryRecord
from .store import MemoryStore, utc_now
from .vector import MEMORY_FILTER, VectorIndex

logger = logging.getLogger(__name__)

SEMANTIC_WEIGHT = 0.5
IMPORTANCE_WEIGHT = 0.25
RECENCY_WEIGHT = 0.25
CANDIDATE_MULTIPLIER = 3
UNKNOWN_AGE_RECENCY = 0.7


def recency_factor(created_at: datetime | None, now: datetime) -> float:
    """1.0 for a memory created now, falling linearly to 0.5 at 30 days and beyond."""
    if created_at is None:
        return UNKNOWN_AGE_RECENCY
    age_days = (now - created_at).total_seconds() / 86400
    return max(0.5, min(1.0, 1 - age_days / 60))


def combined_score(semantic: float, importance: float, recency: float) -> float:
    return (
        semantic * SEMANTIC_WEIGHT
        + importance * IMPORTANCE_WEIGHT
        + recency * RECENCY_WEIGHT
    )


class MemoryRetriever:
    """Finds the memories most relevant to a query."""

    def __init__(
        self,
        store: MemoryStore,
        index: VectorIndex,
        embedder: Embedder,
        collection: str,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.index = index
        self.embedder = embedder
        self.collection = collection
        self._now = now
        self._background: set[asyncio.Task] = set()

    async def search(
        self, query: str, limit: int = 5, min_score: float = 0.4
    ) -> list[MemorySearchResult]:
        """Search for memories relevant to a query.

        Args:
            query: The user message to find memories for.
            limit: Maximum number of memories to return.
            min_score: Minimum semantic similarity.

        Returns:
            Memories sorted by combined score, empty on any failure.
        """
        if not query.strip() or limit <= 0:
            return []

        try:
            vector = await self.embedder.embed(query)
            matches = await self.index.search(
                self.collection, vector, limit * CANDIDATE_MULTIPLIER, MEMORY_FILTER
            )
        except (TransientIOError, OSError) as e:
            logger.warning(f"Memory search failed: {e}")
            return []

        matches = [m for m in matches if m.score >= min_score]
        if not matches:
            return []

        # The store is authoritative for importance and supersession
        try:
            records = self.store.get_many([m.id for m in matches])
        except sqlite3.Error as e:
            logger.warning(f"Memory lookup failed: {e}")
            return []
        now = self._now()
        results = []
        for match in matches:
            record = records.get(match.id)
            if record is None:
                continue
            results.append(self._rank(record, match.score, now))

        results.sort(key=lambda r: (-r.score, -r.semantic_score, r.id))
        results = results[:limit]

        if results:
            self.track_access_later([r.id for r in results])
        logger.debug("Found %d relevant memories", len(results))
        return results

    def _rank(self, record: MemoryRecord, semantic: float, now: datetime) -> MemorySearchResult:
        return MemorySearchResult(
            id=record.id,
            content=record.content,
            category=record.category,
            importance=record.importance,
            score=combined_score(
                semantic, record.importance, recency_factor(record.created_at, now)
            ),
            semantic_score=semantic,
            created_at=record.created_at,
        )

    def track_access_later(self, ids: list[str]) -> asyncio.Task:
        """Record access for retrieved memories in a background task."""
        task = asyncio.create_task(self._track_access(ids))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _track_access(self, ids: list[str]) -> None:
        try:
            self.store.track_access(ids)
        except Exception as e:
            logger.warning(f"Failed to track memory access: {e}")

    async def drain(self) -> None:
        """Wait for pending access-tracking tasks."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def get_context(
        self, query: str, limit: int = 5, min_score: float = 0.4
    ) -> FormattedContext:
        """Search and format memories for prompt injection."""
        memories = await self.search(query, limit, min_score)
        return FormattedContext(text=format_for_prompt(memories), memories=memories)


def format_for_prompt(memories: list[MemorySearchResult]) -> str:
    """Format memories as a block for injection ahead of the user prompt.

    Lines are grouped by category; groups appear in the order of their best
    memory, which is the order of the ranked input.

    Returns:
        XML-formatted memory block, or empty string if no memories.
    """
    if not memories:
        return ""

    groups: dict[MemoryCategory, list[MemorySearchResult]] = {}
    for memory in memories:
        groups.setdefault(memory.category, []).append(memory)

    lines = [
        f"- [{category.value}] {memory.content}"
        for category, group in groups.items()
        for memory in group
    ]
    content = "\n".join(lines)

    return f"""<user_memories>
The following memories are relevant to this conversation:

{content}
</user_memories>"""
