"""Memory consolidation: store, skip as duplicate, or supersede.

There is no exact key for a memory, so consolidation is an upsert over a
fuzzy key. The candidate is embedded, compared with its nearest stored
memories, and the closest related neighbor decides the action through the
SimilarityPolicy.
"""

from __future__ import annotations

import logging

from .embeddings import Embedder
from .errors import TransientIOError
from .models import (
    CandidateMemory,
    ConsolidationAction,
    ConsolidationResult,
    MemoryCategory,
    VectorMatch,
)
from .similarity import SimilarityPolicy
from .store import MemoryStore
from .vector import MEMORY_FILTER, VectorIndex

logger = logging.getLogger(__name__)

NEIGHBOR_COUNT = 5


class Consolidator:
    """Decides what to do with each candidate memory."""

    def __init__(
        self,
        index: VectorIndex,
        embedder: Embedder,
        collection: str,
        policy: SimilarityPolicy | None = None,
        store: MemoryStore | None = None,
    ) -> None:
        self.index = index
        self.embedder = embedder
        self.collection = collection
        self.policy = policy or SimilarityPolicy()
        self.store = store

    async def consolidate(self, candidate: CandidateMemory) -> ConsolidationResult:
        """Compare a candidate with existing memories.

        The returned result carries the candidate's embedding so the caller
        can index a stored memory without embedding it again.

        Raises:
            TransientIOError: If the candidate cannot be embedded.
        """
        vector = await self.embedder.embed(candidate.content)

        try:
            neighbors = await self.index.search(
                self.collection, vector, NEIGHBOR_COUNT, MEMORY_FILTER
            )
        except (TransientIOError, OSError) as e:
            # Storing a possible duplicate is safer than losing a memory
            logger.warning(f"Similarity search failed, storing anyway: {e}")
            return ConsolidationResult(
                action=ConsolidationAction.STORE,
                reason="Similarity search unavailable",
                vector=vector,
            )

        top = self._closest(self._live(neighbors))
        if top is None:
            return ConsolidationResult(
                action=ConsolidationAction.STORE,
                reason="No similar memories found",
                vector=vector,
            )

        action, reason = await self.policy.classify(
            candidate,
            existing_content=str(top.payload.get("content", "")),
            existing_category=MemoryCategory.parse(top.payload.get("category")),
            score=top.score,
        )
        logger.debug(
            "Consolidation %s (score %.2f vs %s): %s", action.value, top.score, top.id, reason
        )
        return ConsolidationResult(
            action=action,
            existing_id=top.id if action is not ConsolidationAction.STORE else None,
            score=top.score,
            reason=reason,
            vector=vector,
        )

    def _closest(self, neighbors: list[VectorMatch]) -> VectorMatch | None:
        """Highest-scoring related neighbor; the earlier one wins a tie."""
        best: VectorMatch | None = None
        for match in neighbors:
            if not self.policy.is_related(match.score):
                continue
            if best is None or match.score > best.score:
                best = match
        return best

    def _live(self, neighbors: list[VectorMatch]) -> list[VectorMatch]:
        """Drop neighbors whose record was deleted or superseded."""
        if self.store is None or not neighbors:
            return neighbors
        records = self.store.get_many([m.id for m in neighbors])
        live = [m for m in neighbors if m.id in records]
        if len(live) < len(neighbors):
            logger.debug("Ignoring %d stale memory vectors", len(neighbors) - len(live))
        return live
