"""Background processing of buffered conversation turns."""

from __future__ import annotations

import logging
import time

from .buffer import DEFAULT_SOURCE, MessageBuffer
from .consolidation import Consolidator
from .errors import ConsistencyError, TransientIOError
from .extractor import MemoryExtractor
from .logging import JSONLLogger
from .models import (
    BufferedTurn,
    CandidateMemory,
    ConsolidationAction,
    ConsolidationResult,
    CycleReport,
    MemoryRecord,
    VectorEntry,
)
from .store import MemoryStore, to_timestamp
from .vector import MEMORY_TYPE, VectorIndex

logger = logging.getLogger(__name__)


def memory_payload(record: MemoryRecord) -> dict:
    """Vector payload mirroring a memory record."""
    return {
        "type": MEMORY_TYPE,
        "source": f"memory:{record.id}",
        "content": record.content,
        "category": record.category.value,
        "importance": record.importance,
        "created_at": to_timestamp(record.created_at),
        "source_type": record.source_type,
    }


class MemoryWorker:
    """Turns buffered conversation turns into stored memories.

    One call to process_buffer() is one cycle: take the buffer, extract
    candidates, consolidate each one and persist the outcome. Failures are
    contained per candidate so one bad memory never costs the others.
    """

    def __init__(
        self,
        buffer: MessageBuffer,
        extractor: MemoryExtractor | None,
        consolidator: Consolidator,
        store: MemoryStore,
        index: VectorIndex,
        collection: str,
        enabled: bool = True,
        event_log: JSONLLogger | None = None,
    ) -> None:
        self.buffer = buffer
        self.extractor = extractor
        self.consolidator = consolidator
        self.store = store
        self.index = index
        self.collection = collection
        self.enabled = enabled
        self.event_log = event_log

    async def process_buffer(self) -> CycleReport | None:
        """Process everything currently buffered.

        Returns:
            The cycle report, or None if there was nothing to process.
        """
        # Take before any await so turns arriving mid-cycle go to the next one
        turns = self.buffer.take()
        if not turns:
            logger.debug("No turns to process")
            return None

        if not self.enabled:
            logger.info("Memory disabled, dropped %d buffered turns", len(turns))
            return None

        return await self.process_turns(turns)

    async def process_turns(self, turns: list[BufferedTurn]) -> CycleReport:
        """Extract, consolidate and persist memories from the given turns."""
        started = time.monotonic()
        report = CycleReport(turns=len(turns))
        source_type = MessageBuffer.dominant_source(turns) or DEFAULT_SOURCE

        transcript = MessageBuffer.format(turns)
        if self.extractor is None:
            logger.warning("No extractor configured, dropped %d turns", len(turns))
            candidates = []
        else:
            try:
                candidates = await self.extractor.extract(transcript)
            except Exception:
                logger.exception("Extractor raised, treating as no memories")
                candidates = []
        report.extracted = len(candidates)

        for candidate in candidates:
            try:
                action = await self.process_candidate(candidate, source_type)
            except Exception as e:
                report.failed += 1
                logger.warning(f"Failed to process memory '{candidate.content[:40]}': {e}")
                continue
            if action is ConsolidationAction.SKIP:
                report.skipped += 1
            elif action is ConsolidationAction.SUPERSEDE:
                report.superseded += 1
            else:
                report.stored += 1

        logger.info(
            "Processed %d turns: %d extracted, %d stored, %d skipped, %d superseded, %d failed",
            report.turns,
            report.extracted,
            report.stored,
            report.skipped,
            report.superseded,
            report.failed,
        )
        if self.event_log is not None:
            self.event_log.log_cycle(
                {
                    "turns": report.turns,
                    "extracted": report.extracted,
                    "stored": report.stored,
                    "skipped": report.skipped,
                    "superseded": report.superseded,
                    "failed": report.failed,
                },
                duration_ms=(time.monotonic() - started) * 1000,
                source_type=source_type,
            )
        return report

    async def process_candidate(
        self, candidate: CandidateMemory, source_type: str = DEFAULT_SOURCE
    ) -> ConsolidationAction:
        """Consolidate one candidate and apply the decision.

        Returns:
            The action actually applied. A skip whose target vanished is
            applied as a store.

        Raises:
            TransientIOError: If the candidate could not be embedded.
        """
        result = await self.consolidator.consolidate(candidate)
        action = result.action

        if action is ConsolidationAction.SKIP and result.existing_id:
            try:
                self._boost(result.existing_id)
            except ConsistencyError as e:
                logger.info(f"{e}, storing candidate instead")
                await self._remove_stale_vector(result.existing_id)
                action = ConsolidationAction.STORE
            else:
                self._log_decision(action, result.existing_id, result.existing_id, result)
                return action

        if result.vector is None:
            raise TransientIOError("Consolidation returned no embedding")

        record = self.store.save_memory(candidate, source_type)

        if action is ConsolidationAction.SUPERSEDE and result.existing_id:
            await self._supersede(result.existing_id, record.id)

        try:
            await self.index.upsert(
                self.collection,
                [VectorEntry(id=record.id, vector=result.vector, payload=memory_payload(record))],
            )
        except (TransientIOError, OSError) as e:
            logger.warning(f"Stored memory {record.id} without embedding: {e}")

        self._log_decision(action, record.id, result.existing_id, result)
        return action

    def _boost(self, memory_id: str) -> None:
        if not self.store.boost_importance(memory_id):
            raise ConsistencyError(memory_id)

    async def _remove_stale_vector(self, memory_id: str) -> None:
        try:
            await self.index.delete(self.collection, [memory_id])
        except (TransientIOError, OSError) as e:
            logger.warning(f"Failed to remove stale vector {memory_id}: {e}")

    async def _supersede(self, old_id: str, new_id: str) -> None:
        if not self.store.mark_superseded(old_id, new_id):
            logger.info("Superseded memory %s no longer exists", old_id)
            return
        try:
            await self.index.delete(self.collection, [old_id])
        except (TransientIOError, OSError) as e:
            # Retrieval drops superseded records regardless of the index
            logger.warning(f"Failed to remove vector for superseded memory {old_id}: {e}")
        logger.info("Memory %s superseded by %s", old_id, new_id)

    def _log_decision(
        self,
        action: ConsolidationAction,
        memory_id: str,
        existing_id: str | None,
        result: ConsolidationResult,
    ) -> None:
        if self.event_log is None:
            return
        self.event_log.log_consolidation(
            action.value,
            memory_id=memory_id,
            existing_id=existing_id if existing_id != memory_id else None,
            score=result.score,
            reason=result.reason,
        )
