"""Memory manager: the public surface of the memory system."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .buffer import DEFAULT_SOURCE, MessageBuffer
from .config import MemoryConfig
from .consolidation import Consolidator
from .maintenance import MaintenanceScheduler, MemoryMaintenance
from .models import FormattedContext, MaintenanceResult, MemoryCategory, MemoryRecord
from .retrieval import MemoryRetriever
from .scheduler import DebounceScheduler, SleepFunc
from .similarity import ContradictionJudge, SimilarityPolicy
from .store import MemoryStore
from .worker import MemoryWorker

if TYPE_CHECKING:
    from .embeddings import Embedder
    from .extractor import MemoryExtractor
    from .logging import JSONLLogger
    from .vector import VectorIndex

logger = logging.getLogger(__name__)


class MemoryManager:
    """Orchestrates memory operations for the rest of the application.

    Chat code submits turns and asks for context; everything else (batching,
    extraction, consolidation, maintenance) happens in the background. No
    method here raises because of an LLM, embedding or index failure.
    """

    def __init__(
        self,
        config: MemoryConfig,
        store: MemoryStore,
        index: VectorIndex,
        embedder: Embedder,
        extractor: MemoryExtractor | None,
        judge: ContradictionJudge | None = None,
        event_log: JSONLLogger | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        """Initialize the manager and wire its components.

        Args:
            config: Memory configuration.
            store: The MemoryStore for persistence.
            index: Vector index shared with the knowledge pipeline.
            embedder: Text embedder.
            extractor: LLM-backed memory extractor; None disables extraction.
            judge: Contradiction comparator for supersession.
            event_log: Optional JSONL event log.
            sleep: Sleep function for the debounce timer (tests).
        """
        self.config = config
        self.store = store
        self.index = index

        self.buffer = MessageBuffer()
        policy = SimilarityPolicy(
            duplicate_threshold=config.duplicate_threshold,
            conflict_threshold=config.conflict_threshold,
            identical_threshold=config.identical_threshold,
            judge=judge,
        )
        self.consolidator = Consolidator(index, embedder, config.collection, policy, store=store)
        self.worker = MemoryWorker(
            self.buffer,
            extractor,
            self.consolidator,
            store,
            index,
            config.collection,
            enabled=config.enabled,
            event_log=event_log,
        )
        scheduler_kwargs = {"sleep": sleep} if sleep is not None else {}
        self.scheduler = DebounceScheduler(
            self.worker.process_buffer, config.idle_seconds, **scheduler_kwargs
        )
        self.retriever = MemoryRetriever(store, index, embedder, config.collection)
        self.maintenance = MemoryMaintenance(
            store,
            index,
            config.collection,
            superseded_retention_days=config.superseded_retention_days,
            event_log=event_log,
        )
        self.maintenance_scheduler = MaintenanceScheduler(
            self._scheduled_maintenance,
            interval=config.maintenance_interval,
            startup_delay=config.maintenance_startup_delay,
        )

    def submit_turn(self, role: str, content: str, source: str = DEFAULT_SOURCE) -> None:
        """Buffer a conversation turn and restart the idle timer."""
        if not self.config.enabled:
            return
        self.buffer.add(role, content, source)
        self.scheduler.touch()

    def submit_exchange(
        self, user_message: str, assistant_message: str, source: str = DEFAULT_SOURCE
    ) -> None:
        """Buffer a user message with the assistant reply."""
        if not self.config.enabled:
            return
        self.buffer.add_exchange(user_message, assistant_message, source)
        self.scheduler.touch()

    async def force_flush(self) -> None:
        """Process buffered turns now (e.g. before shutdown)."""
        logger.info("Flushing memory buffer (%d turns)", len(self.buffer))
        await self.scheduler.flush()

    async def query_memories(
        self, query: str, limit: int = 5, min_score: float = 0.4
    ) -> FormattedContext:
        """Find memories relevant to a query, formatted for the prompt.

        Returns:
            An empty context when memory is disabled or nothing matches.
        """
        if not self.config.enabled:
            return FormattedContext(text="")
        try:
            return await self.retriever.get_context(query, limit, min_score)
        except Exception:
            logger.exception("Memory query failed")
            return FormattedContext(text="")

    async def run_maintenance(
        self,
        decay_factor: float | None = None,
        min_importance: float | None = None,
        stale_days: int | None = None,
    ) -> MaintenanceResult:
        """Expire, decay and prune memories. Defaults come from the config."""
        return await self.maintenance.run(
            decay_factor=self.config.decay_factor if decay_factor is None else decay_factor,
            min_importance=(
                self.config.min_importance if min_importance is None else min_importance
            ),
            stale_days=self.config.stale_days if stale_days is None else stale_days,
        )

    async def _scheduled_maintenance(self) -> MaintenanceResult:
        return await self.run_maintenance()

    def list_memories(
        self,
        category: MemoryCategory | str | None = None,
        limit: int = 50,
        offset: int = 0,
        include_superseded: bool = False,
    ) -> list[MemoryRecord]:
        """List stored memories, newest first."""
        if category is not None:
            category = MemoryCategory.parse(category)
        return self.store.list_memories(category, limit, offset, include_superseded)

    def get_memory(self, memory_id: str) -> MemoryRecord | None:
        """Get a stored memory by id."""
        return self.store.get(memory_id)

    async def delete_memory(self, memory_id: str) -> bool:
        """Delete a memory and its vector.

        Returns:
            True if the memory existed.
        """
        deleted = self.store.delete(memory_id)
        if deleted:
            await self._remove_vectors([memory_id])
        return deleted

    async def delete_all_memories(self) -> int:
        """Delete every memory and its vector. Returns how many were deleted."""
        ids = self.store.delete_all()
        await self._remove_vectors(ids)
        logger.info("Deleted all memories (%d)", len(ids))
        return len(ids)

    async def _remove_vectors(self, ids: list[str]) -> None:
        if not ids:
            return
        try:
            await self.index.delete(self.config.collection, ids)
        except Exception as e:
            logger.warning(f"Failed to remove {len(ids)} memory vectors: {e}")

    def start(self) -> None:
        """Start periodic maintenance."""
        if self.config.enabled:
            self.maintenance_scheduler.start()

    async def close(self) -> None:
        """Flush pending turns and stop background work."""
        self.maintenance_scheduler.stop()
        await self.force_flush()
        await self.scheduler.close()
        await self.retriever.drain()


def create_memory_manager(config: MemoryConfig | None = None) -> MemoryManager:
    """Build a MemoryManager with the production collaborators.

    Uses Groq for extraction and contradiction checks, sentence-transformers
    for embeddings and SQLite for records and vectors.
    """
    from groq import AsyncGroq

    from .embeddings import SentenceTransformerEmbedder
    from .extractor import GroqMemoryExtractor
    from .logging import configure_logger
    from .similarity import GroqContradictionJudge
    from .vector import SQLiteVectorIndex

    config = config or MemoryConfig.from_env()

    store = MemoryStore(config.db_path, temporal_ttl_days=config.temporal_ttl_days)
    store.init_db()
    index = SQLiteVectorIndex(config.vector_db_path)
    index.init_db()

    extractor = judge = None
    if config.api_key:
        client = AsyncGroq(api_key=config.api_key)
        extractor = GroqMemoryExtractor(client, config.model, timeout=config.extraction_timeout)
        judge = GroqContradictionJudge(client, config.model, timeout=config.extraction_timeout)
    else:
        logger.warning("GROQ_API_KEY not set, memory extraction disabled")

    return MemoryManager(
        config,
        store,
        index,
        SentenceTransformerEmbedder(config.embedding_model),
        extractor,
        judge=judge,
        event_log=configure_logger(config.log_dir),
    )
