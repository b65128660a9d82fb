"""Data models for the memory system."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class MemoryCategory(str, Enum):
    """Kinds of memories the extractor can produce."""

    FACTUAL = "factual"
    PREFERENCE = "preference"
    RELATIONSHIP = "relationship"
    TEMPORAL = "temporal"

    @classmethod
    def parse(cls, value: Any) -> MemoryCategory:
        """Parse a category name, falling back to FACTUAL for unknown values."""
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        for category in cls:
            if category.value == normalized:
                return category
        return cls.FACTUAL


class ConsolidationAction(Enum):
    """What to do with a candidate memory after comparing it to the index."""

    STORE = "store"
    SKIP = "skip"
    SUPERSEDE = "supersede"


def clamp_importance(value: Any, default: float = 0.5) -> float:
    """Coerce an importance score into [0, 1]."""
    try:
        score = float(value)
    except (TypeError, ValueError):
        return default
    if score != score:  # NaN
        return default
    return max(0.0, min(1.0, score))


@dataclass(frozen=True)
class BufferedTurn:
    """A conversation turn waiting to be processed.

    Attributes:
        role: 'user' or 'assistant'.
        content: The message text.
        source: Where the turn came from (e.g. 'main_chat', 'spotlight').
        timestamp: Unix timestamp in seconds.
    """

    role: str
    content: str
    source: str
    timestamp: float


@dataclass(frozen=True)
class CandidateMemory:
    """A memory proposed by the extractor, not yet stored."""

    content: str
    category: MemoryCategory = MemoryCategory.FACTUAL
    importance: float = 0.5


@dataclass(frozen=True)
class MemoryRecord:
    """A memory stored about the user.

    Attributes:
        id: UUID string, shared with the vector entry.
        content: The memory as a standalone statement.
        category: One of the MemoryCategory values.
        importance: Recall priority in [0, 1].
        source_type: Dominant source of the conversation it came from.
        created_at: When the record was stored.
        last_accessed: Last retrieval or duplicate boost.
        access_count: Number of times the record was retrieved.
        expires_at: Expiry for temporal memories, None otherwise.
        superseded_by: Id of the record that replaced this one.
    """

    id: str
    content: str
    category: MemoryCategory
    importance: float
    source_type: str
    created_at: datetime
    last_accessed: datetime
    access_count: int = 0
    expires_at: datetime | None = None
    superseded_by: str | None = None

    @property
    def is_superseded(self) -> bool:
        return self.superseded_by is not None


@dataclass(frozen=True)
class VectorEntry:
    """An embedding stored in the vector index."""

    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorMatch:
    """A search hit from the vector index."""

    id: str
    score: float
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConsolidationResult:
    """Outcome of consolidating one candidate memory."""

    action: ConsolidationAction
    existing_id: str | None = None
    score: float | None = None
    reason: str = ""
    vector: list[float] | None = None


@dataclass(frozen=True)
class MemorySearchResult:
    """A ranked memory returned by retrieval."""

    id: str
    content: str
    category: MemoryCategory
    importance: float
    score: float
    semantic_score: float
    created_at: datetime | None = None


@dataclass(frozen=True)
class FormattedContext:
    """Memories rendered for injection ahead of a user prompt."""

    text: str
    memories: list[MemorySearchResult] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.text)


@dataclass
class MaintenanceResult:
    """Counts of each maintenance action."""

    expired_cleaned: int = 0
    decayed: int = 0
    pruned: int = 0
    history_purged: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class CycleReport:
    """Counts for one extraction and consolidation cycle."""

    turns: int = 0
    extracted: int = 0
    stored: int = 0
    skipped: int = 0
    superseded: int = 0
    failed: int = 0
