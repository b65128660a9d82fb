"""Conversational memory: extraction, consolidation and retrieval of user facts."""

from .config import MemoryConfig
from .errors import ConsistencyError, MementoError, TransientIOError, ValidationError
from .manager import MemoryManager, create_memory_manager
from .models import (
    CandidateMemory,
    FormattedContext,
    MaintenanceResult,
    MemoryCategory,
    MemoryRecord,
    MemorySearchResult,
)
from .store import MemoryStore

__all__ = [
    "CandidateMemory",
    "ConsistencyError",
    "FormattedContext",
    "MaintenanceResult",
    "MementoError",
    "MemoryCategory",
    "MemoryConfig",
    "MemoryManager",
    "MemoryRecord",
    "MemorySearchResult",
    "MemoryStore",
    "TransientIOError",
    "ValidationError",
    "create_memory_manager",
]
