"""Error types for the memory system.

None of these are allowed to escape the public MemoryManager surface; they
mark where a component gave up so the caller can degrade to "no memory
effect this cycle".
"""


class MementoError(Exception):
    """Base class for memory system errors."""


class TransientIOError(MementoError):
    """An LLM, embedding, vector index or store call failed or timed out."""


class ValidationError(MementoError):
    """LLM output could not be parsed into candidate memories."""


class ConsistencyError(MementoError):
    """A record referenced by consolidation no longer exists."""

    def __init__(self, memory_id: str, message: str | None = None) -> None:
        self.memory_id = memory_id
        super().__init__(message or f"Memory {memory_id} no longer exists")
