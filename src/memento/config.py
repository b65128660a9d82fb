"""Memory system configuration.

Values come from environment variables (a .env file is loaded by the CLI
entry point) with defaults suitable for a single local user.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".memento"
DEFAULT_MODEL = "llama-3.1-70b-versatile"
DEFAULT_EMBEDDING_MODEL = "all-MiniLM-L6-v2"
DEFAULT_COLLECTION = "memento-knowledge"


@dataclass
class MemoryConfig:
    """Configuration for the memory system.

    Attributes:
        enabled: When False, submitted turns are discarded.
        db_path: SQLite file holding memory records.
        vector_db_path: SQLite file holding embeddings.
        collection: Vector collection shared with the knowledge pipeline.
        model: Groq model used for extraction and contradiction checks.
        api_key: Groq API key. Without one, extraction is disabled.
        embedding_model: sentence-transformers model name.
        idle_seconds: Quiet period before buffered turns are processed.
        extraction_timeout: Bound on each LLM call, in seconds.
        duplicate_threshold: Similarity at or above which a candidate is a duplicate.
        conflict_threshold: Similarity at or above which contradictions are checked.
        identical_threshold: Similarity treated as the same statement.
        temporal_ttl_days: Lifetime of temporal memories.
        decay_factor: Importance multiplier for unused memories.
        min_importance: Prune threshold for stale memories.
        stale_days: Days without access before a memory may be pruned.
        maintenance_interval: Seconds between maintenance runs.
        maintenance_startup_delay: Seconds before the first maintenance run.
        superseded_retention_days: Purge superseded records older than this;
            None keeps them forever.
        log_dir: Directory for the JSONL event log.
    """

    enabled: bool = True
    db_path: Path = DEFAULT_HOME / "memory.db"
    vector_db_path: Path = DEFAULT_HOME / "vectors.db"
    collection: str = DEFAULT_COLLECTION
    model: str = DEFAULT_MODEL
    api_key: str | None = None
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    idle_seconds: float = 600.0
    extraction_timeout: float = 60.0
    duplicate_threshold: float = 0.85
    conflict_threshold: float = 0.70
    identical_threshold: float = 0.98
    temporal_ttl_days: int = 7
    decay_factor: float = 0.95
    min_importance: float = 0.1
    stale_days: int = 90
    maintenance_interval: float = 24 * 60 * 60
    maintenance_startup_delay: float = 5 * 60
    superseded_retention_days: int | None = None
    log_dir: Path = DEFAULT_HOME / "logs"

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Build a config from MEMENTO_* environment variables."""
        defaults = cls()
        duplicate_threshold = _env_float(
            "MEMENTO_DUPLICATE_THRESHOLD", defaults.duplicate_threshold
        )
        # Never below the duplicate threshold
        identical_threshold = max(
            duplicate_threshold,
            _env_float("MEMENTO_IDENTICAL_THRESHOLD", defaults.identical_threshold),
        )
        return cls(
            enabled=_env_bool("MEMENTO_ENABLED", defaults.enabled),
            db_path=_env_path("MEMENTO_DB_PATH", defaults.db_path),
            vector_db_path=_env_path("MEMENTO_VECTOR_DB_PATH", defaults.vector_db_path),
            collection=os.getenv("MEMENTO_COLLECTION", defaults.collection),
            model=os.getenv("MEMENTO_MODEL", os.getenv("GROQ_MODEL", defaults.model)),
            api_key=os.getenv("GROQ_API_KEY"),
            embedding_model=os.getenv("MEMENTO_EMBEDDING_MODEL", defaults.embedding_model),
            idle_seconds=_env_float("MEMENTO_IDLE_SECONDS", defaults.idle_seconds),
            extraction_timeout=_env_float(
                "MEMENTO_EXTRACTION_TIMEOUT", defaults.extraction_timeout
            ),
            duplicate_threshold=duplicate_threshold,
            identical_threshold=identical_threshold,
            conflict_threshold=_env_float(
                "MEMENTO_CONFLICT_THRESHOLD", defaults.conflict_threshold
            ),
            temporal_ttl_days=int(
                _env_float("MEMENTO_TEMPORAL_TTL_DAYS", defaults.temporal_ttl_days)
            ),
            decay_factor=_env_float("MEMENTO_DECAY_FACTOR", defaults.decay_factor),
            min_importance=_env_float("MEMENTO_MIN_IMPORTANCE", defaults.min_importance),
            stale_days=int(_env_float("MEMENTO_STALE_DAYS", defaults.stale_days)),
            superseded_retention_days=_env_optional_int("MEMENTO_HISTORY_RETENTION_DAYS"),
            log_dir=_env_path("MEMENTO_LOG_DIR", defaults.log_dir),
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid value for %s: %r. Using %s.", name, value, default)
        return default


def _env_optional_int(name: str) -> int | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid value for %s: %r. Keeping history forever.", name, value)
        return None


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    return Path(value).expanduser() if value else default
