"""SQLite storage for memory records."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from .models import CandidateMemory, MemoryCategory, MemoryRecord, clamp_importance

logger = logging.getLogger(__name__)

DECAY_AFTER_DAYS = 7
DECAY_MIN_IMPORTANCE = 0.1
DECAY_FLOOR = 0.05
BOOST_AMOUNT = 0.1

_COLUMNS = (
    "id, content, category, importance, source_type, created_at, "
    "last_accessed, access_count, expires_at, superseded_by"
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: datetime) -> str:
    """Serialize a datetime as a sortable ISO-8601 UTC string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MemoryStore:
    """Persistent storage for memory records using SQLite.

    Superseded records stay in the table as an audit trail. They are never
    returned to retrieval and are exempt from decay and pruning.
    """

    def __init__(
        self,
        db_path: Path,
        now: Callable[[], datetime] = utc_now,
        temporal_ttl_days: int = 7,
    ) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
            now: Clock used for timestamps.
            temporal_ttl_days: Lifetime of temporal memories.
        """
        self.db_path = db_path
        self._now = now
        self.temporal_ttl_days = temporal_ttl_days
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the memories table if it doesn't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS memories (
                id              TEXT PRIMARY KEY,
                content         TEXT NOT NULL,
                category        TEXT NOT NULL CHECK (
                    category IN ('factual', 'preference', 'relationship', 'temporal')
                ),
                importance      REAL NOT NULL DEFAULT 0.5 CHECK (
                    importance >= 0 AND importance <= 1
                ),
                source_type     TEXT NOT NULL DEFAULT 'main_chat',
                created_at      TEXT NOT NULL,
                last_accessed   TEXT NOT NULL,
                access_count    INTEGER NOT NULL DEFAULT 0,
                expires_at      TEXT,
                superseded_by   TEXT REFERENCES memories(id)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_memories_category ON memories(category)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_memories_importance ON memories(importance)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_memories_last_accessed ON memories(last_accessed)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_memories_superseded ON memories(superseded_by)"
        )
        conn.commit()

    def save_memory(
        self, memory: CandidateMemory, source_type: str = "main_chat"
    ) -> MemoryRecord:
        """Insert a new memory record.

        Temporal memories get an expiry temporal_ttl_days after creation.

        Args:
            memory: The candidate to persist.
            source_type: Where the conversation came from.

        Returns:
            The stored record.
        """
        now = self._now()
        expires_at = None
        if memory.category is MemoryCategory.TEMPORAL:
            expires_at = now + timedelta(days=self.temporal_ttl_days)

        record = MemoryRecord(
            id=str(uuid.uuid4()),
            content=memory.content,
            category=memory.category,
            importance=clamp_importance(memory.importance),
            source_type=source_type,
            created_at=now,
            last_accessed=now,
            expires_at=expires_at,
        )
        conn = self._get_connection()
        conn.execute(
            f"INSERT INTO memories ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.content,
                record.category.value,
                record.importance,
                record.source_type,
                to_timestamp(record.created_at),
                to_timestamp(record.last_accessed),
                record.access_count,
                to_timestamp(expires_at) if expires_at else None,
                None,
            ),
        )
        conn.commit()
        logger.info("Saved: [%s] %s", record.category.value, record.content[:50])
        return record

    def get(self, memory_id: str) -> MemoryRecord | None:
        """Get a record by id, superseded or not."""
        row = self._get_connection().execute(
            f"SELECT {_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def get_many(
        self, ids: list[str], include_superseded: bool = False
    ) -> dict[str, MemoryRecord]:
        """Get records by id. Missing ids are left out of the result."""
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        sql = f"SELECT {_COLUMNS} FROM memories WHERE id IN ({placeholders})"
        if not include_superseded:
            sql += " AND superseded_by IS NULL"
        rows = self._get_connection().execute(sql, list(ids)).fetchall()
        return {row["id"]: self._row_to_record(row) for row in rows}

    def list_memories(
        self,
        category: MemoryCategory | None = None,
        limit: int = 50,
        offset: int = 0,
        include_superseded: bool = False,
    ) -> list[MemoryRecord]:
        """List records, newest first.

        Args:
            category: Only return this category.
            limit: Page size.
            offset: Number of records to skip.
            include_superseded: Also return superseded records.
        """
        where, params = self._filters(category, include_superseded)
        rows = self._get_connection().execute(
            f"SELECT {_COLUMNS} FROM memories{where} "
            "ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def count(
        self, category: MemoryCategory | None = None, include_superseded: bool = False
    ) -> int:
        """Number of records matching the filters."""
        where, params = self._filters(category, include_superseded)
        row = self._get_connection().execute(
            f"SELECT COUNT(*) FROM memories{where}", params
        ).fetchone()
        return row[0]

    def delete(self, memory_id: str) -> bool:
        """Delete a record by id.

        Returns:
            True if a record was deleted, False otherwise.
        """
        conn = self._get_connection()
        cursor = conn.execute("DELETE FROM memories WHERE id = ?", (memory_id,))
        conn.commit()
        return cursor.rowcount > 0

    def delete_all(self) -> list[str]:
        """Delete every record. Returns the deleted ids."""
        return self._delete_returning("DELETE FROM memories RETURNING id", ())

    def boost_importance(self, memory_id: str, amount: float = BOOST_AMOUNT) -> bool:
        """Raise importance (capped at 1.0) and refresh last_accessed.

        Returns:
            False if the record does not exist or is superseded.
        """
        conn = self._get_connection()
        cursor = conn.execute(
            """
            UPDATE memories
            SET importance = MIN(1.0, MAX(0.0, importance + ?)),
                last_accessed = ?
            WHERE id = ? AND superseded_by IS NULL
            """,
            (amount, to_timestamp(self._now()), memory_id),
        )
        conn.commit()
        return cursor.rowcount > 0

    def mark_superseded(self, old_id: str, new_id: str) -> bool:
        """Point an old record at the record that replaces it.

        Returns:
            False if the old record no longer exists.
        """
        if old_id == new_id:
            raise ValueError("A memory cannot supersede itself")
        conn = self._get_connection()
        cursor = conn.execute(
            "UPDATE memories SET superseded_by = ? WHERE id = ?", (new_id, old_id)
        )
        conn.commit()
        return cursor.rowcount > 0

    def track_access(self, ids: list[str]) -> int:
        """Refresh last_accessed and bump access_count for retrieved records."""
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        conn = self._get_connection()
        cursor = conn.execute(
            f"""
            UPDATE memories
            SET last_accessed = ?, access_count = access_count + 1
            WHERE id IN ({placeholders})
            """,
            (to_timestamp(self._now()), *ids),
        )
        conn.commit()
        return cursor.rowcount

    def decay_importance(self, factor: float) -> int:
        """Lower the importance of memories nobody has used recently.

        Every non-superseded record last accessed more than 7 days ago with
        importance above 0.1 has its importance multiplied by factor, floored
        at 0.05.

        Returns:
            Number of decayed records.
        """
        if not 0.0 <= factor <= 1.0:
            raise ValueError(f"Decay factor must be within [0, 1], got {factor}")
        cutoff = self._now() - timedelta(days=DECAY_AFTER_DAYS)
        conn = self._get_connection()
        cursor = conn.execute(
            """
            UPDATE memories
            SET importance = MAX(?, importance * ?)
            WHERE superseded_by IS NULL
              AND last_accessed < ?
              AND importance > ?
            """,
            (DECAY_FLOOR, factor, to_timestamp(cutoff), DECAY_MIN_IMPORTANCE),
        )
        conn.commit()
        return cursor.rowcount

    def prune_memories(self, min_importance: float, stale_days: int) -> list[str]:
        """Delete unimportant memories that have not been used in a while.

        Only non-superseded records below min_importance and not accessed
        within stale_days are deleted.

        Returns:
            The deleted ids.
        """
        cutoff = self._now() - timedelta(days=stale_days)
        return self._delete_returning(
            """
            DELETE FROM memories
            WHERE superseded_by IS NULL
              AND importance < ?
              AND last_accessed < ?
            RETURNING id
            """,
            (min_importance, to_timestamp(cutoff)),
        )

    def cleanup_expired_memories(self) -> list[str]:
        """Delete temporal memories past their expiry. Returns the deleted ids."""
        return self._delete_returning(
            """
            DELETE FROM memories
            WHERE category = 'temporal'
              AND expires_at IS NOT NULL
              AND expires_at < ?
            RETURNING id
            """,
            (to_timestamp(self._now()),),
        )

    def purge_superseded(self, older_than_days: int) -> list[str]:
        """Delete superseded records created more than older_than_days ago."""
        cutoff = self._now() - timedelta(days=older_than_days)
        return self._delete_returning(
            """
            DELETE FROM memories
            WHERE superseded_by IS NOT NULL
              AND created_at < ?
            RETURNING id
            """,
            (to_timestamp(cutoff),),
        )

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _delete_returning(self, sql: str, params: tuple) -> list[str]:
        conn = self._get_connection()
        ids = [row[0] for row in conn.execute(sql, params).fetchall()]
        conn.commit()
        return ids

    @staticmethod
    def _filters(
        category: MemoryCategory | None, include_superseded: bool
    ) -> tuple[str, list[str]]:
        clauses = []
        params: list[str] = []
        if category is not None:
            clauses.append("category = ?")
            params.append(MemoryCategory.parse(category).value)
        if not include_superseded:
            clauses.append("superseded_by IS NULL")
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def _row_to_record(self, row: sqlite3.Row) -> MemoryRecord:
        """Convert a database row to a MemoryRecord."""
        return MemoryRecord(
            id=row["id"],
            content=row["content"],
            category=MemoryCategory.parse(row["category"]),
            importance=row["importance"],
            source_type=row["source_type"],
            created_at=from_timestamp(row["created_at"]),
            last_accessed=from_timestamp(row["last_accessed"]),
            access_count=row["access_count"],
            expires_at=from_timestamp(row["expires_at"]),
            superseded_by=row["superseded_by"],
        )
