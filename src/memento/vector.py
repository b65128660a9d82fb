"""Vector index for semantic memory search.

Memories share a collection with document chunks from the knowledge
pipeline. Every memory entry carries payload["type"] == "memory" and every
memory query filters on it.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Protocol

import numpy as np

from .errors import TransientIOError
from .models import VectorEntry, VectorMatch

logger = logging.getLogger(__name__)

MEMORY_TYPE = "memory"
MEMORY_FILTER = {"type": MEMORY_TYPE}

_PAYLOAD_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class VectorIndex(Protocol):
    """Minimal vector search interface used by the memory system."""

    async def upsert(self, collection: str, entries: list[VectorEntry]) -> None:
        ...

    async def search(
        self,
        collection: str,
        vector: list[float],
        top_k: int,
        payload_filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        ...

    async def delete(self, collection: str, ids: list[str]) -> None:
        ...


class SQLiteVectorIndex:
    """Vector index persisted in SQLite, ranked by cosine similarity.

    Vectors are stored as float32 blobs next to a JSON payload. Search loads
    the candidate rows for a collection (narrowed by the payload filter in
    SQL) and scores them with a single matrix product.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the index with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the vectors table if it doesn't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS vectors (
                collection  TEXT NOT NULL,
                id          TEXT NOT NULL,
                dim         INTEGER NOT NULL,
                vector      BLOB NOT NULL,
                payload     TEXT NOT NULL DEFAULT '{}',
                PRIMARY KEY (collection, id)
            )
        """)
        conn.commit()

    async def upsert(self, collection: str, entries: list[VectorEntry]) -> None:
        """Insert or replace vectors in a collection."""
        if not entries:
            return
        rows = []
        for entry in entries:
            vector = np.asarray(entry.vector, dtype=np.float32)
            rows.append(
                (collection, entry.id, int(vector.shape[0]), vector.tobytes(),
                 json.dumps(entry.payload, ensure_ascii=False))
            )
        try:
            conn = self._get_connection()
            conn.executemany(
                """
                INSERT INTO vectors (collection, id, dim, vector, payload)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(collection, id) DO UPDATE SET
                    dim = excluded.dim,
                    vector = excluded.vector,
                    payload = excluded.payload
                """,
                rows,
            )
            conn.commit()
        except sqlite3.Error as e:
            raise TransientIOError(f"Vector upsert failed: {e}") from e
        logger.debug("Upserted %d vectors to %s", len(rows), collection)

    async def search(
        self,
        collection: str,
        vector: list[float],
        top_k: int,
        payload_filter: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Return the top_k most similar entries, best first."""
        if top_k <= 0:
            return []
        query = np.asarray(vector, dtype=np.float32)
        query_norm = float(np.linalg.norm(query))
        if query_norm == 0.0:
            return []

        sql = "SELECT id, vector, payload FROM vectors WHERE collection = ? AND dim = ?"
        params: list[Any] = [collection, int(query.shape[0])]
        for key, value in (payload_filter or {}).items():
            if not _PAYLOAD_KEY.match(key):
                raise ValueError(f"Invalid payload filter key: {key!r}")
            sql += f" AND json_extract(payload, '$.{key}') = ?"
            params.append(value)
        sql += " ORDER BY rowid"

        try:
            rows = self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise TransientIOError(f"Vector search failed: {e}") from e
        if not rows:
            return []

        matrix = np.stack([np.frombuffer(row["vector"], dtype=np.float32) for row in rows])
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0.0] = 1.0
        scores = (matrix @ query) / (norms * query_norm)

        # Stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            VectorMatch(
                id=rows[i]["id"],
                score=float(scores[i]),
                payload=json.loads(rows[i]["payload"]),
            )
            for i in order
        ]

    async def delete(self, collection: str, ids: list[str]) -> None:
        """Delete vectors by id."""
        if not ids:
            return
        try:
            conn = self._get_connection()
            conn.executemany(
                "DELETE FROM vectors WHERE collection = ? AND id = ?",
                [(collection, memory_id) for memory_id in ids],
            )
            conn.commit()
        except sqlite3.Error as e:
            raise TransientIOError(f"Vector delete failed: {e}") from e
        logger.debug("Deleted %d vectors from %s", len(ids), collection)

    def count(self, collection: str) -> int:
        """Number of vectors in a collection."""
        row = self._get_connection().execute(
            "SELECT COUNT(*) FROM vectors WHERE collection = ?", (collection,)
        ).fetchone()
        return row[0]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
