"""Offline embedding queue backed by the recall SQLite file.

Notes whose embedding could not be generated or stored (inference service
down, write failure) are queued here for a later drain. Enqueue is an upsert
on note_id: re-queuing a note resets its attempts and timestamp instead of
creating a duplicate job, so a note that is fixed and re-saved gets a fresh
retry budget.
"""

from datetime import UTC, datetime
from pathlib import Path

from loguru import logger

from recall_backend.db import open_connection
from recall_backend.models import QueueItem

MAX_ATTEMPTS = 3


def _now() -> str:
    """Current timestamp in ISO format (sortable)."""
    return datetime.now(UTC).isoformat()


class EmbeddingQueue:
    """SQLite-backed FIFO of notes awaiting embedding."""

    def __init__(self, db_path: Path | str, busy_timeout_ms: int = 5000):
        """
        Args:
            db_path: Path to the SQLite file shared with the vector store
            busy_timeout_ms: How long a connection waits on a locked database
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms

    def enqueue(self, note_id: str) -> None:
        """Add a note to the queue, or reset its existing job."""
        if not note_id:
            raise ValueError("note_id cannot be empty")
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            conn.execute(
                """
                INSERT INTO embedding_queue (note_id, created_at, attempts, last_error)
                VALUES (?, ?, 0, NULL)
                ON CONFLICT(note_id) DO UPDATE SET
                    created_at = excluded.created_at,
                    attempts = 0,
                    last_error = NULL
                """,
                (note_id, _now()),
            )
        logger.debug(f"Queued {note_id} for embedding")

    def dequeue(self) -> QueueItem | None:
        """Return the oldest queued item without removing it, or None if empty."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            row = conn.execute(
                """
                SELECT id, note_id, created_at, attempts, last_error
                FROM embedding_queue
                ORDER BY created_at ASC, id ASC
                LIMIT 1
                """
            ).fetchone()
        return QueueItem(**dict(row)) if row else None

    def mark_processed(self, item_id: int) -> None:
        """Remove an item after successful processing (or when dropping it)."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            conn.execute("DELETE FROM embedding_queue WHERE id = ?", (item_id,))

    def increment_attempts(self, item_id: int, error: str | None = None) -> None:
        """Record a failed attempt and its error."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            conn.execute(
                """
                UPDATE embedding_queue
                SET attempts = attempts + 1, last_error = ?
                WHERE id = ?
                """,
                (error, item_id),
            )

    def queue_length(self) -> int:
        """Number of queued items."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            row = conn.execute("SELECT COUNT(*) FROM embedding_queue").fetchone()
        return int(row[0])

    def get(self, note_id: str) -> QueueItem | None:
        """Look up the queued job for a note."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            row = conn.execute(
                """
                SELECT id, note_id, created_at, attempts, last_error
                FROM embedding_queue WHERE note_id = ?
                """,
                (note_id,),
            ).fetchone()
        return QueueItem(**dict(row)) if row else None

    def list_items(self) -> list[QueueItem]:
        """All queued items in FIFO order."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            rows = conn.execute(
                """
                SELECT id, note_id, created_at, attempts, last_error
                FROM embedding_queue
                ORDER BY created_at ASC, id ASC
                """
            ).fetchall()
        return [QueueItem(**dict(row)) for row in rows]

    def clear(self) -> int:
        """Remove every queued item. Returns the number removed."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            cursor = conn.execute("DELETE FROM embedding_queue")
            return cursor.rowcount
