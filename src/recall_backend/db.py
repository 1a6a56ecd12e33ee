"""SQLite connection handling for the embedded recall store.

The embeddings table and the offline queue share one file. Connections are
opened per logical operation and closed right after, so no long-lived lock
is held on the file between requests.
"""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from recall_backend.errors import VectorStoreError

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS embeddings (
        entity_id TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        total_chunks INTEGER NOT NULL,
        chunk_start INTEGER NOT NULL,
        chunk_end INTEGER NOT NULL,
        chunk_text TEXT NOT NULL,
        embedding BLOB NOT NULL,
        PRIMARY KEY (entity_id, chunk_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS embedding_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        note_id TEXT UNIQUE NOT NULL,
        created_at TEXT NOT NULL,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_error TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_queue_created_at
    ON embedding_queue(created_at)
    """,
)


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they do not exist."""
    for statement in SCHEMA:
        conn.execute(statement)


@contextmanager
def open_connection(db_path: Path, busy_timeout_ms: int = 5000) -> Iterator[sqlite3.Connection]:
    """Open a connection for one logical operation.

    The connection runs in autocommit mode; use `transaction()` for
    multi-statement writes. sqlite3 errors are re-raised as VectorStoreError.
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), isolation_level=None, check_same_thread=False)
    except (OSError, sqlite3.Error) as e:
        raise VectorStoreError(f"Cannot open vector store at {db_path}: {e}") from e

    try:
        conn.row_factory = sqlite3.Row
        # WAL lets readers proceed while a writer holds the lock
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
        ensure_schema(conn)
        yield conn
    except sqlite3.Error as e:
        raise VectorStoreError(f"Vector store operation failed: {e}") from e
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block inside BEGIN IMMEDIATE ... COMMIT, rolling back on error."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")
