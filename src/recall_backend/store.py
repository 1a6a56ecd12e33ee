"""Embedded vector store for chunk-level note embeddings.

Chunk rows live in a SQLite file keyed by (entity_id, chunk_index), with
vectors stored as float32 blobs. Similarity is cosine distance computed with
numpy (lower = more similar).

Writes are per-entity replacements: all existing chunks for a note are deleted
and the new set inserted inside one IMMEDIATE transaction, so concurrent
readers observe either the old complete chunk set or the new one.
"""

from pathlib import Path

import numpy as np
from loguru import logger

from recall_backend.db import open_connection, transaction
from recall_backend.models import ChunkEmbedding, EmbeddingRecord, NearestMatch, StoreStats

VECTOR_DTYPE = np.dtype("<f4")


def threshold_to_max_distance(threshold: float) -> float:
    """Convert a similarity threshold in [0, 1] to a maximum cosine distance."""
    if not 0.0 <= threshold <= 1.0:
        raise ValueError(f"threshold must be in [0, 1], got {threshold}")
    return 1.0 - threshold


def cosine_distances(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine distance between each row of matrix and query.

    Rows (or a query) with zero norm are treated as orthogonal (distance 1).
    """
    row_norms = np.linalg.norm(matrix, axis=1)
    query_norm = float(np.linalg.norm(query))
    denom = row_norms * query_norm
    dots = matrix @ query
    similarity = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    return np.clip(1.0 - similarity, 0.0, 2.0)


def deduplicate_by_entity(matches: list[NearestMatch]) -> list[NearestMatch]:
    """Keep the lowest-distance chunk per entity, ordered by ascending distance.

    Args:
        matches: Raw matches (may contain several chunks per entity)

    Returns:
        One match per entity
    """
    best: dict[str, NearestMatch] = {}
    for match in matches:
        existing = best.get(match.entity_id)
        if existing is None or match.distance < existing.distance:
            best[match.entity_id] = match
    return sorted(best.values(), key=lambda m: m.distance)


class VectorStore:
    """SQLite-backed store of chunk embeddings with cosine nearest-neighbour queries.

    Opens a fresh connection per call; safe to share across threads and to
    call from `asyncio.to_thread`.
    """

    def __init__(self, db_path: Path | str, dimensions: int = 768, busy_timeout_ms: int = 5000):
        """Initialize vector store.

        Args:
            db_path: Path to the SQLite file (created on first use)
            dimensions: Fixed embedding dimensionality
            busy_timeout_ms: How long a connection waits on a locked database
        """
        self.db_path = Path(db_path)
        self.dimensions = dimensions
        self.busy_timeout_ms = busy_timeout_ms

    def _validate(self, entity_id: str, chunks: list[ChunkEmbedding]) -> None:
        """Check dimensions and index contiguity before any write."""
        if not entity_id:
            raise ValueError("entity_id cannot be empty")

        for chunk in chunks:
            if len(chunk.embedding) != self.dimensions:
                raise ValueError(
                    f"Chunk {chunk.chunk_index}: Expected {self.dimensions} dimensions, "
                    f"got {len(chunk.embedding)}"
                )

        indices = sorted(c.chunk_index for c in chunks)
        if indices != list(range(len(chunks))):
            raise ValueError(
                f"Chunk indices for {entity_id!r} must be contiguous from 0, got {indices}"
            )
        totals = {c.total_chunks for c in chunks}
        if totals != {len(chunks)}:
            raise ValueError(
                f"total_chunks for {entity_id!r} must equal {len(chunks)}, got {sorted(totals)}"
            )

    def store_chunks(self, entity_id: str, chunks: list[ChunkEmbedding]) -> int:
        """Replace all chunk embeddings for an entity.

        Args:
            entity_id: Note permalink
            chunks: Complete chunk set for the note

        Returns:
            Number of chunks stored (0 for an empty list, which leaves the store untouched)

        Raises:
            ValueError: If dimensions or chunk indices are inconsistent
            VectorStoreError: If the write fails (previous chunks are kept)
        """
        if not chunks:
            return 0

        self._validate(entity_id, chunks)

        rows = [
            (
                entity_id,
                c.chunk_index,
                c.total_chunks,
                c.chunk_start,
                c.chunk_end,
                c.chunk_text,
                np.asarray(c.embedding, dtype=VECTOR_DTYPE).tobytes(),
            )
            for c in chunks
        ]

        with open_connection(self.db_path, self.busy_timeout_ms) as conn, transaction(conn):
            conn.execute("DELETE FROM embeddings WHERE entity_id = ?", (entity_id,))
            conn.executemany(
                """
                INSERT INTO embeddings (
                    entity_id, chunk_index, total_chunks,
                    chunk_start, chunk_end, chunk_text, embedding
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

        logger.debug(f"Stored {len(rows)} chunks for {entity_id}")
        return len(rows)

    def delete_entity(self, entity_id: str) -> bool:
        """Delete all chunk embeddings for an entity.

        Returns:
            True if any rows were removed
        """
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            cursor = conn.execute("DELETE FROM embeddings WHERE entity_id = ?", (entity_id,))
            return cursor.rowcount > 0

    def get_chunks(self, entity_id: str) -> list[EmbeddingRecord]:
        """Return all stored chunks for an entity in chunk order."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            rows = conn.execute(
                """
                SELECT entity_id, chunk_index, total_chunks, chunk_start,
                       chunk_end, chunk_text, embedding
                FROM embeddings
                WHERE entity_id = ?
                ORDER BY chunk_index ASC
                """,
                (entity_id,),
            ).fetchall()

        return [
            EmbeddingRecord(
                entity_id=row["entity_id"],
                chunk_index=row["chunk_index"],
                total_chunks=row["total_chunks"],
                chunk_start=row["chunk_start"],
                chunk_end=row["chunk_end"],
                chunk_text=row["chunk_text"],
                embedding=np.frombuffer(row["embedding"], dtype=VECTOR_DTYPE).tolist(),
            )
            for row in rows
        ]

    def count_chunks(self, entity_id: str) -> int:
        """Count stored chunks for an entity."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM embeddings WHERE entity_id = ?", (entity_id,)
            ).fetchone()
        return int(row[0])

    def list_entity_ids(self) -> set[str]:
        """Return the ids of all entities with at least one stored chunk."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            rows = conn.execute("SELECT DISTINCT entity_id FROM embeddings").fetchall()
        return {row[0] for row in rows}

    def has_any_embeddings(self) -> bool:
        """Cheap existence probe used to skip semantic search on an empty store."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            row = conn.execute("SELECT 1 FROM embeddings LIMIT 1").fetchone()
        return row is not None

    def stats(self) -> StoreStats:
        """Get chunk and entity counts."""
        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            row = conn.execute(
                "SELECT COUNT(*), COUNT(DISTINCT entity_id) FROM embeddings"
            ).fetchone()
        return StoreStats(total_chunks=int(row[0]), total_entities=int(row[1]))

    def query_nearest(
        self,
        query_vector: list[float],
        limit: int,
        max_distance: float,
        entity_ids: set[str] | None = None,
    ) -> list[NearestMatch]:
        """Find the chunks closest to a query vector.

        Args:
            query_vector: Query embedding
            limit: Maximum rows to return
            max_distance: Rows with cosine distance above this are dropped
            entity_ids: Optional restriction to these entities

        Returns:
            Matches ordered by ascending distance (several chunks of one entity
            may appear; see `deduplicate_by_entity`)
        """
        if len(query_vector) != self.dimensions:
            raise ValueError(
                f"Query vector: Expected {self.dimensions} dimensions, got {len(query_vector)}"
            )
        if limit <= 0:
            return []

        with open_connection(self.db_path, self.busy_timeout_ms) as conn:
            rows = conn.execute(
                """
                SELECT entity_id, chunk_index, total_chunks, chunk_text, embedding
                FROM embeddings
                """
            ).fetchall()

        if entity_ids is not None:
            rows = [row for row in rows if row["entity_id"] in entity_ids]
        if not rows:
            return []

        matrix = np.vstack([np.frombuffer(row["embedding"], dtype=VECTOR_DTYPE) for row in rows])
        query = np.asarray(query_vector, dtype=VECTOR_DTYPE)
        distances = cosine_distances(matrix.astype(np.float64), query.astype(np.float64))

        order = np.argsort(distances, kind="stable")
        matches: list[NearestMatch] = []
        for i in order:
            distance = float(distances[i])
            if distance > max_distance:
                break
            row = rows[int(i)]
            matches.append(
                NearestMatch(
                    entity_id=row["entity_id"],
                    chunk_index=row["chunk_index"],
                    total_chunks=row["total_chunks"],
                    chunk_text=row["chunk_text"],
                    distance=distance,
                )
            )
            if len(matches) >= limit:
                break

        return matches
