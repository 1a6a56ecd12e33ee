"""Integration tests for concurrent access to the SQLite store.

Several processes write to one database file at the same time, the way
separate agent processes sharing a knowledge store would.

Run with: pytest tests/test_recall_backend/integration/test_sqlite_concurrency.py -v
"""

# mypy: disable-error-code="no-untyped-def"

from concurrent.futures import ProcessPoolExecutor
from pathlib import Path

from recall_backend.models import ChunkEmbedding
from recall_backend.queue import EmbeddingQueue
from recall_backend.store import VectorStore

DIMS = 8


# Worker functions for concurrent write tests (module-level for pickling)
def _store_worker(worker_id: int, db_path: str, notes: int) -> int:
    store = VectorStore(Path(db_path), dimensions=DIMS)
    for n in range(notes):
        vector = [0.0] * DIMS
        vector[(worker_id + n) % DIMS] = 1.0
        chunks = [
            ChunkEmbedding(
                chunk_index=i,
                total_chunks=2,
                chunk_start=i * 10,
                chunk_end=i * 10 + 10,
                chunk_text=f"worker {worker_id} note {n} chunk {i}",
                embedding=vector,
            )
            for i in range(2)
        ]
        store.store_chunks(f"worker-{worker_id}/note-{n}", chunks)
    return worker_id


def _queue_worker(worker_id: int, db_path: str) -> int:
    queue = EmbeddingQueue(Path(db_path))
    for n in range(10):
        queue.enqueue(f"shared/note-{n}")
    return worker_id


def _rewrite_worker(worker_id: int, db_path: str) -> int:
    store = VectorStore(Path(db_path), dimensions=DIMS)
    for _ in range(10):
        total = worker_id + 1
        chunks = [
            ChunkEmbedding(
                chunk_index=i,
                total_chunks=total,
                chunk_start=i,
                chunk_end=i + 1,
                chunk_text=f"version from worker {worker_id}",
                embedding=[1.0] + [0.0] * (DIMS - 1),
            )
            for i in range(total)
        ]
        store.store_chunks("shared/note", chunks)
    return worker_id


class TestConcurrentWrites:
    def test_parallel_writers_to_different_notes(self, tmp_path) -> None:
        db_path = str(tmp_path / "recall.sqlite")
        VectorStore(Path(db_path), dimensions=DIMS).has_any_embeddings()

        with ProcessPoolExecutor(max_workers=4) as pool:
            done = list(pool.map(_store_worker, range(4), [db_path] * 4, [5] * 4))

        assert sorted(done) == [0, 1, 2, 3]
        stats = VectorStore(Path(db_path), dimensions=DIMS).stats()
        assert stats.total_entities == 20
        assert stats.total_chunks == 40

    def test_parallel_enqueue_keeps_one_row_per_note(self, tmp_path) -> None:
        db_path = str(tmp_path / "recall.sqlite")
        EmbeddingQueue(Path(db_path)).queue_length()

        with ProcessPoolExecutor(max_workers=3) as pool:
            list(pool.map(_queue_worker, range(3), [db_path] * 3))

        assert EmbeddingQueue(Path(db_path)).queue_length() == 10

    def test_concurrent_rewrites_leave_one_complete_version(self, tmp_path) -> None:
        db_path = str(tmp_path / "recall.sqlite")
        VectorStore(Path(db_path), dimensions=DIMS).has_any_embeddings()

        with ProcessPoolExecutor(max_workers=3) as pool:
            list(pool.map(_rewrite_worker, range(3), [db_path] * 3))

        chunks = VectorStore(Path(db_path), dimensions=DIMS).get_chunks("shared/note")
        texts = {c.chunk_text for c in chunks}
        assert len(texts) == 1
        assert len(chunks) == chunks[0].total_chunks
        assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
