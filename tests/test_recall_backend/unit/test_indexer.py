"""Unit tests for note indexing and queue draining."""

from unittest.mock import AsyncMock

import pytest
from filelock import FileLock

from recall_backend.chunking import ChunkingConfig, RecursiveCharChunker
from recall_backend.embedding import TaskType
from recall_backend.errors import EmbeddingError, EmbeddingServerError, VectorStoreError
from recall_backend.indexer import NoteIndexer
from recall_backend.queue import EmbeddingQueue


@pytest.fixture
def mock_embedding_client(unit_vector):
    """Client returning e_0 for every text."""
    client = AsyncMock()
    client.embed = AsyncMock(return_value=unit_vector(0))
    return client


@pytest.fixture
def mock_documents():
    documents = AsyncMock()
    documents.read_document = AsyncMock(return_value="Some note content")
    return documents


@pytest.fixture
def small_chunker():
    return RecursiveCharChunker(ChunkingConfig(chunk_size_chars=100, overlap_percent=0.15))


class TestIndexNote:
    """Tests for embedding and storing a single note."""

    @pytest.mark.asyncio
    async def test_single_chunk_note(self, mock_embedding_client, store) -> None:
        indexer = NoteIndexer(mock_embedding_client, store)

        stored = await indexer.index_note("notes/a", "A short note")

        assert stored == 1
        mock_embedding_client.embed.assert_awaited_once_with(
            "A short note", TaskType.SEARCH_DOCUMENT
        )
        chunks = store.get_chunks("notes/a")
        assert chunks[0].chunk_text == "A short note"
        assert (chunks[0].chunk_start, chunks[0].chunk_end) == (0, 12)

    @pytest.mark.asyncio
    async def test_multi_chunk_note(self, mock_embedding_client, store, small_chunker) -> None:
        indexer = NoteIndexer(mock_embedding_client, store, small_chunker)
        content = " ".join(f"word{i}" for i in range(100))

        stored = await indexer.index_note("notes/long", content)

        assert stored > 1
        assert mock_embedding_client.embed.await_count == stored
        chunks = store.get_chunks("notes/long")
        assert [c.chunk_index for c in chunks] == list(range(stored))
        assert all(c.total_chunks == stored for c in chunks)

    @pytest.mark.asyncio
    async def test_empty_note_writes_nothing(self, mock_embedding_client, store) -> None:
        indexer = NoteIndexer(mock_embedding_client, store)

        assert await indexer.index_note("notes/empty", "   ") == 0
        mock_embedding_client.embed.assert_not_awaited()
        assert not store.has_any_embeddings()

    @pytest.mark.asyncio
    async def test_chunk_failure_keeps_previous_version(
        self, store, small_chunker, unit_vector
    ) -> None:
        """A failing chunk aborts the write so the old chunk set survives."""
        good = AsyncMock()
        good.embed = AsyncMock(return_value=unit_vector(1))
        await NoteIndexer(good, store).index_note("notes/a", "original")

        calls = 0

        async def flaky(text, task=TaskType.SEARCH_DOCUMENT):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise EmbeddingServerError("Embedding failed after 3 attempts (HTTP 500)")
            return unit_vector(2)

        failing = AsyncMock()
        failing.embed = AsyncMock(side_effect=flaky)
        indexer = NoteIndexer(failing, store, small_chunker)

        with pytest.raises(EmbeddingError, match="failed to embed"):
            await indexer.index_note("notes/a", " ".join(f"word{i}" for i in range(100)))

        chunks = store.get_chunks("notes/a")
        assert len(chunks) == 1
        assert chunks[0].chunk_text == "original"


class TestDrainQueue:
    """Tests for offline queue draining."""

    @pytest.mark.asyncio
    async def test_successful_drain(
        self, mock_embedding_client, mock_documents, store, queue
    ) -> None:
        queue.enqueue("notes/a")
        queue.enqueue("notes/b")
        indexer = NoteIndexer(mock_embedding_client, store, documents=mock_documents, queue=queue)

        report = await indexer.drain_queue()

        assert (report.processed, report.failed, report.dropped, report.remaining) == (2, 0, 0, 0)
        assert store.list_entity_ids() == {"notes/a", "notes/b"}
        assert mock_documents.read_document.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_content_dropped(self, mock_embedding_client, store, queue) -> None:
        queue.enqueue("notes/gone")
        documents = AsyncMock()
        documents.read_document = AsyncMock(return_value=None)
        indexer = NoteIndexer(mock_embedding_client, store, documents=documents, queue=queue)

        report = await indexer.drain_queue()

        assert report.dropped == 1
        assert queue.queue_length() == 0
        mock_embedding_client.embed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persistent_failure_dropped_after_max_attempts(
        self, mock_documents, store, queue
    ) -> None:
        queue.enqueue("notes/a")
        client = AsyncMock()
        client.embed = AsyncMock(side_effect=EmbeddingServerError("HTTP 500"))
        indexer = NoteIndexer(
            client, store, documents=mock_documents, queue=queue, base_delay_seconds=0.0
        )

        report = await indexer.drain_queue()

        assert report.failed == 3
        assert report.dropped == 1
        assert report.processed == 0
        assert report.remaining == 0
        assert client.embed.await_count == 3

    @pytest.mark.asyncio
    async def test_already_exhausted_item_dropped_without_retry(
        self, mock_embedding_client, mock_documents, store, queue
    ) -> None:
        queue.enqueue("notes/a")
        item = queue.dequeue()
        for _ in range(3):
            queue.increment_attempts(item.id, "HTTP 503")
        indexer = NoteIndexer(mock_embedding_client, store, documents=mock_documents, queue=queue)

        report = await indexer.drain_queue()

        assert report.dropped == 1
        mock_documents.read_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recovers_on_later_attempt(
        self, mock_documents, store, queue, unit_vector
    ) -> None:
        queue.enqueue("notes/a")
        client = AsyncMock()
        client.embed = AsyncMock(side_effect=[EmbeddingServerError("HTTP 500"), unit_vector(0)])
        indexer = NoteIndexer(
            client, store, documents=mock_documents, queue=queue, base_delay_seconds=0.0
        )

        report = await indexer.drain_queue()

        assert report.processed == 1
        assert report.failed == 1
        assert store.count_chunks("notes/a") == 1

    @pytest.mark.asyncio
    async def test_custom_fetcher(self, mock_embedding_client, store, queue) -> None:
        queue.enqueue("notes/a")
        fetch = AsyncMock(return_value="fetched content")
        indexer = NoteIndexer(mock_embedding_client, store, queue=queue)

        report = await indexer.drain_queue(fetch_content=fetch)

        assert report.processed == 1
        fetch.assert_awaited_once_with("notes/a")

    @pytest.mark.asyncio
    async def test_skips_when_lock_held(
        self, mock_embedding_client, mock_documents, store, queue
    ) -> None:
        queue.enqueue("notes/a")
        indexer = NoteIndexer(mock_embedding_client, store, documents=mock_documents, queue=queue)

        with FileLock(str(indexer._lock_path())):
            report = await indexer.drain_queue()

        assert report.processed == 0
        assert report.remaining == 1
        mock_documents.read_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requires_queue(self, mock_embedding_client, store) -> None:
        with pytest.raises(ValueError, match="requires a queue"):
            await NoteIndexer(mock_embedding_client, store).drain_queue()

    @pytest.mark.asyncio
    async def test_unreadable_queue_returns_report(
        self, mock_embedding_client, mock_documents, store, tmp_path
    ) -> None:
        """A queue that cannot be opened yields an empty report instead of raising."""
        broken = EmbeddingQueue(tmp_path)
        indexer = NoteIndexer(mock_embedding_client, store, documents=mock_documents, queue=broken)

        report = await indexer.drain_queue()

        assert (report.processed, report.failed, report.dropped, report.remaining) == (0, 0, 0, 0)
        mock_documents.read_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_queue_write_failure_stops_drain(
        self, mock_embedding_client, mock_documents, store, queue, monkeypatch
    ) -> None:
        queue.enqueue("notes/a")

        def fail(item_id: int) -> None:
            raise VectorStoreError("database is locked")

        monkeypatch.setattr(queue, "mark_processed", fail)
        indexer = NoteIndexer(mock_embedding_client, store, documents=mock_documents, queue=queue)

        report = await indexer.drain_queue()

        assert report.processed == 0
        assert report.remaining == 1
        assert store.count_chunks("notes/a") == 1
        assert not indexer._draining
