"""End-to-end note indexing workflow.

Combines chunking, embedding, and vector storage, and drains the offline
queue of notes whose indexing failed earlier.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from filelock import FileLock, Timeout
from loguru import logger

from recall_backend.batch import OutcomeStatus, batch_embed
from recall_backend.chunking import Chunker, RecursiveCharChunker
from recall_backend.documents import DocumentStore
from recall_backend.embedding import EmbeddingClient, TaskType
from recall_backend.errors import EmbeddingError, RecallError
from recall_backend.models import ChunkEmbedding
from recall_backend.queue import MAX_ATTEMPTS, EmbeddingQueue
from recall_backend.store import VectorStore

ContentFetcher = Callable[[str], Awaitable[str | None]]


@dataclass
class DrainReport:
    """Outcome of one queue drain.

    Attributes:
        processed: Notes embedded and stored
        failed: Failed attempts recorded (an item may fail more than once)
        dropped: Items removed without success (attempt ceiling or missing note)
        remaining: Items still queued when the drain finished
    """

    processed: int = 0
    failed: int = 0
    dropped: int = 0
    remaining: int = 0


class NoteIndexer:
    """Indexes note content into the vector store.

    Handles the complete workflow:
    1. Chunk note content
    2. Embed every chunk
    3. Replace the note's chunk set in the store
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        store: VectorStore,
        chunker: Chunker | None = None,
        documents: DocumentStore | None = None,
        queue: EmbeddingQueue | None = None,
        *,
        batch_size: int = 100,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay_seconds: float = 1.0,
        lock_timeout_seconds: float = 0.0,
    ):
        """Initialize note indexer.

        Args:
            embedding_client: Client for generating embeddings
            store: Vector store for chunk embeddings
            chunker: Text chunker (defaults to RecursiveCharChunker)
            documents: Document store used to fetch content while draining
            queue: Offline queue drained by drain_queue
            batch_size: Chunks embedded concurrently per group
            max_attempts: Failed attempts before a queued note is dropped
            base_delay_seconds: Base of the backoff between failed drain attempts
            lock_timeout_seconds: How long drain_queue waits for the drainer lock
        """
        self.embedding_client = embedding_client
        self.store = store
        self.chunker = chunker or RecursiveCharChunker()
        self.documents = documents
        self.queue = queue
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.lock_timeout_seconds = lock_timeout_seconds
        self._draining = False

    async def embed_note(self, content: str) -> list[ChunkEmbedding]:
        """Chunk and embed note content.

        Args:
            content: Full note text

        Returns:
            One ChunkEmbedding per chunk, or [] for empty content

        Raises:
            EmbeddingError: If any chunk fails to embed
        """
        chunks = self.chunker.chunk(content)
        if not chunks:
            return []

        result = await batch_embed(
            self.embedding_client,
            [chunk.text for chunk in chunks],
            batch_size=self.batch_size,
            task=TaskType.SEARCH_DOCUMENT,
        )

        for i, outcome in enumerate(result.outcomes):
            if outcome.status is OutcomeStatus.FAILED:
                raise EmbeddingError(f"Chunk {i}/{len(chunks)} failed to embed: {outcome.error}")
            if outcome.vector is None:
                raise EmbeddingError(f"No embedding returned for chunk {i}/{len(chunks)}")

        return [
            ChunkEmbedding(
                chunk_index=chunk.chunk_index,
                total_chunks=chunk.total_chunks,
                chunk_start=chunk.start,
                chunk_end=chunk.end,
                chunk_text=chunk.text,
                embedding=vector,
            )
            for chunk, vector in zip(chunks, result.embeddings, strict=True)
        ]

    async def index_note(self, note_id: str, content: str) -> int:
        """Embed a note and replace its stored chunks.

        Nothing is written unless every chunk embedded successfully.

        Returns:
            Number of chunks stored
        """
        chunk_embeddings = await self.embed_note(content)
        if not chunk_embeddings:
            logger.debug(f"No content to embed for {note_id}")
            return 0

        stored = await asyncio.to_thread(self.store.store_chunks, note_id, chunk_embeddings)
        logger.debug(f"Embedding stored for {note_id} ({stored} chunks)")
        return stored

    def _lock_path(self) -> Path:
        db_path = self.store.db_path
        return db_path.with_name(db_path.name + ".drain.lock")

    async def drain_queue(self, fetch_content: ContentFetcher | None = None) -> DrainReport:
        """Process queued notes until the queue is empty.

        Args:
            fetch_content: Returns a note's current content by id (defaults to
                the document store's read_document)

        Returns:
            DrainReport; empty if another drain already holds the lock
        """
        if self.queue is None:
            raise ValueError("drain_queue requires a queue")
        if fetch_content is None:
            if self.documents is None:
                raise ValueError("drain_queue requires a document store or fetch_content")
            fetch_content = self.documents.read_document

        queue = self.queue
        if self._draining:
            logger.debug("Queue drain already running, skipping")
            return DrainReport(remaining=await self._queue_length(queue))

        self._draining = True
        lock = FileLock(str(self._lock_path()), thread_local=False)
        try:
            try:
                await asyncio.to_thread(lock.acquire, timeout=self.lock_timeout_seconds)
            except Timeout:
                logger.debug("Queue drain held by another process, skipping")
                return DrainReport(remaining=await self._queue_length(queue))
            try:
                report = await self._drain(queue, fetch_content)
            finally:
                lock.release()
        finally:
            self._draining = False

        report.remaining = await self._queue_length(queue)
        logger.info(
            f"Queue drain finished: {report.processed} processed, {report.failed} failed, "
            f"{report.dropped} dropped, {report.remaining} remaining"
        )
        return report

    async def _queue_length(self, queue: EmbeddingQueue) -> int:
        try:
            return await asyncio.to_thread(queue.queue_length)
        except RecallError as e:
            logger.error(f"Failed to read queue length: {e}")
            return 0

    async def _drain(self, queue: EmbeddingQueue, fetch_content: ContentFetcher) -> DrainReport:
        report = DrainReport()
        try:
            await self._drain_items(queue, fetch_content, report)
        except RecallError as e:
            logger.error(f"Queue drain stopped early: {e}")
        return report

    async def _drain_items(
        self, queue: EmbeddingQueue, fetch_content: ContentFetcher, report: DrainReport
    ) -> None:
        item = await asyncio.to_thread(queue.dequeue)

        while item is not None:
            if item.attempts >= self.max_attempts:
                logger.warning(
                    f"Dropping {item.note_id} from queue after {item.attempts} failures: "
                    f"{item.last_error}"
                )
                await asyncio.to_thread(queue.mark_processed, item.id)
                report.dropped += 1
                item = await asyncio.to_thread(queue.dequeue)
                continue

            try:
                content = await fetch_content(item.note_id)
                if not content:
                    logger.warning(
                        f"Could not fetch content for {item.note_id}, dropping from queue"
                    )
                    await asyncio.to_thread(queue.mark_processed, item.id)
                    report.dropped += 1
                    item = await asyncio.to_thread(queue.dequeue)
                    continue
                await self.index_note(item.note_id, content)
            except Exception as e:
                delay = self.base_delay_seconds * (2**item.attempts)
                logger.warning(
                    f"Retry {item.attempts + 1}/{self.max_attempts} for {item.note_id} failed: "
                    f"{e}. Next in {delay:.1f}s"
                )
                await asyncio.to_thread(queue.increment_attempts, item.id, str(e))
                report.failed += 1
                await asyncio.sleep(delay)
            else:
                await asyncio.to_thread(queue.mark_processed, item.id)
                report.processed += 1
                logger.info(f"Queued embedding succeeded for {item.note_id}")

            item = await asyncio.to_thread(queue.dequeue)
