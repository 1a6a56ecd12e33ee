"""Composition root wiring the recall components together.

One RecallPipeline per process owns the long-lived HTTP clients and hands
the same instances to every component that needs them.
"""

from __future__ import annotations

from pathlib import Path
from types import TracebackType

import httpx
from loguru import logger

from recall_backend.chunking import RecursiveCharChunker
from recall_backend.config import RecallConfig, load_config
from recall_backend.documents import RpcDocumentStore
from recall_backend.embedding import EmbeddingClient, create_embedding_client
from recall_backend.indexer import DrainReport, NoteIndexer
from recall_backend.queue import EmbeddingQueue
from recall_backend.search import SearchService
from recall_backend.store import VectorStore
from recall_backend.trigger import EmbeddingTrigger


class RecallPipeline:
    """All recall components built from one configuration.

    Use as an async context manager so the HTTP clients are closed and
    background embedding tasks are awaited on exit:

        >>> async with RecallPipeline.from_config(load_config()) as recall:
        ...     recall.trigger.trigger_embedding("notes/idea", text)
        ...     response = await recall.search.search("idea")
    """

    def __init__(
        self,
        config: RecallConfig,
        embedding: EmbeddingClient,
        store: VectorStore,
        queue: EmbeddingQueue,
        documents: RpcDocumentStore,
        indexer: NoteIndexer,
        trigger: EmbeddingTrigger,
        search: SearchService,
        http_clients: list[httpx.AsyncClient],
    ):
        self.config = config
        self.embedding = embedding
        self.store = store
        self.queue = queue
        self.documents = documents
        self.indexer = indexer
        self.trigger = trigger
        self.search = search
        self._http_clients = http_clients

    @classmethod
    def from_config(cls, config: RecallConfig | None = None) -> RecallPipeline:
        """Build every component from configuration (loads conf/recall/default.yaml if None)."""
        config = config or load_config()

        inference_http = httpx.AsyncClient(timeout=config.embedding.timeout_seconds)
        documents_http = httpx.AsyncClient(timeout=config.documents.timeout_seconds)

        embedding = create_embedding_client(config.embedding, client=inference_http)
        db_path = Path(config.store.db_path)
        store = VectorStore(
            db_path,
            dimensions=config.embedding.dimensions,
            busy_timeout_ms=config.store.busy_timeout_ms,
        )
        queue = EmbeddingQueue(db_path, busy_timeout_ms=config.store.busy_timeout_ms)
        documents = RpcDocumentStore(
            config.documents.base_url,
            client=documents_http,
            timeout_seconds=config.documents.timeout_seconds,
        )
        indexer = NoteIndexer(
            embedding,
            store,
            RecursiveCharChunker(config.chunking),
            documents=documents,
            queue=queue,
            batch_size=config.embedding.batch_size,
            max_attempts=config.queue.max_attempts,
            base_delay_seconds=config.embedding.base_delay_seconds,
            lock_timeout_seconds=config.queue.lock_timeout_seconds,
        )
        trigger = EmbeddingTrigger(
            indexer,
            queue=queue,
            documents=documents,
            catch_up_config=config.catch_up,
            build_config=config,
        )
        search = SearchService(embedding, store, documents, config=config.search)

        logger.info(
            f"Recall pipeline ready: model={config.embedding.model}, store={db_path}, "
            f"documents={config.documents.base_url}"
        )
        return cls(
            config=config,
            embedding=embedding,
            store=store,
            queue=queue,
            documents=documents,
            indexer=indexer,
            trigger=trigger,
            search=search,
            http_clients=[inference_http, documents_http],
        )

    async def drain_queue(self) -> DrainReport:
        """Retry every note on the offline queue."""
        return await self.indexer.drain_queue()

    async def aclose(self) -> None:
        """Wait for background work, then close HTTP clients."""
        await self.trigger.wait_idle()
        for client in self._http_clients:
            await client.aclose()

    async def __aenter__(self) -> RecallPipeline:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
