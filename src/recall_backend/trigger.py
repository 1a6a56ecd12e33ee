"""Fire-and-forget embedding for note writes and background catch-up.

Embedding never gates a note write: `trigger_embedding` schedules the work
on the running event loop and returns immediately. Failures are logged and
the note is put on the offline queue for a later drain. Catch-up finds notes
that exist in the document store but have no stored vectors and embeds them
in rate-limited batches.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from recall_backend.build_state import (
    build_record_from_config,
    compute_config_fingerprint,
    load_build_record,
    save_build_record,
)
from recall_backend.config import CatchUpConfig, RecallConfig
from recall_backend.documents import DocumentStore
from recall_backend.errors import RecallError
from recall_backend.indexer import NoteIndexer
from recall_backend.queue import EmbeddingQueue
from recall_backend.sync import plan_sync, select_missing


@dataclass
class CatchUpReport:
    """Outcome of one catch-up run.

    Attributes:
        total: Notes selected for embedding
        processed: Notes embedded and stored
        failed: Notes whose embedding failed (queued for retry when possible)
        skipped: Listed notes left alone (already embedded or without content)
    """

    total: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0


class EmbeddingTrigger:
    """Schedules background embedding work and keeps it referenced until done."""

    def __init__(
        self,
        indexer: NoteIndexer,
        queue: EmbeddingQueue | None = None,
        documents: DocumentStore | None = None,
        catch_up_config: CatchUpConfig | None = None,
        build_config: RecallConfig | None = None,
    ):
        """Initialize trigger.

        Args:
            indexer: Note indexer doing the actual embedding and storage
            queue: Offline queue for notes that failed to embed
            documents: Document store listing notes for catch-up
            catch_up_config: Batch size, pacing and build-state location
            build_config: Full configuration; when given, catch-up records a
                build fingerprint and re-embeds everything after a model or
                chunking change
        """
        self.indexer = indexer
        self.queue = queue
        self.documents = documents
        self.catch_up_config = catch_up_config or CatchUpConfig()
        self.build_config = build_config
        self._tasks: set[asyncio.Task[object]] = set()

    @property
    def pending_tasks(self) -> int:
        """Number of background tasks still running."""
        return len(self._tasks)

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def trigger_embedding(self, note_id: str, content: str) -> None:
        """Embed and store a note in the background.

        Returns immediately and never raises. Without a running event loop the
        note is queued instead.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop, queueing {note_id} for embedding")
            self._enqueue(note_id)
            return

        task = loop.create_task(self._embed(note_id, content), name=f"embed:{note_id}")
        self._track(task)

    async def _embed(self, note_id: str, content: str) -> None:
        try:
            await self.indexer.index_note(note_id, content)
        except Exception as e:
            logger.warning(f"Embedding failed for {note_id}: {e}")
            await asyncio.to_thread(self._enqueue, note_id)

    def _enqueue(self, note_id: str) -> None:
        if self.queue is None:
            return
        try:
            self.queue.enqueue(note_id)
        except RecallError as e:
            logger.error(f"Could not queue {note_id} for retry: {e}")

    async def missing_count(self, project: str | None = None) -> int:
        """Count listed notes without stored embeddings (0 if the lookup fails)."""
        if self.documents is None:
            return 0
        try:
            docs = await self.documents.list_documents(project)
            embedded = await asyncio.to_thread(self.indexer.store.list_entity_ids)
        except RecallError as e:
            logger.warning(f"Failed to count missing embeddings (project={project}): {e}")
            return 0
        return len(select_missing((d.id for d in docs), embedded))

    def catch_up(
        self, project: str | None = None, force: bool = False, limit: int | None = None
    ) -> asyncio.Task[CatchUpReport | None] | None:
        """Start a background catch-up and return its task.

        Callers may ignore the task; failures are logged, never raised.
        Returns None when called without a running event loop.
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.bind(
                event="catch_up.skipped", project=project, reason="no_event_loop"
            ).warning("No running event loop, catch-up embedding not started")
            return None

        task = loop.create_task(
            self._catch_up_logged(project, force, limit), name="embedding-catch-up"
        )
        self._track(task)
        return task

    async def _catch_up_logged(
        self, project: str | None, force: bool, limit: int | None
    ) -> CatchUpReport | None:
        try:
            return await self.run_catch_up(project=project, force=force, limit=limit)
        except Exception as e:
            logger.bind(event="catch_up.error", project=project, error=str(e)).error(
                f"Catch-up embedding failed: {e}"
            )
            return None

    def _state_path(self) -> Path:
        return Path(self.catch_up_config.state_file)

    def _record_build(self, project: str | None) -> None:
        if self.build_config is not None:
            record = build_record_from_config(self.build_config, project)
            save_build_record(self._state_path(), record)

    def _needs_rebuild(self) -> bool:
        if self.build_config is None:
            return False
        record = load_build_record(self._state_path())
        decision = plan_sync(
            record,
            compute_config_fingerprint(self.build_config),
            self.build_config.embedding.version,
        )
        if decision["action"] == "rebuild":
            logger.info(f"Stored embeddings are outdated ({decision['reason']}), re-embedding all")
            return True
        return False

    async def run_catch_up(
        self, project: str | None = None, force: bool = False, limit: int | None = None
    ) -> CatchUpReport:
        """Embed every listed note that has no stored vectors.

        Args:
            project: Project scope passed to the document store
            force: Re-embed all listed notes
            limit: Maximum notes to embed in this run

        Returns:
            CatchUpReport

        Raises:
            ValueError: If no document store is configured
            DocumentStoreError: If listing notes fails
        """
        if self.documents is None:
            raise ValueError("catch-up requires a document store")

        docs = await self.documents.list_documents(project)
        embedded = await asyncio.to_thread(self.indexer.store.list_entity_ids)
        rebuild = force or self._needs_rebuild()

        listed = list(dict.fromkeys(d.id for d in docs))
        selected = select_missing(listed, embedded, force=rebuild, limit=limit)
        report = CatchUpReport(total=len(selected), skipped=len(listed) - len(selected))

        if not selected:
            logger.debug(f"No missing embeddings, skipping catch-up (project={project})")
            if limit is None:
                self._record_build(project)
            return report

        logger.bind(event="catch_up.start", count=len(selected), project=project).info(
            f"Catch-up embedding started for {len(selected)} notes"
        )

        batch_size = self.catch_up_config.batch_size
        for offset in range(0, len(selected), batch_size):
            batch = selected[offset : offset + batch_size]
            settled = await asyncio.gather(
                *(self._catch_up_one(note_id, project) for note_id in batch),
                return_exceptions=True,
            )

            for note_id, outcome in zip(batch, settled, strict=True):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                if isinstance(outcome, BaseException):
                    report.failed += 1
                    logger.bind(
                        event="catch_up.item_failed", noteId=note_id, error=str(outcome)
                    ).warning(f"Catch-up embedding failed for {note_id}: {outcome}")
                    await asyncio.to_thread(self._enqueue, note_id)
                elif outcome:
                    report.processed += 1
                else:
                    report.skipped += 1

            if offset + batch_size < len(selected):
                await asyncio.sleep(self.catch_up_config.delay_between_batches)

        if report.failed == 0 and limit is None:
            self._record_build(project)

        logger.bind(
            event="catch_up.complete",
            project=project,
            processed=report.processed,
            failed=report.failed,
            skipped=report.skipped,
        ).success(
            f"Catch-up embedding complete: {report.processed} processed, "
            f"{report.failed} failed, {report.skipped} skipped"
        )
        return report

    async def _catch_up_one(self, note_id: str, project: str | None) -> bool:
        """Embed one listed note. Returns False when it had no content."""
        assert self.documents is not None
        content = await self.documents.read_document(note_id, project)
        if not content or not content.strip():
            return False
        await self.indexer.index_note(note_id, content)
        return True

    async def wait_idle(self) -> None:
        """Wait until every background task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
