"""Batched embedding generation with per-item failure isolation.

Texts are processed in fixed-size groups; inside a group every call runs
concurrently and independently, so one failure never aborts its siblings.
Each input gets an explicit outcome (success, empty or failed) aligned by
index with the input list.
"""

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from recall_backend.embedding import EmbeddingClient, TaskType

ProgressCallback = Callable[[int, int], None]


class OutcomeStatus(str, Enum):
    """Per-item result of a batch embedding run."""

    SUCCESS = "success"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True)
class EmbedOutcome:
    """Result for one input text.

    Attributes:
        status: success, empty (nothing to embed) or failed
        vector: Embedding for successful items, else None
        error: Failure description for failed items, else None
    """

    status: OutcomeStatus
    vector: list[float] | None = None
    error: str | None = None


@dataclass
class BatchResult:
    """Aligned outcomes for a batch of texts."""

    outcomes: list[EmbedOutcome] = field(default_factory=list)

    @property
    def embeddings(self) -> list[list[float] | None]:
        """Vectors aligned with the inputs; None for empty or failed items."""
        return [o.vector for o in self.outcomes]

    @property
    def failed(self) -> list[int]:
        """Indices of inputs that failed to embed."""
        return [i for i, o in enumerate(self.outcomes) if o.status is OutcomeStatus.FAILED]

    @property
    def empty(self) -> list[int]:
        """Indices of inputs that had nothing to embed."""
        return [i for i, o in enumerate(self.outcomes) if o.status is OutcomeStatus.EMPTY]


async def batch_embed(
    client: EmbeddingClient,
    texts: Sequence[str],
    batch_size: int = 100,
    on_progress: ProgressCallback | None = None,
    task: TaskType = TaskType.SEARCH_DOCUMENT,
) -> BatchResult:
    """Generate embeddings for many texts in concurrent groups.

    Args:
        client: Embedding client
        texts: Input texts
        batch_size: Number of texts embedded concurrently per group
        on_progress: Called once per group with (completed, total)
        task: Task context passed through to the client

    Returns:
        BatchResult with one outcome per input text

    Raises:
        ValueError: If batch_size is not positive
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    total = len(texts)
    result = BatchResult()

    for offset in range(0, total, batch_size):
        group = texts[offset : offset + batch_size]
        settled = await asyncio.gather(
            *(client.embed(text, task) for text in group), return_exceptions=True
        )

        for idx, value in enumerate(settled):
            if isinstance(value, asyncio.CancelledError):
                raise value
            if isinstance(value, BaseException):
                logger.warning(f"Embedding failed for batch item {offset + idx}: {value}")
                result.outcomes.append(EmbedOutcome(OutcomeStatus.FAILED, error=str(value)))
            elif value is None:
                result.outcomes.append(EmbedOutcome(OutcomeStatus.EMPTY))
            else:
                result.outcomes.append(EmbedOutcome(OutcomeStatus.SUCCESS, vector=value))

        completed = min(offset + batch_size, total)
        if on_progress is not None:
            on_progress(completed, total)

    failed = len(result.failed)
    if failed:
        logger.warning(f"Batch embedding finished with {failed}/{total} failures")
    else:
        logger.debug(f"Batch embedded {total} texts")
    return result
