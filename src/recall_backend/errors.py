"""Exception taxonomy for the recall backend.

Inference failures are split by retryability: server-side failures (5xx,
network, timeouts) are retried inside the embedding client and only surface
once retries are exhausted; client-side failures (4xx) surface immediately.
"""

from __future__ import annotations


class RecallError(Exception):
    """Base class for all recall backend errors."""


class EmbeddingError(RecallError):
    """Embedding generation failed.

    Attributes:
        status: Last HTTP status seen (None for network errors and bad payloads)
        attempts: Number of requests made before giving up
        retryable: Whether the failure class is transient
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        attempts: int = 1,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.attempts = attempts
        self.retryable = retryable


class EmbeddingClientError(EmbeddingError):
    """The inference service rejected the request (4xx); never retried."""

    def __init__(self, message: str, *, status: int | None = None, attempts: int = 1) -> None:
        super().__init__(message, status=status, attempts=attempts, retryable=False)


class EmbeddingServerError(EmbeddingError):
    """Transient inference failure (5xx, network, timeout) after retry exhaustion."""

    def __init__(self, message: str, *, status: int | None = None, attempts: int = 1) -> None:
        super().__init__(message, status=status, attempts=attempts, retryable=True)


class DocumentStoreError(RecallError):
    """The external document store could not be reached or returned an error."""


class VectorStoreError(RecallError):
    """The embedded vector store rejected a write or failed a read."""
