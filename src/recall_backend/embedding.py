"""Embedding client for the local inference service (Ollama).

One text per request, with input truncation, bounded timeouts and retry with
exponential backoff. Failures are classified by status code: 5xx, network
errors and timeouts are retried; 4xx fails on the first attempt because a
malformed request cannot succeed on replay.
"""

import asyncio
import math
from enum import Enum
from typing import Protocol

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from recall_backend.errors import EmbeddingClientError, EmbeddingError, EmbeddingServerError


class TaskType(str, Enum):
    """Task prefixes understood by nomic-style embedding models."""

    SEARCH_DOCUMENT = "search_document"
    SEARCH_QUERY = "search_query"


class EmbeddingConfig(BaseModel):
    """Configuration for embedding generation.

    Attributes:
        provider: Inference backend ("ollama")
        base_url: Inference service root URL
        model: Model identifier served by the inference service
        version: Version tag for re-embedding triggers (e.g., "v1")
        dimensions: Expected embedding dimensionality
        batch_size: Number of texts embedded concurrently per group
        max_retries: Maximum attempts per text (including the first)
        base_delay_seconds: Backoff base; attempt n waits base * 2**n
        timeout_seconds: Per-request timeout
        max_input_chars: Inputs longer than this are truncated
        task_prefix: Prefix inputs with their task type
    """

    provider: str = "ollama"
    base_url: str = "http://localhost:11434"
    model: str = "nomic-embed-text"
    version: str = "v1"
    dimensions: int = Field(default=768, ge=8, le=4096)
    batch_size: int = Field(default=100, ge=1, le=500)
    max_retries: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0)
    timeout_seconds: float = Field(default=60.0, gt=0.0, le=600.0)
    max_input_chars: int = Field(default=32_000, ge=1)
    task_prefix: bool = True


class EmbeddingClient(Protocol):
    """Protocol for embedding client implementations."""

    async def embed(
        self, text: str, task: TaskType = TaskType.SEARCH_DOCUMENT
    ) -> list[float] | None:
        """Generate an embedding for a single text.

        Args:
            text: Input text
            task: Task context for the embedding

        Returns:
            Embedding vector, or None for empty input

        Raises:
            EmbeddingError: On unrecoverable failure
        """
        ...


class OllamaEmbedding:
    """Ollama embedding client with failure classification and backoff.

    Meant to be constructed once per process and shared: it keeps one
    connection pool and no per-request state, so concurrent calls are safe.
    """

    def __init__(self, config: EmbeddingConfig, client: httpx.AsyncClient | None = None):
        """Initialize Ollama client.

        Args:
            config: Embedding configuration
            client: Shared HTTP client; one is created (and owned) if omitted
        """
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)
        self._base_url = config.base_url.rstrip("/")

    async def __aenter__(self) -> "OllamaEmbedding":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def embed(
        self, text: str, task: TaskType = TaskType.SEARCH_DOCUMENT
    ) -> list[float] | None:
        """Generate an embedding for one text with retry logic.

        Args:
            text: Input text
            task: Task context for the embedding

        Returns:
            Embedding vector, or None if text is empty/whitespace (no request made)

        Raises:
            EmbeddingClientError: Service rejected the request (4xx), not retried
            EmbeddingServerError: 5xx/network/timeout on every attempt
            EmbeddingError: Response body was not a valid embedding
        """
        if not text or not text.strip():
            return None

        if len(text) > self.config.max_input_chars:
            logger.debug(
                f"Truncating embedding input from {len(text)} to "
                f"{self.config.max_input_chars} characters"
            )
            text = text[: self.config.max_input_chars]

        prompt = f"{task.value}: {text}" if self.config.task_prefix else text
        payload = {"model": self.config.model, "prompt": prompt}
        url = f"{self._base_url}/api/embeddings"
        max_retries = self.config.max_retries
        last_status: int | None = None
        last_error = ""

        for attempt in range(max_retries):
            try:
                response = await self._client.post(
                    url, json=payload, timeout=self.config.timeout_seconds
                )
            except httpx.TimeoutException as e:
                last_status = None
                last_error = f"timeout: {e}"
                logger.warning(
                    f"Timeout embedding text (attempt {attempt + 1}/{max_retries}): {e}"
                )
            except httpx.TransportError as e:
                last_status = None
                last_error = f"network error: {e}"
                logger.warning(
                    f"Network error embedding text (attempt {attempt + 1}/{max_retries}): {e}"
                )
            else:
                if response.is_success:
                    vector = self._parse(response)
                    logger.debug(
                        f"Embedded {len(text)} chars with {self.config.model} "
                        f"(attempt {attempt + 1}/{max_retries})"
                    )
                    return vector

                last_status = response.status_code
                if response.status_code < 500:
                    logger.error(
                        f"Inference service rejected embedding request: HTTP {last_status}"
                    )
                    raise EmbeddingClientError(
                        f"Ollama API error: {last_status} (not retried)",
                        status=last_status,
                        attempts=attempt + 1,
                    )
                last_error = f"HTTP {last_status}"
                logger.warning(
                    f"Server error {last_status} embedding text "
                    f"(attempt {attempt + 1}/{max_retries})"
                )

            if attempt < max_retries - 1:
                await asyncio.sleep(self.config.base_delay_seconds * 2**attempt)

        raise EmbeddingServerError(
            f"Embedding failed after {max_retries} attempts ({last_error})",
            status=last_status,
            attempts=max_retries,
        )

    def _parse(self, response: httpx.Response) -> list[float]:
        """Extract and validate the embedding vector from a success response."""
        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingError(f"Invalid JSON from inference service: {e}") from e

        vector = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(vector, list) or not vector:
            raise EmbeddingError("Inference response did not contain an embedding")

        if len(vector) != self.config.dimensions:
            raise EmbeddingError(
                f"Expected {self.config.dimensions} dimensions, got {len(vector)}"
            )

        values = [float(v) for v in vector]
        for i, val in enumerate(values):
            if not math.isfinite(val):
                raise EmbeddingError(f"Embedding contains non-finite value at index {i}")
        return values

    async def health_check(self) -> bool:
        """Check if the inference service is reachable.

        Returns:
            True if /api/tags answers with a success status
        """
        try:
            response = await self._client.get(f"{self._base_url}/api/tags", timeout=5.0)
            return response.is_success
        except httpx.HTTPError:
            return False

    async def model_available(self) -> bool:
        """Check that the configured model is installed on the inference service."""
        try:
            response = await self._client.get(f"{self._base_url}/api/tags", timeout=5.0)
            response.raise_for_status()
            installed = {m.get("name", "") for m in response.json().get("models", [])}
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Failed to check installed models: {e}")
            return False

        # Ollama lists models as "name:tag"
        model = self.config.model
        bare = model.split(":")[0]
        return bool({model, f"{model}:latest", bare, f"{bare}:latest"} & installed)


def create_embedding_client(
    config: EmbeddingConfig, client: httpx.AsyncClient | None = None
) -> EmbeddingClient:
    """Factory function to create an embedding client for the configured provider.

    Args:
        config: Embedding configuration
        client: Optional shared HTTP client

    Returns:
        Embedding client implementation

    Example:
        >>> config = EmbeddingConfig(model="nomic-embed-text", dimensions=768)
        >>> client = create_embedding_client(config)
    """
    if config.provider == "ollama":
        return OllamaEmbedding(config, client=client)
    raise ValueError(f"Unknown embedding provider {config.provider!r}. Expected 'ollama'")
