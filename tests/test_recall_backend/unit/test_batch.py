"""Unit tests for batched embedding generation."""

import asyncio
from unittest.mock import AsyncMock

import pytest
import respx
from httpx import Response

from recall_backend.batch import OutcomeStatus, batch_embed
from recall_backend.embedding import OllamaEmbedding, TaskType
from recall_backend.errors import EmbeddingClientError


def vector_for(text: str) -> list[float]:
    return [float(len(text))] * 8


@pytest.fixture
def mock_client():
    """Client that embeds by text length, fails on "bad" and skips blanks."""

    async def embed(text, task=TaskType.SEARCH_DOCUMENT):
        if not text.strip():
            return None
        if text == "bad":
            raise EmbeddingClientError("Ollama API error: 400 (not retried)", status=400)
        return vector_for(text)

    client = AsyncMock()
    client.embed = AsyncMock(side_effect=embed)
    return client


class TestBatchEmbed:
    """Tests for batch_embed."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_three_texts_end_to_end(self, embedding_config) -> None:
        """All three texts embed with the configured dimensionality."""
        respx.post("http://ollama.test/api/embeddings").mock(
            return_value=Response(200, json={"embedding": [0.25] * 8})
        )
        texts = ["short", "a longer text with more words", "x" * 1000]

        async with OllamaEmbedding(embedding_config) as client:
            result = await batch_embed(client, texts, batch_size=10)

        assert result.failed == []
        assert len(result.embeddings) == 3
        assert all(v is not None and len(v) == 8 for v in result.embeddings)

    @pytest.mark.asyncio
    async def test_outcomes_aligned_with_inputs(self, mock_client) -> None:
        texts = ["one", "bad", "   ", "three"]
        result = await batch_embed(mock_client, texts, batch_size=2)

        statuses = [o.status for o in result.outcomes]
        assert statuses == [
            OutcomeStatus.SUCCESS,
            OutcomeStatus.FAILED,
            OutcomeStatus.EMPTY,
            OutcomeStatus.SUCCESS,
        ]
        assert result.failed == [1]
        assert result.empty == [2]
        assert result.embeddings == [vector_for("one"), None, None, vector_for("three")]
        assert "400" in result.outcomes[1].error

    @pytest.mark.asyncio
    async def test_failure_does_not_abort_siblings(self, mock_client) -> None:
        texts = ["bad"] + [f"text {i}" for i in range(5)]
        result = await batch_embed(mock_client, texts, batch_size=10)

        assert mock_client.embed.await_count == 6
        assert result.failed == [0]
        assert all(v is not None for v in result.embeddings[1:])

    @pytest.mark.asyncio
    async def test_progress_once_per_group(self, mock_client) -> None:
        calls: list[tuple[int, int]] = []
        texts = [f"t{i}" for i in range(7)]

        await batch_embed(
            mock_client, texts, batch_size=3, on_progress=lambda c, t: calls.append((c, t))
        )

        assert calls == [(3, 7), (6, 7), (7, 7)]

    @pytest.mark.asyncio
    async def test_group_calls_run_concurrently(self) -> None:
        in_flight = 0
        peak = 0

        async def embed(text, task=TaskType.SEARCH_DOCUMENT):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return [1.0] * 8

        client = AsyncMock()
        client.embed = AsyncMock(side_effect=embed)

        await batch_embed(client, [f"t{i}" for i in range(8)], batch_size=4)

        assert peak == 4

    @pytest.mark.asyncio
    async def test_task_passed_through(self, mock_client) -> None:
        await batch_embed(mock_client, ["q"], task=TaskType.SEARCH_QUERY)
        mock_client.embed.assert_awaited_once_with("q", TaskType.SEARCH_QUERY)

    @pytest.mark.asyncio
    async def test_empty_input(self, mock_client) -> None:
        result = await batch_embed(mock_client, [])
        assert result.outcomes == []
        mock_client.embed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self, mock_client) -> None:
        with pytest.raises(ValueError, match="batch_size must be positive"):
            await batch_embed(mock_client, ["a"], batch_size=0)
