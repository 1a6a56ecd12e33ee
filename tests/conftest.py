"""Pytest configuration for test discovery and shared fixtures.

This file ensures that:
- `src/` is importable
- Tests get an isolated SQLite file and small (8-dimensional) vectors
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from recall_backend.embedding import EmbeddingConfig  # noqa: E402
from recall_backend.queue import EmbeddingQueue  # noqa: E402
from recall_backend.store import VectorStore  # noqa: E402

DIMS = 8


@pytest.fixture
def dims() -> int:
    """Embedding dimensionality used throughout the tests."""
    return DIMS


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Fresh SQLite file per test."""
    return tmp_path / "recall.sqlite"


@pytest.fixture
def store(db_path: Path) -> VectorStore:
    return VectorStore(db_path, dimensions=DIMS)


@pytest.fixture
def queue(db_path: Path) -> EmbeddingQueue:
    return EmbeddingQueue(db_path)


@pytest.fixture
def embedding_config() -> EmbeddingConfig:
    """Ollama config with no backoff delay so retry tests run instantly."""
    return EmbeddingConfig(
        base_url="http://ollama.test",
        model="nomic-embed-text",
        dimensions=DIMS,
        max_retries=3,
        base_delay_seconds=0.0,
        timeout_seconds=5.0,
    )


@pytest.fixture
def unit_vector() -> Callable[[int], list[float]]:
    """Return a factory for axis-aligned unit vectors (e_i)."""

    def _make(axis: int) -> list[float]:
        vector = [0.0] * DIMS
        vector[axis % DIMS] = 1.0
        return vector

    return _make
