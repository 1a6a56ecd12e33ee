"""Local-first retrieval backend for a personal knowledge store.

Notes are chunked, embedded through a local Ollama service and stored in an
embedded SQLite vector store; queries are answered semantically with keyword
fallback and optional expansion along wikilinks between notes.

Architecture:
    - chunking: Overlapping character windows on paragraph/line/word boundaries
    - embedding: Ollama client with retry classification (5xx retried, 4xx not)
    - batch: Concurrent batched embedding with per-item outcomes
    - store / queue: SQLite vector store and offline retry queue
    - indexer / trigger: Note indexing, fire-and-forget embedding, catch-up
    - search: Semantic/keyword/hybrid search with relation expansion
    - pipeline: Composition root owning the shared HTTP clients

Usage:
    >>> from recall_backend import RecallPipeline, load_config
    >>> async with RecallPipeline.from_config(load_config()) as recall:
    ...     response = await recall.search.search("protein aggregation", depth=1)
"""

__version__ = "0.1.0"

from recall_backend.config import RecallConfig, load_config
from recall_backend.models import SearchMode, SearchRequest, SearchResponse, SearchResult
from recall_backend.pipeline import RecallPipeline

__all__ = [
    "RecallConfig",
    "RecallPipeline",
    "SearchMode",
    "SearchRequest",
    "SearchResponse",
    "SearchResult",
    "load_config",
]
