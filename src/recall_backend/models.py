"""Pydantic models for recall data structures.

All data flowing between the pipeline stages is validated against these
schemas: chunk embeddings on their way into the store, queue rows on their
way out, and the search request/response surface.
"""

import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class ChunkEmbedding(BaseModel):
    """One embedded chunk ready to be written to the vector store.

    Attributes:
        chunk_index: 0-indexed position of the chunk within its note
        total_chunks: Number of chunks the note was split into
        chunk_start: Starting character offset in the note
        chunk_end: Ending character offset (exclusive)
        chunk_text: Raw chunk text
        embedding: Embedding vector
    """

    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    chunk_start: int = Field(ge=0)
    chunk_end: int = Field(ge=1)
    chunk_text: str = Field(min_length=1)
    embedding: list[float] = Field(min_length=1)

    @field_validator("embedding")
    @classmethod
    def validate_vector_values(cls, v: list[float]) -> list[float]:
        """Ensure vector contains valid finite floats."""
        for i, val in enumerate(v):
            if not math.isfinite(val):
                raise ValueError(f"Vector contains non-finite value at index {i}: {val}")
        return v

    @model_validator(mode="after")
    def validate_positions(self) -> "ChunkEmbedding":
        """Ensure offsets and indices are consistent."""
        if self.chunk_end <= self.chunk_start:
            raise ValueError(
                f"chunk_end ({self.chunk_end}) must be greater than chunk_start "
                f"({self.chunk_start})"
            )
        if self.chunk_index >= self.total_chunks:
            raise ValueError(
                f"chunk_index {self.chunk_index} out of range for {self.total_chunks} chunks"
            )
        return self


class EmbeddingRecord(ChunkEmbedding):
    """A persisted chunk embedding, keyed by (entity_id, chunk_index)."""

    entity_id: str = Field(min_length=1)


class NearestMatch(BaseModel):
    """A chunk row returned by a nearest-neighbour query.

    Attributes:
        entity_id: Owning note permalink
        chunk_index: Matching chunk position
        total_chunks: Number of chunks stored for the note
        chunk_text: Matching chunk text
        distance: Cosine distance to the query (lower is closer)
    """

    entity_id: str
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    chunk_text: str
    distance: float

    @property
    def similarity(self) -> float:
        """Cosine similarity clamped to [0, 1]."""
        return min(1.0, max(0.0, 1.0 - self.distance))


class StoreStats(BaseModel):
    """Statistics about the vector store."""

    total_chunks: int = Field(ge=0)
    total_entities: int = Field(ge=0)


class QueueItem(BaseModel):
    """A pending or retryable embedding job.

    Attributes:
        id: Queue row id
        note_id: Note permalink (unique across the queue)
        created_at: Enqueue time; reset on re-enqueue
        attempts: Failed processing attempts so far
        last_error: Error recorded by the last failed attempt
    """

    id: int
    note_id: str
    created_at: datetime
    attempts: int = Field(default=0, ge=0)
    last_error: str | None = None


class SearchMode(str, Enum):
    """How a query is answered."""

    AUTO = "auto"
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


class SearchSource(str, Enum):
    """Which path produced a result."""

    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    RELATED = "related"
    HYBRID = "hybrid"


class SearchRequest(BaseModel):
    """A search query request.

    Attributes:
        query: Natural language or keyword query
        limit: Maximum number of direct results (default 10)
        threshold: Minimum cosine similarity for semantic matches (default 0.7)
        mode: auto, semantic, keyword or hybrid
        depth: Relation expansion depth (0 disables expansion)
        project: Optional project scope
        folders: Optional permalink folder prefixes to keep
        full_content: Attach each result's full note text
    """

    query: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=100)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    mode: SearchMode = SearchMode.AUTO
    depth: int = Field(default=0, ge=0, le=3)
    project: str | None = None
    folders: list[str] | None = None
    full_content: bool = False

    @field_validator("query")
    @classmethod
    def validate_query(cls, v: str) -> str:
        """Reject whitespace-only queries."""
        if not v.strip():
            raise ValueError("query cannot be blank")
        return v


class SearchResult(BaseModel):
    """A single search result.

    Attributes:
        permalink: Note identifier
        title: Note title
        similarity_score: Score in [0, 1], higher is better
        snippet: Short excerpt (best chunk for semantic matches)
        source: semantic, keyword, related or hybrid
        depth: 0 for direct matches, >0 when reached via relation expansion
        full_content: Full note text when requested
    """

    permalink: str
    title: str
    similarity_score: float = Field(ge=0.0, le=1.0)
    snippet: str = ""
    source: SearchSource
    depth: int = Field(default=0, ge=0)
    full_content: str | None = None


class SearchResponse(BaseModel):
    """Results of a search plus the mode that actually answered it."""

    results: list[SearchResult] = Field(default_factory=list)
    total: int = Field(ge=0)
    query: str
    mode: SearchMode
    depth: int = Field(ge=0)
    actual_source: SearchSource


class DocumentRef(BaseModel):
    """A note listed by the document store."""

    id: str = Field(min_length=1)
    title: str | None = None


class TextMatch(BaseModel):
    """A keyword match returned by the document store."""

    id: str
    title: str = ""
    snippet: str = ""
    score: float = 0.0


class BuildRecord(BaseModel):
    """Record of the last successful catch-up run.

    Attributes:
        built_at: When the run completed
        embedding_version: Embedding version used
        config_fingerprint: Hash of the embedding-relevant configuration
        model: Embedding model name
        dimensions: Embedding dimensionality
        project: Project the run was scoped to, if any
    """

    built_at: datetime
    embedding_version: str
    config_fingerprint: str
    model: str
    dimensions: int = Field(ge=1)
    project: str | None = None
