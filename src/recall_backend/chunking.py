"""Text chunking for note embeddings.

Splits long notes into overlapping character windows (~2000 characters,
roughly 500 tokens) so each window fits the embedding model's context.
All chunking is deterministic: same input + config -> same chunks.
"""

import math
from dataclasses import dataclass
from typing import Protocol

from langchain_text_splitters import RecursiveCharacterTextSplitter

CHUNK_SIZE_CHARS = 2000
OVERLAP_PERCENT = 0.15


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking.

    Attributes:
        chunk_size_chars: Target window size in characters
        overlap_percent: Fraction of the window shared by adjacent chunks
        separators: Split boundaries tried in order (paragraph, line, word, char)
    """

    chunk_size_chars: int = CHUNK_SIZE_CHARS
    overlap_percent: float = OVERLAP_PERCENT
    separators: tuple[str, ...] = ("\n\n", "\n", " ", "")

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.chunk_size_chars <= 0:
            raise ValueError(f"chunk_size_chars must be positive, got {self.chunk_size_chars}")
        if not 0.0 <= self.overlap_percent < 1.0:
            raise ValueError(
                f"overlap_percent must be in [0, 1), got {self.overlap_percent}"
            )

    @property
    def overlap_chars(self) -> int:
        """Overlap between adjacent windows in characters."""
        return math.floor(self.chunk_size_chars * self.overlap_percent)


@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of one note's text.

    Attributes:
        text: Chunk text, always equal to source[start:end]
        start: Starting character offset in the source text
        end: Ending character offset (exclusive)
        chunk_index: 0-indexed position among the note's chunks
        total_chunks: Number of chunks the note was split into
    """

    text: str
    start: int
    end: int
    chunk_index: int
    total_chunks: int

    def __post_init__(self) -> None:
        """Validate chunk properties."""
        if not self.text:
            raise ValueError("Chunk text cannot be empty")
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"Invalid offsets: start={self.start}, end={self.end}")
        if not 0 <= self.chunk_index < self.total_chunks:
            raise ValueError(
                f"chunk_index {self.chunk_index} out of range for {self.total_chunks} chunks"
            )


class Chunker(Protocol):
    """Protocol for text chunking implementations."""

    def chunk(self, text: str) -> list[Chunk]:
        """Split text into overlapping chunks.

        Args:
            text: Input text to chunk

        Returns:
            List of Chunk objects in increasing start order
        """
        ...


class RecursiveCharChunker:
    """Character-window chunker that prefers paragraph and word boundaries.

    Uses langchain's RecursiveCharacterTextSplitter for the split itself, then
    maps each fragment back onto the source text so offsets are exact and the
    chunks jointly cover the whole document.
    """

    def __init__(self, config: ChunkingConfig | None = None):
        """Initialize chunker with configuration.

        Args:
            config: Chunking configuration (defaults if None)
        """
        self.config = config or ChunkingConfig()
        self.splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.config.chunk_size_chars,
            chunk_overlap=self.config.overlap_chars,
            length_function=len,
            separators=list(self.config.separators),
        )

    def chunk(self, text: str) -> list[Chunk]:
        """Split text into overlapping chunks.

        Args:
            text: Input text to chunk

        Returns:
            List of Chunk objects; empty for empty/whitespace input, a single
            whole-text chunk for text that fits in one window
        """
        if not text or not text.strip():
            return []

        if len(text) <= self.config.chunk_size_chars:
            return [Chunk(text=text, start=0, end=len(text), chunk_index=0, total_chunks=1)]

        fragments = [f for f in self.splitter.split_text(text) if f and f.strip()]
        if not fragments:
            return []

        spans = self._locate(text, fragments)
        total = len(spans)
        return [
            Chunk(
                text=text[start:end],
                start=start,
                end=end,
                chunk_index=idx,
                total_chunks=total,
            )
            for idx, (start, end) in enumerate(spans)
        ]

    def _locate(self, text: str, fragments: list[str]) -> list[tuple[int, int]]:
        """Map splitter fragments to (start, end) offsets in the source text.

        The splitter strips whitespace at fragment edges, so gaps between
        consecutive spans are folded into the following span and the first and
        last spans are stretched to the document edges.
        """
        spans: list[tuple[int, int]] = []
        cursor = 0
        prev_start = -1

        for fragment in fragments:
            start = text.find(fragment, cursor)
            if start == -1 or start <= prev_start:
                start = max(cursor, prev_start + 1)
            end = min(len(text), start + len(fragment))
            if end <= start:
                continue

            if spans and start > spans[-1][1]:
                # Whitespace dropped between windows belongs to the next chunk
                start = spans[-1][1]
            if spans and end <= spans[-1][1]:
                # Fully contained in the previous window
                continue
            if spans and start >= spans[-1][1] and self.config.overlap_chars:
                # Merged paragraphs come back without shared text
                start = self._overlap_start(text, spans[-1])

            spans.append((start, end))
            prev_start = start
            cursor = max(start + 1, end - self.config.overlap_chars)

        if spans:
            spans[0] = (0, spans[0][1])
            spans[-1] = (spans[-1][0], len(text))

        return spans

    def _overlap_start(self, text: str, previous: tuple[int, int]) -> int:
        """Start offset that re-reads the last `overlap_chars` of the previous span.

        Snaps forward to the first word start inside the overlap; falls back to
        the raw offset when the overlap holds no whitespace.
        """
        prev_start, prev_end = previous
        target = max(prev_start + 1, prev_end - self.config.overlap_chars)
        for i in range(target, prev_end):
            if text[i - 1].isspace() and not text[i].isspace():
                return i
        return target


def chunk_text(
    text: str,
    chunk_size_chars: int = CHUNK_SIZE_CHARS,
    overlap_percent: float = OVERLAP_PERCENT,
) -> list[Chunk]:
    """Convenience function to chunk text with an ad-hoc config.

    Example:
        >>> chunks = chunk_text("short note")
        >>> len(chunks)
        1
    """
    config = ChunkingConfig(chunk_size_chars=chunk_size_chars, overlap_percent=overlap_percent)
    return RecursiveCharChunker(config).chunk(text)


def requires_chunking(text: str, config: ChunkingConfig | None = None) -> bool:
    """Return True if text is longer than a single window."""
    return len(text) > (config or ChunkingConfig()).chunk_size_chars


def get_chunk_config(config: ChunkingConfig | None = None) -> dict[str, float | int]:
    """Describe the effective chunking parameters."""
    cfg = config or ChunkingConfig()
    return {
        "chunk_size_chars": cfg.chunk_size_chars,
        "overlap_percent": cfg.overlap_percent,
        "overlap_chars": cfg.overlap_chars,
        "min_chunk_threshold": cfg.chunk_size_chars,
    }
