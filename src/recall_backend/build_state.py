"""Build-state tracking for the embedding store.

Stores a compact record of the last successful catch-up run so a later run
can tell whether the stored vectors were produced by the current model,
dimensionality and chunking. A mismatch means every note must be re-embedded.

Use the path configured at RecallConfig.catch_up.state_file to store the
record (defaults to "data/.recall_build.json").
"""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from recall_backend.config import RecallConfig
from recall_backend.models import BuildRecord


def _safe_subset(config: RecallConfig) -> dict[str, Any]:
    """Extract the configuration fields that change what a stored vector means."""
    return {
        "chunking": {
            "chunk_size_chars": config.chunking.chunk_size_chars,
            "overlap_percent": config.chunking.overlap_percent,
            "separators": list(config.chunking.separators),
        },
        "embedding": {
            "provider": config.embedding.provider,
            "model": config.embedding.model,
            "version": config.embedding.version,
            "dimensions": config.embedding.dimensions,
            "max_input_chars": config.embedding.max_input_chars,
            "task_prefix": config.embedding.task_prefix,
        },
    }


def compute_config_fingerprint(config: RecallConfig) -> str:
    """Compute a stable fingerprint for the current configuration.

    Returns a hex-encoded SHA256 hash of a canonical JSON representation
    of the embedding-relevant subset of the configuration. URLs, timeouts
    and retry settings are excluded.
    """
    subset = _safe_subset(config)
    payload = json.dumps(subset, sort_keys=True, separators=(",", ":")).encode()
    return hashlib.sha256(payload).hexdigest()


def load_build_record(path: Path) -> BuildRecord | None:
    """Load build record from path if it exists and parses, else return None."""
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
        return BuildRecord.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        logger.warning(f"Ignoring unreadable build record at {path}: {e}")
        return None


def save_build_record(path: Path, record: BuildRecord) -> None:
    """Persist build record to path (create parent directory if needed)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(record.model_dump_json(indent=2))


def should_rebuild(record: BuildRecord, current_fingerprint: str, embedding_version: str) -> bool:
    """Return True if stored vectors no longer match the current configuration."""
    if record.config_fingerprint != current_fingerprint:
        return True
    if record.embedding_version != embedding_version:
        return True
    return False


def build_record_from_config(config: RecallConfig, project: str | None = None) -> BuildRecord:
    """Create a BuildRecord for the provided configuration using current time."""
    return BuildRecord(
        built_at=datetime.now(UTC),
        embedding_version=config.embedding.version,
        config_fingerprint=compute_config_fingerprint(config),
        model=config.embedding.model,
        dimensions=config.embedding.dimensions,
        project=project,
    )
