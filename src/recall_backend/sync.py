"""Catch-up planning helpers.

Pure functions used by the background catch-up:
- Decide whether stored vectors can be kept or every note must be re-embedded
- Select the notes that still need embeddings
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypedDict

from recall_backend.build_state import should_rebuild
from recall_backend.models import BuildRecord


class SyncDecision(TypedDict):
    action: str  # "incremental" | "rebuild"
    reason: str
    built_at: str | None


def plan_sync(
    record: BuildRecord | None,
    current_fingerprint: str,
    embedding_version: str,
) -> SyncDecision:
    """Decide whether a catch-up can keep stored vectors.

    "incremental" embeds only notes missing from the store; "rebuild"
    re-embeds every note because the chunking or embedding setup changed.

    Args:
        record: Previously saved BuildRecord (or None)
        current_fingerprint: Current config fingerprint
        embedding_version: Current embedding version

    Returns:
        SyncDecision with action and reason
    """
    if record is None:
        # Nothing recorded yet: the store itself says what is missing
        return {"action": "incremental", "reason": "no_record", "built_at": None}

    built_at = record.built_at.isoformat()
    if should_rebuild(record, current_fingerprint, embedding_version):
        if record.config_fingerprint != current_fingerprint:
            reason = "config_changed"
        else:
            reason = "embedding_changed"
        return {"action": "rebuild", "reason": reason, "built_at": built_at}

    return {"action": "incremental", "reason": "up_to_date", "built_at": built_at}


def select_missing(
    document_ids: Iterable[str],
    embedded_ids: set[str],
    *,
    force: bool = False,
    limit: int | None = None,
) -> list[str]:
    """Return document ids that have no stored embeddings, in listing order.

    Duplicate ids are collapsed. With force, every document is selected.
    """
    selected: list[str] = []
    seen: set[str] = set()
    for doc_id in document_ids:
        if limit is not None and len(selected) >= limit:
            break
        if doc_id in seen:
            continue
        seen.add(doc_id)
        if force or doc_id not in embedded_ids:
            selected.append(doc_id)
    return selected
