"""Client for the external note/document store.

The recall pipeline only needs three calls from the document store: list the
notes of a project, read a note's current content, and keyword search. The
store is reached over JSON-RPC 2.0 on HTTP.
"""

from __future__ import annotations

import itertools
from typing import Any, Protocol, runtime_checkable

import httpx
from loguru import logger
from pydantic import ValidationError

from recall_backend.errors import DocumentStoreError
from recall_backend.models import DocumentRef, TextMatch


@runtime_checkable
class DocumentStore(Protocol):
    """Read-side interface to the note store."""

    async def list_documents(self, project: str | None = None) -> list[DocumentRef]:
        """List all notes in a project."""
        ...

    async def read_document(self, identifier: str, project: str | None = None) -> str | None:
        """Return a note's content, or None if it does not exist."""
        ...

    async def search_by_text(
        self, query: str, project: str | None = None, limit: int = 10
    ) -> list[TextMatch]:
        """Keyword search over notes."""
        ...


class RpcDocumentStore:
    """JSON-RPC document store client.

    Wraps the `listDocuments`, `readDocument` and `searchByText` methods.
    Transport failures and RPC error objects raise DocumentStoreError.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._url = base_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._timeout = timeout_seconds
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        """Invoke one RPC method and return its `result` member."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": {k: v for k, v in params.items() if v is not None},
        }
        try:
            response = await self._client.post(self._url, json=payload, timeout=self._timeout)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise DocumentStoreError(f"{method} failed: {exc}") from exc
        except ValueError as exc:
            raise DocumentStoreError(f"{method} returned invalid JSON: {exc}") from exc

        if not isinstance(body, dict):
            raise DocumentStoreError(f"{method} returned a malformed response")
        if body.get("error"):
            error = body["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise DocumentStoreError(f"{method} failed: {message}")
        return body.get("result")

    async def list_documents(self, project: str | None = None) -> list[DocumentRef]:
        result = await self._call("listDocuments", {"project": project}) or []
        try:
            docs = [DocumentRef.model_validate(item) for item in result]
        except ValidationError as exc:
            raise DocumentStoreError(f"listDocuments returned invalid records: {exc}") from exc
        logger.debug(f"Listed {len(docs)} documents (project={project})")
        return docs

    async def read_document(self, identifier: str, project: str | None = None) -> str | None:
        result = await self._call("readDocument", {"id": identifier, "project": project})
        if result is None:
            return None
        if isinstance(result, dict):
            content = result.get("content")
            return content if isinstance(content, str) else None
        return str(result)

    async def search_by_text(
        self, query: str, project: str | None = None, limit: int = 10
    ) -> list[TextMatch]:
        result = await self._call(
            "searchByText", {"query": query, "project": project, "limit": limit}
        ) or []
        try:
            return [TextMatch.model_validate(item) for item in result]
        except ValidationError as exc:
            raise DocumentStoreError(f"searchByText returned invalid records: {exc}") from exc
