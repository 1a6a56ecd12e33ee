"""Search orchestration over the vector store and the document store.

Chooses between semantic and keyword search (with fallback), then optionally
expands the results through the wikilink graph between notes.

Modes:
- keyword: document store text search only
- semantic: vector search only; returns nothing when unavailable
- auto: semantic when embeddings exist, keyword when semantic fails or
  finds nothing
- hybrid: both concurrently, merged by permalink
"""

import asyncio
import re
from typing import Any

import networkx as nx
from loguru import logger

from recall_backend.config import SearchConfig
from recall_backend.documents import DocumentStore
from recall_backend.embedding import EmbeddingClient, TaskType
from recall_backend.errors import DocumentStoreError, RecallError
from recall_backend.models import (
    SearchMode,
    SearchRequest,
    SearchResponse,
    SearchResult,
    SearchSource,
)
from recall_backend.store import VectorStore, deduplicate_by_entity, threshold_to_max_distance

WIKILINK_PATTERN = re.compile(r"\[\[([^\]]+)\]\]")


def extract_wikilinks(content: str) -> list[str]:
    """Return unique wikilink targets in order of first appearance.

    `[[Title|alias]]` and `[[Title#heading]]` resolve to `Title`.
    """
    titles: dict[str, None] = {}
    for raw in WIKILINK_PATTERN.findall(content):
        title = raw.split("|", 1)[0].split("#", 1)[0].strip()
        if title:
            titles.setdefault(title, None)
    return list(titles)


def title_from_permalink(permalink: str) -> str:
    """Derive a display title from a permalink slug ("notes/my-idea" -> "My Idea")."""
    slug = permalink.rstrip("/").rsplit("/", 1)[-1] or permalink
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), slug.replace("-", " "))


def filter_by_folders(results: list[SearchResult], folders: list[str]) -> list[SearchResult]:
    """Keep results whose permalink lies under one of the folders."""
    prefixes = [f if f.endswith("/") else f"{f}/" for f in folders if f]
    if not prefixes:
        return results
    return [r for r in results if any(r.permalink.startswith(p) for p in prefixes)]


class SearchService:
    """Answers queries against the recall stores.

    Example:
        >>> service = SearchService(embedding_client, store, documents)
        >>> response = await service.search("authentication patterns", depth=1)
        >>> [r.permalink for r in response.results]
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        store: VectorStore,
        documents: DocumentStore,
        default_project: str | None = None,
        config: SearchConfig | None = None,
    ):
        self.embedding_client = embedding_client
        self.store = store
        self.documents = documents
        self.config = config or SearchConfig()
        self.default_project = default_project or self.config.default_project
        self._full_content_cache: dict[tuple[str | None, str], str] = {}

    def clear_full_content_cache(self) -> None:
        """Drop cached note content."""
        self._full_content_cache.clear()

    async def search(self, query: str, **options: Any) -> SearchResponse:
        """Search with keyword options (limit, threshold, mode, depth, project,
        folders, full_content); unset options use the configured defaults."""
        options.setdefault("limit", self.config.default_limit)
        options.setdefault("threshold", self.config.default_threshold)
        return await self.search_request(SearchRequest(query=query, **options))

    async def search_request(self, request: SearchRequest) -> SearchResponse:
        """Execute a validated search request.

        Raises:
            DocumentStoreError: If keyword search was needed and failed
        """
        project = request.project or self.default_project
        logger.debug(
            f"Searching: query='{request.query}', mode={request.mode.value}, "
            f"limit={request.limit}, depth={request.depth}, project={project}"
        )

        if request.mode is SearchMode.KEYWORD:
            results = await self._keyword(request.query, request.limit, project, request.mode)
            source = SearchSource.KEYWORD
        elif request.mode is SearchMode.SEMANTIC:
            results = await self.semantic_search(request.query, request.limit, request.threshold)
            source = SearchSource.SEMANTIC
        elif request.mode is SearchMode.HYBRID:
            results = await self._hybrid(request, project)
            source = SearchSource.HYBRID
        else:
            results, source = await self._auto(request, project)

        if request.folders:
            results = filter_by_folders(results, request.folders)

        if request.depth > 0:
            results = await self._expand_with_relations(results, request.depth, project)

        if request.full_content:
            results = await self._enrich_with_full_content(results, project)

        return SearchResponse(
            results=results,
            total=len(results),
            query=request.query,
            mode=request.mode,
            depth=request.depth,
            actual_source=source,
        )

    async def has_embeddings(self) -> bool:
        """Whether semantic search has anything to search (False if the store is unreadable)."""
        try:
            return await asyncio.to_thread(self.store.has_any_embeddings)
        except RecallError as e:
            logger.debug(f"Failed to check embeddings existence: {e}")
            return False

    async def semantic_search(
        self, query: str, limit: int = 10, threshold: float = 0.7
    ) -> list[SearchResult]:
        """Vector search only. Failures are logged and yield no results."""
        try:
            return await self._semantic(query, limit, threshold)
        except RecallError as e:
            logger.error(f"Semantic search failed for '{query}': {e}")
            return []

    async def keyword_search(
        self, query: str, limit: int = 10, project: str | None = None
    ) -> list[SearchResult]:
        """Document store text search only."""
        return await self._keyword(
            query, limit, project or self.default_project, SearchMode.KEYWORD
        )

    async def _semantic(
        self, query: str, limit: int, threshold: float, check_store: bool = True
    ) -> list[SearchResult]:
        if check_store and not await self.has_embeddings():
            logger.debug("No embeddings in store, semantic search unavailable")
            return []

        query_vector = await self.embedding_client.embed(query, TaskType.SEARCH_QUERY)
        if query_vector is None:
            return []

        # Over-fetch so that deduplication still leaves `limit` distinct notes
        raw = await asyncio.to_thread(
            self.store.query_nearest,
            query_vector,
            limit * self.config.overfetch_factor,
            threshold_to_max_distance(threshold),
        )
        matches = deduplicate_by_entity(raw)[:limit]

        return [
            SearchResult(
                permalink=m.entity_id,
                title=title_from_permalink(m.entity_id),
                similarity_score=m.similarity,
                snippet=m.chunk_text[: self.config.snippet_chars],
                source=SearchSource.SEMANTIC,
            )
            for m in matches
        ]

    async def _keyword(
        self, query: str, limit: int, project: str | None, mode: SearchMode
    ) -> list[SearchResult]:
        try:
            matches = await self.documents.search_by_text(query, project=project, limit=limit)
        except DocumentStoreError as e:
            logger.error(f"Keyword search failed for '{query}' (mode={mode.value}): {e}")
            raise DocumentStoreError(
                f"Keyword search failed (query={query!r}, mode={mode.value}): {e}"
            ) from e

        return [
            SearchResult(
                permalink=m.id,
                title=m.title or title_from_permalink(m.id),
                similarity_score=min(1.0, max(0.0, m.score)),
                snippet=m.snippet[: self.config.snippet_chars],
                source=SearchSource.KEYWORD,
            )
            for m in matches[:limit]
        ]

    async def _auto(
        self, request: SearchRequest, project: str | None
    ) -> tuple[list[SearchResult], SearchSource]:
        if not await self.has_embeddings():
            logger.debug("No embeddings available, using keyword search")
            results = await self._keyword(request.query, request.limit, project, request.mode)
            return results, SearchSource.KEYWORD

        try:
            semantic = await self._semantic(
                request.query, request.limit, request.threshold, check_store=False
            )
        except RecallError as e:
            logger.warning(f"Semantic search failed, falling back to keyword: {e}")
        else:
            if semantic:
                return semantic, SearchSource.SEMANTIC
            logger.debug("Semantic search returned no results, falling back to keyword")

        results = await self._keyword(request.query, request.limit, project, request.mode)
        return results, SearchSource.KEYWORD

    async def _hybrid(self, request: SearchRequest, project: str | None) -> list[SearchResult]:
        semantic, keyword = await asyncio.gather(
            self.semantic_search(request.query, request.limit, request.threshold),
            self._keyword(request.query, request.limit, project, request.mode),
        )

        merged: dict[str, SearchResult] = {}
        for result in [*semantic, *keyword]:
            if result.permalink not in merged:
                merged[result.permalink] = result.model_copy(update={"source": SearchSource.HYBRID})

        ranked = sorted(merged.values(), key=lambda r: r.similarity_score, reverse=True)
        return ranked[: request.limit]

    async def relation_graph(
        self, permalinks: list[str], max_depth: int, project: str | None = None
    ) -> nx.DiGraph:
        """Breadth-first wikilink graph reachable from the given notes.

        Nodes carry `depth` (first level at which the note was reached) and
        `title`; edges point from the linking note to the linked note. A note
        is expanded at most once.
        """
        graph = nx.DiGraph()
        for permalink in permalinks:
            if permalink not in graph:
                graph.add_node(permalink, depth=0, title=None)

        frontier = list(graph.nodes)
        for depth in range(1, max_depth + 1):
            next_frontier: list[str] = []
            for permalink in frontier:
                for title, target in await self._linked_notes(permalink, project):
                    if target not in graph:
                        graph.add_node(target, depth=depth, title=title)
                        next_frontier.append(target)
                    if target != permalink:
                        graph.add_edge(permalink, target, link=title)
            if not next_frontier:
                break
            frontier = next_frontier

        return graph

    async def _linked_notes(self, permalink: str, project: str | None) -> list[tuple[str, str]]:
        """Resolve the first wikilinks of a note to (title, permalink) pairs."""
        try:
            content = await self.documents.read_document(permalink, project)
        except DocumentStoreError as e:
            logger.debug(f"Failed to read {permalink} for relation expansion: {e}")
            return []
        if not content:
            return []

        resolved: list[tuple[str, str]] = []
        for title in extract_wikilinks(content)[: self.config.max_links_per_note]:
            target = await self._resolve_wikilink(title, project)
            if target:
                resolved.append((title, target))
        return resolved

    async def _resolve_wikilink(self, title: str, project: str | None) -> str | None:
        try:
            matches = await self.documents.search_by_text(f'"{title}"', project=project, limit=1)
        except DocumentStoreError as e:
            logger.debug(f"Could not resolve [[{title}]]: {e}")
            return None
        return matches[0].id if matches else None

    async def _expand_with_relations(
        self, results: list[SearchResult], max_depth: int, project: str | None
    ) -> list[SearchResult]:
        direct = [r.model_copy(update={"depth": 0}) for r in results]
        graph = await self.relation_graph([r.permalink for r in direct], max_depth, project)

        related = [
            SearchResult(
                permalink=node,
                title=data["title"],
                similarity_score=self.config.related_score,
                snippet=f"Related via [[{data['title']}]]",
                source=SearchSource.RELATED,
                depth=data["depth"],
            )
            for node, data in graph.nodes(data=True)
            if data["depth"] > 0
        ]
        related.sort(key=lambda r: r.depth)

        logger.debug(
            f"Expanded {len(direct)} direct results with {len(related)} related notes "
            f"(max depth {max_depth})"
        )
        return direct + related

    async def _fetch_full_content(self, permalink: str, project: str | None) -> str | None:
        key = (project, permalink)
        if key in self._full_content_cache:
            return self._full_content_cache[key]

        try:
            content = await self.documents.read_document(permalink, project)
        except DocumentStoreError as e:
            logger.debug(f"Failed to fetch full content for {permalink}: {e}")
            return None
        if not content:
            return None

        limit = self.config.full_content_max_chars
        if len(content) > limit:
            logger.debug(f"Truncated full content of {permalink} ({len(content)} chars)")
            content = content[:limit]
        self._full_content_cache[key] = content
        return content

    async def _enrich_with_full_content(
        self, results: list[SearchResult], project: str | None
    ) -> list[SearchResult]:
        contents = await asyncio.gather(
            *(self._fetch_full_content(r.permalink, project) for r in results)
        )
        return [
            r.model_copy(update={"full_content": content})
            for r, content in zip(results, contents, strict=True)
        ]
