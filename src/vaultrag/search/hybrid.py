"""Hybrid query engine: full-text + vector + metadata, fused with two-stage RRF.

A query runs three retrievals concurrently:

- **fulltext** -- BM25 over chunk content,
- **vector** -- embedding similarity over chunk vectors,
- **meta** -- BM25 over document title, tags, categories, and path.

Chunk hits are collapsed to documents, the two content rankings are
fused into one content score, and that score is blended with the
metadata ranking (see :func:`~vaultrag.search.fusion.two_stage_fusion`).
When the vector side cannot run, the response carries full-text results
and ``degraded=True`` instead of an error.
"""

from __future__ import annotations

import asyncio
import logging

from vaultrag.core.config import Settings
from vaultrag.core.exceptions import (
    CollaboratorUnavailableError,
    EmbeddingError,
    SearchError,
    VectorBackendUnavailableError,
)
from vaultrag.core.models import (
    EmbeddingRecord,
    SearchResponse,
    SearchResult,
    StoredChunk,
    StoredDocument,
)
from vaultrag.search.bm25 import BM25SearchEngine
from vaultrag.search.fusion import FusedHit, collapse_to_documents, two_stage_fusion
from vaultrag.search.reranker import apply_ranking_boosts
from vaultrag.search.semantic import SemanticSearchEngine
from vaultrag.storage.graph import GraphStore
from vaultrag.storage.metadata import DocumentRepository
from vaultrag.utils.text import make_snippet

logger = logging.getLogger(__name__)

MODE_VAULT = "vault"
MODE_IN_FILE = "inFile"
MODE_IN_FOLDER = "inFolder"
SEARCH_MODES = (MODE_VAULT, MODE_IN_FILE, MODE_IN_FOLDER)

SOURCE_FULLTEXT = "fulltext"
SOURCE_VECTOR = "vector"
SOURCE_META = "meta"


def meta_text(doc: StoredDocument) -> str:
    """Text indexed for the metadata ranking of *doc*."""
    return " ".join([doc.title, *doc.tags, *doc.categories, doc.path.replace("/", " ")])


def in_scope(path: str, mode: str, scope: str | None) -> bool:
    if mode == MODE_IN_FILE:
        return path == scope
    if mode == MODE_IN_FOLDER:
        folder = (scope or "").strip("/")
        return not folder or path == folder or path.startswith(folder + "/")
    return True


class HybridQueryEngine:
    """Answer search queries over the index.

    Parameters
    ----------
    documents:
        Repository for chunks, metadata, and the content version.
    graph:
        Graph store, used for the proximity boost.
    semantic:
        Vector side of the search.
    settings:
        RRF constants, over-fetch factor, and BM25 index paths.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        graph: GraphStore,
        semantic: SemanticSearchEngine,
        settings: Settings,
    ) -> None:
        self._documents = documents
        self._graph = graph
        self._semantic = semantic
        self._settings = settings
        self._content = BM25SearchEngine(settings.bm25_path)
        self._meta = BM25SearchEngine(settings.meta_bm25_path)
        self._loaded_from_disk = False
        self._refresh_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Keyword indexes
    # ------------------------------------------------------------------

    async def refresh(self, force: bool = False) -> int:
        """Rebuild the BM25 indexes if the content version moved on.

        Returns the content version the indexes now reflect.
        """
        version = await self._documents.content_version()
        async with self._refresh_lock:
            if not self._loaded_from_disk:
                self._content.load_index()
                self._meta.load_index()
                self._loaded_from_disk = True

            if force or self._content.version != version:
                chunks = await self._documents.get_all_chunks()
                entries = [(c.chunk_id, f"{c.title}\n{c.content}") for c in chunks]
                await asyncio.to_thread(self._content.build_index, entries, version)

            if force or self._meta.version != version:
                docs = await self._documents.list_documents()
                entries = [(d.id, meta_text(d)) for d in docs]
                await asyncio.to_thread(self._meta.build_index, entries, version)
        return version

    def reset(self) -> None:
        """Forget the keyword indexes, on disk and in memory."""
        self._content.delete()
        self._meta.delete()
        self._loaded_from_disk = True

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: str,
        top_k: int | None = None,
        mode: str | None = None,
        scope: str | None = None,
        current_path: str | None = None,
        boost: bool = False,
    ) -> SearchResponse:
        """Run a hybrid search.

        Parameters
        ----------
        query:
            Free-text query; must not be blank.
        top_k:
            Documents to return (default ``settings.default_top_k``).
        mode:
            ``vault``, ``inFile`` (only *current_path*), or ``inFolder``
            (only documents under *scope*).
        scope:
            Folder for ``inFolder``.
        current_path:
            The file the user is looking at; required for ``inFile`` and
            used for the graph proximity boost.
        boost:
            Apply usage, recency, and proximity boosts after fusion.

        Raises
        ------
        SearchError
            If the request is malformed.
        """
        query = query.strip()
        if not query:
            raise SearchError("Query must not be empty")
        top_k = top_k if top_k is not None else self._settings.default_top_k
        if top_k < 1:
            raise SearchError(f"top_k must be positive, got {top_k}")
        mode = mode or self._settings.default_search_mode
        if mode not in SEARCH_MODES:
            raise SearchError(f"Unknown search mode {mode!r}; expected one of {SEARCH_MODES}")
        if mode == MODE_IN_FILE:
            if not current_path:
                raise SearchError("inFile search needs current_path")
            scope = current_path

        await self.refresh()
        fetch = top_k * max(1, self._settings.over_fetch_factor)
        # scoped searches filter after retrieval, so they rank every keyword match
        content_fetch = fetch if mode == MODE_VAULT else max(fetch, len(self._content))
        meta_fetch = fetch if mode == MODE_VAULT else max(fetch, len(self._meta))

        fulltext_raw, meta_raw, (vector_raw, degraded_reason) = await asyncio.gather(
            asyncio.to_thread(self._content.search, query, content_fetch),
            asyncio.to_thread(self._meta.search, query, meta_fetch),
            self._vector_search(query, fetch),
        )

        chunks = await self._documents.get_chunks([cid for cid, _ in fulltext_raw])
        best_chunk: dict[str, StoredChunk] = {}
        for chunk_id, _ in fulltext_raw:
            chunk = chunks.get(chunk_id)
            if chunk is not None:
                best_chunk.setdefault(chunk.doc_id, chunk)

        fulltext = collapse_to_documents(
            fulltext_raw, lambda cid: chunks[cid].doc_id if cid in chunks else None
        )
        vector = collapse_to_documents(vector_raw, lambda rid: EmbeddingRecord.parse_id(rid)[0])
        best_vector_index: dict[str, int] = {}
        for record_id, _ in vector_raw:
            doc_id, index = EmbeddingRecord.parse_id(record_id)
            best_vector_index.setdefault(doc_id, index)

        candidate_ids = {d for d, _ in fulltext} | {d for d, _ in vector} | {d for d, _ in meta_raw}
        docs = await self._documents.get_documents(sorted(candidate_ids))

        def keep(ranking: list[tuple[str, float]]) -> list[tuple[str, float]]:
            return [
                (doc_id, score)
                for doc_id, score in ranking
                if doc_id in docs and in_scope(docs[doc_id].path, mode, scope)
            ]

        fused = two_stage_fusion(
            {SOURCE_FULLTEXT: keep(fulltext), SOURCE_VECTOR: keep(vector)},
            keep(meta_raw),
            k=self._settings.rrf_k,
            content_weight=self._settings.rrf_content_weight,
            content_vs_meta_weight=self._settings.rrf_content_vs_meta_weight,
            meta_name=SOURCE_META,
        )
        if not boost:
            fused = fused[:top_k]

        results = [
            await self._build_result(hit, docs[hit.id], query, best_chunk, best_vector_index)
            for hit in fused
        ]
        if boost:
            results = (await self._boost(results, docs, current_path))[:top_k]

        if degraded_reason:
            logger.warning("Search degraded to full-text only: %s", degraded_reason)
        return SearchResponse(
            query=query,
            mode=mode,
            results=results,
            degraded=degraded_reason is not None,
            degraded_reason=degraded_reason,
        )

    async def _vector_search(self, query: str, fetch: int) -> tuple[list[tuple[str, float]], str | None]:
        try:
            return await self._semantic.search(query, top_k=fetch), None
        except (VectorBackendUnavailableError, CollaboratorUnavailableError, EmbeddingError) as exc:
            return [], f"{exc.code.value}: {exc}"

    async def _build_result(
        self,
        hit: FusedHit,
        doc: StoredDocument,
        query: str,
        best_chunk: dict[str, StoredChunk],
        best_vector_index: dict[str, int],
    ) -> SearchResult:
        chunk = best_chunk.get(hit.id)
        if chunk is None and hit.id in best_vector_index:
            index = best_vector_index[hit.id]
            for candidate in await self._documents.get_chunks_for_document(hit.id):
                if candidate.chunk_index == index:
                    chunk = candidate
                    break
        if chunk is not None:
            snippet = make_snippet(chunk.content, query)
        else:
            snippet = doc.summary or ""

        return SearchResult(
            doc_id=doc.id,
            path=doc.path,
            title=doc.title,
            type=doc.type,
            chunk_id=chunk.chunk_id if chunk is not None else None,
            snippet=snippet,
            score=hit.score,
            content_score=hit.content_score,
            meta_score=hit.meta_score,
            fulltext_rank=hit.ranks.get(SOURCE_FULLTEXT),
            vector_rank=hit.ranks.get(SOURCE_VECTOR),
            meta_rank=hit.ranks.get(SOURCE_META),
            matched_sources=sorted(hit.ranks),
        )

    async def _boost(
        self,
        results: list[SearchResult],
        docs: dict[str, StoredDocument],
        current_path: str | None,
    ) -> list[SearchResult]:
        stats = await self._documents.get_statistics([r.doc_id for r in results])
        nearby: set[str] = set()
        if current_path:
            current = await self._documents.get_by_path(current_path)
            if current is not None:
                nearby = set(await self._graph.related_node_ids(current.id, max_hops=2))
                nearby.discard(current.id)
        mtimes = {doc_id: doc.mtime for doc_id, doc in docs.items()}
        return apply_ranking_boosts(results, stats, mtimes, nearby)
