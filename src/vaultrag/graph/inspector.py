"""Related-document ranking and hybrid path finding.

Both operations combine two kinds of neighbourhood:

- **physical** -- explicit links, tags, and categories from the reference
  graph (:class:`~vaultrag.graph.analyzer.InMemoryGraph`);
- **semantic** -- documents whose mean chunk embedding is close to the
  seed's, found through the vector backend.

When the vector side is unavailable both operations fall back to the
physical graph and say so instead of failing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

import numpy as np

from vaultrag.core.config import Settings
from vaultrag.core.exceptions import (
    CollaboratorUnavailableError,
    EmbeddingError,
    SearchError,
    VectorBackendUnavailableError,
)
from vaultrag.core.models import (
    DocStatistics,
    EmbeddingRecord,
    GraphEdgeType,
    GraphPath,
    PathResult,
    RelatedNode,
    RelatedResponse,
    StoredDocument,
)
from vaultrag.graph.analyzer import InMemoryGraph
from vaultrag.search.semantic import SemanticSearchEngine
from vaultrag.storage.embeddings import EmbeddingRepository
from vaultrag.storage.graph import GraphStore
from vaultrag.storage.metadata import DocumentRepository

logger = logging.getLogger(__name__)

DIMENSIONS = ("density", "update_time", "richness", "open_count", "last_open", "similarity")

_SEMANTIC_ERRORS = (VectorBackendUnavailableError, CollaboratorUnavailableError, EmbeddingError)
_YIELD_EVERY = 16  # expansions between event-loop yields


class _DeadlineExceeded(Exception):
    pass


@dataclass
class _PathSearchState:
    """Bookkeeping shared by the iterations of one path query."""

    deadline: float = 0.0
    excluded: set[str] = field(default_factory=set)
    direct_used: bool = False
    semantic_enabled: bool = True
    similar: dict[str, list[str]] = field(default_factory=dict)


def rank_dimension(values: dict[str, float | None]) -> dict[str, int]:
    """1-based ranks by descending value; ``None`` and zero are left unranked."""
    present = [(doc_id, v) for doc_id, v in values.items() if v]
    present.sort(key=lambda item: (-float(item[1]), item[0]))  # type: ignore[arg-type]
    return {doc_id: rank for rank, (doc_id, _) in enumerate(present, start=1)}


class GraphInspector:
    """Answer related-document and path queries over the index.

    Parameters
    ----------
    documents, embeddings, graph_store:
        Repositories over the search database.
    semantic:
        Vector similarity for semantic neighbours.
    settings:
        Dimension weights, pool size, hop and time limits.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        embeddings: EmbeddingRepository,
        graph_store: GraphStore,
        semantic: SemanticSearchEngine,
        settings: Settings,
    ) -> None:
        self._documents = documents
        self._embeddings = embeddings
        self._graph_store = graph_store
        self._semantic = semantic
        self._settings = settings
        self._graph: InMemoryGraph | None = None
        self._graph_lock = asyncio.Lock()

    async def graph(self) -> InMemoryGraph:
        """The graph view, reloaded when indexed content has changed."""
        version = await self._documents.content_version()
        async with self._graph_lock:
            if self._graph is None or self._graph.version != version:
                self._graph = await InMemoryGraph.load(self._graph_store, version)
        return self._graph

    async def _require_document(self, doc_id: str) -> StoredDocument:
        doc = await self._documents.get_document(doc_id)
        if doc is None:
            raise SearchError(f"Document {doc_id!r} is not indexed")
        return doc

    # ------------------------------------------------------------------
    # Semantic neighbours
    # ------------------------------------------------------------------

    async def semantic_neighbors(self, doc_id: str, k: int) -> dict[str, float]:
        """Up to *k* documents most similar to *doc_id*, with their similarity.

        The document is represented by the mean of its chunk embeddings.
        Raises the vector backend's or collaborator's unavailability
        errors unchanged.
        """
        records = await self._embeddings.get_for_document(doc_id)
        if not records:
            return {}
        mean = np.mean(np.asarray([r.embedding for r in records.values()], dtype=np.float32), axis=0)

        # several chunks of one document can fill the top hits
        hits = await self._semantic.search_by_vector(mean.tolist(), top_k=k * 4)
        neighbors: dict[str, float] = {}
        for record_id, score in hits:
            other, _ = EmbeddingRecord.parse_id(record_id)
            if other == doc_id or other in neighbors:
                continue
            neighbors[other] = score
            if len(neighbors) >= k:
                break
        return neighbors

    # ------------------------------------------------------------------
    # Related documents
    # ------------------------------------------------------------------

    async def related_documents(self, doc_id: str, limit: int = 20) -> RelatedResponse:
        """Rank documents related to *doc_id*.

        Candidates are the documents within ``related_max_hops`` of the
        seed in the reference graph plus its semantic neighbours.  The
        pool is capped at ``ranking_pool_size`` (physical candidates by
        degree first, then semantic ones by similarity).  Each candidate
        is ranked in six dimensions and scored::

            score = sum(w_d / (k + rank_d)) + bonus_if_physical

        Parameters
        ----------
        doc_id:
            Seed document.
        limit:
            Maximum results.

        Raises
        ------
        SearchError
            If *doc_id* is not indexed.
        """
        await self._require_document(doc_id)
        settings = self._settings
        graph = await self.graph()

        physical = graph.document_neighborhood(doc_id, settings.related_max_hops)
        degraded = False
        try:
            semantic = await self.semantic_neighbors(doc_id, settings.semantic_neighbor_k)
        except _SEMANTIC_ERRORS as exc:
            logger.warning("Related documents for %s without semantic neighbours: %s", doc_id, exc)
            semantic = {}
            degraded = True

        pool = sorted(physical, key=lambda n: (-graph.degree(n), n))
        pool += sorted(
            (n for n in semantic if n not in physical),
            key=lambda n: (-semantic[n], n),
        )
        pool = pool[: settings.ranking_pool_size]

        docs = await self._documents.get_documents(pool)
        stats = await self._documents.get_statistics(pool)
        pool = [n for n in pool if n in docs]

        ranks = self._rank_dimensions(pool, graph, docs, stats, semantic)
        weights = settings.graph_rrf_weights.model_dump()
        k = settings.rrf_k

        results: list[RelatedNode] = []
        for candidate in pool:
            dimension_ranks = {d: ranks[d][candidate] for d in DIMENSIONS if candidate in ranks[d]}
            score = sum(weights[d] / (k + rank) for d, rank in dimension_ranks.items())
            is_physical = candidate in physical
            if is_physical:
                score += settings.physical_connection_bonus
            doc = docs[candidate]
            results.append(
                RelatedNode(
                    doc_id=candidate,
                    path=doc.path,
                    title=doc.title,
                    score=score,
                    physical=is_physical,
                    similarity=semantic.get(candidate),
                    dimension_ranks=dimension_ranks,
                )
            )

        results.sort(key=lambda r: (-r.score, r.doc_id))
        return RelatedResponse(doc_id=doc_id, results=results[:limit], degraded=degraded)

    @staticmethod
    def _rank_dimensions(
        pool: list[str],
        graph: InMemoryGraph,
        docs: dict[str, StoredDocument],
        stats: dict[str, DocStatistics],
        semantic: dict[str, float],
    ) -> dict[str, dict[str, int]]:
        def stat(doc_id: str, attr: str) -> float | None:
            s = stats.get(doc_id)
            return getattr(s, attr) if s is not None else None

        return {
            "density": rank_dimension({n: graph.degree(n) for n in pool}),
            "update_time": rank_dimension({n: docs[n].mtime for n in pool}),
            "richness": rank_dimension({n: stat(n, "richness_score") for n in pool}),
            "open_count": rank_dimension({n: stat(n, "open_count") for n in pool}),
            "last_open": rank_dimension({n: stat(n, "last_open_ts") for n in pool}),
            "similarity": rank_dimension({n: semantic.get(n) for n in pool}),
        }

    # ------------------------------------------------------------------
    # Path finding
    # ------------------------------------------------------------------

    async def find_paths(
        self,
        source_id: str,
        target_id: str,
        iterations: int | None = None,
        max_hops: int | None = None,
    ) -> PathResult:
        """Find up to *iterations* distinct paths from *source_id* to *target_id*.

        Each iteration runs a bidirectional breadth-first search over
        physical and semantic edges.  The first finds a shortest path;
        later ones exclude the intermediate nodes of paths already found,
        which forces alternative routes.  Each iteration has its own
        wall-clock budget (``path_step_time_limit``); running out returns
        the paths found so far with ``partial=True``.

        Raises
        ------
        SearchError
            If either document is not indexed.
        """
        settings = self._settings
        iterations = iterations if iterations is not None else settings.path_iterations
        max_hops = max_hops if max_hops is not None else settings.path_max_hops
        max_hops = max(1, min(max_hops, settings.path_max_hops_limit))

        await self._require_document(source_id)
        await self._require_document(target_id)
        result = PathResult(source_id=source_id, target_id=target_id)
        graph = await self.graph()

        if source_id == target_id:
            result.paths.append(GraphPath(node_ids=[source_id], labels=[graph.label(source_id)]))
            return result

        state = _PathSearchState()
        for _ in range(max(0, iterations)):
            result.iterations_run += 1
            state.deadline = time.monotonic() + settings.path_step_time_limit
            try:
                node_ids = await self._bidirectional_search(graph, source_id, target_id, max_hops, state)
            except _DeadlineExceeded:
                logger.warning(
                    "Path search %s -> %s hit the %.1fs step limit",
                    source_id,
                    target_id,
                    settings.path_step_time_limit,
                )
                result.partial = True
                break
            if node_ids is None:
                break
            result.paths.append(self._to_graph_path(graph, node_ids))
            if len(node_ids) == 2:
                state.direct_used = True
            state.excluded.update(node_ids[1:-1])
        return result

    async def _neighbors(self, graph: InMemoryGraph, node_id: str, state: _PathSearchState) -> list[str]:
        """Physical neighbours, then semantic ones not already linked."""
        neighbors = graph.neighbors(node_id)
        if not graph.is_document(node_id) or not state.semantic_enabled:
            return neighbors
        if node_id not in state.similar:
            try:
                found = await self.semantic_neighbors(node_id, self._settings.path_semantic_neighbor_k)
            except _SEMANTIC_ERRORS as exc:
                logger.info("Path search continues without semantic edges: %s", exc)
                state.semantic_enabled = False
                return neighbors
            state.similar[node_id] = list(found)
        physical = set(neighbors)
        return neighbors + [n for n in state.similar[node_id] if n not in physical]

    async def _bidirectional_search(
        self,
        graph: InMemoryGraph,
        source: str,
        target: str,
        max_hops: int,
        state: _PathSearchState,
    ) -> list[str] | None:
        parents_fwd: dict[str, str | None] = {source: None}
        parents_bwd: dict[str, str | None] = {target: None}
        frontier_fwd, frontier_bwd = [source], [target]
        depth = 0  # levels expanded on both sides together
        expansions = 0

        while frontier_fwd and frontier_bwd and depth < max_hops:
            forward = len(frontier_fwd) <= len(frontier_bwd)
            frontier = frontier_fwd if forward else frontier_bwd
            parents = parents_fwd if forward else parents_bwd
            other = parents_bwd if forward else parents_fwd

            next_frontier: list[str] = []
            for node in frontier:
                if time.monotonic() > state.deadline:
                    raise _DeadlineExceeded
                for neighbor in await self._neighbors(graph, node, state):
                    if neighbor in state.excluded or neighbor in parents:
                        continue
                    if state.direct_used and {node, neighbor} == {source, target}:
                        continue
                    parents[neighbor] = node
                    if neighbor in other:
                        return self._join(neighbor, parents_fwd, parents_bwd)
                    next_frontier.append(neighbor)
                expansions += 1
                if expansions % _YIELD_EVERY == 0:
                    await asyncio.sleep(0)

            if forward:
                frontier_fwd = next_frontier
            else:
                frontier_bwd = next_frontier
            depth += 1
        return None

    @staticmethod
    def _join(
        meeting: str,
        parents_fwd: dict[str, str | None],
        parents_bwd: dict[str, str | None],
    ) -> list[str]:
        path: list[str] = []
        node: str | None = meeting
        while node is not None:
            path.append(node)
            node = parents_fwd[node]
        path.reverse()
        node = parents_bwd[meeting]
        while node is not None:
            path.append(node)
            node = parents_bwd[node]
        return path

    @staticmethod
    def _to_graph_path(graph: InMemoryGraph, node_ids: list[str]) -> GraphPath:
        edge_types = [
            graph.edge_type(a, b) or GraphEdgeType.SIMILAR.value
            for a, b in zip(node_ids, node_ids[1:])
        ]
        return GraphPath(
            node_ids=node_ids,
            labels=[graph.label(n) for n in node_ids],
            edge_types=edge_types,
        )
