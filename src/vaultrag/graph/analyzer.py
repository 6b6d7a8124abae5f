"""In-memory, undirected view of the persisted reference graph.

Loaded once from ``graph_nodes`` / ``graph_edges`` and reused until the
repository's content version moves on.  All traversal in
:mod:`vaultrag.graph.inspector` runs against this view, so a breadth-first
walk never issues one query per node.
"""

from __future__ import annotations

import logging
from collections import deque

from vaultrag.core.models import GraphEdge, GraphNode, GraphNodeType
from vaultrag.storage.graph import GraphStore

logger = logging.getLogger(__name__)


class InMemoryGraph:
    """Adjacency lists with edge types and accumulated weights.

    Parameters
    ----------
    nodes:
        Every node in the graph.
    edges:
        Directed edges; stored in both directions.
    version:
        Content version the rows were read at.
    """

    def __init__(self, nodes: list[GraphNode], edges: list[GraphEdge], version: int = 0) -> None:
        self.version = version
        self._nodes: dict[str, GraphNode] = {n.id: n for n in nodes}
        self._adjacency: dict[str, dict[str, tuple[str, float]]] = {n.id: {} for n in nodes}
        for edge in edges:
            if edge.from_node_id == edge.to_node_id:
                continue
            self._link(edge.from_node_id, edge.to_node_id, edge.type.value, edge.weight)
            self._link(edge.to_node_id, edge.from_node_id, edge.type.value, edge.weight)

    def _link(self, a: str, b: str, edge_type: str, weight: float) -> None:
        neighbors = self._adjacency.setdefault(a, {})
        if b in neighbors:
            first_type, current = neighbors[b]
            neighbors[b] = (first_type, current + weight)
        else:
            neighbors[b] = (edge_type, weight)

    @classmethod
    async def load(cls, store: GraphStore, version: int = 0) -> InMemoryGraph:
        nodes = await store.all_nodes()
        edges = await store.all_edges()
        logger.debug("Graph view loaded: %d nodes, %d edges (version %d)", len(nodes), len(edges), version)
        return cls(nodes, edges, version)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._adjacency

    def __len__(self) -> int:
        return len(self._adjacency)

    def node(self, node_id: str) -> GraphNode | None:
        return self._nodes.get(node_id)

    def label(self, node_id: str) -> str:
        node = self._nodes.get(node_id)
        return node.label if node is not None else node_id

    def is_document(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        return node is not None and node.type is GraphNodeType.DOCUMENT

    def neighbors(self, node_id: str) -> list[str]:
        """Direct neighbours in id order."""
        return sorted(self._adjacency.get(node_id, {}))

    def degree(self, node_id: str) -> int:
        return len(self._adjacency.get(node_id, {}))

    def edge_type(self, a: str, b: str) -> str | None:
        entry = self._adjacency.get(a, {}).get(b)
        return entry[0] if entry is not None else None

    def weight(self, a: str, b: str) -> float:
        entry = self._adjacency.get(a, {}).get(b)
        return entry[1] if entry is not None else 0.0

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def bfs(self, seed: str, max_hops: int) -> dict[str, int]:
        """Hop distance to every node within *max_hops* of *seed* (seed excluded)."""
        distances: dict[str, int] = {seed: 0}
        queue: deque[str] = deque([seed])
        while queue:
            current = queue.popleft()
            hops = distances[current]
            if hops >= max_hops:
                continue
            for neighbor in self.neighbors(current):
                if neighbor not in distances:
                    distances[neighbor] = hops + 1
                    queue.append(neighbor)
        distances.pop(seed)
        return distances

    def document_neighborhood(self, seed: str, max_hops: int) -> dict[str, int]:
        """Like :meth:`bfs`, restricted to document nodes in the result.

        Tag, category, and link nodes are still walked through, so two
        notes sharing a tag are two hops apart.
        """
        return {n: hops for n, hops in self.bfs(seed, max_hops).items() if self.is_document(n)}
