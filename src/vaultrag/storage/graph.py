"""Reference graph persisted in ``graph_nodes`` / ``graph_edges``.

Every indexed document is a ``document`` node labelled with its path.
Wiki links become ``references`` edges; a link whose target is not
indexed points at a ``link:<target>`` node so it can later be re-pointed
at the real document without renumbering anything.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from pathlib import PurePosixPath
from typing import Awaitable, Callable

from vaultrag.core.models import (
    Document,
    GraphEdge,
    GraphEdgeType,
    GraphNode,
    GraphNodeType,
)
from vaultrag.storage.database import Database, placeholders
from vaultrag.utils.hashing import edge_id

logger = logging.getLogger(__name__)

LinkResolver = Callable[[str], Awaitable["str | None"]]

# ---------------------------------------------------------------------------
# SQL constants
# ---------------------------------------------------------------------------

_NODE_COLUMNS = "id, type, label, attributes, created_at, updated_at"
_EDGE_COLUMNS = "id, from_node_id, to_node_id, type, weight, attributes, created_at, updated_at"

_UPSERT_NODE = f"""
INSERT INTO graph_nodes ({_NODE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    type       = excluded.type,
    label      = excluded.label,
    attributes = excluded.attributes,
    updated_at = excluded.updated_at
"""

# Re-upserting the same (from, to, type) accumulates weight.
_UPSERT_EDGE = f"""
INSERT INTO graph_edges ({_EDGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    weight     = graph_edges.weight + excluded.weight,
    attributes = excluded.attributes,
    updated_at = excluded.updated_at
"""

_DELETE_UNUSED_AUX_NODES = """
DELETE FROM graph_nodes
WHERE type IN ('tag', 'category', 'link')
  AND NOT EXISTS (SELECT 1 FROM graph_edges e WHERE e.from_node_id = graph_nodes.id)
  AND NOT EXISTS (SELECT 1 FROM graph_edges e WHERE e.to_node_id = graph_nodes.id)
"""


def link_node_id(target: str) -> str:
    return f"link:{target}"


def tag_node_id(tag: str) -> str:
    return f"tag:{tag}"


def category_node_id(category: str) -> str:
    return f"category:{category}"


def link_targets_for_path(path: str) -> list[str]:
    """Every wiki-link spelling that resolves to *path*."""
    posix = PurePosixPath(path)
    candidates = [path, posix.name]
    if posix.suffix.lower() == ".md":
        candidates += [str(posix.with_suffix("")), posix.stem]
    return list(dict.fromkeys(candidates))


class GraphStore:
    """Node/edge persistence plus the traversal queries the inspector needs."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # -- nodes and edges ------------------------------------------------------

    async def upsert_node(
        self,
        node_id: str,
        node_type: GraphNodeType,
        label: str,
        attributes: dict | None = None,
    ) -> None:
        now = time.time()
        await self._db.execute(
            _UPSERT_NODE,
            (node_id, node_type.value, label, json.dumps(attributes or {}), now, now),
        )

    async def upsert_edge(
        self,
        from_node_id: str,
        to_node_id: str,
        edge_type: GraphEdgeType,
        weight: float = 1.0,
        attributes: dict | None = None,
    ) -> str:
        """Insert the edge or add *weight* to the existing one; return its id."""
        eid = edge_id(from_node_id, to_node_id, edge_type.value)
        now = time.time()
        await self._db.execute(
            _UPSERT_EDGE,
            (
                eid,
                from_node_id,
                to_node_id,
                edge_type.value,
                weight,
                json.dumps(attributes or {}),
                now,
                now,
            ),
        )
        return eid

    async def delete_node(self, node_id: str) -> None:
        """Remove the node and its edges in both directions."""
        async with self._db.transaction():
            await self._db.execute(
                "DELETE FROM graph_edges WHERE from_node_id = ? OR to_node_id = ?",
                (node_id, node_id),
            )
            await self._db.execute("DELETE FROM graph_nodes WHERE id = ?", (node_id,))

    # -- document projection -------------------------------------------------

    async def project_document(self, doc: Document, resolve: LinkResolver) -> None:
        """Write the document node and its outgoing reference/tag/category edges.

        Previous outgoing edges of the document are replaced.  Afterwards
        any ``link`` nodes naming this document are folded into it.

        Parameters
        ----------
        doc:
            Freshly read document.
        resolve:
            Maps a wiki-link target to an indexed document id, or ``None``.
        """
        async with self._db.transaction():
            await self.upsert_node(
                doc.id,
                GraphNodeType.DOCUMENT,
                doc.path,
                {"title": doc.metadata.title, "type": doc.type.value},
            )
            await self._db.execute("DELETE FROM graph_edges WHERE from_node_id = ?", (doc.id,))

            for ref in doc.references.outgoing:
                target_id = ref.doc_id or await resolve(ref.full_path)
                if target_id == doc.id:
                    continue
                if target_id is not None and await self.get_node(target_id) is None:
                    target_id = None
                if target_id is None:
                    target_id = link_node_id(ref.full_path)
                    await self.upsert_node(
                        target_id,
                        GraphNodeType.LINK,
                        ref.full_path,
                        {"target": ref.full_path, "resolved": False},
                    )
                await self.upsert_edge(doc.id, target_id, GraphEdgeType.REFERENCES)

            for tag in doc.metadata.tags:
                await self.upsert_node(tag_node_id(tag), GraphNodeType.TAG, tag)
                await self.upsert_edge(doc.id, tag_node_id(tag), GraphEdgeType.TAGGED)
            for category in doc.metadata.categories:
                await self.upsert_node(category_node_id(category), GraphNodeType.CATEGORY, category)
                await self.upsert_edge(doc.id, category_node_id(category), GraphEdgeType.CATEGORIZED)

            await self._resolve_links_to(doc.id, doc.path)
            await self._db.execute(_DELETE_UNUSED_AUX_NODES)

    async def _resolve_links_to(self, doc_id: str, path: str) -> int:
        """Re-point edges from matching ``link`` nodes onto *doc_id*."""
        link_ids = [link_node_id(t) for t in link_targets_for_path(path)]
        rows = await self._db.fetchall(
            f"SELECT {_EDGE_COLUMNS} FROM graph_edges "
            f"WHERE to_node_id IN ({placeholders(link_ids)})",
            link_ids,
        )
        for row in rows:
            if row["from_node_id"] != doc_id:
                await self.upsert_edge(
                    row["from_node_id"], doc_id, GraphEdgeType(row["type"]), row["weight"]
                )
        for link_id in link_ids:
            await self.delete_node(link_id)
        if rows:
            logger.debug("Resolved %d dangling link(s) onto %s", len(rows), path)
        return len(rows)

    async def remove_document(self, doc_id: str) -> None:
        """Delete a document node; incoming references fall back to a ``link`` node."""
        async with self._db.transaction():
            node = await self.get_node(doc_id)
            if node is None:
                return
            incoming = await self._db.fetchall(
                "SELECT from_node_id, weight FROM graph_edges "
                "WHERE to_node_id = ? AND type = ?",
                (doc_id, GraphEdgeType.REFERENCES.value),
            )
            await self.delete_node(doc_id)
            if incoming:
                posix = PurePosixPath(node.label)
                target = str(posix.with_suffix("")) if posix.suffix.lower() == ".md" else node.label
                await self.upsert_node(
                    link_node_id(target),
                    GraphNodeType.LINK,
                    target,
                    {"target": target, "resolved": False},
                )
                for row in incoming:
                    await self.upsert_edge(
                        row["from_node_id"], link_node_id(target), GraphEdgeType.REFERENCES, row["weight"]
                    )
            await self._db.execute(_DELETE_UNUSED_AUX_NODES)

    # -- queries ------------------------------------------------------------

    async def get_node(self, node_id: str) -> GraphNode | None:
        row = await self._db.fetchone(
            f"SELECT {_NODE_COLUMNS} FROM graph_nodes WHERE id = ?", (node_id,)
        )
        return self._row_to_node(row) if row else None

    async def all_nodes(self) -> list[GraphNode]:
        rows = await self._db.fetchall(f"SELECT {_NODE_COLUMNS} FROM graph_nodes ORDER BY id")
        return [self._row_to_node(row) for row in rows]

    async def all_edges(self) -> list[GraphEdge]:
        rows = await self._db.fetchall(f"SELECT {_EDGE_COLUMNS} FROM graph_edges ORDER BY id")
        return [self._row_to_edge(row) for row in rows]

    async def neighbor_ids(self, node_id: str) -> list[str]:
        """Direct neighbours, ignoring edge direction."""
        rows = await self._db.fetchall(
            "SELECT to_node_id FROM graph_edges WHERE from_node_id = ? "
            "UNION SELECT from_node_id FROM graph_edges WHERE to_node_id = ?",
            (node_id, node_id),
        )
        return sorted(row[0] for row in rows if row[0] != node_id)

    async def related_node_ids(self, node_id: str, max_hops: int = 2) -> dict[str, int]:
        """Breadth-first reachability: ``node_id -> hop distance`` (seed excluded)."""
        distances: dict[str, int] = {node_id: 0}
        queue: deque[str] = deque([node_id])
        while queue:
            current = queue.popleft()
            hops = distances[current]
            if hops >= max_hops:
                continue
            for neighbor in await self.neighbor_ids(current):
                if neighbor not in distances:
                    distances[neighbor] = hops + 1
                    queue.append(neighbor)
        distances.pop(node_id)
        return distances

    async def incoming_references(self, doc_id: str) -> list[str]:
        rows = await self._db.fetchall(
            "SELECT from_node_id FROM graph_edges WHERE to_node_id = ? AND type = ? "
            "ORDER BY from_node_id",
            (doc_id, GraphEdgeType.REFERENCES.value),
        )
        return [row[0] for row in rows]

    async def node_count(self) -> int:
        return int(await self._db.scalar("SELECT COUNT(*) FROM graph_nodes") or 0)

    async def edge_count(self) -> int:
        return int(await self._db.scalar("SELECT COUNT(*) FROM graph_edges") or 0)

    # -- housekeeping -------------------------------------------------------

    async def delete_all(self) -> tuple[int, int]:
        """Remove every node and edge; return ``(nodes, edges)`` deleted."""
        async with self._db.transaction():
            edges = await self._db.execute("DELETE FROM graph_edges")
            nodes = await self._db.execute("DELETE FROM graph_nodes")
        return nodes, edges

    # -- helpers ------------------------------------------------------------

    @staticmethod
    def _row_to_node(row) -> GraphNode:  # type: ignore[no-untyped-def]
        return GraphNode(
            id=row["id"],
            type=GraphNodeType(row["type"]),
            label=row["label"],
            attributes=json.loads(row["attributes"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_edge(row) -> GraphEdge:  # type: ignore[no-untyped-def]
        return GraphEdge(
            id=row["id"],
            from_node_id=row["from_node_id"],
            to_node_id=row["to_node_id"],
            type=GraphEdgeType(row["type"]),
            weight=row["weight"],
            attributes=json.loads(row["attributes"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
