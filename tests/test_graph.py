"""Tests for the graph view, related-document ranking, and path finding."""

import itertools
from types import SimpleNamespace

import pytest

import vaultrag.graph.inspector as inspector_module
from conftest import BrokenVectorStore
from vaultrag.api.service import VaultRAGService
from vaultrag.core.exceptions import SearchError
from vaultrag.core.models import GraphEdge, GraphEdgeType, GraphNode, GraphNodeType
from vaultrag.graph.analyzer import InMemoryGraph
from vaultrag.graph.inspector import rank_dimension
from vaultrag.utils.hashing import doc_id_from_path


def node(node_id: str, node_type: GraphNodeType = GraphNodeType.DOCUMENT) -> GraphNode:
    return GraphNode(id=node_id, type=node_type, label=node_id.upper())


def edge(a: str, b: str, edge_type: GraphEdgeType = GraphEdgeType.REFERENCES) -> GraphEdge:
    return GraphEdge(id=f"{a}->{b}", from_node_id=a, to_node_id=b, type=edge_type)


@pytest.fixture
async def indexed(service, sample_vault):
    await service.full_index()
    return {name: doc_id_from_path(path) for name, path in sample_vault.items()}


@pytest.fixture
async def physical_only(settings, sample_vault, embedder):
    """Service whose vector backend cannot serve queries, so only links and tags count."""
    svc = VaultRAGService(settings, embedding_provider=embedder, vector_store=BrokenVectorStore())
    await svc.open()
    await svc.full_index()
    yield svc
    await svc.close()


class TestInMemoryGraph:
    """Adjacency view over nodes and edges."""

    def test_edges_are_undirected_and_weights_accumulate(self):
        graph = InMemoryGraph(
            [node("a"), node("b")],
            [edge("a", "b"), edge("b", "a", GraphEdgeType.RELATED)],
        )

        assert graph.neighbors("b") == ["a"]
        assert graph.weight("a", "b") == 2.0
        assert graph.edge_type("a", "b") == "references"
        assert graph.edge_type("a", "missing") is None

    def test_self_loops_are_ignored(self):
        graph = InMemoryGraph([node("a")], [edge("a", "a")])
        assert graph.degree("a") == 0

    def test_bfs_respects_hop_limit(self):
        graph = InMemoryGraph([node(n) for n in "abcd"], [edge("a", "b"), edge("b", "c"), edge("c", "d")])

        assert graph.bfs("a", 1) == {"b": 1}
        assert graph.bfs("a", 2) == {"b": 1, "c": 2}
        assert "a" not in graph.bfs("a", 3)

    def test_document_neighborhood_walks_through_tags(self):
        graph = InMemoryGraph(
            [node("a"), node("b"), node("tag:x", GraphNodeType.TAG)],
            [edge("a", "tag:x", GraphEdgeType.TAGGED), edge("b", "tag:x", GraphEdgeType.TAGGED)],
        )

        assert graph.document_neighborhood("a", 2) == {"b": 2}
        assert graph.document_neighborhood("a", 1) == {}

    def test_lookups(self):
        graph = InMemoryGraph([node("a")], [], version=4)

        assert graph.version == 4
        assert "a" in graph
        assert len(graph) == 1
        assert graph.label("a") == "A"
        assert graph.label("ghost") == "ghost"
        assert graph.is_document("a")
        assert not graph.is_document("ghost")


class TestRankDimension:
    def test_descending_with_missing_values_unranked(self):
        ranks = rank_dimension({"a": 3, "b": None, "c": 0, "d": 5, "e": 3})
        assert ranks == {"d": 1, "a": 2, "e": 3}


class TestRelatedDocuments:
    """Six-dimension fusion with a bonus for physical connections."""

    async def test_physical_neighbours_rank_first(self, service, indexed):
        response = await service.related(indexed["alpha"])

        ids = [r.doc_id for r in response.results]
        assert set(ids[:2]) == {indexed["beta"], indexed["gamma"]}
        assert all(r.physical for r in response.results[:2])
        assert ids[-1] == indexed["delta"]
        assert not response.results[-1].physical
        assert response.results[-1].similarity is not None
        assert indexed["alpha"] not in ids
        assert not response.degraded

    async def test_accepts_vault_paths(self, service, sample_vault, indexed):
        response = await service.related(sample_vault["beta"], limit=1)

        assert response.doc_id == indexed["beta"]
        assert len(response.results) == 1

    async def test_falls_back_to_physical_graph(self, physical_only, sample_vault):
        response = await physical_only.related(sample_vault["alpha"])

        assert response.degraded
        assert {r.path for r in response.results} == {sample_vault["beta"], sample_vault["gamma"]}
        assert all(r.similarity is None for r in response.results)

    async def test_candidate_pool_is_capped(self, settings, write_file, vector_store):
        """A hub linking to 501 notes ranks at most ranking_pool_size of them."""
        names = [f"n{i:03d}" for i in range(501)]
        for name in names:
            write_file(f"notes/{name}.md", f"Note {name}.")
        hub = write_file("hub.md", " ".join(f"[[{name}]]" for name in names))
        text_only = settings.model_copy(update={"embedding_enabled": False})

        async with VaultRAGService(text_only, vector_store=vector_store) as svc:
            await svc.full_index()
            response = await svc.related(hub, limit=1000)

        assert text_only.ranking_pool_size == 500
        assert len(response.results) == 500
        assert all(r.physical for r in response.results)

    async def test_unknown_document(self, service, indexed):
        with pytest.raises(SearchError):
            await service.related("nowhere.md")

    async def test_backlinks(self, service, sample_vault, indexed):
        assert await service.backlinks(sample_vault["gamma"]) == [sample_vault["beta"]]
        assert await service.backlinks(sample_vault["alpha"]) == []


class TestFindPaths:
    """Bidirectional search over physical and semantic edges."""

    async def test_shortest_physical_path(self, physical_only, sample_vault):
        alpha, beta, gamma = (doc_id_from_path(sample_vault[n]) for n in ("alpha", "beta", "gamma"))

        result = await physical_only.find_paths(sample_vault["alpha"], sample_vault["gamma"])

        assert [p.node_ids for p in result.paths] == [[alpha, beta, gamma]]
        assert result.paths[0].edge_types == ["references", "references"]
        assert result.paths[0].labels == [sample_vault["alpha"], sample_vault["beta"], sample_vault["gamma"]]
        assert result.paths[0].hops == 2
        # the second iteration excludes beta and finds nothing
        assert result.iterations_run == 2
        assert not result.partial

    async def test_hop_limit(self, physical_only, sample_vault):
        result = await physical_only.find_paths(sample_vault["alpha"], sample_vault["gamma"], max_hops=1)
        assert result.paths == []

    async def test_semantic_edges_connect_unlinked_documents(self, service, indexed):
        alpha, delta = indexed["alpha"], indexed["delta"]

        result = await service.find_paths(alpha, delta)

        assert result.paths[0].node_ids == [alpha, delta]
        assert result.paths[0].edge_types == ["similar"]
        assert len(result.paths) >= 2
        intermediates = [set(p.node_ids[1:-1]) for p in result.paths]
        for first, second in itertools.combinations(intermediates, 2):
            assert not first & second
        assert all(p.node_ids[0] == alpha and p.node_ids[-1] == delta for p in result.paths)

    async def test_same_source_and_target(self, service, indexed):
        result = await service.find_paths(indexed["beta"], indexed["beta"])

        assert [p.node_ids for p in result.paths] == [[indexed["beta"]]]
        assert result.paths[0].hops == 0

    async def test_unknown_endpoint(self, service, indexed):
        with pytest.raises(SearchError):
            await service.find_paths(indexed["alpha"], "missing.md")

    async def test_deadline_returns_partial_result(self, physical_only, sample_vault, monkeypatch):
        ticks = itertools.count(step=100.0)
        monkeypatch.setattr(inspector_module, "time", SimpleNamespace(monotonic=lambda: next(ticks)))

        result = await physical_only.find_paths(sample_vault["alpha"], sample_vault["gamma"])

        assert result.partial
        assert result.paths == []
        assert result.iterations_run == 1
