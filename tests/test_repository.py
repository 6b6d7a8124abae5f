"""Tests for the SQLite repositories and health checks."""

from collections.abc import AsyncGenerator

import pytest

from vaultrag.core.models import EmbeddingRecord, GraphNodeType, StoredChunk
from vaultrag.storage.database import Database
from vaultrag.storage.embeddings import EmbeddingRepository
from vaultrag.storage.graph import GraphStore, link_node_id, link_targets_for_path, tag_node_id
from vaultrag.storage.health import verify_health
from vaultrag.storage.metadata import DocumentRepository


@pytest.fixture
async def db(tmp_path) -> AsyncGenerator[Database, None]:
    database = Database(tmp_path / "search.sqlite")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def documents(db) -> DocumentRepository:
    return DocumentRepository(db)


@pytest.fixture
def embeddings(db) -> EmbeddingRepository:
    return EmbeddingRepository(db)


@pytest.fixture
def graph(db) -> GraphStore:
    return GraphStore(db)


def record(file_id: str, index: int, md5: str = "m", vector: list[float] | None = None) -> EmbeddingRecord:
    return EmbeddingRecord(
        id=EmbeddingRecord.make_id(file_id, index),
        file_id=file_id,
        chunk_id=f"{file_id}-{index}",
        chunk_index=index,
        md5=md5,
        ctime=1.0,
        mtime=2.0,
        embedding=vector or [0.5, 0.25],
        embedding_model="test-model",
    )


class TestDatabase:
    """Connection and transaction behaviour."""

    async def test_schema_is_idempotent(self, db):
        await db.connect()
        assert {"doc_meta", "doc_chunk", "embedding", "graph_nodes"} <= await db.table_names()

    async def test_transaction_rolls_back_on_error(self, db, documents):
        with pytest.raises(RuntimeError):
            async with db.transaction():
                await documents.set_state("scratch", "1")
                raise RuntimeError("boom")

        assert await documents.get_state("scratch") is None

    async def test_nested_transactions_join_the_outer_one(self, db, documents):
        with pytest.raises(RuntimeError):
            async with db.transaction():
                async with db.transaction():
                    await documents.set_state("inner", "1")
                raise RuntimeError("outer fails")

        assert await documents.get_state("inner") is None


class TestDocumentRepository:
    """doc_meta, doc_chunk, statistics, and index state."""

    async def test_upsert_and_lookup(self, documents, make_doc):
        doc = make_doc("notes/a.md", "hello", title="A", tags=["x"])
        await documents.upsert_document(doc)

        stored = await documents.get_by_path("notes/a.md")
        assert stored.id == doc.id
        assert stored.title == "A"
        assert stored.tags == ["x"]
        assert await documents.path_index() == {"notes/a.md": (doc.id, doc.source_file_info.mtime, doc.content_hash)}

    async def test_touch_updates_mtime_only(self, documents, make_doc):
        doc = make_doc("a.md", "hello")
        await documents.upsert_document(doc)

        await documents.touch(doc.id, 42.0)

        stored = await documents.get_document(doc.id)
        assert stored.mtime == 42.0
        assert stored.content_hash == doc.content_hash

    async def test_resolve_link_target(self, documents, make_doc):
        for path in ("Inbox.md", "projects/gamma.md", "deep/nested/gamma.md"):
            await documents.upsert_document(make_doc(path))

        assert await documents.resolve_link_target("Inbox") == make_doc("Inbox.md").id
        assert await documents.resolve_link_target("projects/gamma.md") == make_doc("projects/gamma.md").id
        # basename match prefers the shortest path
        assert await documents.resolve_link_target("gamma") == make_doc("projects/gamma.md").id
        assert await documents.resolve_link_target("missing") is None

    async def test_replace_chunks_and_pending_flags(self, documents, make_doc):
        doc = make_doc("a.md")
        await documents.upsert_document(doc)
        chunks = [
            StoredChunk(chunk_id=f"c{i}", doc_id=doc.id, chunk_index=i, content=f"part {i}")
            for i in range(3)
        ]
        await documents.replace_chunks(doc.id, chunks)
        await documents.set_embedding_pending(["c1"], True)

        assert [c.chunk_id for c in await documents.get_chunks_for_document(doc.id)] == ["c0", "c1", "c2"]
        assert await documents.count_chunks(pending_only=True) == 1
        assert await documents.pending_doc_ids() == [doc.id]

        await documents.replace_chunks(doc.id, chunks[:1])
        assert await documents.count_chunks() == 1

    async def test_record_open_counts(self, documents, make_doc):
        doc = make_doc("a.md")
        await documents.upsert_document(doc)

        await documents.record_open(doc.id, ts=100.0)
        await documents.record_open(doc.id, ts=200.0)

        stats = (await documents.get_statistics([doc.id]))[doc.id]
        assert stats.open_count == 2
        assert stats.last_open_ts == 200.0

    async def test_content_version_and_build_state(self, documents):
        assert await documents.content_version() == 0
        assert await documents.bump_content_version() == 1
        assert await documents.get_index_built_at() is None

        await documents.record_index_built(3)

        assert await documents.get_index_built_at() is not None
        assert await documents.get_state("indexed_docs") == "3"

    async def test_delete_by_doc_ids(self, documents, make_doc):
        a, b = make_doc("a.md"), make_doc("b.md")
        await documents.upsert_document(a)
        await documents.upsert_document(b)

        assert await documents.delete_by_doc_ids([a.id, "nope"]) == 1
        assert [d.path for d in await documents.list_documents()] == ["b.md"]


class TestEmbeddingRepository:
    """Embedding rows keyed by document and chunk position."""

    async def test_upsert_and_read_back(self, embeddings):
        await embeddings.upsert([record("doc", 0), record("doc", 1, md5="n")])

        stored = await embeddings.get_for_document("doc")
        assert sorted(stored) == ["doc:chunk:0", "doc:chunk:1"]
        assert stored["doc:chunk:0"].embedding == [0.5, 0.25]
        assert (await embeddings.find_by_md5("n", "test-model")).chunk_index == 1
        assert await embeddings.find_by_md5("n", "other-model") is None

    async def test_delete_except_keeps_only_listed_records(self, embeddings):
        await embeddings.upsert([record("doc", i, md5=str(i)) for i in range(4)] + [record("other", 0)])

        assert await embeddings.delete_except("doc", ["doc:chunk:0", "doc:chunk:2"]) == 2
        assert sorted(await embeddings.get_for_document("doc")) == ["doc:chunk:0", "doc:chunk:2"]
        assert sorted(await embeddings.get_for_document("other")) == ["other:chunk:0"]

    async def test_delete_except_with_nothing_to_keep(self, embeddings):
        await embeddings.upsert([record("doc", 0), record("doc", 1, md5="n")])

        assert await embeddings.delete_except("doc", []) == 2
        assert await embeddings.count() == 0

    async def test_find_orphans(self, embeddings, documents, make_doc):
        kept = make_doc("kept.md")
        await documents.upsert_document(kept)
        await embeddings.upsert([record(kept.id, 0), record("gone", 0), record("gone", 1)])

        assert await embeddings.find_orphans() == ["gone:chunk:0", "gone:chunk:1"]

    def test_record_id_round_trip(self):
        assert EmbeddingRecord.parse_id(EmbeddingRecord.make_id("a:b", 7)) == ("a:b", 7)


class TestGraphStore:
    """Projection of documents into nodes and edges."""

    async def test_projection_creates_tag_and_link_nodes(self, graph, documents, make_doc):
        doc = make_doc("a.md", tags=["engine"], links=["B"])
        await graph.project_document(doc, documents.resolve_link_target)

        assert (await graph.get_node(doc.id)).type is GraphNodeType.DOCUMENT
        assert (await graph.get_node(tag_node_id("engine"))).type is GraphNodeType.TAG
        assert (await graph.get_node(link_node_id("B"))).type is GraphNodeType.LINK
        assert await graph.neighbor_ids(doc.id) == sorted([link_node_id("B"), tag_node_id("engine")])

    async def test_dangling_link_resolves_when_target_appears(self, graph, documents, make_doc):
        a = make_doc("a.md", links=["B"])
        b = make_doc("B.md")
        await documents.upsert_document(a)
        await graph.project_document(a, documents.resolve_link_target)

        await documents.upsert_document(b)
        await graph.project_document(b, documents.resolve_link_target)

        assert await graph.get_node(link_node_id("B")) is None
        assert await graph.incoming_references(b.id) == [a.id]

    async def test_reprojection_replaces_outgoing_edges(self, graph, documents, make_doc):
        doc = make_doc("a.md", tags=["old"])
        await graph.project_document(doc, documents.resolve_link_target)
        await graph.project_document(make_doc("a.md", tags=["new"]), documents.resolve_link_target)

        assert await graph.get_node(tag_node_id("old")) is None
        assert await graph.neighbor_ids(doc.id) == [tag_node_id("new")]
        assert await graph.edge_count() == 1

    async def test_remove_document_keeps_incoming_as_link(self, graph, documents, make_doc):
        a = make_doc("a.md", links=["B"])
        b = make_doc("B.md")
        for doc in (a, b):
            await documents.upsert_document(doc)
        await graph.project_document(b, documents.resolve_link_target)
        await graph.project_document(a, documents.resolve_link_target)

        await graph.remove_document(b.id)

        assert await graph.get_node(b.id) is None
        assert await graph.neighbor_ids(a.id) == [link_node_id("B")]

    async def test_related_node_ids_by_hops(self, graph, documents, make_doc):
        a = make_doc("a.md", tags=["shared"])
        b = make_doc("b.md", tags=["shared"])
        for doc in (a, b):
            await graph.project_document(doc, documents.resolve_link_target)

        related = await graph.related_node_ids(a.id, max_hops=2)
        assert related == {tag_node_id("shared"): 1, b.id: 2}

    def test_link_targets_for_path(self):
        assert link_targets_for_path("projects/gamma.md") == [
            "projects/gamma.md",
            "gamma.md",
            "projects/gamma",
            "gamma",
        ]


class TestHealth:
    """verify_health checks."""

    async def test_fresh_index_is_healthy(self, db, embeddings, vector_store):
        report = await verify_health(db, embeddings, vector_store)
        assert report.ok
        assert [c.name for c in report.checks] == ["integrity", "tables", "vector_table", "vector_count", "orphans"]

    async def test_orphans_and_count_mismatch_fail(self, db, embeddings, vector_store):
        await embeddings.upsert([record("gone", 0)])

        report = await verify_health(db, embeddings, vector_store)

        failed = {c.name for c in report.checks if not c.ok}
        assert failed == {"vector_count", "orphans"}

    async def test_missing_vector_backend(self, db, embeddings):
        report = await verify_health(db, embeddings, None)
        assert not report.ok
