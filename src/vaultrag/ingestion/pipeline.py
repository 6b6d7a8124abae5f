"""Per-document indexing: chunk, embed, and persist one document atomically.

:class:`IndexingPipeline` is the only writer of the search database.  It
knows nothing about scanning or change detection; the
:class:`~vaultrag.ingestion.indexer.IncrementalIndexer` decides *which*
documents to hand it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from vaultrag.core.config import Settings
from vaultrag.core.models import ClearResult, Chunk, Document, StoredChunk
from vaultrag.ingestion.embedder import EmbeddingPipeline
from vaultrag.ingestion.statistics import compute_statistics
from vaultrag.loaders.registry import LoaderRegistry
from vaultrag.storage.database import Database
from vaultrag.storage.embeddings import EmbeddingRepository
from vaultrag.storage.graph import GraphStore
from vaultrag.storage.metadata import DocumentRepository

logger = logging.getLogger(__name__)


@dataclass
class DocumentIndexOutcome:
    doc_id: str
    chunks: int
    embedded: int
    pending: int


def to_stored_chunks(doc: Document, chunks: list[Chunk]) -> list[StoredChunk]:
    """Give unnamed chunks a concrete id and position.

    A document kept whole comes back from its loader as one chunk without
    an id; it is stored under the document id at index 0.
    """
    stored: list[StoredChunk] = []
    for position, chunk in enumerate(chunks):
        stored.append(
            StoredChunk(
                chunk_id=chunk.chunk_id or (doc.id if len(chunks) == 1 else f"{doc.id}:{position}"),
                doc_id=doc.id,
                chunk_index=chunk.chunk_index if chunk.chunk_index is not None else position,
                title=doc.metadata.title,
                content=chunk.content,
            )
        )
    return stored


class IndexingPipeline:
    """Write path for documents, chunks, statistics, graph rows, and embeddings.

    Parameters
    ----------
    db:
        Shared database; every document is written in one transaction.
    loaders:
        Registry used for chunking and optional summaries.
    documents, embeddings, graph:
        Repositories over *db*.
    embedder:
        Embedding pipeline (vectors are published after the commit).
    settings:
        Chunking limits and summary options.
    """

    def __init__(
        self,
        db: Database,
        loaders: LoaderRegistry,
        documents: DocumentRepository,
        embeddings: EmbeddingRepository,
        graph: GraphStore,
        embedder: EmbeddingPipeline,
        settings: Settings,
    ) -> None:
        self._db = db
        self._loaders = loaders
        self._documents = documents
        self._embeddings = embeddings
        self._graph = graph
        self._embedder = embedder
        self._settings = settings

    @property
    def embedder(self) -> EmbeddingPipeline:
        return self._embedder

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def index_document(self, doc: Document) -> DocumentIndexOutcome:
        """Replace everything stored for *doc* with its current state.

        Steps:

        1. Chunk with the owning loader.
        2. Optionally summarise (best effort).
        3. Prepare embeddings (cache lookups and collaborator calls).
        4. In one transaction: metadata, chunks, statistics, graph
           projection, embedding rows, content version.
        5. Publish vectors to the vector backend.
        """
        chunks = to_stored_chunks(doc, self._loaders.chunk_content(doc, self._settings.chunking))
        if self._settings.generate_summaries and doc.summary is None:
            doc.summary = await self._summarize(doc)

        prepared = await self._embedder.prepare(
            doc.id,
            chunks,
            ctime=doc.source_file_info.ctime,
            mtime=doc.source_file_info.mtime,
        )

        async with self._db.transaction():
            await self._documents.upsert_document(doc)
            await self._documents.replace_chunks(doc.id, chunks)
            await self._documents.upsert_statistics(compute_statistics(doc))
            await self._graph.project_document(doc, self._documents.resolve_link_target)
            await self._embedder.commit(prepared)
            await self._documents.bump_content_version()

        await self._embedder.publish_vectors(prepared)
        logger.debug(
            "Indexed %s: %d chunks, %d reused, %d computed, %d pending",
            doc.path,
            len(chunks),
            prepared.reused,
            prepared.computed,
            len(prepared.pending_chunk_ids),
        )
        return DocumentIndexOutcome(
            doc_id=doc.id,
            chunks=len(chunks),
            embedded=prepared.reused + prepared.computed,
            pending=len(prepared.pending_chunk_ids),
        )

    async def _summarize(self, doc: Document) -> str | None:
        loader = self._loaders.get_loader(doc.type)
        if loader is None:
            return None
        try:
            summary = await loader.get_summary(doc, model_id=self._settings.summary_model)
        except Exception:  # noqa: BLE001
            logger.warning("Summary generation failed for %s", doc.path, exc_info=True)
            return None
        return summary.short_summary

    async def remove_documents(self, doc_ids: list[str]) -> int:
        """Delete metadata, chunks, statistics, graph rows, embeddings, and vectors."""
        if not doc_ids:
            return 0
        async with self._db.transaction():
            for doc_id in doc_ids:
                await self._graph.remove_document(doc_id)
            await self._embeddings.delete_by_doc_ids(doc_ids)
            removed = await self._documents.delete_by_doc_ids(doc_ids)
            await self._documents.bump_content_version()
        await self._embedder.remove_vectors(doc_ids)
        logger.info("Removed %d document(s) from the index", removed)
        return removed

    async def retry_pending(self) -> int:
        """Embed chunks left pending by earlier failures; return chunks embedded."""
        if not self._embedder.available:
            return 0
        embedded = 0
        for doc_id in await self._documents.pending_doc_ids():
            stored = await self._documents.get_document(doc_id)
            if stored is None:
                continue
            chunks = await self._documents.get_chunks_for_document(doc_id)
            prepared = await self._embedder.prepare(
                doc_id, chunks, ctime=stored.ctime, mtime=stored.mtime
            )
            async with self._db.transaction():
                await self._embedder.commit(prepared)
            await self._embedder.publish_vectors(prepared)
            embedded += prepared.reused + prepared.computed
        if embedded:
            logger.info("Embedded %d previously pending chunk(s)", embedded)
        return embedded

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def clear(self) -> ClearResult:
        """Delete all index data and return the counts removed."""
        async with self._db.transaction():
            nodes, edges = await self._graph.delete_all()
            embeddings = await self._embeddings.delete_all()
            docs, chunks = await self._documents.delete_all()
        await self._embedder.clear_vectors()
        logger.info("All index data cleared")
        return ClearResult(
            documents_deleted=docs,
            chunks_deleted=chunks,
            embeddings_deleted=embeddings,
            nodes_deleted=nodes,
            edges_deleted=edges,
        )
