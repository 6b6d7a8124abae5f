"""UI-agnostic service facade for vaultrag.

Owns the one database connection, the repositories, and the indexing,
search, and graph components, and exposes the operations callers need.
Collaborators (vault, embedding provider, summarizer, vector store) can
be injected; anything not given is built from :class:`Settings`.
"""

from __future__ import annotations

import logging
from pathlib import Path

from vaultrag.core.config import Settings
from vaultrag.core.exceptions import IndexingError, SearchError
from vaultrag.core.models import (
    ClearResult,
    HealthReport,
    IndexResult,
    IndexStatus,
    OrphanCleanupResult,
    PathResult,
    RelatedResponse,
    ResourceSummary,
    SearchResponse,
)
from vaultrag.graph.inspector import GraphInspector
from vaultrag.ingestion.embedder import EmbeddingPipeline
from vaultrag.ingestion.indexer import IncrementalIndexer, ProgressCallback
from vaultrag.ingestion.pipeline import IndexingPipeline
from vaultrag.ingestion.queue import FileEvent, ReindexQueue
from vaultrag.ingestion.vault import FileSystemVault, Vault
from vaultrag.loaders.registry import LoaderRegistry
from vaultrag.providers.base import EmbeddingProvider, Summarizer
from vaultrag.resources.manager import ResourceRegistry
from vaultrag.search.hybrid import HybridQueryEngine
from vaultrag.search.semantic import SemanticSearchEngine
from vaultrag.storage.base import VectorStoreProtocol
from vaultrag.storage.database import Database
from vaultrag.storage.embeddings import EmbeddingRepository
from vaultrag.storage.graph import GraphStore
from vaultrag.storage.health import verify_health
from vaultrag.storage.metadata import KEY_INDEXED_DOCS, DocumentRepository

logger = logging.getLogger(__name__)


class VaultRAGService:
    """High-level service facade for indexing and searching a vault.

    Parameters
    ----------
    settings:
        Application configuration.  When ``None`` a default
        :class:`Settings` instance is created.
    vault:
        File-system collaborator; defaults to ``settings.vault_dir``.
    embedding_provider:
        Embedding collaborator; defaults to a local
        ``SentenceTransformer`` unless ``settings.embedding_enabled`` is
        false.
    summarizer:
        Optional summarization collaborator.
    vector_store:
        Vector backend; defaults to LanceDB under ``settings.index_dir``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        vault: Vault | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        summarizer: Summarizer | None = None,
        vector_store: VectorStoreProtocol | None = None,
    ) -> None:
        self._settings = settings or Settings()
        s = self._settings

        self._vault = vault or FileSystemVault(Path(s.vault_dir))
        if not s.embedding_enabled:
            embedding_provider = None
        elif embedding_provider is None:
            from vaultrag.providers.embedding import SentenceTransformerEmbedder

            embedding_provider = SentenceTransformerEmbedder()
        if vector_store is None:
            from vaultrag.storage.vector import LanceDBVectorStore

            vector_store = LanceDBVectorStore(s.lancedb_path)

        self._db = Database(s.search_db_path)
        self._documents = DocumentRepository(self._db)
        self._embeddings = EmbeddingRepository(self._db)
        self._graph = GraphStore(self._db)
        self._vectors = vector_store

        self._loaders = LoaderRegistry.with_default_loaders(self._vault, s, summarizer)
        self._resources = ResourceRegistry(self._vault, self._loaders)
        self._embedder = EmbeddingPipeline(
            self._documents,
            self._embeddings,
            vector_store,
            embedding_provider,
            model=s.embedding_model,
            batch_size=s.embedding_batch_size,
            timeout=s.embedding_timeout,
            concurrency=s.index_concurrency,
        )
        self._pipeline = IndexingPipeline(
            self._db,
            self._loaders,
            self._documents,
            self._embeddings,
            self._graph,
            self._embedder,
            s,
        )
        self._indexer = IncrementalIndexer(self._vault, self._loaders, self._documents, self._pipeline, s)
        self._queue = ReindexQueue(self._indexer, debounce=s.reindex_debounce)

        semantic = SemanticSearchEngine(
            vector_store, embedding_provider, s.embedding_model, timeout=s.embedding_timeout
        )
        self._search = HybridQueryEngine(self._documents, self._graph, semantic, s)
        self._inspector = GraphInspector(self._documents, self._embeddings, self._graph, semantic, s)
        self._opened = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def indexer(self) -> IncrementalIndexer:
        return self._indexer

    @property
    def loaders(self) -> LoaderRegistry:
        return self._loaders

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """Open the search database; safe to call more than once."""
        if not self._opened:
            await self._db.connect()
            self._opened = True

    async def close(self) -> None:
        await self._queue.stop()
        if self._opened:
            await self._db.close()
            self._opened = False

    async def __aenter__(self) -> VaultRAGService:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def startup(self, progress: ProgressCallback | None = None) -> IndexResult:
        """Open storage, then run a full index if none was ever built, else an incremental one."""
        await self.open()
        return await self._indexer.startup(progress)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    async def full_index(self, progress: ProgressCallback | None = None) -> IndexResult:
        await self.open()
        return await self._indexer.full_index(progress)

    async def incremental_index(self, progress: ProgressCallback | None = None) -> IndexResult:
        await self.open()
        return await self._indexer.incremental_index(progress)

    def cancel_indexing(self) -> bool:
        """Ask the running pass to stop at its next batch boundary."""
        return self._indexer.cancel()

    def notify_file_event(self, event: FileEvent | str, path: str, old_path: str | None = None) -> None:
        """Queue a file-system change for debounced re-indexing."""
        file_event = FileEvent(event)
        self._queue.start()
        self._queue.notify(file_event, path, old_path)

    async def wait_for_queue(self) -> None:
        await self._queue.join()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear(self) -> ClearResult:
        """Delete all index data.

        Raises
        ------
        IndexingError
            If an indexing pass is running.
        """
        await self.open()
        if self._indexer.running:
            raise IndexingError("Cannot clear the index while an indexing pass is running")
        result = await self._pipeline.clear()
        self._search.reset()
        return result

    async def verify_health(self) -> HealthReport:
        await self.open()
        return await verify_health(self._db, self._embeddings, self._vectors)

    async def cleanup_orphans(self) -> OrphanCleanupResult:
        await self.open()
        return await self._embedder.cleanup_orphans()

    async def status(self) -> IndexStatus:
        await self.open()
        indexed = await self._documents.get_state(KEY_INDEXED_DOCS)
        return IndexStatus(
            built_at=await self._documents.get_index_built_at(),
            indexed_docs=int(indexed) if indexed else await self._documents.count_documents(),
            total_chunks=await self._documents.count_chunks(),
            total_embeddings=await self._embeddings.count(),
            pending_embeddings=await self._documents.count_chunks(pending_only=True),
            total_nodes=await self._graph.node_count(),
            total_edges=await self._graph.edge_count(),
        )

    # ------------------------------------------------------------------
    # Queries
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
        await self.open()
        return await self._search.search(
            query,
            top_k=top_k,
            mode=mode,
            scope=scope,
            current_path=current_path,
            boost=boost,
        )

    async def related(self, document: str, limit: int = 20) -> RelatedResponse:
        """Related documents for *document* (a document id or vault path)."""
        await self.open()
        return await self._inspector.related_documents(await self._resolve(document), limit)

    async def backlinks(self, document: str) -> list[str]:
        """Paths of indexed documents whose wiki links resolve to *document*."""
        await self.open()
        source_ids = await self._graph.incoming_references(await self._resolve(document))
        docs = await self._documents.get_documents(source_ids)
        return sorted(docs[d].path for d in source_ids if d in docs)

    async def find_paths(
        self,
        source: str,
        target: str,
        iterations: int | None = None,
        max_hops: int | None = None,
    ) -> PathResult:
        await self.open()
        return await self._inspector.find_paths(
            await self._resolve(source),
            await self._resolve(target),
            iterations=iterations,
            max_hops=max_hops,
        )

    async def record_open(self, document: str) -> None:
        """Count one open of *document* (id or path) for ranking."""
        await self.open()
        await self._documents.record_open(await self._resolve(document))

    async def get_summary(self, resource: str, model_id: str | None = None) -> ResourceSummary:
        """Summarise a tag, folder, or document reference."""
        return await self._resources.get_summary(resource, model_id=model_id or self._settings.summary_model)

    async def _resolve(self, document: str) -> str:
        if await self._documents.get_document(document) is not None:
            return document
        stored = await self._documents.get_by_path(document)
        if stored is None:
            raise SearchError(f"Document {document!r} is not indexed")
        return stored.id
