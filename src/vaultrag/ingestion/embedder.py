"""Chunk embedding with reuse, batching, and per-chunk failure isolation.

Embedding is split into a read-only :meth:`EmbeddingPipeline.prepare`
step (cache lookups and collaborator calls) and a :meth:`commit` step
that only writes.  The indexing pipeline runs ``commit`` inside the same
database transaction as the document's other rows, so a slow embedding
call never holds the write lock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from vaultrag.core.exceptions import CollaboratorUnavailableError, EmbeddingError
from vaultrag.core.models import EmbeddingRecord, OrphanCleanupResult, StoredChunk
from vaultrag.providers.base import EmbeddingProvider
from vaultrag.storage.base import VectorStoreProtocol
from vaultrag.storage.embeddings import EmbeddingRepository
from vaultrag.storage.metadata import DocumentRepository
from vaultrag.utils.hashing import text_content_hash

logger = logging.getLogger(__name__)


@dataclass
class PreparedEmbeddings:
    """Everything :meth:`EmbeddingPipeline.commit` needs to persist one document."""

    doc_id: str
    records: list[EmbeddingRecord] = field(default_factory=list)  # rows to upsert
    vectors: list[tuple[str, list[float]]] = field(default_factory=list)  # full vector set
    embedded_chunk_ids: list[str] = field(default_factory=list)
    pending_chunk_ids: list[str] = field(default_factory=list)
    reused: int = 0
    computed: int = 0


class EmbeddingPipeline:
    """Turn stored chunks into embedding records and vectors.

    Parameters
    ----------
    documents, embeddings:
        Repositories for chunk flags and embedding rows.
    vectors:
        Vector backend, or ``None`` when vector search is disabled.
    provider:
        Embedding collaborator, or ``None``; chunks are then flagged as
        pending instead of embedded.
    model:
        Embedding model id recorded with every vector.
    batch_size:
        Texts per collaborator call.
    timeout:
        Seconds before one collaborator call counts as a transient failure.
    concurrency:
        Collaborator calls allowed in flight at once.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        embeddings: EmbeddingRepository,
        vectors: VectorStoreProtocol | None,
        provider: EmbeddingProvider | None,
        *,
        model: str,
        batch_size: int = 32,
        timeout: float = 30.0,
        concurrency: int = 4,
    ) -> None:
        self._documents = documents
        self._embeddings = embeddings
        self._vectors = vectors
        self._provider = provider
        self._model = model
        self._batch_size = max(1, batch_size)
        self._timeout = timeout
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    @property
    def available(self) -> bool:
        return self._provider is not None

    @property
    def model(self) -> str:
        return self._model

    # -- prepare ---------------------------------------------------------------

    async def prepare(
        self,
        doc_id: str,
        chunks: list[StoredChunk],
        *,
        ctime: float,
        mtime: float,
    ) -> PreparedEmbeddings:
        """Work out which chunks need vectors and obtain them.

        For each chunk, in order of preference:

        1. the record already stored at the same position with the same
           md5 and model is kept as is (no write);
        2. a record with identical content from any document is copied;
        3. the collaborator is called, batched.

        Chunks the collaborator fails on are reported as pending.
        """
        prepared = PreparedEmbeddings(doc_id=doc_id)
        existing = await self._embeddings.get_for_document(doc_id)
        missing: list[tuple[StoredChunk, str]] = []

        for chunk in chunks:
            md5 = text_content_hash(chunk.content)
            record_id = EmbeddingRecord.make_id(doc_id, chunk.chunk_index)
            current = existing.get(record_id)
            if current is not None and current.md5 == md5 and current.embedding_model == self._model:
                prepared.vectors.append((record_id, current.embedding))
                prepared.embedded_chunk_ids.append(chunk.chunk_id)
                continue

            cached = await self._embeddings.find_by_md5(md5, self._model)
            if cached is not None:
                logger.debug("Reusing cached embedding for chunk %s of %s", chunk.chunk_index, doc_id)
                self._accept(prepared, chunk, md5, cached.embedding, ctime, mtime)
                prepared.reused += 1
                continue
            missing.append((chunk, md5))

        if missing and self._provider is None:
            prepared.pending_chunk_ids.extend(c.chunk_id for c, _ in missing)
            return prepared

        for start in range(0, len(missing), self._batch_size):
            batch = missing[start:start + self._batch_size]
            vectors = await self._embed_batch(batch)
            for (chunk, md5), vector in zip(batch, vectors):
                if vector is None:
                    prepared.pending_chunk_ids.append(chunk.chunk_id)
                    continue
                self._accept(prepared, chunk, md5, vector, ctime, mtime)
                prepared.computed += 1
        return prepared

    def _accept(
        self,
        prepared: PreparedEmbeddings,
        chunk: StoredChunk,
        md5: str,
        vector: list[float],
        ctime: float,
        mtime: float,
    ) -> None:
        record = EmbeddingRecord(
            id=EmbeddingRecord.make_id(prepared.doc_id, chunk.chunk_index),
            file_id=prepared.doc_id,
            chunk_id=chunk.chunk_id,
            chunk_index=chunk.chunk_index,
            md5=md5,
            ctime=ctime,
            mtime=mtime,
            embedding=vector,
            embedding_model=self._model,
        )
        prepared.records.append(record)
        prepared.vectors.append((record.id, vector))
        prepared.embedded_chunk_ids.append(chunk.chunk_id)

    async def _call_provider(self, texts: list[str]) -> list[list[float]]:
        if self._provider is None:
            raise CollaboratorUnavailableError("No embedding provider is configured")
        async with self._semaphore:
            try:
                vectors = await asyncio.wait_for(
                    self._provider.embed(texts, self._model), timeout=self._timeout
                )
            except asyncio.TimeoutError as exc:
                raise EmbeddingError(
                    f"Embedding call timed out after {self._timeout}s", cause=exc
                ) from exc
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return vectors

    async def _embed_batch(
        self,
        batch: list[tuple[StoredChunk, str]],
    ) -> list[list[float] | None]:
        """One call for the batch; on failure, one call per chunk."""
        # Identical texts inside a document are embedded once.
        unique: dict[str, str] = {}
        for chunk, md5 in batch:
            unique.setdefault(md5, chunk.content)
        md5s = list(unique)
        try:
            vectors = await self._call_provider([unique[m] for m in md5s])
            by_md5: dict[str, list[float] | None] = dict(zip(md5s, vectors))
        except Exception:  # noqa: BLE001
            logger.warning(
                "Batch embedding of %d chunk(s) failed; retrying one by one",
                len(md5s),
                exc_info=True,
            )
            by_md5 = {}
            for md5 in md5s:
                try:
                    by_md5[md5] = (await self._call_provider([unique[md5]]))[0]
                except Exception:  # noqa: BLE001
                    logger.warning("Embedding failed for chunk %s; marked pending", md5, exc_info=True)
                    by_md5[md5] = None
        return [by_md5[md5] for _, md5 in batch]

    # -- commit ------------------------------------------------------------------

    async def commit(self, prepared: PreparedEmbeddings) -> None:
        """Write records and pending flags.  Call inside a database transaction.

        Every stored record of the document that is not part of the new
        vector set is deleted, including records at positions whose chunk
        changed but could not be re-embedded.
        """
        await self._embeddings.upsert(prepared.records)
        await self._embeddings.delete_except(prepared.doc_id, [rid for rid, _ in prepared.vectors])
        await self._documents.set_embedding_pending(prepared.embedded_chunk_ids, False)
        await self._documents.set_embedding_pending(prepared.pending_chunk_ids, True)

    async def publish_vectors(self, prepared: PreparedEmbeddings) -> bool:
        """Replace the document's vectors in the vector backend.

        Returns ``False`` (and logs) when the backend rejects the write;
        the health check reports the resulting count mismatch.
        """
        if self._vectors is None:
            return False
        try:
            await self._vectors.replace_document(prepared.doc_id, prepared.vectors)
        except Exception:  # noqa: BLE001
            logger.warning("Vector write failed for %s", prepared.doc_id, exc_info=True)
            return False
        return True

    # -- maintenance ---------------------------------------------------------------

    async def remove_vectors(self, doc_ids: list[str]) -> None:
        """Delete the vectors of *doc_ids*; embedding rows are removed by the caller."""
        if self._vectors is not None and doc_ids:
            try:
                await self._vectors.delete_documents(doc_ids)
            except Exception:  # noqa: BLE001
                logger.warning("Vector delete failed for %d document(s)", len(doc_ids), exc_info=True)

    async def clear_vectors(self) -> None:
        if self._vectors is not None:
            await self._vectors.delete_all()

    async def cleanup_orphans(self) -> OrphanCleanupResult:
        """Delete embedding rows whose document is no longer indexed."""
        orphan_ids = await self._embeddings.find_orphans()
        if not orphan_ids:
            return OrphanCleanupResult(found=0, deleted=0)
        deleted = await self._embeddings.delete_by_ids(orphan_ids)
        if self._vectors is not None:
            doc_ids = sorted({EmbeddingRecord.parse_id(rid)[0] for rid in orphan_ids})
            try:
                await self._vectors.delete_documents(doc_ids)
            except Exception:  # noqa: BLE001
                logger.warning("Vector delete failed during orphan cleanup", exc_info=True)
        logger.info("Orphan cleanup: found %d, deleted %d", len(orphan_ids), deleted)
        return OrphanCleanupResult(found=len(orphan_ids), deleted=deleted)
