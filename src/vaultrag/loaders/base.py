"""Shared contract and helpers for the per-type document loaders.

Every concrete loader subclasses :class:`DocumentLoader` and only
supplies the parts that differ per format: the extensions it owns, how
to turn a file into a :class:`Document`, and optionally how to chunk.
Size gating, batching of scans, fail-closed reads, and default summaries
live here so the registry and the indexer never branch on type.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import AsyncIterator

from langchain_text_splitters import Language, RecursiveCharacterTextSplitter

from vaultrag.core.exceptions import CollaboratorUnavailableError
from vaultrag.core.models import (
    Chunk,
    ChunkingSettings,
    Document,
    DocumentMetadata,
    DocumentReferences,
    DocumentType,
    FileInfo,
    ResourceSummary,
    ScanEntry,
)
from vaultrag.ingestion.vault import Vault, VaultFile
from vaultrag.providers.base import PromptId, Summarizer
from vaultrag.utils.hashing import doc_id_from_path, new_chunk_id

logger = logging.getLogger(__name__)


def build_splitter(
    settings: ChunkingSettings,
    language: Language | None = None,
) -> RecursiveCharacterTextSplitter:
    """Recursive character splitter honouring the chunk size and overlap."""
    if language is not None:
        return RecursiveCharacterTextSplitter.from_language(
            language=language,
            chunk_size=settings.max_chunk_size,
            chunk_overlap=settings.chunk_overlap,
        )
    return RecursiveCharacterTextSplitter(
        chunk_size=settings.max_chunk_size,
        chunk_overlap=settings.chunk_overlap,
        length_function=len,
    )


def numbered_chunks(doc_id: str, texts: list[str]) -> list[Chunk]:
    """Wrap *texts* as chunks with fresh ids and positional indexes from 0."""
    return [
        Chunk(doc_id=doc_id, content=text, chunk_id=new_chunk_id(), chunk_index=i)
        for i, text in enumerate(texts)
    ]


async def batched(entries: list[ScanEntry], batch_size: int) -> AsyncIterator[list[ScanEntry]]:
    """Yield *entries* in lists of at most *batch_size*, yielding to the loop in between."""
    batch_size = max(1, batch_size)
    for start in range(0, len(entries), batch_size):
        if start:
            await asyncio.sleep(0)
        yield entries[start:start + batch_size]


async def default_document_summary(
    doc: Document,
    summarizer: Summarizer | None,
    *,
    short_summary_length: int = 150,
    full_summary_length: int = 2000,
    model_id: str | None = None,
) -> ResourceSummary:
    """Summarise extracted content through the summarization collaborator.

    A full summary is only requested when the content is longer than
    *full_summary_length* characters.

    Raises
    ------
    CollaboratorUnavailableError
        If no summarizer is configured.
    """
    if summarizer is None:
        raise CollaboratorUnavailableError(
            f"Summaries for {doc.type.value} documents need a summarization provider",
        )

    content = doc.indexable_content
    variables = {
        "content": content,
        "title": doc.metadata.title or doc.source_file_info.name,
        "path": doc.path,
    }
    short = await summarizer.complete(
        PromptId.DOC_SUMMARY,
        {**variables, "word_count": str(short_summary_length)},
        model_id,
    )
    full: str | None = None
    if len(content) > full_summary_length:
        full = await summarizer.complete(
            PromptId.DOC_SUMMARY,
            {**variables, "word_count": str(full_summary_length)},
            model_id,
        )
    return ResourceSummary(short_summary=short, full_summary=full)


class DocumentLoader(ABC):
    """Base class for one document type.

    Parameters
    ----------
    vault:
        Source of file stats and content.
    summarizer:
        Optional summarization collaborator.
    short_summary_length, full_summary_length:
        Word and character budgets for :meth:`get_summary`.
    """

    document_type: DocumentType
    extensions: tuple[str, ...] = ()
    splitter_language: Language | None = None

    def __init__(
        self,
        vault: Vault,
        summarizer: Summarizer | None = None,
        *,
        short_summary_length: int = 150,
        full_summary_length: int = 2000,
    ) -> None:
        self._vault = vault
        self._summarizer = summarizer
        self._short_summary_length = short_summary_length
        self._full_summary_length = full_summary_length

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def get_supported_extensions(self) -> list[str]:
        return list(self.extensions)

    def owns(self, path: str) -> bool:
        """Whether *path* belongs to this loader, judged by extension only."""
        lowered = path.lower()
        return any(lowered.endswith("." + ext) for ext in self.extensions)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    async def read_by_path(
        self,
        path: str,
        gen_cache_content: bool = True,
    ) -> Document | None:
        """Read *path* into a :class:`Document`, or ``None`` on any failure.

        Parameters
        ----------
        path:
            Vault-relative path.
        gen_cache_content:
            When ``False``, expensive derived content (text extraction, AI
            descriptions) is skipped and ``cache_file_info.content`` is
            left empty.  The content hash is still computed.
        """
        if not self.owns(path):
            return None
        file = await self._vault.stat(path)
        if file is None:
            return None
        try:
            return await self._read(file, gen_cache_content)
        except Exception:  # noqa: BLE001
            # One bad file must never abort a scan.
            logger.warning("Failed to read %s as %s", path, self.document_type.value, exc_info=True)
            return None

    @abstractmethod
    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        ...

    def _build_document(
        self,
        file: VaultFile,
        *,
        source_content: str,
        content_hash: str,
        cache_content: str | None = None,
        metadata: DocumentMetadata | None = None,
        references: DocumentReferences | None = None,
    ) -> Document:
        """Assemble a document; cache content mirrors source when not given."""
        def info(content: str) -> FileInfo:
            return FileInfo(
                path=file.path,
                name=file.name,
                extension=file.extension,
                size=file.size,
                mtime=file.mtime,
                ctime=file.ctime,
                content=content,
            )

        return Document(
            id=doc_id_from_path(file.path),
            type=self.document_type,
            source_file_info=info(source_content),
            cache_file_info=info(source_content if cache_content is None else cache_content),
            metadata=metadata or DocumentMetadata(title=file.basename),
            references=references or DocumentReferences(),
            content_hash=content_hash,
            last_processed_at=time.time(),
        )

    # ------------------------------------------------------------------
    # Chunking
    # ------------------------------------------------------------------

    def chunk_content(self, doc: Document, settings: ChunkingSettings) -> list[Chunk]:
        """Split the document's indexable content.

        Content no longer than ``min_document_size_for_chunking`` comes
        back as one chunk without a synthetic id.
        """
        content = doc.indexable_content
        if len(content) <= settings.min_document_size_for_chunking:
            return [Chunk(doc_id=doc.id, content=content)]
        texts = build_splitter(settings, self.splitter_language).split_text(content)
        return numbered_chunks(doc.id, texts)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def scan_documents(
        self,
        limit: int | None = None,
        batch_size: int = 100,
    ) -> AsyncIterator[list[ScanEntry]]:
        """Yield batches of :class:`ScanEntry` for every owned file.

        Only stat information is touched; each call re-scans the vault.
        """
        files = await self._vault.list_files(set(self.scan_extensions()))
        entries = [
            ScanEntry(path=f.path, mtime=f.mtime, type=self.document_type)
            for f in files
            if self.owns(f.path)
        ]
        if limit is not None:
            entries = entries[:limit]
        async for batch in batched(entries, batch_size):
            yield batch

    def scan_extensions(self) -> list[str]:
        """Plain file suffixes to enumerate (last dotted component)."""
        return [ext.rsplit(".", 1)[-1] for ext in self.extensions]

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    async def get_summary(
        self,
        doc: Document,
        provider: str | None = None,
        model_id: str | None = None,
    ) -> ResourceSummary:
        """Summarise *doc*.  *provider* is accepted for interface parity."""
        return await default_document_summary(
            doc,
            self._summarizer,
            short_summary_length=self._short_summary_length,
            full_summary_length=self._full_summary_length,
            model_id=model_id,
        )
