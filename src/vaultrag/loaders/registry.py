"""Dispatch from document type / file extension to the owning loader."""

from __future__ import annotations

import logging
import re
from pathlib import PurePosixPath
from typing import AsyncIterator

from vaultrag.core.config import Settings
from vaultrag.core.exceptions import ConfigError
from vaultrag.core.models import Chunk, ChunkingSettings, Document, DocumentType, ScanEntry
from vaultrag.ingestion.vault import Vault
from vaultrag.loaders.base import DocumentLoader, batched
from vaultrag.loaders.image import ImageDocumentLoader
from vaultrag.loaders.markdown import MarkdownDocumentLoader
from vaultrag.loaders.office import DocxDocumentLoader, PdfDocumentLoader, PptxDocumentLoader
from vaultrag.loaders.structured import (
    CanvasDocumentLoader,
    DataloomDocumentLoader,
    JsonDocumentLoader,
)
from vaultrag.loaders.table import TableDocumentLoader
from vaultrag.loaders.text import (
    ExcalidrawDocumentLoader,
    HtmlXmlDocumentLoader,
    TextDocumentLoader,
)
from vaultrag.providers.base import Summarizer
from vaultrag.utils.cache import PatternCache

logger = logging.getLogger(__name__)

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

_DEFAULT_LOADERS: tuple[type[DocumentLoader], ...] = (
    MarkdownDocumentLoader,
    TextDocumentLoader,
    HtmlXmlDocumentLoader,
    ExcalidrawDocumentLoader,
    TableDocumentLoader,
    JsonDocumentLoader,
    CanvasDocumentLoader,
    DataloomDocumentLoader,
    PdfDocumentLoader,
    DocxDocumentLoader,
    PptxDocumentLoader,
    ImageDocumentLoader,
)


class LoaderRegistry:
    """Lookup tables from type and extension to a loader, built once at startup.

    Parameters
    ----------
    vault:
        Vault walked by :meth:`scan_documents`.
    include_types:
        Document types that take part in scans.  ``None`` includes all
        registered types.
    ignore_patterns:
        Glob patterns (vault-relative) excluded from indexing.
    pattern_cache:
        Shared cache of compiled globs.
    """

    def __init__(
        self,
        vault: Vault,
        include_types: list[DocumentType] | None = None,
        ignore_patterns: list[str] | None = None,
        pattern_cache: PatternCache | None = None,
    ) -> None:
        self._vault = vault
        self._by_type: dict[DocumentType, DocumentLoader] = {}
        self._by_extension: dict[str, DocumentLoader] = {}
        self._include_types = set(include_types) if include_types is not None else None
        self._ignore_patterns = list(ignore_patterns or [])
        self._patterns = pattern_cache or PatternCache()

    @classmethod
    def with_default_loaders(
        cls,
        vault: Vault,
        settings: Settings,
        summarizer: Summarizer | None = None,
        pattern_cache: PatternCache | None = None,
    ) -> LoaderRegistry:
        registry = cls(
            vault,
            include_types=settings.include_document_types,
            ignore_patterns=settings.ignore_patterns,
            pattern_cache=pattern_cache or PatternCache(maxsize=settings.cache_max_size),
        )
        for loader_cls in _DEFAULT_LOADERS:
            registry.register(
                loader_cls(
                    vault,
                    summarizer,
                    short_summary_length=settings.short_summary_length,
                    full_summary_length=settings.full_summary_length,
                )
            )
        return registry

    # -- registration -------------------------------------------------------

    def register(self, loader: DocumentLoader) -> None:
        """Register *loader* for its type and every extension it supports.

        Raises
        ------
        ConfigError
            If another loader already owns one of the extensions.
        """
        for ext in loader.get_supported_extensions():
            existing = self._by_extension.get(ext)
            if existing is not None and existing is not loader:
                raise ConfigError(
                    f"Extension {ext!r} already handled by {type(existing).__name__}"
                )
        self._by_type[loader.document_type] = loader
        for ext in loader.get_supported_extensions():
            self._by_extension[ext] = loader

    @property
    def loaders(self) -> list[DocumentLoader]:
        return list(self._by_type.values())

    def get_loader(self, doc_type: DocumentType) -> DocumentLoader | None:
        return self._by_type.get(doc_type)

    # -- dispatch -----------------------------------------------------------

    def get_type_for_path(self, path: str) -> DocumentType:
        lowered = path.lower()
        if lowered.endswith(".excalidraw.md") or lowered.endswith(".excalidraw"):
            return DocumentType.EXCALIDRAW
        if _URL_RE.match(path):
            return DocumentType.URL
        loader = self._by_extension.get(PurePosixPath(lowered).suffix.lstrip("."))
        return loader.document_type if loader is not None else DocumentType.UNKNOWN

    def get_loader_for_path(self, path: str) -> DocumentLoader | None:
        return self._by_type.get(self.get_type_for_path(path))

    def should_index(self, path: str) -> bool:
        """Included document type and not matched by an ignore pattern."""
        doc_type = self.get_type_for_path(path)
        if doc_type not in self._by_type:
            return False
        if not self._is_included(doc_type):
            return False
        return not self._patterns.matches_any(path, self._ignore_patterns)

    # -- uniform loader contract ---------------------------------------------

    async def read_by_path(self, path: str, gen_cache_content: bool = True) -> Document | None:
        loader = self.get_loader_for_path(path)
        if loader is None:
            return None
        return await loader.read_by_path(path, gen_cache_content)

    def chunk_content(self, doc: Document, settings: ChunkingSettings) -> list[Chunk]:
        loader = self._by_type.get(doc.type)
        if loader is None:
            return [Chunk(doc_id=doc.id, content=doc.indexable_content)]
        return loader.chunk_content(doc, settings)

    async def scan_documents(
        self,
        limit: int | None = None,
        batch_size: int = 100,
    ) -> AsyncIterator[list[ScanEntry]]:
        """Batched scan across every included loader, ignore patterns applied.

        The vault is walked once; each file goes to the loader that owns it.
        """
        included = [loader for loader in self._by_type.values() if self._is_included(loader.document_type)]
        extensions = {ext for loader in included for ext in loader.scan_extensions()}
        if not extensions:
            return
        entries: list[ScanEntry] = []
        for file in await self._vault.list_files(extensions):
            loader = self.get_loader_for_path(file.path)
            if loader is None or not self._is_included(loader.document_type) or not loader.owns(file.path):
                continue
            if self._patterns.matches_any(file.path, self._ignore_patterns):
                continue
            entries.append(ScanEntry(path=file.path, mtime=file.mtime, type=loader.document_type))
        if limit is not None:
            entries = entries[:limit]
        async for batch in batched(entries, batch_size):
            yield batch

    def _is_included(self, doc_type: DocumentType) -> bool:
        return self._include_types is None or doc_type in self._include_types

    async def load_all_documents(self, batch_size: int = 25) -> AsyncIterator[list[Document]]:
        """Read every indexable file, yielding documents in batches."""
        batch: list[Document] = []
        async for entries in self.scan_documents(batch_size=batch_size):
            for entry in entries:
                doc = await self.read_by_path(entry.path)
                if doc is None:
                    continue
                batch.append(doc)
                if len(batch) >= batch_size:
                    yield batch
                    batch = []
        if batch:
            yield batch
