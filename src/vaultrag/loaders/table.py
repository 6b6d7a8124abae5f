"""Row-oriented tabular files (CSV)."""

from __future__ import annotations

from vaultrag.core.models import Chunk, ChunkingSettings, Document, DocumentType
from vaultrag.ingestion.vault import VaultFile
from vaultrag.loaders.base import DocumentLoader, numbered_chunks
from vaultrag.utils.hashing import text_content_hash
from vaultrag.utils.text import normalize_newlines


def split_row(row: str, max_size: int, overlap: int) -> list[str]:
    """Window an oversized row, carrying *overlap* chars into each continuation."""
    if len(row) <= max_size:
        return [row]
    step_back = min(overlap, max_size - 1)
    pieces: list[str] = []
    start = 0
    while start < len(row):
        end = min(start + max_size, len(row))
        pieces.append(row[start:end])
        if end >= len(row):
            break
        start = end - step_back
    return pieces


class TableDocumentLoader(DocumentLoader):
    document_type = DocumentType.CSV
    extensions = ("csv",)

    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        content = await self._vault.read_text(file.path)
        return self._build_document(
            file,
            source_content=content,
            content_hash=text_content_hash(content),
        )

    def chunk_content(self, doc: Document, settings: ChunkingSettings) -> list[Chunk]:
        """One chunk per non-empty row; small files stay whole."""
        content = doc.source_file_info.content
        if len(content) <= settings.min_document_size_for_chunking:
            return [Chunk(doc_id=doc.id, content=content)]

        pieces: list[str] = []
        for row in normalize_newlines(content).split("\n"):
            if row.strip():
                pieces.extend(split_row(row, settings.max_chunk_size, settings.chunk_overlap))
        return numbered_chunks(doc.id, pieces)
