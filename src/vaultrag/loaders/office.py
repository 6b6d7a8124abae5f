"""Binary document formats: PDF, DOCX, PPTX.

Source content is always empty for these formats; extracted text goes
into the cache bundle.  The content hash is taken over the raw bytes so
two files that extract to the same (or no) text are still told apart.
"""

from __future__ import annotations

import asyncio
import io
import logging
from abc import abstractmethod

from vaultrag.core.models import Document, DocumentType
from vaultrag.ingestion.vault import VaultFile
from vaultrag.loaders.base import DocumentLoader
from vaultrag.utils.hashing import binary_content_hash

logger = logging.getLogger(__name__)


class BinaryDocumentLoader(DocumentLoader):
    """Shared read path: hash bytes, extract text only when asked to."""

    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        data = await self._vault.read_bytes(file.path)
        cache_content = ""
        if gen_cache_content:
            cache_content = await asyncio.to_thread(self.extract_text, data)
        return self._build_document(
            file,
            source_content="",
            cache_content=cache_content,
            content_hash=binary_content_hash(data),
        )

    @abstractmethod
    def extract_text(self, data: bytes) -> str:
        """Plain text of the file; runs in a worker thread."""


class PdfDocumentLoader(BinaryDocumentLoader):
    document_type = DocumentType.PDF
    extensions = ("pdf",)

    def extract_text(self, data: bytes) -> str:
        import pdfplumber

        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
        return "\n\n".join(p for p in pages if p.strip())


class DocxDocumentLoader(BinaryDocumentLoader):
    document_type = DocumentType.DOCX
    extensions = ("docx",)

    def extract_text(self, data: bytes) -> str:
        import docx

        document = docx.Document(io.BytesIO(data))
        parts = [p.text for p in document.paragraphs if p.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    parts.append(" | ".join(cells))
        return "\n".join(parts)


class PptxDocumentLoader(BinaryDocumentLoader):
    document_type = DocumentType.PPTX
    extensions = ("pptx",)

    def extract_text(self, data: bytes) -> str:
        from pptx import Presentation

        presentation = Presentation(io.BytesIO(data))
        slides: list[str] = []
        for slide in presentation.slides:
            texts = [
                shape.text_frame.text
                for shape in slide.shapes
                if shape.has_text_frame and shape.text_frame.text.strip()
            ]
            if texts:
                slides.append("\n".join(texts))
        return "\n\n".join(slides)
