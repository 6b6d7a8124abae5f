"""Plain-text formats indexed from their raw source: txt, html/xml, excalidraw."""

from __future__ import annotations

from langchain_text_splitters import Language

from vaultrag.core.models import Document, DocumentType
from vaultrag.ingestion.vault import VaultFile
from vaultrag.loaders.base import DocumentLoader
from vaultrag.utils.hashing import text_content_hash
from vaultrag.utils.markdown import strip_code_blocks


class TextDocumentLoader(DocumentLoader):
    document_type = DocumentType.TXT
    extensions = ("txt",)

    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        content = await self._vault.read_text(file.path)
        return self._build_document(
            file,
            source_content=content,
            content_hash=text_content_hash(content),
        )


class HtmlXmlDocumentLoader(TextDocumentLoader):
    """HTML and XML files, split along markup structure."""

    document_type = DocumentType.HTML
    extensions = ("html", "htm", "xml")
    splitter_language = Language.HTML


class ExcalidrawDocumentLoader(DocumentLoader):
    """Excalidraw drawings.

    ``.excalidraw.md`` files keep their markdown text; the embedded
    drawing payload (``excalidraw`` and ``json`` code blocks) is dropped
    before hashing so moving a shape does not count as a content change.
    """

    document_type = DocumentType.EXCALIDRAW
    extensions = ("excalidraw", "excalidraw.md")
    splitter_language = Language.MARKDOWN

    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        content = await self._vault.read_text(file.path)
        if file.path.lower().endswith(".excalidraw.md"):
            content = strip_code_blocks(content, ("excalidraw", "json"))
        return self._build_document(
            file,
            source_content=content,
            content_hash=text_content_hash(content),
        )
