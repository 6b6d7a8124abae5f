"""JSON-based formats: plain JSON, canvas boards, and dataloom tables."""

from __future__ import annotations

import json
from typing import Any

from vaultrag.core.models import Chunk, ChunkingSettings, Document, DocumentType
from vaultrag.ingestion.vault import VaultFile
from vaultrag.loaders.base import DocumentLoader, build_splitter, numbered_chunks
from vaultrag.utils.hashing import text_content_hash


class JsonDocumentLoader(DocumentLoader):
    """Raw JSON documents.  Malformed JSON fails closed at read time."""

    document_type = DocumentType.JSON
    extensions = ("json",)

    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        content = await self._vault.read_text(file.path)
        json.loads(content)  # reject malformed files before they reach the index
        return self._build_document(
            file,
            source_content=content,
            content_hash=text_content_hash(content),
        )

    def chunk_content(self, doc: Document, settings: ChunkingSettings) -> list[Chunk]:
        """A large root array becomes one chunk per item; anything else is split by size."""
        if len(doc.source_file_info.content) <= settings.min_document_size_for_chunking:
            return super().chunk_content(doc, settings)
        try:
            parsed = json.loads(doc.source_file_info.content)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            splitter = build_splitter(settings)
            pieces: list[str] = []
            for item in parsed:
                text = json.dumps(item, indent=2, ensure_ascii=False)
                pieces.extend(splitter.split_text(text) if len(text) > settings.max_chunk_size else [text])
            return numbered_chunks(doc.id, pieces)
        return super().chunk_content(doc, settings)


class CanvasDocumentLoader(DocumentLoader):
    """Canvas boards: text cards, linked file paths, and edge labels."""

    document_type = DocumentType.CANVAS
    extensions = ("canvas",)

    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        raw = await self._vault.read_text(file.path)
        canvas = json.loads(raw) if raw.strip() else {}
        texts: list[str] = []
        for node in canvas.get("nodes") or []:
            if node.get("type") == "text" and node.get("text"):
                texts.append(node["text"])
            elif node.get("type") == "file" and node.get("file"):
                texts.append(node["file"])
        texts.extend(edge["label"] for edge in canvas.get("edges") or [] if edge.get("label"))
        content = "\n".join(texts)
        return self._build_document(
            file,
            source_content=content,
            content_hash=text_content_hash(content),
        )


def _collect_content_fields(obj: Any, out: list[str]) -> None:
    if isinstance(obj, dict):
        for key, value in obj.items():
            if isinstance(value, (dict, list)):
                _collect_content_fields(value, out)
            elif key == "content" and value is not None:
                out.append(str(value))
    elif isinstance(obj, list):
        for item in obj:
            _collect_content_fields(item, out)


class DataloomDocumentLoader(DocumentLoader):
    """Dataloom tables; every nested ``content`` field is indexed."""

    document_type = DocumentType.DATALOOM
    extensions = ("loom", "dataloom")

    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        data = json.loads(await self._vault.read_text(file.path))
        texts: list[str] = []
        _collect_content_fields(data, texts)
        content = "\n".join(texts)
        return self._build_document(
            file,
            source_content=content,
            content_hash=text_content_hash(content),
        )
