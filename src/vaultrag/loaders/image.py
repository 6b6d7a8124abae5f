"""Images, indexed through an AI-generated visual description."""

from __future__ import annotations

import logging

from vaultrag.core.models import Document, DocumentType
from vaultrag.ingestion.vault import VaultFile
from vaultrag.loaders.base import DocumentLoader
from vaultrag.providers.base import Attachment, PromptId
from vaultrag.utils.hashing import binary_content_hash

logger = logging.getLogger(__name__)

_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
    "svg": "image/svg+xml",
}


class ImageDocumentLoader(DocumentLoader):
    document_type = DocumentType.IMAGE
    extensions = ("jpg", "jpeg", "png", "gif", "webp", "bmp", "svg")

    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        data = await self._vault.read_bytes(file.path)
        description = ""
        if gen_cache_content:
            description = await self.describe(file, data)
        return self._build_document(
            file,
            source_content="",
            cache_content=description,
            content_hash=binary_content_hash(data),
        )

    async def describe(self, file: VaultFile, data: bytes) -> str:
        """Ask the summarizer for a description; placeholder text on any failure."""
        placeholder = f"[Image: {file.basename}]"
        if self._summarizer is None:
            return placeholder
        attachment = Attachment(
            data=data,
            media_type=_MIME_TYPES.get(file.extension, "image/jpeg"),
        )
        try:
            response = await self._summarizer.complete(
                PromptId.IMAGE_DESCRIPTION, None, None, [attachment]
            )
        except Exception:  # noqa: BLE001
            logger.warning("Image description failed for %s", file.path, exc_info=True)
            return placeholder
        return response or placeholder
