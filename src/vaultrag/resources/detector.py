"""Classify a bare resource string (path, link, tag, URL) into a :class:`ResourceKind`."""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from vaultrag.core.models import ResourceKind
from vaultrag.ingestion.vault import Vault

_URL_RE = re.compile(r"^https?://", re.IGNORECASE)

_EXTENSION_KINDS: dict[str, ResourceKind] = {
    "pdf": ResourceKind.PDF,
    "png": ResourceKind.IMAGE,
    "jpg": ResourceKind.IMAGE,
    "jpeg": ResourceKind.IMAGE,
    "gif": ResourceKind.IMAGE,
    "webp": ResourceKind.IMAGE,
    "svg": ResourceKind.IMAGE,
    "bmp": ResourceKind.IMAGE,
    "heic": ResourceKind.IMAGE,
    "heif": ResourceKind.IMAGE,
    "md": ResourceKind.MARKDOWN,
    "markdown": ResourceKind.MARKDOWN,
    "txt": ResourceKind.TXT,
    "csv": ResourceKind.CSV,
    "json": ResourceKind.JSON,
    "html": ResourceKind.HTML,
    "htm": ResourceKind.HTML,
    "xml": ResourceKind.XML,
    "docx": ResourceKind.DOCX,
    "xlsx": ResourceKind.XLSX,
    "pptx": ResourceKind.PPTX,
    "excalidraw": ResourceKind.EXCALIDRAW,
    "canvas": ResourceKind.CANVAS,
    "loom": ResourceKind.DATALOOM,
}


def strip_wiki_link(value: str) -> str:
    """``[[target|alias]]`` -> ``target``."""
    inner = value.strip()
    if inner.startswith("[[") and inner.endswith("]]"):
        inner = inner[2:-2]
    return inner.split("|", 1)[0].strip()


def detect_resource_kind(value: str, vault: Vault | None = None) -> ResourceKind:
    """Detect the kind of *value* with a fixed precedence.

    1. ``http(s)://`` prefix -> url
    2. ``#`` prefix -> tag
    3. wiki-link syntax -> folder if it names an existing folder, else markdown
    4. contains ``/`` and names an existing folder -> folder
    5. extension lookup
    6. unknown

    A wiki link is resolved before any extension, so ``[[report.pdf]]``
    still counts as a note link unless it names a folder.
    """
    value = value.strip()
    if _URL_RE.match(value):
        return ResourceKind.URL
    if value.startswith("#"):
        return ResourceKind.TAG
    if "[[" in value:
        target = strip_wiki_link(value)
        if vault is not None and vault.is_folder(target):
            return ResourceKind.FOLDER
        return ResourceKind.MARKDOWN
    if "/" in value and vault is not None and vault.is_folder(value):
        return ResourceKind.FOLDER

    ext = PurePosixPath(value.lower()).suffix.lstrip(".")
    return _EXTENSION_KINDS.get(ext, ResourceKind.UNKNOWN)
