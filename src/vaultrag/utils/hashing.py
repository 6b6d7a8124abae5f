"""Content hashes and identifiers.

Every document id and content hash in the index is produced here so
that identical input always yields identical output, independent of
platform line endings.
"""

from __future__ import annotations

import hashlib
import uuid

from vaultrag.utils.text import normalize_newlines


def text_content_hash(text: str) -> str:
    """md5 of *text* after newline normalisation and BOM stripping."""
    normalized = normalize_newlines(text.lstrip("\ufeff"))
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()


def binary_content_hash(data: bytes) -> str:
    """md5 of raw file bytes, used for pdf, office, and image formats."""
    return hashlib.md5(data).hexdigest()


def doc_id_from_path(path: str) -> str:
    """Stable document id derived from a vault-relative path."""
    return hashlib.md5(path.encode("utf-8")).hexdigest()


def new_chunk_id() -> str:
    return uuid.uuid4().hex


def edge_id(from_node_id: str, to_node_id: str, edge_type: str) -> str:
    payload = f"{from_node_id}\x00{to_node_id}\x00{edge_type}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest()
