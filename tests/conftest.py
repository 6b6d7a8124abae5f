"""Shared fixtures: a temporary vault, deterministic collaborators, and a service.

The embedding collaborator and vector backend are in-memory fakes so the
suite runs without model downloads or LanceDB.  Vectors are bag-of-words
hashes, which keeps similarity meaningful: notes sharing words are close.
"""

from __future__ import annotations

import hashlib
import math
import os
from collections.abc import AsyncGenerator, Callable
from pathlib import Path, PurePosixPath
from typing import Any

import pytest

from vaultrag.api.service import VaultRAGService
from vaultrag.core.config import Settings
from vaultrag.core.exceptions import EmbeddingError, VectorBackendUnavailableError
from vaultrag.core.models import (
    Document,
    DocumentMetadata,
    DocumentReference,
    DocumentReferences,
    DocumentType,
    FileInfo,
)
from vaultrag.ingestion.vault import FileSystemVault
from vaultrag.providers.base import Attachment, PromptId
from vaultrag.utils.hashing import doc_id_from_path, text_content_hash
from vaultrag.utils.text import tokenize

EMBEDDING_DIM = 64


# Fakes


class HashEmbedder:
    """Deterministic bag-of-words embedder that records every call."""

    def __init__(self, dim: int = EMBEDDING_DIM, fail: bool = False) -> None:
        self.dim = dim
        self.fail = fail
        self.calls: list[list[str]] = []

    def vector(self, text: str) -> list[float]:
        vec = [0.0] * self.dim
        for token in tokenize(text):
            vec[int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dim] += 1.0
        norm = math.sqrt(sum(v * v for v in vec)) or 1.0
        return [v / norm for v in vec]

    async def embed(self, texts: list[str], model: str) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("embedding backend offline")
        return [self.vector(t) for t in texts]

    @property
    def embedded_texts(self) -> int:
        return sum(len(c) for c in self.calls)


class FakeSummarizer:
    """Summarizer that answers from its inputs."""

    def __init__(self) -> None:
        self.calls: list[tuple[PromptId, dict[str, Any] | None]] = []

    async def complete(
        self,
        prompt_id: PromptId,
        variables: dict[str, Any] | None,
        model: str | None = None,
        attachments: list[Attachment] | None = None,
    ) -> str:
        self.calls.append((prompt_id, variables))
        if prompt_id is PromptId.IMAGE_DESCRIPTION:
            return "A whiteboard sketch of the system architecture"
        return f"Summary of {(variables or {}).get('title', '')}"


class InMemoryVectorStore:
    """Vector backend keeping rows in a dict; cosine similarity, id tie-break."""

    def __init__(self) -> None:
        self.rows: dict[str, dict[str, list[float]]] = {}

    async def replace_document(self, doc_id: str, rows: list[tuple[str, list[float]]]) -> None:
        if rows:
            self.rows[doc_id] = dict(rows)
        else:
            self.rows.pop(doc_id, None)

    async def delete_documents(self, doc_ids: list[str]) -> None:
        for doc_id in doc_ids:
            self.rows.pop(doc_id, None)

    async def search(self, query_embedding: list[float], top_k: int = 10) -> list[tuple[str, float]]:
        scored = [
            (record_id, _cosine(query_embedding, vector))
            for rows in self.rows.values()
            for record_id, vector in rows.items()
        ]
        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:top_k]

    async def delete_all(self) -> None:
        self.rows.clear()

    async def count(self) -> int:
        return sum(len(rows) for rows in self.rows.values())

    async def has_table(self) -> bool:
        return True

    def record_ids(self, doc_id: str) -> list[str]:
        return sorted(self.rows.get(doc_id, {}))


class BrokenVectorStore(InMemoryVectorStore):
    """Accepts writes but cannot serve queries, like a missing LanceDB table."""

    async def search(self, query_embedding: list[float], top_k: int = 10) -> list[tuple[str, float]]:
        raise VectorBackendUnavailableError("vector table 'chunks' does not exist")


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


# Fixtures


@pytest.fixture
def vault_dir(tmp_path: Path) -> Path:
    path = tmp_path / "vault"
    path.mkdir()
    return path


@pytest.fixture
def vault(vault_dir: Path) -> FileSystemVault:
    return FileSystemVault(vault_dir)


@pytest.fixture
def settings(tmp_path: Path, vault_dir: Path) -> Settings:
    return Settings(
        vault_dir=vault_dir,
        index_dir=tmp_path / "index",
        progress_interval=0.0,
        reindex_debounce=0.01,
        embedding_model="test-hash-model",
    )


@pytest.fixture
def write_file(vault_dir: Path) -> Callable[..., str]:
    """Write a vault file and return its vault-relative path.

    *mtime* pins the modification time so change detection does not
    depend on filesystem timestamp resolution.
    """

    def _write(rel: str, content: str | bytes, mtime: float | None = None) -> str:
        path = vault_dir / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
        if mtime is not None:
            os.utime(path, (mtime, mtime))
        return rel

    return _write


@pytest.fixture
def embedder() -> HashEmbedder:
    return HashEmbedder()


@pytest.fixture
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
async def service(
    settings: Settings,
    embedder: HashEmbedder,
    vector_store: InMemoryVectorStore,
) -> AsyncGenerator[VaultRAGService, None]:
    """Opened service over the temporary vault with in-memory collaborators."""
    svc = VaultRAGService(settings, embedding_provider=embedder, vector_store=vector_store)
    await svc.open()
    yield svc
    await svc.close()


@pytest.fixture
def sample_vault(write_file: Callable[..., str]) -> dict[str, str]:
    """A small linked vault: alpha -> beta -> gamma, delta on its own, one folder."""
    return {
        "alpha": write_file(
            "alpha.md",
            "---\ntitle: Alpha Project\ntags: [planning]\n---\n"
            "Alpha kickoff notes about the rocket engine. See [[beta]].\n",
            mtime=1_700_000_000,
        ),
        "beta": write_file(
            "beta.md",
            "Beta covers engine testing and fuel pumps. Links to [[projects/gamma|Gamma]]. #engine\n",
            mtime=1_700_000_100,
        ),
        "gamma": write_file(
            "projects/gamma.md",
            "Gamma describes the launch schedule for the rocket. #engine\n",
            mtime=1_700_000_200,
        ),
        "delta": write_file(
            "journal/delta.txt",
            "Grocery list: apples, bread, coffee beans.\n",
            mtime=1_700_000_300,
        ),
    }


@pytest.fixture
def make_doc() -> Callable[..., Document]:
    """Build a markdown :class:`Document` without touching the vault."""

    def _make(
        path: str,
        content: str = "",
        *,
        title: str | None = None,
        tags: list[str] | None = None,
        links: list[str] | None = None,
        mtime: float = 1_700_000_000.0,
    ) -> Document:
        posix = PurePosixPath(path)
        info = FileInfo(
            path=path,
            name=posix.name,
            extension=posix.suffix.lstrip("."),
            size=len(content),
            mtime=mtime,
            ctime=mtime,
            content=content,
        )
        return Document(
            id=doc_id_from_path(path),
            type=DocumentType.MARKDOWN,
            source_file_info=info,
            cache_file_info=info.model_copy(),
            metadata=DocumentMetadata(title=title or posix.stem, tags=tags or []),
            references=DocumentReferences(
                outgoing=[DocumentReference(full_path=target) for target in links or []]
            ),
            content_hash=text_content_hash(content),
        )

    return _make
