"""Protocols for the vector backend.

The SQLite repositories are concrete classes sharing one
:class:`~vaultrag.storage.database.Database`; the vector backend is the
one storage seam swapped out in tests and in degraded deployments, so it
gets a protocol.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class VectorStoreProtocol(Protocol):
    """Protocol for chunk-vector similarity backends.

    Vectors are keyed by embedding record id so they survive re-chunking
    runs that hand out fresh chunk ids.
    """

    async def replace_document(
        self,
        doc_id: str,
        rows: list[tuple[str, list[float]]],
    ) -> None:
        """Replace every vector of *doc_id* with *rows*.

        Parameters
        ----------
        doc_id:
            Owning document.
        rows:
            ``(record_id, vector)`` pairs, where the record id is
            :meth:`EmbeddingRecord.make_id` of the chunk position.
            An empty list just deletes.
        """
        ...

    async def delete_documents(self, doc_ids: list[str]) -> None:
        """Remove all vectors owned by *doc_ids*."""
        ...

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 10,
    ) -> list[tuple[str, float]]:
        """Return ``(record_id, score)`` pairs, most similar first.

        Raises
        ------
        VectorBackendUnavailableError
            If the backend is not loadable or its table is missing.
        """
        ...

    async def delete_all(self) -> None:
        ...

    async def count(self) -> int:
        ...

    async def has_table(self) -> bool:
        ...
