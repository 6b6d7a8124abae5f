"""LanceDB-backed vector store for chunk-embedding similarity search.

Implements :class:`~vaultrag.storage.base.VectorStoreProtocol` using the
`lancedb <https://lancedb.github.io/lancedb/>`_ embedded vector database.
The synchronous LanceDB calls run in worker threads so they never block
the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import lancedb  # type: ignore[import-untyped]

from vaultrag.core.exceptions import ErrorCode, VectorBackendUnavailableError

logger = logging.getLogger(__name__)


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class LanceDBVectorStore:
    """LanceDB implementation of :class:`VectorStoreProtocol`.

    Parameters
    ----------
    db_path:
        Directory path for the LanceDB database files.
    table_name:
        Name of the table used to store chunk embeddings.
    """

    def __init__(self, db_path: Path, table_name: str = "chunks") -> None:
        self._db_path = db_path
        self._table_name = table_name
        self._db = None
        self._write_lock = asyncio.Lock()

    def _connect(self):  # type: ignore[no-untyped-def]
        if self._db is None:
            try:
                self._db_path.mkdir(parents=True, exist_ok=True)
                self._db = lancedb.connect(str(self._db_path))
            except Exception as exc:
                raise VectorBackendUnavailableError(
                    f"Cannot open vector database at {self._db_path}",
                    code=ErrorCode.VECTOR_BACKEND_NOT_LOADED,
                    cause=exc,
                ) from exc
        return self._db

    def _table_exists(self) -> bool:
        return self._table_name in self._connect().table_names()

    # -- mutations ----------------------------------------------------------

    def _replace_sync(self, doc_id: str, rows: list[tuple[str, list[float]]]) -> None:
        db = self._connect()
        data = [
            {"id": record_id, "doc_id": doc_id, "vector": vector}
            for record_id, vector in rows
        ]
        if self._table_exists():
            table = db.open_table(self._table_name)
            table.delete(f"doc_id = {_quote(doc_id)}")
            if data:
                table.add(data)
        elif data:
            db.create_table(self._table_name, data)

    async def replace_document(
        self,
        doc_id: str,
        rows: list[tuple[str, list[float]]],
    ) -> None:
        """Delete the document's vectors, then add *rows*.

        The table is created on the first non-empty write.
        """
        async with self._write_lock:
            await asyncio.to_thread(self._replace_sync, doc_id, rows)

    def _delete_sync(self, doc_ids: list[str]) -> None:
        if not doc_ids or not self._table_exists():
            return
        table = self._connect().open_table(self._table_name)
        table.delete(f"doc_id IN ({', '.join(_quote(d) for d in doc_ids)})")

    async def delete_documents(self, doc_ids: list[str]) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._delete_sync, doc_ids)

    def _delete_all_sync(self) -> None:
        if self._table_exists():
            self._connect().drop_table(self._table_name)

    async def delete_all(self) -> None:
        """Remove all vectors from the store."""
        async with self._write_lock:
            await asyncio.to_thread(self._delete_all_sync)

    # -- queries ------------------------------------------------------------

    def _search_sync(self, query_embedding: list[float], top_k: int) -> list[tuple[str, float]]:
        if not self._table_exists():
            raise VectorBackendUnavailableError(
                f"Vector table {self._table_name!r} is missing",
                code=ErrorCode.VECTOR_TABLE_MISSING,
            )
        table = self._connect().open_table(self._table_name)
        results = table.search(query_embedding).limit(top_k).to_list()
        return [
            (row["id"], 1.0 / (1.0 + row["_distance"]))
            for row in results
        ]

    async def search(
        self,
        query_embedding: list[float],
        top_k: int = 10,
    ) -> list[tuple[str, float]]:
        """Return the *top_k* most similar embedding records.

        Returns
        -------
        list[tuple[str, float]]
            ``(record_id, score)`` pairs ordered by descending similarity.
            The score is computed as ``1 / (1 + distance)``.

        Raises
        ------
        VectorBackendUnavailableError
            If the table does not exist or LanceDB fails.
        """
        try:
            return await asyncio.to_thread(self._search_sync, query_embedding, top_k)
        except VectorBackendUnavailableError:
            raise
        except Exception as exc:
            raise VectorBackendUnavailableError(
                f"Vector search failed: {exc}",
                code=ErrorCode.VECTOR_BACKEND_NOT_LOADED,
                cause=exc,
            ) from exc

    def _count_sync(self) -> int:
        if not self._table_exists():
            return 0
        return self._connect().open_table(self._table_name).count_rows()

    async def count(self) -> int:
        """Return the total number of stored vectors."""
        return await asyncio.to_thread(self._count_sync)

    async def has_table(self) -> bool:
        return await asyncio.to_thread(self._table_exists)
