"""Persistent chunk-embedding records.

Vectors are stored as little-endian float32 blobs so the table stays
readable from other runtimes.  The ``(md5, embedding_model)`` index
serves the cross-document reuse cache.
"""

from __future__ import annotations

import numpy as np

from vaultrag.core.models import EmbeddingRecord
from vaultrag.storage.database import Database, placeholders

_COLUMNS = (
    "id, file_id, chunk_id, chunk_index, md5, ctime, mtime, "
    "embedding, embedding_model, embedding_len"
)

_UPSERT = f"""
INSERT INTO embedding ({_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    file_id         = excluded.file_id,
    chunk_id        = excluded.chunk_id,
    chunk_index     = excluded.chunk_index,
    md5             = excluded.md5,
    ctime           = excluded.ctime,
    mtime           = excluded.mtime,
    embedding       = excluded.embedding,
    embedding_model = excluded.embedding_model,
    embedding_len   = excluded.embedding_len
"""


def encode_vector(vector: list[float]) -> bytes:
    return np.asarray(vector, dtype="<f4").tobytes()


def decode_vector(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype="<f4").astype(float).tolist()


class EmbeddingRepository:
    """CRUD over the ``embedding`` table."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def upsert(self, records: list[EmbeddingRecord]) -> None:
        if not records:
            return
        await self._db.executemany(
            _UPSERT,
            [
                (
                    r.id,
                    r.file_id,
                    r.chunk_id,
                    r.chunk_index,
                    r.md5,
                    r.ctime,
                    r.mtime,
                    encode_vector(r.embedding),
                    r.embedding_model,
                    r.embedding_len,
                )
                for r in records
            ],
        )

    async def get_for_document(self, file_id: str) -> dict[str, EmbeddingRecord]:
        """Records of *file_id* keyed by record id."""
        rows = await self._db.fetchall(
            f"SELECT {_COLUMNS} FROM embedding WHERE file_id = ? ORDER BY chunk_index",
            (file_id,),
        )
        return {row["id"]: self._row_to_record(row) for row in rows}

    async def find_by_md5(self, md5: str, model: str) -> EmbeddingRecord | None:
        """Any record with identical chunk content embedded by *model*."""
        row = await self._db.fetchone(
            f"SELECT {_COLUMNS} FROM embedding WHERE md5 = ? AND embedding_model = ? LIMIT 1",
            (md5, model),
        )
        return self._row_to_record(row) if row else None

    async def find_orphans(self) -> list[str]:
        """Ids of records whose ``file_id`` maps to no indexed document."""
        rows = await self._db.fetchall(
            "SELECT e.id FROM embedding e "
            "LEFT JOIN doc_meta d ON d.id = e.file_id "
            "WHERE d.id IS NULL ORDER BY e.id"
        )
        return [row[0] for row in rows]

    async def delete_by_ids(self, ids: list[str]) -> int:
        if not ids:
            return 0
        return await self._db.execute(
            f"DELETE FROM embedding WHERE id IN ({placeholders(ids)})", ids
        )

    async def delete_by_doc_ids(self, file_ids: list[str]) -> int:
        if not file_ids:
            return 0
        return await self._db.execute(
            f"DELETE FROM embedding WHERE file_id IN ({placeholders(file_ids)})", file_ids
        )

    async def delete_except(self, file_id: str, keep_ids: list[str]) -> int:
        """Drop every record of *file_id* whose id is not in *keep_ids*."""
        if not keep_ids:
            return await self._db.execute("DELETE FROM embedding WHERE file_id = ?", (file_id,))
        return await self._db.execute(
            f"DELETE FROM embedding WHERE file_id = ? AND id NOT IN ({placeholders(keep_ids)})",
            [file_id, *keep_ids],
        )

    async def count(self) -> int:
        return int(await self._db.scalar("SELECT COUNT(*) FROM embedding") or 0)

    async def delete_all(self) -> int:
        return await self._db.execute("DELETE FROM embedding")

    @staticmethod
    def _row_to_record(row) -> EmbeddingRecord:  # type: ignore[no-untyped-def]
        return EmbeddingRecord(
            id=row["id"],
            file_id=row["file_id"],
            chunk_id=row["chunk_id"],
            chunk_index=row["chunk_index"],
            md5=row["md5"],
            ctime=row["ctime"],
            mtime=row["mtime"],
            embedding=decode_vector(row["embedding"]),
            embedding_model=row["embedding_model"],
        )
