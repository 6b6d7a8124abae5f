"""Document metadata, chunks, statistics, and index state on SQLite.

Tags, categories, and frontmatter are serialised as JSON strings.
"""

from __future__ import annotations

import json
import time
from datetime import datetime, timezone

from vaultrag.core.models import (
    DocStatistics,
    Document,
    DocumentType,
    StoredChunk,
    StoredDocument,
)
from vaultrag.storage.database import Database, placeholders

# ---------------------------------------------------------------------------
# SQL constants
# ---------------------------------------------------------------------------

_DOC_COLUMNS = (
    "id, path, type, title, size, mtime, ctime, content_hash, summary, "
    "tags, categories, last_processed_at, frontmatter_json"
)

_UPSERT_DOC = f"""
INSERT INTO doc_meta ({_DOC_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    path              = excluded.path,
    type              = excluded.type,
    title             = excluded.title,
    size              = excluded.size,
    mtime             = excluded.mtime,
    ctime             = excluded.ctime,
    content_hash      = excluded.content_hash,
    summary           = COALESCE(excluded.summary, doc_meta.summary),
    tags              = excluded.tags,
    categories        = excluded.categories,
    last_processed_at = excluded.last_processed_at,
    frontmatter_json  = excluded.frontmatter_json
"""

_CHUNK_COLUMNS = "chunk_id, doc_id, chunk_index, title, content, embedding_pending"

_INSERT_CHUNK = f"""
INSERT INTO doc_chunk ({_CHUNK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)
"""

_UPSERT_STATS = """
INSERT INTO doc_statistics
    (doc_id, word_count, char_count, language, richness_score, open_count, updated_at)
VALUES (?, ?, ?, ?, ?, 0, ?)
ON CONFLICT(doc_id) DO UPDATE SET
    word_count     = excluded.word_count,
    char_count     = excluded.char_count,
    language       = excluded.language,
    richness_score = excluded.richness_score,
    updated_at     = excluded.updated_at
"""

_RECORD_OPEN = """
INSERT INTO doc_statistics (doc_id, last_open_ts, open_count, updated_at)
VALUES (?, ?, 1, ?)
ON CONFLICT(doc_id) DO UPDATE SET
    last_open_ts = excluded.last_open_ts,
    open_count   = doc_statistics.open_count + 1
"""

_SET_STATE = """
INSERT INTO index_state (key, value) VALUES (?, ?)
ON CONFLICT(key) DO UPDATE SET value = excluded.value
"""

KEY_INDEX_BUILT_AT = "index_built_at"
KEY_INDEXED_DOCS = "indexed_docs"
KEY_CONTENT_VERSION = "content_version"


class DocumentRepository:
    """Reads and writes ``doc_meta``, ``doc_chunk``, ``doc_statistics``, ``index_state``.

    Parameters
    ----------
    db:
        Connected shared database.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # -- documents ----------------------------------------------------------

    async def upsert_document(self, doc: Document) -> None:
        """Insert or update the ``doc_meta`` row of *doc*."""
        info = doc.source_file_info
        await self._db.execute(
            _UPSERT_DOC,
            (
                doc.id,
                doc.path,
                doc.type.value,
                doc.metadata.title or info.name,
                info.size,
                info.mtime,
                info.ctime,
                doc.content_hash,
                doc.summary,
                json.dumps(doc.metadata.tags),
                json.dumps(doc.metadata.categories),
                doc.last_processed_at or time.time(),
                json.dumps(doc.metadata.frontmatter, default=str),
            ),
        )

    async def get_document(self, doc_id: str) -> StoredDocument | None:
        row = await self._db.fetchone(
            f"SELECT {_DOC_COLUMNS} FROM doc_meta WHERE id = ?", (doc_id,)
        )
        return self._row_to_document(row) if row else None

    async def get_by_path(self, path: str) -> StoredDocument | None:
        row = await self._db.fetchone(
            f"SELECT {_DOC_COLUMNS} FROM doc_meta WHERE path = ?", (path,)
        )
        return self._row_to_document(row) if row else None

    async def get_documents(self, doc_ids: list[str]) -> dict[str, StoredDocument]:
        """Fetch several rows keyed by id.  Missing ids are skipped."""
        if not doc_ids:
            return {}
        rows = await self._db.fetchall(
            f"SELECT {_DOC_COLUMNS} FROM doc_meta WHERE id IN ({placeholders(doc_ids)})",
            doc_ids,
        )
        return {row["id"]: self._row_to_document(row) for row in rows}

    async def list_documents(self) -> list[StoredDocument]:
        rows = await self._db.fetchall(f"SELECT {_DOC_COLUMNS} FROM doc_meta ORDER BY path")
        return [self._row_to_document(row) for row in rows]

    async def path_index(self) -> dict[str, tuple[str, float, str]]:
        """``path -> (id, mtime, content_hash)`` for change detection."""
        rows = await self._db.fetchall("SELECT path, id, mtime, content_hash FROM doc_meta")
        return {row["path"]: (row["id"], row["mtime"], row["content_hash"]) for row in rows}

    async def touch(self, doc_id: str, mtime: float, processed_at: float | None = None) -> None:
        """Record a new mtime without re-indexing (content hash unchanged)."""
        await self._db.execute(
            "UPDATE doc_meta SET mtime = ?, last_processed_at = ? WHERE id = ?",
            (mtime, processed_at if processed_at is not None else time.time(), doc_id),
        )

    async def mark_processed(self, doc_ids: list[str], processed_at: float) -> None:
        if not doc_ids:
            return
        await self._db.execute(
            f"UPDATE doc_meta SET last_processed_at = ? WHERE id IN ({placeholders(doc_ids)})",
            [processed_at, *doc_ids],
        )

    async def find_not_touched_since(self, ts: float) -> list[StoredDocument]:
        """Rows whose ``last_processed_at`` is older than *ts* (reconciliation sweep)."""
        rows = await self._db.fetchall(
            f"SELECT {_DOC_COLUMNS} FROM doc_meta WHERE last_processed_at < ? ORDER BY path",
            (ts,),
        )
        return [self._row_to_document(row) for row in rows]

    async def resolve_link_target(self, target: str) -> str | None:
        """Resolve a wiki-link target to a document id.

        Tried in order: exact path, path with ``.md`` appended, then any
        markdown file whose basename matches (shortest path wins).
        """
        target = target.strip().lstrip("/")
        if not target:
            return None
        candidates = [target] if target.lower().endswith(".md") else [target, f"{target}.md"]
        for candidate in candidates:
            doc_id = await self._db.scalar("SELECT id FROM doc_meta WHERE path = ?", (candidate,))
            if doc_id is not None:
                return doc_id
        basename = candidates[-1].rsplit("/", 1)[-1]
        escaped = basename.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return await self._db.scalar(
            "SELECT id FROM doc_meta WHERE path LIKE ? ESCAPE '\\' "
            "ORDER BY length(path), path LIMIT 1",
            (f"%/{escaped}",),
        )

    async def delete_by_doc_ids(self, doc_ids: list[str]) -> int:
        """Delete metadata, chunks, and statistics of *doc_ids*; return rows removed from ``doc_meta``."""
        if not doc_ids:
            return 0
        marks = placeholders(doc_ids)
        async with self._db.transaction():
            await self._db.execute(f"DELETE FROM doc_chunk WHERE doc_id IN ({marks})", doc_ids)
            await self._db.execute(f"DELETE FROM doc_statistics WHERE doc_id IN ({marks})", doc_ids)
            return await self._db.execute(f"DELETE FROM doc_meta WHERE id IN ({marks})", doc_ids)

    async def count_documents(self) -> int:
        return int(await self._db.scalar("SELECT COUNT(*) FROM doc_meta") or 0)

    # -- chunks -------------------------------------------------------------

    async def replace_chunks(self, doc_id: str, chunks: list[StoredChunk]) -> None:
        """Drop every chunk of *doc_id* and insert *chunks*."""
        async with self._db.transaction():
            await self._db.execute("DELETE FROM doc_chunk WHERE doc_id = ?", (doc_id,))
            await self._db.executemany(
                _INSERT_CHUNK,
                [
                    (c.chunk_id, c.doc_id, c.chunk_index, c.title, c.content, int(c.embedding_pending))
                    for c in chunks
                ],
            )

    async def get_chunks(self, chunk_ids: list[str]) -> dict[str, StoredChunk]:
        if not chunk_ids:
            return {}
        rows = await self._db.fetchall(
            f"SELECT {_CHUNK_COLUMNS} FROM doc_chunk WHERE chunk_id IN ({placeholders(chunk_ids)})",
            chunk_ids,
        )
        return {row["chunk_id"]: self._row_to_chunk(row) for row in rows}

    async def get_chunks_for_document(self, doc_id: str) -> list[StoredChunk]:
        rows = await self._db.fetchall(
            f"SELECT {_CHUNK_COLUMNS} FROM doc_chunk WHERE doc_id = ? ORDER BY chunk_index",
            (doc_id,),
        )
        return [self._row_to_chunk(row) for row in rows]

    async def get_all_chunks(self) -> list[StoredChunk]:
        rows = await self._db.fetchall(
            f"SELECT {_CHUNK_COLUMNS} FROM doc_chunk ORDER BY doc_id, chunk_index"
        )
        return [self._row_to_chunk(row) for row in rows]

    async def set_embedding_pending(self, chunk_ids: list[str], pending: bool) -> None:
        if not chunk_ids:
            return
        await self._db.execute(
            f"UPDATE doc_chunk SET embedding_pending = ? WHERE chunk_id IN ({placeholders(chunk_ids)})",
            [int(pending), *chunk_ids],
        )

    async def pending_doc_ids(self) -> list[str]:
        """Documents with at least one chunk still waiting for a vector."""
        rows = await self._db.fetchall(
            "SELECT DISTINCT doc_id FROM doc_chunk WHERE embedding_pending = 1 ORDER BY doc_id"
        )
        return [row[0] for row in rows]

    async def count_chunks(self, pending_only: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM doc_chunk"
        if pending_only:
            sql += " WHERE embedding_pending = 1"
        return int(await self._db.scalar(sql) or 0)

    # -- statistics -----------------------------------------------------------

    async def upsert_statistics(self, stats: DocStatistics) -> None:
        """Write derived scoring inputs; open bookkeeping is preserved."""
        await self._db.execute(
            _UPSERT_STATS,
            (
                stats.doc_id,
                stats.word_count,
                stats.char_count,
                stats.language,
                stats.richness_score,
                stats.updated_at or time.time(),
            ),
        )

    async def record_open(self, doc_id: str, ts: float | None = None) -> None:
        """Increment ``open_count`` and stamp ``last_open_ts``."""
        now = ts if ts is not None else time.time()
        await self._db.execute(_RECORD_OPEN, (doc_id, now, now))

    async def get_statistics(self, doc_ids: list[str]) -> dict[str, DocStatistics]:
        if not doc_ids:
            return {}
        rows = await self._db.fetchall(
            "SELECT doc_id, word_count, char_count, language, richness_score, "
            "last_open_ts, open_count, updated_at FROM doc_statistics "
            f"WHERE doc_id IN ({placeholders(doc_ids)})",
            doc_ids,
        )
        return {
            row["doc_id"]: DocStatistics(
                doc_id=row["doc_id"],
                word_count=row["word_count"],
                char_count=row["char_count"],
                language=row["language"],
                richness_score=row["richness_score"],
                last_open_ts=row["last_open_ts"],
                open_count=row["open_count"],
                updated_at=row["updated_at"],
            )
            for row in rows
        }

    # -- index state ------------------------------------------------------------

    async def set_state(self, key: str, value: str) -> None:
        await self._db.execute(_SET_STATE, (key, value))

    async def get_state(self, key: str) -> str | None:
        return await self._db.scalar("SELECT value FROM index_state WHERE key = ?", (key,))

    async def record_index_built(self, indexed_docs: int, built_at: datetime | None = None) -> None:
        built_at = built_at or datetime.now(timezone.utc)
        async with self._db.transaction():
            await self.set_state(KEY_INDEX_BUILT_AT, built_at.isoformat())
            await self.set_state(KEY_INDEXED_DOCS, str(indexed_docs))

    async def get_index_built_at(self) -> datetime | None:
        value = await self.get_state(KEY_INDEX_BUILT_AT)
        return datetime.fromisoformat(value) if value else None

    async def bump_content_version(self) -> int:
        """Advance the counter that marks derived indexes (BM25, graph view) stale."""
        async with self._db.transaction():
            version = await self.content_version() + 1
            await self.set_state(KEY_CONTENT_VERSION, str(version))
        return version

    async def content_version(self) -> int:
        value = await self.get_state(KEY_CONTENT_VERSION)
        return int(value) if value else 0

    # -- housekeeping -----------------------------------------------------------

    async def delete_all(self) -> tuple[int, int]:
        """Empty every table owned by this repository; return ``(documents, chunks)`` removed."""
        async with self._db.transaction():
            chunks = await self._db.execute("DELETE FROM doc_chunk")
            await self._db.execute("DELETE FROM doc_statistics")
            await self._db.execute(
                "DELETE FROM index_state WHERE key IN (?, ?)",
                (KEY_INDEX_BUILT_AT, KEY_INDEXED_DOCS),
            )
            docs = await self._db.execute("DELETE FROM doc_meta")
        await self.bump_content_version()
        return docs, chunks

    # -- helpers ----------------------------------------------------------------

    @staticmethod
    def _row_to_document(row) -> StoredDocument:  # type: ignore[no-untyped-def]
        return StoredDocument(
            id=row["id"],
            path=row["path"],
            type=DocumentType(row["type"]),
            title=row["title"],
            size=row["size"],
            mtime=row["mtime"],
            ctime=row["ctime"],
            content_hash=row["content_hash"],
            summary=row["summary"],
            tags=json.loads(row["tags"]),
            categories=json.loads(row["categories"]),
            last_processed_at=row["last_processed_at"],
            frontmatter=json.loads(row["frontmatter_json"]),
        )

    @staticmethod
    def _row_to_chunk(row) -> StoredChunk:  # type: ignore[no-untyped-def]
        return StoredChunk(
            chunk_id=row["chunk_id"],
            doc_id=row["doc_id"],
            chunk_index=row["chunk_index"],
            title=row["title"],
            content=row["content"],
            embedding_pending=bool(row["embedding_pending"]),
        )
