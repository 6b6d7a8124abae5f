"""Shared ``aiosqlite`` connection and schema for the search database.

All repositories (documents, embeddings, graph) operate on one
connection.  Writes go through :meth:`Database.transaction`, which
serialises writers on an ``asyncio.Lock`` and commits or rolls back as a
unit, so one document's rows are never half-written.  Nested
``transaction()`` blocks in the same task join the outer one.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import aiosqlite

from vaultrag.core.exceptions import StorageError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS doc_meta (
    id                TEXT PRIMARY KEY,
    path              TEXT    NOT NULL UNIQUE,
    type              TEXT    NOT NULL,
    title             TEXT    NOT NULL DEFAULT '',
    size              INTEGER NOT NULL DEFAULT 0,
    mtime             REAL    NOT NULL DEFAULT 0,
    ctime             REAL    NOT NULL DEFAULT 0,
    content_hash      TEXT    NOT NULL DEFAULT '',
    summary           TEXT,
    tags              TEXT    NOT NULL DEFAULT '[]',
    categories        TEXT    NOT NULL DEFAULT '[]',
    last_processed_at REAL    NOT NULL DEFAULT 0,
    frontmatter_json  TEXT    NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_doc_meta_content_hash ON doc_meta(content_hash);
CREATE INDEX IF NOT EXISTS idx_doc_meta_processed ON doc_meta(last_processed_at);

CREATE TABLE IF NOT EXISTS doc_chunk (
    chunk_id          TEXT PRIMARY KEY,
    doc_id            TEXT    NOT NULL,
    chunk_index       INTEGER NOT NULL,
    title             TEXT    NOT NULL DEFAULT '',
    content           TEXT    NOT NULL DEFAULT '',
    embedding_pending INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_doc_chunk_doc ON doc_chunk(doc_id, chunk_index);
CREATE INDEX IF NOT EXISTS idx_doc_chunk_pending ON doc_chunk(embedding_pending);

CREATE TABLE IF NOT EXISTS embedding (
    id              TEXT PRIMARY KEY,
    file_id         TEXT    NOT NULL,
    chunk_id        TEXT,
    chunk_index     INTEGER NOT NULL,
    md5             TEXT    NOT NULL,
    ctime           REAL    NOT NULL,
    mtime           REAL    NOT NULL,
    embedding       BLOB    NOT NULL,
    embedding_model TEXT    NOT NULL,
    embedding_len   INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_embedding_file ON embedding(file_id);
CREATE INDEX IF NOT EXISTS idx_embedding_md5 ON embedding(md5, embedding_model);

CREATE TABLE IF NOT EXISTS doc_statistics (
    doc_id         TEXT PRIMARY KEY,
    word_count     INTEGER NOT NULL DEFAULT 0,
    char_count     INTEGER NOT NULL DEFAULT 0,
    language       TEXT,
    richness_score REAL    NOT NULL DEFAULT 0,
    last_open_ts   REAL,
    open_count     INTEGER NOT NULL DEFAULT 0,
    updated_at     REAL    NOT NULL
);

CREATE TABLE IF NOT EXISTS graph_nodes (
    id         TEXT PRIMARY KEY,
    type       TEXT NOT NULL,
    label      TEXT NOT NULL,
    attributes TEXT NOT NULL DEFAULT '{}',
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_graph_nodes_type ON graph_nodes(type);

CREATE TABLE IF NOT EXISTS graph_edges (
    id           TEXT PRIMARY KEY,
    from_node_id TEXT NOT NULL REFERENCES graph_nodes(id) ON DELETE CASCADE,
    to_node_id   TEXT NOT NULL REFERENCES graph_nodes(id) ON DELETE CASCADE,
    type         TEXT NOT NULL,
    weight       REAL NOT NULL DEFAULT 1.0,
    attributes   TEXT NOT NULL DEFAULT '{}',
    created_at   REAL NOT NULL,
    updated_at   REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_graph_edges_from ON graph_edges(from_node_id);
CREATE INDEX IF NOT EXISTS idx_graph_edges_to ON graph_edges(to_node_id);

CREATE TABLE IF NOT EXISTS index_state (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

REQUIRED_TABLES: tuple[str, ...] = (
    "doc_meta",
    "doc_chunk",
    "embedding",
    "doc_statistics",
    "graph_nodes",
    "graph_edges",
    "index_state",
)

_in_transaction: contextvars.ContextVar[bool] = contextvars.ContextVar(
    "vaultrag_in_transaction", default=False
)


class Database:
    """Owner of the ``aiosqlite`` connection.

    Parameters
    ----------
    db_path:
        SQLite file.  Parent directories are created.  ``":memory:"`` is
        accepted for tests.
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._db_path

    async def connect(self) -> None:
        """Open the connection and apply the idempotent schema."""
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()
        logger.debug("Opened search database at %s", self._db_path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageError("Database is not connected; call connect() first")
        return self._conn

    # -- writes ---------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Serialise writers and commit (or roll back) as one unit."""
        if _in_transaction.get():
            yield
            return
        async with self._write_lock:
            token = _in_transaction.set(True)
            try:
                yield
            except BaseException:
                await self.conn.rollback()
                raise
            else:
                await self.conn.commit()
            finally:
                _in_transaction.reset(token)

    async def execute(self, sql: str, params: Iterable[Any] = ()) -> int:
        """Execute one write statement and return the affected row count."""
        async with self.transaction():
            cursor = await self.conn.execute(sql, tuple(params))
            count = cursor.rowcount
            await cursor.close()
        return count

    async def executemany(self, sql: str, rows: Iterable[Iterable[Any]]) -> None:
        async with self.transaction():
            await self.conn.executemany(sql, [tuple(r) for r in rows])

    # -- reads ----------------------------------------------------------------

    async def fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        async with self.conn.execute(sql, tuple(params)) as cursor:
            return list(await cursor.fetchall())

    async def fetchone(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        async with self.conn.execute(sql, tuple(params)) as cursor:
            return await cursor.fetchone()

    async def scalar(self, sql: str, params: Iterable[Any] = ()) -> Any:
        row = await self.fetchone(sql, params)
        return row[0] if row is not None else None

    async def table_names(self) -> set[str]:
        rows = await self.fetchall("SELECT name FROM sqlite_master WHERE type = 'table'")
        return {row[0] for row in rows}


def placeholders(values: list[Any]) -> str:
    return ",".join("?" for _ in values)
