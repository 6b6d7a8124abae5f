"""Change detection and full / incremental indexing passes.

A pass walks the cheap scan (path + mtime) batch by batch and classifies
every file against the stored metadata:

=================  ==============  ==========================================
stored             vault           action
=================  ==============  ==========================================
absent             present         NEW: read, chunk, embed
same mtime         present         UNCHANGED: skip
mtime differs      present         read without derived content, hash;
                                   same hash -> TOUCHED (store mtime only),
                                   other hash -> MODIFIED (full re-index)
present            absent          DELETED: remove every trace
=================  ==============  ==========================================

Files in one batch are processed concurrently by a small worker pool;
a per-document guard keeps two workers off the same document id.  The
cancellation token is checked between batches and before each file.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable

from vaultrag.core.config import Settings
from vaultrag.core.exceptions import IndexingError
from vaultrag.core.models import IndexProgress, IndexResult, ScanEntry
from vaultrag.ingestion.pipeline import IndexingPipeline
from vaultrag.ingestion.vault import Vault
from vaultrag.loaders.registry import LoaderRegistry
from vaultrag.storage.metadata import DocumentRepository
from vaultrag.utils.hashing import doc_id_from_path

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[IndexProgress], None]


class ChangeKind(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"
    TOUCHED = "touched"
    DELETED = "deleted"
    FAILED = "failed"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Cancellation, progress, per-document guard
# ---------------------------------------------------------------------------


class CancellationToken:
    """Cooperative cancellation flag shared by one indexing pass."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class ProgressReporter:
    """Forward progress to *callback* at most once per *interval* seconds."""

    def __init__(
        self,
        callback: ProgressCallback | None,
        mode: str,
        interval: float = 3.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._callback = callback
        self._mode = mode
        self._interval = interval
        self._clock = clock
        self._last: float | None = None

    def update(
        self,
        processed: int,
        total: int | None = None,
        current_path: str | None = None,
        *,
        force: bool = False,
    ) -> bool:
        """Report if the interval elapsed (or *force*); return whether it did."""
        now = self._clock()
        if not force and self._last is not None and now - self._last < self._interval:
            return False
        self._last = now
        progress = IndexProgress(
            mode=self._mode, processed=processed, total=total, current_path=current_path
        )
        logger.info("Indexing (%s): %d processed", self._mode, processed)
        if self._callback is not None:
            self._callback(progress)
        return True


class DocumentGuard:
    """One active re-index per document id; later callers wait their turn."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: defaultdict[str, int] = defaultdict(int)

    def is_active(self, doc_id: str) -> bool:
        lock = self._locks.get(doc_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, doc_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(doc_id, asyncio.Lock())
        self._users[doc_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[doc_id] -= 1
            if self._users[doc_id] == 0:
                del self._users[doc_id]
                self._locks.pop(doc_id, None)


# ---------------------------------------------------------------------------
# Indexer
# ---------------------------------------------------------------------------


class IncrementalIndexer:
    """Drives full and incremental passes over the vault.

    Parameters
    ----------
    vault:
        Stat source for single-file re-evaluation.
    loaders:
        Registry providing scans and reads.
    documents:
        Stored metadata used for classification.
    pipeline:
        Write path for individual documents.
    settings:
        Batch sizes, worker count, and progress interval.
    """

    def __init__(
        self,
        vault: Vault,
        loaders: LoaderRegistry,
        documents: DocumentRepository,
        pipeline: IndexingPipeline,
        settings: Settings,
    ) -> None:
        self._vault = vault
        self._loaders = loaders
        self._documents = documents
        self._pipeline = pipeline
        self._settings = settings
        self._guard = DocumentGuard()
        self._pass_lock = asyncio.Lock()
        self._token: CancellationToken | None = None

    @property
    def running(self) -> bool:
        return self._pass_lock.locked()

    @property
    def guard(self) -> DocumentGuard:
        return self._guard

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def full_index(self, progress: ProgressCallback | None = None) -> IndexResult:
        """Classify every file and sweep stored documents missing from the vault."""
        return await self._run("full", progress)

    async def incremental_index(self, progress: ProgressCallback | None = None) -> IndexResult:
        """Classify every file; only changed content is re-read in full."""
        return await self._run("incremental", progress)

    async def startup(self, progress: ProgressCallback | None = None) -> IndexResult:
        """Full pass when no index has ever been built, incremental otherwise."""
        if await self._documents.get_index_built_at() is None:
            logger.info("No index found; running a full index")
            return await self.full_index(progress)
        return await self.incremental_index(progress)

    def cancel(self) -> bool:
        """Request cancellation of the running pass; ``False`` when idle."""
        if self._token is None or not self.running:
            return False
        self._token.cancel()
        logger.info("Indexing cancellation requested")
        return True

    async def index_path(self, path: str) -> ChangeKind:
        """Re-evaluate one file (used by the change queue)."""
        if not self._loaders.should_index(path):
            return ChangeKind.SKIPPED
        file = await self._vault.stat(path)
        if file is None:
            return await self.remove_path(path)
        entry = ScanEntry(path=path, mtime=file.mtime, type=self._loaders.get_type_for_path(path))
        stored = await self._documents.get_by_path(path)
        known = (stored.id, stored.mtime, stored.content_hash) if stored else None
        kind = await self._process_entry(entry, known, None)
        if kind in (ChangeKind.ADDED, ChangeKind.MODIFIED, ChangeKind.DELETED):
            await self._pipeline.retry_pending()
        return kind

    async def remove_path(self, path: str) -> ChangeKind:
        doc_id = doc_id_from_path(path)
        async with self._guard.hold(doc_id):
            removed = await self._pipeline.remove_documents([doc_id])
        return ChangeKind.DELETED if removed else ChangeKind.SKIPPED

    # ------------------------------------------------------------------
    # Pass
    # ------------------------------------------------------------------

    async def _run(self, mode: str, progress: ProgressCallback | None) -> IndexResult:
        if self._pass_lock.locked():
            raise IndexingError("An indexing pass is already running")
        async with self._pass_lock:
            self._token = token = CancellationToken()
            try:
                return await self._pass(mode, token, progress)
            finally:
                self._token = None

    async def _pass(
        self,
        mode: str,
        token: CancellationToken,
        progress: ProgressCallback | None,
    ) -> IndexResult:
        started_ts = time.time()
        result = IndexResult(mode=mode, started_at=datetime.now(timezone.utc))
        reporter = ProgressReporter(progress, mode, self._settings.progress_interval)
        known = await self._documents.path_index()
        seen: set[str] = set()
        workers = asyncio.Semaphore(max(1, self._settings.index_concurrency))
        logger.info("Starting %s index (%d documents stored)", mode, len(known))

        async def worker(entry: ScanEntry) -> ChangeKind:
            async with workers:
                if token.cancelled:
                    return ChangeKind.SKIPPED
                return await self._process_entry(entry, known.get(entry.path), result)

        async for batch in self._loaders.scan_documents(batch_size=self._settings.scan_batch_size):
            if token.cancelled:
                result.cancelled = True
                break
            kinds = await asyncio.gather(*(worker(entry) for entry in batch))
            seen.update(entry.path for entry in batch)
            result.scanned += len(batch)

            if mode == "full":
                unchanged_ids = [
                    known[entry.path][0]
                    for entry, kind in zip(batch, kinds)
                    if kind is ChangeKind.UNCHANGED
                ]
                await self._documents.mark_processed(unchanged_ids, time.time())
            reporter.update(result.scanned, None, batch[-1].path)

        if token.cancelled:
            result.cancelled = True
            logger.info("Indexing (%s) cancelled after %d files", mode, result.scanned)
        else:
            result.deleted += await self._sweep(mode, known, seen, started_ts)
            result.embedded_chunks += await self._pipeline.retry_pending()
            result.pending_embeddings = await self._documents.count_chunks(pending_only=True)
            await self._documents.record_index_built(await self._documents.count_documents())

        result.finished_at = datetime.now(timezone.utc)
        reporter.update(result.scanned, result.scanned, None, force=True)
        logger.info(
            "Indexing (%s) finished: %d scanned, %d added, %d modified, %d deleted, "
            "%d touched, %d unchanged, %d failed",
            mode,
            result.scanned,
            result.added,
            result.modified,
            result.deleted,
            result.touched,
            result.unchanged,
            result.failed,
        )
        return result

    async def _sweep(
        self,
        mode: str,
        known: dict[str, tuple[str, float, str]],
        seen: set[str],
        started_ts: float,
    ) -> int:
        """Remove stored documents that the scan did not observe."""
        if mode == "full":
            stale = await self._documents.find_not_touched_since(started_ts)
            doc_ids = [doc.id for doc in stale if doc.path not in seen]
        else:
            doc_ids = [doc_id for path, (doc_id, _, _) in known.items() if path not in seen]
        if not doc_ids:
            return 0
        for doc_id in doc_ids:
            async with self._guard.hold(doc_id):
                await self._pipeline.remove_documents([doc_id])
        return len(doc_ids)

    async def _process_entry(
        self,
        entry: ScanEntry,
        known: tuple[str, float, str] | None,
        result: IndexResult | None,
    ) -> ChangeKind:
        """Classify one scanned file and act on it; per-file failures are counted, not raised."""
        doc_id = doc_id_from_path(entry.path)
        async with self._guard.hold(doc_id):
            try:
                kind = await self._classify_and_index(entry, known, result)
            except Exception:  # noqa: BLE001
                logger.warning("Indexing failed for %s", entry.path, exc_info=True)
                kind = ChangeKind.FAILED
        if result is not None:
            self._count(result, kind)
        return kind

    async def _classify_and_index(
        self,
        entry: ScanEntry,
        known: tuple[str, float, str] | None,
        result: IndexResult | None,
    ) -> ChangeKind:
        if known is None:
            doc = await self._loaders.read_by_path(entry.path, gen_cache_content=True)
            if doc is None:
                return ChangeKind.FAILED
            outcome = await self._pipeline.index_document(doc)
            self._count_embeddings(result, outcome.embedded)
            return ChangeKind.ADDED

        doc_id, stored_mtime, stored_hash = known
        if stored_mtime == entry.mtime:
            return ChangeKind.UNCHANGED

        peek = await self._loaders.read_by_path(entry.path, gen_cache_content=False)
        if peek is None:
            return ChangeKind.FAILED
        if peek.content_hash == stored_hash:
            await self._documents.touch(doc_id, entry.mtime)
            return ChangeKind.TOUCHED

        doc = await self._loaders.read_by_path(entry.path, gen_cache_content=True)
        if doc is None:
            return ChangeKind.FAILED
        outcome = await self._pipeline.index_document(doc)
        self._count_embeddings(result, outcome.embedded)
        return ChangeKind.MODIFIED

    @staticmethod
    def _count(result: IndexResult, kind: ChangeKind) -> None:
        if kind is ChangeKind.ADDED:
            result.added += 1
        elif kind is ChangeKind.MODIFIED:
            result.modified += 1
        elif kind is ChangeKind.UNCHANGED:
            result.unchanged += 1
        elif kind is ChangeKind.TOUCHED:
            result.touched += 1
        elif kind is ChangeKind.FAILED:
            result.failed += 1

    @staticmethod
    def _count_embeddings(result: IndexResult | None, embedded: int) -> None:
        if result is not None:
            result.embedded_chunks += embedded
