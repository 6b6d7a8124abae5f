"""File-change notifications drained by a single consumer task.

Notifications are coalesced per path: a burst of saves to one note is
re-indexed once, after the debounce delay.  A notification that arrives
while its path is being processed is kept and handled on the next round,
so a document is never re-indexed twice at the same time.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from vaultrag.ingestion.indexer import ChangeKind, IncrementalIndexer

logger = logging.getLogger(__name__)


class FileEvent(str, Enum):
    CHANGED = "changed"
    DELETED = "deleted"
    RENAMED = "renamed"


class ReindexQueue:
    """Debounced, coalescing re-index queue.

    Parameters
    ----------
    indexer:
        Performs the per-path work.
    debounce:
        Seconds to wait after the first notification of a round.
    history:
        Outcomes kept in :attr:`processed`; the oldest paths are dropped first.
    """

    def __init__(self, indexer: IncrementalIndexer, debounce: float = 0.5, history: int = 256) -> None:
        self._indexer = indexer
        self._debounce = debounce
        self._history = max(1, history)
        self._pending: dict[str, FileEvent] = {}
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._task: asyncio.Task[None] | None = None
        self.processed: dict[str, ChangeKind] = {}

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def __len__(self) -> int:
        return len(self._pending)

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._consume(), name="vaultrag-reindex-queue")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def notify(self, event: FileEvent, path: str, old_path: str | None = None) -> None:
        """Record a change; the latest event for a path wins."""
        if event is FileEvent.RENAMED:
            if old_path:
                self._pending[old_path] = FileEvent.DELETED
            self._pending[path] = FileEvent.CHANGED
        else:
            self._pending[path] = event
        self._idle.clear()
        self._wakeup.set()

    async def join(self) -> None:
        """Wait until every queued notification has been handled."""
        await self._idle.wait()

    async def _consume(self) -> None:
        while True:
            await self._wakeup.wait()
            await asyncio.sleep(self._debounce)
            self._wakeup.clear()
            batch, self._pending = self._pending, {}
            for path, event in batch.items():
                try:
                    if event is FileEvent.DELETED:
                        kind = await self._indexer.remove_path(path)
                    else:
                        kind = await self._indexer.index_path(path)
                except Exception:  # noqa: BLE001
                    logger.warning("Re-index of %s failed", path, exc_info=True)
                    kind = ChangeKind.FAILED
                self._record(path, kind)
                logger.debug("Queue processed %s (%s): %s", path, event.value, kind.value)
            if not self._pending:
                self._idle.set()

    def _record(self, path: str, kind: ChangeKind) -> None:
        self.processed.pop(path, None)
        self.processed[path] = kind
        while len(self.processed) > self._history:
            del self.processed[next(iter(self.processed))]
