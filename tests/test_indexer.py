"""Tests for full and incremental indexing passes and the re-index queue."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import HashEmbedder
from vaultrag.api.service import VaultRAGService
from vaultrag.core.exceptions import IndexingError, SearchError
from vaultrag.core.models import EmbeddingRecord
from vaultrag.ingestion.indexer import ChangeKind, DocumentGuard, ProgressReporter
from vaultrag.ingestion.queue import FileEvent, ReindexQueue
from vaultrag.utils.hashing import doc_id_from_path


class TestFullIndex:
    """Initial and repeated full passes."""

    async def test_initial_full_index(self, service, sample_vault, vector_store):
        progress = []
        result = await service.full_index(progress.append)

        assert result.mode == "full"
        assert (result.scanned, result.added, result.failed) == (4, 4, 0)
        assert result.embedded_chunks == 4
        assert result.pending_embeddings == 0
        assert progress and progress[-1].mode == "full"

        status = await service.status()
        assert status.indexed_docs == 4
        assert status.total_chunks == 4
        assert status.total_embeddings == 4
        assert status.built_at is not None
        assert await vector_store.count() == 4

    async def test_reindexing_unchanged_vault_is_idempotent(self, service, sample_vault, embedder):
        await service.full_index()
        before = await service.status()
        calls = len(embedder.calls)

        again = await service.full_index()

        assert (again.unchanged, again.added, again.modified, again.deleted) == (4, 0, 0, 0)
        assert len(embedder.calls) == calls
        after = await service.status()
        assert (after.indexed_docs, after.total_chunks, after.total_embeddings, after.total_edges) == (
            before.indexed_docs,
            before.total_chunks,
            before.total_embeddings,
            before.total_edges,
        )

    async def test_unreadable_and_ignored_files(self, service, write_file):
        write_file("ok.md", "fine")
        write_file("broken.json", "{nope")
        write_file(".obsidian/workspace.json", "{}")

        result = await service.full_index()

        assert (result.scanned, result.added, result.failed) == (2, 1, 1)

    async def test_startup_picks_full_then_incremental(self, service, sample_vault):
        first = await service.startup()
        second = await service.startup()

        assert first.mode == "full"
        assert second.mode == "incremental"
        assert second.unchanged == 4


class TestIncrementalIndex:
    """Change classification against stored metadata."""

    async def test_modified_file_replaces_embeddings(
        self, service, sample_vault, write_file, vector_store, embedder
    ):
        await service.full_index()
        beta_id = doc_id_from_path(sample_vault["beta"])
        new_content = "Beta now covers telemetry dashboards only.\n"
        write_file(sample_vault["beta"], new_content, mtime=1_800_000_000)

        result = await service.incremental_index()

        assert result.modified == 1
        assert result.unchanged == 3
        record_id = EmbeddingRecord.make_id(beta_id, 0)
        assert vector_store.record_ids(beta_id) == [record_id]
        assert vector_store.rows[beta_id][record_id] == embedder.vector(new_content)
        assert (await service.status()).total_embeddings == 4

    async def test_failed_re_embed_leaves_no_stale_embedding(
        self, service, sample_vault, write_file, vector_store, embedder
    ):
        await service.full_index()
        beta_id = doc_id_from_path(sample_vault["beta"])
        embedder.fail = True
        write_file(sample_vault["beta"], "Beta now covers telemetry dashboards only.\n", mtime=1_800_000_000)

        result = await service.incremental_index()

        assert (result.modified, result.pending_embeddings) == (1, 1)
        assert vector_store.record_ids(beta_id) == []
        status = await service.status()
        assert (status.total_embeddings, await vector_store.count()) == (3, 3)
        assert (await service.verify_health()).ok

    async def test_touched_file_is_not_re_indexed(self, service, sample_vault, write_file, embedder):
        await service.full_index()
        calls = len(embedder.calls)
        content = (service.settings.vault_dir / sample_vault["gamma"]).read_text(encoding="utf-8")
        write_file(sample_vault["gamma"], content, mtime=1_800_000_000)

        result = await service.incremental_index()

        assert result.touched == 1
        assert result.modified == 0
        assert len(embedder.calls) == calls

        again = await service.incremental_index()
        assert again.unchanged == 4

    async def test_deleted_file_is_removed_everywhere(self, service, sample_vault, vector_store):
        await service.full_index()
        delta_id = doc_id_from_path(sample_vault["delta"])
        (service.settings.vault_dir / sample_vault["delta"]).unlink()

        result = await service.incremental_index()

        assert result.deleted == 1
        status = await service.status()
        assert status.indexed_docs == 3
        assert status.total_embeddings == 3
        assert vector_store.record_ids(delta_id) == []

    async def test_new_file_is_added(self, service, sample_vault, write_file):
        await service.full_index()
        write_file("inbox/new.md", "Fresh capture about rockets.", mtime=1_800_000_000)

        result = await service.incremental_index()

        assert result.added == 1
        assert (await service.status()).indexed_docs == 5

    async def test_pending_embeddings_are_retried(self, settings, sample_vault, vector_store):
        embedder = HashEmbedder(fail=True)
        async with VaultRAGService(settings, embedding_provider=embedder, vector_store=vector_store) as svc:
            first = await svc.full_index()
            assert first.pending_embeddings == 4
            assert (await svc.status()).total_embeddings == 0

            embedder.fail = False
            second = await svc.incremental_index()

            assert second.embedded_chunks == 4
            assert second.pending_embeddings == 0
            assert await vector_store.count() == 4

    async def test_embedding_disabled_indexes_text_only(self, settings, sample_vault, vector_store):
        disabled = settings.model_copy(update={"embedding_enabled": False})
        async with VaultRAGService(disabled, vector_store=vector_store) as svc:
            result = await svc.full_index()

            assert result.added == 4
            assert result.pending_embeddings == 4
            assert await vector_store.count() == 0


class TestPassControl:
    """Single-pass locking and cancellation."""

    async def test_second_pass_is_rejected_while_running(self, service, sample_vault):
        running = asyncio.create_task(service.full_index())
        await asyncio.sleep(0)

        with pytest.raises(IndexingError):
            await service.incremental_index()
        await running

    async def test_cancel_when_idle(self, service):
        assert service.cancel_indexing() is False

    async def test_cancel_stops_at_batch_boundary(self, settings, sample_vault, embedder, vector_store):
        small_batches = settings.model_copy(update={"scan_batch_size": 1})
        async with VaultRAGService(small_batches, embedding_provider=embedder, vector_store=vector_store) as svc:
            result = await svc.full_index(lambda progress: svc.cancel_indexing())

            assert result.cancelled
            assert result.scanned < 4
            assert (await svc.status()).built_at is None

    def test_progress_reporter_throttles(self):
        now = [0.0]
        seen = []
        reporter = ProgressReporter(seen.append, "full", interval=3.0, clock=lambda: now[0])

        assert reporter.update(1)
        now[0] = 1.0
        assert not reporter.update(2)
        assert reporter.update(3, force=True)
        now[0] = 5.0
        assert reporter.update(4)
        assert [p.processed for p in seen] == [1, 3, 4]

    @pytest.mark.parametrize(("interval", "expected"), [(3600.0, [1, 4]), (0.0, [1, 2, 3, 4, 4])])
    async def test_full_pass_reports_progress_per_interval(
        self, settings, sample_vault, embedder, vector_store, interval, expected
    ):
        """One report per elapsed interval plus a final one with the total."""
        tuned = settings.model_copy(update={"scan_batch_size": 1, "progress_interval": interval})
        seen = []
        async with VaultRAGService(tuned, embedding_provider=embedder, vector_store=vector_store) as svc:
            await svc.full_index(seen.append)

        assert [p.processed for p in seen] == expected
        assert seen[-1].total == 4
        assert all(p.mode == "full" for p in seen)

    async def test_document_guard_serialises_one_document(self):
        guard = DocumentGuard()
        order = []

        async def worker(name: str) -> None:
            async with guard.hold("doc"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]
        assert not guard.is_active("doc")


class TestReindexQueue:
    """File events drained by the background queue."""

    async def test_changed_event_indexes_file(self, service, write_file):
        path = write_file("queued.md", "Queued note about telescopes.")

        service.notify_file_event("changed", path)
        await service.wait_for_queue()

        assert (await service.status()).indexed_docs == 1

    async def test_rename_removes_old_path(self, service, sample_vault, write_file):
        await service.full_index()
        old = sample_vault["gamma"]
        content = (service.settings.vault_dir / old).read_text(encoding="utf-8")
        (service.settings.vault_dir / old).unlink()
        new = write_file("archive/gamma.md", content)

        service.notify_file_event("renamed", new, old_path=old)
        await service.wait_for_queue()

        assert await service.related(new) is not None
        with pytest.raises(SearchError):
            await service.related(old)

    async def test_ignored_path_is_skipped(self, service, write_file):
        path = write_file(".obsidian/cache.md", "internal")
        assert await service.indexer.index_path(path) is ChangeKind.SKIPPED

    async def test_burst_of_events_is_coalesced(self, service, write_file, embedder):
        path = write_file("busy.md", "Draft one about satellites.")
        for _ in range(5):
            service.notify_file_event("changed", path)
        await service.wait_for_queue()

        assert embedder.embedded_texts == 1

    async def test_outcome_history_is_bounded(self):
        indexer = MagicMock()
        indexer.index_path = AsyncMock(return_value=ChangeKind.ADDED)
        queue = ReindexQueue(indexer, debounce=0.0, history=2)
        for path in ("a.md", "b.md", "c.md"):
            queue.notify(FileEvent.CHANGED, path)

        queue.start()
        await queue.join()
        await queue.stop()

        assert queue.processed == {"b.md": ChangeKind.ADDED, "c.md": ChangeKind.ADDED}
        assert indexer.index_path.await_count == 3
