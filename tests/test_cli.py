"""Tests for the click command-line interface."""

import pytest
from click.testing import CliRunner

import vaultrag.cli as cli_module
from vaultrag.api.service import VaultRAGService
from vaultrag.cli import main


@pytest.fixture
def runner(monkeypatch, settings, embedder, vector_store) -> CliRunner:
    """CliRunner whose commands run against the temporary vault with in-memory collaborators."""

    def fake_service(ctx):
        overrides = ctx.obj.get("overrides", {})
        return VaultRAGService(
            settings.model_copy(update=overrides),
            embedding_provider=embedder,
            vector_store=vector_store,
        )

    monkeypatch.setattr(cli_module, "_get_service", fake_service)
    return CliRunner()


@pytest.fixture
def indexed(runner, sample_vault):
    result = runner.invoke(main, ["index", "--full"])
    assert result.exit_code == 0, result.output
    return sample_vault


class TestIndexCommand:
    def test_full_index(self, runner, sample_vault):
        result = runner.invoke(main, ["index", "--full"])

        assert result.exit_code == 0, result.output
        assert "Done (full). 4 scanned: 4 added" in result.output
        assert "Embedded 4 chunks; 0 pending." in result.output

    def test_incremental_after_full(self, runner, indexed):
        result = runner.invoke(main, ["index"])

        assert result.exit_code == 0
        assert "Done (incremental)." in result.output
        assert "4 unchanged" in result.output


class TestQueryCommands:
    def test_search(self, runner, indexed):
        result = runner.invoke(main, ["search", "engine", "-n", "3"])

        assert result.exit_code == 0, result.output
        assert "[1]" in result.output
        assert "[4]" not in result.output

    def test_search_without_index(self, runner):
        result = runner.invoke(main, ["search", "engine"])

        assert result.exit_code == 0
        assert "No results found." in result.output

    def test_search_rejects_unknown_mode(self, runner):
        result = runner.invoke(main, ["search", "engine", "--mode", "everywhere"])
        assert result.exit_code == 2

    def test_in_file_search_without_current_file(self, runner, indexed):
        result = runner.invoke(main, ["search", "engine", "--mode", "inFile"])

        assert result.exit_code == 1
        assert "inFile search needs current_path" in result.output

    def test_related(self, runner, indexed):
        result = runner.invoke(main, ["related", indexed["alpha"]])

        assert result.exit_code == 0, result.output
        assert f"{indexed['beta']}  (linked" in result.output

    def test_related_unknown_document(self, runner, indexed):
        result = runner.invoke(main, ["related", "missing.md"])

        assert result.exit_code == 1
        assert "is not indexed [UNKNOWN_ERROR]" in result.output

    def test_path(self, runner, indexed):
        result = runner.invoke(main, ["path", indexed["alpha"], indexed["alpha"]])

        assert result.exit_code == 0, result.output
        assert f"[1] (0 hops) {indexed['alpha']}" in result.output


class TestMaintenanceCommands:
    def test_status_without_index(self, runner):
        result = runner.invoke(main, ["status"])
        assert "No index found." in result.output

    def test_status(self, runner, indexed):
        result = runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert "Documents:  4" in result.output
        assert "Embeddings: 4 (0 pending)" in result.output

    def test_clear_asks_for_confirmation(self, runner, indexed):
        result = runner.invoke(main, ["clear"], input="n\n")

        assert "Index cleared" not in result.output
        assert "Documents:  4" in runner.invoke(main, ["status"]).output

    def test_clear(self, runner, indexed):
        result = runner.invoke(main, ["clear", "-y"])

        assert result.exit_code == 0
        assert "Index cleared: 4 documents, 4 chunks, 4 embeddings" in result.output

    def test_verify(self, runner, indexed, vector_store):
        assert runner.invoke(main, ["verify"]).exit_code == 0

        vector_store.rows.clear()
        result = runner.invoke(main, ["verify"])

        assert result.exit_code == 1
        assert "[FAIL] vector_count" in result.output

    def test_cleanup_orphans(self, runner, indexed):
        result = runner.invoke(main, ["cleanup-orphans"])
        assert "Found 0 orphaned embeddings, deleted 0." in result.output

    def test_vault_must_exist(self, runner, tmp_path):
        result = runner.invoke(main, ["--vault", str(tmp_path / "nope"), "status"])
        assert result.exit_code == 2
