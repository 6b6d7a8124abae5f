"""Tests for resource kind detection and resource summaries."""

import pytest

from vaultrag.core.exceptions import CollaboratorUnavailableError, LoaderError
from vaultrag.core.models import ResourceKind
from vaultrag.loaders.registry import LoaderRegistry
from vaultrag.resources.detector import detect_resource_kind, strip_wiki_link
from vaultrag.resources.manager import ResourceRegistry


class TestDetectResourceKind:
    """Precedence of the resource classifier."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("https://example.com/report.pdf", ResourceKind.URL),
            ("#project/alpha", ResourceKind.TAG),
            ("[[Meeting notes]]", ResourceKind.MARKDOWN),
            ("[[report.pdf]]", ResourceKind.MARKDOWN),
            ("report.pdf", ResourceKind.PDF),
            ("photo.heic", ResourceKind.IMAGE),
            ("budget.xlsx", ResourceKind.XLSX),
            ("board.canvas", ResourceKind.CANVAS),
            ("mystery.bin", ResourceKind.UNKNOWN),
        ],
    )
    def test_without_vault(self, value, expected):
        assert detect_resource_kind(value) is expected

    def test_folder_detection_uses_vault(self, vault, write_file):
        write_file("projects/alpha/plan.md", "plan")

        assert detect_resource_kind("projects/alpha", vault) is ResourceKind.FOLDER
        assert detect_resource_kind("[[projects]]", vault) is ResourceKind.FOLDER
        assert detect_resource_kind("projects/missing", vault) is ResourceKind.UNKNOWN

    def test_strip_wiki_link(self):
        assert strip_wiki_link("[[target|alias]]") == "target"
        assert strip_wiki_link("plain") == "plain"

    def test_special_kinds_are_not_documents(self):
        assert ResourceKind.MARKDOWN.is_document
        assert not ResourceKind.TAG.is_document
        assert not ResourceKind.FOLDER.is_document


class TestResourceRegistry:
    """Summaries routed by resource kind."""

    def _registry(self, vault, settings, summarizer=None) -> ResourceRegistry:
        loaders = LoaderRegistry.with_default_loaders(vault, settings, summarizer)
        return ResourceRegistry(vault, loaders)

    async def test_tag_summary(self, vault, settings):
        summary = await self._registry(vault, settings).get_summary("#reading")
        assert summary.short_summary == "Tag: reading"
        assert "reading" in summary.full_summary

    async def test_folder_summary_lists_children(self, vault, settings, write_file):
        write_file("books/a.md", "a")
        write_file("books/b.md", "b")

        summary = await self._registry(vault, settings).get_summary("books/")

        assert summary.short_summary == "Folder: books (2 items)"
        assert "- books/a.md" in summary.full_summary

    async def test_wiki_link_summary_through_loader(self, vault, settings, write_file, summarizer):
        write_file("ideas.md", "---\ntitle: Ideas\n---\nSome ideas.")

        summary = await self._registry(vault, settings, summarizer).get_summary("[[ideas]]")

        assert summary.short_summary == "Summary of Ideas"
        assert summary.full_summary is None

    async def test_document_summary_needs_summarizer(self, vault, settings, write_file):
        write_file("ideas.md", "Some ideas.")
        with pytest.raises(CollaboratorUnavailableError):
            await self._registry(vault, settings).get_summary("ideas.md")

    async def test_unreadable_document(self, vault, settings, summarizer):
        with pytest.raises(LoaderError):
            await self._registry(vault, settings, summarizer).get_summary("missing.md")

    async def test_unknown_kind(self, vault, settings):
        with pytest.raises(LoaderError):
            await self._registry(vault, settings).get_summary("mystery.bin")
