"""Tests for loader dispatch, scanning, and the ignore-pattern cache."""

import asyncio

import pytest

from vaultrag.core.config import Settings
from vaultrag.core.exceptions import ConfigError
from vaultrag.core.models import DocumentType
from vaultrag.ingestion.vault import FileSystemVault
from vaultrag.loaders.registry import LoaderRegistry
from vaultrag.loaders.text import TextDocumentLoader
from vaultrag.utils.cache import PatternCache


class CountingVault(FileSystemVault):
    """Filesystem vault that counts directory walks."""

    def __init__(self, root) -> None:
        super().__init__(root)
        self.walks = 0

    async def list_files(self, extensions=None):
        self.walks += 1
        return await super().list_files(extensions)


@pytest.fixture
def registry(vault, settings) -> LoaderRegistry:
    return LoaderRegistry.with_default_loaders(vault, settings)


class TestDispatch:
    """Type detection and loader lookup."""

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("notes/a.md", DocumentType.MARKDOWN),
            ("notes/A.MD", DocumentType.MARKDOWN),
            ("sketch.excalidraw.md", DocumentType.EXCALIDRAW),
            ("sketch.excalidraw", DocumentType.EXCALIDRAW),
            ("page.htm", DocumentType.HTML),
            ("data.csv", DocumentType.CSV),
            ("board.canvas", DocumentType.CANVAS),
            ("photo.JPG", DocumentType.IMAGE),
            ("https://example.com/a.md", DocumentType.URL),
            ("sheet.xlsx", DocumentType.UNKNOWN),
            ("archive.zip", DocumentType.UNKNOWN),
        ],
    )
    def test_get_type_for_path(self, registry, path, expected):
        assert registry.get_type_for_path(path) is expected

    def test_every_default_type_has_a_loader(self, registry):
        for doc_type in Settings().include_document_types:
            assert registry.get_loader(doc_type) is not None, doc_type

    def test_extension_conflict_is_rejected(self, registry, vault):
        """Two loaders may not claim the same extension."""

        class OtherText(TextDocumentLoader):
            document_type = DocumentType.UNKNOWN

        with pytest.raises(ConfigError):
            registry.register(OtherText(vault))

    def test_should_index_applies_ignore_patterns(self, registry):
        assert registry.should_index("notes/a.md")
        assert not registry.should_index(".obsidian/workspace.json")
        assert not registry.should_index(".trash/old.md")
        assert not registry.should_index("archive.zip")

    def test_should_index_respects_included_types(self, vault):
        settings = Settings(include_document_types=[DocumentType.MARKDOWN])
        registry = LoaderRegistry.with_default_loaders(vault, settings)

        assert registry.should_index("a.md")
        assert not registry.should_index("a.txt")


class TestScanning:
    """Batched scans and bulk loading."""

    async def test_scan_batches_and_skips_ignored(self, registry, write_file):
        for i in range(5):
            write_file(f"n{i}.md", f"note {i}")
        write_file(".obsidian/app.json", "{}")
        write_file("misc/readme.txt", "hello")

        batches = [b async for b in registry.scan_documents(batch_size=2)]
        paths = [e.path for b in batches for e in b]

        assert all(len(b) <= 2 for b in batches)
        assert sorted(paths) == ["misc/readme.txt", "n0.md", "n1.md", "n2.md", "n3.md", "n4.md"]

    async def test_scan_walks_the_vault_once(self, vault_dir, settings, write_file):
        """Every file goes to its own loader from a single directory walk."""
        counting = CountingVault(vault_dir)
        registry = LoaderRegistry.with_default_loaders(counting, settings)
        write_file("a.md", "note")
        write_file("sketch.excalidraw.md", "drawing")
        write_file("table.csv", "a,b")
        write_file("photo.png", b"\x89PNG")

        entries = [e async for b in registry.scan_documents() for e in b]

        assert counting.walks == 1
        assert {e.path: e.type for e in entries} == {
            "a.md": DocumentType.MARKDOWN,
            "sketch.excalidraw.md": DocumentType.EXCALIDRAW,
            "table.csv": DocumentType.CSV,
            "photo.png": DocumentType.IMAGE,
        }

    async def test_directory_walk_runs_in_a_worker_thread(self, registry, write_file, monkeypatch):
        write_file("a.md", "note")
        offloaded = []
        to_thread = asyncio.to_thread

        async def spy(func, *args, **kwargs):
            offloaded.append(func.__name__)
            return await to_thread(func, *args, **kwargs)

        monkeypatch.setattr(asyncio, "to_thread", spy)

        batches = [b async for b in registry.scan_documents()]

        assert "_walk" in offloaded
        assert [e.path for b in batches for e in b] == ["a.md"]

    async def test_single_loader_scan(self, vault, write_file):
        write_file("a.txt", "one")
        write_file("b.md", "two")

        batches = [b async for b in TextDocumentLoader(vault).scan_documents()]

        assert [[e.path for e in b] for b in batches] == [["a.txt"]]

    async def test_scan_limit(self, registry, write_file):
        for i in range(5):
            write_file(f"n{i}.md", f"note {i}")

        batches = [b async for b in registry.scan_documents(limit=3, batch_size=2)]
        assert sum(len(b) for b in batches) == 3

    async def test_load_all_documents_skips_unreadable(self, registry, write_file):
        """A malformed file is dropped without stopping the load."""
        write_file("good.md", "fine")
        write_file("bad.json", "{broken")

        docs = [d async for batch in registry.load_all_documents() for d in batch]

        assert [d.path for d in docs] == ["good.md"]

    async def test_read_by_path_for_unknown_type(self, registry, write_file):
        write_file("archive.zip", b"PK")
        assert await registry.read_by_path("archive.zip") is None


class TestPatternCache:
    """Compiled glob cache."""

    def test_compiled_patterns_are_reused(self):
        cache = PatternCache(maxsize=4)
        first = cache.compile("drafts/**")
        assert cache.compile("drafts/**") is first
        assert len(cache) == 1

    def test_matches_any(self):
        cache = PatternCache()
        assert cache.matches_any("drafts/2024/a.md", ["drafts/**"])
        assert not cache.matches_any("notes/a.md", ["drafts/**", "*.tmp"])
