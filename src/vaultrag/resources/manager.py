"""Summaries for any resource kind: documents, tags, and folders."""

from __future__ import annotations

from typing import Protocol

from vaultrag.core.exceptions import LoaderError
from vaultrag.core.models import ResourceKind, ResourceSummary
from vaultrag.ingestion.vault import Vault
from vaultrag.loaders.registry import LoaderRegistry
from vaultrag.resources.detector import detect_resource_kind, strip_wiki_link


class ResourceLoader(Protocol):
    """Summary source for a non-file resource kind."""

    kind: ResourceKind

    async def get_summary(self, source: str) -> ResourceSummary:
        ...


class TagResourceLoader:
    kind = ResourceKind.TAG

    async def get_summary(self, source: str) -> ResourceSummary:
        tag = source.lstrip("#")
        return ResourceSummary(
            short_summary=f"Tag: {tag}",
            full_summary=(
                f'This is a tag resource for "{tag}". Tags are used to categorize '
                "and organize content in the vault."
            ),
        )


class FolderResourceLoader:
    kind = ResourceKind.FOLDER

    def __init__(self, vault: Vault) -> None:
        self._vault = vault

    async def get_summary(self, source: str) -> ResourceSummary:
        folder = strip_wiki_link(source).strip("/")
        children = self._vault.list_folder(folder)
        listing = "\n".join(f"- {child}" for child in children)
        return ResourceSummary(
            short_summary=f"Folder: {folder} ({len(children)} items)",
            full_summary=f"Folder {folder} contains:\n{listing}" if children else None,
        )


class ResourceRegistry:
    """Route a resource string to the tag / folder loader or to a document loader.

    Parameters
    ----------
    vault:
        Used for folder detection and folder listings.
    loaders:
        Registry of document loaders.
    """

    def __init__(self, vault: Vault, loaders: LoaderRegistry) -> None:
        self._vault = vault
        self._loaders = loaders
        self._special: dict[ResourceKind, ResourceLoader] = {
            ResourceKind.TAG: TagResourceLoader(),
            ResourceKind.FOLDER: FolderResourceLoader(vault),
        }

    def detect(self, resource: str) -> ResourceKind:
        return detect_resource_kind(resource, self._vault)

    async def get_summary(
        self,
        resource: str,
        provider: str | None = None,
        model_id: str | None = None,
    ) -> ResourceSummary:
        """Summarise *resource*; documents are read first, then summarised by their loader.

        Raises
        ------
        LoaderError
            If the resource kind has no loader or the document cannot be read.
        CollaboratorUnavailableError
            If a document summary needs a summarizer and none is configured.
        """
        kind = self.detect(resource)
        special = self._special.get(kind)
        if special is not None:
            return await special.get_summary(resource)
        if not kind.is_document:
            raise LoaderError(f"No summary loader for resource kind {kind.value!r}")

        path = strip_wiki_link(resource)
        if kind is ResourceKind.MARKDOWN and not path.lower().endswith((".md", ".markdown")):
            path = f"{path}.md"
        loader = self._loaders.get_loader_for_path(path)
        if loader is None:
            raise LoaderError(f"No loader registered for {path!r}")
        doc = await loader.read_by_path(path)
        if doc is None:
            raise LoaderError(f"Could not read resource {resource!r}")
        return await loader.get_summary(doc, provider, model_id)
