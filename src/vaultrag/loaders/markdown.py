"""Markdown notes: frontmatter, tags, categories, and wiki-link references."""

from __future__ import annotations

from langchain_text_splitters import Language

from vaultrag.core.models import (
    Document,
    DocumentMetadata,
    DocumentReference,
    DocumentReferences,
    DocumentType,
)
from vaultrag.ingestion.vault import VaultFile
from vaultrag.loaders.base import DocumentLoader
from vaultrag.utils.hashing import text_content_hash
from vaultrag.utils.markdown import (
    extract_inline_tags,
    extract_wiki_links,
    frontmatter_list,
    split_frontmatter,
)


def parse_markdown_metadata(content: str, basename: str) -> tuple[DocumentMetadata, list[str]]:
    """Return metadata and outgoing wiki-link targets for a note body.

    The title comes from the ``title`` frontmatter key, falling back to
    the file's basename.  Tags merge frontmatter ``tags`` with inline
    ``#tags`` (frontmatter first, deduplicated).
    """
    frontmatter, _body = split_frontmatter(content)
    title = frontmatter.get("title")
    tags = list(
        dict.fromkeys(frontmatter_list(frontmatter, "tags") + extract_inline_tags(content))
    )
    categories = frontmatter_list(frontmatter, "categories") or frontmatter_list(
        frontmatter, "category"
    )
    metadata = DocumentMetadata(
        title=str(title).strip() if title else basename,
        tags=tags,
        categories=categories,
        frontmatter=frontmatter,
    )
    return metadata, extract_wiki_links(content)


class MarkdownDocumentLoader(DocumentLoader):
    document_type = DocumentType.MARKDOWN
    extensions = ("md", "markdown")
    splitter_language = Language.MARKDOWN

    def owns(self, path: str) -> bool:
        # Excalidraw drawings saved as markdown belong to their own loader.
        return super().owns(path) and not path.lower().endswith(".excalidraw.md")

    async def _read(self, file: VaultFile, gen_cache_content: bool) -> Document:
        content = await self._vault.read_text(file.path)
        metadata, links = parse_markdown_metadata(content, file.basename)
        references = DocumentReferences(
            outgoing=[DocumentReference(full_path=target) for target in links],
        )
        return self._build_document(
            file,
            source_content=content,
            content_hash=text_content_hash(content),
            metadata=metadata,
            references=references,
        )
