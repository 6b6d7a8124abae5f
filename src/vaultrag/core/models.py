"""Pydantic domain models for vaultrag."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------


class DocumentType(str, Enum):
    """Closed set of document kinds a loader can produce."""

    MARKDOWN = "markdown"
    TXT = "txt"
    CSV = "csv"
    JSON = "json"
    HTML = "html"
    XML = "xml"
    PDF = "pdf"
    IMAGE = "image"
    DOCX = "docx"
    XLSX = "xlsx"
    PPTX = "pptx"
    EXCALIDRAW = "excalidraw"
    CANVAS = "canvas"
    DATALOOM = "dataloom"
    FOLDER = "folder"
    URL = "url"
    UNKNOWN = "unknown"


class ResourceKind(str, Enum):
    """Document types plus the special non-file resources."""

    MARKDOWN = "markdown"
    TXT = "txt"
    CSV = "csv"
    JSON = "json"
    HTML = "html"
    XML = "xml"
    PDF = "pdf"
    IMAGE = "image"
    DOCX = "docx"
    XLSX = "xlsx"
    PPTX = "pptx"
    EXCALIDRAW = "excalidraw"
    CANVAS = "canvas"
    DATALOOM = "dataloom"
    FOLDER = "folder"
    URL = "url"
    UNKNOWN = "unknown"
    TAG = "tag"
    CATEGORY = "category"

    @property
    def is_document(self) -> bool:
        return self.value not in _SPECIAL_KINDS


_SPECIAL_KINDS = frozenset({"tag", "folder", "category", "url", "unknown"})


# ---------------------------------------------------------------------------
# Documents and chunks
# ---------------------------------------------------------------------------


class ChunkingSettings(BaseModel):
    """Size limits handed to :meth:`DocumentLoader.chunk_content`."""

    max_chunk_size: int = 1000
    chunk_overlap: int = 200
    min_document_size_for_chunking: int = 1500


class FileInfo(BaseModel):
    """One of the two parallel file bundles carried by a :class:`Document`."""

    path: str
    name: str
    extension: str
    size: int = 0
    mtime: float = 0.0
    ctime: float = 0.0
    content: str = ""


class DocumentMetadata(BaseModel):
    """Metadata extracted from content; recomputed on every read."""

    title: str = ""
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    frontmatter: dict[str, Any] = Field(default_factory=dict)
    custom: dict[str, Any] = Field(default_factory=dict)


class DocumentReference(BaseModel):
    full_path: str
    doc_id: str | None = None


class DocumentReferences(BaseModel):
    outgoing: list[DocumentReference] = Field(default_factory=list)
    incoming: list[DocumentReference] = Field(default_factory=list)


class ResourceSummary(BaseModel):
    short_summary: str
    full_summary: str | None = None


class Document(BaseModel):
    """The canonical unit of indexable content."""

    id: str
    type: DocumentType
    source_file_info: FileInfo
    cache_file_info: FileInfo
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    references: DocumentReferences = Field(default_factory=DocumentReferences)
    summary: str | None = None
    content_hash: str
    last_processed_at: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def path(self) -> str:
        return self.source_file_info.path

    @property
    def indexable_content(self) -> str:
        """Cache content for binary formats, source content otherwise."""
        return self.cache_file_info.content or self.source_file_info.content


class Chunk(BaseModel):
    """A contiguous span of a document's indexable text.

    ``chunk_id`` and ``chunk_index`` are ``None`` when the document was
    small enough to be kept whole.
    """

    doc_id: str
    content: str
    chunk_id: str | None = None
    chunk_index: int | None = None


class ScanEntry(BaseModel):
    """Cheap per-file record produced while scanning, no content read."""

    path: str
    mtime: float
    type: DocumentType


class StoredDocument(BaseModel):
    """A ``doc_meta`` row."""

    id: str
    path: str
    type: DocumentType
    title: str = ""
    size: int = 0
    mtime: float = 0.0
    ctime: float = 0.0
    content_hash: str = ""
    summary: str | None = None
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    last_processed_at: float = 0.0
    frontmatter: dict[str, Any] = Field(default_factory=dict)


class StoredChunk(BaseModel):
    """A ``doc_chunk`` row."""

    chunk_id: str
    doc_id: str
    chunk_index: int
    title: str = ""
    content: str
    embedding_pending: bool = False


# ---------------------------------------------------------------------------
# Embeddings, statistics, graph
# ---------------------------------------------------------------------------


class EmbeddingRecord(BaseModel):
    id: str
    file_id: str
    chunk_id: str | None = None
    chunk_index: int
    md5: str
    ctime: float
    mtime: float
    embedding: list[float]
    embedding_model: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def embedding_len(self) -> int:
        return len(self.embedding)

    @staticmethod
    def make_id(file_id: str, chunk_index: int) -> str:
        return f"{file_id}:chunk:{chunk_index}"

    @staticmethod
    def parse_id(record_id: str) -> tuple[str, int]:
        """Inverse of :meth:`make_id`: ``(file_id, chunk_index)``."""
        file_id, _, index = record_id.rpartition(":chunk:")
        return file_id, int(index)


class DocStatistics(BaseModel):
    doc_id: str
    word_count: int = 0
    char_count: int = 0
    language: str | None = None
    richness_score: float = 0.0
    last_open_ts: float | None = None
    open_count: int = 0
    updated_at: float = 0.0


class GraphNodeType(str, Enum):
    DOCUMENT = "document"
    TAG = "tag"
    CATEGORY = "category"
    RESOURCE = "resource"
    LINK = "link"
    CONCEPT = "concept"
    PERSON = "person"
    PROJECT = "project"
    CUSTOM = "custom"


class GraphEdgeType(str, Enum):
    REFERENCES = "references"
    TAGGED = "tagged"
    CATEGORIZED = "categorized"
    CONTAINS = "contains"
    RELATED = "related"
    PART_OF = "part_of"
    DEPENDS_ON = "depends_on"
    SIMILAR = "similar"
    CUSTOM = "custom"


class GraphNode(BaseModel):
    id: str
    type: GraphNodeType
    label: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: float = 0.0
    updated_at: float = 0.0


class GraphEdge(BaseModel):
    id: str
    from_node_id: str
    to_node_id: str
    type: GraphEdgeType
    weight: float = 1.0
    attributes: dict[str, Any] = Field(default_factory=dict)
    created_at: float = 0.0
    updated_at: float = 0.0


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


class IndexProgress(BaseModel):
    """Snapshot handed to progress callbacks at a bounded interval."""

    mode: str
    processed: int = 0
    total: int | None = None
    current_path: str | None = None


class IndexResult(BaseModel):
    """Counts affected by one full or incremental indexing pass."""

    mode: str
    scanned: int = 0
    added: int = 0
    modified: int = 0
    deleted: int = 0
    unchanged: int = 0
    touched: int = 0  # mtime changed, content hash did not
    failed: int = 0
    embedded_chunks: int = 0
    pending_embeddings: int = 0
    cancelled: bool = False
    started_at: datetime | None = None
    finished_at: datetime | None = None


class IndexStatus(BaseModel):
    built_at: datetime | None = None
    indexed_docs: int = 0
    total_chunks: int = 0
    total_embeddings: int = 0
    pending_embeddings: int = 0
    total_nodes: int = 0
    total_edges: int = 0


class ClearResult(BaseModel):
    documents_deleted: int = 0
    chunks_deleted: int = 0
    embeddings_deleted: int = 0
    nodes_deleted: int = 0
    edges_deleted: int = 0


class OrphanCleanupResult(BaseModel):
    found: int = 0
    deleted: int = 0


class HealthCheck(BaseModel):
    name: str
    ok: bool
    detail: str = ""


class HealthReport(BaseModel):
    checks: list[HealthCheck] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ok(self) -> bool:
        return all(c.ok for c in self.checks)


class SearchResult(BaseModel):
    """One document in a hybrid search response."""

    doc_id: str
    path: str
    title: str = ""
    type: DocumentType = DocumentType.UNKNOWN
    chunk_id: str | None = None
    snippet: str = ""
    score: float
    content_score: float = 0.0
    meta_score: float = 0.0
    fulltext_rank: int | None = None
    vector_rank: int | None = None
    meta_rank: int | None = None
    matched_sources: list[str] = Field(default_factory=list)


class SearchResponse(BaseModel):
    query: str
    mode: str
    results: list[SearchResult] = Field(default_factory=list)
    degraded: bool = False
    degraded_reason: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def count(self) -> int:
        return len(self.results)


class RelatedNode(BaseModel):
    doc_id: str
    path: str
    title: str = ""
    score: float
    physical: bool = False
    similarity: float | None = None
    dimension_ranks: dict[str, int] = Field(default_factory=dict)


class RelatedResponse(BaseModel):
    doc_id: str
    results: list[RelatedNode] = Field(default_factory=list)
    degraded: bool = False


class GraphPath(BaseModel):
    node_ids: list[str]
    labels: list[str] = Field(default_factory=list)
    edge_types: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hops(self) -> int:
        return max(0, len(self.node_ids) - 1)


class PathResult(BaseModel):
    source_id: str
    target_id: str
    paths: list[GraphPath] = Field(default_factory=list)
    iterations_run: int = 0
    partial: bool = False
