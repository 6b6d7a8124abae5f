"""Application settings via pydantic-settings."""

from pathlib import Path

from pydantic import BaseModel
from pydantic_settings import BaseSettings

from vaultrag.core.models import ChunkingSettings, DocumentType


class GraphRRFWeights(BaseModel):
    """Per-dimension weights for related-document ranking."""

    density: float = 1.0
    update_time: float = 1.2  # slightly favour recently edited notes
    richness: float = 0.8
    open_count: float = 0.9
    last_open: float = 0.7
    similarity: float = 1.1


_DEFAULT_INCLUDED_TYPES: list[DocumentType] = [
    DocumentType.MARKDOWN,
    DocumentType.TXT,
    DocumentType.CSV,
    DocumentType.JSON,
    DocumentType.HTML,
    DocumentType.XML,
    DocumentType.PDF,
    DocumentType.IMAGE,
    DocumentType.DOCX,
    DocumentType.PPTX,
    DocumentType.EXCALIDRAW,
    DocumentType.CANVAS,
    DocumentType.DATALOOM,
]


class Settings(BaseSettings):
    """Global configuration for vaultrag.

    Values can be set via environment variables prefixed with VAULTRAG_,
    e.g. VAULTRAG_VAULT_DIR=/path/to/vault.  Nested models such as
    ``graph_rrf_weights`` accept a JSON object.
    """

    model_config = {"env_prefix": "VAULTRAG_"}

    # Paths
    vault_dir: Path = Path(".")
    index_dir: Path = Path.home() / ".vaultrag"

    # Chunking
    max_chunk_size: int = 1000
    chunk_overlap: int = 200
    min_document_size_for_chunking: int = 1500

    # Scanning
    ignore_patterns: list[str] = [".obsidian/**", ".trash/**", ".git/**"]
    include_document_types: list[DocumentType] = list(_DEFAULT_INCLUDED_TYPES)
    scan_batch_size: int = 100
    load_batch_size: int = 25
    index_concurrency: int = 4
    progress_interval: float = 3.0  # seconds between progress reports
    reindex_debounce: float = 0.5

    # Embedding
    # all-MiniLM-L6-v2 is 384-dim; switching models requires a full re-index
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_enabled: bool = True
    embedding_batch_size: int = 32
    embedding_timeout: float = 30.0

    # Summaries
    summary_model: str | None = None
    short_summary_length: int = 150
    full_summary_length: int = 2000
    generate_summaries: bool = False

    # Search
    default_top_k: int = 50
    over_fetch_factor: int = 2
    default_search_mode: str = "vault"
    rrf_k: int = 60
    rrf_content_weight: float = 0.6
    rrf_content_vs_meta_weight: float = 0.5

    # Graph
    graph_rrf_weights: GraphRRFWeights = GraphRRFWeights()
    physical_connection_bonus: float = 0.1
    ranking_pool_size: int = 500
    related_max_hops: int = 2
    semantic_neighbor_k: int = 20
    path_semantic_neighbor_k: int = 5
    path_iterations: int = 3
    path_max_hops: int = 5
    path_max_hops_limit: int = 5
    path_step_time_limit: float = 10.0

    # Caches
    cache_max_size: int = 256

    @property
    def chunking(self) -> ChunkingSettings:
        return ChunkingSettings(
            max_chunk_size=self.max_chunk_size,
            chunk_overlap=self.chunk_overlap,
            min_document_size_for_chunking=self.min_document_size_for_chunking,
        )

    @property
    def search_db_path(self) -> Path:
        return self.index_dir / "search.sqlite"

    @property
    def lancedb_path(self) -> Path:
        return self.index_dir / "lancedb"

    @property
    def bm25_path(self) -> Path:
        return self.index_dir / "bm25_content.pkl"

    @property
    def meta_bm25_path(self) -> Path:
        return self.index_dir / "bm25_meta.pkl"
