"""Runtime configuration for memex."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class Config:
    """Memory configuration with sensible defaults."""

    db_path: Path = Path(os.environ.get("MEMEX_DB_PATH", Path.home() / ".memex" / "lancedb"))
    kv_table_name: str = "kv_store"
    store_key: str = "vector_db"
    embedding_provider: str = os.environ.get("EMBEDDING_PROVIDER", "local")  # local | ollama | google | hash
    embedding_model: str = os.environ.get("EMBEDDING_MODEL", "all-MiniLM-L6-v2")
    embedding_dim: int = int(os.environ.get("EMBEDDING_DIM", "384"))
    ollama_base_url: str = os.environ.get("OLLAMA_BASE_URL", "http://localhost:11434")
    llm_model: str = "gemini-3-flash-preview"

    # Embedder
    max_text_length: int = 512  # model token budget, approximated in chars
    chunk_size: int = 500
    chunk_overlap_words: int = 10
    request_timeout: float = 60.0
    init_timeout: float = 30.0

    # Store
    max_content_length: int = 10_000
    summary_length: int = 200

    # Retrieval
    vector_weight: float = 0.7
    keyword_weight: float = 0.3  # Weight for keyword hits in hybrid fusion
    hybrid_similarity_floor: float = 0.3
    search_similarity_floor: float = 0.5
    keyword_score_step: float = 0.05
    default_limit: int = 5
    max_limit: int = 50

    # Serendipity
    serendipity_threshold: float = 0.25
    serendipity_min_content: int = 100
    recall_query_length: int = 1000
    related_limit: int = 5
    max_related_display: int = 3

    # Knowledge graph
    graph_similarity_threshold: float = 0.15

    # Backup
    backup_version: int = 1
    backup_dir: Path = Path(os.environ.get("MEMEX_BACKUP_DIR", Path.home() / "Downloads"))


CONFIG = Config()
