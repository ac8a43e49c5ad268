"""Runtime configuration for the standards catalog.

All settings can be supplied through environment variables; see
``CatalogConfig.from_env``.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field

from indexer.hybrid import HybridOptions

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in _TRUE_VALUES


class CatalogConfig(BaseModel):
    """Catalog configuration."""
    db_path: str = Field(default="data/standards.db", description="SQLite database path")
    busy_timeout_ms: int = Field(default=30000, ge=0, description="SQLite lock wait in milliseconds")

    # Semantic search
    enable_semantic: bool = Field(default=True, description="Load the embedding model and vector index")
    embedding_model: str = Field(default="all-MiniLM-L6-v2", description="Sentence transformer model")
    embedding_cache_dir: Optional[str] = Field(default=None, description="Model download directory")

    # Hybrid ranking defaults
    semantic_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    semantic_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    max_results: int = Field(default=20, ge=1)

    categories_path: Optional[str] = Field(default=None, description="Category YAML file")

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    log_file: Optional[str] = Field(default=None)

    @classmethod
    def from_env(cls) -> 'CatalogConfig':
        """Create configuration from environment variables."""
        return cls(
            db_path=os.getenv('STANDARDS_DB_PATH', 'data/standards.db'),
            busy_timeout_ms=int(os.getenv('STANDARDS_BUSY_TIMEOUT_MS', '30000')),
            enable_semantic=_env_bool('STANDARDS_ENABLE_SEMANTIC', True),
            embedding_model=os.getenv('STANDARDS_EMBEDDING_MODEL', 'all-MiniLM-L6-v2'),
            embedding_cache_dir=os.getenv('STANDARDS_EMBEDDING_CACHE_DIR') or None,
            semantic_weight=float(os.getenv('STANDARDS_SEMANTIC_WEIGHT', '0.6')),
            semantic_threshold=float(os.getenv('STANDARDS_SEMANTIC_THRESHOLD', '0.3')),
            max_results=int(os.getenv('STANDARDS_MAX_RESULTS', '20')),
            categories_path=os.getenv('STANDARDS_CONFIG_PATH') or None,
            log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
            log_json=_env_bool('LOG_JSON', False),
            log_file=os.getenv('LOG_FILE') or None,
        )

    def hybrid_options(self) -> HybridOptions:
        return HybridOptions(
            semantic_weight=self.semantic_weight,
            semantic_threshold=self.semantic_threshold,
            max_results=self.max_results,
        )
