"""Tests for environment-driven configuration."""

import pytest
from pydantic import ValidationError

from config.settings import CatalogConfig


ENV_NAMES = [
    "STANDARDS_DB_PATH", "STANDARDS_BUSY_TIMEOUT_MS", "STANDARDS_ENABLE_SEMANTIC",
    "STANDARDS_EMBEDDING_MODEL", "STANDARDS_EMBEDDING_CACHE_DIR", "STANDARDS_SEMANTIC_WEIGHT",
    "STANDARDS_SEMANTIC_THRESHOLD", "STANDARDS_MAX_RESULTS", "STANDARDS_CONFIG_PATH",
    "LOG_LEVEL", "LOG_JSON", "LOG_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)


class TestCatalogConfig:

    def test_defaults(self):
        config = CatalogConfig.from_env()
        assert config.db_path == "data/standards.db"
        assert config.enable_semantic is True
        assert config.embedding_cache_dir is None
        assert config.log_level == "INFO"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("STANDARDS_DB_PATH", "/tmp/catalog.db")
        monkeypatch.setenv("STANDARDS_ENABLE_SEMANTIC", "false")
        monkeypatch.setenv("STANDARDS_SEMANTIC_WEIGHT", "0.25")
        monkeypatch.setenv("STANDARDS_MAX_RESULTS", "5")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("LOG_JSON", "yes")

        config = CatalogConfig.from_env()

        assert config.db_path == "/tmp/catalog.db"
        assert config.enable_semantic is False
        assert config.semantic_weight == 0.25
        assert config.max_results == 5
        assert config.log_level == "DEBUG"
        assert config.log_json is True

    def test_out_of_range_weight(self, monkeypatch):
        monkeypatch.setenv("STANDARDS_SEMANTIC_WEIGHT", "2")
        with pytest.raises(ValidationError):
            CatalogConfig.from_env()

    def test_hybrid_options(self):
        options = CatalogConfig(semantic_weight=0.3, semantic_threshold=0.1, max_results=4).hybrid_options()
        assert (options.semantic_weight, options.semantic_threshold, options.max_results) == (0.3, 0.1, 4)
