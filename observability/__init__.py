"""Observability package for the standards catalog."""

from .logging import setup_logging, get_logger, JSONFormatter, ColoredFormatter
from .prometheus_metrics import (
    record_search_metrics,
    record_semantic_fallback,
    record_embedding_time,
    record_indexing_metrics,
    record_db_metrics,
    record_index_rebuild,
    get_metrics_summary,
    export_metrics,
    catalog_registry
)

__all__ = [
    'setup_logging',
    'get_logger',
    'JSONFormatter',
    'ColoredFormatter',
    'record_search_metrics',
    'record_semantic_fallback',
    'record_embedding_time',
    'record_indexing_metrics',
    'record_db_metrics',
    'record_index_rebuild',
    'get_metrics_summary',
    'export_metrics',
    'catalog_registry'
]
