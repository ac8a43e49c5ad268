"""Prometheus metrics for the standards catalog."""

import logging
from typing import Any, Dict, Optional

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.core import CollectorRegistry

logger = logging.getLogger(__name__)

# Dedicated registry so embedding processes can expose catalog metrics only
catalog_registry = CollectorRegistry()

# Search metrics
search_requests = Counter(
    'standards_search_requests_total',
    'Total number of search requests',
    ['search_type', 'status'],
    registry=catalog_registry
)

search_duration = Histogram(
    'standards_search_duration_seconds',
    'Search request duration in seconds',
    ['search_type'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=catalog_registry
)

search_results_count = Histogram(
    'standards_search_results_count',
    'Number of search results returned',
    ['search_type'],
    buckets=[1, 5, 10, 25, 50, 100, 250, 500],
    registry=catalog_registry
)

semantic_fallbacks = Counter(
    'standards_semantic_fallbacks_total',
    'Searches answered without semantic results',
    ['reason'],
    registry=catalog_registry
)

embedding_duration = Histogram(
    'standards_embedding_duration_seconds',
    'Embedding generation duration in seconds',
    ['model'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
    registry=catalog_registry
)

# Database metrics
db_query_duration = Histogram(
    'standards_db_query_duration_seconds',
    'Database query duration in seconds',
    ['query_type'],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0],
    registry=catalog_registry
)

db_query_count = Counter(
    'standards_db_queries_total',
    'Total number of database queries',
    ['query_type', 'status'],
    registry=catalog_registry
)

index_rebuilds = Counter(
    'standards_lexical_index_rebuilds_total',
    'Lexical index rebuilds',
    ['reason', 'status'],
    registry=catalog_registry
)

index_rebuild_duration = Histogram(
    'standards_lexical_index_rebuild_seconds',
    'Lexical index rebuild duration in seconds',
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0],
    registry=catalog_registry
)

# Indexing metrics
indexing_documents = Counter(
    'standards_indexing_documents_total',
    'Total number of ingested pages by outcome',
    ['category', 'status'],
    registry=catalog_registry
)

indexing_duration = Histogram(
    'standards_indexing_duration_seconds',
    'Page ingestion duration in seconds',
    ['category'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0],
    registry=catalog_registry
)

# Error metrics
error_count = Counter(
    'standards_errors_total',
    'Total number of errors',
    ['error_type', 'component'],
    registry=catalog_registry
)


def record_search_metrics(search_type: str, duration: float, result_count: int,
                          error: Optional[str] = None) -> None:
    """Record search-related metrics."""
    status = "error" if error else "success"

    search_requests.labels(search_type=search_type, status=status).inc()
    search_duration.labels(search_type=search_type).observe(duration)

    if not error:
        search_results_count.labels(search_type=search_type).observe(result_count)
    else:
        error_count.labels(error_type="search_error", component="search").inc()


def record_semantic_fallback(reason: str) -> None:
    semantic_fallbacks.labels(reason=reason).inc()


def record_embedding_time(model: str, duration: float) -> None:
    embedding_duration.labels(model=model).observe(duration)


def record_indexing_metrics(category: str, status: str, duration: float,
                            error: Optional[str] = None) -> None:
    """Record ingestion-related metrics."""
    indexing_documents.labels(category=category, status=status).inc()

    if not error:
        indexing_duration.labels(category=category).observe(duration)
    else:
        error_count.labels(error_type="indexing_error", component="indexing").inc()


def record_db_metrics(query_type: str, duration: float, error: Optional[str] = None) -> None:
    """Record database-related metrics."""
    status = "error" if error else "success"

    db_query_count.labels(query_type=query_type, status=status).inc()

    if not error:
        db_query_duration.labels(query_type=query_type).observe(duration)
    else:
        error_count.labels(error_type="db_error", component="database").inc()


def record_index_rebuild(reason: str, duration: float, error: Optional[str] = None) -> None:
    status = "error" if error else "success"
    index_rebuilds.labels(reason=reason, status=status).inc()
    if not error:
        index_rebuild_duration.observe(duration)
    else:
        error_count.labels(error_type="index_rebuild_error", component="database").inc()


def _counter_total(counter: Counter) -> float:
    total = 0.0
    for metric in counter.collect():
        for sample in metric.samples:
            if sample.name.endswith('_total'):
                total += sample.value
    return total


def get_metrics_summary() -> Dict[str, Any]:
    """Get a summary of current metrics."""
    return {
        "search_requests_total": _counter_total(search_requests),
        "semantic_fallbacks_total": _counter_total(semantic_fallbacks),
        "indexing_documents_total": _counter_total(indexing_documents),
        "lexical_index_rebuilds_total": _counter_total(index_rebuilds),
        "errors_total": _counter_total(error_count),
    }


def export_metrics() -> bytes:
    """Render the catalog registry in the Prometheus text format."""
    return generate_latest(catalog_registry)
