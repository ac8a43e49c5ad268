"""Pipelines package for the standards catalog.

Provides content classification and the ingestion pipeline.
"""

from .content_processor import ContentProcessor, is_valid_url
from .ingest import IngestReport, IngestResult, IngestStatus, StandardsIngestor, content_hash

__all__ = [
    # Classification
    'ContentProcessor',
    'is_valid_url',

    # Ingestion
    'IngestReport',
    'IngestResult',
    'IngestStatus',
    'StandardsIngestor',
    'content_hash',
]
