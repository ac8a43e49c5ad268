"""Configuration module for the standards catalog.

Provides environment-driven settings for storage, semantic search and logging.
"""

from .settings import CatalogConfig

__all__ = [
    'CatalogConfig',
]
