"""Sources package for the standards catalog.

Provides the curated category configuration and its loader.
"""

from .loader import (
    ApplicabilityContext,
    CategoryLoader,
    DEFAULT_CONFIG_PATH,
    StandardCategory,
)

__all__ = [
    'ApplicabilityContext',
    'CategoryLoader',
    'DEFAULT_CONFIG_PATH',
    'StandardCategory',
]
