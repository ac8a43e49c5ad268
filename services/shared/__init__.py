"""Models shared between the store, the classifier and the catalog."""

from .models import (
    Category,
    ComplianceLevel,
    Document,
    RawPage,
    SearchResult,
    ValidationResult
)

__all__ = [
    'Category',
    'ComplianceLevel',
    'Document',
    'RawPage',
    'SearchResult',
    'ValidationResult'
]
