"""Conversions between catalog models and SQLite column values.

List-valued fields (tags, related standards) are stored as JSON text and all
timestamps as ISO-8601 strings in UTC, so that lexical comparison in SQL
matches chronological order.
"""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.shared.models import ComplianceLevel, Document


def encode_list(values: Optional[List[str]]) -> str:
    return json.dumps(list(values or []))


def decode_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    value = json.loads(raw)
    if not isinstance(value, list):
        raise ValueError(f"Expected a JSON array, got {type(value).__name__}")
    return [str(item) for item in value]


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Normalize a datetime to a UTC ISO string; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def from_db_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    # SQLite's CURRENT_TIMESTAMP uses a space separator
    parsed = datetime.fromisoformat(raw.replace(' ', 'T'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def document_to_row(document: Document) -> Dict[str, Any]:
    """Column values for the documents table (store-managed timestamps excluded)."""
    return {
        'id': document.id,
        'title': document.title,
        'category': document.category,
        'url': document.url,
        'content': document.content,
        'summary': document.summary,
        'last_updated': to_db_timestamp(document.last_updated),
        'source_org': document.source_org,
        'tags': encode_list(document.tags),
        'compliance_level': document.compliance_level.value if document.compliance_level else None,
        'related_standards': encode_list(document.related_standards),
    }


def row_to_document(row: sqlite3.Row) -> Document:
    compliance = row['compliance_level']
    return Document(
        id=row['id'],
        title=row['title'],
        category=row['category'],
        url=row['url'],
        content=row['content'],
        summary=row['summary'] or None,
        last_updated=from_db_timestamp(row['last_updated']),
        source_org=row['source_org'] or None,
        tags=decode_list(row['tags']),
        compliance_level=ComplianceLevel(compliance) if compliance else None,
        related_standards=decode_list(row['related_standards']),
        created_at=from_db_timestamp(row['created_at']),
        updated_at=from_db_timestamp(row['updated_at']),
    )


def document_metadata(document: Document) -> Dict[str, Any]:
    """Flat metadata stored next to a document's embedding."""
    created_at = document.created_at or utc_now()
    return {
        'id': document.id,
        'title': document.title,
        'category': document.category,
        'source_org': document.source_org or '',
        'compliance_level': document.compliance_level.value if document.compliance_level else '',
        'url': document.url,
        'tags': list(document.tags),
        'last_updated': to_db_timestamp(document.last_updated) or '',
        'created_at': to_db_timestamp(created_at),
    }


def encode_metadata(metadata: Dict[str, Any]) -> str:
    return json.dumps(metadata, default=str)


def decode_metadata(raw: Optional[str]) -> Dict[str, Any]:
    return json.loads(raw) if raw else {}
