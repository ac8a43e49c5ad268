"""Shared data models for the standards catalog."""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class ComplianceLevel(str, Enum):
    """Obligation tier inferred from a standard's wording."""
    MANDATORY = "mandatory"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"


class RawPage(BaseModel):
    """A page as delivered by the crawler."""
    url: str
    title: str
    content: str
    category: str
    last_modified: Optional[datetime] = None
    source_org: Optional[str] = None
    links: List[str] = Field(default_factory=list)


class Document(BaseModel):
    """A catalogued standard."""
    id: str
    title: str
    category: str
    url: str
    content: str
    summary: Optional[str] = None
    last_updated: Optional[datetime] = None
    source_org: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    compliance_level: Optional[ComplianceLevel] = None
    related_standards: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Category(BaseModel):
    """Live projection of documents grouped by category."""
    name: str
    count: int
    description: Optional[str] = None


class SearchResult(BaseModel):
    """A document paired with its relevance for one query."""
    document: Document
    relevance_score: float = Field(ge=0.0)
    matched_fields: List[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
