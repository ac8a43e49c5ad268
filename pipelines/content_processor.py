"""Content classification for scraped standards pages.

Turns a crawler record into a catalog ``Document``: a stable id, vocabulary
tags, an inferred compliance level and an extractive summary. Everything here
is deterministic and free of I/O, so one ``ContentProcessor`` can be shared by
every caller.
"""

import hashlib
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from indexer.serialization import to_db_timestamp
from services.shared.models import ComplianceLevel, Document, RawPage, ValidationResult

logger = logging.getLogger(__name__)

MAX_TAGS = 20
MAX_RELATED = 10
MAX_SUMMARY_LENGTH = 500
MIN_CONTENT_LENGTH = 50

TECHNICAL_TERMS = (
    'api', 'rest', 'soap', 'graphql', 'json', 'xml',
    'oauth', 'jwt', 'https', 'ssl', 'tls',
    'gdpr', 'data protection', 'privacy',
    'cloud', 'aws', 'azure', 'saas', 'paas', 'iaas',
    'security', 'cyber security', 'malware', 'phishing',
    'accessibility', 'wcag', 'screen reader',
    'agile', 'scrum', 'devops', 'ci/cd',
    'open source', 'open data', 'open standards',
    'docker', 'kubernetes', 'microservices',
)

GOVERNMENT_TERMS = (
    'gds', 'cabinet office', 'ncsc', 'hmrc', 'dvla',
    'digital service standard', 'government digital service',
    'public sector', 'civil service', 'whitehall',
    'transparency', 'open government', 'digital by default',
)

COMPLIANCE_TERMS = (
    'iso 27001', 'pci dss', 'sox', 'hipaa',
    'mandatory', 'recommended', 'optional',
    'compliance', 'audit', 'assessment',
    'risk management', 'governance',
)

MANDATORY_INDICATORS = (
    'must', 'shall', 'required', 'mandatory', 'obligation',
    'compulsory', 'essential', 'critical requirement',
)

RECOMMENDED_INDICATORS = (
    'should', 'recommended', 'best practice', 'advised',
    'suggested', 'good practice', 'guideline',
)

OPTIONAL_INDICATORS = (
    'may', 'can', 'optional', 'consider', 'might',
    'could', 'possible', 'alternative',
)

SUMMARY_KEY_TERMS = (
    'standard', 'requirement', 'must', 'should', 'guidance',
    'policy', 'procedure', 'compliance', 'security', 'api',
    'data', 'service', 'digital', 'technology', 'government',
)

STOP_WORDS = frozenset({
    'this', 'that', 'with', 'have', 'will', 'from', 'they', 'know',
    'want', 'been', 'good', 'much', 'some', 'time', 'very', 'when',
    'come', 'here', 'just', 'like', 'long', 'make', 'many', 'over',
    'such', 'take', 'than', 'them', 'well', 'were', 'government',
})

SENTENCE_SPLIT = re.compile(r'[.!?]+')
NON_WORD = re.compile(r'[^\w]')
NON_SLUG = re.compile(r'[^a-z0-9]')


def is_valid_url(url: Optional[str]) -> bool:
    """True for absolute URLs with a scheme and a host."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return bool(parsed.scheme) and bool(parsed.netloc)


class ContentProcessor:
    """Derives structured catalog records from raw page text."""

    def classify(self, page: RawPage) -> Document:
        """Build a document from a crawled page.

        ``created_at``/``updated_at`` are left unset; the store owns them.
        """
        return Document(
            id=self.generate_id(page.url),
            title=page.title,
            category=page.category,
            url=page.url,
            content=page.content,
            summary=self.generate_summary(page.content),
            last_updated=page.last_modified,
            source_org=page.source_org,
            tags=self.extract_tags(page.title, page.content),
            compliance_level=self.determine_compliance_level(page.content),
            related_standards=[],
        )

    def generate_id(self, url: str) -> str:
        """Stable id: URL path slug plus an 8 hex character hash of the URL."""
        try:
            path = urlparse(url).path
        except ValueError:
            path = ''
        segments = [NON_SLUG.sub('', segment.lower()) for segment in path.split('/')]
        slug = '-'.join(segment for segment in segments if segment)
        digest = hashlib.md5(url.encode('utf-8')).hexdigest()[:8]
        return f"{slug}-{digest}" if slug else digest

    def extract_tags(self, title: str, content: str) -> List[str]:
        text = f"{title} {content}".lower()
        tags: List[str] = []
        for vocabulary in (TECHNICAL_TERMS, GOVERNMENT_TERMS, COMPLIANCE_TERMS):
            for term in vocabulary:
                if term in text and term not in tags:
                    tags.append(term)
        return tags[:MAX_TAGS]

    def indicator_counts(self, content: str) -> Tuple[int, int, int]:
        """How many distinct indicators of each tier appear in the content."""
        lowered = content.lower()

        def count(indicators: Iterable[str]) -> int:
            return sum(1 for term in indicators if term in lowered)

        return (
            count(MANDATORY_INDICATORS),
            count(RECOMMENDED_INDICATORS),
            count(OPTIONAL_INDICATORS),
        )

    def determine_compliance_level(self, content: str) -> Optional[ComplianceLevel]:
        mandatory, recommended, optional = self.indicator_counts(content)

        # A mandatory count tied with recommended falls through to the
        # recommended/optional comparison.
        if mandatory > recommended and mandatory > optional:
            return ComplianceLevel.MANDATORY
        if recommended > optional:
            return ComplianceLevel.RECOMMENDED
        if optional > 0:
            return ComplianceLevel.OPTIONAL
        return None

    def generate_summary(self, content: str, max_length: int = MAX_SUMMARY_LENGTH) -> Optional[str]:
        """Extractive summary of the three best scoring sentences."""
        sentences = [s.strip() for s in SENTENCE_SPLIT.split(content) if len(s.strip()) > 10]
        if not sentences:
            return None

        scored = []
        for index, sentence in enumerate(sentences):
            lowered = sentence.lower()
            score = max(0, 10 - index)
            score += sum(2 for term in SUMMARY_KEY_TERMS if term in lowered)
            if 10 <= len(sentence.split()) <= 30:
                score += 3
            scored.append((score, sentence))

        # sorted() is stable, so equal scores keep document order
        top = [sentence for _, sentence in sorted(scored, key=lambda item: item[0], reverse=True)[:3]]
        summary = '. '.join(top) + '.'

        if len(summary) > max_length:
            summary = summary[:max_length - 3] + '...'
        return summary

    def extract_keywords(self, text: str) -> set:
        words = (NON_WORD.sub('', word).lower() for word in text.split())
        return {word for word in words if len(word) > 3 and word not in STOP_WORDS}

    def _related_text(self, document: Document) -> str:
        return f"{document.title} {document.content} {' '.join(document.tags)}".lower()

    def find_related(self, document: Document, corpus: Iterable[Document]) -> List[str]:
        """Ids of corpus documents related to ``document`` by tags, category or keywords."""
        related: List[str] = []
        keywords = self.extract_keywords(self._related_text(document))
        tags = set(document.tags)

        for other in corpus:
            if other.id == document.id or other.id in related:
                continue

            shared_tags = tags.intersection(other.tags)
            if len(shared_tags) >= 2:
                related.append(other.id)
                continue

            if other.category == document.category and len(related) < MAX_RELATED:
                related.append(other.id)
                continue

            shared_keywords = keywords.intersection(self.extract_keywords(self._related_text(other)))
            if len(shared_keywords) >= 3:
                related.append(other.id)

        return related[:MAX_RELATED]

    def validate(self, document: Document) -> ValidationResult:
        """Check a document, reporting every violated rule at once."""
        errors: List[str] = []

        if not document.id or not document.id.strip():
            errors.append('Standard ID is required')

        if not document.title or not document.title.strip():
            errors.append('Standard title is required')

        if not is_valid_url(document.url):
            errors.append('Valid URL is required')

        if not document.content or len(document.content.strip()) < MIN_CONTENT_LENGTH:
            errors.append(f'Standard content must be at least {MIN_CONTENT_LENGTH} characters long')

        if not document.category or not document.category.strip():
            errors.append('Standard category is required')

        return ValidationResult(valid=not errors, errors=errors)

    def changed_fields(self, existing: Document, updated: Document) -> Dict[str, Tuple[str, str]]:
        """Old and new values of every content field that differs."""
        changes: Dict[str, Tuple[str, str]] = {}
        for name in ('title', 'content', 'category', 'summary', 'source_org', 'compliance_level'):
            old, new = getattr(existing, name), getattr(updated, name)
            if old != new:
                changes[name] = (_display(old), _display(new))
        if sorted(existing.tags) != sorted(updated.tags):
            changes['tags'] = (', '.join(existing.tags), ', '.join(updated.tags))
        old_ts, new_ts = to_db_timestamp(existing.last_updated), to_db_timestamp(updated.last_updated)
        if old_ts != new_ts:
            changes['last_updated'] = (old_ts, new_ts)
        return changes

    def has_content_changed(self, existing: Document, updated: Document) -> bool:
        return bool(self.changed_fields(existing, updated))


def _display(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, ComplianceLevel):
        return value.value
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)
