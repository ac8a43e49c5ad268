"""Unit tests for content classification.

Tests cover:
- Compliance level inference, including the mandatory/recommended tie
- Stable id generation
- Tag extraction order and limits
- Extractive summaries
- Related standard discovery
- Validation error accumulation
- Change detection used by re-ingestion
"""

from datetime import datetime, timezone

import pytest

from pipelines.content_processor import (
    MAX_RELATED,
    MAX_TAGS,
    TECHNICAL_TERMS,
    ContentProcessor,
    is_valid_url,
)
from services.shared.models import ComplianceLevel

from conftest import OAUTH_CONTENT, make_document, make_page


@pytest.fixture
def processor():
    return ContentProcessor()


class TestComplianceLevel:

    def test_mandatory(self, processor):
        content = "Services must implement HTTPS and must log access."
        assert processor.determine_compliance_level(content) == ComplianceLevel.MANDATORY

    def test_recommended(self, processor):
        content = "Services should implement caching. This is recommended."
        assert processor.determine_compliance_level(content) == ComplianceLevel.RECOMMENDED

    def test_optional(self, processor):
        content = "Services may cache responses."
        assert processor.determine_compliance_level(content) == ComplianceLevel.OPTIONAL

    def test_no_indicators(self, processor):
        assert processor.determine_compliance_level("The weather is pleasant today.") is None

    def test_tie_between_mandatory_and_recommended_falls_through(self, processor):
        content = "You must do this and you should do that."
        assert processor.indicator_counts(content) == (1, 1, 0)
        assert processor.determine_compliance_level(content) == ComplianceLevel.RECOMMENDED

    def test_counts_distinct_indicators(self, processor):
        assert processor.indicator_counts("must must must")[0] == 1


class TestGenerateId:

    def test_slug_and_hash(self, processor):
        doc_id = processor.generate_id("https://www.gov.uk/guidance/gds-api-technical-and-data-standards")
        slug, digest = doc_id.rsplit("-", 1)
        assert slug == "guidance-gdsapitechnicalanddatastandards"
        assert len(digest) == 8
        int(digest, 16)

    def test_stable(self, processor):
        url = "https://www.gov.uk/service-manual/service-standard"
        assert processor.generate_id(url) == processor.generate_id(url)

    def test_distinct_urls_distinct_ids(self, processor):
        first = processor.generate_id("https://www.gov.uk/guidance/a")
        second = processor.generate_id("https://www.ncsc.gov.uk/guidance/a")
        assert first != second
        assert first.startswith("guidance-a-")

    def test_root_url_is_hash_only(self, processor):
        doc_id = processor.generate_id("https://opensource.org")
        assert len(doc_id) == 8
        assert "-" not in doc_id


class TestTags:

    def test_vocabulary_order(self, processor):
        tags = processor.extract_tags("API Security", "Use OAuth over HTTPS.")
        assert tags == ["api", "oauth", "https", "security"]

    def test_capped(self, processor):
        tags = processor.extract_tags("", " ".join(TECHNICAL_TERMS))
        assert len(tags) == MAX_TAGS
        assert tags == list(TECHNICAL_TERMS[:MAX_TAGS])

    def test_no_duplicates(self, processor):
        tags = processor.extract_tags("API api API", "api")
        assert tags.count("api") == 1


class TestSummary:

    def test_short_sentences_dropped(self, processor):
        assert processor.generate_summary("Too short. Tiny!") is None

    def test_empty_content(self, processor):
        assert processor.generate_summary("") is None

    def test_first_sentences_preferred(self, processor):
        content = (
            "This standard explains how government services publish data. "
            "Unrelated filler text appears here for padding purposes only. "
            "Another filler sentence follows without any special words."
        )
        summary = processor.generate_summary(content)
        assert summary.startswith("This standard explains how government services publish data")
        assert summary.endswith(".")

    def test_length_cap(self, processor):
        sentence = "This standard requires every service to follow guidance " + "word " * 50
        content = ". ".join([sentence] * 5)
        summary = processor.generate_summary(content)
        assert len(summary) == 500
        assert summary.endswith("...")


class TestRelated:

    def test_shared_tags_and_category(self, processor):
        document = make_document("a", tags=["api", "oauth"], category="APIs")
        same_tags = make_document("b", tags=["api", "oauth"], category="Data",
                                  content="Unrelated words about nothing in particular here.")
        same_category = make_document("c", category="APIs", content="Completely different prose.")
        unrelated = make_document("d", title="Colour", category="Accessibility",
                                  content="Contrast helps readers.")

        related = processor.find_related(document, [document, same_tags, same_category, unrelated])

        assert related == ["b", "c"]

    def test_shared_keywords(self, processor):
        document = make_document("a", title="Pipelines", category="Data",
                                 content="Telemetry pipelines require retention schedules.")
        other = make_document("b", title="Retention", category="Cloud Strategy",
                              content="Retention schedules for telemetry pipelines.")
        assert processor.find_related(document, [other]) == ["b"]

    def test_capped(self, processor):
        document = make_document("a", category="APIs")
        corpus = [make_document(f"doc-{i}", category="APIs") for i in range(15)]
        related = processor.find_related(document, corpus)
        assert len(related) == MAX_RELATED
        assert "a" not in related


class TestValidation:

    def test_accumulates_errors(self, processor):
        document = make_document("", title="", url="not a url", content="x" * 60)
        result = processor.validate(document)
        assert not result.valid
        assert result.errors == [
            "Standard ID is required",
            "Standard title is required",
            "Valid URL is required",
        ]

    def test_valid_document(self, processor):
        result = processor.validate(make_document())
        assert result.valid
        assert result.errors == []

    def test_short_content_and_missing_category(self, processor):
        result = processor.validate(make_document(content="too short", category=" "))
        assert len(result.errors) == 2
        assert "Standard category is required" in result.errors

    @pytest.mark.parametrize("url,expected", [
        ("https://www.gov.uk/guidance", True),
        ("http://example.org", True),
        ("www.gov.uk/guidance", False),
        ("", False),
        (None, False),
    ])
    def test_is_valid_url(self, url, expected):
        assert is_valid_url(url) is expected


class TestClassify:

    def test_classify_page(self, processor):
        page = make_page()
        document = processor.classify(page)

        assert document.id == processor.generate_id(page.url)
        assert document.url == page.url
        assert document.category == "APIs"
        assert document.compliance_level == ComplianceLevel.MANDATORY
        assert {"api", "rest", "oauth", "https"} <= set(document.tags)
        assert document.summary is not None and len(document.summary) <= 500
        assert document.last_updated == page.last_modified
        assert document.related_standards == []
        assert document.created_at is None


class TestChangeDetection:

    def test_identical(self, processor):
        document = make_document()
        assert processor.changed_fields(document, document.model_copy()) == {}
        assert not processor.has_content_changed(document, document.model_copy())

    def test_changed_title(self, processor):
        existing = make_document()
        updated = make_document(title="New title")
        assert processor.changed_fields(existing, updated) == {
            "title": ("API authentication", "New title"),
        }

    def test_naive_and_aware_same_instant(self, processor):
        existing = make_document(last_updated=datetime(2024, 1, 1, tzinfo=timezone.utc))
        updated = make_document(last_updated=datetime(2024, 1, 1))
        assert not processor.has_content_changed(existing, updated)

    def test_tag_order_ignored(self, processor):
        existing = make_document(tags=["api", "rest"])
        updated = make_document(tags=["rest", "api"])
        assert not processor.has_content_changed(existing, updated)

    def test_content_change(self, processor):
        existing = make_document()
        updated = make_document(content=OAUTH_CONTENT + " Extra sentence.")
        assert "content" in processor.changed_fields(existing, updated)
