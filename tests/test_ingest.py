"""Tests for the ingestion pipeline."""

from unittest.mock import AsyncMock, Mock

import pytest

from indexer.outcome import FailureReason, Outcome
from pipelines.content_processor import ContentProcessor
from pipelines.ingest import IngestStatus, StandardsIngestor, content_hash

from conftest import OAUTH_CONTENT, WCAG_CONTENT, make_page


@pytest.fixture
def ingestor(store):
    return StandardsIngestor(store)


@pytest.fixture
def semantic_ingestor(store, semantic_index):
    return StandardsIngestor(store, semantic_index=semantic_index)


class TestIngest:

    async def test_new_page(self, ingestor, store):
        page = make_page()

        result = await ingestor.ingest(page)

        assert result.status is IngestStatus.NEW
        assert result.document.id == ContentProcessor().generate_id(page.url)
        assert await store.get(result.document.id) == result.document

        log = await store.scraping_log(page.url)
        assert log[0]["status"] == "success"
        assert log[0]["content_hash"] == content_hash(page.content)
        assert log[0]["page_size"] == len(page.content.encode("utf-8"))

    async def test_reingest_is_idempotent(self, ingestor, store):
        page = make_page()
        first = await ingestor.ingest(page)
        snapshot = [d.model_dump() for d in await store.all_documents()]

        second = await ingestor.ingest(page)

        assert second.status is IngestStatus.SKIPPED
        assert second.document.id == first.document.id
        assert [d.model_dump() for d in await store.all_documents()] == snapshot
        assert await store.index_entry_count() == 1
        assert [e["status"] for e in await store.scraping_log(page.url)] == ["skipped", "success"]

    async def test_changed_page_is_updated(self, ingestor, store):
        await ingestor.ingest(make_page())
        result = await ingestor.ingest(make_page(content=OAUTH_CONTENT + " Keys rotate every ninety days."))

        assert result.status is IngestStatus.UPDATED
        assert "content" in result.changes
        assert len(await store.all_documents()) == 1

        history = await store.update_history(result.document.id)
        assert "content" in {entry["field_name"] for entry in history}

    async def test_invalid_page_is_rejected(self, ingestor, store):
        page = make_page(content="Too short.")

        result = await ingestor.ingest(page)

        assert result.status is IngestStatus.FAILED
        assert result.document is None
        assert result.errors == ["Standard content must be at least 50 characters long"]
        assert await store.all_documents() == []
        log = await store.scraping_log(page.url)
        assert log[0]["status"] == "failed"
        assert "at least 50 characters" in log[0]["error_message"]

    async def test_related_standards_found_on_ingest(self, ingestor):
        first = await ingestor.ingest(make_page("guidance/api-one"))
        second = await ingestor.ingest(make_page("guidance/api-two", title="API documentation"))

        assert second.document.related_standards == [first.document.id]

    async def test_semantic_failure_does_not_block(self, store):
        index = Mock()
        index.add_documents = AsyncMock(return_value=Outcome.failed(FailureReason.SEMANTIC_ERROR, "down"))
        ingestor = StandardsIngestor(store, semantic_index=index)

        result = await ingestor.ingest(make_page())

        assert result.status is IngestStatus.NEW
        index.add_documents.assert_awaited_once()
        assert await store.get(result.document.id) is not None

    async def test_indexes_semantically(self, semantic_ingestor, semantic_index):
        await semantic_ingestor.ingest(make_page())
        assert (await semantic_index.stats())["total_documents"] == 1


class TestIngestBatch:

    async def test_report_and_relationship_refresh(self, ingestor, store):
        pages = [
            make_page("guidance/api-one"),
            make_page("guidance/api-two", title="API documentation"),
            make_page("guidance/accessibility", title="Accessibility testing",
                      category="Accessibility", content=WCAG_CONTENT),
            make_page("guidance/broken", content="short"),
        ]

        report = await ingestor.ingest_batch(pages)

        assert report.summary() == {"total": 4, "new": 3, "updated": 0, "skipped": 0, "failed": 1}
        assert report.duration is not None

        first, second = report.results[0].document, report.results[1].document
        assert first.related_standards == [second.id]
        assert second.related_standards == [first.id]
        assert (await store.get(first.id)).related_standards == [second.id]
        assert report.results[2].document.related_standards == []

    async def test_repeat_batch_skips(self, ingestor):
        pages = [make_page("guidance/api-one"), make_page("guidance/api-two")]
        await ingestor.ingest_batch(pages)

        report = await ingestor.ingest_batch(pages)

        assert report.skipped == 2
        assert report.new == 0

    async def test_refresh_related_only_rewrites_changes(self, ingestor):
        await ingestor.ingest_batch([make_page("guidance/api-one"), make_page("guidance/api-two")])
        assert await ingestor.refresh_related() == {}


class TestSemanticSync:

    async def test_without_index(self, ingestor):
        outcome = await ingestor.sync_semantic_index()
        assert outcome.failure is FailureReason.SEMANTIC_UNAVAILABLE

    async def test_reindexes_every_document(self, store, semantic_index):
        plain = StandardsIngestor(store)
        await plain.ingest_batch([make_page("guidance/api-one"), make_page("guidance/api-two")])
        assert (await semantic_index.stats())["total_documents"] == 0

        outcome = await StandardsIngestor(store, semantic_index=semantic_index).sync_semantic_index()

        assert outcome.ok and outcome.value == 2
        assert (await semantic_index.stats())["total_documents"] == 2
