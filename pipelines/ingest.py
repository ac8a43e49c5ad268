"""Ingestion pipeline: crawler records in, catalogued standards out.

Each page is classified, validated, compared with the stored record and only
written when something changed. Every attempt leaves a row in the scrape log.
Semantic indexing is best-effort: a failure there is logged and the lexical
record still stands.
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from indexer.document_store import DocumentStore, DocumentStoreError
from indexer.outcome import FailureReason, Outcome
from indexer.semantic_index import SemanticIndex
from indexer.serialization import utc_now
from observability.prometheus_metrics import record_indexing_metrics
from services.shared.models import Document, RawPage
from .content_processor import ContentProcessor

logger = logging.getLogger(__name__)

SEMANTIC_BATCH_SIZE = 32


class IngestStatus(str, Enum):
    NEW = "new"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class IngestResult:
    """Outcome of ingesting a single page."""
    url: str
    status: IngestStatus
    document: Optional[Document] = None
    errors: List[str] = field(default_factory=list)
    changes: Dict[str, Tuple[Optional[str], Optional[str]]] = field(default_factory=dict)


@dataclass
class IngestReport:
    """Results of an ingestion batch."""
    results: List[IngestResult] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = utc_now()

    def count(self, status: IngestStatus) -> int:
        return sum(1 for result in self.results if result.status is status)

    @property
    def new(self) -> int:
        return self.count(IngestStatus.NEW)

    @property
    def updated(self) -> int:
        return self.count(IngestStatus.UPDATED)

    @property
    def skipped(self) -> int:
        return self.count(IngestStatus.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(IngestStatus.FAILED)

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        return None

    def finish(self):
        """Mark the batch as finished."""
        self.end_time = utc_now()

    def summary(self) -> Dict[str, int]:
        return {
            'total': len(self.results),
            'new': self.new,
            'updated': self.updated,
            'skipped': self.skipped,
            'failed': self.failed,
        }


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


class StandardsIngestor:
    """Writes classified pages into the store and, when present, the semantic index."""

    def __init__(self, store: DocumentStore, processor: Optional[ContentProcessor] = None,
                 semantic_index: Optional[SemanticIndex] = None):
        self.store = store
        self.processor = processor or ContentProcessor()
        self.semantic_index = semantic_index

    async def ingest(self, page: RawPage) -> IngestResult:
        """Ingest one page.

        Invalid pages produce a ``failed`` result, never an exception. Store
        failures propagate as ``DocumentStoreError``.
        """
        start = time.time()
        page_hash = content_hash(page.content)
        page_size = len(page.content.encode('utf-8'))

        document = self.processor.classify(page)
        validation = self.processor.validate(document)
        if not validation.valid:
            message = '; '.join(validation.errors)
            logger.warning(f"Rejected {page.url}: {message}")
            await self.store.log_scraping(page.url, 'failed', message, page_hash, page_size)
            record_indexing_metrics(page.category or 'unknown', IngestStatus.FAILED.value,
                                    time.time() - start, error='validation')
            return IngestResult(url=page.url, status=IngestStatus.FAILED, errors=list(validation.errors))

        existing = await self.store.get(document.id)
        changes: Dict[str, Tuple[Optional[str], Optional[str]]] = {}
        if existing is not None:
            changes = self.processor.changed_fields(existing, document)
            if not changes:
                logger.debug(f"No changes for {document.id}, skipping")
                await self.store.log_scraping(page.url, 'skipped', None, page_hash, page_size)
                record_indexing_metrics(document.category, IngestStatus.SKIPPED.value, time.time() - start)
                return IngestResult(url=page.url, status=IngestStatus.SKIPPED, document=existing)

        corpus = await self.store.all_documents()
        document = document.model_copy(update={
            'related_standards': self.processor.find_related(document, corpus),
        })

        stored = await self.store.upsert(document)
        if existing is not None:
            await self.store.record_update_history(stored.id, changes)

        await self._index_semantic([stored])
        await self.store.log_scraping(page.url, 'success', None, page_hash, page_size)

        status = IngestStatus.UPDATED if existing is not None else IngestStatus.NEW
        record_indexing_metrics(stored.category, status.value, time.time() - start)
        logger.info(f"Ingested {stored.id} ({status.value})")
        return IngestResult(url=page.url, status=status, document=stored, changes=changes)

    async def ingest_batch(self, pages: Iterable[RawPage]) -> IngestReport:
        """Ingest pages in order, then refresh links for everything written."""
        report = IngestReport()

        for page in pages:
            try:
                result = await self.ingest(page)
            except DocumentStoreError as e:
                logger.error(f"Failed to ingest {page.url}: {e}")
                record_indexing_metrics(page.category or 'unknown', IngestStatus.FAILED.value,
                                        0.0, error=type(e).__name__)
                result = IngestResult(url=page.url, status=IngestStatus.FAILED, errors=[str(e)])
            report.results.append(result)

        written = [
            result for result in report.results
            if result.status in (IngestStatus.NEW, IngestStatus.UPDATED)
        ]
        if written:
            refreshed = await self.refresh_related([result.document.id for result in written])
            for result in written:
                result.document = refreshed.get(result.document.id, result.document)

        report.finish()
        logger.info(f"Ingestion batch complete: {report.summary()}")
        return report

    async def refresh_related(self, ids: Optional[List[str]] = None) -> Dict[str, Document]:
        """Recompute related standards against the whole corpus.

        Only documents whose links actually change are rewritten; those are
        returned keyed by id.
        """
        corpus = await self.store.all_documents()
        if ids is None:
            targets = corpus
        else:
            wanted = set(ids)
            targets = [doc for doc in corpus if doc.id in wanted]

        refreshed: Dict[str, Document] = {}
        for document in targets:
            related = self.processor.find_related(document, corpus)
            if related == document.related_standards:
                continue
            refreshed[document.id] = await self.store.upsert(
                document.model_copy(update={'related_standards': related})
            )

        logger.debug(f"Refreshed related standards for {len(refreshed)} of {len(targets)} documents")
        return refreshed

    async def sync_semantic_index(self) -> Outcome:
        """Re-embed every stored document; the value is the number indexed."""
        if self.semantic_index is None:
            return Outcome.failed(FailureReason.SEMANTIC_UNAVAILABLE, "Semantic index not configured")

        documents = await self.store.all_documents()
        cleared = await self.semantic_index.clear()
        if not cleared.ok:
            return cleared

        indexed = 0
        for offset in range(0, len(documents), SEMANTIC_BATCH_SIZE):
            outcome = await self.semantic_index.add_documents(documents[offset:offset + SEMANTIC_BATCH_SIZE])
            if not outcome.ok:
                logger.error(f"Semantic re-index stopped after {indexed} documents: {outcome.detail}")
                return outcome
            indexed += outcome.value

        logger.info(f"Semantic index rebuilt with {indexed} documents")
        return Outcome.success(indexed)

    async def _index_semantic(self, documents: List[Document]):
        if self.semantic_index is None:
            return
        outcome = await self.semantic_index.add_documents(documents)
        if not outcome.ok:
            logger.warning(f"Semantic indexing skipped for {[doc.id for doc in documents]}: "
                           f"{outcome.failure.value} {outcome.detail or ''}")
