"""Standards catalog service.

The single entry point used by transports (CLI, protocol servers): ingestion,
search, lookups and the applicability queries over the category table. Shared
resources are built once by ``StandardsCatalog.create`` and injected; nothing
here is a module-level singleton.
"""

import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence

from config.settings import CatalogConfig
from indexer.document_store import DocumentStore
from indexer.embeddings import EmbeddingManager
from indexer.hybrid import HybridOptions, HybridRanker
from indexer.outcome import Outcome
from indexer.semantic_index import SemanticIndex
from observability.prometheus_metrics import get_metrics_summary, record_search_metrics
from pipelines.content_processor import ContentProcessor
from pipelines.ingest import IngestReport, IngestResult, StandardsIngestor
from services.shared.models import Category, Document, RawPage, SearchResult
from sources.loader import CategoryLoader, StandardCategory

logger = logging.getLogger(__name__)


class StandardsCatalog:
    """Facade over the store, the semantic index and the ingestion pipeline."""

    def __init__(self, store: DocumentStore, semantic_index: Optional[SemanticIndex] = None,
                 processor: Optional[ContentProcessor] = None,
                 category_loader: Optional[CategoryLoader] = None,
                 default_options: Optional[HybridOptions] = None):
        self.store = store
        self.semantic_index = semantic_index
        self.processor = processor or ContentProcessor()
        self.category_loader = category_loader or CategoryLoader()
        self.default_options = default_options or HybridOptions()
        self.ranker = HybridRanker(store, semantic_index)
        self.ingestor = StandardsIngestor(store, self.processor, semantic_index)

    @classmethod
    async def create(cls, config: Optional[CatalogConfig] = None,
                     embedding_model: Any = None) -> 'StandardsCatalog':
        """Open the store and, best-effort, the semantic index.

        Args:
            config: Settings; read from the environment when omitted.
            embedding_model: Optional pre-built encoder passed to ``EmbeddingManager``.

        Raises:
            StoreIntegrityError: the database failed its startup health check.
            DocumentStoreError: the database could not be opened.
        """
        config = config or CatalogConfig.from_env()

        store = DocumentStore(config.db_path, busy_timeout_ms=config.busy_timeout_ms)
        await store.initialize()

        semantic_index = None
        if config.enable_semantic:
            semantic_index = await cls._open_semantic_index(config, embedding_model)
        else:
            logger.info("Semantic search disabled by configuration")

        return cls(
            store,
            semantic_index=semantic_index,
            category_loader=CategoryLoader(config.categories_path),
            default_options=config.hybrid_options(),
        )

    @staticmethod
    async def _open_semantic_index(config: CatalogConfig,
                                   embedding_model: Any = None) -> Optional[SemanticIndex]:
        try:
            manager = EmbeddingManager(config.embedding_model, config.embedding_cache_dir,
                                       model=embedding_model)
            semantic_index = SemanticIndex(config.db_path, manager, config.busy_timeout_ms)
            await semantic_index.initialize()
            return semantic_index
        except Exception as e:
            logger.warning(f"Semantic search unavailable, continuing lexical-only: {e}")
            return None

    async def close(self):
        if self.semantic_index is not None:
            await self.semantic_index.close()
        await self.store.close()

    async def __aenter__(self) -> 'StandardsCatalog':
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def ingest(self, page: RawPage) -> IngestResult:
        return await self.ingestor.ingest(page)

    async def ingest_batch(self, pages: Iterable[RawPage]) -> IngestReport:
        return await self.ingestor.ingest_batch(pages)

    async def search(self, query: str, category: Optional[str] = None,
                     organisation: Optional[str] = None,
                     options: Optional[HybridOptions] = None,
                     hybrid: bool = True) -> List[SearchResult]:
        """Search the catalog.

        With ``hybrid`` the lexical and semantic rankings are fused; otherwise
        only the lexical index is consulted. Results are capped at
        ``options.max_results`` either way.
        """
        options = options or self.default_options
        if hybrid:
            return await self.ranker.search(query, category=category, organisation=organisation,
                                            options=options)

        start = time.time()
        results = await self.store.lexical_search(query, category=category, organisation=organisation)
        results = results[:options.max_results]
        record_search_metrics("lexical", time.time() - start, len(results))
        return results

    async def get(self, document_id: str) -> Optional[Document]:
        return await self.store.get(document_id)

    async def categories(self) -> List[Category]:
        """Live category counts with descriptions from the category table."""
        descriptions = self.category_loader.descriptions()
        return [
            category.model_copy(update={'description': descriptions.get(category.name)})
            for category in await self.store.categories()
        ]

    async def recently_updated(self, days_back: int = 30) -> List[Document]:
        return await self.store.recently_updated(days_back)

    def applicable_categories(self, work_types: Sequence[str], service_types: Sequence[str],
                              development_phases: Sequence[str]) -> List[StandardCategory]:
        return self.category_loader.get_applicable_categories(work_types, service_types, development_phases)

    def categories_by_priority(self, priority: str) -> List[StandardCategory]:
        return self.category_loader.get_categories_by_priority(priority)

    def mandatory_categories(self) -> List[StandardCategory]:
        return self.category_loader.get_mandatory_categories()

    async def reindex_semantic(self) -> Outcome:
        return await self.ingestor.sync_semantic_index()

    async def rebuild_lexical_index(self):
        await self.store.rebuild_lexical_index(reason="manual")

    async def stats(self) -> Dict[str, Any]:
        """Storage, semantic index and metric counters in one mapping."""
        semantic = (
            await self.semantic_index.stats() if self.semantic_index is not None
            else {'total_documents': 0, 'model': None, 'available': False}
        )
        return {
            'database': await self.store.get_database_stats(),
            'semantic': semantic,
            'metrics': get_metrics_summary(),
        }
