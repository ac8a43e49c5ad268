"""Hybrid retrieval: lexical and semantic result sets fused into one ranking.

Scores are blended additively without normalizing the two scales first. BM25
scores are unbounded while cosine similarities sit in [0, 1], so
``semantic_weight`` is a blending knob rather than a true percentage.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from observability.prometheus_metrics import record_search_metrics, record_semantic_fallback
from services.shared.models import ComplianceLevel, Document, SearchResult
from .document_store import DocumentStore
from .outcome import FailureReason, Outcome
from .semantic_index import SemanticIndex, SemanticMatch
from .serialization import from_db_timestamp

logger = logging.getLogger(__name__)

SEMANTIC_FIELD = "semantic"
SEMANTIC_CONTENT_CHARS = 500


class HybridOptions(BaseModel):
    """Blend settings for one hybrid query."""
    semantic_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    semantic_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    max_results: int = Field(default=20, ge=1)


def document_from_semantic_match(match: SemanticMatch) -> Document:
    """Build a stand-in document from embedding metadata.

    The content is the embedded text, truncated; it is not the stored full text.
    """
    metadata = match.metadata
    content = match.document or ''
    if len(content) > SEMANTIC_CONTENT_CHARS:
        content = content[:SEMANTIC_CONTENT_CHARS] + '...'
    compliance = metadata.get('compliance_level')
    return Document(
        id=match.id,
        title=metadata.get('title', ''),
        category=metadata.get('category', ''),
        url=metadata.get('url', ''),
        content=content,
        last_updated=from_db_timestamp(metadata.get('last_updated') or None),
        source_org=metadata.get('source_org') or None,
        tags=list(metadata.get('tags') or []),
        compliance_level=ComplianceLevel(compliance) if compliance else None,
        created_at=from_db_timestamp(metadata.get('created_at') or None),
    )


def fuse_results(lexical: Sequence[SearchResult], semantic: Sequence[SemanticMatch],
                 options: HybridOptions) -> List[SearchResult]:
    """Additive fusion of the two result sets.

    Lexical scores are scaled by ``1 - w``. A semantic hit on a document that
    is already present adds ``score * w`` and marks the ``semantic`` field;
    otherwise it becomes a new entry scored ``score * w``.
    """
    weight = options.semantic_weight
    fused: Dict[str, SearchResult] = {}

    for result in lexical:
        fused[result.document.id] = SearchResult(
            document=result.document,
            relevance_score=result.relevance_score * (1 - weight),
            matched_fields=list(result.matched_fields),
        )

    for match in semantic:
        existing = fused.get(match.id)
        if existing is not None:
            existing.relevance_score += match.score * weight
            if SEMANTIC_FIELD not in existing.matched_fields:
                existing.matched_fields.append(SEMANTIC_FIELD)
        else:
            fused[match.id] = SearchResult(
                document=document_from_semantic_match(match),
                relevance_score=match.score * weight,
                matched_fields=[SEMANTIC_FIELD],
            )

    ranked = sorted(fused.values(), key=lambda result: result.relevance_score, reverse=True)
    return ranked[:options.max_results]


class HybridRanker:
    """Runs lexical and semantic retrieval concurrently and fuses the results."""

    def __init__(self, store: DocumentStore, semantic_index: Optional[SemanticIndex] = None):
        self.store = store
        self.semantic_index = semantic_index

    async def _semantic_branch(self, query: str, category: Optional[str],
                               organisation: Optional[str], options: HybridOptions) -> Outcome:
        if self.semantic_index is None:
            return Outcome.failed(FailureReason.SEMANTIC_UNAVAILABLE, "Semantic index not configured")
        try:
            return await self.semantic_index.search(
                query,
                limit=options.max_results,
                category=category,
                organisation=organisation,
                threshold=options.semantic_threshold,
            )
        except Exception as e:
            return Outcome.failed(FailureReason.SEMANTIC_ERROR, error=e)

    async def search(self, query: str, category: Optional[str] = None,
                     organisation: Optional[str] = None,
                     options: Optional[HybridOptions] = None) -> List[SearchResult]:
        """Ranked results for ``query``; never fails because of the semantic side.

        Raises:
            DocumentStoreError: if the lexical search itself cannot be answered.
        """
        options = options or HybridOptions()
        start = time.time()

        lexical, semantic = await asyncio.gather(
            self.store.lexical_search(query, category=category, organisation=organisation),
            self._semantic_branch(query, category, organisation, options),
        )

        matches: List[SemanticMatch] = []
        if semantic.ok:
            matches = semantic.value or []
        else:
            logger.warning(f"Semantic search unavailable ({semantic.failure.value}), "
                           f"using lexical results only: {semantic.detail}")
            record_semantic_fallback(semantic.failure.value)

        try:
            results = fuse_results(lexical, matches, options)
        except Exception as e:
            logger.error(f"Result fusion failed, returning lexical results: {e}")
            record_semantic_fallback("fusion_error")
            results = list(lexical)[:options.max_results]

        record_search_metrics("hybrid", time.time() - start, len(results))
        logger.debug(f"Hybrid search for '{query}': {len(lexical)} lexical, "
                     f"{len(matches)} semantic, {len(results)} returned")
        return results
