"""Vector similarity index over standards documents.

Embeddings are stored as float32 blobs next to the metadata needed to answer a
query without touching the document store. The index is optional: every
operation reports failure as an ``Outcome`` so that callers can fall back to
lexical search.
"""

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from services.shared.models import Document
from .embeddings import EmbeddingManager
from .outcome import FailureReason, Outcome
from .serialization import (
    decode_metadata,
    document_metadata,
    encode_metadata,
    to_db_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

EMBEDDINGS_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS document_embeddings (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    source_org TEXT,
    compliance_level TEXT,
    embedding BLOB NOT NULL,
    dimensions INTEGER NOT NULL,
    model TEXT NOT NULL,
    document TEXT NOT NULL,
    metadata TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_document_embeddings_category ON document_embeddings(category);
CREATE INDEX IF NOT EXISTS idx_document_embeddings_source_org ON document_embeddings(source_org);
"""


@dataclass
class SemanticMatch:
    """One semantic hit: a similarity in [0, 1] plus stored metadata."""
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    document: str = ''


class SemanticIndex:
    """Embedding-space search over the catalog."""

    def __init__(self, db_path: str, embedding_manager: EmbeddingManager,
                 busy_timeout_ms: int = 30000):
        self.db_path = db_path
        self.embedding_manager = embedding_manager
        self.busy_timeout_ms = busy_timeout_ms
        self.conn: Optional[sqlite3.Connection] = None

    async def initialize(self):
        """Open storage and ensure the embeddings table exists."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout_ms / 1000,
                                    check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        self.conn.executescript(EMBEDDINGS_TABLE_DDL)
        self.conn.commit()
        logger.info(f"Semantic index initialized: {self.db_path} (model {self.embedding_manager.model_name})")

    async def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Semantic index connection closed")

    def _rows_for(self, documents: Sequence[Document]) -> List[Dict[str, Any]]:
        texts = [self.embedding_manager.create_embedding_text(doc) for doc in documents]
        embeddings = self.embedding_manager.generate_embeddings_batch(texts)
        now = to_db_timestamp(utc_now())
        rows = []
        for document, text, embedding in zip(documents, texts, embeddings):
            rows.append({
                'id': document.id,
                'category': document.category,
                'source_org': document.source_org,
                'compliance_level': document.compliance_level.value if document.compliance_level else None,
                'embedding': self.embedding_manager.serialize_embedding(embedding),
                'dimensions': int(embedding.shape[0]),
                'model': self.embedding_manager.model_name,
                'document': text,
                'metadata': encode_metadata(document_metadata(document)),
                'updated_at': now,
            })
        return rows

    async def add_document(self, document: Document) -> Outcome:
        """Embed and store one document, replacing any previous vector."""
        return await self.add_documents([document])

    async def add_documents(self, documents: Sequence[Document]) -> Outcome:
        """Embed and store documents in one batch; the value is the count stored."""
        if self.conn is None:
            return Outcome.failed(FailureReason.SEMANTIC_UNAVAILABLE, "Semantic index not initialized")
        if not documents:
            return Outcome.success(0)

        try:
            rows = self._rows_for(documents)
            self.conn.executemany(
                """
                INSERT OR REPLACE INTO document_embeddings (
                    id, category, source_org, compliance_level, embedding,
                    dimensions, model, document, metadata, updated_at
                ) VALUES (
                    :id, :category, :source_org, :compliance_level, :embedding,
                    :dimensions, :model, :document, :metadata, :updated_at
                )
                """,
                rows,
            )
            self.conn.commit()
        except Exception as e:
            if self.conn.in_transaction:
                self.conn.rollback()
            logger.error(f"Failed to add {len(documents)} document(s) to semantic index: {e}")
            return Outcome.failed(FailureReason.SEMANTIC_ERROR, error=e)

        logger.debug(f"Added {len(rows)} document(s) to semantic index")
        return Outcome.success(len(rows))

    async def remove_document(self, document_id: str) -> Outcome:
        if self.conn is None:
            return Outcome.failed(FailureReason.SEMANTIC_UNAVAILABLE, "Semantic index not initialized")
        try:
            cursor = self.conn.execute("DELETE FROM document_embeddings WHERE id = ?", (document_id,))
            self.conn.commit()
        except sqlite3.DatabaseError as e:
            logger.error(f"Failed to remove {document_id} from semantic index: {e}")
            return Outcome.failed(FailureReason.SEMANTIC_ERROR, error=e)
        return Outcome.success(cursor.rowcount)

    async def search(self, query: str, limit: int = 10, category: Optional[str] = None,
                     organisation: Optional[str] = None, compliance_level: Optional[str] = None,
                     threshold: float = 0.3) -> Outcome:
        """Rank stored documents by cosine similarity to the query.

        Similarities are clamped to [0, 1]; matches below ``threshold`` are
        dropped. The value is a list of ``SemanticMatch``.
        """
        if self.conn is None:
            return Outcome.failed(FailureReason.SEMANTIC_UNAVAILABLE, "Semantic index not initialized")
        if not query or not query.strip():
            return Outcome.success([])

        try:
            query_embedding = self.embedding_manager.generate_embedding(query)

            conditions, params = [], []
            if category:
                conditions.append("category = ?")
                params.append(category)
            if organisation:
                conditions.append("source_org = ?")
                params.append(organisation)
            if compliance_level:
                conditions.append("compliance_level = ?")
                params.append(compliance_level)

            sql = "SELECT id, embedding, document, metadata FROM document_embeddings"
            if conditions:
                sql += " WHERE " + " AND ".join(conditions)
            rows = self.conn.execute(sql, params).fetchall()

            candidates, vectors = [], []
            for row in rows:
                vector = self.embedding_manager.deserialize_embedding(row['embedding'])
                if vector.shape != query_embedding.shape:
                    logger.warning(f"Skipping {row['id']}: embedding dimension {vector.shape[0]} "
                                   f"does not match query dimension {query_embedding.shape[0]}")
                    continue
                candidates.append(row)
                vectors.append(vector)

            if not vectors:
                return Outcome.success([])

            matrix = np.vstack(vectors)
            norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query_embedding)
            with np.errstate(divide='ignore', invalid='ignore'):
                similarities = np.where(norms > 0, matrix @ query_embedding / norms, 0.0)
            similarities = np.clip(similarities, 0.0, 1.0)

            matches = [
                SemanticMatch(
                    id=row['id'],
                    score=float(score),
                    metadata=decode_metadata(row['metadata']),
                    document=row['document'],
                )
                for row, score in zip(candidates, similarities)
                if score >= threshold
            ]
        except Exception as e:
            logger.error(f"Semantic search failed: {e}")
            return Outcome.failed(FailureReason.SEMANTIC_ERROR, error=e)

        matches.sort(key=lambda match: match.score, reverse=True)
        logger.debug(f"Semantic search for '{query}' returned {len(matches[:limit])} results")
        return Outcome.success(matches[:limit])

    async def stats(self) -> Dict[str, Any]:
        if self.conn is None:
            return {'total_documents': 0, 'model': self.embedding_manager.model_name, 'available': False}
        count = self.conn.execute("SELECT COUNT(*) FROM document_embeddings").fetchone()[0]
        return {'total_documents': count, 'model': self.embedding_manager.model_name, 'available': True}

    async def clear(self) -> Outcome:
        """Remove every stored vector."""
        if self.conn is None:
            return Outcome.failed(FailureReason.SEMANTIC_UNAVAILABLE, "Semantic index not initialized")
        try:
            self.conn.execute("DELETE FROM document_embeddings")
            self.conn.commit()
        except sqlite3.DatabaseError as e:
            logger.error(f"Failed to clear semantic index: {e}")
            return Outcome.failed(FailureReason.SEMANTIC_ERROR, error=e)
        logger.info("Semantic index cleared")
        return Outcome.success()
