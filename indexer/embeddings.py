# Standards catalog embeddings module
# Generates sentence-transformer embeddings for standards documents

import logging
import re
import time
from typing import Any, List, Optional

import numpy as np

from observability.prometheus_metrics import record_embedding_time
from services.shared.models import Document

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "all-MiniLM-L6-v2"
MAX_EMBEDDING_CHARS = 512
MAX_CONTENT_CHARS = 1000

_WHITESPACE = re.compile(r'\s+')
_SPECIAL_CHARS = re.compile(r'[^\w\s\-.,!?]')


class EmbeddingManager:
    """Produces normalized embeddings for documents and queries"""

    def __init__(self, model_name: str = DEFAULT_MODEL, cache_dir: Optional[str] = None,
                 model: Any = None):
        """
        Initialize embedding manager

        Args:
            model_name: Sentence transformer model name
            cache_dir: Optional directory for downloaded model files
            model: Pre-built encoder exposing ``encode``; skips model loading
        """
        self.model_name = model_name
        self.cache_dir = cache_dir
        self.model = model

        if self.model is None:
            self._load_model()

    def _load_model(self):
        """Load the sentence transformer model"""
        try:
            logger.info(f"Loading embedding model: {self.model_name}")
            # Import and load errors surface as an initialization failure
            from sentence_transformers import SentenceTransformer

            if self.cache_dir:
                self.model = SentenceTransformer(self.model_name, cache_folder=self.cache_dir)
            else:
                self.model = SentenceTransformer(self.model_name)
            logger.info(f"Model loaded successfully. Embedding dimension: {self.model.get_sentence_embedding_dimension()}")
        except Exception as e:
            logger.error(f"Failed to load embedding model: {e}")
            raise

    @staticmethod
    def preprocess_text(text: str) -> str:
        """Normalize whitespace, drop special characters and cap the length"""
        text = _WHITESPACE.sub(' ', text.strip())
        text = _SPECIAL_CHARS.sub('', text)
        return text[:MAX_EMBEDDING_CHARS]

    @staticmethod
    def truncate_content(content: str, max_length: int = MAX_CONTENT_CHARS) -> str:
        """Truncate content, preferring a sentence boundary near the limit"""
        if len(content) <= max_length:
            return content

        truncated = content[:max_length]
        last_sentence = max(truncated.rfind('.'), truncated.rfind('!'), truncated.rfind('?'))
        if last_sentence > max_length * 0.8:
            return truncated[:last_sentence + 1]
        return truncated + '...'

    def create_embedding_text(self, document: Document) -> str:
        """Searchable text for a document; the title is repeated to weight it"""
        parts = [
            document.title,
            document.title,
            f"Category: {document.category}",
            document.summary or '',
            f"Tags: {', '.join(document.tags)}" if document.tags else '',
            self.truncate_content(document.content),
        ]
        return '\n\n'.join(part for part in parts if part)

    def generate_embedding(self, text: str) -> np.ndarray:
        """Generate a unit-length embedding for a single text"""
        if self.model is None:
            raise RuntimeError("Model not loaded")

        start = time.time()
        embedding = self.model.encode(self.preprocess_text(text), convert_to_numpy=True,
                                      normalize_embeddings=True)
        record_embedding_time(self.model_name, time.time() - start)
        return np.asarray(embedding, dtype=np.float32)

    def generate_embeddings_batch(self, texts: List[str]) -> List[np.ndarray]:
        """Generate embeddings for multiple texts efficiently"""
        if self.model is None:
            raise RuntimeError("Model not loaded")
        if not texts:
            return []

        start = time.time()
        cleaned = [self.preprocess_text(text or '') for text in texts]
        embeddings = self.model.encode(cleaned, convert_to_numpy=True, normalize_embeddings=True)
        record_embedding_time(self.model_name, time.time() - start)
        return [np.asarray(embedding, dtype=np.float32) for embedding in embeddings]

    @staticmethod
    def serialize_embedding(embedding: np.ndarray) -> bytes:
        """Serialize embedding for database storage"""
        return np.asarray(embedding, dtype=np.float32).tobytes()

    @staticmethod
    def deserialize_embedding(data: bytes) -> np.ndarray:
        """Deserialize embedding from database"""
        return np.frombuffer(data, dtype=np.float32)

    @staticmethod
    def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
        """Calculate cosine similarity between two vectors"""
        if a.shape != b.shape:
            raise ValueError("Embeddings must have the same dimension")

        norm_a = np.linalg.norm(a)
        norm_b = np.linalg.norm(b)
        if norm_a == 0 or norm_b == 0:
            return 0.0

        return float(np.dot(a, b) / (norm_a * norm_b))
