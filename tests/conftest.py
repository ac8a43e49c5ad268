"""Shared fixtures for the standards catalog tests."""

import re
import zlib
from datetime import datetime, timezone

import numpy as np
import pytest

from indexer.document_store import DocumentStore
from indexer.embeddings import EmbeddingManager
from indexer.semantic_index import SemanticIndex
from services.shared.models import ComplianceLevel, Document, RawPage


class FakeEncoder:
    """Deterministic bag-of-words encoder standing in for a sentence transformer."""

    dimension = 256

    def __init__(self):
        self.calls = 0

    def encode(self, texts, convert_to_numpy=True, normalize_embeddings=True):
        self.calls += 1
        single = isinstance(texts, str)
        batch = [texts] if single else list(texts)
        vectors = np.zeros((len(batch), self.dimension), dtype=np.float32)
        for row, text in enumerate(batch):
            for token in re.findall(r"\w+", text.lower()):
                vectors[row, zlib.crc32(token.encode("utf-8")) % self.dimension] += 1.0
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        vectors = np.divide(vectors, norms, out=np.zeros_like(vectors), where=norms > 0)
        return vectors[0] if single else vectors

    def get_sentence_embedding_dimension(self):
        return self.dimension


OAUTH_CONTENT = (
    "Government APIs must use OAuth for authorisation, expose REST resources "
    "and serve traffic over HTTPS only. Token lifetimes are kept short."
)

WCAG_CONTENT = (
    "Digital services should meet WCAG criteria so that screen reader users "
    "navigate every page easily. Colour contrast is checked on each release."
)


def make_document(doc_id="doc-1", title="API authentication", category="APIs",
                  content=OAUTH_CONTENT, **overrides) -> Document:
    fields = dict(
        id=doc_id,
        title=title,
        category=category,
        url=f"https://www.gov.uk/guidance/{doc_id}",
        content=content,
        summary=None,
        source_org="GDS",
        tags=[],
        compliance_level=ComplianceLevel.MANDATORY,
        related_standards=[],
    )
    fields.update(overrides)
    return Document(**fields)


def make_page(path="guidance/api-authentication", title="API authentication",
              category="APIs", content=OAUTH_CONTENT, **overrides) -> RawPage:
    fields = dict(
        url=f"https://www.gov.uk/{path}",
        title=title,
        content=content,
        category=category,
        last_modified=datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc),
        source_org="GDS",
        links=[],
    )
    fields.update(overrides)
    return RawPage(**fields)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "standards.db")


@pytest.fixture
async def store(db_path):
    document_store = DocumentStore(db_path)
    await document_store.initialize()
    yield document_store
    await document_store.close()


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def embedding_manager(fake_encoder):
    return EmbeddingManager(model_name="fake-model", model=fake_encoder)


@pytest.fixture
async def semantic_index(db_path, embedding_manager):
    index = SemanticIndex(db_path, embedding_manager)
    await index.initialize()
    yield index
    await index.close()
