"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from codebase_rag.ingestion.embedder import EmbeddingService
from codebase_rag.retrieval import InMemoryVectorStore
from tests.fakes import KeywordEmbeddings, make_embedder


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


@pytest.fixture()
def keyword_embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture()
def embedder(keyword_embeddings: KeywordEmbeddings) -> EmbeddingService:
    return make_embedder(keyword_embeddings)


@pytest.fixture()
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore("test-collection")
