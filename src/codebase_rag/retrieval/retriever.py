"""Semantic retriever — the search capability used by the conversation loop.

Usage::

    from codebase_rag.ingestion.embedder import EmbeddingService
    from codebase_rag.retrieval import InMemoryVectorStore, SemanticRetriever

    embedder  = EmbeddingService.from_settings()
    retriever = SemanticRetriever(InMemoryVectorStore(), embedder)
    results   = retriever.retrieve("Where is the order total computed?", k=5)
    for r in results:
        print(r.citation.short_ref(), r.chunk.content[:80])
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from codebase_rag.errors import DimensionMismatch, EmbeddingUnavailable, RetrievalUnavailable
from codebase_rag.ingestion.embedder import EmbeddingService
from codebase_rag.models import Chunk
from codebase_rag.retrieval.base import VectorStoreBase
from codebase_rag.retrieval.models import RetrievalResult

logger = logging.getLogger(__name__)


class SemanticRetriever:
    """High-level retriever that wraps any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.
    embedder:
        The embedding service that also populated *store*.  Sharing one
        instance keeps queries and chunks in the same embedding space.
    default_k:
        Default number of results returned by :meth:`retrieve`.
    score_threshold:
        Minimum similarity score; results below this are discarded.  Cosine
        scores can be negative, so *None* (the default) keeps every hit.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: EmbeddingService,
        *,
        default_k: int = 5,
        score_threshold: float | None = None,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self.default_k = default_k
        self.score_threshold = score_threshold

    # -- public API -----------------------------------------------------------

    def retrieve(self, query: str, *, k: int | None = None) -> list[RetrievalResult]:
        """Embed *query* and return the most similar chunks, best first.

        An empty list means nothing relevant is indexed.

        Raises
        ------
        RetrievalUnavailable
            When the query could not be embedded or searched.
        """
        try:
            embedding = self._embedder.embed_query(query)
        except EmbeddingUnavailable as exc:
            logger.error("Query embedding failed: %s", exc)
            raise RetrievalUnavailable(f"Could not embed the query: {exc}") from exc
        return self.search_by_embedding(embedding, k=k)

    def search_by_embedding(
        self,
        embedding: Sequence[float],
        *,
        k: int | None = None,
    ) -> list[RetrievalResult]:
        """Same as :meth:`retrieve` but accepts a pre-computed embedding."""
        k = k or self.default_k
        try:
            hits = self._store.similarity_search(embedding, k=k)
        except DimensionMismatch as exc:
            raise RetrievalUnavailable(f"Query does not match the index: {exc}") from exc
        results = self._to_results(hits)
        logger.info("Retrieved %d chunk(s) (k=%d)", len(results), k)
        return results

    # -- internals ------------------------------------------------------------

    def _to_results(self, hits: list[tuple[Chunk, float]]) -> list[RetrievalResult]:
        return [
            RetrievalResult(chunk=chunk, score=score)
            for chunk, score in hits
            if self.score_threshold is None or score >= self.score_threshold
        ]
