"""In-memory implementation of the vector-store abstraction.

Brute-force cosine similarity over every stored vector (O(N·D) per query),
which is plenty for the chunk count of a single codebase.  Nothing is
persisted: the index lives as long as the process.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence

import numpy as np

from codebase_rag.errors import DimensionMismatch
from codebase_rag.models import Chunk, EmbeddedChunk
from codebase_rag.retrieval.base import VectorStoreBase

logger = logging.getLogger(__name__)


def _unit(vector: np.ndarray) -> np.ndarray:
    """Scale *vector* to length 1; a zero vector stays zero (cosine score 0)."""
    norm = np.linalg.norm(vector)
    if norm == 0.0:
        return vector
    return vector / norm


class InMemoryVectorStore(VectorStoreBase):
    """Dict-backed vector store with cosine-similarity search.

    Entries keep the position of their first insertion, also when replaced,
    and equal scores rank in that order.  Writes take a lock; searches run
    on a snapshot so they never see a half-applied upsert.

    Parameters
    ----------
    collection_name:
        Name used in log messages.
    dimension:
        Expected vector length.  When *None* the first upsert fixes it.
    """

    def __init__(self, collection_name: str = "codebase", *, dimension: int | None = None) -> None:
        super().__init__(collection_name)
        self._dimension = dimension
        self._chunks: dict[str, EmbeddedChunk] = {}
        self._vectors: dict[str, np.ndarray] = {}
        self._lock = threading.Lock()

    @property
    def dimension(self) -> int | None:
        return self._dimension

    # -- VectorStoreBase overrides --------------------------------------------

    def upsert(self, chunk: EmbeddedChunk) -> None:
        vector = np.asarray(chunk.embedding, dtype=np.float64)
        with self._lock:
            if self._dimension is None:
                self._dimension = vector.shape[0]
                logger.info("Collection %r dimension set to %d", self.collection_name, self._dimension)
            elif vector.shape[0] != self._dimension:
                raise DimensionMismatch(self._dimension, vector.shape[0], chunk_id=chunk.id)

            self._chunks[chunk.id] = chunk
            self._vectors[chunk.id] = _unit(vector)

    def similarity_search(
        self,
        query_embedding: Sequence[float],
        *,
        k: int = 5,
    ) -> list[tuple[Chunk, float]]:
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")

        with self._lock:
            ids = list(self._vectors)
            vectors = list(self._vectors.values())
            chunks = [self._chunks[i] for i in ids]
            dimension = self._dimension

        if not ids:
            return []

        query = np.asarray(query_embedding, dtype=np.float64)
        if query.shape[0] != dimension:
            raise DimensionMismatch(dimension, query.shape[0])  # type: ignore[arg-type]

        scores = np.vstack(vectors) @ _unit(query)
        np.clip(scores, -1.0, 1.0, out=scores)
        # Stable sort keeps insertion order among equal scores.
        order = np.argsort(-scores, kind="stable")[:k]
        return [(chunks[i].bare(), float(scores[i])) for i in order]

    def get(self, chunk_id: str) -> EmbeddedChunk | None:
        return self._chunks.get(chunk_id)

    def delete(self, ids: list[str]) -> None:
        with self._lock:
            for chunk_id in ids:
                self._chunks.pop(chunk_id, None)
                self._vectors.pop(chunk_id, None)

    def __len__(self) -> int:
        return len(self._chunks)
