"""Interface every vector index implements.

The in-memory cosine index is the only backend shipped; the search adapter
and the ingestor depend on this interface alone, so a persistent or ANN
backend can be dropped in by subclassing :class:`VectorStoreBase`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from codebase_rag.models import Chunk, EmbeddedChunk


class VectorStoreBase(ABC):
    """Keyed store of embedded chunks with similarity search.

    Parameters
    ----------
    collection_name:
        Name of the index, used in log messages.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def upsert(self, chunk: EmbeddedChunk) -> None:
        """Insert *chunk*, or replace the stored chunk with the same ``id``.

        Raises
        ------
        DimensionMismatch
            When the embedding length differs from the index dimension.
        """
        ...

    @abstractmethod
    def similarity_search(
        self,
        query_embedding: Sequence[float],
        *,
        k: int = 5,
    ) -> list[tuple[Chunk, float]]:
        """Return up to *k* ``(chunk, score)`` pairs, best first.

        Scores are similarities: higher means closer to the query.
        """
        ...

    @abstractmethod
    def get(self, chunk_id: str) -> EmbeddedChunk | None:
        """Return the stored chunk for *chunk_id*, or ``None``."""
        ...

    @abstractmethod
    def __len__(self) -> int: ...

    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        return True

    # -- optional overrides ---------------------------------------------------

    def delete(self, ids: list[str]) -> None:
        """Delete chunks by their IDs.  Backends may leave this unimplemented."""
        raise NotImplementedError(f"{type(self).__name__} does not support delete")
