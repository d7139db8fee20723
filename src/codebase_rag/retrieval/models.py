"""Domain models for retrieval results and citation tracking."""

from __future__ import annotations

from pydantic import BaseModel

from codebase_rag.models import Chunk


class Citation(BaseModel):
    """Provenance record linking an answer back to one indexed chunk.

    Attributes
    ----------
    chunk_id:
        The index key of the chunk (``"{file_name}#{chunk_index}"``).
    file_name:
        Source file of the chunk.
    chunk_index:
        Ordinal position of the chunk within the file.
    score:
        Similarity score returned by the vector store, when known.
    """

    chunk_id: str
    file_name: str
    chunk_index: int
    score: float | None = None

    def short_ref(self) -> str:
        """Return the ``(file, chunk #n)`` form answers must cite."""
        return f"({self.file_name}, chunk #{self.chunk_index})"


class RetrievalResult(BaseModel):
    """A single retrieved chunk together with its similarity score."""

    chunk: Chunk
    score: float

    @property
    def citation(self) -> Citation:
        return Citation(
            chunk_id=self.chunk.id,
            file_name=self.chunk.file_name,
            chunk_index=self.chunk.chunk_index,
            score=self.score,
        )

    def __str__(self) -> str:  # noqa: D105
        return f"{self.citation.short_ref()} {self.chunk.content[:120]}…"
