"""Chunk entities shared by chunking, ingestion and retrieval.

A :class:`Chunk` is created by the chunker and never changes.  Attaching a
vector produces a separate :class:`EmbeddedChunk`; the bare chunk stays as
it was.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field, computed_field


class Chunk(BaseModel):
    """A contiguous span of one source file, the unit of retrieval.

    Attributes
    ----------
    file_name:
        Identifier of the source file (path relative to the source root).
    chunk_index:
        Position of the chunk within its file, assigned from 0 in emission order.
    content:
        The exact newline-joined lines of the span.
    """

    model_config = ConfigDict(frozen=True)

    file_name: str
    chunk_index: int = Field(ge=0)
    content: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> str:
        """Globally unique key: ``"{file_name}#{chunk_index}"``."""
        return f"{self.file_name}#{self.chunk_index}"

    def with_embedding(self, embedding: Sequence[float]) -> EmbeddedChunk:
        """Return the embedded state of this chunk."""
        return EmbeddedChunk(
            file_name=self.file_name,
            chunk_index=self.chunk_index,
            content=self.content,
            embedding=tuple(float(x) for x in embedding),
        )


class EmbeddedChunk(Chunk):
    """A chunk together with its embedding vector."""

    embedding: tuple[float, ...]

    @property
    def dimension(self) -> int:
        return len(self.embedding)

    def bare(self) -> Chunk:
        """Drop the vector and return the plain chunk."""
        return Chunk(file_name=self.file_name, chunk_index=self.chunk_index, content=self.content)
