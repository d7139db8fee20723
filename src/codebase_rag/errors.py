"""Exception taxonomy shared by every layer.

Configuration and dimension errors are fatal and never retried.  The two
capability errors (:class:`EmbeddingUnavailable`, :class:`GenerationUnavailable`)
are the transient class: callers may retry them with backoff.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codebase_rag.ingestion.pipeline import IngestionReport


class CodebaseRagError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(CodebaseRagError):
    """A required setting is missing or invalid (fatal at startup)."""


class EmbeddingUnavailable(CodebaseRagError):
    """The embedding capability failed (transport, quota, malformed input)."""


class GenerationUnavailable(CodebaseRagError):
    """The chat-completion capability failed before or during streaming."""


class DimensionMismatch(CodebaseRagError):
    """An embedding's length differs from the index dimension."""

    def __init__(self, expected: int, actual: int, *, chunk_id: str | None = None) -> None:
        self.expected = expected
        self.actual = actual
        self.chunk_id = chunk_id
        where = f" for chunk {chunk_id!r}" if chunk_id else ""
        super().__init__(f"Embedding dimension {actual} does not match index dimension {expected}{where}")


class RetrievalUnavailable(CodebaseRagError):
    """The index could not be searched (distinct from "nothing relevant")."""


class IngestionAborted(CodebaseRagError):
    """Ingestion stopped early; :attr:`report` describes what got in."""

    def __init__(self, message: str, report: IngestionReport) -> None:
        super().__init__(message)
        self.report = report
