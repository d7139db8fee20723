"""Code chunking at lexical declaration boundaries.

A chunk starts at every line whose stripped text begins with a boundary
marker (``class ``, ``public ``, ``private `` by default).  Detection is a
plain prefix match: markers inside string literals or comments also split.
Swap in another :class:`BoundaryDetector` for syntax-aware chunking.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, Protocol

from langchain_text_splitters import TextSplitter

from codebase_rag.models import Chunk

if TYPE_CHECKING:
    from langchain_core.documents import Document

DEFAULT_BOUNDARY_MARKERS: tuple[str, ...] = ("class ", "public ", "private ")


class BoundaryDetector(Protocol):
    """Decides whether a line opens a new chunk."""

    def is_boundary(self, line: str) -> bool: ...


class PrefixBoundaryDetector:
    """Lexical detector: the stripped line starts with one of *markers*."""

    def __init__(self, markers: Iterable[str] = DEFAULT_BOUNDARY_MARKERS) -> None:
        self.markers = tuple(markers)

    def is_boundary(self, line: str) -> bool:
        return line.strip().startswith(self.markers)


class CodeBoundarySplitter(TextSplitter):
    """Text splitter that cuts source text in front of boundary lines.

    Unlike the size-based LangChain splitters there is no chunk size and no
    overlap: every line lands in exactly one chunk, so joining the chunks
    with ``"\\n"`` gives back the input unchanged.
    """

    def __init__(self, detector: BoundaryDetector | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.detector = detector or PrefixBoundaryDetector()

    def split_text(self, text: str) -> list[str]:
        if not text:
            return []

        spans: list[str] = []
        buffer: list[str] = []
        for line in text.split("\n"):
            if buffer and self.detector.is_boundary(line):
                spans.append("\n".join(buffer))
                buffer = []
            buffer.append(line)
        if buffer:
            spans.append("\n".join(buffer))
        return spans


def get_splitter(markers: Iterable[str] | None = None) -> CodeBoundarySplitter:
    """Return a splitter using *markers* (or the defaults)."""
    detector = PrefixBoundaryDetector(markers if markers is not None else DEFAULT_BOUNDARY_MARKERS)
    return CodeBoundarySplitter(detector)


def chunk_file(
    file_name: str,
    text: str,
    splitter: TextSplitter | None = None,
) -> list[Chunk]:
    """Split one file into ordered chunks.

    Parameters
    ----------
    file_name:
        Identifier recorded on every chunk and used in chunk ids.
    text:
        Full file content.
    splitter:
        Any LangChain ``TextSplitter``; defaults to a
        :class:`CodeBoundarySplitter` with the default markers.

    Returns
    -------
    list[Chunk]
        Chunks numbered from 0; empty when *text* is empty.
    """
    splitter = splitter or get_splitter()
    return [
        Chunk(file_name=file_name, chunk_index=index, content=content)
        for index, content in enumerate(splitter.split_text(text))
    ]


def chunk_documents(
    documents: Iterable[Document],
    splitter: TextSplitter | None = None,
) -> list[Chunk]:
    """Chunk loader output, using each document's ``source`` metadata as file name."""
    splitter = splitter or get_splitter()
    chunks: list[Chunk] = []
    for doc in documents:
        file_name = doc.metadata.get("source", "unknown")
        chunks.extend(chunk_file(file_name, doc.page_content, splitter))
    return chunks
