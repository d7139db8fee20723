"""Ingestion — embed chunks and upsert them into the vector index.

Chunks go in one at a time (or ``batch_size`` at a time for the embedding
call), in input order, with no concurrent writes.  Re-running over the same
files is safe: chunk ids are stable, so every upsert overwrites.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from enum import Enum

from langchain_text_splitters import TextSplitter
from pydantic import BaseModel, Field

from codebase_rag.errors import DimensionMismatch, EmbeddingUnavailable, IngestionAborted
from codebase_rag.ingestion.chunker import chunk_file
from codebase_rag.ingestion.embedder import EmbeddingService
from codebase_rag.models import Chunk
from codebase_rag.retrieval.base import VectorStoreBase

logger = logging.getLogger(__name__)


class IngestionPolicy(str, Enum):
    """What to do when a chunk cannot be embedded."""

    ABORT_ALL = "abort_all"
    SKIP_AND_CONTINUE = "skip_and_continue"


class SkippedChunk(BaseModel):
    chunk_id: str
    file_name: str
    reason: str


class IngestionReport(BaseModel):
    """Aggregate outcome of one ingestion run.

    Attributes
    ----------
    total_chunks:
        Chunks handed to the ingestor.
    ingested:
        Chunks embedded and upserted.
    skipped:
        Chunks that failed, with the failure reason.  Under ``ABORT_ALL``
        the chunks after the failure are neither ingested nor listed here.
    chunks_per_file:
        Chunk count of every file in the run, in first-seen order.
    ingested_per_file:
        Upserted chunk count per file.
    unreadable_files:
        Files that matched but could not be read, with the reason.  They
        contribute no chunks and count as failed.
    """

    total_chunks: int = 0
    ingested: int = 0
    skipped: list[SkippedChunk] = Field(default_factory=list)
    chunks_per_file: dict[str, int] = Field(default_factory=dict)
    ingested_per_file: dict[str, int] = Field(default_factory=dict)
    unreadable_files: dict[str, str] = Field(default_factory=dict)

    @property
    def total_files(self) -> int:
        return len(self.chunks_per_file) + len(self.unreadable_files)

    @property
    def failed_files(self) -> list[str]:
        """Unreadable files, then files with at least one chunk missing from the index."""
        return list(self.unreadable_files) + [
            name
            for name, count in self.chunks_per_file.items()
            if self.ingested_per_file.get(name, 0) < count
        ]

    @property
    def complete(self) -> bool:
        return self.ingested == self.total_chunks and not self.unreadable_files

    def summary(self) -> str:
        """Human-readable outcome, suitable for the console."""
        if self.complete:
            return f"Ingested {self.ingested} chunk(s) from {self.total_files} file(s)"
        return (
            f"Could not ingest {len(self.failed_files)} of {self.total_files} file(s) "
            f"({self.total_chunks - self.ingested} of {self.total_chunks} chunk(s) missing)"
        )


def _batched(chunks: Sequence[Chunk], size: int) -> Iterable[Sequence[Chunk]]:
    for start in range(0, len(chunks), size):
        yield chunks[start : start + size]


def ingest_chunks(
    chunks: Iterable[Chunk],
    store: VectorStoreBase,
    embedder: EmbeddingService,
    *,
    policy: IngestionPolicy | str = IngestionPolicy.SKIP_AND_CONTINUE,
    batch_size: int = 1,
    unreadable: Mapping[str, str] | None = None,
    log: logging.Logger | None = None,
) -> IngestionReport:
    """Embed *chunks* and upsert each into *store*, in order.

    Parameters
    ----------
    chunks:
        Chunks produced by the chunker.
    store:
        Vector index to populate.
    embedder:
        Embedding service; the same instance must later embed queries.
    policy:
        ``ABORT_ALL`` stops at the first embedding failure and raises;
        ``SKIP_AND_CONTINUE`` records the chunk as skipped and goes on.
    batch_size:
        Chunks per embedding call.  A failed call fails every chunk in it.
        Chunks always go through ``embed_documents``, so their vectors do
        not depend on the batch size.
    unreadable:
        ``file_name -> reason`` for source files that could not be read.
        They are reported as failed; ``ABORT_ALL`` aborts before embedding.
    log:
        Logger for progress and failures (defaults to this module's).

    Returns
    -------
    IngestionReport
        Counts of ingested and skipped chunks.

    Raises
    ------
    IngestionAborted
        On the first failure under ``ABORT_ALL``, and on any dimension
        mismatch regardless of policy.  The index keeps what was upserted
        before the failure; ``exc.report`` says how much that is.
    """
    log = log or logger
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    policy = IngestionPolicy(policy)
    chunk_list = list(chunks)

    report = IngestionReport(total_chunks=len(chunk_list), unreadable_files=dict(unreadable or {}))
    for chunk in chunk_list:
        report.chunks_per_file[chunk.file_name] = report.chunks_per_file.get(chunk.file_name, 0) + 1

    log.info(
        "Ingesting %d chunk(s) from %d file(s) into %r (policy=%s, batch_size=%d)",
        report.total_chunks,
        report.total_files,
        store.collection_name,
        policy.value,
        batch_size,
    )
    for file_name, reason in report.unreadable_files.items():
        log.warning("Source file %s could not be read: %s", file_name, reason)
    if report.unreadable_files and policy is IngestionPolicy.ABORT_ALL:
        log.error("Aborting ingestion: %d source file(s) unreadable", len(report.unreadable_files))
        raise IngestionAborted(report.summary(), report)

    for batch in _batched(chunk_list, batch_size):
        try:
            vectors = embedder.embed_documents([c.content for c in batch])
        except EmbeddingUnavailable as exc:
            report.skipped.extend(
                SkippedChunk(chunk_id=c.id, file_name=c.file_name, reason=str(exc)) for c in batch
            )
            if policy is IngestionPolicy.ABORT_ALL:
                log.error("Embedding failed at %s, aborting ingestion: %s", batch[0].id, exc)
                raise IngestionAborted(report.summary(), report) from exc
            log.warning("Skipping %d chunk(s) starting at %s: %s", len(batch), batch[0].id, exc)
            continue

        for chunk, vector in zip(batch, vectors):
            try:
                store.upsert(chunk.with_embedding(vector))
            except DimensionMismatch as exc:
                report.skipped.append(
                    SkippedChunk(chunk_id=chunk.id, file_name=chunk.file_name, reason=str(exc))
                )
                log.error("Aborting ingestion: %s", exc)
                raise IngestionAborted(report.summary(), report) from exc
            report.ingested += 1
            report.ingested_per_file[chunk.file_name] = report.ingested_per_file.get(chunk.file_name, 0) + 1

    if report.complete:
        log.info("%s", report.summary())
    else:
        log.warning("%s", report.summary())
    return report


def ingest_files(
    files: Iterable[tuple[str, str]],
    store: VectorStoreBase,
    embedder: EmbeddingService,
    *,
    splitter: TextSplitter | None = None,
    policy: IngestionPolicy | str = IngestionPolicy.SKIP_AND_CONTINUE,
    batch_size: int = 1,
    unreadable: Mapping[str, str] | None = None,
    log: logging.Logger | None = None,
) -> IngestionReport:
    """Chunk ``(file_name, text)`` pairs and ingest the result.

    Empty files produce no chunks and are not counted in the report;
    *unreadable* files are, as failures (see :func:`ingest_chunks`).
    """
    log = log or logger
    chunks: list[Chunk] = []
    file_count = 0
    for file_name, text in files:
        file_chunks = chunk_file(file_name, text, splitter)
        log.debug("Chunked %s into %d chunk(s)", file_name, len(file_chunks))
        chunks.extend(file_chunks)
        file_count += 1
    log.info("Generated %d chunk(s) from %d file(s)", len(chunks), file_count)
    return ingest_chunks(
        chunks,
        store,
        embedder,
        policy=policy,
        batch_size=batch_size,
        unreadable=unreadable,
        log=log,
    )
