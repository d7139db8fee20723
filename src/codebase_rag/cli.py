"""Console entry point: index the configured source tree, then chat about it.

All setup comes from :mod:`codebase_rag.config` (environment / ``.env``);
there are no command-line flags.
"""

from __future__ import annotations

import logging
import sys

from codebase_rag.agent.llm import get_llm
from codebase_rag.agent.loop import ConversationLoop
from codebase_rag.config import Settings, settings, validate_settings
from codebase_rag.errors import ConfigurationError, IngestionAborted
from codebase_rag.ingestion.chunker import get_splitter
from codebase_rag.ingestion.embedder import EmbeddingService
from codebase_rag.ingestion.loader import scan_sources
from codebase_rag.ingestion.pipeline import ingest_files
from codebase_rag.retrieval import InMemoryVectorStore, SemanticRetriever

logger = logging.getLogger("codebase_rag")

USER_PROMPT = "Me > "


def _read_line() -> str | None:
    try:
        return input(USER_PROMPT)
    except EOFError:
        return None


def _write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def main(cfg: Settings = settings) -> int:
    """Run a full session; returns the process exit code."""
    logging.basicConfig(
        level=cfg.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        root = validate_settings(cfg)
        embedder = EmbeddingService.from_settings(cfg)
        files, unreadable = scan_sources(
            root,
            cfg.source_glob,
            encoding=cfg.source_encoding,
            autodetect_encoding=cfg.source_autodetect_encoding,
        )
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    store = InMemoryVectorStore("codebase", dimension=cfg.embedding_dimension)
    try:
        report = ingest_files(
            files,
            store,
            embedder,
            splitter=get_splitter(cfg.boundary_markers),
            policy=cfg.ingestion_policy,
            batch_size=cfg.ingestion_batch_size,
            unreadable=unreadable,
        )
    except IngestionAborted as exc:
        print(exc.report.summary(), file=sys.stderr)
        return 1
    print(report.summary())

    retriever = SemanticRetriever(
        store,
        embedder,
        default_k=cfg.top_k,
        score_threshold=cfg.score_threshold,
    )
    loop = ConversationLoop(
        retriever,
        get_llm(cfg),
        top_k=cfg.top_k,
        exit_command=cfg.exit_command,
    )
    print(f"Indexed {len(store)} chunk(s). Ask about the code, or type {cfg.exit_command!r} to quit.")
    loop.run(_read_line, _write)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
