"""Embedding capability shared by ingestion and query-time retrieval.

One :class:`EmbeddingService` instance must serve both sides: chunks and
queries are embedded by the same model, so their vectors live in the same
space and have the same dimension.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from codebase_rag.config import Settings, settings
from codebase_rag.errors import ConfigurationError, EmbeddingUnavailable

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


def get_embedding_function(cfg: Settings = settings) -> Embeddings:
    """Return the configured LangChain embedding model.

    ``openai`` (default) talks to the OpenAI embeddings API, or to
    ``llm_base_url`` when that points at a compatible server.
    ``huggingface`` runs a local sentence-transformer and needs the
    ``huggingface`` extra installed.
    """
    if cfg.embedding_provider == "huggingface":
        try:
            from langchain_huggingface import HuggingFaceEmbeddings
        except ImportError as exc:
            raise ConfigurationError(
                "embedding_provider='huggingface' requires the 'huggingface' extra "
                "(pip install 'codebase-rag[huggingface]')"
            ) from exc
        return HuggingFaceEmbeddings(model_name=cfg.embedding_model)

    from langchain_openai import OpenAIEmbeddings

    kwargs: dict[str, Any] = {
        "model": cfg.embedding_model,
        "timeout": cfg.request_timeout,
        # Retries are handled by EmbeddingService.
        "max_retries": 0,
    }
    if cfg.llm_base_url:
        logger.info("Using OpenAI-compatible embedding endpoint: %s", cfg.llm_base_url)
        kwargs["base_url"] = cfg.llm_base_url
        kwargs["api_key"] = cfg.openai_api_key or "EMPTY"
        # Local servers reject pre-tokenised input.
        kwargs["check_embedding_ctx_length"] = False
    else:
        kwargs["api_key"] = cfg.openai_api_key
    return OpenAIEmbeddings(**kwargs)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Embedding call failed (attempt %d): %s; retrying",
        retry_state.attempt_number,
        exc,
    )


class EmbeddingService:
    """Wraps a LangChain :class:`Embeddings` with retries and error translation.

    Any failure of the underlying model surfaces as
    :class:`~codebase_rag.errors.EmbeddingUnavailable`, after up to
    *max_attempts* tries with exponential backoff and jitter.

    Parameters
    ----------
    embeddings:
        The embedding model.
    max_attempts:
        Total tries per call (1 disables retrying).
    wait_initial, wait_max, jitter:
        Backoff parameters in seconds, forwarded to
        :func:`tenacity.wait_exponential_jitter`.
    """

    def __init__(
        self,
        embeddings: Embeddings,
        *,
        max_attempts: int = 3,
        wait_initial: float = 1.0,
        wait_max: float = 20.0,
        jitter: float = 1.0,
    ) -> None:
        self.embeddings = embeddings
        self._retrying = Retrying(
            retry=retry_if_exception_type(EmbeddingUnavailable),
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential_jitter(wait_initial, max=wait_max, jitter=jitter),
            before_sleep=_log_retry,
            reraise=True,
        )

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> EmbeddingService:
        return cls(get_embedding_function(cfg), max_attempts=cfg.embedding_max_attempts)

    def embed_query(self, text: str) -> list[float]:
        """Embed a single text (a query, or one chunk)."""
        return self._retrying(self._embed_query, text)

    def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed several texts in one model call."""
        return self._retrying(self._embed_documents, list(texts))

    # -- internals ------------------------------------------------------------

    def _embed_query(self, text: str) -> list[float]:
        try:
            return list(self.embeddings.embed_query(text))
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedding model failed: {exc}") from exc

    def _embed_documents(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = self.embeddings.embed_documents(texts)
        except Exception as exc:
            raise EmbeddingUnavailable(f"Embedding model failed: {exc}") from exc
        if len(vectors) != len(texts):
            raise EmbeddingUnavailable(
                f"Embedding model returned {len(vectors)} vector(s) for {len(texts)} text(s)"
            )
        return [list(v) for v in vectors]
