"""LLM initialisation and streaming — single place to swap providers.

Supports two modes:

1. **OpenAI cloud** (default) — set ``OPENAI_API_KEY``.
2. **OpenAI-compatible endpoint** — set ``LLM_BASE_URL`` (vLLM, Ollama,
   Azure-fronted proxies …).  ``ChatOpenAI`` works unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Any

from langchain_openai import ChatOpenAI

from codebase_rag.config import Settings, settings
from codebase_rag.errors import GenerationUnavailable

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)


def get_llm(cfg: Settings = settings) -> ChatOpenAI:
    """Return the configured streaming chat model.

    When ``cfg.llm_base_url`` is set the client is pointed at that endpoint
    instead of the OpenAI cloud API, with a dummy key (``"EMPTY"``) if none
    is configured.
    """
    kwargs: dict[str, Any] = {
        "model": cfg.llm_model_name,
        "temperature": cfg.llm_temperature,
        "timeout": cfg.request_timeout,
        "streaming": True,
    }

    if cfg.llm_base_url:
        logger.info("Using OpenAI-compatible chat endpoint: %s", cfg.llm_base_url)
        kwargs["base_url"] = cfg.llm_base_url
        kwargs["api_key"] = cfg.openai_api_key or "EMPTY"
    else:
        kwargs["api_key"] = cfg.openai_api_key

    return ChatOpenAI(**kwargs)


def _fragment_text(content: Any) -> str:
    """Flatten a chunk's content (string or list of content blocks) to text."""
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def stream_chat(llm: BaseChatModel, messages: Sequence[BaseMessage]) -> Iterator[str]:
    """Stream the model's reply to *messages* as text fragments.

    The iterator is finite: it ends when the model signals completion.
    Empty fragments (role headers, usage records) are not yielded.

    Raises
    ------
    GenerationUnavailable
        When the request fails, before or after the first fragment.
    """
    try:
        for chunk in llm.stream(list(messages)):
            text = _fragment_text(chunk.content)
            if text:
                yield text
    except GenerationUnavailable:
        raise
    except Exception as exc:
        logger.error("Chat stream failed: %s", exc)
        raise GenerationUnavailable(f"Chat model failed: {exc}") from exc
