"""Prompt templates and citation parsing for the grounded conversation.

Keeping the system instruction and the context layout in one place makes
them easy to audit and version.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

    from codebase_rag.retrieval.models import RetrievalResult

# ── System instruction ────────────────────────────────────────────────

GROUNDED_SYSTEM_PROMPT = """\
You are a RAG-enabled assistant for a software codebase. For every query:

1. Relevant code chunks have already been retrieved from the codebase and are
   listed with the user's message. Base your answer on those chunks.
2. Cite each fact with its source in the form (FileName, chunk #N), using the
   file name and chunk number exactly as listed, e.g. (src/Order.cs, chunk #2).
3. If the retrieved chunks do not contain the answer, say so honestly and do
   NOT fabricate code, names, or behaviour.

Keep answers concise and grounded in the retrieved material.
"""


def system_message() -> SystemMessage:
    return SystemMessage(content=GROUNDED_SYSTEM_PROMPT)


# ── Context ───────────────────────────────────────────────────────────


def format_context(results: Sequence[RetrievalResult]) -> str:
    """Render retrieved chunks with the identifiers the model must cite."""
    if not results:
        return "(no matching chunks were found in the codebase)"
    parts: list[str] = []
    for r in results:
        parts.append(
            f"--- {r.citation.short_ref()} score={r.score:.3f}\n{r.chunk.content}"
        )
    return "\n\n".join(parts)


def build_user_message(question: str, results: Sequence[RetrievalResult]) -> HumanMessage:
    """The current user turn as sent to the model: context first, then the question."""
    return HumanMessage(
        content=(
            f"Retrieved codebase chunks:\n{format_context(results)}\n\n"
            f"Question: {question}"
        )
    )


def build_turn_prompt(
    history: Sequence[BaseMessage],
    question: str,
    results: Sequence[RetrievalResult],
) -> list[BaseMessage]:
    """Assemble the messages for one generation call.

    Parameters
    ----------
    history:
        Prior turns, starting with the system instruction.  When it does not
        start with a system message, :data:`GROUNDED_SYSTEM_PROMPT` is prepended.
    question:
        The user's current message.
    results:
        Chunks retrieved for *question*.
    """
    messages: list[BaseMessage] = list(history)
    if not messages or messages[0].type != "system":
        messages.insert(0, system_message())
    messages.append(build_user_message(question, results))
    return messages


# ── Citation parsing ──────────────────────────────────────────────────

CITATION_PATTERN = re.compile(r"\(\s*([^(),\n]+?)\s*,\s*chunk\s*#\s*(\d+)\s*\)", re.IGNORECASE)


def extract_citations(answer: str) -> list[tuple[str, int]]:
    """Return ``(file_name, chunk_index)`` pairs cited in *answer*, first occurrence order."""
    seen: dict[tuple[str, int], None] = {}
    for match in CITATION_PATTERN.finditer(answer):
        seen.setdefault((match.group(1), int(match.group(2))), None)
    return list(seen)
