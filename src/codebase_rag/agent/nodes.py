"""Graph nodes — each function is one step of a conversation turn.

Node contract
-------------
* Accepts the :class:`TurnState` dict and the run config.
* Returns a *partial* dict with **only the keys that changed**.
* Collaborators come from ``config["configurable"]`` (``retriever``,
  ``llm``, ``top_k``, ``on_fragment``), never from globals, so every node
  is independently testable with fakes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from langchain_core.runnables import RunnableConfig

from codebase_rag.agent.llm import stream_chat
from codebase_rag.agent.prompts import build_turn_prompt, extract_citations
from codebase_rag.agent.state import TurnResult, TurnState
from codebase_rag.retrieval.models import Citation

logger = logging.getLogger(__name__)


def _configurable(config: RunnableConfig | None) -> dict[str, Any]:
    return (config or {}).get("configurable", {})


# ── 1. RETRIEVING ─────────────────────────────────────────────────────


def retrieve_context(state: TurnState, config: RunnableConfig) -> dict[str, Any]:
    """Search the index for the user's message.

    Runs for every turn, whatever the question.  ``RetrievalUnavailable``
    propagates so the loop can report "could not search".
    """
    options = _configurable(config)
    retriever = options["retriever"]
    results = retriever.retrieve(state["question"], k=options.get("top_k"))
    logger.info(
        "Retrieved %d chunk(s) for turn: %s",
        len(results),
        ", ".join(r.chunk.id for r in results) or "none",
    )
    return {"results": results}


# ── 2. GENERATING ─────────────────────────────────────────────────────


def generate_answer(state: TurnState, config: RunnableConfig) -> dict[str, Any]:
    """Stream the grounded answer, surfacing every fragment as it arrives.

    ``GenerationUnavailable`` propagates; nothing is returned for a broken
    stream, so no partial answer reaches the state.
    """
    options = _configurable(config)
    on_fragment: Callable[[str], None] | None = options.get("on_fragment")
    messages = build_turn_prompt(
        state.get("history", []),
        state["question"],
        state.get("results", []),
    )

    fragments: list[str] = []
    for fragment in stream_chat(options["llm"], messages):
        if on_fragment is not None:
            on_fragment(fragment)
        fragments.append(fragment)

    answer = "".join(fragments)
    logger.debug("Generated answer of %d chars", len(answer))
    return {"answer": answer}


# ── 3. APPENDING TURN ─────────────────────────────────────────────────


def finalize_turn(state: TurnState) -> dict[str, Any]:
    """Package the completed turn and check its citations.

    References that match a retrieved chunk become :class:`Citation`
    objects; any other ``(file, chunk #n)`` reference is kept as
    unverified and logged.
    """
    results = state.get("results", [])
    answer = state.get("answer", "")
    by_ref = {(r.chunk.file_name, r.chunk.chunk_index): r for r in results}

    citations: list[Citation] = []
    unverified: list[str] = []
    for file_name, chunk_index in extract_citations(answer):
        hit = by_ref.get((file_name, chunk_index))
        if hit is None:
            unverified.append(f"({file_name}, chunk #{chunk_index})")
        else:
            citations.append(hit.citation)

    if unverified:
        logger.warning("Answer cites chunk(s) that were not retrieved: %s", ", ".join(unverified))
    if results and not citations:
        logger.warning("Answer carries no citation of the %d retrieved chunk(s)", len(results))

    turn = TurnResult(
        question=state["question"],
        answer=answer,
        results=list(results),
        citations=citations,
        unverified_citations=unverified,
    )
    return {"turn": turn}
