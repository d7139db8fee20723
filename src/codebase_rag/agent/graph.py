"""LangGraph graph definition — one grounded conversation turn.

This module wires the nodes defined in :mod:`codebase_rag.agent.nodes`
into a compiled :class:`StateGraph`:

1. **Retrieve** chunks for the user's message (always, never skipped).
2. **Generate** a streamed answer grounded in those chunks.
3. **Append** — package the completed turn and check its citations.

The graph holds no collaborators; the retriever, chat model and fragment
callback travel in the run config (see :func:`turn_config`), so the same
compiled graph serves tests and the CLI alike.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from langgraph.graph import END, StateGraph

from codebase_rag.agent.nodes import finalize_turn, generate_answer, retrieve_context
from codebase_rag.agent.state import LoopState, TurnState

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel
    from langchain_core.messages import BaseMessage
    from langchain_core.runnables import RunnableConfig

    from codebase_rag.retrieval.retriever import SemanticRetriever

RETRIEVING = LoopState.RETRIEVING.value
GENERATING = LoopState.GENERATING.value
APPENDING_TURN = LoopState.APPENDING_TURN.value


def build_graph():  # noqa: ANN201
    """Construct and return the compiled turn graph.

    Graph topology::

        [ START ] → retrieving → generating → appending_turn → [ END ]

    Node names match the :class:`LoopState` they implement, so callers
    streaming ``updates`` can follow the turn's progress.

    Returns
    -------
    CompiledGraph
        A compiled LangGraph workflow ready for ``.invoke()`` / ``.stream()``.
    """
    workflow = StateGraph(TurnState)

    # -- Nodes ---------------------------------------------------------------
    workflow.add_node(RETRIEVING, retrieve_context)
    workflow.add_node(GENERATING, generate_answer)
    workflow.add_node(APPENDING_TURN, finalize_turn)

    # -- Edges ---------------------------------------------------------------
    workflow.set_entry_point(RETRIEVING)
    workflow.add_edge(RETRIEVING, GENERATING)
    workflow.add_edge(GENERATING, APPENDING_TURN)
    workflow.add_edge(APPENDING_TURN, END)

    return workflow.compile()


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def create_turn_state(question: str, history: Sequence[BaseMessage]) -> dict[str, Any]:
    """Build the initial state dict for one turn."""
    return {
        "question": question,
        "history": list(history),
        "results": [],
        "answer": "",
    }


def turn_config(
    retriever: SemanticRetriever,
    llm: BaseChatModel,
    *,
    top_k: int | None = None,
    on_fragment: Callable[[str], None] | None = None,
) -> RunnableConfig:
    """Build the run config carrying a turn's collaborators."""
    return {
        "configurable": {
            "retriever": retriever,
            "llm": llm,
            "top_k": top_k,
            "on_fragment": on_fragment,
        }
    }
