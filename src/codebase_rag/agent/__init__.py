"""
Agent — the grounded conversation loop, built with LangGraph.

Every turn runs a small graph (retrieve → generate → append) that can be
tested locally by injecting a fake retriever and chat model.

Public API
----------
- :class:`ConversationLoop` — multi-turn chat with mandatory retrieval.
- :func:`build_graph` — compile the per-turn workflow.
- :class:`ConversationHistory`, :class:`LoopState`, :class:`TurnResult`.
"""

from codebase_rag.agent.graph import build_graph, create_turn_state, turn_config
from codebase_rag.agent.loop import ConversationLoop
from codebase_rag.agent.state import ConversationHistory, LoopState, TurnResult, TurnState

__all__ = [
    "ConversationHistory",
    "ConversationLoop",
    "LoopState",
    "TurnResult",
    "TurnState",
    "build_graph",
    "create_turn_state",
    "turn_config",
]
