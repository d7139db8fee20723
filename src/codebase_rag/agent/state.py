"""Conversation state — loop states, turn state, and the history.

:class:`TurnState` flows through the nodes of one turn graph.
:class:`ConversationHistory` is owned by the loop and only ever grows by
complete user/assistant pairs.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TypedDict

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from codebase_rag.agent.prompts import system_message
from codebase_rag.retrieval.models import Citation, RetrievalResult


class LoopState(str, Enum):
    """States of the grounded conversation loop."""

    IDLE = "idle"
    AWAITING_USER_INPUT = "awaiting_user_input"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    APPENDING_TURN = "appending_turn"
    TERMINATED = "terminated"


@dataclass
class TurnResult:
    """Everything one successful turn produced.

    Attributes
    ----------
    question:
        The user's message.
    answer:
        The full streamed response.
    results:
        Chunks retrieved for the question, best first.
    citations:
        Cited chunks that were among *results*, in order of first citation.
    unverified_citations:
        ``(file, chunk #n)`` references in the answer that match no
        retrieved chunk.
    """

    question: str
    answer: str
    results: list[RetrievalResult] = field(default_factory=list)
    citations: list[Citation] = field(default_factory=list)
    unverified_citations: list[str] = field(default_factory=list)


class TurnState(TypedDict, total=False):
    """Typed state that flows through the turn graph.

    Attributes
    ----------
    question:
        The user's current message.
    history:
        Committed turns before this one (starts with the system turn).
    results:
        Chunks returned by the ``retrieving`` node.
    answer:
        Full response accumulated by the ``generating`` node.
    turn:
        The :class:`TurnResult` built by the ``appending_turn`` node.
    """

    question: str
    history: list[BaseMessage]
    results: list[RetrievalResult]
    answer: str
    turn: TurnResult


class ConversationHistory:
    """Append-only sequence of complete conversation turns.

    The first turn is the system instruction.  A user message and the
    assistant's answer are appended together by :meth:`commit`, so the
    history never holds a question without its answer or a partial answer.
    """

    def __init__(self, system: BaseMessage | None = None) -> None:
        self._messages: list[BaseMessage] = [system or system_message()]

    @property
    def messages(self) -> list[BaseMessage]:
        """A copy of the turns, oldest first."""
        return list(self._messages)

    def commit(self, question: str, answer: str) -> None:
        self._messages.append(HumanMessage(content=question))
        self._messages.append(AIMessage(content=answer))

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[BaseMessage]:
        return iter(list(self._messages))
