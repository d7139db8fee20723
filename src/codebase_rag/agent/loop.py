"""The grounded conversation loop.

One turn at a time: wait for a user line, retrieve, stream a grounded
answer, and commit the question/answer pair to the history.  A failed
search or a broken stream is reported to the user and leaves the history
exactly as it was; the loop then waits for the next line.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from codebase_rag.agent.graph import build_graph, create_turn_state, turn_config
from codebase_rag.agent.state import ConversationHistory, LoopState, TurnResult
from codebase_rag.errors import GenerationUnavailable, RetrievalUnavailable

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from codebase_rag.retrieval.retriever import SemanticRetriever

logger = logging.getLogger(__name__)

# Node name -> state entered once that node has finished.  The history
# commit after the last node is part of APPENDING_TURN.
_NEXT_STATE = {
    LoopState.RETRIEVING.value: LoopState.GENERATING,
    LoopState.GENERATING.value: LoopState.APPENDING_TURN,
    LoopState.APPENDING_TURN.value: LoopState.APPENDING_TURN,
}

SEARCH_FAILED = "Could not search the codebase"
GENERATION_FAILED = "Could not generate a response"


class ConversationLoop:
    """Drives a multi-turn, retrieval-grounded chat.

    Parameters
    ----------
    retriever:
        Search capability; it must share its embedding service with the
        ingestion that built the index.
    llm:
        Streaming chat model.
    top_k:
        Chunks retrieved per turn.
    exit_command:
        User input that ends the session.
    history:
        Starting history; a fresh one holding only the system turn by default.
    log:
        Logger for turn events (defaults to this module's).
    """

    def __init__(
        self,
        retriever: SemanticRetriever,
        llm: BaseChatModel,
        *,
        top_k: int = 5,
        exit_command: str = "exit",
        history: ConversationHistory | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.retriever = retriever
        self.llm = llm
        self.top_k = top_k
        self.exit_command = exit_command
        self.history = history or ConversationHistory()
        self.state = LoopState.IDLE
        self._graph = build_graph()
        self._log = log or logger

    # -- single turn ------------------------------------------------------------

    def ask(self, question: str, on_fragment: Callable[[str], None] | None = None) -> TurnResult:
        """Run one turn for *question* and commit it to the history.

        Parameters
        ----------
        question:
            The user's message.
        on_fragment:
            Called with every streamed text fragment, in order.

        Raises
        ------
        RetrievalUnavailable
            The index could not be searched.  History is unchanged.
        GenerationUnavailable
            The stream failed.  History is unchanged; partial text is dropped.
        """
        self.state = LoopState.RETRIEVING
        final: dict[str, Any] = {}
        try:
            for update in self._graph.stream(
                create_turn_state(question, self.history.messages),
                config=turn_config(self.retriever, self.llm, top_k=self.top_k, on_fragment=on_fragment),
                stream_mode="updates",
            ):
                for node, values in update.items():
                    final.update(values or {})
                    self.state = _NEXT_STATE.get(node, self.state)
        except (RetrievalUnavailable, GenerationUnavailable):
            self.state = LoopState.AWAITING_USER_INPUT
            raise

        turn: TurnResult = final["turn"]
        self.history.commit(turn.question, turn.answer)
        self.state = LoopState.AWAITING_USER_INPUT
        self._log.info(
            "Turn complete: %d chunk(s) retrieved, %d citation(s), history=%d turn(s)",
            len(turn.results),
            len(turn.citations),
            len(self.history),
        )
        return turn

    # -- interactive session ----------------------------------------------------

    def run(
        self,
        read_input: Callable[[], str | None],
        write: Callable[[str], None],
    ) -> None:
        """Read-eval loop until the exit command or end of input.

        Parameters
        ----------
        read_input:
            Returns the next user line, or ``None`` at end of input.
        write:
            Receives output text: streamed fragments, newlines and error
            messages.  It is called without implicit newlines.
        """
        while True:
            self.state = LoopState.AWAITING_USER_INPUT
            line = read_input()
            if line is None or line.strip() == self.exit_command:
                break
            question = line.strip()
            if not question:
                continue

            try:
                self.ask(question, on_fragment=write)
            except RetrievalUnavailable as exc:
                self._log.error("Turn failed during retrieval: %s", exc)
                write(f"{SEARCH_FAILED}: {exc}\n")
                continue
            except GenerationUnavailable as exc:
                self._log.error("Turn failed during generation: %s", exc)
                write(f"\n{GENERATION_FAILED}: {exc}\n")
                continue
            write("\n")

        self.state = LoopState.TERMINATED
        self._log.info("Conversation terminated after %d turn(s)", len(self.history))
