"""Unit tests for the grounded conversation layer.

All tests run **without** OpenAI by injecting a keyword-embedding fake and
scripted streaming chat models.  The suite validates:

- Prompt construction and citation parsing
- Streaming and error translation
- Individual node logic (retrieve_context, generate_answer, finalize_turn)
- Graph compilation and end-to-end turns
- Loop state transitions, history integrity, and user-visible failures
"""

from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage

from codebase_rag.agent.graph import build_graph, create_turn_state, turn_config
from codebase_rag.agent.llm import get_llm, stream_chat
from codebase_rag.agent.loop import ConversationLoop
from codebase_rag.agent.nodes import finalize_turn, generate_answer, retrieve_context
from codebase_rag.agent.prompts import (
    GROUNDED_SYSTEM_PROMPT,
    build_turn_prompt,
    extract_citations,
    format_context,
)
from codebase_rag.agent.state import ConversationHistory, LoopState, TurnResult
from codebase_rag.config import Settings
from codebase_rag.errors import GenerationUnavailable, RetrievalUnavailable
from codebase_rag.ingestion.embedder import EmbeddingService
from codebase_rag.ingestion.pipeline import ingest_files
from codebase_rag.models import Chunk
from codebase_rag.retrieval import InMemoryVectorStore, RetrievalResult, SemanticRetriever
from tests.fakes import A_CS, B_CS, FlakyEmbeddings, ScriptedChatModel, make_embedder


# ── Fixtures & helpers ─────────────────────────────────────────────────


def _result(file_name: str, index: int, content: str = "code", score: float = 0.9) -> RetrievalResult:
    return RetrievalResult(chunk=Chunk(file_name=file_name, chunk_index=index, content=content), score=score)


@pytest.fixture()
def retriever(store: InMemoryVectorStore, embedder: EmbeddingService) -> SemanticRetriever:
    ingest_files([("A.cs", A_CS), ("B.cs", B_CS)], store, embedder)
    return SemanticRetriever(store, embedder, default_k=3)


def _inputs(*lines: str | None) -> Iterator[str | None]:
    return iter(lines)


# ═══════════════════════════════════════════════════════════════════════
# Prompts
# ═══════════════════════════════════════════════════════════════════════


class TestPrompts:
    def test_system_prompt_mandates_citation_form(self) -> None:
        assert "(FileName, chunk #N)" in GROUNDED_SYSTEM_PROMPT

    def test_context_lists_identifiers_and_content(self) -> None:
        text = format_context([_result("A.cs", 1, "public int Add()", 0.75)])
        assert "(A.cs, chunk #1)" in text
        assert "score=0.750" in text
        assert "public int Add()" in text

    def test_empty_context_says_so(self) -> None:
        assert "no matching chunks" in format_context([])

    def test_turn_prompt_layout(self) -> None:
        history = [SystemMessage(content="sys"), HumanMessage(content="q1"), AIMessage(content="a1")]
        messages = build_turn_prompt(history, "q2", [_result("A.cs", 0)])
        assert messages[:3] == history
        assert isinstance(messages[-1], HumanMessage)
        assert "Question: q2" in messages[-1].content
        assert "(A.cs, chunk #0)" in messages[-1].content

    def test_turn_prompt_adds_system_instruction_when_missing(self) -> None:
        messages = build_turn_prompt([], "q", [])
        assert isinstance(messages[0], SystemMessage)
        assert messages[0].content == GROUNDED_SYSTEM_PROMPT
        assert len(messages) == 2


class TestExtractCitations:
    def test_finds_all_forms(self) -> None:
        answer = "Add sums (A.cs, chunk #1). Logging is in (src/B.cs, chunk#0) and (A.cs , Chunk # 2)."
        assert extract_citations(answer) == [("A.cs", 1), ("src/B.cs", 0), ("A.cs", 2)]

    def test_deduplicates(self) -> None:
        assert extract_citations("(A.cs, chunk #1) again (A.cs, chunk #1)") == [("A.cs", 1)]

    def test_ignores_other_parentheses(self) -> None:
        assert extract_citations("call Add(a, b) with (two, numbers)") == []


# ═══════════════════════════════════════════════════════════════════════
# LLM streaming
# ═══════════════════════════════════════════════════════════════════════


class TestStreamChat:
    def test_yields_text_fragments(self) -> None:
        llm = ScriptedChatModel(["Hel", "", "lo"])
        assert list(stream_chat(llm, [HumanMessage(content="hi")])) == ["Hel", "lo"]

    def test_flattens_content_blocks(self) -> None:
        llm = MagicMock()
        llm.stream.return_value = iter([AIMessageChunk(content=[{"type": "text", "text": "block"}])])
        assert list(stream_chat(llm, [])) == ["block"]

    def test_mid_stream_failure_translated(self) -> None:
        llm = ScriptedChatModel(["partial"], error=ConnectionError("reset by peer"))
        stream = stream_chat(llm, [])
        assert next(stream) == "partial"
        with pytest.raises(GenerationUnavailable, match="reset by peer"):
            next(stream)

    def test_get_llm_uses_base_url(self) -> None:
        cfg = Settings(openai_api_key="", llm_base_url="http://localhost:8000/v1", llm_model_name="local-model")
        with patch("codebase_rag.agent.llm.ChatOpenAI") as chat_cls:
            get_llm(cfg)
        kwargs = chat_cls.call_args.kwargs
        assert kwargs["base_url"] == "http://localhost:8000/v1"
        assert kwargs["api_key"] == "EMPTY"
        assert kwargs["streaming"] is True


# ═══════════════════════════════════════════════════════════════════════
# Nodes
# ═══════════════════════════════════════════════════════════════════════


class TestRetrieveContext:
    def test_uses_configured_top_k(self, retriever: SemanticRetriever) -> None:
        state = create_turn_state("How does Add work?", [])
        result = retrieve_context(state, turn_config(retriever, MagicMock(), top_k=1))
        assert [r.chunk.id for r in result["results"]] == ["A.cs#1"]

    def test_failure_propagates(self, store: InMemoryVectorStore) -> None:
        broken = SemanticRetriever(store, make_embedder(FlakyEmbeddings(failures=10)))
        with pytest.raises(RetrievalUnavailable):
            retrieve_context(create_turn_state("q", []), turn_config(broken, MagicMock()))


class TestGenerateAnswer:
    def test_streams_fragments_to_callback_and_accumulates(self) -> None:
        llm = ScriptedChatModel(["Add ", "sums ", "(A.cs, chunk #1)"])
        seen: list[str] = []
        state = {**create_turn_state("q", []), "results": [_result("A.cs", 1)]}
        result = generate_answer(state, turn_config(MagicMock(), llm, on_fragment=seen.append))
        assert seen == ["Add ", "sums ", "(A.cs, chunk #1)"]
        assert result["answer"] == "Add sums (A.cs, chunk #1)"

    def test_prompt_contains_history_and_context(self) -> None:
        llm = ScriptedChatModel(["ok"])
        history = ConversationHistory().messages + [HumanMessage(content="earlier"), AIMessage(content="reply")]
        state = {**create_turn_state("now", history), "results": [_result("B.cs", 0, "static void Log")]}
        generate_answer(state, turn_config(MagicMock(), llm))
        sent = llm.calls[0]
        assert sent[0].content == GROUNDED_SYSTEM_PROMPT
        assert [m.content for m in sent[1:3]] == ["earlier", "reply"]
        assert "static void Log" in sent[-1].content

    def test_failure_returns_nothing(self) -> None:
        llm = ScriptedChatModel(["half an"], error=TimeoutError("stalled"))
        with pytest.raises(GenerationUnavailable):
            generate_answer(create_turn_state("q", []), turn_config(MagicMock(), llm))


class TestFinalizeTurn:
    def test_verified_and_unverified_citations(self) -> None:
        state = {
            **create_turn_state("q", []),
            "results": [_result("A.cs", 1), _result("B.cs", 0)],
            "answer": "Sum (A.cs, chunk #1). Made up (C.cs, chunk #4).",
        }
        turn = finalize_turn(state)["turn"]
        assert isinstance(turn, TurnResult)
        assert [c.chunk_id for c in turn.citations] == ["A.cs#1"]
        assert turn.unverified_citations == ["(C.cs, chunk #4)"]

    def test_uncited_answer_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        state = {**create_turn_state("q", []), "results": [_result("A.cs", 1)], "answer": "No refs."}
        with caplog.at_level("WARNING", logger="codebase_rag.agent.nodes"):
            turn = finalize_turn(state)["turn"]
        assert turn.citations == []
        assert any("no citation" in r.getMessage() for r in caplog.records)


# ═══════════════════════════════════════════════════════════════════════
# Graph
# ═══════════════════════════════════════════════════════════════════════


class TestGraph:
    def test_build_graph_compiles(self) -> None:
        graph = build_graph()
        assert graph is not None

    def test_invoke_runs_full_turn(self, retriever: SemanticRetriever) -> None:
        llm = ScriptedChatModel(["Multiply is in (A.cs, chunk #2)."])
        result = build_graph().invoke(
            create_turn_state("Where is multiply?", []),
            config=turn_config(retriever, llm, top_k=2),
        )
        assert result["turn"].answer == "Multiply is in (A.cs, chunk #2)."
        assert result["results"][0].chunk.id == "A.cs#2"
        assert [c.chunk_id for c in result["turn"].citations] == ["A.cs#2"]

    def test_nodes_stream_in_order(self, retriever: SemanticRetriever) -> None:
        llm = ScriptedChatModel(["ok"])
        nodes = [
            node
            for update in build_graph().stream(
                create_turn_state("q", []),
                config=turn_config(retriever, llm),
                stream_mode="updates",
            )
            for node in update
        ]
        assert nodes == ["retrieving", "generating", "appending_turn"]


# ═══════════════════════════════════════════════════════════════════════
# Conversation loop
# ═══════════════════════════════════════════════════════════════════════


class TestConversationLoopAsk:
    def test_history_starts_with_system_turn(self, retriever: SemanticRetriever) -> None:
        loop = ConversationLoop(retriever, ScriptedChatModel([]))
        assert loop.state is LoopState.IDLE
        assert len(loop.history) == 1
        assert loop.history.messages[0].type == "system"

    def test_successful_turn_appends_user_and_assistant(self, retriever: SemanticRetriever) -> None:
        loop = ConversationLoop(retriever, ScriptedChatModel(["Add ", "sums (A.cs, chunk #1)"]), top_k=1)
        turn = loop.ask("How does Add work?")
        assert turn.answer == "Add sums (A.cs, chunk #1)"
        assert [r.chunk.id for r in turn.results] == ["A.cs#1"]
        messages = loop.history.messages
        assert len(messages) == 3
        assert isinstance(messages[1], HumanMessage) and messages[1].content == "How does Add work?"
        assert isinstance(messages[2], AIMessage) and messages[2].content == turn.answer
        assert loop.state is LoopState.AWAITING_USER_INPUT

    def test_retrieves_on_every_turn(self, retriever: SemanticRetriever, keyword_embeddings) -> None:
        loop = ConversationLoop(retriever, ScriptedChatModel(["hi"]))
        before = len(keyword_embeddings.calls)
        loop.ask("hello")
        loop.ask("thanks")
        assert keyword_embeddings.calls[before:] == ["hello", "thanks"]

    def test_later_turns_see_prior_history(self, retriever: SemanticRetriever) -> None:
        llm = ScriptedChatModel(["answer"])
        loop = ConversationLoop(retriever, llm)
        loop.ask("first")
        loop.ask("second")
        second_prompt = llm.calls[1]
        assert [m.content for m in second_prompt[1:3]] == ["first", "answer"]

    def test_generation_failure_leaves_history_untouched(self, retriever: SemanticRetriever) -> None:
        loop = ConversationLoop(retriever, ScriptedChatModel(["ok"]))
        loop.ask("first")
        before = loop.history.messages

        loop.llm = ScriptedChatModel(["partial ", "text"], error=ConnectionError("dropped"))
        seen: list[str] = []
        with pytest.raises(GenerationUnavailable):
            loop.ask("second", on_fragment=seen.append)

        assert seen == ["partial ", "text"]
        assert len(loop.history) == len(before)
        assert loop.history.messages == before
        assert all("partial" not in str(m.content) for m in loop.history.messages)
        assert loop.state is LoopState.AWAITING_USER_INPUT

    def test_retrieval_failure_leaves_history_untouched(self, store: InMemoryVectorStore) -> None:
        broken = SemanticRetriever(store, make_embedder(FlakyEmbeddings(failures=10)))
        llm = ScriptedChatModel(["never"])
        loop = ConversationLoop(broken, llm)
        with pytest.raises(RetrievalUnavailable):
            loop.ask("q")
        assert len(loop.history) == 1
        assert llm.calls == []


class TestConversationLoopRun:
    def test_exit_command_terminates(self, retriever: SemanticRetriever) -> None:
        llm = ScriptedChatModel(["reply"])
        out: list[str] = []
        lines = _inputs("How does Add work?", "exit", "never read")
        loop = ConversationLoop(retriever, llm)
        loop.run(lambda: next(lines), out.append)
        assert loop.state is LoopState.TERMINATED
        assert len(llm.calls) == 1
        assert "".join(out) == "reply\n"

    def test_end_of_input_terminates(self, retriever: SemanticRetriever) -> None:
        lines = _inputs(None)
        loop = ConversationLoop(retriever, ScriptedChatModel([]))
        loop.run(lambda: next(lines), lambda _: None)
        assert loop.state is LoopState.TERMINATED

    def test_custom_exit_command_and_blank_lines(self, retriever: SemanticRetriever) -> None:
        llm = ScriptedChatModel(["x"])
        lines = _inputs("", "   ", "exit", "quit")
        loop = ConversationLoop(retriever, llm, exit_command="quit")
        loop.run(lambda: next(lines), lambda _: None)
        # "exit" is an ordinary question here; blank lines are skipped.
        assert len(llm.calls) == 1
        assert len(loop.history) == 3

    def test_generation_failure_reported_and_loop_continues(self, retriever: SemanticRetriever) -> None:
        out: list[str] = []
        loop = ConversationLoop(retriever, ScriptedChatModel(["half"], error=RuntimeError("boom")))
        calls = iter(["q1", "q2"])

        def read() -> str | None:
            line = next(calls, None)
            if line == "q2":
                loop.llm = ScriptedChatModel(["fine"])
            return line

        loop.run(read, out.append)
        text = "".join(out)
        assert "Could not generate a response" in text
        assert text.endswith("fine\n")
        assert [m.content for m in loop.history.messages[1:]] == ["q2", "fine"]

    def test_retrieval_failure_reported(self, store: InMemoryVectorStore) -> None:
        broken = SemanticRetriever(store, make_embedder(FlakyEmbeddings(failures=10)))
        out: list[str] = []
        lines = _inputs("q", "exit")
        loop = ConversationLoop(broken, ScriptedChatModel(["never"]))
        loop.run(lambda: next(lines), out.append)
        assert "Could not search the codebase" in "".join(out)
        assert len(loop.history) == 1
        assert loop.state is LoopState.TERMINATED
