"""Tests for the study session state transitions and controller actions."""

from __future__ import annotations

import json
import re

import pytest
from langchain_core.messages import AIMessage

import services.llm_service as llm_mod
import services.study_session as ss
from config import ANSWER_ERROR_MESSAGE, PDF_ERROR_MESSAGE, VIEW_ERROR_MESSAGES
from conftest import FakeUpload
from services.errors import QueryError
from services.models import AppMode, ChatMessage, MindMapNode, PdfChunk


class EchoModel:
    """Answers "page N" questions by quoting page N of the context it is given."""

    def __init__(self) -> None:
        self.calls: list[list] = []

    def invoke(self, messages):
        self.calls.append(list(messages))
        context = messages[0].content
        question = messages[-1].content
        match = re.search(r"page (\d+)", question, re.IGNORECASE)
        if not match:
            return AIMessage(content=json.dumps({"answer": "Not in the document.", "source": "", "pageNumber": None}))
        page = int(match.group(1))
        found = re.search(rf"Page {page}:\n(.*?)(?:\n\n---\n\n|$)", context, re.DOTALL)
        excerpt = found.group(1) if found else ""
        return AIMessage(content=json.dumps({"answer": f"Page {page} says {excerpt}", "source": excerpt, "pageNumber": page}))


class FailingModel:
    def invoke(self, messages):
        raise ConnectionError("network unreachable")


@pytest.fixture
def echo(monkeypatch):
    model = EchoModel()
    monkeypatch.setattr(llm_mod, "_build_chat_model", lambda api_key, temperature: model)
    return model


@pytest.fixture
def failing(monkeypatch):
    monkeypatch.setattr(llm_mod, "_build_chat_model", lambda api_key, temperature: FailingModel())


@pytest.fixture
def loaded(abc_pdf, metrics_reset):
    session = ss.StudySession()
    assert session.upload(FakeUpload(abc_pdf, "bio.pdf"))
    return session


class StubGenerator:
    """Stands in for every view generator; returns or raises a preset value."""

    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple] = []

    def _run(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        if self.error is not None:
            raise self.error
        return self.result

    generate_questions = _run
    generate_glossary = _run
    generate_flashcards = _run
    generate_mind_map = _run


# ──────────────────────────────────────────────────────────────
# Pure transitions
# ──────────────────────────────────────────────────────────────

class TestTransitions:
    def _loaded_state(self) -> ss.StudyState:
        state = ss.begin_upload(ss.StudyState())
        return ss.complete_upload(state, "a.pdf", [PdfChunk(1, "A")])

    def test_begin_upload_clears_everything(self):
        state = ss.fail_question(ss.begin_question(self._loaded_state(), "q?"))
        state = ss.store_view(ss.switch_mode(state, "glossary"), AppMode.GLOSSARY, ["x"])
        fresh = ss.begin_upload(state)
        assert fresh == ss.StudyState(is_loading_pdf=True)

    def test_complete_upload_greets(self):
        state = self._loaded_state()
        assert not state.is_loading_pdf
        assert state.messages == (ss.greeting_for("a.pdf"),)
        assert '"a.pdf"' in state.messages[0].content

    def test_fail_upload(self):
        state = ss.fail_upload(ss.begin_upload(self._loaded_state()))
        assert state.error == PDF_ERROR_MESSAGE
        assert not state.has_document
        assert state.messages == ()

    def test_question_lifecycle(self):
        state = ss.begin_question(self._loaded_state(), "Why?")
        assert state.is_answering and state.is_busy
        assert state.messages[-1] == ChatMessage.user("Why?")
        state = ss.complete_question(state, ChatMessage.model("Because."))
        assert not state.is_answering
        assert [m.role for m in state.messages] == ["model", "user", "model"]

    def test_fail_question(self):
        state = ss.fail_question(ss.begin_question(self._loaded_state(), "Why?"))
        assert state.messages[-1].is_error
        assert state.error == ANSWER_ERROR_MESSAGE
        assert state.chunks == (PdfChunk(1, "A"),)

    def test_switch_mode_is_pure_selection(self):
        state = self._loaded_state()
        switched = ss.switch_mode(state, AppMode.MINDMAP)
        assert switched.mode == AppMode.MINDMAP
        assert switched.chunks == state.chunks and switched.messages == state.messages

    def test_switch_mode_rejects_unknown(self):
        with pytest.raises(ValueError):
            ss.switch_mode(self._loaded_state(), "chess")

    def test_store_view_copies(self):
        state = self._loaded_state()
        stored = ss.store_view(state, AppMode.GLOSSARY, ["t"])
        assert state.views == {}
        assert stored.views == {AppMode.GLOSSARY: ["t"]}

    def test_reset(self):
        state = ss.fail_question(ss.begin_question(self._loaded_state(), "q"))
        assert ss.reset(state) == ss.StudyState()


# ──────────────────────────────────────────────────────────────
# Upload / reset
# ──────────────────────────────────────────────────────────────

class TestUpload:
    def test_upload_chunks_document(self, loaded):
        state = loaded.state
        assert state.chunks == (PdfChunk(1, "A"), PdfChunk(2, "B"), PdfChunk(3, "C"))
        assert state.file_name == "bio.pdf"
        assert state.mode == AppMode.QA
        assert state.error is None
        assert len(state.messages) == 1 and state.messages[0].role == "model"
        assert loaded.context is not None
        assert loaded.context.page_numbers == [1, 2, 3]

    def test_failed_upload_leaves_nothing_loaded(self, loaded):
        assert not loaded.upload(FakeUpload(b"this is not a pdf", "notes.txt"))
        state = loaded.state
        assert state.error == PDF_ERROR_MESSAGE
        assert state.chunks == () and state.messages == ()
        assert state.file_name == ""
        assert loaded.context is None

    def test_new_upload_replaces_conversation(self, loaded, echo, abc_pdf):
        loaded.ask("What is on page 1?", "k")
        loaded.switch_mode(AppMode.GLOSSARY)
        assert loaded.upload(FakeUpload(abc_pdf, "second.pdf"))
        state = loaded.state
        assert state.file_name == "second.pdf"
        assert len(state.messages) == 1
        assert state.mode == AppMode.QA

    def test_reset_clears_together(self, loaded, failing):
        loaded.ask("q?", "k")
        assert loaded.state.error is not None
        loaded.reset()
        state = loaded.state
        assert state.chunks == () and state.messages == () and state.error is None
        assert state.views == {}
        assert loaded.context is None

    def test_file_name_from_upload(self, abc_pdf):
        session = ss.StudySession()
        session.upload(FakeUpload(abc_pdf, "named.pdf"))
        assert session.state.file_name == "named.pdf"

    def test_metrics_recorded(self, loaded, metrics_reset):
        summary = metrics_reset.get_metrics_summary()
        assert summary["extract"]["total"] == 1
        assert metrics_reset.get_recent_metrics(1)[0]["meta"]["pages"] == 3


# ──────────────────────────────────────────────────────────────
# Ask
# ──────────────────────────────────────────────────────────────

class TestAsk:
    def test_echo_cites_page_two(self, loaded, echo):
        reply = loaded.ask("What is on page 2?", "k")
        assert reply is not None and not reply.is_error
        assert reply.source is not None
        assert reply.source.page_number == 2
        assert reply.source.content == "B"
        assert loaded.state.messages[-1] == reply

    def test_exchanges_grow_conversation_in_order(self, loaded, echo):
        questions = [f"What is on page {n}?" for n in (1, 2, 3, 1)]
        for q in questions:
            loaded.ask(q, "k")
        messages = loaded.state.messages
        assert len(messages) == 1 + 2 * len(questions)
        assert [m.role for m in messages[1:]] == ["user", "model"] * len(questions)
        assert [m.content for m in messages[1::2]] == questions

    def test_history_excludes_current_question(self, loaded, echo):
        loaded.ask("What is on page 1?", "k")
        loaded.ask("And page 3?", "k")
        sent = echo.calls[-1]
        # system + greeting + first exchange + new question
        assert len(sent) == 1 + 3 + 1
        assert [m.content for m in sent].count("And page 3?") == 1

    def test_failure_adds_one_error_turn(self, loaded, failing):
        before = loaded.state
        reply = loaded.ask("What is on page 2?", "k")
        after = loaded.state
        assert reply is not None and reply.is_error
        assert reply.content == ANSWER_ERROR_MESSAGE
        assert len(after.messages) == len(before.messages) + 2
        assert [m.is_error for m in after.messages].count(True) == 1
        assert after.chunks == before.chunks
        assert after.error == ANSWER_ERROR_MESSAGE
        assert not after.is_answering

    def test_missing_api_key_is_a_failed_turn(self, loaded, echo):
        reply = loaded.ask("What is on page 2?", "")
        assert reply is not None and reply.is_error
        assert echo.calls == []

    def test_retry_after_failure_clears_error(self, loaded, monkeypatch):
        monkeypatch.setattr(llm_mod, "_build_chat_model", lambda api_key, temperature: FailingModel())
        loaded.ask("What is on page 2?", "k")
        model = EchoModel()
        monkeypatch.setattr(llm_mod, "_build_chat_model", lambda api_key, temperature: model)
        reply = loaded.ask("What is on page 2?", "k")
        assert not reply.is_error
        assert loaded.state.error is None
        # the failed turn is not sent back to the model
        assert all("Sorry" not in str(m.content) for m in model.calls[0][1:])

    def test_out_of_range_page_dropped(self, loaded, monkeypatch):
        reply_json = json.dumps({"answer": "x", "source": "quote", "pageNumber": 12})
        monkeypatch.setattr(
            llm_mod,
            "_build_chat_model",
            lambda api_key, temperature: type("M", (), {"invoke": lambda self, m: AIMessage(content=reply_json)})(),
        )
        reply = loaded.ask("anything", "k")
        assert reply.source is not None
        assert reply.source.page_number is None

    @pytest.mark.parametrize("question", ["", "   "])
    def test_blank_question_ignored(self, loaded, echo, question):
        before = loaded.state
        assert loaded.ask(question, "k") is None
        assert loaded.state == before

    def test_no_document_ignored(self, echo):
        session = ss.StudySession()
        assert session.ask("What is on page 1?", "k") is None
        assert session.state.messages == ()

    def test_pending_question_ignored(self, loaded, echo):
        loaded._state = ss.begin_question(loaded.state, "first")
        before = loaded.state
        assert loaded.ask("second", "k") is None
        assert loaded.state == before
        assert echo.calls == []


# ──────────────────────────────────────────────────────────────
# Modes and generated views
# ──────────────────────────────────────────────────────────────

class TestViews:
    def _session(self, abc_pdf, stub: StubGenerator) -> ss.StudySession:
        session = ss.StudySession(practice=stub, glossary=stub, flashcards=stub, mind_map=stub)
        session.upload(FakeUpload(abc_pdf))
        return session

    def test_switch_mode_keeps_document(self, loaded):
        chunks = loaded.state.chunks
        loaded.switch_mode("flashcards")
        assert loaded.state.mode == AppMode.FLASHCARDS
        assert loaded.state.chunks == chunks

    def test_generate_and_cache(self, abc_pdf):
        stub = StubGenerator(result=MindMapNode("Root"))
        session = self._session(abc_pdf, stub)
        content = session.generate_view(AppMode.MINDMAP, "k")
        assert content == MindMapNode("Root")
        assert session.view("mindmap") == content
        args, _ = stub.calls[0]
        assert args[0].startswith("Page 1:\nA")

    def test_generators_receive_conversation_and_pages(self, abc_pdf):
        stub = StubGenerator(result=[])
        session = self._session(abc_pdf, stub)
        session.generate_view("flashcards", "k", count=4)
        _, kwargs = stub.calls[0]
        assert kwargs["count"] == 4
        assert kwargs["valid_pages"] == {1, 2, 3}
        assert kwargs["history"] == session.state.messages
        session.generate_view("practice", "k")
        _, kwargs = stub.calls[1]
        assert "num_questions" not in kwargs

    def test_failure_sets_view_error_without_turn(self, abc_pdf):
        stub = StubGenerator(error=QueryError("bad json"))
        session = self._session(abc_pdf, stub)
        messages = session.state.messages
        assert session.generate_view(AppMode.GLOSSARY, "k") is None
        assert session.state.error == VIEW_ERROR_MESSAGES["glossary"]
        assert session.state.messages == messages
        assert session.state.generating is None
        assert session.view(AppMode.GLOSSARY) is None

    def test_reset_drops_views(self, abc_pdf):
        session = self._session(abc_pdf, StubGenerator(result=["x"]))
        session.generate_view(AppMode.PRACTICE, "k")
        session.reset()
        assert session.view(AppMode.PRACTICE) is None

    def test_qa_has_no_generated_view(self, loaded):
        with pytest.raises(ValueError):
            loaded.generate_view(AppMode.QA, "k")

    def test_no_document(self):
        stub = StubGenerator(result=[])
        session = ss.StudySession(glossary=stub)
        assert session.generate_view(AppMode.GLOSSARY, "k") is None
        assert stub.calls == []

    def test_real_generator_through_session(self, loaded, monkeypatch):
        reply = json.dumps([{"term": "B", "definition": "Second letter", "pageNumber": 2}])
        monkeypatch.setattr(
            llm_mod,
            "_build_chat_model",
            lambda api_key, temperature: type("M", (), {"invoke": lambda self, m: AIMessage(content=reply)})(),
        )
        terms = loaded.generate_view(AppMode.GLOSSARY, "k")
        assert [t.page_number for t in terms] == [2]

    def test_dismiss_error(self, loaded, failing):
        loaded.ask("q?", "k")
        loaded.dismiss_error()
        assert loaded.state.error is None
        assert loaded.state.messages[-1].is_error
