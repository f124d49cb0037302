"""
Study session state: loaded document, conversation, active mode and generated views.

State is an immutable StudyState snapshot. Pure transition functions produce the
next snapshot; StudySession owns the current one and exposes the named actions
(upload, ask, switch_mode, generate_view, reset) that call out to the services.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from config import (
    ANSWER_ERROR_MESSAGE,
    MAX_CONTEXT_CHARS,
    PDF_ERROR_MESSAGE,
    VIEW_ERROR_MESSAGES,
)
from services.context_builder import AssembledContext, assemble_context
from services.document_processor import PDFProcessor
from services.errors import ExtractionError, QueryError
from services.flashcard_service import FlashcardGenerator
from services.glossary_service import GlossaryGenerator
from services.graph_service import MindMapGenerator
from services.llm_service import LLMProcessor
from services.models import AppMode, ChatMessage, PdfChunk
from services.quiz_generator import PracticeQuestionGenerator
from utils.metrics import timed

LOGGER = logging.getLogger("preppal.session")

GENERATED_MODES = (AppMode.PRACTICE, AppMode.GLOSSARY, AppMode.FLASHCARDS, AppMode.MINDMAP)


@dataclass(frozen=True)
class StudyState:
    file_name: str = ""
    chunks: tuple[PdfChunk, ...] = ()
    messages: tuple[ChatMessage, ...] = ()
    mode: AppMode = AppMode.QA
    error: str | None = None
    is_loading_pdf: bool = False
    is_answering: bool = False
    generating: AppMode | None = None
    views: dict[AppMode, Any] = field(default_factory=dict)

    @property
    def has_document(self) -> bool:
        return bool(self.chunks)

    @property
    def page_numbers(self) -> list[int]:
        return [c.page_number for c in self.chunks]

    @property
    def is_busy(self) -> bool:
        return self.is_loading_pdf or self.is_answering or self.generating is not None


def greeting_for(file_name: str) -> ChatMessage:
    return ChatMessage.model(f'Successfully processed "{file_name}". I\'m ready to answer your questions about it.')


# ---------- Transitions ----------

def begin_upload(state: StudyState) -> StudyState:
    """Drop the previous document, conversation, error and views in one step."""
    return StudyState(is_loading_pdf=True)


def complete_upload(state: StudyState, file_name: str, chunks: list[PdfChunk]) -> StudyState:
    return replace(
        state,
        file_name=file_name,
        chunks=tuple(chunks),
        messages=(greeting_for(file_name),),
        is_loading_pdf=False,
    )


def fail_upload(state: StudyState, message: str = PDF_ERROR_MESSAGE) -> StudyState:
    return StudyState(error=message)


def begin_question(state: StudyState, question: str) -> StudyState:
    return replace(
        state,
        messages=state.messages + (ChatMessage.user(question),),
        is_answering=True,
        error=None,
    )


def complete_question(state: StudyState, reply: ChatMessage) -> StudyState:
    return replace(state, messages=state.messages + (reply,), is_answering=False)


def fail_question(state: StudyState, message: str = ANSWER_ERROR_MESSAGE) -> StudyState:
    return replace(
        state,
        messages=state.messages + (ChatMessage.error(message),),
        is_answering=False,
        error=message,
    )


def switch_mode(state: StudyState, mode: AppMode | str) -> StudyState:
    return replace(state, mode=AppMode(mode))


def begin_view(state: StudyState, mode: AppMode) -> StudyState:
    return replace(state, generating=mode, error=None)


def store_view(state: StudyState, mode: AppMode, content: Any) -> StudyState:
    views = dict(state.views)
    views[mode] = content
    return replace(state, views=views, generating=None)


def fail_view(state: StudyState, mode: AppMode, message: str) -> StudyState:
    return replace(state, generating=None, error=message)


def clear_error(state: StudyState) -> StudyState:
    return replace(state, error=None)


def reset(state: StudyState) -> StudyState:
    """Clear document, conversation, error and views together; back to Q&A."""
    return StudyState()


# ---------- Controller ----------

class StudySession:
    """Owns the study state for one user session and runs its actions."""

    def __init__(
        self,
        processor: PDFProcessor | None = None,
        llm: LLMProcessor | None = None,
        practice: PracticeQuestionGenerator | None = None,
        glossary: GlossaryGenerator | None = None,
        flashcards: FlashcardGenerator | None = None,
        mind_map: MindMapGenerator | None = None,
        max_context_chars: int | None = MAX_CONTEXT_CHARS,
    ) -> None:
        self._processor = processor or PDFProcessor()
        self._llm = llm or LLMProcessor()
        self._practice = practice or PracticeQuestionGenerator(self._llm)
        self._glossary = glossary or GlossaryGenerator(self._llm)
        self._flashcards = flashcards or FlashcardGenerator(self._llm)
        self._mind_map = mind_map or MindMapGenerator(self._llm)
        self._max_context_chars = max_context_chars
        self._state = StudyState()
        self._context: AssembledContext | None = None

    @property
    def state(self) -> StudyState:
        return self._state

    @property
    def context(self) -> AssembledContext | None:
        """Assembled context of the loaded document, or None when nothing is loaded."""
        return self._context

    def view(self, mode: AppMode | str) -> Any:
        return self._state.views.get(AppMode(mode))

    def upload(self, uploaded_file: Any, file_name: str | None = None) -> bool:
        """
        Replace the loaded document with *uploaded_file*.

        Returns:
            True when the document was chunked; False when extraction failed, in
            which case the fixed PDF error is shown and no document is loaded.
        """
        name = file_name or str(getattr(uploaded_file, "name", "") or "document.pdf")
        self._state = begin_upload(self._state)
        self._context = None
        try:
            with timed("extract", file=name) as meta:
                chunks = self._processor.extract_chunks(uploaded_file)
                meta["pages"] = len(chunks)
        except ExtractionError as e:
            LOGGER.warning("could not process %s: %s", name, e)
            self._state = fail_upload(self._state)
            return False
        self._state = complete_upload(self._state, name, chunks)
        self._context = assemble_context(self._state.chunks, self._max_context_chars)
        LOGGER.info("loaded %s (%d pages)", name, len(chunks))
        return True

    def ask(self, question: str, api_key: str) -> ChatMessage | None:
        """
        Ask a question about the loaded document.

        Ignored (returns None) when the question is blank, no document is loaded,
        or another question is still pending. Otherwise appends the user turn and
        then either the answer or an error-flagged turn, and returns the latter.
        """
        if not (question and question.strip()):
            return None
        if self._state.is_answering or not self._state.has_document or self._context is None:
            return None
        history = self._state.messages
        self._state = begin_question(self._state, question)
        with timed("ask") as meta:
            try:
                result = self._llm.answer_question(
                    question,
                    self._context.text,
                    history,
                    api_key,
                    valid_pages=set(self._state.page_numbers),
                )
            except QueryError as e:
                LOGGER.warning("question failed: %s", e)
                meta["ok"] = False
                self._state = fail_question(self._state)
                return self._state.messages[-1]
            meta["cited_page"] = result.page_number
        reply = result.to_message()
        self._state = complete_question(self._state, reply)
        return reply

    def switch_mode(self, mode: AppMode | str) -> None:
        self._state = switch_mode(self._state, mode)

    def dismiss_error(self) -> None:
        self._state = clear_error(self._state)

    def reset(self) -> None:
        self._state = reset(self._state)
        self._context = None
        LOGGER.info("session reset")

    def generate_view(self, mode: AppMode | str, api_key: str, count: int | None = None) -> Any:
        """
        Generate (or regenerate) the content of a derived view and cache it.

        Returns:
            The generated content, or None when nothing is loaded, another
            generation is running, or the model call failed (the view's fixed
            error message is then shown).
        """
        view_mode = AppMode(mode)
        if view_mode not in GENERATED_MODES:
            raise ValueError(f"{view_mode.value} has no generated content")
        if not self._state.has_document or self._context is None or self._state.generating is not None:
            return None
        self._state = begin_view(self._state, view_mode)
        with timed(view_mode.value) as meta:
            try:
                content = self._run_generator(view_mode, self._context.text, api_key, count)
            except QueryError as e:
                LOGGER.warning("%s generation failed: %s", view_mode.value, e)
                meta["ok"] = False
                self._state = fail_view(self._state, view_mode, VIEW_ERROR_MESSAGES[view_mode.value])
                return None
        self._state = store_view(self._state, view_mode, content)
        return content

    def _run_generator(self, mode: AppMode, context: str, api_key: str, count: int | None) -> Any:
        pages = set(self._state.page_numbers)
        history = self._state.messages
        if mode == AppMode.PRACTICE:
            if count is None:
                return self._practice.generate_questions(context, api_key, history=history)
            return self._practice.generate_questions(context, api_key, history=history, num_questions=count)
        if mode == AppMode.GLOSSARY:
            return self._glossary.generate_glossary(context, api_key, valid_pages=pages)
        if mode == AppMode.FLASHCARDS:
            if count is None:
                return self._flashcards.generate_flashcards(context, api_key, history=history, valid_pages=pages)
            return self._flashcards.generate_flashcards(
                context, api_key, history=history, count=count, valid_pages=pages
            )
        return self._mind_map.generate_mind_map(context, api_key)
