"""Flashcards: term/definition cards for active recall, generated from the document."""

from __future__ import annotations

import logging
from typing import Any, Collection, Sequence

from config import DEFAULT_FLASHCARDS, GENERATION_TEMPERATURE
from services.errors import QueryError
from services.llm_service import (
    LLMProcessor,
    _coerce_page_number,
    _extract_json,
    _format_conversation,
)
from services.models import ChatMessage, Flashcard

LOGGER = logging.getLogger("preppal.flashcards")

FLASHCARDS_SYSTEM_PROMPT = """You are a revision assistant. From the document context, pick the core terms,
concepts and formulas and turn them into Active Recall flashcards. Use ONLY the document.
Every page in the context starts with a "Page <n>:" label; record the page each card comes from.

You must output ONLY a valid JSON array, without markdown code fences and without any text outside
the JSON. Each item is one card:
[
  {"term": "short term or question (front)", "definition": "full explanation (back)", "pageNumber": 2}
]

The front is a short term or prompt, the back a complete explanation. Wrap formulas in $...$ LaTeX."""


def _validate_cards(items: Any, limit: int, valid_pages: Collection[int] | None = None) -> list[Flashcard]:
    if isinstance(items, dict):
        items = items.get("flashcards") or items.get("cards")
    if not isinstance(items, list):
        return []
    seen: set[str] = set()
    out: list[Flashcard] = []
    for item in items:
        if len(out) >= limit:
            break
        if not isinstance(item, dict):
            continue
        term = str(item.get("term") or item.get("front") or "").strip()
        if not term or term.casefold() in seen:
            continue
        seen.add(term.casefold())
        definition = str(item.get("definition") or item.get("back") or "").strip()
        page = _coerce_page_number(item.get("pageNumber", item.get("page")), valid_pages)
        out.append(Flashcard(term=term, definition=definition or "—", page_number=page))
    return out


class FlashcardGenerator:
    """Generates flashcard decks from document context via LLM."""

    def __init__(self, llm: LLMProcessor | None = None) -> None:
        self._llm = llm or LLMProcessor()

    def generate_flashcards(
        self,
        context: str,
        api_key: str,
        history: Sequence[ChatMessage] = (),
        count: int = DEFAULT_FLASHCARDS,
        valid_pages: Collection[int] | None = None,
    ) -> list[Flashcard]:
        """
        Generate up to *count* flashcards (clamped to 1-30).

        Topics from the conversation are favoured when there is one.

        Raises:
            QueryError: On API failure or when the output contains no usable JSON.
        """
        safe_count = max(1, min(int(count), 30))
        user_message = f"Create {safe_count} flashcards from the document below.\n"
        focus = _format_conversation(history)
        if focus:
            user_message += f"Prioritise concepts from this study conversation:\n{focus}\n"
        user_message += f"\nDOCUMENT CONTEXT:\n{context}"
        raw = self._llm.invoke(
            FLASHCARDS_SYSTEM_PROMPT,
            user_message,
            api_key=api_key,
            temperature=GENERATION_TEMPERATURE,
        )
        parsed = _extract_json(raw)
        if parsed is None:
            raise QueryError("Model returned flashcards that could not be parsed.")
        cards = _validate_cards(parsed, safe_count, valid_pages)
        LOGGER.info("generated %d flashcards", len(cards))
        return cards
