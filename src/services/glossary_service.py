"""Glossary: extract key terms with definitions and page references."""

from __future__ import annotations

import logging
from typing import Any, Collection

from config import GENERATION_TEMPERATURE
from services.errors import QueryError
from services.llm_service import LLMProcessor, _coerce_page_number, _extract_json
from services.models import GlossaryTerm

LOGGER = logging.getLogger("preppal.glossary")

GLOSSARY_SYSTEM_PROMPT = """You build glossaries for textbooks.
From the document context, extract the important technical terms, concepts and named ideas a
student must know. Define each term in one or two sentences using ONLY the document.
Every page in the context starts with a "Page <n>:" label; give the page where the term is defined
or first explained.

You must output ONLY a valid JSON array, without markdown code fences and without any text outside
the JSON:
[
  {"term": "Term", "definition": "Definition from the document.", "pageNumber": 4}
]"""


def _validate_terms(items: Any, valid_pages: Collection[int] | None = None) -> list[GlossaryTerm]:
    """Drop malformed or duplicate (case-insensitive) entries and sort alphabetically."""
    if isinstance(items, dict):
        items = items.get("terms") or items.get("glossary")
    if not isinstance(items, list):
        return []
    seen: set[str] = set()
    out: list[GlossaryTerm] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        term = str(item.get("term") or "").strip()
        definition = str(item.get("definition") or "").strip()
        if not term or not definition:
            continue
        key = term.casefold()
        if key in seen:
            continue
        seen.add(key)
        page = _coerce_page_number(item.get("pageNumber", item.get("page")), valid_pages)
        out.append(GlossaryTerm(term=term, definition=definition, page_number=page))
    out.sort(key=lambda t: t.term.casefold())
    return out


class GlossaryGenerator:
    """Builds an alphabetical glossary from document context via LLM."""

    def __init__(self, llm: LLMProcessor | None = None) -> None:
        self._llm = llm or LLMProcessor()

    def generate_glossary(
        self,
        context: str,
        api_key: str,
        valid_pages: Collection[int] | None = None,
    ) -> list[GlossaryTerm]:
        """
        Raises:
            QueryError: On API failure or when the output contains no usable JSON.
        """
        raw = self._llm.invoke(
            GLOSSARY_SYSTEM_PROMPT,
            f"Build the glossary for this document.\n\nDOCUMENT CONTEXT:\n{context}",
            api_key=api_key,
            temperature=GENERATION_TEMPERATURE,
        )
        parsed = _extract_json(raw)
        if parsed is None:
            raise QueryError("Model returned a glossary that could not be parsed.")
        terms = _validate_terms(parsed, valid_pages)
        LOGGER.info("generated %d glossary terms", len(terms))
        return terms
