"""Assemble page chunks into the labelled context string sent to the model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from config import MAX_CONTEXT_CHARS
from services.models import PdfChunk

LOGGER = logging.getLogger("preppal.context")

PAGE_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True)
class AssembledContext:
    text: str
    page_numbers: list[int] = field(default_factory=list)
    omitted_pages: list[int] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return bool(self.omitted_pages)


def format_chunk(chunk: PdfChunk) -> str:
    return f"Page {chunk.page_number}:\n{chunk.content}"


def assemble_context(chunks: Iterable[PdfChunk], max_chars: int | None = MAX_CONTEXT_CHARS) -> AssembledContext:
    """
    Join chunks in page order as ``Page <n>:\\n<content>`` blocks.

    Pages are kept whole until the next one would push the text past *max_chars*;
    that page and every later one are omitted. A first page that alone exceeds the
    budget is cut to fit. ``max_chars=None`` disables the budget.
    """
    ordered = sorted(chunks, key=lambda c: c.page_number)
    parts: list[str] = []
    included: list[int] = []
    omitted: list[int] = []
    used = 0
    for chunk in ordered:
        if omitted:
            omitted.append(chunk.page_number)
            continue
        block = format_chunk(chunk)
        extra = len(block) + (len(PAGE_SEPARATOR) if parts else 0)
        if max_chars is not None and used + extra > max_chars:
            if not parts and max_chars > 0:
                parts.append(block[:max_chars])
                included.append(chunk.page_number)
                used = max_chars
                continue
            omitted.append(chunk.page_number)
            continue
        parts.append(block)
        included.append(chunk.page_number)
        used += extra

    if omitted:
        LOGGER.warning(
            "context budget of %s chars reached; omitted %d pages starting at page %d",
            max_chars,
            len(omitted),
            omitted[0],
        )
    return AssembledContext(text=PAGE_SEPARATOR.join(parts), page_numbers=included, omitted_pages=omitted)


def build_context(chunks: Iterable[PdfChunk], max_chars: int | None = MAX_CONTEXT_CHARS) -> str:
    """Return the context string for *chunks* (see ``assemble_context``)."""
    return assemble_context(chunks, max_chars).text
