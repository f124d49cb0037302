"""Value objects shared by the document, conversation and study-view services."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AppMode(str, Enum):
    """Derived-content view currently shown to the user."""

    QA = "qa"
    PRACTICE = "practice"
    GLOSSARY = "glossary"
    FLASHCARDS = "flashcards"
    MINDMAP = "mindmap"


@dataclass(frozen=True)
class PdfChunk:
    """Extracted text of a single PDF page."""

    page_number: int
    content: str


@dataclass(frozen=True)
class SourceCitation:
    """Excerpt from the document that supports an answer."""

    page_number: int | None
    content: str


@dataclass(frozen=True)
class ChatMessage:
    """One conversation turn. Never mutated after creation."""

    role: str
    content: str
    source: SourceCitation | None = None
    is_error: bool = False

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)

    @classmethod
    def model(cls, content: str, source: SourceCitation | None = None) -> ChatMessage:
        return cls(role="model", content=content, source=source)

    @classmethod
    def error(cls, content: str) -> ChatMessage:
        return cls(role="model", content=content, is_error=True)


@dataclass(frozen=True)
class AnswerResult:
    """Parsed result of one question-answering call."""

    answer: str
    source: str = ""
    page_number: int | None = None

    @property
    def has_citation(self) -> bool:
        return bool(self.source)

    def to_message(self) -> ChatMessage:
        citation = SourceCitation(self.page_number, self.source) if self.has_citation else None
        return ChatMessage.model(self.answer, citation)


@dataclass(frozen=True)
class PracticeQuestion:
    type: str
    question: str
    answer: str
    options: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class GlossaryTerm:
    term: str
    definition: str
    page_number: int | None = None


@dataclass(frozen=True)
class Flashcard:
    term: str
    definition: str
    page_number: int | None = None


@dataclass(frozen=True)
class MindMapNode:
    """Topic in a mind map tree."""

    topic: str
    children: tuple[MindMapNode, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.topic, "children": [c.to_dict() for c in self.children]}

    def count(self) -> int:
        return 1 + sum(c.count() for c in self.children)

    def depth(self) -> int:
        return 1 + max((c.depth() for c in self.children), default=0)
