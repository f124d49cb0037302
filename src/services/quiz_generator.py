"""
Practice questions: generate and validate exam-style questions from the document.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from config import DEFAULT_PRACTICE_QUESTIONS, GENERATION_TEMPERATURE
from services.errors import QueryError
from services.llm_service import LLMProcessor, _extract_json, _format_conversation
from services.models import ChatMessage, PracticeQuestion

LOGGER = logging.getLogger("preppal.practice")

QUESTION_TYPES = ("Multiple Choice", "Short Answer", "Essay")

PRACTICE_SYSTEM_PROMPT = (
    "You are an exam question writer for a textbook. "
    "Write practice questions using ONLY the provided document context. "
    "Return ONLY valid JSON (no markdown, no extra text). "
    "Mix the question types: Multiple Choice (exactly 4 options), Short Answer and Essay. "
    "JSON schema:\n"
    "{\n"
    '  "questions": [\n'
    "    {\n"
    '      "type": "Multiple Choice | Short Answer | Essay",\n'
    '      "question": "string",\n'
    '      "options": ["string", "string", "string", "string"],\n'
    '      "answer": "string"\n'
    "    }\n"
    "  ]\n"
    "}\n"
    "For Multiple Choice the answer must be the full text of the correct option. "
    "For Short Answer and Essay omit options and give a model answer."
)

_TYPE_ALIASES = {
    "multiple choice": "Multiple Choice",
    "multiple_choice": "Multiple Choice",
    "multiple-choice": "Multiple Choice",
    "mcq": "Multiple Choice",
    "short answer": "Short Answer",
    "short_answer": "Short Answer",
    "short": "Short Answer",
    "essay": "Essay",
    "long answer": "Essay",
}


def _normalize_type(raw_type: Any, has_options: bool) -> str:
    key = str(raw_type or "").strip().lower()
    if key in _TYPE_ALIASES:
        return _TYPE_ALIASES[key]
    return "Multiple Choice" if has_options else "Short Answer"


def _normalize_answer_from_options(options: list[str], raw_answer: Any) -> str:
    """Map an answer given as option text, index or letter to the option text."""
    answer_text = str(raw_answer or "").strip()
    if answer_text in options:
        return answer_text
    try:
        parsed = int(answer_text)
    except (TypeError, ValueError):
        parsed = None
    if parsed is not None:
        if 1 <= parsed <= len(options):
            return options[parsed - 1]
        return answer_text
    letter = answer_text[:1].upper()
    rest = answer_text[1:].lstrip()
    if letter in {"A", "B", "C", "D"} and (not rest or rest[0] in ".):"):
        idx = ord(letter) - ord("A")
        if idx < len(options):
            return options[idx]
    return answer_text


def _validate_questions(obj: Any) -> list[PracticeQuestion]:
    """Normalize a parsed payload (object with "questions" or bare list) into questions."""
    if isinstance(obj, dict):
        items = obj.get("questions")
    else:
        items = obj
    if not isinstance(items, list):
        return []
    out: list[PracticeQuestion] = []
    for q in items:
        if not isinstance(q, dict):
            continue
        question = str(q.get("question") or "").strip()
        if not question:
            continue
        raw_options = q.get("options") if isinstance(q.get("options"), list) else []
        options = [str(o).strip() for o in raw_options if str(o).strip()]
        q_type = _normalize_type(q.get("type"), bool(options))
        answer = str(q.get("answer") or q.get("correct_answer") or "").strip()
        if q_type == "Multiple Choice":
            if len(options) < 2:
                q_type = "Short Answer"
                options = []
            else:
                answer = _normalize_answer_from_options(options, answer)
        else:
            options = []
        out.append(PracticeQuestion(type=q_type, question=question, answer=answer or "—", options=options))
    return out


class PracticeQuestionGenerator:
    """Generates practice questions from document context via LLM."""

    def __init__(self, llm: LLMProcessor | None = None) -> None:
        self._llm = llm or LLMProcessor()

    def generate_questions(
        self,
        context: str,
        api_key: str,
        history: Sequence[ChatMessage] = (),
        num_questions: int = DEFAULT_PRACTICE_QUESTIONS,
    ) -> list[PracticeQuestion]:
        """
        Generate practice questions from assembled document context.

        Args:
            context: Page-labelled document text.
            api_key: Provider API key.
            history: Conversation so far; questions lean towards topics the student asked about.
            num_questions: Number of questions to request (clamped to 1-20).

        Returns:
            List of PracticeQuestion. Malformed items are skipped.

        Raises:
            QueryError: On API failure or when the output contains no usable JSON.
        """
        safe_num = max(1, min(int(num_questions), 20))
        focus = _format_conversation(history)
        user_message = f"Generate exactly {safe_num} practice questions from the document below.\n"
        if focus:
            user_message += (
                "Give extra weight to the topics the student has been asking about:\n"
                f"{focus}\n"
            )
        user_message += f"\nDOCUMENT CONTEXT:\n{context}"
        raw = self._llm.invoke(
            PRACTICE_SYSTEM_PROMPT,
            user_message,
            api_key=api_key,
            temperature=GENERATION_TEMPERATURE,
        )
        parsed = _extract_json(raw)
        if parsed is None:
            raise QueryError("Model returned practice questions that could not be parsed.")
        questions = _validate_questions(parsed)[:safe_num]
        LOGGER.info("generated %d practice questions", len(questions))
        return questions
