"""
LLM orchestration: chat model construction, prompts, and defensive JSON parsing.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Collection, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_openai import ChatOpenAI

from config import (
    ANSWER_TEMPERATURE,
    GEMINI_MODEL,
    LLM_PROVIDER,
    NO_ANSWER_MESSAGE,
    OPENAI_MODEL,
)
from services.errors import QueryError
from services.models import AnswerResult, ChatMessage

LOGGER = logging.getLogger("preppal.llm")

ANSWER_SYSTEM_PROMPT = """You are a study assistant helping a student understand a textbook.
Answer the student's question using ONLY the document context below. Do not use outside knowledge.
If the context does not contain the answer, say so plainly.

Every page in the context starts with a "Page <n>:" label. When possible, quote the exact
excerpt from the context that supports your answer and give the number of the page it comes from.

You must output ONLY one valid JSON object, without markdown code fences and without any text
outside the JSON. The object must have exactly these keys:
{
  "answer": "your answer to the question",
  "source": "the exact supporting excerpt copied from the context, or an empty string",
  "pageNumber": 3
}
Use null for pageNumber when no single page supports the answer.

DOCUMENT CONTEXT:
"""


def _build_chat_model(api_key: str, temperature: float, provider: str = LLM_PROVIDER) -> BaseChatModel:
    """Construct the LangChain chat model for the configured provider."""
    if provider == "openai":
        return ChatOpenAI(model=OPENAI_MODEL, api_key=api_key, temperature=temperature)
    if provider == "gemini":
        return ChatGoogleGenerativeAI(model=GEMINI_MODEL, google_api_key=api_key, temperature=temperature)
    raise QueryError(f"Unsupported LLM provider: {provider!r}")


def _query_error_from(e: Exception) -> QueryError:
    err_msg = str(e).lower()
    if "api key" in err_msg or "api_key" in err_msg or "authentication" in err_msg or "permission" in err_msg:
        return QueryError("The API key is invalid. Please check it and try again.")
    if "quota" in err_msg or "rate limit" in err_msg or "resource_exhausted" in err_msg or "429" in err_msg:
        return QueryError("API quota exhausted or too many requests. Please try again later.")
    return QueryError(f"Error calling the model API: {e!s}")


def _content_to_text(content: Any) -> str:
    """Flatten a chat model response content (string or list of parts) to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(str(part.get("text") or ""))
        return "".join(parts)
    return ""


def _history_to_messages(history: Sequence[ChatMessage]) -> list[BaseMessage]:
    """Convert prior conversation turns to chat messages, skipping error turns."""
    out: list[BaseMessage] = []
    for msg in history:
        if msg.is_error or not msg.content:
            continue
        if msg.role == "user":
            out.append(HumanMessage(content=msg.content))
        else:
            out.append(AIMessage(content=msg.content))
    return out


def _call_llm(
    system_prompt: str,
    user_message: str,
    api_key: str,
    temperature: float = 0.3,
    history: Sequence[ChatMessage] = (),
) -> str:
    """
    Invoke the chat model with a system prompt, optional history and a user message.

    Returns:
        Assistant response text.

    Raises:
        QueryError: If API key is missing, invalid, quota is exhausted, or the call fails.
    """
    if not (api_key and api_key.strip()):
        raise QueryError("Please provide a valid API key.")
    messages: list[BaseMessage] = [SystemMessage(content=system_prompt)]
    messages.extend(_history_to_messages(history))
    messages.append(HumanMessage(content=user_message))
    try:
        llm = _build_chat_model(api_key.strip(), temperature)
        response = llm.invoke(messages)
    except QueryError:
        raise
    except Exception as e:
        LOGGER.warning("model call failed: %s", e)
        raise _query_error_from(e) from e
    return _content_to_text(response.content)


def _strip_json_raw(raw: str) -> str:
    """Remove markdown code fences and surrounding whitespace from LLM output."""
    text = raw.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?\s*", "", text)
        text = re.sub(r"\s*```\s*$", "", text)
    return text.strip()


_OBJECT_PATTERN = r"\{[\s\S]*\}"
_ARRAY_PATTERN = r"\[[\s\S]*\]"


def _loads_first(raw: str, pattern: str, kinds: type | tuple[type, ...]) -> Any:
    """Return the first JSON value of type *kinds* found in *raw*, or None."""
    candidates = [raw, _strip_json_raw(raw)]
    match = re.search(pattern, raw)
    if match:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, kinds):
            return value
    return None


def _extract_json_object(raw: str) -> dict[str, Any]:
    """Parse a JSON object from LLM output; {} when none can be found.

    A single object wrapped in a one-element array is unwrapped.
    """
    if not raw:
        return {}
    value = _loads_first(raw, _OBJECT_PATTERN, (dict, list))
    if isinstance(value, list):
        if len(value) == 1 and isinstance(value[0], dict):
            return value[0]
        value = _loads_first(raw, _OBJECT_PATTERN, dict)
    return value if isinstance(value, dict) else {}


def _extract_json(raw: str) -> Any:
    """Parse a JSON object or array from LLM output; None when neither can be found."""
    if not raw:
        return None
    patterns = [_OBJECT_PATTERN, _ARRAY_PATTERN]
    brace, bracket = raw.find("{"), raw.find("[")
    if bracket != -1 and (brace == -1 or bracket < brace):
        patterns.reverse()
    for pattern in patterns:
        value = _loads_first(raw, pattern, (dict, list))
        if value is not None:
            return value
    return None


def _coerce_page_number(value: Any, valid_pages: Collection[int] | None = None) -> int | None:
    """Return *value* as a page number, or None if missing, malformed or out of range."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        page = int(value)
    else:
        try:
            page = int(str(value).strip())
        except (TypeError, ValueError):
            return None
    if page < 1:
        return None
    if valid_pages is not None and page not in valid_pages:
        return None
    return page


def _parse_answer(raw: str, valid_pages: Collection[int] | None = None) -> AnswerResult:
    """
    Turn raw model output into an AnswerResult.

    Missing or malformed citation fields mean "no citation". An empty answer is
    replaced with a fixed message.

    Raises:
        QueryError: If the output contains no JSON object at all.
    """
    obj = _extract_json_object(raw)
    if not obj:
        raise QueryError("Model returned output that could not be parsed.")
    answer = obj.get("answer")
    answer_text = str(answer).strip() if answer is not None else ""
    source = obj.get("source")
    source_text = source.strip() if isinstance(source, str) else ""
    page = _coerce_page_number(obj.get("pageNumber", obj.get("page_number")), valid_pages)
    if not answer_text:
        return AnswerResult(answer=NO_ANSWER_MESSAGE)
    if not source_text:
        page = None
    return AnswerResult(answer=answer_text, source=source_text, page_number=page)


def _format_conversation(history: Sequence[ChatMessage], limit: int = 12) -> str:
    """Render the most recent non-error turns as plain text for generation prompts."""
    turns = [m for m in history if not m.is_error and m.content][-limit:]
    lines = [f"{'Student' if m.role == 'user' else 'Assistant'}: {m.content}" for m in turns]
    return "\n".join(lines)


class LLMProcessor:
    """Issues question-answering and generation requests against the chat model."""

    def invoke(
        self,
        system_prompt: str,
        user_message: str,
        api_key: str,
        temperature: float = 0.3,
        history: Sequence[ChatMessage] = (),
    ) -> str:
        """
        Invoke the LLM with custom system and user messages.

        Args:
            system_prompt: System message.
            user_message: User message.
            api_key: Provider API key.
            temperature: Optional temperature.
            history: Prior conversation turns to include before the user message.

        Returns:
            Assistant response text.
        """
        return _call_llm(system_prompt, user_message, api_key, temperature, history)

    def answer_question(
        self,
        question: str,
        context: str,
        history: Sequence[ChatMessage],
        api_key: str,
        valid_pages: Collection[int] | None = None,
    ) -> AnswerResult:
        """
        Answer *question* using only *context*, citing an excerpt and page when possible.

        Args:
            question: The user's question.
            context: Assembled page-labelled document text.
            history: Prior conversation, used to resolve follow-up references.
            api_key: Provider API key.
            valid_pages: Page numbers of the loaded document; cited pages outside it are dropped.

        Returns:
            Parsed AnswerResult.

        Raises:
            QueryError: On API failure or unusable output. No retry is attempted.
        """
        raw = _call_llm(
            ANSWER_SYSTEM_PROMPT + context,
            question,
            api_key,
            temperature=ANSWER_TEMPERATURE,
            history=history,
        )
        result = _parse_answer(raw, valid_pages)
        LOGGER.info("answered question (citation=%s, page=%s)", result.has_citation, result.page_number)
        return result