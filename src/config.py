"""
Global settings for PrepPal.
Teal accent on a light, distraction-free study layout.
"""

import logging
import os

# Page
PAGE_TITLE = "PrepPal"
PAGE_ICON = "📘"

# Sidebar
SIDEBAR_HEADER = "PrepPal Study Assistant"

# Palette
PRIMARY = "#008080"        # Teal
PRIMARY_HOVER = "#006D6D"  # Darker teal on hover
BG_MAIN = "#FFFFFF"
BG_PAGE = "#FAFAFA"
TEXT = "#2C2C2C"
ERROR_BG = "#FEE2E2"
ERROR_BORDER = "#FCA5A5"
ERROR_TEXT = "#B91C1C"

# LLM provider: "gemini" (default) or "openai"
LLM_PROVIDER = os.getenv("PREPPAL_LLM_PROVIDER", "gemini").strip().lower()
GEMINI_MODEL = os.getenv("PREPPAL_GEMINI_MODEL", "gemini-2.5-flash")
OPENAI_MODEL = os.getenv("PREPPAL_OPENAI_MODEL", "gpt-4o")
API_KEY_ENV_VARS = {
    "gemini": ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
    "openai": ("OPENAI_API_KEY",),
}

# Temperatures
ANSWER_TEMPERATURE = 0.2
GENERATION_TEMPERATURE = 0.4

# Roughly 200k tokens of page text
MAX_CONTEXT_CHARS = 800_000

# Generation sizes
DEFAULT_PRACTICE_QUESTIONS = 5
DEFAULT_FLASHCARDS = 10
MIND_MAP_MAX_DEPTH = 4

# Fixed user-visible messages
PDF_ERROR_MESSAGE = "Failed to process the PDF. Please try another file."
ANSWER_ERROR_MESSAGE = "Sorry, I encountered an error while trying to answer. Please try again."
NO_ANSWER_MESSAGE = "I couldn't find an answer to that in the document."
VIEW_ERROR_MESSAGES = {
    "practice": "Sorry, I couldn't generate practice questions. Please try again.",
    "glossary": "Sorry, I couldn't build a glossary for this document. Please try again.",
    "flashcards": "Sorry, I couldn't generate flashcards. Please try again.",
    "mindmap": "Sorry, I couldn't generate a mind map. Please try again.",
}

# Navigation labels
MODE_LABELS = {
    "qa": "💬  Q&A",
    "practice": "📝  Practice Questions",
    "glossary": "📖  Glossary",
    "flashcards": "🃏  Flashcards",
    "mindmap": "🧠  Mind Map",
}

LOG_LEVEL = os.getenv("PREPPAL_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def default_api_key(provider: str = LLM_PROVIDER) -> str:
    """Return the first API key found in the environment for *provider*, or ""."""
    for name in API_KEY_ENV_VARS.get(provider, ()):
        value = os.getenv(name, "").strip()
        if value:
            return value
    return ""


def configure_logging() -> None:
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
