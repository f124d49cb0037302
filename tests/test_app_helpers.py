"""Tests for the HTML and upload helpers in app.py (no Streamlit server)."""

from __future__ import annotations

import json

import pytest

import app as app_mod
from services.graph_service import mind_map_to_echarts
from services.models import MindMapNode


@pytest.fixture
def session_state(monkeypatch):
    state: dict = {}
    monkeypatch.setattr(app_mod.st, "session_state", state)
    return state


class TestMindMapHtml:
    TREE = MindMapNode("HTML", (MindMapNode("The </script> tag"), MindMapNode("a < b & c")))

    def _embedded_tree(self, page: str) -> dict:
        start = page.index("var TREE = ") + len("var TREE = ")
        end = page.index(";\n", start)
        return json.loads(page[start:end])

    def test_closing_tag_in_topic_does_not_end_script(self):
        page = app_mod._build_mind_map_html(mind_map_to_echarts(self.TREE))
        # the CDN include and the inline chart script
        assert page.count("</script>") == 2
        assert "The <\\/script> tag" in page

    def test_embedded_tree_round_trips(self):
        data = mind_map_to_echarts(self.TREE)
        page = app_mod._build_mind_map_html(data)
        assert self._embedded_tree(page) == data

    def test_non_ascii_kept(self):
        assert "Zellkern Übersicht" in app_mod._mind_map_json({"name": "Zellkern Übersicht", "children": []})


class TestEscaping:
    def test_source_excerpt_escaped(self):
        rendered = app_mod._source_html("if a < b and c > d, use List<String>")
        assert "a &lt; b and c &gt; d" in rendered
        assert "List&lt;String&gt;" in rendered
        assert rendered.startswith('<div class="source-quote">')

    def test_flashcard_face_escaped(self):
        assert "<b>" not in app_mod._card_html("<b>bold</b>")

    def test_error_message_escaped(self):
        assert "&lt;script&gt;" in app_mod._error_html("Bad <script> input")


class TestUploadRetry:
    def test_failed_upload_forgets_signature(self, session_state):
        session_state.update({"upload_signature": ("notes.pdf", 12), "upload_nonce": 2})
        app_mod._clear_uploader()
        assert "upload_signature" not in session_state
        assert app_mod._uploader_key() == "pdf_upload_3"

    def test_failed_upload_without_prior_state(self, session_state):
        app_mod._clear_uploader()
        assert session_state == {"upload_nonce": 1}
