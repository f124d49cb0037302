"""PrepPal main entry point."""

from __future__ import annotations

import html
import json
from io import BytesIO
from typing import Any

import streamlit as st
import streamlit.components.v1 as components

from config import (
    BG_PAGE,
    DEFAULT_FLASHCARDS,
    DEFAULT_PRACTICE_QUESTIONS,
    ERROR_BG,
    ERROR_BORDER,
    ERROR_TEXT,
    MODE_LABELS,
    PAGE_ICON,
    PAGE_TITLE,
    PRIMARY,
    PRIMARY_HOVER,
    SIDEBAR_HEADER,
    TEXT,
    configure_logging,
    default_api_key,
)
from services.graph_service import mind_map_to_echarts, mind_map_to_markdown
from services.models import AppMode, ChatMessage, Flashcard, GlossaryTerm, MindMapNode, PracticeQuestion
from services.study_session import StudySession
from utils.metrics import get_metrics_summary

_LOGGING_DONE = False


def _ensure_logging_once() -> None:
    global _LOGGING_DONE
    if not _LOGGING_DONE:
        configure_logging()
        _LOGGING_DONE = True


def _session() -> StudySession:
    if "study_session" not in st.session_state:
        st.session_state["study_session"] = StudySession()
    return st.session_state["study_session"]


def _api_key() -> str:
    return (st.session_state.get("api_key") or "").strip()


def _inject_css() -> None:
    st.markdown(
        f"""
        <style>
        .stApp {{ background: {BG_PAGE}; color: {TEXT}; }}
        div.stButton > button[kind="primary"] {{
            background: {PRIMARY}; border-color: {PRIMARY}; color: #FFFFFF; font-weight: 700;
        }}
        div.stButton > button[kind="primary"]:hover {{ background: {PRIMARY_HOVER}; border-color: {PRIMARY_HOVER}; }}
        .preppal-error {{
            background: {ERROR_BG}; border: 1px solid {ERROR_BORDER}; color: {ERROR_TEXT};
            padding: 0.75rem; border-radius: 0.4rem; margin-bottom: 1rem;
        }}
        .sidebar-header {{ font-weight: 800; font-size: 1.1rem; color: {PRIMARY}; }}
        .source-quote {{ border-left: 3px solid {PRIMARY}; padding-left: 0.6rem; color: #555; font-style: italic; }}
        .flashcard {{
            background: #FFFFFF; border: 1px solid #E5E7EB; border-radius: 0.8rem; min-height: 180px;
            display: flex; align-items: center; justify-content: center; text-align: center;
            padding: 1.5rem; font-size: 1.2rem; box-shadow: 0 2px 8px rgba(0,0,0,0.06);
        }}
        </style>
        """,
        unsafe_allow_html=True,
    )


def _error_html(message: str) -> str:
    return f'<div class="preppal-error">{html.escape(message)}</div>'


def _source_html(excerpt: str) -> str:
    return f'<div class="source-quote">{html.escape(excerpt)}</div>'


def _card_html(face: str) -> str:
    return f'<div class="flashcard">{html.escape(face)}</div>'


def _render_error(message: str | None) -> None:
    if not message:
        return
    col_msg, col_close = st.columns([12, 1])
    with col_msg:
        st.markdown(_error_html(message), unsafe_allow_html=True)
    with col_close:
        if st.button("✕", key="dismiss_error", help="Dismiss"):
            _session().dismiss_error()
            st.rerun()


def _uploader_key() -> str:
    return f"pdf_upload_{st.session_state.get('upload_nonce', 0)}"


def _clear_uploader() -> None:
    """Empty the uploader and forget the last file so the same file can be chosen again."""
    st.session_state["upload_nonce"] = st.session_state.get("upload_nonce", 0) + 1
    st.session_state.pop("upload_signature", None)


def _reset_all() -> None:
    _session().reset()
    _clear_uploader()
    _reset_view_widgets()


def _reset_view_widgets() -> None:
    for key in list(st.session_state.keys()):
        if str(key).startswith(("practice_", "flashcard_", "glossary_")):
            del st.session_state[key]


def _render_sidebar() -> None:
    session = _session()
    state = session.state
    st.sidebar.markdown(f'<p class="sidebar-header">{SIDEBAR_HEADER}</p>', unsafe_allow_html=True)

    for mode in AppMode:
        is_active = state.mode == mode
        disabled = mode != AppMode.QA and not state.has_document
        if st.sidebar.button(
            MODE_LABELS[mode.value],
            key=f"nav_btn_{mode.value}",
            use_container_width=True,
            type="primary" if is_active else "secondary",
            disabled=disabled or state.is_busy,
        ):
            if not is_active:
                session.switch_mode(mode)
                st.rerun()

    st.sidebar.divider()
    if "api_key" not in st.session_state:
        st.session_state["api_key"] = default_api_key()
    st.sidebar.text_input(
        "API Key",
        type="password",
        key="api_key",
        placeholder="Paste your API key",
        help="Used only for this session; never stored.",
    )

    if state.has_document:
        st.sidebar.caption(f"**Document:** {state.file_name}")
        st.sidebar.caption(f"**Pages:** {len(state.chunks)}")
        context = session.context
        if context is not None and context.truncated:
            st.sidebar.warning(
                f"Document too long: pages {context.omitted_pages[0]}–{context.omitted_pages[-1]} "
                "are not sent to the model."
            )

    summary = get_metrics_summary()
    if summary:
        with st.sidebar.expander("Timings", expanded=False):
            for operation, row in summary.items():
                st.caption(f"{operation}: {row['total']}× avg {row['avg_s']}s (failed {row['failed']})")


def _render_upload() -> None:
    session = _session()
    st.markdown("### Upload a textbook")
    st.caption("PrepPal reads the PDF page by page and answers questions using only its content.")
    _render_error(session.state.error)
    uploaded = st.file_uploader("PDF file", type=["pdf"], key=_uploader_key())
    if uploaded is None:
        return
    data = uploaded.getvalue()
    signature = (uploaded.name, len(data))
    if signature == st.session_state.get("upload_signature"):
        return
    st.session_state["upload_signature"] = signature
    _reset_view_widgets()
    with st.spinner("Processing PDF..."):
        ok = session.upload(BytesIO(data), file_name=uploaded.name)
    if not ok:
        _clear_uploader()
    st.rerun()


def _render_message(msg: ChatMessage) -> None:
    with st.chat_message("user" if msg.role == "user" else "assistant"):
        if msg.is_error:
            st.error(msg.content)
            return
        st.markdown(msg.content)
        if msg.source is not None:
            label = f"Source · page {msg.source.page_number}" if msg.source.page_number else "Source"
            with st.expander(label, expanded=False):
                st.markdown(_source_html(msg.source.content), unsafe_allow_html=True)


def _render_qa() -> None:
    session = _session()
    state = session.state
    st.markdown(f"### 💬 {state.file_name}")
    for msg in state.messages:
        _render_message(msg)

    prompt = st.chat_input("Ask a question about the textbook...", disabled=state.is_answering)
    if prompt and prompt.strip():
        if not _api_key():
            st.warning("Please enter your API key in the sidebar first.")
            return
        with st.spinner("Thinking..."):
            session.ask(prompt, _api_key())
        st.rerun()


def _generate_button(mode: AppMode, label: str, count: int | None = None) -> None:
    session = _session()
    has_content = session.view(mode) is not None
    text = f"🔄 Regenerate {label}" if has_content else f"✨ Generate {label}"
    if st.button(text, key=f"gen_{mode.value}", type="primary", disabled=session.state.is_busy):
        if not _api_key():
            st.warning("Please enter your API key in the sidebar first.")
            return
        _reset_view_widgets()
        with st.spinner(f"Generating {label.lower()}..."):
            session.generate_view(mode, _api_key(), count=count)
        st.rerun()


def _render_practice() -> None:
    st.markdown("### 📝 Practice Questions")
    count = st.slider(
        "Number of questions", min_value=1, max_value=20, value=DEFAULT_PRACTICE_QUESTIONS, key="setting_practice_count"
    )
    _generate_button(AppMode.PRACTICE, "Questions", count=count)
    questions: list[PracticeQuestion] = _session().view(AppMode.PRACTICE) or []
    for idx, q in enumerate(questions, start=1):
        with st.container(border=True):
            st.caption(q.type)
            st.markdown(f"**Q{idx}. {q.question}**")
            if q.options:
                chosen = st.radio(
                    "Your answer",
                    q.options,
                    index=None,
                    key=f"practice_choice_{idx}",
                    label_visibility="collapsed",
                )
                if chosen is not None:
                    if chosen == q.answer:
                        st.success("Correct!")
                    else:
                        st.error(f"Not quite. Correct answer: {q.answer}")
            else:
                with st.expander("Show model answer"):
                    st.markdown(q.answer)


def _render_glossary() -> None:
    st.markdown("### 📖 Glossary")
    _generate_button(AppMode.GLOSSARY, "Glossary")
    terms: list[GlossaryTerm] = _session().view(AppMode.GLOSSARY) or []
    if not terms:
        return
    query = st.text_input("Filter terms", key="glossary_filter").strip().casefold()
    shown = [t for t in terms if not query or query in t.term.casefold() or query in t.definition.casefold()]
    st.caption(f"{len(shown)} of {len(terms)} terms")
    for t in shown:
        page = f" _(p. {t.page_number})_" if t.page_number else ""
        st.markdown(f"**{t.term}**{page}  \n{t.definition}")


def _render_flashcards() -> None:
    st.markdown("### 🃏 Flashcards")
    count = st.slider(
        "Number of cards", min_value=1, max_value=30, value=DEFAULT_FLASHCARDS, key="setting_flashcard_count"
    )
    _generate_button(AppMode.FLASHCARDS, "Flashcards", count=count)
    cards: list[Flashcard] = _session().view(AppMode.FLASHCARDS) or []
    if not cards:
        return
    idx = int(st.session_state.get("flashcard_index", 0)) % len(cards)
    flipped = bool(st.session_state.get("flashcard_flipped", False))
    card = cards[idx]
    face = card.definition if flipped else card.term
    st.markdown(_card_html(face), unsafe_allow_html=True)
    page = f" · page {card.page_number}" if card.page_number else ""
    st.caption(f"Card {idx + 1} of {len(cards)}{page} · {'back' if flipped else 'front'}")

    col1, col2, col3 = st.columns(3)
    with col1:
        if st.button("⬅️ Previous", key="flashcard_prev", use_container_width=True):
            st.session_state["flashcard_index"] = (idx - 1) % len(cards)
            st.session_state["flashcard_flipped"] = False
            st.rerun()
    with col2:
        if st.button("🔁 Flip", key="flashcard_flip", use_container_width=True):
            st.session_state["flashcard_flipped"] = not flipped
            st.rerun()
    with col3:
        if st.button("Next ➡️", key="flashcard_next", use_container_width=True):
            st.session_state["flashcard_index"] = (idx + 1) % len(cards)
            st.session_state["flashcard_flipped"] = False
            st.rerun()


def _mind_map_json(tree_data: dict[str, Any]) -> str:
    """Tree data as JSON that is safe to embed inside a <script> block."""
    return json.dumps(tree_data, ensure_ascii=False).replace("</", "<\\/")


def _build_mind_map_html(tree_data: dict[str, Any]) -> str:
    """Self-contained HTML page with an ECharts horizontal collapsible tree."""
    tree_json = _mind_map_json(tree_data)
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8"/>
<style>
  * {{ box-sizing: border-box; margin: 0; padding: 0; }}
  body {{ background: {BG_PAGE}; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', sans-serif; height: 100vh; overflow: hidden; }}
  #chart {{ width: 100%; height: 100vh; }}
</style>
</head>
<body>
<div id="chart"></div>
<script src="https://cdn.jsdelivr.net/npm/echarts@5.4.3/dist/echarts.min.js"></script>
<script>
var TREE = {tree_json};

function assignColors(node, depth) {{
  if (depth === 0) {{
    node.itemStyle = {{ color: "{PRIMARY}", borderColor: "{PRIMARY_HOVER}", borderWidth: 2 }};
    node.label = {{ color: "#FFFFFF", fontWeight: "bold", fontSize: 12 }};
  }} else if (depth === 1) {{
    node.itemStyle = {{ color: "#E6F2F2", borderColor: "{PRIMARY}", borderWidth: 1.5 }};
    node.label = {{ color: "#1F2937", fontSize: 11 }};
  }} else {{
    node.itemStyle = {{ color: "#FFFFFF", borderColor: "#CCCCCC", borderWidth: 1 }};
    node.label = {{ color: "#374151", fontSize: 10 }};
  }}
  if (node.children) node.children.forEach(function(c) {{ assignColors(c, depth + 1); }});
}}
assignColors(TREE, 0);

var chart = echarts.init(document.getElementById("chart"));
chart.setOption({{
  tooltip: {{ trigger: "item", triggerOn: "mousemove" }},
  series: [{{
    type: "tree",
    data: [TREE],
    orient: "LR",
    initialTreeDepth: 2,
    expandAndCollapse: true,
    roam: true,
    symbol: "roundRect",
    symbolSize: [120, 32],
    lineStyle: {{ curveness: 0.5, color: "#CCCCCC", width: 1.5 }},
    label: {{ show: true, position: "inside", overflow: "truncate", width: 112 }},
    leaves: {{ label: {{ position: "inside", overflow: "truncate", width: 112 }} }},
    animationDuration: 300,
    animationDurationUpdate: 300,
    left: "5%", right: "12%", top: "5%", bottom: "5%"
  }}]
}});
window.addEventListener("resize", function() {{ chart.resize(); }});
</script>
</body>
</html>"""


def _render_mind_map() -> None:
    st.markdown("### 🧠 Mind Map")
    _generate_button(AppMode.MINDMAP, "Mind Map")
    root: MindMapNode | None = _session().view(AppMode.MINDMAP)
    if root is None:
        return
    components.html(_build_mind_map_html(mind_map_to_echarts(root)), height=640, scrolling=False)
    st.download_button(
        "⬇️ Download outline (Markdown)",
        data=mind_map_to_markdown(root),
        file_name="mind_map.md",
        mime="text/markdown",
        key="mindmap_download",
    )


def _render_header() -> None:
    session = _session()
    col_title, col_action = st.columns([4, 1])
    with col_title:
        st.markdown(f"## {PAGE_ICON} {PAGE_TITLE}")
    with col_action:
        if session.state.has_document:
            if st.button("Upload New PDF", key="reset_btn", type="primary", disabled=session.state.is_busy):
                _reset_all()
                st.rerun()


def main() -> None:
    st.set_page_config(page_title=PAGE_TITLE, page_icon=PAGE_ICON, layout="wide")
    _ensure_logging_once()
    _inject_css()
    _render_sidebar()
    _render_header()

    session = _session()
    state = session.state
    if not state.has_document:
        _render_upload()
        return

    _render_error(state.error)
    if state.mode == AppMode.QA:
        _render_qa()
    elif state.mode == AppMode.PRACTICE:
        _render_practice()
    elif state.mode == AppMode.GLOSSARY:
        _render_glossary()
    elif state.mode == AppMode.FLASHCARDS:
        _render_flashcards()
    elif state.mode == AppMode.MINDMAP:
        _render_mind_map()


if __name__ == "__main__":
    main()
