"""
Mind map: extract a hierarchical topic tree for ECharts tree visualization.
"""

from __future__ import annotations

import logging
from typing import Any

from config import GENERATION_TEMPERATURE, MIND_MAP_MAX_DEPTH
from services.errors import QueryError
from services.llm_service import LLMProcessor, _extract_json
from services.models import MindMapNode

LOGGER = logging.getLogger("preppal.mindmap")

MIND_MAP_SYSTEM_PROMPT = """You are an expert at structuring study material into mind maps.
From the document context, build a hierarchical mind map of its content using ONLY the document.

The root is the central subject of the whole document. Its children are the main themes or chapters
(3 to 7 of them). Below each theme list key concepts, and below those, at most one further level of
details, definitions or formulas. Keep every topic label short (at most 6 words).

You must output ONLY one valid JSON object, without markdown code fences and without any text outside
the JSON, with this recursive shape:
{
  "topic": "Central subject",
  "children": [
    {"topic": "Main theme", "children": [
      {"topic": "Key concept", "children": []}
    ]}
  ]
}"""

MAX_CHILDREN = 10


def _node_label(obj: dict[str, Any]) -> str:
    return str(obj.get("topic") or obj.get("name") or obj.get("label") or "").strip()


def _validate_node(obj: Any, depth: int, max_depth: int) -> MindMapNode | None:
    """Build a node from *obj*; drop unnamed nodes, duplicate siblings and levels past *max_depth*."""
    if not isinstance(obj, dict):
        return None
    topic = _node_label(obj)
    if not topic:
        return None
    children: list[MindMapNode] = []
    raw_children = obj.get("children")
    if depth < max_depth and isinstance(raw_children, list):
        seen: set[str] = set()
        for raw_child in raw_children:
            if len(children) >= MAX_CHILDREN:
                break
            child = _validate_node(raw_child, depth + 1, max_depth)
            if child is None or child.topic.casefold() in seen:
                continue
            seen.add(child.topic.casefold())
            children.append(child)
    return MindMapNode(topic=topic, children=tuple(children))


def _validate_mind_map(obj: Any, max_depth: int = MIND_MAP_MAX_DEPTH) -> MindMapNode | None:
    if isinstance(obj, dict) and not _node_label(obj) and isinstance(obj.get("root"), dict):
        obj = obj["root"]
    if isinstance(obj, list):
        children = [c for c in obj if isinstance(c, dict)]
        obj = {"topic": "Document", "children": children} if children else None
    return _validate_node(obj, 1, max(1, max_depth))


def mind_map_to_echarts(node: MindMapNode) -> dict[str, Any]:
    """ECharts tree series data: {"name", "children"} recursively."""
    return node.to_dict()


def mind_map_to_markdown(node: MindMapNode, level: int = 0) -> str:
    """Render the tree as a nested Markdown bullet outline."""
    lines = [f"{'  ' * level}- {node.topic}"]
    for child in node.children:
        lines.append(mind_map_to_markdown(child, level + 1))
    return "\n".join(lines)


class MindMapGenerator:
    """Extracts a topic tree from document context."""

    def __init__(self, llm: LLMProcessor | None = None) -> None:
        self._llm = llm or LLMProcessor()

    def generate_mind_map(self, context: str, api_key: str) -> MindMapNode:
        """
        Build a mind map rooted at the document's central subject.

        Returns:
            Root MindMapNode, at most MIND_MAP_MAX_DEPTH levels deep.

        Raises:
            QueryError: On API failure or when no tree can be read from the output.
        """
        raw = self._llm.invoke(
            MIND_MAP_SYSTEM_PROMPT,
            f"Build the mind map for this document. Output only the JSON described.\n\nDOCUMENT CONTEXT:\n{context}",
            api_key=api_key,
            temperature=GENERATION_TEMPERATURE,
        )
        root = _validate_mind_map(_extract_json(raw))
        if root is None:
            raise QueryError("Model returned a mind map that could not be parsed.")
        LOGGER.info("generated mind map with %d nodes (depth %d)", root.count(), root.depth())
        return root
