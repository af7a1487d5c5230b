"""Canvas layout inspection and review-node helpers.

Node content is opaque to the store, but by convention it is a JSON
object that may carry ``position``, ``title``, ``width`` and ``height``.
These helpers read that convention for the layout and review tools.
"""

import json
from typing import Any

from stickygraph.models import Node, NodeType

DEFAULT_NODE_WIDTH = 300
DEFAULT_NODE_HEIGHT = 180
REVIEW_POSITION = {"x": 100, "y": 100}


def node_dimensions(
    node_type: str,
    content: dict[str, Any],
    default_width: float = DEFAULT_NODE_WIDTH,
    default_height: float = DEFAULT_NODE_HEIGHT,
) -> tuple[float, float]:
    """Rendered (width, height) of a node of the given type."""
    if node_type == NodeType.CONTAINER.value:
        return content.get("width") or 600, content.get("height") or 400
    if node_type == NodeType.RICHTEXT.value:
        return 500, 400
    if node_type == NodeType.DIAGRAM_BOX.value:
        return 180, 80
    return default_width, default_height


def node_title(content: dict[str, Any]) -> str:
    return content.get("title") or content.get("question") or "(untitled)"


def node_position(content: dict[str, Any]) -> tuple[float, float]:
    position = content.get("position")
    if not isinstance(position, dict):
        return 0, 0
    x = position.get("x")
    y = position.get("y")
    return (x if x is not None else 0), (y if y is not None else 0)


def analyze_layout(nodes: list[Node], edge_count: int) -> dict[str, Any]:
    """Positions, bounding box and pairwise overlaps of the given nodes."""
    if not nodes:
        return {
            "nodes": [],
            "edges": edge_count,
            "bounds": {"minX": 0, "minY": 0, "maxX": 0, "maxY": 0, "width": 0, "height": 0},
            "overlaps": "none",
            "total": 0,
        }

    layouts = []
    for node in nodes:
        content = node.content_data()
        width, height = node_dimensions(node.type, content)
        x, y = node_position(content)
        layouts.append({
            "id": node.id,
            "type": node.type,
            "title": node_title(content),
            "x": x,
            "y": y,
            "width": width,
            "height": height,
            "parent_id": node.parent_id,
        })

    overlaps = []
    for i, a in enumerate(layouts):
        for b in layouts[i + 1:]:
            if (
                a["x"] < b["x"] + b["width"]
                and a["x"] + a["width"] > b["x"]
                and a["y"] < b["y"] + b["height"]
                and a["y"] + a["height"] > b["y"]
            ):
                overlaps.append(f'"{a["title"]}" overlaps with "{b["title"]}"')

    min_x = min(n["x"] for n in layouts)
    min_y = min(n["y"] for n in layouts)
    max_x = max(n["x"] + n["width"] for n in layouts)
    max_y = max(n["y"] + n["height"] for n in layouts)
    return {
        "nodes": layouts,
        "edges": edge_count,
        "bounds": {
            "minX": min_x,
            "minY": min_y,
            "maxX": max_x,
            "maxY": max_y,
            "width": max_x - min_x,
            "height": max_y - min_y,
        },
        "overlaps": overlaps or "none",
        "total": len(layouts),
    }


def with_position(node: Node, x: float, y: float) -> str:
    """Node content re-serialized with a new position."""
    content = node.content_data()
    content["position"] = {"x": x, "y": y}
    return json.dumps(content)


def review_content(title: str, text: str) -> dict[str, Any]:
    """Content of a fresh review node: rich text with no comment threads yet."""
    return {
        "plainText": text,
        "title": title,
        "isReview": True,
        "comments": [],
        "position": dict(REVIEW_POSITION),
    }


def format_review_summary(node: Node) -> str:
    """Markdown digest of a review node and its comment threads."""
    content = node.content_data()
    threads = content.get("comments") or []

    parts = [
        f"# Review Summary: {content.get('title') or 'Untitled Review'}\n\n",
        f"## Review Text\n\n{content.get('plainText', '')}\n\n",
    ]
    if not threads:
        parts.append("## Comments\n\nNo comments were made.\n")
        return "".join(parts)

    parts.append(f"## Comments ({len(threads)} threads)\n\n")
    for thread in threads:
        status = "[RESOLVED]" if thread.get("status") == "resolved" else "[OPEN]"
        parts.append(f'### {status} Comment on: "{thread.get("selectedText", "")}"\n\n')
        for message in thread.get("messages", []):
            author = str(message.get("author") or "user").capitalize()
            parts.append(f"**{author}:** {message.get('text', '')}\n\n")
        parts.append("---\n\n")
    return "".join(parts)
