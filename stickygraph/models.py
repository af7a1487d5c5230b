"""Data model for the context graph.

Rows come out of SQLite as sqlite3.Row and are wrapped in these
dataclasses. ``to_dict`` gives the JSON-ready form used by events and tools.
"""

import json
import re
import sqlite3
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

DEFAULT_PROJECT_ID = "default"
DEFAULT_BOARD_ID = "default"
DEFAULT_BOARD_SLUG = "main"

# Board scope for events that concern a whole project
ALL_BOARDS = "*"


class NodeType(str, Enum):
    CONVERSATION = "conversation"
    DIAGRAM = "diagram"
    DIAGRAM_BOX = "diagramBox"
    CONTAINER = "container"
    TERMINAL = "terminal"
    RICHTEXT = "richtext"
    STICKY_NOTE = "stickyNote"
    LIST = "list"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


class ContextSource(str, Enum):
    USER = "user"
    AGENT = "agent"
    CODEBASE = "codebase"
    DIAGRAM = "diagram"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', trim dashes."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


@dataclass
class Project:
    id: str
    name: str
    created_at: float
    updated_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Project":
        return cls(row["id"], row["name"], row["created_at"], row["updated_at"])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Viewport:
    x: float
    y: float
    zoom: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class Board:
    id: str
    name: str
    slug: str
    project_id: str
    viewport_x: float | None
    viewport_y: float | None
    viewport_zoom: float | None
    created_at: float
    updated_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Board":
        return cls(
            id=row["id"],
            name=row["name"],
            slug=row["slug"],
            project_id=row["project_id"],
            viewport_x=row["viewport_x"],
            viewport_y=row["viewport_y"],
            viewport_zoom=row["viewport_zoom"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def viewport(self) -> Viewport | None:
        if self.viewport_x is None or self.viewport_y is None or self.viewport_zoom is None:
            return None
        return Viewport(self.viewport_x, self.viewport_y, self.viewport_zoom)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Node:
    id: str
    type: str
    content: str
    context: str
    parent_id: str | None
    board_id: str
    created_at: float
    updated_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Node":
        return cls(
            id=row["id"],
            type=row["type"],
            content=row["content"],
            context=row["context"] or "",
            parent_id=row["parent_id"],
            board_id=row["board_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def content_data(self) -> dict[str, Any]:
        """Content parsed as a JSON object, or {} when it is anything else."""
        try:
            data = json.loads(self.content)
        except (TypeError, ValueError):
            return {}
        return data if isinstance(data, dict) else {}

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Edge:
    id: str
    source_id: str
    target_id: str
    label: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Edge":
        return cls(row["id"], row["source_id"], row["target_id"], row["label"])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ContextEntry:
    id: str
    node_id: str
    text: str
    source: str
    created_at: float
    embedding: bytes | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ContextEntry":
        return cls(
            id=row["id"],
            node_id=row["node_id"],
            text=row["text"],
            source=row["source"],
            created_at=row["created_at"],
            embedding=row["embedding"],
        )

    def to_dict(self) -> dict[str, Any]:
        # Raw embedding bytes stay out of the JSON form
        return {
            "id": self.id,
            "node_id": self.node_id,
            "text": self.text,
            "source": self.source,
            "created_at": self.created_at,
        }


@dataclass
class VectorContext:
    """A context snippet held by the semantic index.

    ``score`` is the vector distance for search hits (lower is closer) and
    None for plain listings.
    """

    node_id: str
    board_id: str
    text: str
    source: str
    created_at: float
    score: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
