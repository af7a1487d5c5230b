"""stickygraph - context graph store for canvas boards.

A graph of nodes, edges and inherited context with:
- SQLite for the structured store (source of truth)
- LanceDB for semantic search over context snippets
- Pluggable mutation notifications (HTTP relay or in-process)
- FastMCP tools for remote control
"""

__version__ = "0.1.0"

from stickygraph.config import Config
from stickygraph.db import SemanticIndex, StructuredStore
from stickygraph.graph import GraphManager
from stickygraph.models import Board, ContextEntry, Edge, Node, Project

__all__ = [
    "Config",
    "StructuredStore",
    "SemanticIndex",
    "GraphManager",
    "Node",
    "Edge",
    "Board",
    "Project",
    "ContextEntry",
]
