"""Storage layer: SQLite structured store and LanceDB semantic index."""

from stickygraph.db.sqlite_store import StructuredStore
from stickygraph.db.vector_index import SemanticIndex

__all__ = ["StructuredStore", "SemanticIndex"]
