"""Structured store: the durable source of truth for the context graph.

SQLite database holding projects, boards, nodes, edges, the context audit
trail and settings. WAL mode with foreign keys on, so deletes cascade in
storage rather than in application code.
"""

import sqlite3
import threading
import time
import uuid
from pathlib import Path
from typing import Any

from stickygraph.db.schema import migrate
from stickygraph.exceptions import ConstraintViolation, ProtectedEntityError, ValidationError
from stickygraph.log_config import get_logger
from stickygraph.models import (
    DEFAULT_BOARD_ID,
    DEFAULT_PROJECT_ID,
    Board,
    ContextEntry,
    ContextSource,
    Edge,
    Node,
    NodeType,
    Project,
    Viewport,
    slugify,
)

log = get_logger("store")

UPDATABLE_NODE_FIELDS = ("content", "context", "type", "parent_id")


def _check_node_type(node_type: str) -> None:
    if node_type not in NodeType.values():
        raise ValidationError(
            f"Invalid node type: {node_type}. Must be one of: {', '.join(NodeType.values())}"
        )


def _check_source(source: str) -> None:
    if source not in ContextSource.values():
        raise ValidationError(
            f"Invalid context source: {source}. Must be one of: {', '.join(ContextSource.values())}"
        )


class StructuredStore:
    """SQLite-backed graph storage.

    One instance owns one connection. Writes run inside ``with self.conn:``
    so each public operation is a single transaction; a re-entrant lock
    serializes access from worker threads.

    Example:
        with StructuredStore(tmp_path / "graph.db") as store:
            store.create_node("n1", "conversation", "{}")
    """

    def __init__(self, db_path: Path | str):
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_connection()
        self.applied_migrations = migrate(self.conn)
        log.info(f"StructuredStore opened: {self.db_path}")

    def _init_connection(self) -> None:
        """Initialize SQLite connection with WAL mode and foreign keys."""
        self.conn = sqlite3.connect(
            str(self.db_path),
            timeout=30.0,
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA busy_timeout=30000")
        self.conn.execute("PRAGMA foreign_keys=ON")
        log.debug("SQLite connection initialized with WAL mode")

    def _write(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute one statement in its own transaction."""
        with self._lock:
            try:
                with self.conn:
                    return self.conn.execute(sql, params)
            except sqlite3.IntegrityError as e:
                raise ConstraintViolation(str(e)) from e

    def _fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        with self._lock:
            return self.conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self.conn.execute(sql, params).fetchall()

    # -------------------------------------------------------------------------
    # Nodes
    # -------------------------------------------------------------------------

    def create_node(
        self,
        id: str,
        type: str,
        content: str,
        context: str = "",
        parent_id: str | None = None,
        board_id: str = DEFAULT_BOARD_ID,
        seed_context: str | None = None,
    ) -> Node:
        _check_node_type(type)
        now = time.time()
        self._write(
            "INSERT INTO nodes "
            "(id, type, content, context, parent_id, board_id, seed_context, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (id, type, content, context or "", parent_id, board_id, seed_context, now, now),
        )
        log.debug(f"Created node {id} ({type}) on board {board_id}")
        return Node(id, type, content, context or "", parent_id, board_id, now, now)

    def get_node(self, id: str) -> Node | None:
        row = self._fetchone("SELECT * FROM nodes WHERE id = ?", (id,))
        return Node.from_row(row) if row else None

    def get_all_nodes(self, board_id: str | None = None, node_type: str | None = None) -> list[Node]:
        """All nodes, newest first, optionally filtered by board and type."""
        clauses, params = [], []
        if board_id is not None:
            clauses.append("board_id = ?")
            params.append(board_id)
        if node_type is not None:
            clauses.append("type = ?")
            params.append(node_type)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(
            f"SELECT * FROM nodes {where} ORDER BY created_at DESC, rowid DESC", tuple(params)
        )
        return [Node.from_row(row) for row in rows]

    def get_child_nodes(self, parent_id: str) -> list[Node]:
        rows = self._fetchall(
            "SELECT * FROM nodes WHERE parent_id = ? ORDER BY created_at, rowid", (parent_id,)
        )
        return [Node.from_row(row) for row in rows]

    def update_node(self, id: str, **fields: Any) -> Node | None:
        """Apply the given fields and refresh updated_at.

        Only content, context, type and parent_id are accepted; passing
        ``parent_id=None`` detaches the node. Returns None if the node is missing.
        """
        unknown = set(fields) - set(UPDATABLE_NODE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update node fields: {', '.join(sorted(unknown))}")
        if "type" in fields:
            _check_node_type(fields["type"])
        if not fields:
            return self.get_node(id)

        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = (*fields.values(), time.time(), id)
        with self._lock:
            cursor = self._write(f"UPDATE nodes SET {assignments}, updated_at = ? WHERE id = ?", params)
            if cursor.rowcount == 0:
                return None
            log.debug(f"Updated node {id}: {', '.join(fields)}")
            return self.get_node(id)

    def restore_node(self, node: Node) -> None:
        """Write back a previously read row, timestamps included."""
        self._write(
            "UPDATE nodes SET type = ?, content = ?, context = ?, parent_id = ?, updated_at = ? "
            "WHERE id = ?",
            (node.type, node.content, node.context, node.parent_id, node.updated_at, node.id),
        )

    def delete_node(self, id: str) -> bool:
        """Delete a node; edges and context entries cascade, children are detached."""
        cursor = self._write("DELETE FROM nodes WHERE id = ?", (id,))
        deleted = cursor.rowcount > 0
        if deleted:
            log.debug(f"Deleted node {id}")
        return deleted

    def get_ancestor_path(self, id: str) -> list[Node]:
        """The node and its ancestors, root first.

        Walks parent links with a visited set, so a corrupted cyclic chain
        stops at the first repeat instead of looping.
        """
        path: list[Node] = []
        visited: set[str] = set()
        current = self.get_node(id)
        while current is not None and current.id not in visited:
            visited.add(current.id)
            path.append(current)
            current = self.get_node(current.parent_id) if current.parent_id else None
        path.reverse()
        return path

    def get_inherited_context(self, id: str) -> str:
        """Non-empty contexts from root to node, joined by blank lines.

        A node created by branch_node records the snapshot it was seeded
        with. While its ancestors still contribute exactly that snapshot and
        its context still begins with it, the node's context already covers
        them and replaces the accumulated text instead of repeating it.
        """
        path = self.get_ancestor_path(id)
        seeds = self._seed_contexts([node.id for node in path])
        inherited = ""
        for node in path:
            if not node.context:
                continue
            seed = seeds.get(node.id)
            if seed and seed == inherited and (
                node.context == seed or node.context.startswith(seed + "\n\n")
            ):
                inherited = node.context
            elif inherited:
                inherited = f"{inherited}\n\n{node.context}"
            else:
                inherited = node.context
        return inherited

    def _seed_contexts(self, ids: list[str]) -> dict[str, str]:
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        rows = self._fetchall(
            f"SELECT id, seed_context FROM nodes WHERE id IN ({placeholders}) AND seed_context IS NOT NULL",
            tuple(ids),
        )
        return {row["id"]: row["seed_context"] for row in rows}

    def branch_node(self, parent_id: str, id: str, type: str, content: str) -> Node | None:
        """Create a child carrying a snapshot of the parent's inherited context."""
        parent = self.get_node(parent_id)
        if parent is None:
            return None
        inherited = self.get_inherited_context(parent_id)
        return self.create_node(
            id=id,
            type=type,
            content=content,
            context=inherited,
            parent_id=parent_id,
            board_id=parent.board_id,
            seed_context=inherited,
        )

    def node_type_counts(self, board_id: str | None = None) -> dict[str, int]:
        if board_id is None:
            rows = self._fetchall("SELECT type, COUNT(*) AS n FROM nodes GROUP BY type")
        else:
            rows = self._fetchall(
                "SELECT type, COUNT(*) AS n FROM nodes WHERE board_id = ? GROUP BY type", (board_id,)
            )
        return {row["type"]: row["n"] for row in rows}

    # -------------------------------------------------------------------------
    # Edges
    # -------------------------------------------------------------------------

    def create_edge(self, id: str, source_id: str, target_id: str, label: str | None = None) -> Edge:
        self._write(
            "INSERT INTO edges (id, source_id, target_id, label) VALUES (?, ?, ?, ?)",
            (id, source_id, target_id, label),
        )
        log.debug(f"Created edge {id}: {source_id} -> {target_id}")
        return Edge(id, source_id, target_id, label)

    def get_edge(self, id: str) -> Edge | None:
        row = self._fetchone("SELECT * FROM edges WHERE id = ?", (id,))
        return Edge.from_row(row) if row else None

    def get_edges_for_node(self, node_id: str) -> dict[str, list[Edge]]:
        incoming = self._fetchall("SELECT * FROM edges WHERE target_id = ? ORDER BY rowid", (node_id,))
        outgoing = self._fetchall("SELECT * FROM edges WHERE source_id = ? ORDER BY rowid", (node_id,))
        return {
            "incoming": [Edge.from_row(row) for row in incoming],
            "outgoing": [Edge.from_row(row) for row in outgoing],
        }

    def get_all_edges(self, board_id: str | None = None) -> list[Edge]:
        """All edges; with a board, those whose source node sits on it."""
        if board_id is None:
            rows = self._fetchall("SELECT * FROM edges ORDER BY rowid")
        else:
            rows = self._fetchall(
                "SELECT e.* FROM edges e JOIN nodes n ON e.source_id = n.id "
                "WHERE n.board_id = ? ORDER BY e.rowid",
                (board_id,),
            )
        return [Edge.from_row(row) for row in rows]

    def count_edges(self, board_id: str | None = None) -> int:
        if board_id is None:
            row = self._fetchone("SELECT COUNT(*) FROM edges")
        else:
            row = self._fetchone(
                "SELECT COUNT(*) FROM edges e JOIN nodes n ON e.source_id = n.id WHERE n.board_id = ?",
                (board_id,),
            )
        return row[0]

    def update_edge(self, id: str, label: str | None) -> Edge | None:
        cursor = self._write("UPDATE edges SET label = ? WHERE id = ?", (label, id))
        if cursor.rowcount == 0:
            return None
        return self.get_edge(id)

    def delete_edge(self, id: str) -> bool:
        return self._write("DELETE FROM edges WHERE id = ?", (id,)).rowcount > 0

    # -------------------------------------------------------------------------
    # Context audit trail
    # -------------------------------------------------------------------------

    def add_context_entry(
        self, node_id: str, text: str, source: str, embedding: bytes | None = None
    ) -> ContextEntry:
        _check_source(source)
        entry = ContextEntry(str(uuid.uuid4()), node_id, text, source, time.time(), embedding)
        self._write(
            "INSERT INTO context_chain (id, node_id, text, source, embedding, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (entry.id, node_id, text, source, embedding, entry.created_at),
        )
        return entry

    def append_context(self, node_id: str, text: str, source: str) -> tuple[ContextEntry, Node] | None:
        """Record an entry and roll it into the node's context in one transaction.

        Returns None if the node does not exist.
        """
        _check_source(source)
        with self._lock:
            node = self.get_node(node_id)
            if node is None:
                return None
            entry = ContextEntry(str(uuid.uuid4()), node_id, text, source, time.time())
            merged = f"{node.context}\n\n{text}" if node.context else text
            try:
                with self.conn:
                    self.conn.execute(
                        "INSERT INTO context_chain (id, node_id, text, source, embedding, created_at) "
                        "VALUES (?, ?, ?, ?, NULL, ?)",
                        (entry.id, node_id, text, source, entry.created_at),
                    )
                    self.conn.execute(
                        "UPDATE nodes SET context = ?, updated_at = ? WHERE id = ?",
                        (merged, entry.created_at, node_id),
                    )
            except sqlite3.IntegrityError as e:
                raise ConstraintViolation(str(e)) from e
            return entry, self.get_node(node_id)

    def remove_context_entry(self, entry_id: str, restore_context: str | None = None) -> None:
        """Drop an entry, optionally resetting its node's context (rollback helper)."""
        with self._lock, self.conn:
            row = self.conn.execute(
                "SELECT node_id FROM context_chain WHERE id = ?", (entry_id,)
            ).fetchone()
            self.conn.execute("DELETE FROM context_chain WHERE id = ?", (entry_id,))
            if row is not None and restore_context is not None:
                self.conn.execute(
                    "UPDATE nodes SET context = ? WHERE id = ?", (restore_context, row["node_id"])
                )

    def get_context_entries(self, node_id: str) -> list[ContextEntry]:
        rows = self._fetchall(
            "SELECT * FROM context_chain WHERE node_id = ? ORDER BY created_at, rowid", (node_id,)
        )
        return [ContextEntry.from_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    def create_project(self, id: str, name: str) -> Project:
        now = time.time()
        self._write(
            "INSERT INTO projects (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (id, name, now, now),
        )
        log.info(f"Created project {id}")
        return Project(id, name, now, now)

    def get_project(self, id: str) -> Project | None:
        row = self._fetchone("SELECT * FROM projects WHERE id = ?", (id,))
        return Project.from_row(row) if row else None

    def list_projects(self) -> list[Project]:
        rows = self._fetchall("SELECT * FROM projects ORDER BY created_at, rowid")
        return [Project.from_row(row) for row in rows]

    def get_or_create_project(self, id: str, name: str) -> tuple[Project, bool]:
        """Returns (project, created)."""
        with self._lock:
            existing = self.get_project(id)
            if existing is not None:
                return existing, False
            return self.create_project(id, name), True

    def delete_project(self, id: str) -> bool:
        """Delete a project with all of its boards and their content."""
        if id == DEFAULT_PROJECT_ID:
            raise ProtectedEntityError("project")
        with self._lock:
            if self.get_project(id) is None:
                return False
            board_ids = [b.id for b in self.list_boards(project_id=id)]
            with self.conn:
                for board_id in board_ids:
                    self._delete_board_content(board_id)
                self.conn.execute("DELETE FROM boards WHERE project_id = ?", (id,))
                self.conn.execute("DELETE FROM projects WHERE id = ?", (id,))
        log.info(f"Deleted project {id} ({len(board_ids)} board(s))")
        return True

    # -------------------------------------------------------------------------
    # Boards
    # -------------------------------------------------------------------------

    def create_board(
        self, id: str, name: str, project_id: str = DEFAULT_PROJECT_ID, slug: str | None = None
    ) -> Board:
        slug = slug or slugify(name) or id
        now = time.time()
        self._write(
            "INSERT INTO boards (id, name, slug, project_id, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (id, name, slug, project_id, now, now),
        )
        log.info(f"Created board {id} ({project_id}/{slug})")
        return Board(id, name, slug, project_id, None, None, None, now, now)

    def get_board(self, id: str) -> Board | None:
        row = self._fetchone("SELECT * FROM boards WHERE id = ?", (id,))
        return Board.from_row(row) if row else None

    def get_board_by_slug(self, project_id: str, slug: str) -> Board | None:
        row = self._fetchone(
            "SELECT * FROM boards WHERE project_id = ? AND slug = ?", (project_id, slug)
        )
        return Board.from_row(row) if row else None

    def list_boards(self, project_id: str | None = None) -> list[Board]:
        if project_id is None:
            rows = self._fetchall("SELECT * FROM boards ORDER BY created_at, rowid")
        else:
            rows = self._fetchall(
                "SELECT * FROM boards WHERE project_id = ? ORDER BY created_at, rowid", (project_id,)
            )
        return [Board.from_row(row) for row in rows]

    def get_or_create_board(self, project_id: str, slug: str, name: str | None = None) -> tuple[Board, bool]:
        """Look a board up by slug, creating it as ``{project_id}:{slug}``.

        Returns (board, created).
        """
        with self._lock:
            existing = self.get_board_by_slug(project_id, slug)
            if existing is not None:
                return existing, False
            board = self.create_board(f"{project_id}:{slug}", name or slug, project_id, slug)
            return board, True

    def update_board_viewport(self, id: str, x: float, y: float, zoom: float) -> Board | None:
        cursor = self._write(
            "UPDATE boards SET viewport_x = ?, viewport_y = ?, viewport_zoom = ?, updated_at = ? "
            "WHERE id = ?",
            (x, y, zoom, time.time(), id),
        )
        if cursor.rowcount == 0:
            return None
        return self.get_board(id)

    def get_board_viewport(self, id: str) -> Viewport | None:
        board = self.get_board(id)
        return board.viewport if board else None

    def _delete_board_content(self, board_id: str) -> None:
        """Context entries, then edges, then nodes. Caller holds the transaction."""
        node_ids = "SELECT id FROM nodes WHERE board_id = ?"
        self.conn.execute(f"DELETE FROM context_chain WHERE node_id IN ({node_ids})", (board_id,))
        self.conn.execute(
            f"DELETE FROM edges WHERE source_id IN ({node_ids}) OR target_id IN ({node_ids})",
            (board_id, board_id),
        )
        self.conn.execute("DELETE FROM nodes WHERE board_id = ?", (board_id,))

    def delete_board(self, id: str) -> bool:
        """Delete a board together with its nodes, edges and context entries."""
        if id == DEFAULT_BOARD_ID:
            raise ProtectedEntityError("board")
        with self._lock:
            if self.get_board(id) is None:
                return False
            try:
                with self.conn:
                    self._delete_board_content(id)
                    self.conn.execute("DELETE FROM boards WHERE id = ?", (id,))
            except sqlite3.IntegrityError as e:
                raise ConstraintViolation(str(e)) from e
        log.info(f"Deleted board {id}")
        return True

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def get_setting(self, key: str) -> str | None:
        row = self._fetchone("SELECT value FROM settings WHERE key = ?", (key,))
        return row["value"] if row else None

    def set_setting(self, key: str, value: str) -> None:
        self._write(
            "INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, value, time.time()),
        )

    def get_all_settings(self) -> dict[str, str]:
        rows = self._fetchall("SELECT key, value FROM settings ORDER BY key")
        return {row["key"]: row["value"] for row in rows}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self.conn.close()
        log.debug("StructuredStore closed")

    def __enter__(self) -> "StructuredStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
