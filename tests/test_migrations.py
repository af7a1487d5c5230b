"""Tests for schema migration on fresh and legacy databases."""

import sqlite3

from stickygraph.db.schema import migrate
from stickygraph.db.sqlite_store import StructuredStore
from stickygraph.models import DEFAULT_BOARD_ID, DEFAULT_PROJECT_ID


def _schema_snapshot(conn: sqlite3.Connection) -> list[tuple]:
    return conn.execute("SELECT type, name, sql FROM sqlite_master ORDER BY type, name").fetchall()


def _make_legacy_db(path):
    """A database from before boards had slugs/projects and nodes had boards."""
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE nodes (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            context TEXT NOT NULL DEFAULT '',
            parent_id TEXT REFERENCES nodes(id) ON DELETE SET NULL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        );
        CREATE TABLE edges (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
            target_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
            label TEXT
        );
        CREATE TABLE context_chain (
            id TEXT PRIMARY KEY,
            node_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
            text TEXT NOT NULL,
            source TEXT NOT NULL,
            created_at REAL NOT NULL
        );
        CREATE TABLE boards (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        );
        INSERT INTO boards VALUES ('default', 'Default Board', 1.0, 1.0);
        INSERT INTO boards VALUES ('main', 'Main Street', 2.0, 2.0);
        INSERT INTO boards VALUES ('sketches', 'Sketches', 3.0, 3.0);
        INSERT INTO nodes (id, type, content, context, created_at, updated_at)
            VALUES ('old', 'conversation', '{}', 'legacy context', 1.0, 1.0);
    """)
    conn.commit()
    conn.close()


class TestFreshDatabase:
    """Migration on an empty database."""

    def test_second_run_is_noop(self, store):
        before = _schema_snapshot(store.conn)
        assert migrate(store.conn) == []
        assert _schema_snapshot(store.conn) == before

    def test_first_run_reports_changes(self, store):
        assert "create_table:nodes" in store.applied_migrations
        assert "seed:default_board" in store.applied_migrations
        assert "create_index:idx_boards_project_slug" in store.applied_migrations

    def test_reopen_applies_nothing(self, tmp_path):
        path = tmp_path / "graph.db"
        StructuredStore(path).close()
        with StructuredStore(path) as reopened:
            assert reopened.applied_migrations == []


class TestLegacyDatabase:
    """Migration of a database created by an older release."""

    def test_columns_added(self, tmp_path):
        path = tmp_path / "legacy.db"
        _make_legacy_db(path)
        with StructuredStore(path) as store:
            node_columns = {r[1] for r in store.conn.execute("PRAGMA table_info(nodes)")}
            board_columns = {r[1] for r in store.conn.execute("PRAGMA table_info(boards)")}
            context_columns = {r[1] for r in store.conn.execute("PRAGMA table_info(context_chain)")}
            assert {"board_id", "seed_context"} <= node_columns
            assert {"slug", "project_id", "viewport_x", "viewport_y", "viewport_zoom"} <= board_columns
            assert "embedding" in context_columns
            assert "add_column:nodes.board_id" in store.applied_migrations
            assert "add_column:nodes.seed_context" in store.applied_migrations

    def test_existing_rows_survive(self, tmp_path):
        path = tmp_path / "legacy.db"
        _make_legacy_db(path)
        with StructuredStore(path) as store:
            node = store.get_node("old")
            assert node.context == "legacy context"
            assert node.board_id == DEFAULT_BOARD_ID

    def test_slugs_backfilled_without_collisions(self, tmp_path):
        path = tmp_path / "legacy.db"
        _make_legacy_db(path)
        with StructuredStore(path) as store:
            assert store.get_board(DEFAULT_BOARD_ID).slug == "main"
            assert store.get_board("main").slug == "main-2"
            assert store.get_board("sketches").slug == "sketches"
            assert all(b.project_id == DEFAULT_PROJECT_ID for b in store.list_boards())
            assert store.get_project(DEFAULT_PROJECT_ID) is not None

    def test_legacy_migration_idempotent(self, tmp_path):
        path = tmp_path / "legacy.db"
        _make_legacy_db(path)
        with StructuredStore(path) as store:
            before = _schema_snapshot(store.conn)
            slugs = {b.id: b.slug for b in store.list_boards()}
            assert migrate(store.conn) == []
            assert _schema_snapshot(store.conn) == before
            assert {b.id: b.slug for b in store.list_boards()} == slugs
