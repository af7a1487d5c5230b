"""SQLite schema and additive migrations for the structured store.

``migrate`` is safe to run on every startup: it creates what is missing,
adds columns that older databases lack, seeds the default project and
board, backfills board slugs and creates indexes. Nothing is ever dropped.
"""

import sqlite3
import time

from stickygraph.log_config import get_logger
from stickygraph.models import DEFAULT_BOARD_ID, DEFAULT_BOARD_SLUG, DEFAULT_PROJECT_ID

log = get_logger("store.schema")

TABLES: dict[str, str] = {
    "projects": """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
    """,
    "boards": """
        CREATE TABLE IF NOT EXISTS boards (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            slug TEXT NOT NULL DEFAULT '',
            project_id TEXT NOT NULL DEFAULT 'default' REFERENCES projects(id),
            viewport_x REAL,
            viewport_y REAL,
            viewport_zoom REAL,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
    """,
    "nodes": """
        CREATE TABLE IF NOT EXISTS nodes (
            id TEXT PRIMARY KEY,
            type TEXT NOT NULL,
            content TEXT NOT NULL DEFAULT '',
            context TEXT NOT NULL DEFAULT '',
            parent_id TEXT REFERENCES nodes(id) ON DELETE SET NULL,
            board_id TEXT NOT NULL DEFAULT 'default' REFERENCES boards(id),
            seed_context TEXT,
            created_at REAL NOT NULL,
            updated_at REAL NOT NULL
        )
    """,
    "edges": """
        CREATE TABLE IF NOT EXISTS edges (
            id TEXT PRIMARY KEY,
            source_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
            target_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
            label TEXT
        )
    """,
    "context_chain": """
        CREATE TABLE IF NOT EXISTS context_chain (
            id TEXT PRIMARY KEY,
            node_id TEXT NOT NULL REFERENCES nodes(id) ON DELETE CASCADE,
            text TEXT NOT NULL,
            source TEXT NOT NULL,
            embedding BLOB,
            created_at REAL NOT NULL
        )
    """,
    "settings": """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at REAL NOT NULL
        )
    """,
}

# Columns added after the first release. SQLite cannot attach a foreign key
# with a non-null default through ALTER TABLE, so migrated databases get
# these as plain columns.
ADDED_COLUMNS: list[tuple[str, str, str]] = [
    ("nodes", "board_id", "TEXT NOT NULL DEFAULT 'default'"),
    ("nodes", "seed_context", "TEXT"),
    ("boards", "slug", "TEXT NOT NULL DEFAULT ''"),
    ("boards", "project_id", "TEXT NOT NULL DEFAULT 'default'"),
    ("boards", "viewport_x", "REAL"),
    ("boards", "viewport_y", "REAL"),
    ("boards", "viewport_zoom", "REAL"),
    ("context_chain", "embedding", "BLOB"),
]

INDEXES: dict[str, str] = {
    "idx_nodes_parent": "CREATE INDEX IF NOT EXISTS idx_nodes_parent ON nodes(parent_id)",
    "idx_nodes_board": "CREATE INDEX IF NOT EXISTS idx_nodes_board ON nodes(board_id)",
    "idx_edges_source": "CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(source_id)",
    "idx_edges_target": "CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target_id)",
    "idx_context_node": "CREATE INDEX IF NOT EXISTS idx_context_node ON context_chain(node_id)",
    "idx_boards_project_slug": (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_boards_project_slug ON boards(project_id, slug)"
    ),
}


def _existing(conn: sqlite3.Connection, kind: str) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = ?", (kind,)).fetchall()
    return {row[0] for row in rows}


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _create_tables(conn: sqlite3.Connection) -> list[str]:
    existing = _existing(conn, "table")
    applied = []
    for name, ddl in TABLES.items():
        if name not in existing:
            conn.execute(ddl)
            applied.append(f"create_table:{name}")
    return applied


def _add_missing_columns(conn: sqlite3.Connection) -> list[str]:
    applied = []
    for table, column, decl in ADDED_COLUMNS:
        if column not in _columns(conn, table):
            log.info(f"Migrating: adding {table}.{column}")
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {decl}")
            applied.append(f"add_column:{table}.{column}")
    return applied


def _seed_defaults(conn: sqlite3.Connection) -> list[str]:
    now = time.time()
    applied = []
    cursor = conn.execute(
        "INSERT OR IGNORE INTO projects (id, name, created_at, updated_at) VALUES (?, ?, ?, ?)",
        (DEFAULT_PROJECT_ID, "Default Project", now, now),
    )
    if cursor.rowcount:
        applied.append("seed:default_project")

    # An older default board keeps its empty slug here; the backfill gives it 'main'
    cursor = conn.execute(
        "INSERT OR IGNORE INTO boards (id, name, slug, project_id, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (DEFAULT_BOARD_ID, "Default Board", DEFAULT_BOARD_SLUG, DEFAULT_PROJECT_ID, now, now),
    )
    if cursor.rowcount:
        applied.append("seed:default_board")
    return applied


def _backfill_slugs(conn: sqlite3.Connection) -> list[str]:
    """Give every board without a slug a unique one within its project.

    The default board is handled first and prefers 'main'; the rest prefer
    their id. Collisions get '-2', '-3', ... appended.
    """
    pending = conn.execute(
        "SELECT id, project_id FROM boards WHERE slug = '' OR slug IS NULL "
        "ORDER BY id != ?, rowid",
        (DEFAULT_BOARD_ID,),
    ).fetchall()
    applied = []
    for row in pending:
        board_id, project_id = row[0], row[1]
        base = DEFAULT_BOARD_SLUG if board_id == DEFAULT_BOARD_ID else board_id
        taken = {
            r[0]
            for r in conn.execute(
                "SELECT slug FROM boards WHERE project_id = ? AND id != ?", (project_id, board_id)
            ).fetchall()
        }
        slug, n = base, 2
        while slug in taken:
            slug = f"{base}-{n}"
            n += 1
        conn.execute("UPDATE boards SET slug = ? WHERE id = ?", (slug, board_id))
        log.debug(f"Backfilled slug for board {board_id}: {slug}")
        applied.append(f"backfill_slug:{board_id}")
    return applied


def _create_indexes(conn: sqlite3.Connection) -> list[str]:
    existing = _existing(conn, "index")
    applied = []
    for name, ddl in INDEXES.items():
        if name not in existing:
            conn.execute(ddl)
            applied.append(f"create_index:{name}")
    return applied


def migrate(conn: sqlite3.Connection) -> list[str]:
    """Bring the database to the current schema.

    Returns:
        Names of the changes applied; empty when the schema was already current.
    """
    with conn:
        applied = _create_tables(conn)
        applied += _add_missing_columns(conn)
        applied += _seed_defaults(conn)
        applied += _backfill_slugs(conn)
        applied += _create_indexes(conn)

    if applied:
        log.info(f"Schema migration applied {len(applied)} change(s)")
    else:
        log.debug("Schema already current")
    return applied
