"""Schema for the workgraph store.

Tables:
- items: tasks and epics, with the parent forest and agent claims
- deps: "item_id depends on depends_on" edges
- logs: append-only audit trail per item
- history: structured change events (status, dependencies, parent, claims)
- labels / item_labels: per-project labels and their associations

Foreign keys are declared without ON DELETE CASCADE. The engine deletes
dependent rows itself in a fixed order (logs, history, edges, label links,
item).
"""

import sqlite3

SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    project TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('task', 'epic')),
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'open'
        CHECK (status IN ('open', 'in_progress', 'blocked', 'done', 'canceled')),
    priority INTEGER NOT NULL DEFAULT 2,
    parent_id TEXT REFERENCES items(id),
    agent_id TEXT,
    agent_last_active TEXT,
    results TEXT NOT NULL DEFAULT '',
    shared_context TEXT NOT NULL DEFAULT '',
    closing_instructions TEXT NOT NULL DEFAULT '',
    worktree_branch TEXT,
    worktree_base TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    closed_at TEXT
);

CREATE TABLE IF NOT EXISTS deps (
    item_id TEXT NOT NULL REFERENCES items(id),
    depends_on TEXT NOT NULL REFERENCES items(id),
    PRIMARY KEY (item_id, depends_on)
);

CREATE TABLE IF NOT EXISTS logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id TEXT NOT NULL REFERENCES items(id),
    message TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id TEXT NOT NULL REFERENCES items(id),
    event_type TEXT NOT NULL,
    actor_id TEXT,
    actor_type TEXT,
    changes TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS labels (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project TEXT NOT NULL,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (project, name)
);

CREATE TABLE IF NOT EXISTS item_labels (
    item_id TEXT NOT NULL REFERENCES items(id),
    label_id INTEGER NOT NULL REFERENCES labels(id),
    PRIMARY KEY (item_id, label_id)
);

CREATE INDEX IF NOT EXISTS idx_items_project ON items(project);
CREATE INDEX IF NOT EXISTS idx_items_status ON items(status);
CREATE INDEX IF NOT EXISTS idx_items_parent ON items(parent_id);
CREATE INDEX IF NOT EXISTS idx_items_agent ON items(agent_id);
CREATE INDEX IF NOT EXISTS idx_deps_depends_on ON deps(depends_on);
CREATE INDEX IF NOT EXISTS idx_logs_item ON logs(item_id);
CREATE INDEX IF NOT EXISTS idx_items_closed ON items(closed_at);
CREATE INDEX IF NOT EXISTS idx_history_item_time ON history(item_id, created_at);
CREATE INDEX IF NOT EXISTS idx_history_actor_time ON history(actor_id, created_at);
CREATE INDEX IF NOT EXISTS idx_history_recent ON history(created_at);
CREATE INDEX IF NOT EXISTS idx_item_labels_label ON item_labels(label_id);
"""


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create all tables and indexes if they don't exist."""
    conn.executescript(SCHEMA)
