"""
Item Repository: row-level access to items, dependency edges, logs, history and labels.

Every method takes an open ``sqlite3.Connection`` so that callers can compose
several primitives inside one ``DatabaseConnection.transaction()``. Nothing
here enforces graph invariants; that is the job of the graph, lifecycle and
merge managers.
"""

import json
import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..config.constants import DEFAULT_HISTORY_LIMIT, DEFAULT_LIST_LIMIT, DEFAULT_LOG_LIMIT
from ..exceptions import NotFoundError
from ..utils.datetime_utils import to_utc_iso, utc_now_iso
from .models import AgentContext, DepEdge, DepStatus, HistoryEntry, Item, Label, LogEntry, Status

logger = logging.getLogger(__name__)

_ITEM_COLUMNS = (
    "id", "project", "type", "title", "description", "status", "priority",
    "parent_id", "agent_id", "agent_last_active", "results", "shared_context",
    "closing_instructions", "worktree_branch", "worktree_base",
    "created_at", "updated_at", "closed_at",
)

_UPDATABLE_COLUMNS = frozenset(_ITEM_COLUMNS) - {"id", "created_at", "updated_at"}

_CLOSED_SQL = "('done', 'canceled')"


def _placeholders(values: Iterable[Any]) -> str:
    return ", ".join("?" for _ in values)


def _closed_at(item: Item, now: str) -> Optional[str]:
    if item.closed_at:
        return to_utc_iso(item.closed_at)
    return now if item.status.is_closed else None


def _db_value(value: Any) -> Any:
    """Unwrap enums so they bind as their string values."""
    return getattr(value, "value", value)


class ItemRepository:
    """Persistence primitives for the work graph."""

    # ==========================================================================
    # ITEMS
    # ==========================================================================

    def insert_item(self, conn: sqlite3.Connection, item: Item) -> None:
        """Insert a new item row. Timestamps default to now."""
        now = utc_now_iso()
        values = {
            "id": item.id,
            "project": item.project,
            "type": item.type.value,
            "title": item.title,
            "description": item.description,
            "status": item.status.value,
            "priority": item.priority,
            "parent_id": item.parent_id,
            "agent_id": item.agent_id,
            "agent_last_active": item.agent_last_active.isoformat() if item.agent_last_active else None,
            "results": item.results,
            "shared_context": item.shared_context,
            "closing_instructions": item.closing_instructions,
            "worktree_branch": item.worktree_branch,
            "worktree_base": item.worktree_base,
            "created_at": item.created_at.isoformat() if item.created_at else now,
            "updated_at": item.updated_at.isoformat() if item.updated_at else now,
            "closed_at": _closed_at(item, now),
        }
        cursor = conn.cursor()
        cursor.execute(
            f"INSERT INTO items ({', '.join(_ITEM_COLUMNS)}) VALUES ({_placeholders(_ITEM_COLUMNS)})",
            tuple(values[column] for column in _ITEM_COLUMNS),
        )

    def get_item(self, conn: sqlite3.Connection, item_id: str) -> Optional[Item]:
        cursor = conn.cursor()
        cursor.execute(f"SELECT {', '.join(_ITEM_COLUMNS)} FROM items WHERE id = ?", (item_id,))
        row = cursor.fetchone()
        return Item.from_row(row) if row else None

    def require_item(self, conn: sqlite3.Connection, item_id: str) -> Item:
        """Get an item or raise NotFoundError."""
        item = self.get_item(conn, item_id)
        if item is None:
            raise NotFoundError(f"item not found: {item_id}", item_id=item_id)
        return item

    def item_exists(self, conn: sqlite3.Connection, item_id: str) -> bool:
        cursor = conn.cursor()
        cursor.execute("SELECT 1 FROM items WHERE id = ?", (item_id,))
        return cursor.fetchone() is not None

    def list_items(
        self,
        conn: sqlite3.Connection,
        project: Optional[str] = None,
        status: Optional[Status] = None,
        parent_id: Optional[str] = None,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> List[Item]:
        """List items ordered by priority then creation time. ``limit=None`` returns all."""
        conditions = []
        params: List[Any] = []
        if project is not None:
            conditions.append("project = ?")
            params.append(project)
        if status is not None:
            conditions.append("status = ?")
            params.append(_db_value(status))
        if parent_id is not None:
            conditions.append("parent_id = ?")
            params.append(parent_id)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        limit_clause = ""
        if limit is not None:
            limit_clause = "LIMIT ?"
            params.append(limit)

        cursor = conn.cursor()
        cursor.execute(
            f"""
            SELECT {', '.join(_ITEM_COLUMNS)} FROM items
            {where}
            ORDER BY priority ASC, created_at ASC
            {limit_clause}
            """,
            params,
        )
        return [Item.from_row(row) for row in cursor.fetchall()]

    def update_item(self, conn: sqlite3.Connection, item_id: str, **fields: Any) -> None:
        """Update the given columns and bump updated_at."""
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown item columns: {sorted(unknown)}")

        assignments = [f"{column} = ?" for column in fields]
        params = [_db_value(value) for value in fields.values()]
        assignments.append("updated_at = ?")
        params.append(utc_now_iso())
        params.append(item_id)

        cursor = conn.cursor()
        cursor.execute(f"UPDATE items SET {', '.join(assignments)} WHERE id = ?", params)
        if cursor.rowcount == 0:
            raise NotFoundError(f"item not found: {item_id}", item_id=item_id)

    def delete_item_row(self, conn: sqlite3.Connection, item_id: str) -> None:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM items WHERE id = ?", (item_id,))

    # ==========================================================================
    # HIERARCHY
    # ==========================================================================

    def get_children(self, conn: sqlite3.Connection, item_id: str) -> List[Item]:
        cursor = conn.cursor()
        cursor.execute(
            f"""
            SELECT {', '.join(_ITEM_COLUMNS)} FROM items
            WHERE parent_id = ?
            ORDER BY priority ASC, created_at ASC
            """,
            (item_id,),
        )
        return [Item.from_row(row) for row in cursor.fetchall()]

    def child_ids(self, conn: sqlite3.Connection, item_id: str) -> List[str]:
        cursor = conn.cursor()
        cursor.execute("SELECT id FROM items WHERE parent_id = ? ORDER BY created_at", (item_id,))
        return [row["id"] for row in cursor.fetchall()]

    def count_open_children(self, conn: sqlite3.Connection, item_id: str) -> int:
        """Count children whose status is not done or canceled."""
        cursor = conn.cursor()
        cursor.execute(
            f"SELECT COUNT(*) FROM items WHERE parent_id = ? AND status NOT IN {_CLOSED_SQL}",
            (item_id,),
        )
        return cursor.fetchone()[0]

    def child_status_counts(self, conn: sqlite3.Connection, item_id: str) -> Dict[str, int]:
        """Map of status -> number of children in that status."""
        cursor = conn.cursor()
        cursor.execute(
            "SELECT status, COUNT(*) AS n FROM items WHERE parent_id = ? GROUP BY status",
            (item_id,),
        )
        return {row["status"]: row["n"] for row in cursor.fetchall()}

    def descendant_ids(self, conn: sqlite3.Connection, item_id: str, max_depth: int) -> List[str]:
        """All descendants of an item, deepest first.

        Walk is breadth-first and bounded by ``max_depth`` levels. The result
        is reversed so that deleting in order never leaves an orphan pointing
        at an already-deleted parent.
        """
        ordered: List[str] = []
        seen: Set[str] = {item_id}
        frontier = [item_id]
        depth = 0
        while frontier and depth < max_depth:
            depth += 1
            next_frontier = []
            for parent in frontier:
                for child in self.child_ids(conn, parent):
                    if child in seen:
                        continue
                    seen.add(child)
                    ordered.append(child)
                    next_frontier.append(child)
            frontier = next_frontier
        ordered.reverse()
        return ordered

    def get_ancestors(self, conn: sqlite3.Connection, item_id: str, max_depth: int) -> List[Item]:
        """Parent chain from the immediate parent up to the root."""
        ancestors: List[Item] = []
        seen: Set[str] = {item_id}
        current = self.get_item(conn, item_id)
        while current is not None and current.parent_id and len(ancestors) < max_depth:
            if current.parent_id in seen:
                logger.warning("Parent cycle detected at %s", current.parent_id)
                break
            seen.add(current.parent_id)
            current = self.get_item(conn, current.parent_id)
            if current is not None:
                ancestors.append(current)
        return ancestors

    def reparent_children(self, conn: sqlite3.Connection, from_id: str, to_id: str) -> int:
        """Move every child of ``from_id`` under ``to_id``."""
        cursor = conn.cursor()
        cursor.execute(
            "UPDATE items SET parent_id = ?, updated_at = ? WHERE parent_id = ?",
            (to_id, utc_now_iso(), from_id),
        )
        return cursor.rowcount

    # ==========================================================================
    # DEPENDENCY EDGES
    # ==========================================================================

    def insert_edge(self, conn: sqlite3.Connection, item_id: str, depends_on: str) -> bool:
        """Insert an edge; returns False if it already existed."""
        cursor = conn.cursor()
        cursor.execute(
            "INSERT OR IGNORE INTO deps (item_id, depends_on) VALUES (?, ?)",
            (item_id, depends_on),
        )
        return cursor.rowcount > 0

    def delete_edge(self, conn: sqlite3.Connection, item_id: str, depends_on: str) -> int:
        cursor = conn.cursor()
        cursor.execute(
            "DELETE FROM deps WHERE item_id = ? AND depends_on = ?",
            (item_id, depends_on),
        )
        return cursor.rowcount

    def delete_edges_for(self, conn: sqlite3.Connection, item_id: str) -> int:
        """Remove every edge touching an item, in either direction."""
        cursor = conn.cursor()
        cursor.execute(
            "DELETE FROM deps WHERE item_id = ? OR depends_on = ?",
            (item_id, item_id),
        )
        return cursor.rowcount

    def edge_exists(self, conn: sqlite3.Connection, item_id: str, depends_on: str) -> bool:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT 1 FROM deps WHERE item_id = ? AND depends_on = ?",
            (item_id, depends_on),
        )
        return cursor.fetchone() is not None

    def dependency_ids(self, conn: sqlite3.Connection, item_id: str) -> List[str]:
        """IDs this item depends on."""
        cursor = conn.cursor()
        cursor.execute("SELECT depends_on FROM deps WHERE item_id = ? ORDER BY depends_on", (item_id,))
        return [row["depends_on"] for row in cursor.fetchall()]

    def dependent_ids(self, conn: sqlite3.Connection, item_id: str) -> List[str]:
        """IDs of items that depend on this item."""
        cursor = conn.cursor()
        cursor.execute("SELECT item_id FROM deps WHERE depends_on = ? ORDER BY item_id", (item_id,))
        return [row["item_id"] for row in cursor.fetchall()]

    def count_open_dependents(self, conn: sqlite3.Connection, item_id: str) -> int:
        """Count dependents that are not done or canceled."""
        cursor = conn.cursor()
        cursor.execute(
            f"""
            SELECT COUNT(*) FROM deps d
            JOIN items i ON i.id = d.item_id
            WHERE d.depends_on = ? AND i.status NOT IN {_CLOSED_SQL}
            """,
            (item_id,),
        )
        return cursor.fetchone()[0]

    def count_dependents(self, conn: sqlite3.Connection, item_id: str) -> int:
        cursor = conn.cursor()
        cursor.execute("SELECT COUNT(*) FROM deps WHERE depends_on = ?", (item_id,))
        return cursor.fetchone()[0]

    def dependencies_with_status(self, conn: sqlite3.Connection, item_id: str) -> List[DepStatus]:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT i.id, i.title, i.status FROM deps d
            JOIN items i ON i.id = d.depends_on
            WHERE d.item_id = ?
            ORDER BY i.id
            """,
            (item_id,),
        )
        return [DepStatus(id=r["id"], title=r["title"], status=Status(r["status"])) for r in cursor.fetchall()]

    def dependents_with_status(self, conn: sqlite3.Connection, item_id: str) -> List[DepStatus]:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT i.id, i.title, i.status FROM deps d
            JOIN items i ON i.id = d.item_id
            WHERE d.depends_on = ?
            ORDER BY i.id
            """,
            (item_id,),
        )
        return [DepStatus(id=r["id"], title=r["title"], status=Status(r["status"])) for r in cursor.fetchall()]

    def unmet_dependency_ids(self, conn: sqlite3.Connection, item_id: str) -> List[str]:
        """Direct dependencies whose status is not done."""
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT d.depends_on FROM deps d
            JOIN items i ON i.id = d.depends_on
            WHERE d.item_id = ? AND i.status != 'done'
            ORDER BY d.depends_on
            """,
            (item_id,),
        )
        return [row["depends_on"] for row in cursor.fetchall()]

    def all_edges(self, conn: sqlite3.Connection, project: Optional[str] = None) -> List[DepEdge]:
        """Every edge, optionally limited to items of one project."""
        query = """
            SELECT d.item_id, a.title AS item_title, a.status AS item_status,
                   d.depends_on, b.title AS dep_title, b.status AS dep_status
            FROM deps d
            JOIN items a ON a.id = d.item_id
            JOIN items b ON b.id = d.depends_on
        """
        params: Tuple[Any, ...] = ()
        if project is not None:
            query += " WHERE a.project = ?"
            params = (project,)
        query += " ORDER BY d.item_id, d.depends_on"

        cursor = conn.cursor()
        cursor.execute(query, params)
        return [
            DepEdge(
                item_id=r["item_id"],
                item_title=r["item_title"],
                item_status=Status(r["item_status"]),
                depends_on_id=r["depends_on"],
                depends_on_title=r["dep_title"],
                depends_on_status=Status(r["dep_status"]),
            )
            for r in cursor.fetchall()
        ]

    def adjacency(self, conn: sqlite3.Connection) -> Dict[str, List[str]]:
        """Full "depends on" adjacency map, loaded in one query."""
        cursor = conn.cursor()
        cursor.execute("SELECT item_id, depends_on FROM deps ORDER BY item_id, depends_on")
        graph: Dict[str, List[str]] = {}
        for row in cursor.fetchall():
            graph.setdefault(row["item_id"], []).append(row["depends_on"])
        return graph

    # ==========================================================================
    # LOGS
    # ==========================================================================

    def add_log(self, conn: sqlite3.Connection, item_id: str, message: str) -> int:
        cursor = conn.cursor()
        cursor.execute(
            "INSERT INTO logs (item_id, message, created_at) VALUES (?, ?, ?)",
            (item_id, message, utc_now_iso()),
        )
        return cursor.lastrowid

    def get_logs(
        self, conn: sqlite3.Connection, item_id: str, limit: int = DEFAULT_LOG_LIMIT
    ) -> List[LogEntry]:
        """Log entries for an item, oldest first."""
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT id, item_id, message, created_at FROM logs
            WHERE item_id = ?
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            """,
            (item_id, limit),
        )
        return [LogEntry.from_row(row) for row in cursor.fetchall()]

    def move_logs(self, conn: sqlite3.Connection, from_id: str, to_id: str) -> int:
        cursor = conn.cursor()
        cursor.execute("UPDATE logs SET item_id = ? WHERE item_id = ?", (to_id, from_id))
        return cursor.rowcount

    def delete_logs(self, conn: sqlite3.Connection, item_id: str) -> int:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM logs WHERE item_id = ?", (item_id,))
        return cursor.rowcount

    # ==========================================================================
    # HISTORY
    # ==========================================================================

    def record_history(
        self,
        conn: sqlite3.Connection,
        item_id: str,
        event_type: str,
        changes: Optional[Dict[str, Any]] = None,
        actor: Optional[AgentContext] = None,
    ) -> int:
        """Append a change event. The actor defaults to AGENT_ID / AGENT_TYPE."""
        actor = actor if actor is not None else AgentContext.from_env()
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT INTO history (item_id, event_type, actor_id, actor_type, changes, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                item_id,
                _db_value(event_type),
                actor.id or None,
                actor.type or None,
                json.dumps(changes, sort_keys=True) if changes is not None else None,
                utc_now_iso(),
            ),
        )
        return cursor.lastrowid

    def get_history(
        self,
        conn: sqlite3.Connection,
        item_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        since: Optional[str] = None,
        event_types: Optional[Iterable[str]] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[HistoryEntry]:
        """History entries matching every given filter, newest first."""
        conditions = []
        params: List[Any] = []
        if item_id is not None:
            conditions.append("item_id = ?")
            params.append(item_id)
        if actor_id is not None:
            conditions.append("actor_id = ?")
            params.append(actor_id)
        if since is not None:
            conditions.append("created_at >= ?")
            params.append(since)
        if event_types:
            types = [_db_value(t) for t in event_types]
            conditions.append(f"event_type IN ({_placeholders(types)})")
            params.extend(types)
        params.append(limit)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        cursor = conn.cursor()
        cursor.execute(
            f"""
            SELECT id, item_id, event_type, actor_id, actor_type, changes, created_at
            FROM history
            {where}
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            params,
        )
        return [HistoryEntry.from_row(row) for row in cursor.fetchall()]

    def move_history(self, conn: sqlite3.Connection, from_id: str, to_id: str) -> int:
        cursor = conn.cursor()
        cursor.execute("UPDATE history SET item_id = ? WHERE item_id = ?", (to_id, from_id))
        return cursor.rowcount

    def delete_history(self, conn: sqlite3.Connection, item_id: str) -> int:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM history WHERE item_id = ?", (item_id,))
        return cursor.rowcount

    # ==========================================================================
    # LABELS
    # ==========================================================================

    def ensure_label(self, conn: sqlite3.Connection, project: str, name: str) -> Label:
        """Get or create a label in a project."""
        cursor = conn.cursor()
        cursor.execute(
            "INSERT OR IGNORE INTO labels (project, name, created_at) VALUES (?, ?, ?)",
            (project, name, utc_now_iso()),
        )
        cursor.execute("SELECT id, project, name FROM labels WHERE project = ? AND name = ?", (project, name))
        return Label.from_row(cursor.fetchone())

    def add_item_label(self, conn: sqlite3.Connection, item_id: str, label_id: int) -> bool:
        cursor = conn.cursor()
        cursor.execute(
            "INSERT OR IGNORE INTO item_labels (item_id, label_id) VALUES (?, ?)",
            (item_id, label_id),
        )
        return cursor.rowcount > 0

    def remove_item_label(self, conn: sqlite3.Connection, item_id: str, project: str, name: str) -> int:
        cursor = conn.cursor()
        cursor.execute(
            """
            DELETE FROM item_labels
            WHERE item_id = ?
              AND label_id IN (SELECT id FROM labels WHERE project = ? AND name = ?)
            """,
            (item_id, project, name),
        )
        return cursor.rowcount

    def get_item_labels(self, conn: sqlite3.Connection, item_id: str) -> List[str]:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT l.name FROM item_labels il
            JOIN labels l ON l.id = il.label_id
            WHERE il.item_id = ?
            ORDER BY l.name
            """,
            (item_id,),
        )
        return [row["name"] for row in cursor.fetchall()]

    def copy_item_labels(self, conn: sqlite3.Connection, from_id: str, to_id: str) -> int:
        """Copy label associations, skipping ones the target already has."""
        cursor = conn.cursor()
        cursor.execute(
            """
            INSERT OR IGNORE INTO item_labels (item_id, label_id)
            SELECT ?, label_id FROM item_labels WHERE item_id = ?
            """,
            (to_id, from_id),
        )
        return cursor.rowcount

    def delete_item_labels(self, conn: sqlite3.Connection, item_id: str) -> int:
        cursor = conn.cursor()
        cursor.execute("DELETE FROM item_labels WHERE item_id = ?", (item_id,))
        return cursor.rowcount

    # ==========================================================================
    # CURRENT WORK
    # ==========================================================================

    def in_progress_items(self, conn: sqlite3.Connection, project: Optional[str] = None) -> List[Item]:
        """Items currently in progress, most recently touched first."""
        query = f"SELECT {', '.join(_ITEM_COLUMNS)} FROM items WHERE status = 'in_progress'"
        params: Tuple[Any, ...] = ()
        if project is not None:
            query += " AND project = ?"
            params = (project,)
        query += " ORDER BY updated_at DESC"

        cursor = conn.cursor()
        cursor.execute(query, params)
        return [Item.from_row(row) for row in cursor.fetchall()]

    def in_progress_items_by_agent(self, conn: sqlite3.Connection, agent_id: str) -> List[Item]:
        cursor = conn.cursor()
        cursor.execute(
            f"""
            SELECT {', '.join(_ITEM_COLUMNS)} FROM items
            WHERE status = 'in_progress' AND agent_id = ?
            ORDER BY agent_last_active DESC
            """,
            (agent_id,),
        )
        return [Item.from_row(row) for row in cursor.fetchall()]

    def stale_items(
        self, conn: sqlite3.Connection, cutoff: str, project: Optional[str] = None
    ) -> List[Item]:
        """In-progress items whose agent has not been active since ``cutoff``.

        Items without a claim fall back to their last update time.
        """
        query = (
            f"SELECT {', '.join(_ITEM_COLUMNS)} FROM items "
            "WHERE status = 'in_progress' AND COALESCE(agent_last_active, updated_at) < ?"
        )
        params: List[Any] = [cutoff]
        if project is not None:
            query += " AND project = ?"
            params.append(project)
        query += " ORDER BY COALESCE(agent_last_active, updated_at) ASC"

        cursor = conn.cursor()
        cursor.execute(query, params)
        return [Item.from_row(row) for row in cursor.fetchall()]

    def recently_closed(
        self,
        conn: sqlite3.Connection,
        limit: int = DEFAULT_HISTORY_LIMIT,
        since: Optional[str] = None,
        project: Optional[str] = None,
    ) -> List[Item]:
        """Done or canceled items, most recently closed first."""
        query = f"SELECT {', '.join(_ITEM_COLUMNS)} FROM items WHERE closed_at IS NOT NULL"
        params: List[Any] = []
        if since is not None:
            query += " AND closed_at >= ?"
            params.append(since)
        if project is not None:
            query += " AND project = ?"
            params.append(project)
        query += " ORDER BY closed_at DESC LIMIT ?"
        params.append(limit)

        cursor = conn.cursor()
        cursor.execute(query, params)
        return [Item.from_row(row) for row in cursor.fetchall()]

    def open_item_ids(self, conn: sqlite3.Connection, ids: Iterable[str]) -> Set[str]:
        """Subset of ``ids`` whose status is open."""
        ids = list(ids)
        if not ids:
            return set()
        cursor = conn.cursor()
        cursor.execute(
            f"SELECT id FROM items WHERE status = 'open' AND id IN ({_placeholders(ids)})",
            ids,
        )
        return {row["id"] for row in cursor.fetchall()}
