"""
Service layer for the work graph.

``WorkService`` is the single entry point callers use. It owns item creation
and the simple field setters, and delegates graph, lifecycle and merge
operations to their managers, which all share one connection manager and
repository.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from ..config.constants import (
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_LIST_LIMIT,
    DEFAULT_LOG_LIMIT,
    DEFAULT_PRIORITY,
    MAX_PRIORITY,
    MIN_PRIORITY,
    STALE_AFTER_MINUTES,
)
from ..config.project_config import ProjectConfig, load_config
from ..database.connection import DatabaseConnection
from ..exceptions import GuardViolationError, NotFoundError, ValidationError
from ..utils.datetime_utils import to_utc_iso, utc_now, utc_now_iso
from .graph import DependencyGraph
from .lifecycle import LifecycleManager
from .merge import MergeEngine
from .models import (
    AgentContext,
    CircularDep,
    DepEdge,
    DepStatus,
    EpicCompletionInfo,
    EventType,
    HistoryEntry,
    ImpactItem,
    Item,
    ItemType,
    LogEntry,
    ParentChildDep,
    Status,
    generate_item_id,
)
from .repository import ItemRepository

logger = logging.getLogger(__name__)

# Attempts at drawing an unused random id before giving up
_ID_ATTEMPTS = 10


class WorkService:
    """Service for managing work items and their dependency graph."""

    def __init__(self, db: Optional[DatabaseConnection] = None, config: Optional[ProjectConfig] = None):
        self.db = db or DatabaseConnection()
        self.config = config or load_config()
        self.repo = ItemRepository()
        self.graph = DependencyGraph(self.db, self.repo)
        self.lifecycle = LifecycleManager(self.db, self.repo)
        self.merger = MergeEngine(self.db, self.repo)

    # ==========================================================================
    # ITEM OPERATIONS
    # ==========================================================================

    def create_item(
        self,
        title: str,
        project: Optional[str] = None,
        item_type=ItemType.TASK,
        description: str = "",
        priority: int = DEFAULT_PRIORITY,
        parent_id: Optional[str] = None,
        status=Status.OPEN,
        shared_context: str = "",
        closing_instructions: str = "",
    ) -> Item:
        """Create a task or epic.

        ``project`` defaults to the configured default project. The parent, if
        given, must exist and must not be done or canceled.
        """
        item_type = ItemType.parse(item_type)
        status = Status.parse(status)
        project = project or self.config.default_project

        if not title or not title.strip():
            raise ValidationError("title must not be empty")
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise ValidationError(
                f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}", priority=priority
            )
        if item_type != ItemType.EPIC and (shared_context or closing_instructions):
            raise ValidationError("shared context and closing instructions are only valid on epics")

        with self.db.transaction() as conn:
            if parent_id is not None:
                parent = self.repo.get_item(conn, parent_id)
                if parent is None:
                    raise NotFoundError(f"parent not found: {parent_id}", item_id=parent_id)
                if parent.is_closed:
                    raise GuardViolationError(
                        "cannot add child to closed parent",
                        item_id=parent_id,
                        status=parent.status.value,
                    )

            for _ in range(_ID_ATTEMPTS):
                item_id = generate_item_id(
                    item_type,
                    prefix=self.config.prefix_for(item_type.value),
                    length=self.config.id_length,
                )
                if not self.repo.item_exists(conn, item_id):
                    break
            else:
                raise ValidationError("could not allocate a unique item id", item_type=item_type.value)

            item = Item(
                id=item_id,
                project=project,
                type=item_type,
                title=title.strip(),
                status=status,
                priority=priority,
                description=description,
                parent_id=parent_id,
                shared_context=shared_context,
                closing_instructions=closing_instructions,
            )
            self.repo.insert_item(conn, item)
            self.repo.record_history(
                conn, item_id, EventType.CREATED, {"type": item_type.value, "title": item.title}
            )
            created = self.repo.require_item(conn, item_id)

        logger.info("Created %s %s in %s", item_type.value, item_id, project)
        return created

    def get_item(self, item_id: str) -> Item:
        """Get an item with its labels. Raises NotFoundError if missing."""
        with self.db.get_connection() as conn:
            item = self.repo.require_item(conn, item_id)
            item.labels = self.repo.get_item_labels(conn, item_id)
            return item

    def list_items(
        self,
        project: Optional[str] = None,
        status=None,
        parent_id: Optional[str] = None,
        limit: Optional[int] = DEFAULT_LIST_LIMIT,
    ) -> List[Item]:
        status = Status.parse(status) if status is not None else None
        with self.db.get_connection() as conn:
            return self.repo.list_items(conn, project=project, status=status, parent_id=parent_id, limit=limit)

    def get_children(self, item_id: str) -> List[Item]:
        with self.db.get_connection() as conn:
            self.repo.require_item(conn, item_id)
            return self.repo.get_children(conn, item_id)

    def set_description(self, item_id: str, description: str) -> Item:
        return self._update(item_id, description=description)

    def append_description(self, item_id: str, text: str) -> Item:
        """Append a paragraph to the description."""
        with self.db.transaction() as conn:
            item = self.repo.require_item(conn, item_id)
            description = f"{item.description}\n\n{text}" if item.description else text
            self.repo.update_item(conn, item_id, description=description)
            return self.repo.require_item(conn, item_id)

    def set_priority(self, item_id: str, priority: int) -> Item:
        if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise ValidationError(
                f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}", priority=priority
            )
        return self._update(item_id, priority=priority)

    def set_shared_context(self, item_id: str, context: str) -> Item:
        return self._update_epic(item_id, "shared context", shared_context=context)

    def set_closing_instructions(self, item_id: str, instructions: str) -> Item:
        return self._update_epic(item_id, "closing instructions", closing_instructions=instructions)

    def set_worktree(self, item_id: str, branch: Optional[str], base: Optional[str] = None) -> Item:
        """Record the worktree branch (and its base) an epic is developed on."""
        return self._update_epic(item_id, "worktree metadata", worktree_branch=branch, worktree_base=base)

    def _update(self, item_id: str, **fields) -> Item:
        with self.db.transaction() as conn:
            self.repo.update_item(conn, item_id, **fields)
            return self.repo.require_item(conn, item_id)

    def _update_epic(self, item_id: str, what: str, **fields) -> Item:
        with self.db.transaction() as conn:
            item = self.repo.require_item(conn, item_id)
            if not item.is_epic:
                raise ValidationError(
                    f"{what} can only be set on epics", item_id=item_id, type=item.type.value
                )
            self.repo.update_item(conn, item_id, **fields)
            return self.repo.require_item(conn, item_id)

    # ==========================================================================
    # AUDIT LOG
    # ==========================================================================

    def add_log(self, item_id: str, message: str) -> int:
        with self.db.transaction() as conn:
            self.repo.require_item(conn, item_id)
            return self.repo.add_log(conn, item_id, message)

    def get_logs(self, item_id: str, limit: int = DEFAULT_LOG_LIMIT) -> List[LogEntry]:
        """Log entries for an item, oldest first."""
        with self.db.get_connection() as conn:
            return self.repo.get_logs(conn, item_id, limit)

    # ==========================================================================
    # HISTORY
    # ==========================================================================

    def get_item_history(self, item_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[HistoryEntry]:
        """Change events for an item, newest first."""
        with self.db.get_connection() as conn:
            self.repo.require_item(conn, item_id)
            return self.repo.get_history(conn, item_id=item_id, limit=limit)

    def get_history(
        self,
        item_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        since: Optional[datetime] = None,
        event_types: Optional[Iterable] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[HistoryEntry]:
        """Change events across items, filtered by item, actor, time and kind."""
        if event_types is not None:
            event_types = [EventType(t) for t in event_types]
        with self.db.get_connection() as conn:
            return self.repo.get_history(
                conn,
                item_id=item_id,
                actor_id=actor_id,
                since=to_utc_iso(since) if since is not None else None,
                event_types=event_types,
                limit=limit,
            )

    # ==========================================================================
    # LABELS
    # ==========================================================================

    def add_label(self, item_id: str, name: str) -> bool:
        """Attach a label, creating it in the item's project if needed."""
        name = name.strip()
        if not name:
            raise ValidationError("label name must not be empty")
        with self.db.transaction() as conn:
            item = self.repo.require_item(conn, item_id)
            label = self.repo.ensure_label(conn, item.project, name)
            return self.repo.add_item_label(conn, item_id, label.id)

    def remove_label(self, item_id: str, name: str) -> bool:
        with self.db.transaction() as conn:
            item = self.repo.require_item(conn, item_id)
            return self.repo.remove_item_label(conn, item_id, item.project, name) > 0

    def get_labels(self, item_id: str) -> List[str]:
        with self.db.get_connection() as conn:
            return self.repo.get_item_labels(conn, item_id)

    # ==========================================================================
    # CURRENT WORK
    # ==========================================================================

    def in_progress_items(self, project: Optional[str] = None) -> List[Item]:
        with self.db.get_connection() as conn:
            return self.repo.in_progress_items(conn, project)

    def in_progress_items_by_agent(self, agent_id: str) -> List[Item]:
        with self.db.get_connection() as conn:
            return self.repo.in_progress_items_by_agent(conn, agent_id)

    def stale_items(self, project: Optional[str] = None, cutoff: Optional[datetime] = None) -> List[Item]:
        """In-progress items whose agent has gone quiet since ``cutoff``.

        ``cutoff`` defaults to STALE_AFTER_MINUTES ago.
        """
        if cutoff is None:
            cutoff = utc_now() - timedelta(minutes=STALE_AFTER_MINUTES)
        with self.db.get_connection() as conn:
            return self.repo.stale_items(conn, to_utc_iso(cutoff), project)

    def get_recently_closed(
        self,
        limit: int = DEFAULT_HISTORY_LIMIT,
        since: Optional[datetime] = None,
        project: Optional[str] = None,
    ) -> List[Item]:
        """Done or canceled items, most recently closed first."""
        with self.db.get_connection() as conn:
            return self.repo.recently_closed(
                conn, limit, since=to_utc_iso(since) if since is not None else None, project=project
            )

    def touch_agent(self, item_id: str, agent_ctx: AgentContext) -> None:
        """Refresh the last-active time of the claiming agent."""
        with self.db.transaction() as conn:
            item = self.repo.require_item(conn, item_id)
            if agent_ctx.is_active and item.agent_id == agent_ctx.id:
                self.repo.update_item(conn, item_id, agent_last_active=utc_now_iso())

    # ==========================================================================
    # DEPENDENCY GRAPH
    # ==========================================================================

    def add_dependency(self, item_id: str, depends_on: str, agent_ctx: Optional[AgentContext] = None) -> None:
        self.graph.add_dependency(item_id, depends_on, agent_ctx)

    def remove_dependency(self, item_id: str, depends_on: str, agent_ctx: Optional[AgentContext] = None) -> None:
        self.graph.remove_dependency(item_id, depends_on, agent_ctx)

    def get_dependencies(self, item_id: str) -> List[DepStatus]:
        return self.graph.get_dependencies(item_id)

    def get_blocked_by(self, item_id: str) -> List[DepStatus]:
        return self.graph.get_blocked_by(item_id)

    def has_unmet_dependencies(self, item_id: str) -> bool:
        return self.graph.has_unmet_dependencies(item_id)

    def get_ancestor_dependencies(self, item_id: str) -> List[DepStatus]:
        return self.graph.get_ancestor_dependencies(item_id)

    def get_all_dependencies(self, item_id: str) -> List[DepStatus]:
        return self.graph.get_all_dependencies(item_id)

    def get_ready_items(self, project: Optional[str] = None) -> List[Item]:
        return self.graph.get_ready_items(project)

    def get_impact(self, item_id: str) -> List[ImpactItem]:
        return self.graph.get_impact(item_id)

    def get_dependency_chain(self, item_id: str) -> List[DepEdge]:
        return self.graph.get_dependency_chain(item_id)

    def get_reverse_dependency_chain(self, item_id: str) -> List[DepEdge]:
        return self.graph.get_reverse_dependency_chain(item_id)

    def get_all_edges(self, project: Optional[str] = None) -> List[DepEdge]:
        return self.graph.get_all_edges(project)

    def find_circular_deps(self) -> List[CircularDep]:
        return self.graph.find_circular_deps()

    def find_parent_child_circular_deps(self) -> List[ParentChildDep]:
        return self.graph.find_parent_child_circular_deps()

    def remove_circular_dep(self, item_id: str, depends_on: str) -> bool:
        return self.graph.remove_circular_dep(item_id, depends_on)

    def fix_all_parent_child_circular_deps(self) -> int:
        return self.graph.fix_all_parent_child_circular_deps()

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    def update_status(
        self,
        item_id: str,
        status,
        agent_ctx: Optional[AgentContext] = None,
        force: bool = False,
    ) -> Item:
        return self.lifecycle.update_status(item_id, status, agent_ctx=agent_ctx, force=force)

    def complete_item(self, item_id: str, results: str = "", agent_ctx: Optional[AgentContext] = None) -> Item:
        return self.lifecycle.complete_item(item_id, results, agent_ctx)

    def check_parent_epic_completion(self, item_id: str) -> Optional[EpicCompletionInfo]:
        return self.lifecycle.check_parent_epic_completion(item_id)

    def auto_complete_epic(self, epic_id: str, agent_ctx: Optional[AgentContext] = None) -> Item:
        return self.lifecycle.auto_complete_epic(epic_id, agent_ctx)

    def auto_complete_parents(
        self, item_id: str, agent_ctx: Optional[AgentContext] = None
    ) -> List[EpicCompletionInfo]:
        return self.lifecycle.auto_complete_parents(item_id, agent_ctx)

    def set_parent(self, item_id: str, parent_id: Optional[str], agent_ctx: Optional[AgentContext] = None) -> Item:
        return self.lifecycle.set_parent(item_id, parent_id, agent_ctx)

    def delete_item(self, item_id: str, force: bool = False, cascade_children: bool = False) -> List[str]:
        return self.lifecycle.delete_item(item_id, force=force, cascade_children=cascade_children)

    # ==========================================================================
    # MERGE
    # ==========================================================================

    def merge_items(self, source_id: str, target_id: str, agent_ctx: Optional[AgentContext] = None) -> Item:
        return self.merger.merge_items(source_id, target_id, agent_ctx)
