"""
Status Lifecycle Manager.

Owns the status state machine and its guards, agent claim/release, parent
assignment, epic auto-completion and cascading deletion.

Any status may move to any other. Moving to done/canceled is gated by:
- the children guard (unconditional): every child must be done/canceled
- the dependents guard (overridable with ``force``): nothing still open may
  depend on the item

Claims are last-write-wins: entering in_progress with an active agent
overwrites whatever claim was there. Status, claim and parent changes are
recorded in the item's history in the same transaction as the change.
"""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from ..config.constants import AUTO_COMPLETE_LOG_MESSAGE, AUTO_COMPLETE_RESULTS
from ..config.settings import get_max_traversal_depth
from ..database.connection import DatabaseConnection
from ..exceptions import (
    CycleDetectedError,
    GuardViolationError,
    HierarchyConflictError,
    NotFoundError,
    ValidationError,
)
from ..utils.datetime_utils import utc_now_iso
from .models import AgentContext, EpicCompletionInfo, EventType, Item, Status
from .repository import ItemRepository

logger = logging.getLogger(__name__)


class LifecycleManager:
    """Status transitions, claims, hierarchy and deletion."""

    def __init__(self, db: DatabaseConnection, repo: Optional[ItemRepository] = None):
        self.db = db
        self.repo = repo or ItemRepository()

    # ==========================================================================
    # GUARDS
    # ==========================================================================

    def _check_children_closed(self, conn: sqlite3.Connection, item: Item) -> None:
        open_children = self.repo.count_open_children(conn, item.id)
        if open_children:
            raise GuardViolationError(
                f"cannot close {item.id}: {open_children} child item(s) are not done or canceled",
                item_id=item.id,
                open_children=open_children,
            )

    def _check_no_dependents(self, conn: sqlite3.Connection, item: Item) -> None:
        """Reject closing while open dependents remain; done or canceled dependents are exempt."""
        dependents = self.repo.count_open_dependents(conn, item.id)
        if dependents:
            raise GuardViolationError(
                f"cannot close {item.id}: {dependents} task(s) depend on it (use force to override)",
                item_id=item.id,
                dependents=dependents,
            )

    # ==========================================================================
    # STATUS TRANSITIONS
    # ==========================================================================

    def _transition(
        self,
        conn: sqlite3.Connection,
        item: Item,
        status: Status,
        actor: Optional[AgentContext],
    ) -> Dict[str, Any]:
        """Record a status change and return the closed_at update it implies."""
        if status == item.status:
            return {}
        self.repo.record_history(
            conn, item.id,
            EventType.for_transition(item.status, status),
            {"old": item.status.value, "new": status.value},
            actor,
        )
        if status.is_closed and not item.is_closed:
            return {"closed_at": utc_now_iso()}
        if not status.is_closed and item.is_closed:
            return {"closed_at": None}
        return {}

    def update_status(
        self,
        item_id: str,
        status,
        agent_ctx: Optional[AgentContext] = None,
        force: bool = False,
    ) -> Item:
        """Move an item to ``status``, applying guards and claim rules."""
        status = Status.parse(status)

        with self.db.transaction() as conn:
            item = self.repo.require_item(conn, item_id)

            if status.is_closed:
                self._check_children_closed(conn, item)
                if not force:
                    self._check_no_dependents(conn, item)

            fields = {"status": status}
            fields.update(self._transition(conn, item, status, agent_ctx))
            if status == Status.IN_PROGRESS and agent_ctx is not None and agent_ctx.is_active:
                if item.agent_id != agent_ctx.id:
                    if item.agent_id:
                        logger.debug("Agent %s takes over %s from %s", agent_ctx.id, item_id, item.agent_id)
                    self.repo.record_history(
                        conn, item_id, EventType.ASSIGNED,
                        {"old": item.agent_id, "new": agent_ctx.id},
                        agent_ctx,
                    )
                fields["agent_id"] = agent_ctx.id
                fields["agent_last_active"] = utc_now_iso()
            elif status.releases_claim:
                fields["agent_id"] = None
                fields["agent_last_active"] = None

            self.repo.update_item(conn, item_id, **fields)
            updated = self.repo.require_item(conn, item_id)

        logger.info("Status of %s: %s -> %s", item_id, item.status.value, status.value)
        return updated

    def complete_item(
        self,
        item_id: str,
        results: str = "",
        agent_ctx: Optional[AgentContext] = None,
    ) -> Item:
        """Mark an item done with a results summary and release its claim."""
        with self.db.transaction() as conn:
            item = self.repo.require_item(conn, item_id)
            self._check_children_closed(conn, item)
            self.repo.update_item(
                conn, item_id,
                status=Status.DONE,
                results=results,
                agent_id=None,
                agent_last_active=None,
                **self._transition(conn, item, Status.DONE, agent_ctx),
            )
            completed = self.repo.require_item(conn, item_id)

        if agent_ctx is not None and agent_ctx.is_active:
            logger.info("Completed %s (agent %s)", item_id, agent_ctx.id)
        else:
            logger.info("Completed %s", item_id)
        return completed

    # ==========================================================================
    # EPIC COMPLETION
    # ==========================================================================

    def check_parent_epic_completion(self, item_id: str) -> Optional[EpicCompletionInfo]:
        """Report the parent of ``item_id`` if all of its children are now closed.

        Returns None when there is no parent, the parent is already closed, or
        some child is still open.
        """
        with self.db.get_connection() as conn:
            return self._completion_info(conn, item_id)

    def _completion_info(self, conn: sqlite3.Connection, item_id: str) -> Optional[EpicCompletionInfo]:
        item = self.repo.require_item(conn, item_id)
        if not item.parent_id:
            return None
        parent = self.repo.get_item(conn, item.parent_id)
        if parent is None or parent.is_closed:
            return None
        if self.repo.count_open_children(conn, parent.id):
            return None
        return EpicCompletionInfo(
            epic=parent,
            closing_instructions=parent.closing_instructions,
            worktree_branch=parent.worktree_branch,
            worktree_base=parent.worktree_base,
        )

    def auto_complete_epic(self, epic_id: str, agent_ctx: Optional[AgentContext] = None) -> Item:
        """Mark an epic done with a summary of its children's outcomes."""
        with self.db.transaction() as conn:
            return self._auto_complete(conn, epic_id, agent_ctx)

    def _auto_complete(
        self,
        conn: sqlite3.Connection,
        epic_id: str,
        actor: Optional[AgentContext],
        log: bool = False,
    ) -> Item:
        epic = self.repo.require_item(conn, epic_id)
        self._check_children_closed(conn, epic)

        counts = self.repo.child_status_counts(conn, epic_id)
        total = sum(counts.values())
        done = counts.get(Status.DONE.value, 0)
        self.repo.update_item(
            conn, epic_id,
            status=Status.DONE,
            results=AUTO_COMPLETE_RESULTS.format(total=total, done=done),
            agent_id=None,
            agent_last_active=None,
            **self._transition(conn, epic, Status.DONE, actor),
        )
        if log:
            self.repo.add_log(conn, epic_id, AUTO_COMPLETE_LOG_MESSAGE)

        logger.info("Auto-completed %s (%d/%d children done)", epic_id, done, total)
        return self.repo.require_item(conn, epic_id)

    def auto_complete_parents(
        self, item_id: str, agent_ctx: Optional[AgentContext] = None
    ) -> List[EpicCompletionInfo]:
        """Close every ancestor whose children are now all closed, bottom-up.

        The whole walk is one transaction: either every qualifying ancestor is
        closed and logged, or none is. Returns the completion info of each
        ancestor closed, nearest first.
        """
        max_depth = get_max_traversal_depth()
        completed: List[EpicCompletionInfo] = []
        with self.db.transaction() as conn:
            current = item_id
            for _ in range(max_depth):
                info = self._completion_info(conn, current)
                if info is None:
                    break
                info.epic = self._auto_complete(conn, info.epic.id, agent_ctx, log=True)
                completed.append(info)
                current = info.epic.id
        return completed

    # ==========================================================================
    # HIERARCHY
    # ==========================================================================

    def set_parent(
        self,
        item_id: str,
        parent_id: Optional[str],
        agent_ctx: Optional[AgentContext] = None,
    ) -> Item:
        """Attach ``item_id`` under ``parent_id``, or detach it when None."""
        with self.db.transaction() as conn:
            item = self.repo.require_item(conn, item_id)

            if parent_id is not None:
                if parent_id == item_id:
                    raise ValidationError(f"{item_id} cannot be its own parent", item_id=item_id)

                parent = self.repo.get_item(conn, parent_id)
                if parent is None:
                    raise NotFoundError(f"parent not found: {parent_id}", item_id=parent_id)
                if parent.is_closed:
                    raise GuardViolationError(
                        "cannot add child to closed parent",
                        item_id=parent_id,
                        status=parent.status.value,
                    )

                ancestors = self.repo.get_ancestors(conn, parent_id, get_max_traversal_depth())
                if any(a.id == item_id for a in ancestors):
                    raise CycleDetectedError(
                        f"cannot set parent: {parent_id} is a descendant of {item_id}",
                        item_id=item_id,
                        parent_id=parent_id,
                    )

                if self.repo.edge_exists(conn, item_id, parent_id) or self.repo.edge_exists(conn, parent_id, item_id):
                    raise HierarchyConflictError(
                        f"cannot set parent: {item_id} and {parent_id} have a dependency between them",
                        parent_id=parent_id,
                        child_id=item_id,
                    )

            self.repo.update_item(conn, item_id, parent_id=parent_id)
            if item.parent_id != parent_id:
                self.repo.record_history(
                    conn, item_id, EventType.PARENT_CHANGED,
                    {"old": item.parent_id, "new": parent_id},
                    agent_ctx,
                )
            updated = self.repo.require_item(conn, item_id)

        logger.info("Parent of %s set to %s", item_id, parent_id)
        return updated

    # ==========================================================================
    # DELETION
    # ==========================================================================

    def delete_item(self, item_id: str, force: bool = False, cascade_children: bool = False) -> List[str]:
        """Delete an item with its logs, history, edges and label links.

        Items with dependents need ``force``. Items with children need both
        ``force`` and ``cascade_children``, in which case every descendant is
        deleted too. Returns the deleted ids, deepest first.
        """
        with self.db.transaction() as conn:
            self.repo.require_item(conn, item_id)

            dependents = self.repo.count_dependents(conn, item_id)
            if dependents and not force:
                raise GuardViolationError(
                    f"cannot delete {item_id}: {dependents} item(s) depend on it (use force to override)",
                    item_id=item_id,
                    dependents=dependents,
                )

            children = self.repo.child_ids(conn, item_id)
            if children and not (force and cascade_children):
                raise GuardViolationError(
                    f"cannot delete {item_id}: it has {len(children)} child item(s) "
                    "(use force with cascade to delete them too)",
                    item_id=item_id,
                    children=len(children),
                )

            doomed = self.repo.descendant_ids(conn, item_id, get_max_traversal_depth()) + [item_id]
            for doomed_id in doomed:
                self.repo.delete_logs(conn, doomed_id)
                self.repo.delete_history(conn, doomed_id)
                self.repo.delete_edges_for(conn, doomed_id)
                self.repo.delete_item_labels(conn, doomed_id)
                self.repo.delete_item_row(conn, doomed_id)

        logger.info("Deleted %s (%d item(s) removed)", item_id, len(doomed))
        return doomed
