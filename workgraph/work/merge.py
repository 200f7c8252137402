"""
Merge Engine.

Folds a source item into a target item: dependencies in both directions,
audit logs, history, labels, description and children all move to the target, then
the source row is deleted. The whole merge runs in one transaction.
"""

import logging
import sqlite3
from collections import deque
from typing import Iterable, List, Optional, Set

from ..config.constants import MERGE_DESCRIPTION_SEPARATOR, MERGE_LOG_MESSAGE
from ..config.settings import get_max_traversal_depth
from ..database.connection import DatabaseConnection
from ..exceptions import CycleDetectedError, GuardViolationError, HierarchyConflictError, ValidationError
from .models import AgentContext, EventType, Item
from .repository import ItemRepository

logger = logging.getLogger(__name__)


class MergeEngine:
    """Combines two items' graph membership into one."""

    def __init__(self, db: DatabaseConnection, repo: Optional[ItemRepository] = None):
        self.db = db
        self.repo = repo or ItemRepository()

    def merge_items(self, source_id: str, target_id: str, agent_ctx: Optional[AgentContext] = None) -> Item:
        """Merge ``source_id`` into ``target_id`` and return the updated target.

        The source's history moves to the target along with its logs, and a
        ``merged`` event is recorded on the target.

        Besides distinctness and the cycle guard, the merge is also refused when
        the target is a descendant of the source, or when it would leave a
        dependency edge between a parent and its child.

        Raises:
            NotFoundError: either item is missing.
            ValidationError: source and target are the same item.
            CycleDetectedError: the target would end up depending on itself.
            HierarchyConflictError: the target is a descendant of the source,
                or the merge would leave a dependency between the target and
                its parent or one of its children.
            GuardViolationError: the target is closed and would gain children.
        """
        if source_id == target_id:
            raise ValidationError("cannot merge an item into itself", item_id=source_id)

        with self.db.transaction() as conn:
            source = self.repo.require_item(conn, source_id)
            target = self.repo.require_item(conn, target_id)

            src_deps = self.repo.dependency_ids(conn, source_id)
            src_dependents = self.repo.dependent_ids(conn, source_id)
            tgt_deps = self.repo.dependency_ids(conn, target_id)

            self._check_cycles(conn, source_id, target_id, src_deps, src_dependents, tgt_deps)
            src_children = self._check_hierarchy(conn, source, target, src_deps, src_dependents, tgt_deps)

            # Redirect edges both ways, dropping any that would point at the target itself
            for dep_id in src_deps:
                if dep_id != target_id:
                    self.repo.insert_edge(conn, target_id, dep_id)
            for dependent_id in src_dependents:
                if dependent_id != target_id:
                    self.repo.insert_edge(conn, dependent_id, target_id)
            self.repo.delete_edges_for(conn, source_id)

            for child_id in src_children:
                self.repo.record_history(
                    conn, child_id, EventType.PARENT_CHANGED,
                    {"old": source_id, "new": target_id, "reason": "merged"},
                    agent_ctx,
                )
            if src_children:
                self.repo.reparent_children(conn, source_id, target_id)

            self.repo.move_logs(conn, source_id, target_id)
            self.repo.move_history(conn, source_id, target_id)
            self.repo.record_history(
                conn, target_id, EventType.MERGED,
                {"source": source_id, "title": source.title},
                agent_ctx,
            )
            self.repo.add_log(conn, target_id, MERGE_LOG_MESSAGE.format(source_id=source_id, title=source.title))

            self.repo.copy_item_labels(conn, source_id, target_id)
            self.repo.delete_item_labels(conn, source_id)

            if source.description:
                separator = ""
                if target.description:
                    separator = MERGE_DESCRIPTION_SEPARATOR.format(source_id=source_id)
                self.repo.update_item(
                    conn, target_id,
                    description=target.description + separator + source.description,
                )

            self.repo.delete_item_row(conn, source_id)
            merged = self.repo.require_item(conn, target_id)

        logger.info(
            "Merged %s into %s (%d dep(s), %d dependent(s), %d child(ren) moved)",
            source_id, target_id, len(src_deps), len(src_dependents), len(src_children),
        )
        return merged

    def _check_cycles(
        self,
        conn: sqlite3.Connection,
        source_id: str,
        target_id: str,
        src_deps: Iterable[str],
        src_dependents: Iterable[str],
        tgt_deps: Iterable[str],
    ) -> None:
        src_deps = list(src_deps)
        if target_id in src_deps:
            raise CycleDetectedError(
                f"cycle: source {source_id} depends on target {target_id}, merging would create a self-dependency",
                source_id=source_id,
                target_id=target_id,
            )
        if target_id in src_dependents:
            raise CycleDetectedError(
                f"cycle: target {target_id} depends on source {source_id}, merging would create a self-dependency",
                source_id=source_id,
                target_id=target_id,
            )

        # After the merge the source is the target, so reaching either one
        # from the proposed dependency set means the target depends on itself.
        proposed = set(tgt_deps) | {d for d in src_deps if d != target_id}
        aliases = {source_id, target_id}
        visited: Set[str] = set()
        queue = deque(proposed)
        while queue:
            current = queue.popleft()
            if current in aliases:
                raise CycleDetectedError(
                    f"cycle: merging would create a transitive self-dependency on {target_id}",
                    source_id=source_id,
                    target_id=target_id,
                )
            if current in visited:
                continue
            visited.add(current)
            queue.extend(self.repo.dependency_ids(conn, current))

    def _check_hierarchy(
        self,
        conn: sqlite3.Connection,
        source: Item,
        target: Item,
        src_deps: Iterable[str],
        src_dependents: Iterable[str],
        tgt_deps: Iterable[str],
    ) -> List[str]:
        """Validate the post-merge hierarchy; returns the source's children."""
        ancestors = self.repo.get_ancestors(conn, target.id, get_max_traversal_depth())
        if any(a.id == source.id for a in ancestors):
            raise HierarchyConflictError(
                f"cannot merge {source.id} into its descendant {target.id}",
                parent_id=source.id,
                child_id=target.id,
            )

        src_children = self.repo.child_ids(conn, source.id)
        if src_children and target.is_closed:
            raise GuardViolationError(
                "cannot add child to closed parent",
                item_id=target.id,
                status=target.status.value,
            )

        merged_ids = {source.id, target.id}
        related = (
            set(tgt_deps) | set(src_deps)
            | set(self.repo.dependent_ids(conn, target.id)) | set(src_dependents)
        ) - merged_ids
        family = set(self.repo.child_ids(conn, target.id)) | set(src_children)
        if target.parent_id:
            family.add(target.parent_id)
        family -= merged_ids

        conflicts = sorted(related & family)
        if conflicts:
            raise HierarchyConflictError(
                f"cannot merge {source.id} into {target.id}: "
                f"would leave a dependency between {target.id} and its parent or child {conflicts[0]}",
                parent_id=target.id,
                child_id=conflicts[0],
            )
        return src_children
