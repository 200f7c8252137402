"""
Dependency Graph Manager.

Owns dependency-edge CRUD, cycle prevention, inherited (ancestor epic)
dependencies, readiness and impact computation, plus the audit utilities
used by ``workgraph doctor`` to repair corrupted edge data.

Edges read "item_id depends on depends_on". Transitive walks load adjacency
on demand and are bounded by the configured traversal ceiling.
"""

import logging
import sqlite3
from collections import deque
from typing import Dict, Iterator, List, Optional, Set, Tuple

from ..config.constants import REVERT_LOG_MESSAGE
from ..config.settings import get_max_traversal_depth
from ..database.connection import DatabaseConnection
from ..exceptions import (
    CycleDetectedError,
    HierarchyConflictError,
    NotFoundError,
    SelfDependencyError,
)
from .models import (
    AgentContext,
    CircularDep,
    DepEdge,
    DepStatus,
    EventType,
    ImpactItem,
    Item,
    ItemType,
    ParentChildDep,
    Status,
)
from .repository import ItemRepository

logger = logging.getLogger(__name__)


def would_create_cycle(repo: ItemRepository, conn: sqlite3.Connection, item_id: str, depends_on: str) -> bool:
    """Check if adding ``item_id -> depends_on`` would close a cycle.

    Searches from ``depends_on`` over existing "depends on" edges and stops
    the moment ``item_id`` is reached.
    """
    visited: Set[str] = set()
    queue = deque([depends_on])
    while queue:
        current = queue.popleft()
        if current == item_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        queue.extend(repo.dependency_ids(conn, current))
    return False


def _normalize_cycle(cycle: List[str]) -> Tuple[str, ...]:
    """Rotation-independent key for a cycle path (first node repeated last)."""
    path = cycle[:-1]
    if not path:
        return tuple(cycle)
    return min(tuple(path[i:] + path[:i]) for i in range(len(path)))


class DependencyGraph:
    """Dependency-edge operations over the item store."""

    def __init__(self, db: DatabaseConnection, repo: Optional[ItemRepository] = None):
        self.db = db
        self.repo = repo or ItemRepository()

    # ==========================================================================
    # EDGE MUTATION
    # ==========================================================================

    def add_dependency(self, item_id: str, depends_on: str, agent_ctx: Optional[AgentContext] = None) -> None:
        """Record that ``item_id`` depends on ``depends_on``.

        Adding an existing edge is a no-op. If ``item_id`` is in progress and
        the new dependency is not done, the item drops back to open and loses
        its agent claim.

        Raises:
            SelfDependencyError: ``item_id == depends_on``.
            NotFoundError: either item is missing.
            HierarchyConflictError: the two items are parent and child.
            CycleDetectedError: ``depends_on`` already reaches ``item_id``.
        """
        if item_id == depends_on:
            raise SelfDependencyError(item_id)

        with self.db.transaction() as conn:
            item = self.repo.require_item(conn, item_id)
            dep = self.repo.require_item(conn, depends_on)

            if item.parent_id == depends_on:
                raise HierarchyConflictError(
                    f"cannot create dependency: {depends_on} is the parent of {item_id}. "
                    "Parent-child relationships should not have dependencies",
                    parent_id=depends_on,
                    child_id=item_id,
                )
            if dep.parent_id == item_id:
                raise HierarchyConflictError(
                    f"cannot create dependency: {depends_on} is a child of {item_id}. "
                    "Parent-child relationships should not have dependencies",
                    parent_id=item_id,
                    child_id=depends_on,
                )

            if would_create_cycle(self.repo, conn, item_id, depends_on):
                raise CycleDetectedError(
                    f"cannot add dependency: would create cycle ({depends_on} already depends on {item_id})",
                    item_id=item_id,
                    depends_on=depends_on,
                )

            if self.repo.insert_edge(conn, item_id, depends_on):
                self.repo.record_history(
                    conn, item_id, EventType.DEPENDENCY_ADDED, {"depends_on": depends_on}, agent_ctx
                )
                logger.info("Added dependency %s -> %s", item_id, depends_on)

            if item.status == Status.IN_PROGRESS and dep.status != Status.DONE:
                self.repo.update_item(
                    conn, item_id,
                    status=Status.OPEN,
                    agent_id=None,
                    agent_last_active=None,
                )
                self.repo.record_history(
                    conn, item_id, EventType.STATUS_CHANGED,
                    {"old": Status.IN_PROGRESS.value, "new": Status.OPEN.value, "reason": "dependency_added"},
                    agent_ctx,
                )
                self.repo.add_log(conn, item_id, REVERT_LOG_MESSAGE.format(depends_on=depends_on))
                logger.info("Reverted %s to open: new dependency %s is %s", item_id, depends_on, dep.status.value)

    def remove_dependency(self, item_id: str, depends_on: str, agent_ctx: Optional[AgentContext] = None) -> None:
        """Delete an edge. Raises NotFoundError if it does not exist."""
        with self.db.transaction() as conn:
            if self.repo.delete_edge(conn, item_id, depends_on) == 0:
                raise NotFoundError(
                    f"dependency not found: {item_id} does not depend on {depends_on}",
                    item_id=item_id,
                    depends_on=depends_on,
                )
            self.repo.record_history(
                conn, item_id, EventType.DEPENDENCY_REMOVED, {"depends_on": depends_on}, agent_ctx
            )
        logger.info("Removed dependency %s -> %s", item_id, depends_on)

    # ==========================================================================
    # DIRECT QUERIES
    # ==========================================================================

    def get_dependencies(self, item_id: str) -> List[DepStatus]:
        """Items that ``item_id`` depends on."""
        with self.db.get_connection() as conn:
            self.repo.require_item(conn, item_id)
            return self.repo.dependencies_with_status(conn, item_id)

    def get_blocked_by(self, item_id: str) -> List[DepStatus]:
        """Items that depend on ``item_id``."""
        with self.db.get_connection() as conn:
            self.repo.require_item(conn, item_id)
            return self.repo.dependents_with_status(conn, item_id)

    def has_unmet_dependencies(self, item_id: str) -> bool:
        """True if any direct dependency is not done."""
        with self.db.get_connection() as conn:
            self.repo.require_item(conn, item_id)
            return bool(self.repo.unmet_dependency_ids(conn, item_id))

    def get_ancestor_dependencies(self, item_id: str) -> List[DepStatus]:
        """Unmet direct dependencies of every ancestor epic, root first."""
        max_depth = get_max_traversal_depth()
        with self.db.get_connection() as conn:
            self.repo.require_item(conn, item_id)
            return self._ancestor_dependencies(conn, item_id, max_depth)

    def _ancestor_dependencies(self, conn: sqlite3.Connection, item_id: str, max_depth: int) -> List[DepStatus]:
        ancestors = self.repo.get_ancestors(conn, item_id, max_depth)
        inherited: List[DepStatus] = []
        for ancestor in reversed(ancestors):
            if ancestor.type != ItemType.EPIC:
                continue
            for dep in self.repo.dependencies_with_status(conn, ancestor.id):
                if dep.status == Status.DONE:
                    continue
                dep.is_inherited = True
                dep.inherited_from = ancestor.id
                inherited.append(dep)
        return inherited

    def get_all_dependencies(self, item_id: str) -> List[DepStatus]:
        """Direct dependencies followed by those inherited from ancestor epics."""
        max_depth = get_max_traversal_depth()
        with self.db.get_connection() as conn:
            self.repo.require_item(conn, item_id)
            direct = self.repo.dependencies_with_status(conn, item_id)
            return direct + self._ancestor_dependencies(conn, item_id, max_depth)

    def get_ready_items(self, project: Optional[str] = None) -> List[Item]:
        """Open items with no unmet direct or inherited dependency.

        Ordered by priority, then creation time.
        """
        max_depth = get_max_traversal_depth()
        with self.db.get_connection() as conn:
            candidates = self.repo.list_items(conn, project=project, status=Status.OPEN, limit=None)
            return [
                item for item in candidates
                if not self.repo.unmet_dependency_ids(conn, item.id)
                and not self._ancestor_dependencies(conn, item.id, max_depth)
            ]

    # ==========================================================================
    # TRANSITIVE QUERIES
    # ==========================================================================

    def get_impact(self, item_id: str) -> List[ImpactItem]:
        """Open items that would become ready if ``item_id`` were completed now.

        1. Walk "depends on me" edges from ``item_id`` through open items only,
           recording each item's shallowest ripple depth.
        2. Keep an item only if every dependency that is not done is either
           ``item_id`` or another member of that downstream set.
        3. Order by depth, then priority, then creation time.
        """
        max_depth = get_max_traversal_depth()
        with self.db.get_connection() as conn:
            self.repo.require_item(conn, item_id)

            depths: Dict[str, int] = {}
            frontier = [item_id]
            depth = 0
            while frontier and depth < max_depth:
                depth += 1
                dependents: List[str] = []
                for current in frontier:
                    dependents.extend(self.repo.dependent_ids(conn, current))
                next_frontier = []
                for dependent in sorted(self.repo.open_item_ids(conn, dependents)):
                    if dependent in depths or dependent == item_id:
                        continue
                    depths[dependent] = depth
                    next_frontier.append(dependent)
                frontier = next_frontier

            resolved = set(depths) | {item_id}
            impacted: List[Tuple[Item, int]] = []
            for candidate_id, candidate_depth in depths.items():
                deps = self.repo.dependencies_with_status(conn, candidate_id)
                unmet = [d.id for d in deps if d.status != Status.DONE]
                if not unmet:
                    continue
                if any(dep_id not in resolved for dep_id in unmet):
                    continue
                if not any(d.id in resolved for d in deps):
                    continue
                impacted.append((self.repo.require_item(conn, candidate_id), candidate_depth))

        impacted.sort(key=lambda pair: (pair[1], pair[0].priority, pair[0].created_at))
        return [
            ImpactItem(id=item.id, title=item.title, priority=item.priority, depth=depth)
            for item, depth in impacted
        ]

    def get_dependency_chain(self, item_id: str) -> List[DepEdge]:
        """Every edge reachable by following "depends on" from ``item_id``."""
        return self._walk_chain(item_id, reverse=False)

    def get_reverse_dependency_chain(self, item_id: str) -> List[DepEdge]:
        """Every edge reachable by following "depended on by" from ``item_id``."""
        return self._walk_chain(item_id, reverse=True)

    def _walk_chain(self, item_id: str, reverse: bool) -> List[DepEdge]:
        max_depth = get_max_traversal_depth()
        with self.db.get_connection() as conn:
            edges = self.repo.all_edges(conn)

        outgoing: Dict[str, List[DepEdge]] = {}
        for edge in edges:
            key = edge.depends_on_id if reverse else edge.item_id
            outgoing.setdefault(key, []).append(edge)

        chain: List[DepEdge] = []
        seen: Set[Tuple[str, str]] = set()
        frontier = [item_id]
        depth = 0
        while frontier and depth < max_depth:
            depth += 1
            next_frontier = []
            for node in frontier:
                for edge in outgoing.get(node, []):
                    key = (edge.item_id, edge.depends_on_id)
                    if key in seen:
                        continue
                    seen.add(key)
                    edge.depth = depth
                    chain.append(edge)
                    next_frontier.append(edge.item_id if reverse else edge.depends_on_id)
            frontier = next_frontier
        return chain

    def get_all_edges(self, project: Optional[str] = None) -> List[DepEdge]:
        with self.db.get_connection() as conn:
            return self.repo.all_edges(conn, project)

    # ==========================================================================
    # AUDIT & REPAIR
    # ==========================================================================

    def find_circular_deps(self) -> List[CircularDep]:
        """Scan the whole edge set for dependency cycles.

        Each distinct cycle is reported once, regardless of which of its
        members the search entered from.
        """
        with self.db.get_connection() as conn:
            graph = self.repo.adjacency(conn)

        nodes = sorted(set(graph) | {dep for deps in graph.values() for dep in deps})
        state: Dict[str, int] = {}
        stack: List[str] = []
        index_by_id: Dict[str, int] = {}
        seen: Set[Tuple[str, ...]] = set()
        found: List[CircularDep] = []
        # Iterative DFS: chains may be longer than the recursion limit
        frames: List[Tuple[str, Iterator[str]]] = []

        def enter(node: str) -> None:
            state[node] = 1
            index_by_id[node] = len(stack)
            stack.append(node)
            frames.append((node, iter(graph.get(node, []))))

        for root in nodes:
            if state.get(root, 0) != 0:
                continue
            enter(root)
            while frames:
                node, neighbors = frames[-1]
                descended = False
                for nxt in neighbors:
                    nxt_state = state.get(nxt, 0)
                    if nxt_state == 0:
                        enter(nxt)
                        descended = True
                        break
                    if nxt_state != 1:
                        continue
                    cycle = stack[index_by_id[nxt]:] + [nxt]
                    key = _normalize_cycle(cycle)
                    if key in seen:
                        continue
                    seen.add(key)
                    found.append(CircularDep(item_id=cycle[0], depends_on_id=cycle[-2], cycle_path=cycle))
                if descended:
                    continue
                frames.pop()
                stack.pop()
                index_by_id.pop(node, None)
                state[node] = 2

        if found:
            logger.warning("Found %d dependency cycle(s)", len(found))
        return found

    def find_parent_child_circular_deps(self) -> List[ParentChildDep]:
        """Edges that coincide with a parent/child pair, in either direction."""
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT d.item_id, d.depends_on
                FROM deps d
                JOIN items child ON child.id = d.depends_on
                WHERE child.parent_id = d.item_id

                UNION

                SELECT d.item_id, d.depends_on
                FROM deps d
                JOIN items item ON item.id = d.item_id
                WHERE item.parent_id = d.depends_on

                ORDER BY 1, 2
                """
            )
            return [ParentChildDep(item_id=row[0], depends_on=row[1]) for row in cursor.fetchall()]

    def remove_circular_dep(self, item_id: str, depends_on: str) -> bool:
        """Delete one offending edge; returns False if it was already gone."""
        with self.db.transaction() as conn:
            removed = self.repo.delete_edge(conn, item_id, depends_on) > 0
            if removed:
                self._record_repair(conn, item_id, depends_on)
        if removed:
            logger.info("Removed circular dependency %s -> %s", item_id, depends_on)
        return removed

    def fix_all_parent_child_circular_deps(self) -> int:
        """Delete every parent/child-conflicting edge. Returns how many were removed."""
        conflicts = self.find_parent_child_circular_deps()
        fixed = 0
        with self.db.transaction() as conn:
            for conflict in conflicts:
                if self.repo.delete_edge(conn, conflict.item_id, conflict.depends_on):
                    self._record_repair(conn, conflict.item_id, conflict.depends_on)
                    fixed += 1
        logger.info("Removed %d parent-child dependency conflict(s)", fixed)
        return fixed

    def _record_repair(self, conn: sqlite3.Connection, item_id: str, depends_on: str) -> None:
        self.repo.record_history(
            conn, item_id, EventType.DEPENDENCY_REMOVED, {"depends_on": depends_on, "reason": "repair"}
        )
