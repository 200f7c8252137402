"""Tests for the dependency graph manager."""

import random

import pytest

from workgraph.exceptions import (
    CycleDetectedError,
    HierarchyConflictError,
    NotFoundError,
    SelfDependencyError,
)
from workgraph.work import EventType, Item, ItemType, Status


def ids(deps):
    return sorted(d.id for d in deps)


class TestAddDependency:
    """Tests for adding dependency edges."""

    def test_add_dependency(self, work_service, make_task):
        t1 = make_task("T1")
        t2 = make_task("T2")

        work_service.add_dependency(t2.id, t1.id)

        assert ids(work_service.get_dependencies(t2.id)) == [t1.id]
        assert ids(work_service.get_blocked_by(t1.id)) == [t2.id]
        assert work_service.has_unmet_dependencies(t2.id) is True

    def test_self_dependency_rejected(self, work_service, make_task):
        t1 = make_task()
        with pytest.raises(SelfDependencyError, match="cannot depend on itself"):
            work_service.add_dependency(t1.id, t1.id)

    def test_self_dependency_checked_before_existence(self, work_service):
        with pytest.raises(SelfDependencyError):
            work_service.add_dependency("ts-000000", "ts-000000")

    def test_missing_item(self, work_service, make_task):
        t1 = make_task()
        with pytest.raises(NotFoundError):
            work_service.add_dependency(t1.id, "ts-ffffff")
        with pytest.raises(NotFoundError):
            work_service.add_dependency("ts-ffffff", t1.id)

    def test_duplicate_is_noop(self, work_service, make_task):
        t1 = make_task("T1")
        t2 = make_task("T2")

        work_service.add_dependency(t2.id, t1.id)
        work_service.add_dependency(t2.id, t1.id)

        assert ids(work_service.get_dependencies(t2.id)) == [t1.id]
        assert len(work_service.get_all_edges()) == 1

    def test_direct_cycle_rejected(self, work_service, make_task):
        a = make_task("A")
        b = make_task("B")
        work_service.add_dependency(a.id, b.id)

        with pytest.raises(CycleDetectedError):
            work_service.add_dependency(b.id, a.id)

    def test_transitive_cycle_rejected(self, work_service, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        work_service.add_dependency(a.id, b.id)
        work_service.add_dependency(b.id, c.id)

        with pytest.raises(CycleDetectedError) as exc_info:
            work_service.add_dependency(c.id, a.id)

        assert exc_info.value.context["item_id"] == c.id
        assert work_service.get_dependencies(c.id) == []

    def test_parent_cannot_depend_on_child(self, work_service, make_epic, make_task):
        epic = make_epic()
        child = make_task(parent_id=epic.id)

        with pytest.raises(HierarchyConflictError, match="is a child of"):
            work_service.add_dependency(epic.id, child.id)

    def test_child_cannot_depend_on_parent(self, work_service, make_epic, make_task):
        epic = make_epic()
        child = make_task(parent_id=epic.id)

        with pytest.raises(HierarchyConflictError, match="is the parent of"):
            work_service.add_dependency(child.id, epic.id)

    def test_task_parent_also_guarded(self, work_service, make_task):
        parent = make_task("Parent task")
        child = make_task("Child task", parent_id=parent.id)

        with pytest.raises(HierarchyConflictError):
            work_service.add_dependency(parent.id, child.id)

    def test_random_additions_never_create_cycle(self, work_service, make_task):
        items = [make_task(f"N{i}").id for i in range(7)]
        rng = random.Random(1234)

        for _ in range(60):
            a, b = rng.choice(items), rng.choice(items)
            try:
                work_service.add_dependency(a, b)
            except (CycleDetectedError, SelfDependencyError):
                pass

        assert work_service.find_circular_deps() == []


class TestAutoRevert:
    """Adding an unmet dependency to in-progress work sends it back to open."""

    def test_in_progress_reverts_to_open(self, work_service, make_task, agent):
        a = make_task("A")
        b = make_task("B")
        work_service.update_status(a.id, Status.IN_PROGRESS, agent_ctx=agent)

        work_service.add_dependency(a.id, b.id)

        reverted = work_service.get_item(a.id)
        assert reverted.status == Status.OPEN
        assert reverted.agent_id is None
        assert reverted.agent_last_active is None
        messages = [entry.message for entry in work_service.get_logs(a.id)]
        assert f"Reverted to open: dependency added on {b.id} (not yet done)" in messages

    def test_done_dependency_does_not_revert(self, work_service, make_task, agent):
        a = make_task("A")
        b = make_task("B")
        work_service.update_status(b.id, Status.DONE)
        work_service.update_status(a.id, Status.IN_PROGRESS, agent_ctx=agent)

        work_service.add_dependency(a.id, b.id)

        item = work_service.get_item(a.id)
        assert item.status == Status.IN_PROGRESS
        assert item.agent_id == "agent-1"
        assert work_service.get_logs(a.id) == []

    def test_blocked_item_untouched(self, work_service, make_task):
        a = make_task("A")
        b = make_task("B")
        work_service.update_status(a.id, Status.BLOCKED)

        work_service.add_dependency(a.id, b.id)

        assert work_service.get_item(a.id).status == Status.BLOCKED


class TestRemoveDependency:

    def test_remove(self, work_service, make_task):
        a, b = make_task("A"), make_task("B")
        work_service.add_dependency(a.id, b.id)

        work_service.remove_dependency(a.id, b.id)

        assert work_service.get_dependencies(a.id) == []
        assert work_service.has_unmet_dependencies(a.id) is False

    def test_remove_missing_edge(self, work_service, make_task):
        a, b = make_task("A"), make_task("B")
        with pytest.raises(NotFoundError, match="dependency not found"):
            work_service.remove_dependency(a.id, b.id)


class TestDependencyHistory:

    def test_add_and_remove_recorded(self, work_service, make_task, agent):
        a, b = make_task("A"), make_task("B")

        work_service.add_dependency(a.id, b.id, agent)
        work_service.remove_dependency(a.id, b.id, agent)

        events = [(e.event_type, e.changes, e.actor_id) for e in work_service.get_item_history(a.id)]
        assert events[:2] == [
            (EventType.DEPENDENCY_REMOVED.value, {"depends_on": b.id}, agent.id),
            (EventType.DEPENDENCY_ADDED.value, {"depends_on": b.id}, agent.id),
        ]

    def test_duplicate_not_recorded(self, work_service, make_task):
        a, b = make_task("A"), make_task("B")

        work_service.add_dependency(a.id, b.id)
        work_service.add_dependency(a.id, b.id)

        added = work_service.get_history(item_id=a.id, event_types=[EventType.DEPENDENCY_ADDED])
        assert len(added) == 1

    def test_revert_recorded(self, work_service, make_task, agent):
        a, b = make_task("A"), make_task("B")
        work_service.update_status(a.id, Status.IN_PROGRESS, agent)

        work_service.add_dependency(a.id, b.id)

        reverted = work_service.get_history(item_id=a.id, event_types=["status_changed"])[0]
        assert reverted.changes == {"old": "in_progress", "new": "open", "reason": "dependency_added"}


class TestUnmetAndInherited:
    """Tests for readiness and ancestor-epic dependencies."""

    def test_unmet_clears_when_dependency_done(self, work_service, make_task):
        t1, t2 = make_task("T1"), make_task("T2")
        work_service.add_dependency(t2.id, t1.id)

        work_service.update_status(t1.id, Status.DONE, force=True)

        assert work_service.has_unmet_dependencies(t2.id) is False

    def test_ancestor_epic_dependencies(self, work_service, make_epic, make_task):
        blocker = make_task("Blocker")
        outer = make_epic("Outer")
        inner = make_epic("Inner", parent_id=outer.id)
        task = make_task("Leaf", parent_id=inner.id)
        work_service.add_dependency(outer.id, blocker.id)

        inherited = work_service.get_ancestor_dependencies(task.id)

        assert len(inherited) == 1
        assert inherited[0].id == blocker.id
        assert inherited[0].is_inherited is True
        assert inherited[0].inherited_from == outer.id
        assert work_service.has_unmet_dependencies(task.id) is False

    def test_ancestor_done_dependencies_ignored(self, work_service, make_epic, make_task):
        blocker = make_task("Blocker")
        epic = make_epic()
        task = make_task(parent_id=epic.id)
        work_service.add_dependency(epic.id, blocker.id)
        work_service.update_status(blocker.id, Status.DONE, force=True)

        assert work_service.get_ancestor_dependencies(task.id) == []

    def test_task_ancestors_not_inherited(self, work_service, make_task):
        blocker = make_task("Blocker")
        parent = make_task("Parent task")
        child = make_task("Child", parent_id=parent.id)
        work_service.add_dependency(parent.id, blocker.id)

        assert work_service.get_ancestor_dependencies(child.id) == []

    def test_all_dependencies_combines_direct_and_inherited(self, work_service, make_epic, make_task):
        direct = make_task("Direct")
        inherited = make_task("Inherited")
        epic = make_epic()
        task = make_task(parent_id=epic.id)
        work_service.add_dependency(task.id, direct.id)
        work_service.add_dependency(epic.id, inherited.id)

        deps = work_service.get_all_dependencies(task.id)

        assert [(d.id, d.is_inherited) for d in deps] == [(direct.id, False), (inherited.id, True)]

    def test_ready_items(self, work_service, make_epic, make_task):
        blocker = make_task("Blocker", priority=3)
        epic = make_epic("Epic", priority=1)
        child = make_task("Child", parent_id=epic.id, priority=1)
        free = make_task("Free", priority=1)
        work_service.add_dependency(epic.id, blocker.id)

        ready = [item.id for item in work_service.get_ready_items("test")]

        assert ready == [free.id, blocker.id]
        assert child.id not in ready

        work_service.update_status(blocker.id, Status.DONE, force=True)
        ready = [item.id for item in work_service.get_ready_items("test")]
        assert epic.id in ready
        assert child.id in ready

    def test_missing_item_raises(self, work_service):
        with pytest.raises(NotFoundError):
            work_service.has_unmet_dependencies("ts-ffffff")
        with pytest.raises(NotFoundError):
            work_service.get_ancestor_dependencies("ts-ffffff")
        with pytest.raises(NotFoundError):
            work_service.get_all_dependencies("ts-ffffff")

    def test_ready_items_reads_depth_once(self, work_service, make_epic, make_task, monkeypatch):
        epic = make_epic()
        for i in range(3):
            make_task(f"T{i}", parent_id=epic.id)
        calls = []

        def counting_depth():
            calls.append(1)
            return 10

        monkeypatch.setattr("workgraph.work.graph.get_max_traversal_depth", counting_depth)

        assert len(work_service.get_ready_items("test")) == 4
        assert len(calls) == 1


class TestImpact:
    """Tests for impact analysis."""

    def test_ripple_depths(self, work_service, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        work_service.add_dependency(b.id, a.id)
        work_service.add_dependency(c.id, b.id)

        impact = work_service.get_impact(a.id)

        assert [(i.id, i.depth) for i in impact] == [(b.id, 1), (c.id, 2)]

    def test_unrelated_blocker_excludes_item(self, work_service, make_task):
        a, b, c, d = make_task("A"), make_task("B"), make_task("C"), make_task("D")
        work_service.add_dependency(b.id, a.id)
        work_service.add_dependency(c.id, b.id)
        work_service.add_dependency(c.id, d.id)

        impact = work_service.get_impact(a.id)

        assert [i.id for i in impact] == [b.id]

    def test_done_dependencies_do_not_block(self, work_service, make_task):
        a, b, other = make_task("A"), make_task("B"), make_task("Other")
        work_service.add_dependency(b.id, a.id)
        work_service.add_dependency(b.id, other.id)
        work_service.update_status(other.id, Status.DONE, force=True)

        assert [i.id for i in work_service.get_impact(a.id)] == [b.id]

    def test_ordered_by_depth_then_priority(self, work_service, make_task):
        a = make_task("A")
        low = make_task("Low", priority=3)
        high = make_task("High", priority=1)
        work_service.add_dependency(low.id, a.id)
        work_service.add_dependency(high.id, a.id)

        impact = work_service.get_impact(a.id)

        assert [i.id for i in impact] == [high.id, low.id]
        assert all(i.depth == 1 for i in impact)

    def test_non_open_dependents_not_reported(self, work_service, make_task):
        a, b = make_task("A"), make_task("B")
        work_service.add_dependency(b.id, a.id)
        work_service.update_status(b.id, Status.BLOCKED)

        assert work_service.get_impact(a.id) == []

    def test_missing_item(self, work_service):
        with pytest.raises(NotFoundError):
            work_service.get_impact("ts-ffffff")

    def test_depth_ceiling(self, work_service, make_task, monkeypatch):
        chain = [make_task(f"N{i}") for i in range(4)]
        for upstream, downstream in zip(chain, chain[1:]):
            work_service.add_dependency(downstream.id, upstream.id)
        monkeypatch.setenv("WORKGRAPH_MAX_DEPTH", "2")

        impact = work_service.get_impact(chain[0].id)

        assert [i.id for i in impact] == [chain[1].id, chain[2].id]


class TestChains:

    def test_dependency_chain(self, work_service, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        work_service.add_dependency(a.id, b.id)
        work_service.add_dependency(b.id, c.id)

        chain = work_service.get_dependency_chain(a.id)

        assert [(e.item_id, e.depends_on_id, e.depth) for e in chain] == [
            (a.id, b.id, 1),
            (b.id, c.id, 2),
        ]

    def test_reverse_dependency_chain(self, work_service, make_task):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        work_service.add_dependency(a.id, b.id)
        work_service.add_dependency(b.id, c.id)

        chain = work_service.get_reverse_dependency_chain(c.id)

        assert [(e.item_id, e.depends_on_id, e.depth) for e in chain] == [
            (b.id, c.id, 1),
            (a.id, b.id, 2),
        ]

    def test_all_edges_by_project(self, work_service, make_task):
        a, b = make_task("A"), make_task("B")
        x = make_task("X", project="other")
        y = make_task("Y", project="other")
        work_service.add_dependency(a.id, b.id)
        work_service.add_dependency(x.id, y.id)

        edges = work_service.get_all_edges("test")

        assert [(e.item_id, e.depends_on_id) for e in edges] == [(a.id, b.id)]
        assert edges[0].item_title == "A"
        assert edges[0].depends_on_status == Status.OPEN


class TestAuditUtilities:
    """Tests for the repair utilities used by `workgraph doctor`."""

    def test_no_cycles_in_clean_graph(self, work_service, make_task):
        a, b = make_task("A"), make_task("B")
        work_service.add_dependency(a.id, b.id)

        assert work_service.find_circular_deps() == []

    def test_finds_corrupted_cycle_once(self, work_service, make_task, insert_raw_edge):
        a, b, c = make_task("A"), make_task("B"), make_task("C")
        insert_raw_edge(a.id, b.id)
        insert_raw_edge(b.id, c.id)
        insert_raw_edge(c.id, a.id)

        cycles = work_service.find_circular_deps()

        assert len(cycles) == 1
        cycle = cycles[0]
        assert cycle.cycle_path[0] == cycle.cycle_path[-1]
        assert sorted(cycle.cycle_path[:-1]) == sorted([a.id, b.id, c.id])
        assert cycle.item_id == cycle.cycle_path[0]
        assert cycle.depends_on_id == cycle.cycle_path[-2]

    def test_parent_child_conflicts(self, work_service, make_epic, make_task, insert_raw_edge):
        epic = make_epic()
        child = make_task(parent_id=epic.id)
        other_child = make_task(parent_id=epic.id)
        insert_raw_edge(epic.id, child.id)
        insert_raw_edge(other_child.id, epic.id)

        conflicts = work_service.find_parent_child_circular_deps()

        assert sorted((c.item_id, c.depends_on) for c in conflicts) == sorted([
            (epic.id, child.id),
            (other_child.id, epic.id),
        ])

    def test_fix_all_parent_child_conflicts(self, work_service, make_epic, make_task, insert_raw_edge):
        epic = make_epic()
        child = make_task(parent_id=epic.id)
        unrelated = make_task("Unrelated")
        insert_raw_edge(epic.id, child.id)
        work_service.add_dependency(child.id, unrelated.id)

        assert work_service.fix_all_parent_child_circular_deps() == 1
        assert work_service.find_parent_child_circular_deps() == []
        assert ids(work_service.get_dependencies(child.id)) == [unrelated.id]

    def test_remove_circular_dep(self, work_service, make_task, insert_raw_edge):
        a, b = make_task("A"), make_task("B")
        insert_raw_edge(a.id, b.id)
        insert_raw_edge(b.id, a.id)

        assert work_service.remove_circular_dep(b.id, a.id) is True
        assert work_service.remove_circular_dep(b.id, a.id) is False
        assert work_service.find_circular_deps() == []

    def test_long_chain_scanned_without_recursion(self, work_service):
        length = 1500
        chain = [f"ts-{i:06d}" for i in range(length)]
        with work_service.db.transaction() as conn:
            for item_id in chain:
                work_service.repo.insert_item(
                    conn, Item(id=item_id, project="test", type=ItemType.TASK, title=item_id)
                )
            for item_id, depends_on in zip(chain, chain[1:]):
                work_service.repo.insert_edge(conn, item_id, depends_on)

        assert work_service.find_circular_deps() == []

    def test_long_cycle_found(self, work_service, insert_raw_edge):
        length = 1500
        chain = [f"ts-{i:06d}" for i in range(length)]
        with work_service.db.transaction() as conn:
            for item_id in chain:
                work_service.repo.insert_item(
                    conn, Item(id=item_id, project="test", type=ItemType.TASK, title=item_id)
                )
            for item_id, depends_on in zip(chain, chain[1:]):
                work_service.repo.insert_edge(conn, item_id, depends_on)
        insert_raw_edge(chain[-1], chain[0])

        cycles = work_service.find_circular_deps()

        assert len(cycles) == 1
        assert len(cycles[0].cycle_path) == length + 1

    def test_repairs_recorded_in_history(self, work_service, make_task, insert_raw_edge):
        a, b = make_task("A"), make_task("B")
        insert_raw_edge(a.id, b.id)
        insert_raw_edge(b.id, a.id)

        work_service.remove_circular_dep(b.id, a.id)

        latest = work_service.get_item_history(b.id)[0]
        assert latest.event_type == EventType.DEPENDENCY_REMOVED.value
        assert latest.changes == {"depends_on": a.id, "reason": "repair"}
