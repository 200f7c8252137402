"""Tests for work graph data models."""

import logging
import re
from datetime import timezone

import pytest

from workgraph.exceptions import ValidationError
from workgraph.work.models import (
    AgentContext,
    DepStatus,
    EventType,
    HistoryEntry,
    Item,
    ItemType,
    Status,
    generate_item_id,
)


class TestEnums:

    def test_status_parse(self):
        assert Status.parse("in_progress") is Status.IN_PROGRESS
        assert Status.parse(Status.DONE) is Status.DONE

    def test_status_parse_invalid(self):
        with pytest.raises(ValidationError, match="invalid status"):
            Status.parse("finished")

    def test_type_parse_invalid(self):
        with pytest.raises(ValidationError, match="invalid type"):
            ItemType.parse("story")

    def test_closed_statuses(self):
        assert Status.DONE.is_closed
        assert Status.CANCELED.is_closed
        assert not Status.BLOCKED.is_closed

    def test_release_statuses(self):
        released = {s for s in Status if s.releases_claim}
        assert released == {Status.DONE, Status.BLOCKED, Status.CANCELED}

    @pytest.mark.parametrize("old,new,expected", [
        (Status.OPEN, Status.DONE, EventType.COMPLETED),
        (Status.IN_PROGRESS, Status.CANCELED, EventType.CANCELED),
        (Status.DONE, Status.OPEN, EventType.REOPENED),
        (Status.CANCELED, Status.IN_PROGRESS, EventType.REOPENED),
        (Status.DONE, Status.CANCELED, EventType.CANCELED),
        (Status.OPEN, Status.BLOCKED, EventType.STATUS_CHANGED),
    ])
    def test_event_for_transition(self, old, new, expected):
        assert EventType.for_transition(old, new) is expected


class TestGenerateItemId:

    def test_task_and_epic_prefixes(self):
        assert re.fullmatch(r"ts-[0-9a-f]{6}", generate_item_id(ItemType.TASK))
        assert re.fullmatch(r"ep-[0-9a-f]{6}", generate_item_id("epic"))

    def test_custom_prefix_and_odd_length(self):
        assert re.fullmatch(r"wk-[0-9a-f]{5}", generate_item_id("task", prefix="wk-", length=5))

    def test_ids_vary(self):
        assert len({generate_item_id("task") for _ in range(50)}) > 1


class TestItemFromRow:

    def test_from_row(self):
        row = {
            "id": "ep-abc123",
            "project": "test",
            "type": "epic",
            "title": "Epic",
            "description": None,
            "status": "in_progress",
            "priority": 1,
            "parent_id": None,
            "agent_id": "agent-1",
            "agent_last_active": "2024-01-01T12:00:00",
            "results": "",
            "shared_context": "Use the v2 API",
            "closing_instructions": "",
            "worktree_branch": None,
            "worktree_base": None,
            "created_at": "2024-01-01T12:00:00+00:00",
            "updated_at": "2024-01-01 12:30:00",
            "closed_at": None,
        }

        item = Item.from_row(row)

        assert item.type is ItemType.EPIC
        assert item.status is Status.IN_PROGRESS
        assert item.description == ""
        assert item.is_epic
        assert not item.is_closed
        assert item.priority_label == "P1-HIGH"
        assert item.agent_last_active.tzinfo == timezone.utc
        assert item.updated_at.minute == 30
        assert item.closed_at is None


class TestHistoryEntryFromRow:

    def _row(self, changes):
        return {
            "id": 7,
            "item_id": "ts-abc123",
            "event_type": "status_changed",
            "actor_id": None,
            "actor_type": None,
            "changes": changes,
            "created_at": "2024-01-01T12:00:00+00:00",
        }

    def test_decodes_changes(self):
        entry = HistoryEntry.from_row(self._row('{"new": "blocked", "old": "open"}'))
        assert entry.changes == {"old": "open", "new": "blocked"}
        assert entry.created_at.tzinfo == timezone.utc

    def test_unreadable_changes(self, caplog):
        with caplog.at_level(logging.WARNING, logger="workgraph"):
            entry = HistoryEntry.from_row(self._row("{not json"))
        assert entry.changes is None
        assert entry.event_type == "status_changed"
        assert "Unreadable history payload" in caplog.text


class TestAgentContext:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("AGENT_ID", "agent-7")
        monkeypatch.setenv("AGENT_TYPE", "subagent")

        ctx = AgentContext.from_env()

        assert ctx.id == "agent-7"
        assert ctx.is_active
        assert ctx.is_subagent

    def test_inactive_without_id(self):
        ctx = AgentContext.from_env()
        assert not ctx.is_active
        assert not ctx.is_subagent


def test_dep_status_is_met():
    assert DepStatus(id="ts-1", title="t", status=Status.DONE).is_met
    assert not DepStatus(id="ts-1", title="t", status=Status.CANCELED).is_met
