"""
Data models for the work graph.
"""

import json
import logging
import os
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config.constants import DEFAULT_PRIORITY, ITEM_ID_HEX_LENGTH, ITEM_ID_PREFIXES
from ..exceptions import ValidationError
from ..utils.datetime_utils import parse_datetime

logger = logging.getLogger(__name__)


class ItemType(str, Enum):
    """Kind of work item."""

    TASK = "task"
    EPIC = "epic"

    @classmethod
    def parse(cls, value) -> "ItemType":
        """Validate a raw value into an ItemType."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValidationError(f"invalid type: {value!r} (valid: {valid})") from None


class Status(str, Enum):
    """Lifecycle status of a work item."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"
    CANCELED = "canceled"

    @classmethod
    def parse(cls, value) -> "Status":
        """Validate a raw value into a Status."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValidationError(f"invalid status: {value!r} (valid: {valid})") from None

    @property
    def is_closed(self) -> bool:
        return self in CLOSED_STATUSES

    @property
    def releases_claim(self) -> bool:
        """Whether entering this status clears the agent claim."""
        return self in (Status.DONE, Status.BLOCKED, Status.CANCELED)


CLOSED_STATUSES = frozenset({Status.DONE, Status.CANCELED})


class EventType(str, Enum):
    """Kinds of entries in an item's change history."""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    COMPLETED = "completed"
    CANCELED = "canceled"
    REOPENED = "reopened"
    ASSIGNED = "assigned"
    PARENT_CHANGED = "parent_changed"
    DEPENDENCY_ADDED = "dependency_added"
    DEPENDENCY_REMOVED = "dependency_removed"
    MERGED = "merged"

    @classmethod
    def for_transition(cls, old: Status, new: Status) -> "EventType":
        """Pick the event recorded for a status change."""
        if new == Status.DONE:
            return cls.COMPLETED
        if new == Status.CANCELED:
            return cls.CANCELED
        if old.is_closed:
            return cls.REOPENED
        return cls.STATUS_CHANGED


def generate_item_id(item_type, prefix: Optional[str] = None, length: int = ITEM_ID_HEX_LENGTH) -> str:
    """Generate a short random ID such as ``ts-3fa9c1`` or ``ep-07b2de``.

    ``prefix`` includes its dash; it defaults to the built-in prefix for the type.
    """
    if prefix is None:
        prefix = ITEM_ID_PREFIXES[ItemType.parse(item_type).value]
    return prefix + secrets.token_hex((length + 1) // 2)[:length]


@dataclass
class Item:
    """A task or epic."""

    id: str
    project: str
    type: ItemType
    title: str
    status: Status = Status.OPEN
    priority: int = DEFAULT_PRIORITY  # 1=high, 2=medium, 3=low
    description: str = ""
    parent_id: Optional[str] = None
    agent_id: Optional[str] = None
    agent_last_active: Optional[datetime] = None
    results: str = ""
    shared_context: str = ""
    closing_instructions: str = ""
    worktree_branch: Optional[str] = None
    worktree_base: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    # Runtime fields (not persisted)
    labels: List[str] = field(default_factory=list, repr=False)

    @classmethod
    def from_row(cls, row) -> "Item":
        """Create from a database row (sqlite3.Row)."""
        return cls(
            id=row["id"],
            project=row["project"],
            type=ItemType(row["type"]),
            title=row["title"],
            status=Status(row["status"]),
            priority=row["priority"],
            description=row["description"] or "",
            parent_id=row["parent_id"],
            agent_id=row["agent_id"],
            agent_last_active=parse_datetime(row["agent_last_active"]),
            results=row["results"] or "",
            shared_context=row["shared_context"] or "",
            closing_instructions=row["closing_instructions"] or "",
            worktree_branch=row["worktree_branch"],
            worktree_base=row["worktree_base"],
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            closed_at=parse_datetime(row["closed_at"]),
        )

    @property
    def is_epic(self) -> bool:
        return self.type == ItemType.EPIC

    @property
    def is_closed(self) -> bool:
        """Check if the item is done or canceled."""
        return self.status.is_closed

    @property
    def priority_label(self) -> str:
        """Get human-readable priority label."""
        labels = {1: "P1-HIGH", 2: "P2-MEDIUM", 3: "P3-LOW"}
        return labels.get(self.priority, f"P{self.priority}")


@dataclass
class LogEntry:
    """An audit trail entry attached to an item."""

    id: int
    item_id: str
    message: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "LogEntry":
        return cls(
            id=row["id"],
            item_id=row["item_id"],
            message=row["message"],
            created_at=parse_datetime(row["created_at"]),
        )


@dataclass
class HistoryEntry:
    """A structured change event on an item.

    ``changes`` holds the event payload, typically ``{"old": ..., "new": ...}``.
    ``actor_id``/``actor_type`` identify the agent that made the change, if any.
    """

    id: int
    item_id: str
    event_type: str
    actor_id: Optional[str] = None
    actor_type: Optional[str] = None
    changes: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "HistoryEntry":
        changes = None
        if row["changes"]:
            try:
                changes = json.loads(row["changes"])
            except ValueError:
                # A corrupt payload should not hide the rest of the history
                logger.warning("Unreadable history payload on entry %s", row["id"])
        return cls(
            id=row["id"],
            item_id=row["item_id"],
            event_type=row["event_type"],
            actor_id=row["actor_id"],
            actor_type=row["actor_type"],
            changes=changes,
            created_at=parse_datetime(row["created_at"]),
        )


@dataclass
class Label:
    """A per-project label."""

    id: int
    project: str
    name: str

    @classmethod
    def from_row(cls, row) -> "Label":
        return cls(id=row["id"], project=row["project"], name=row["name"])


@dataclass
class DepStatus:
    """A dependency together with its current status, for display.

    ``is_inherited`` marks dependencies that come from an ancestor epic
    rather than a direct edge; ``inherited_from`` names that ancestor.
    """

    id: str
    title: str
    status: Status
    is_inherited: bool = False
    inherited_from: Optional[str] = None

    @property
    def is_met(self) -> bool:
        return self.status == Status.DONE


@dataclass
class DepEdge:
    """A dependency edge annotated with both endpoints' state."""

    item_id: str
    item_title: str
    item_status: Status
    depends_on_id: str
    depends_on_title: str
    depends_on_status: Status
    depth: int = 1


@dataclass
class ImpactItem:
    """An open item that would become ready, and how far downstream it sits."""

    id: str
    title: str
    priority: int
    depth: int


@dataclass
class CircularDep:
    """A dependency cycle found by the audit scan.

    ``cycle_path`` starts and ends with the same item.
    """

    item_id: str
    depends_on_id: str
    cycle_path: List[str]


@dataclass
class ParentChildDep:
    """A dependency edge that coincides with a parent/child pair."""

    item_id: str
    depends_on: str


@dataclass
class AgentContext:
    """Identity of the agent issuing a call."""

    id: str = ""
    type: str = ""

    @classmethod
    def from_env(cls) -> "AgentContext":
        """Read AGENT_ID / AGENT_TYPE from the environment."""
        return cls(
            id=os.environ.get("AGENT_ID", ""),
            type=os.environ.get("AGENT_TYPE", ""),
        )

    @property
    def is_active(self) -> bool:
        return bool(self.id)

    @property
    def is_subagent(self) -> bool:
        return self.type == "subagent"


@dataclass
class EpicCompletionInfo:
    """What a caller needs to finish off a parent whose children are all closed."""

    epic: Item
    closing_instructions: str = ""
    worktree_branch: Optional[str] = None
    worktree_base: Optional[str] = None

    @property
    def has_worktree(self) -> bool:
        return bool(self.worktree_branch)
