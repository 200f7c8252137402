"""
Work graph: tasks and epics with dependencies, lifecycle guards and merging.
"""

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
    Label,
    LogEntry,
    ParentChildDep,
    Status,
)
from .service import WorkService

__all__ = [
    "AgentContext",
    "CircularDep",
    "DepEdge",
    "DepStatus",
    "EpicCompletionInfo",
    "EventType",
    "HistoryEntry",
    "ImpactItem",
    "Item",
    "ItemType",
    "Label",
    "LogEntry",
    "ParentChildDep",
    "Status",
    "WorkService",
]
