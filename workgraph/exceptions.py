"""Custom exception hierarchy for workgraph.

This module provides a structured exception hierarchy for the graph engine.
Using specific exception types enables:

1. Better error handling at call sites (catch specific errors, not broad Exception)
2. Contextual error information naming the offending item(s)
3. Consistent error logging and user feedback

Exception Hierarchy:
    WorkgraphError (base)
    ├── DatabaseError - SQLite/database operations
    │   ├── DatabaseConnectionError
    │   └── DatabaseQueryError
    ├── NotFoundError - referenced item or edge does not exist
    ├── ValidationError - invalid values or structural conflicts
    │   ├── SelfDependencyError
    │   └── HierarchyConflictError
    ├── GuardViolationError - lifecycle guards (open children, dependents)
    ├── CycleDetectedError - an operation would create a cycle
    └── ConfigurationError - Settings/configuration issues

Usage:
    from workgraph.exceptions import CycleDetectedError, NotFoundError

    try:
        service.add_dependency("ts-a1b2c3", "ts-d4e5f6")
    except CycleDetectedError as e:
        print(e.context["item_id"])

The engine never retries internally. Re-issuing a call (for example with
``force=True``) is always the caller's decision.
"""

from typing import Any, Optional


class WorkgraphError(Exception):
    """Base exception for all workgraph errors.

    All workgraph-specific exceptions inherit from this class.
    This allows catching all workgraph errors with a single except clause
    while still being able to handle specific error types.

    Attributes:
        message: Human-readable error description
        context: Additional context (item ids, statuses, counts)
        retryable: Whether this error is transient and the operation can be retried
    """

    def __init__(
        self,
        message: str = "An error occurred",
        *,
        retryable: bool = False,
        **context: Any,
    ) -> None:
        self.message = message
        self.context = context
        self.retryable = retryable
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# =============================================================================
# Database Errors
# =============================================================================


class DatabaseError(WorkgraphError):
    """Base exception for database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Failed to connect to or access the database."""

    def __init__(self, message: str = "Database connection failed", **context: Any) -> None:
        super().__init__(message, **context)


class DatabaseQueryError(DatabaseError):
    """A database query failed."""

    def __init__(
        self,
        message: str = "Database query failed",
        *,
        query: Optional[str] = None,
        **context: Any,
    ) -> None:
        if query:
            context["query"] = query[:100] + "..." if len(query) > 100 else query
        super().__init__(message, **context)


# =============================================================================
# Graph & Lifecycle Errors
# =============================================================================


class NotFoundError(WorkgraphError):
    """A referenced item or dependency edge does not exist."""

    def __init__(
        self,
        message: str = "Item not found",
        *,
        item_id: Optional[str] = None,
        **context: Any,
    ) -> None:
        if item_id is not None:
            context["item_id"] = item_id
        super().__init__(message, **context)


class ValidationError(WorkgraphError):
    """An input value or requested structure is invalid."""

    pass


class SelfDependencyError(ValidationError):
    """An item was asked to depend on itself."""

    def __init__(self, item_id: str) -> None:
        super().__init__(
            f"cannot create self-dependency: {item_id} cannot depend on itself",
            item_id=item_id,
        )


class HierarchyConflictError(ValidationError):
    """A dependency edge would coincide with a parent/child pair."""

    def __init__(
        self,
        message: str = "Parent-child relationships should not have dependencies",
        *,
        parent_id: Optional[str] = None,
        child_id: Optional[str] = None,
        **context: Any,
    ) -> None:
        if parent_id is not None:
            context["parent_id"] = parent_id
        if child_id is not None:
            context["child_id"] = child_id
        super().__init__(message, **context)


class GuardViolationError(WorkgraphError):
    """A lifecycle guard rejected the operation.

    Raised when closing an item with open children, closing or deleting an
    item that others still depend on without ``force``, deleting an item
    with children without ``force`` and ``cascade_children``, or attaching a
    child to a closed parent.
    """

    def __init__(
        self,
        message: str = "Operation rejected by lifecycle guard",
        *,
        item_id: Optional[str] = None,
        **context: Any,
    ) -> None:
        if item_id is not None:
            context["item_id"] = item_id
        super().__init__(message, **context)


class CycleDetectedError(WorkgraphError):
    """Raised when an operation would create a cycle."""

    def __init__(self, message: str = "Operation would create a cycle", **context: Any) -> None:
        super().__init__(message, **context)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(WorkgraphError):
    """Configuration or settings error."""

    def __init__(
        self,
        message: str = "Configuration error",
        *,
        setting: Optional[str] = None,
        **context: Any,
    ) -> None:
        if setting:
            context["setting"] = setting
        super().__init__(message, **context)
