"""
Centralized datetime helpers for workgraph.

Timestamps are stored as ISO 8601 strings in UTC so that lexical ordering in
SQLite matches chronological ordering.
"""

from datetime import datetime, timezone
from typing import Optional, Union


def utc_now() -> datetime:
    """Get current UTC time with timezone awareness."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """
    Get current UTC time as ISO format string.

    Returns:
        ISO format string like "2024-01-15T10:30:00.123456+00:00"
    """
    return utc_now().isoformat(timespec="microseconds")


def parse_datetime(value: Union[str, datetime, None],
                   default: Optional[datetime] = None) -> Optional[datetime]:
    """
    Parse a datetime value read back from the database.

    Handles ISO 8601 strings (with or without timezone), SQLite's space
    separator, a trailing 'Z', and already-parsed datetimes. Naive values
    are treated as UTC.
    """
    if value is None:
        return default

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        if " " in normalized and "T" not in normalized:
            normalized = normalized.replace(" ", "T", 1)
        try:
            dt = datetime.fromisoformat(normalized)
        except ValueError:
            return default
    else:
        return default

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_utc_iso(value: datetime) -> str:
    """Format a datetime the way timestamps are stored (naive means UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
