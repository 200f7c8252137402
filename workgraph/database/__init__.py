"""
workgraph database package

- connection: per-call SQLite connections and scoped transactions
- schema: table and index definitions
"""

from .connection import DatabaseConnection

__all__ = [
    "DatabaseConnection",
]
