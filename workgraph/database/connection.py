"""
Database connection management for workgraph
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from ..config.settings import get_db_path
from ..exceptions import DatabaseConnectionError, DatabaseQueryError
from . import schema

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """SQLite database connection manager for workgraph

    Every call opens its own connection. Multi-step mutations go through
    ``transaction()`` so they commit as a unit or not at all.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        self._schema_ready = False

    def _connect(self) -> sqlite3.Connection:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode: transactions are opened explicitly with BEGIN
            conn = sqlite3.connect(self.db_path, isolation_level=None)
        except (OSError, sqlite3.Error) as e:
            raise DatabaseConnectionError(path=str(self.db_path)) from e

        conn.row_factory = sqlite3.Row  # Enable column access by name
        conn.execute("PRAGMA foreign_keys = ON")
        if not self._schema_ready:
            schema.ensure_schema(conn)
            self._schema_ready = True
        return conn

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection with context manager"""
        conn = self._connect()
        try:
            yield conn
        except sqlite3.Error as e:
            raise DatabaseQueryError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside one write transaction.

        Commits when the block finishes, rolls back and re-raises on any
        exception. BEGIN IMMEDIATE takes the write lock up front so checks
        made inside the block cannot be invalidated by another writer.
        """
        with self.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                logger.debug("Transaction rolled back on %s", self.db_path)
                raise
            conn.execute("COMMIT")

    def ensure_schema(self) -> None:
        """Ensure the tables and indexes exist"""
        with self.get_connection():
            pass
