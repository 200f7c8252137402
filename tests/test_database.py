"""Tests for the database connection manager."""

import pytest

from workgraph.config.settings import get_db_path
from workgraph.database import DatabaseConnection
from workgraph.exceptions import DatabaseQueryError


@pytest.fixture
def database():
    return DatabaseConnection()


def _count(database, table):
    with database.get_connection() as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


class TestDatabaseConnection:

    def test_uses_test_database(self, database, isolate_test_database):
        assert database.db_path == isolate_test_database
        assert get_db_path() == isolate_test_database

    def test_schema_created(self, database):
        with database.get_connection() as conn:
            tables = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        assert {"items", "deps", "logs", "history", "labels", "item_labels"} <= tables

    def test_foreign_keys_enabled(self, database):
        with database.get_connection() as conn:
            assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_sqlite_errors_wrapped(self, database):
        with pytest.raises(DatabaseQueryError) as exc_info:
            with database.get_connection() as conn:
                conn.execute("SELECT * FROM no_such_table")
        assert "no_such_table" in str(exc_info.value)


class TestTransaction:

    def test_commits(self, database):
        with database.transaction() as conn:
            conn.execute(
                "INSERT INTO labels (project, name, created_at) VALUES ('p', 'keep', '2024-01-01')"
            )
        assert _count(database, "labels") == 1

    def test_rolls_back_on_error(self, database):
        with pytest.raises(RuntimeError):
            with database.transaction() as conn:
                conn.execute(
                    "INSERT INTO labels (project, name, created_at) VALUES ('p', 'gone', '2024-01-01')"
                )
                raise RuntimeError("boom")
        assert _count(database, "labels") == 0

    def test_rolls_back_on_constraint_failure(self, database):
        with pytest.raises(DatabaseQueryError):
            with database.transaction() as conn:
                conn.execute(
                    "INSERT INTO labels (project, name, created_at) VALUES ('p', 'one', '2024-01-01')"
                )
                conn.execute("INSERT INTO deps (item_id, depends_on) VALUES ('ts-missing', 'ts-gone')")
        assert _count(database, "labels") == 0
