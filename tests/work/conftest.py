"""Shared fixtures for work graph tests."""

import pytest

from workgraph.work import AgentContext, ItemType, WorkService


# =============================================================================
# SERVICE FIXTURES
# =============================================================================

@pytest.fixture
def work_service():
    """Create a fresh WorkService instance for testing.

    The service uses the per-test database from conftest.py's
    isolate_test_database fixture.
    """
    return WorkService()


@pytest.fixture
def make_task(work_service):
    """Factory creating tasks in the "test" project."""
    def _make(title="Task", **kwargs):
        kwargs.setdefault("project", "test")
        return work_service.create_item(title, item_type=ItemType.TASK, **kwargs)
    return _make


@pytest.fixture
def make_epic(work_service):
    """Factory creating epics in the "test" project."""
    def _make(title="Epic", **kwargs):
        kwargs.setdefault("project", "test")
        return work_service.create_item(title, item_type=ItemType.EPIC, **kwargs)
    return _make


@pytest.fixture
def agent():
    return AgentContext(id="agent-1", type="general")


@pytest.fixture
def insert_raw_edge(work_service):
    """Insert an edge bypassing all validation, to simulate corrupted data."""
    def _insert(item_id, depends_on):
        with work_service.db.transaction() as conn:
            work_service.repo.insert_edge(conn, item_id, depends_on)
    return _insert
