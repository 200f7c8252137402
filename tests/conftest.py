"""Shared pytest fixtures for workgraph tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def isolate_test_database(tmp_path, monkeypatch):
    """Point every test at its own database and config file.

    WORKGRAPH_TEST_DB takes precedence over WORKGRAPH_DB, so nothing a test
    does can reach the real database.
    """
    monkeypatch.setenv("WORKGRAPH_TEST_DB", str(tmp_path / "test.db"))
    monkeypatch.setenv("WORKGRAPH_CONFIG", str(tmp_path / "config.yaml"))
    for name in ("WORKGRAPH_DB", "WORKGRAPH_MAX_DEPTH", "WORKGRAPH_LOG_LEVEL", "AGENT_ID", "AGENT_TYPE"):
        monkeypatch.delenv(name, raising=False)
    yield tmp_path / "test.db"
    # The CLI attaches a handler bound to the runner's stderr; drop it
    logging.getLogger("workgraph").handlers.clear()
