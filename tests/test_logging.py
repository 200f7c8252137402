"""Tests for logging setup."""

import logging

from workgraph.utils.logging import get_logger, setup_logging


class TestSetupLogging:

    def test_default_level_is_warning(self):
        logger = setup_logging()
        assert logger.name == "workgraph"
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1

    def test_verbose_forces_debug(self, monkeypatch):
        monkeypatch.setenv("WORKGRAPH_LOG_LEVEL", "ERROR")
        assert setup_logging(verbose=True).level == logging.DEBUG

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("WORKGRAPH_LOG_LEVEL", "info")
        assert setup_logging().level == logging.INFO

    def test_repeated_setup_keeps_one_handler(self):
        setup_logging()
        logger = setup_logging(level="ERROR")
        assert len(logger.handlers) == 1
        assert logger.handlers[0].level == logging.ERROR


def test_get_logger_configures_once():
    logger = get_logger("workgraph.tests.standalone")
    try:
        assert logger.level == logging.INFO
        assert get_logger("workgraph.tests.standalone").handlers == logger.handlers
        assert len(logger.handlers) == 1
    finally:
        logger.handlers.clear()
