"""
Unit tests for logging setup.

Tests cover:
1. Subsystem loggers live under the ctcore namespace
2. Console-only by default, file log when a directory is given
3. Reconfiguration replaces handlers instead of stacking them
"""

import logging

import pytest

from ctcore.utils.logger import CTLogger, get_logger, setup_logging


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    setup_logging()


class TestLogger:
    """ctcore logging configuration."""

    def test_subsystem_name(self):
        assert get_logger("coordinator").name == "ctcore.coordinator"

    def test_console_only_by_default(self):
        setup_logging()
        handlers = logging.getLogger("ctcore").handlers
        assert len(handlers) == 1
        assert CTLogger.log_file is None

    def test_file_log(self, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logging(level=logging.DEBUG, log_dir=log_dir)
        get_logger("engine").debug("table built")
        for handler in logging.getLogger("ctcore").handlers:
            handler.flush()
        assert CTLogger.log_file == log_dir / "ctcore.log"
        assert "[ctcore.engine] DEBUG" in CTLogger.log_file.read_text()

    def test_reconfigure_does_not_stack(self, tmp_path):
        setup_logging(log_dir=tmp_path)
        setup_logging(log_dir=tmp_path)
        assert len(logging.getLogger("ctcore").handlers) == 2

    def test_level_applies(self):
        setup_logging(level=logging.WARNING)
        assert logging.getLogger("ctcore").level == logging.WARNING
