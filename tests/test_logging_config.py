"""
Tests for logging configuration module.

Tests cover:
- Log directory and file creation
- Log level configuration via environment variables
- Per-module logger naming
- Rotating file handler settings
- Optional console output for the command line
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler

import pytest

from pirido.logging_config import (
    BACKUP_COUNT,
    MAX_BYTES,
    get_logger,
    setup_logging,
)


@pytest.fixture
def mock_log_dir(tmp_path, monkeypatch):
    """Point LOG_DIR and LOG_FILE at a temporary directory."""
    log_dir = tmp_path / ".pirido" / "logs"
    log_file = log_dir / "pirido.log"

    monkeypatch.setattr("pirido.logging_config.LOG_DIR", log_dir)
    monkeypatch.setattr("pirido.logging_config.LOG_FILE", log_file)
    monkeypatch.delenv("PIRIDO_LOG_LEVEL", raising=False)

    return log_dir, log_file


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging handlers before and after each test."""
    root_logger = logging.getLogger()
    saved_handlers = list(root_logger.handlers)
    saved_level = root_logger.level
    root_logger.handlers.clear()

    yield

    for handler in root_logger.handlers:
        handler.close()
    root_logger.handlers[:] = saved_handlers
    root_logger.setLevel(saved_level)


def _flush():
    for handler in logging.getLogger().handlers:
        handler.flush()


class TestLogFiles:
    """Test suite for log directory and file creation."""

    def test_log_directory_created_automatically(self, mock_log_dir):
        log_dir, _ = mock_log_dir
        assert not log_dir.exists()

        setup_logging()

        assert log_dir.is_dir()

    def test_log_messages_written_to_file(self, mock_log_dir):
        """Test that records land in the file with timestamp, module and level."""
        _, log_file = mock_log_dir

        setup_logging()
        get_logger("pirido.services.todo_app").warning("Ranking already running")
        _flush()

        content = log_file.read_text(encoding="utf-8")
        assert "pirido.services.todo_app" in content
        assert "WARNING" in content
        assert "Ranking already running" in content
        assert re.search(r"\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}", content)

    def test_logging_initialized_message_logged(self, mock_log_dir):
        _, log_file = mock_log_dir

        setup_logging()
        _flush()

        assert "Logging initialized" in log_file.read_text(encoding="utf-8")

    def test_exception_logging_with_traceback(self, mock_log_dir):
        _, log_file = mock_log_dir

        setup_logging()
        try:
            raise ValueError("Test exception")
        except ValueError:
            get_logger("test").error("An error occurred", exc_info=True)
        _flush()

        content = log_file.read_text(encoding="utf-8")
        assert "Traceback" in content
        assert "ValueError: Test exception" in content

    def test_utf8_encoding_support(self, mock_log_dir):
        _, log_file = mock_log_dir

        setup_logging()
        message = "Todo: 牛乳を買う Привет"
        get_logger("test").info(message)
        _flush()

        assert message in log_file.read_text(encoding="utf-8")


class TestPerModuleLogger:
    """Test suite for per-module logger naming."""

    def test_logger_name_matches_provided_name(self):
        logger = get_logger("pirido.services.ai_service")

        assert isinstance(logger, logging.Logger)
        assert logger.name == "pirido.services.ai_service"

    def test_same_module_gets_same_logger(self):
        assert get_logger("same_module") is get_logger("same_module")


class TestLogLevelConfiguration:
    """Test suite for log level configuration."""

    def test_default_log_level_is_info(self, mock_log_dir):
        setup_logging()

        assert logging.getLogger().level == logging.INFO

    @pytest.mark.parametrize("value, expected", [
        ("DEBUG", logging.DEBUG),
        ("warning", logging.WARNING),
        ("ERROR", logging.ERROR),
        ("INVALID", logging.INFO),
    ])
    def test_env_var_sets_level(self, mock_log_dir, monkeypatch, value, expected):
        monkeypatch.setenv("PIRIDO_LOG_LEVEL", value)

        setup_logging()

        assert logging.getLogger().level == expected

    def test_parameter_overrides_env_var(self, mock_log_dir, monkeypatch):
        monkeypatch.setenv("PIRIDO_LOG_LEVEL", "ERROR")

        setup_logging(log_level="DEBUG")

        assert logging.getLogger().level == logging.DEBUG

    def test_info_level_filters_debug_messages(self, mock_log_dir):
        _, log_file = mock_log_dir

        setup_logging(log_level="INFO")
        logger = get_logger("test")
        logger.debug("Debug message - should not appear")
        logger.info("Info message - should appear")
        _flush()

        content = log_file.read_text(encoding="utf-8")
        assert "Debug message" not in content
        assert "Info message" in content


class TestHandlers:
    """Test suite for handler configuration."""

    def test_rotating_file_handler_configured(self, mock_log_dir):
        _, log_file = mock_log_dir

        setup_logging()

        handlers = logging.getLogger().handlers
        assert len(handlers) == 1
        handler = handlers[0]
        assert isinstance(handler, RotatingFileHandler)
        assert handler.maxBytes == MAX_BYTES
        assert handler.backupCount == BACKUP_COUNT
        assert handler.baseFilename == str(log_file)

    def test_console_handler_added_when_requested(self, mock_log_dir):
        setup_logging(console=True)

        handlers = logging.getLogger().handlers
        stream_handlers = [
            h for h in handlers
            if type(h) is logging.StreamHandler and h.stream is sys.stderr
        ]
        assert len(handlers) == 2
        assert len(stream_handlers) == 1

    def test_no_duplicate_handlers_on_multiple_calls(self, mock_log_dir):
        setup_logging()
        first = len(logging.getLogger().handlers)

        setup_logging()

        assert len(logging.getLogger().handlers) == first
