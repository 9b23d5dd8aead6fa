"""Unit tests for LM-Tasker logging and observability.

This module tests the logging setup, the JSON formatter, operation
logging and the mutation event hooks.
"""

import json
import logging
import sys

import pytest
from unittest.mock import MagicMock

from lmtasker.tasker_logging import (
    LOGGER_NAME,
    JsonFormatter,
    OperationHooks,
    get_logger,
    log_error_with_context,
    log_operation,
    setup_logging,
)


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        formatter = JsonFormatter()
        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, "file.py", 10, "Test message", (), None)

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "module" in data
        assert "function" in data
        assert data["line"] == 10

    def test_json_formatter_with_exception(self):
        """Test JSON formatting with exception info."""
        formatter = JsonFormatter()
        logger = logging.getLogger("test")
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = logger.makeRecord(
                "test", logging.ERROR, "file.py", 10, "Test message", (), sys.exc_info()
            )

        data = json.loads(formatter.format(record))

        assert data["level"] == "ERROR"
        assert "ValueError" in data["exception"]

    def test_json_formatter_with_extra_fields(self):
        """Test JSON formatting with extra fields."""
        formatter = JsonFormatter()
        logger = logging.getLogger("test")
        record = logger.makeRecord("test", logging.INFO, "file.py", 10, "Test message", (), None)
        record.extra_fields = {"task_id": 7}

        data = json.loads(formatter.format(record))

        assert data["task_id"] == 7


class TestSetupLogging:
    """Test cases for setup_logging."""

    def test_console_handler_uses_stderr(self):
        """Console output must never go to stdout."""
        logger = setup_logging("DEBUG")

        assert logger.name == LOGGER_NAME
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert logger.handlers[0].stream is sys.stderr

        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)

    def test_file_handler_writes_json(self, tmp_path):
        """Test that the optional log file receives JSON lines."""
        log_file = tmp_path / "lmtasker.log"
        logger = setup_logging("INFO", log_file=log_file)
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()

        lines = [line for line in log_file.read_text(encoding="utf-8").splitlines() if line]
        assert json.loads(lines[-1])["message"] == "hello"

        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)

    def test_get_logger_children(self):
        """Test child logger naming."""
        assert get_logger().name == LOGGER_NAME
        assert get_logger("manager").name == f"{LOGGER_NAME}.manager"


class TestLogOperation:
    """Test cases for log_operation context manager."""

    def test_log_operation_success(self):
        """Test successful operation logging."""
        logger = MagicMock()

        with log_operation("add_task", logger=logger, title="Write docs"):
            pass

        assert logger.debug.called
        assert logger.info.called
        assert logger.error.called is False
        extra = logger.info.call_args.kwargs["extra"]["extra_fields"]
        assert extra["operation"] == "add_task"
        assert extra["status"] == "completed"
        assert extra["title"] == "Write docs"

    def test_log_operation_failure_reraises(self):
        """Test that failures are logged and re-raised."""
        logger = MagicMock()

        with pytest.raises(ValueError):
            with log_operation("remove_task", logger=logger):
                raise ValueError("boom")

        assert logger.error.called
        extra = logger.error.call_args.kwargs["extra"]["extra_fields"]
        assert extra["status"] == "failed"
        assert extra["error_type"] == "ValueError"

    def test_expected_errors_logged_at_debug(self):
        """Expected failures are re-raised without an ERROR record."""
        logger = MagicMock()

        with pytest.raises(KeyError):
            with log_operation("get_task", logger=logger, expected_errors=(KeyError,)):
                raise KeyError("9")

        logger.error.assert_not_called()
        extra = logger.debug.call_args.kwargs["extra"]["extra_fields"]
        assert extra["status"] == "failed"
        assert extra["error_type"] == "KeyError"


class TestLogErrorWithContext:
    """Test cases for log_error_with_context."""

    def test_logs_context(self):
        """Test that the context dict is attached to the log record."""
        logger = MagicMock()

        log_error_with_context(KeyError("x"), {"operation": "set_status", "ids": "1,2"}, logger=logger)

        message = logger.error.call_args.args[0]
        assert "set_status" in message
        extra = logger.error.call_args.kwargs["extra"]["extra_fields"]
        assert extra["context"]["ids"] == "1,2"
        assert extra["error_type"] == "KeyError"

    def test_expected_error_is_a_warning(self):
        """Test that expected failures are logged at WARNING."""
        logger = MagicMock()

        log_error_with_context(KeyError("x"), {"operation": "get_task"}, logger=logger, expected=True)

        logger.error.assert_not_called()
        assert "get_task" in logger.warning.call_args.args[0]


class TestOperationHooks:
    """Test cases for OperationHooks."""

    def test_register_and_trigger(self):
        """Test that registered hooks receive event data."""
        hooks = OperationHooks(MagicMock())
        callback = MagicMock()
        hooks.register_hook("task_added", callback)

        hooks.emit("task_added", task_id=3)

        callback.assert_called_once()
        assert callback.call_args.kwargs["task_id"] == 3
        assert "timestamp" in callback.call_args.kwargs

    def test_failing_hook_is_logged(self):
        """A failing hook never propagates."""
        logger = MagicMock()
        hooks = OperationHooks(logger)
        hooks.register_hook("task_removed", MagicMock(side_effect=RuntimeError("hook broke")))
        other = MagicMock()
        hooks.register_hook("task_removed", other)

        hooks.trigger_hooks("task_removed", task_ids=[1])

        assert logger.error.called
        other.assert_called_once_with(task_ids=[1])

    def test_instances_are_independent(self):
        """Hooks registered on one instance are not seen by another."""
        first = OperationHooks(MagicMock())
        second = OperationHooks(MagicMock())
        callback = MagicMock()
        first.register_hook("status_changed", callback)

        second.emit("status_changed", item_id="1")

        callback.assert_not_called()
