"""Logging and observability utilities for LM-Tasker.

This module provides structured logging, operation timing, and
observability hooks for task mutations. Nothing here is process-global:
callers hand a logger and an ``OperationHooks`` instance to each
``TaskManager``.
"""

from __future__ import annotations

import json
import logging as std_logging
import sys
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, Union

LOGGER_NAME = "lmtasker"


def setup_logging(
    log_level: Union[str, int] = std_logging.INFO,
    log_file: Optional[Path] = None,
) -> std_logging.Logger:
    """Setup structured logging for LM-Tasker.

    Console output goes to stderr so that an MCP stdio transport on stdout
    is never polluted.
    """
    logger = std_logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)
    logger.handlers.clear()

    detailed_formatter = std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = std_logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(detailed_formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = std_logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.debug("LM-Tasker logging initialized")
    return logger


def get_logger(name: Optional[str] = None) -> std_logging.Logger:
    """Return the package logger or one of its children."""
    if not name:
        return std_logging.getLogger(LOGGER_NAME)
    return std_logging.getLogger(f"{LOGGER_NAME}.{name}")


class JsonFormatter(std_logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: std_logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


@contextmanager
def log_operation(
    operation_name: str,
    logger: Optional[std_logging.Logger] = None,
    expected_errors: Tuple[Type[BaseException], ...] = (),
    **extra_fields,
):
    """Context manager to log operations with custom fields.

    Exceptions listed in ``expected_errors`` are logged at DEBUG only; the
    caller reports them with more context.
    """
    logger = logger or get_logger("operations")
    start_time = time.time()

    logger.debug(f"Starting operation: {operation_name}", extra={"extra_fields": {
        "operation": operation_name,
        "status": "started",
        **extra_fields,
    }})

    try:
        yield

        duration = time.time() - start_time
        logger.info(f"Completed operation: {operation_name} in {duration:.3f}s", extra={"extra_fields": {
            "operation": operation_name,
            "status": "completed",
            "duration": duration,
            **extra_fields,
        }})

    except Exception as e:
        duration = time.time() - start_time
        log = logger.debug if isinstance(e, expected_errors) else logger.error
        log(f"Failed operation: {operation_name} after {duration:.3f}s - {str(e)}", extra={"extra_fields": {
            "operation": operation_name,
            "status": "failed",
            "duration": duration,
            "error_type": type(e).__name__,
            "error_message": str(e),
            **extra_fields,
        }})

        raise


def log_error_with_context(
    error: Exception,
    context: Dict[str, Any],
    logger: Optional[std_logging.Logger] = None,
    expected: bool = False,
    **extra_fields,
) -> None:
    """Log an error with rich context information.

    Expected failures (bad input, missing ids) go out at WARNING.
    """
    logger = logger or get_logger("errors")

    error_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields,
    }

    log = logger.warning if expected else logger.error
    log(
        f"Error in {context.get('operation', 'unknown operation')}: {str(error)}",
        extra={"extra_fields": error_data},
    )


class OperationHooks:
    """Observability hooks for task mutation events."""

    def __init__(self, logger: Optional[std_logging.Logger] = None):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = logger or get_logger("observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Register a callback for a specific event type."""
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def trigger_hooks(self, event_type: str, **data) -> None:
        """Trigger all callbacks for a specific event type."""
        callbacks = self.hooks.get(event_type, [])
        if callbacks:
            self.logger.debug(f"Triggering {len(callbacks)} hooks for event: {event_type}")
        for hook in callbacks:
            try:
                hook(**data)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}")

    def emit(self, event_type: str, **data) -> None:
        """Log a task event and trigger hooks."""
        event_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type,
            **data,
        }

        self.logger.debug(f"Task event: {event_type}", extra={"extra_fields": event_data})

        hook_data = {k: v for k, v in event_data.items() if k != "event_type"}
        self.trigger_hooks(event_type, **hook_data)
