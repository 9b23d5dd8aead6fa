"""Error taxonomy and structured operation results for LM-Tasker."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorKind(str, Enum):
    """Machine-readable error codes surfaced to CLI and MCP callers."""

    READ_ERROR = "READ_ERROR"
    WRITE_ERROR = "WRITE_ERROR"
    INVALID_ID_FORMAT = "INVALID_ID_FORMAT"
    NOT_FOUND = "NOT_FOUND"
    SELF_DEPENDENCY = "SELF_DEPENDENCY"
    DUPLICATE_DEPENDENCY = "DUPLICATE_DEPENDENCY"
    DEPENDENCY_NOT_PRESENT = "DEPENDENCY_NOT_PRESENT"
    CIRCULAR_DEPENDENCY = "CIRCULAR_DEPENDENCY"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PROTECTED_STATE = "PROTECTED_STATE"
    IO_ERROR = "IO_ERROR"


class TaskerError(Exception):
    """Base class for every expected failure of a task operation."""

    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.kind.value, "message": self.message}


class ReadError(TaskerError):
    """The tasks document is missing or not parseable JSON."""

    kind = ErrorKind.READ_ERROR

    def __init__(self, message: str, *, missing: bool = False):
        super().__init__(message)
        self.missing = missing


class WriteError(TaskerError):
    kind = ErrorKind.WRITE_ERROR


class InvalidIdFormat(TaskerError):
    kind = ErrorKind.INVALID_ID_FORMAT


class NotFound(TaskerError):
    kind = ErrorKind.NOT_FOUND


class SelfDependency(TaskerError):
    kind = ErrorKind.SELF_DEPENDENCY


class DuplicateDependency(TaskerError):
    kind = ErrorKind.DUPLICATE_DEPENDENCY


class DependencyNotPresent(TaskerError):
    kind = ErrorKind.DEPENDENCY_NOT_PRESENT


class CircularDependency(TaskerError):
    kind = ErrorKind.CIRCULAR_DEPENDENCY


class ValidationError(TaskerError):
    kind = ErrorKind.VALIDATION_ERROR


class ProtectedStateError(TaskerError):
    """Finished work cannot be changed by append-only operations."""

    kind = ErrorKind.PROTECTED_STATE


class ProjectionError(TaskerError):
    """Writing or deleting a projected task file failed (non-fatal)."""

    kind = ErrorKind.IO_ERROR


@dataclass(slots=True)
class OperationResult:
    """Structured outcome of a task operation: ``{success, data | error}``."""

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[TaskerError] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None, warnings: Optional[List[str]] = None) -> "OperationResult":
        return cls(success=True, data=data or {}, warnings=list(warnings or []))

    @classmethod
    def fail(
        cls,
        error: TaskerError,
        data: Optional[Dict[str, Any]] = None,
        warnings: Optional[List[str]] = None,
    ) -> "OperationResult":
        return cls(success=False, data=data, error=error, warnings=list(warnings or []))

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    @property
    def message(self) -> str:
        if self.error:
            return self.error.message
        if self.data and "message" in self.data:
            return str(self.data["message"])
        return ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error.to_dict() if self.error else None,
            "warnings": list(self.warnings),
        }
