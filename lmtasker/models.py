"""Data models for LM-Tasker task tracking.

This module contains the core data structures persisted in ``tasks.json``:
top-level tasks, their subtasks, and the collection document that wraps
them together with free-form project metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union


TASK_STATUSES = ("pending", "in-progress", "done", "deferred", "cancelled", "blocked", "review")
COMPLETED_STATUSES = ("done", "completed")
ACTIVE_STATUSES = ("pending", "in-progress")
PRIORITIES = ("high", "medium", "low")
DEFAULT_PRIORITY = "medium"

# A dependency entry is a task id (int) or a qualified "parent.subtask" id (str).
DependencyRef = Union[int, str]

_TASK_KEYS = (
    "id",
    "title",
    "description",
    "status",
    "priority",
    "dependencies",
    "details",
    "testStrategy",
    "subtasks",
)
_SUBTASK_KEYS = (
    "id",
    "title",
    "description",
    "status",
    "priority",
    "dependencies",
    "details",
    "testStrategy",
)


def utc_timestamp() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def is_completed_status(status: Optional[str]) -> bool:
    """Check whether a status counts as finished work."""
    return (status or "").lower() in COMPLETED_STATUSES


def _coerce_dependencies(raw: Any) -> List[DependencyRef]:
    # Digit strings stay strings: "3" always names task 3, while a bare 3 in a
    # subtask names sibling subtask 3 when the parent has one.
    if not isinstance(raw, list):
        return []
    return list(raw)


def _extra_fields(data: Dict[str, Any], known: tuple) -> Dict[str, Any]:
    return {key: value for key, value in data.items() if key not in known}


@dataclass(slots=True)
class Subtask:
    """A unit of work scoped to exactly one parent task."""

    id: int
    title: str
    description: str = ""
    status: str = "pending"
    priority: Optional[str] = None
    dependencies: List[DependencyRef] = field(default_factory=list)
    details: str = ""
    test_strategy: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
        }
        if self.priority is not None:
            data["priority"] = self.priority
        data["dependencies"] = list(self.dependencies)
        data["details"] = self.details
        if self.test_strategy:
            data["testStrategy"] = self.test_strategy
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Subtask":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            status=data.get("status", "pending"),
            priority=data.get("priority"),
            dependencies=_coerce_dependencies(data.get("dependencies")),
            details=data.get("details") or "",
            test_strategy=data.get("testStrategy") or "",
            extra=_extra_fields(data, _SUBTASK_KEYS),
        )

    def is_completed(self) -> bool:
        return is_completed_status(self.status)

    def validate(self) -> List[str]:
        """Validate subtask data and return any issues."""
        issues = []

        if not isinstance(self.id, int) or isinstance(self.id, bool) or self.id <= 0:
            issues.append(f"Subtask ID must be a positive integer, got: {self.id!r}")
        if not self.title or not str(self.title).strip():
            issues.append("Subtask title is required")
        if self.priority is not None and self.priority not in PRIORITIES:
            issues.append(f"Invalid priority: {self.priority}")

        return issues


@dataclass(slots=True)
class Task:
    """Top-level unit of work with a global integer id."""

    id: int
    title: str
    description: str
    status: str = "pending"
    priority: str = DEFAULT_PRIORITY
    dependencies: List[DependencyRef] = field(default_factory=list)
    details: str = ""
    test_strategy: str = ""
    subtasks: List[Subtask] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "dependencies": list(self.dependencies),
            "details": self.details,
            "testStrategy": self.test_strategy,
            "subtasks": [subtask.to_dict() for subtask in self.subtasks],
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Create from dictionary representation."""
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            status=data.get("status", "pending"),
            priority=data.get("priority") or DEFAULT_PRIORITY,
            dependencies=_coerce_dependencies(data.get("dependencies")),
            details=data.get("details") or "",
            test_strategy=data.get("testStrategy") or "",
            subtasks=[Subtask.from_dict(item) for item in data.get("subtasks") or []],
            extra=_extra_fields(data, _TASK_KEYS),
        )

    def is_completed(self) -> bool:
        return is_completed_status(self.status)

    def get_subtask(self, subtask_id: int) -> Optional[Subtask]:
        """Return the subtask with the given id, if any."""
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def next_subtask_id(self) -> int:
        """Subtask ids are assigned as max(existing) + 1 within this parent."""
        return max((subtask.id for subtask in self.subtasks), default=0) + 1

    def validate(self) -> List[str]:
        """Validate task data and return any issues."""
        issues = []

        if not isinstance(self.id, int) or isinstance(self.id, bool) or self.id <= 0:
            issues.append(f"Task ID must be a positive integer, got: {self.id!r}")
        if not self.title or not str(self.title).strip():
            issues.append("Title is required")
        if not self.description or not str(self.description).strip():
            issues.append("Description is required")
        if self.priority not in PRIORITIES:
            issues.append(f"Invalid priority: {self.priority}")

        seen: set[int] = set()
        for subtask in self.subtasks:
            for issue in subtask.validate():
                issues.append(f"Subtask {self.id}.{subtask.id}: {issue}")
            if subtask.id in seen:
                issues.append(f"Duplicate subtask ID {self.id}.{subtask.id}")
            seen.add(subtask.id)

        return issues


@dataclass(slots=True)
class TasksCollection:
    """The persisted document: project metadata plus the ordered task list."""

    meta: Dict[str, Any] = field(default_factory=dict)
    tasks: List[Task] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "meta": dict(self.meta),
            "tasks": [task.to_dict() for task in self.tasks],
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TasksCollection":
        """Create from dictionary representation."""
        return cls(
            meta=dict(data.get("meta") or {}),
            tasks=[Task.from_dict(item) for item in data.get("tasks") or []],
            extra=_extra_fields(data, ("meta", "tasks")),
        )

    def get_task(self, task_id: int) -> Optional[Task]:
        """Return the task with the given id, if any."""
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def task_ids(self) -> List[int]:
        return [task.id for task in self.tasks]

    def next_task_id(self) -> int:
        """Task ids are assigned as max(existing) + 1 and never reused."""
        return max(self.task_ids(), default=0) + 1

    def validate(self) -> List[str]:
        """Validate structural invariants and return any issues."""
        issues = []
        seen: set[int] = set()
        for task in self.tasks:
            issues.extend(f"Task {task.id}: {issue}" for issue in task.validate())
            if task.id in seen:
                issues.append(f"Duplicate task ID {task.id}")
            seen.add(task.id)
        return issues

    def structural_issues(self) -> List[str]:
        """Shape problems that would break operations on a loaded document.

        Looser than ``validate``: empty titles or unknown priorities are
        tolerated, wrong types and duplicate ids are not.
        """
        issues: List[str] = []
        task_ids: set[int] = set()
        for index, task in enumerate(self.tasks):
            if not _is_positive_int(task.id):
                issues.append(f"tasks[{index}]: id must be a positive integer, got {task.id!r}")
                continue
            if task.id in task_ids:
                issues.append(f"Duplicate task ID {task.id}")
            task_ids.add(task.id)
            issues.extend(f"Task {task.id}: {issue}" for issue in _field_type_issues(task))
            if task.priority is not None and not isinstance(task.priority, str):
                issues.append(f"Task {task.id}: priority must be a string")

            subtask_ids: set[int] = set()
            for subtask in task.subtasks:
                if not _is_positive_int(subtask.id):
                    issues.append(f"Task {task.id}: subtask id must be a positive integer, got {subtask.id!r}")
                    continue
                if subtask.id in subtask_ids:
                    issues.append(f"Duplicate subtask ID {task.id}.{subtask.id}")
                subtask_ids.add(subtask.id)
                issues.extend(
                    f"Subtask {task.id}.{subtask.id}: {issue}" for issue in _field_type_issues(subtask)
                )
                if subtask.priority is not None and not isinstance(subtask.priority, str):
                    issues.append(f"Subtask {task.id}.{subtask.id}: priority must be a string")
        return issues


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _field_type_issues(item: Union[Task, Subtask]) -> List[str]:
    fields = {
        "title": item.title,
        "description": item.description,
        "status": item.status,
        "details": item.details,
        "testStrategy": item.test_strategy,
    }
    return [f"{name} must be a string" for name, value in fields.items() if not isinstance(value, str)]
