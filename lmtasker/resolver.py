"""Identifier parsing and resolution against a tasks collection.

External identifiers are either a bare task id (``"5"``) or a composite
``"parent.subtask"`` id (``"5.2"``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import List, Optional, Union

from .errors import InvalidIdFormat, NotFound
from .models import Subtask, Task, TasksCollection

_ID_PATTERN = re.compile(r"^\s*(?P<task>\d+)(?:\.(?P<sub>\d+))?\s*$")


@dataclass(frozen=True, slots=True)
class TaskRef:
    """A parsed task or subtask identifier."""

    task_id: int
    subtask_id: Optional[int] = None

    @property
    def is_subtask(self) -> bool:
        return self.subtask_id is not None

    def __str__(self) -> str:
        if self.subtask_id is None:
            return str(self.task_id)
        return f"{self.task_id}.{self.subtask_id}"


@dataclass(slots=True)
class ResolvedItem:
    """A resolved task or subtask, with its parent when it is a subtask."""

    ref: TaskRef
    item: Union[Task, Subtask]
    parent: Optional[Task] = None

    @property
    def is_subtask(self) -> bool:
        return self.parent is not None


def parse_task_id(value: Union[str, int]) -> TaskRef:
    """Parse ``"N"`` or ``"N.M"`` into a ``TaskRef``.

    Raises ``InvalidIdFormat`` for any other shape, including zero or
    negative ids.
    """
    if isinstance(value, bool):
        raise InvalidIdFormat(f"Invalid task ID format: {value!r}")
    if isinstance(value, int):
        if value <= 0:
            raise InvalidIdFormat(f"Invalid task ID: {value}. Task IDs must be positive integers.")
        return TaskRef(value)
    if not isinstance(value, str):
        raise InvalidIdFormat(f"Invalid task ID format: {value!r}")

    match = _ID_PATTERN.match(value)
    if not match:
        raise InvalidIdFormat(
            f"Invalid task ID format: '{value}'. Use a task ID like '5' or a subtask ID like '5.2'."
        )
    task_id = int(match.group("task"))
    subtask_id = int(match.group("sub")) if match.group("sub") is not None else None
    if task_id <= 0 or (subtask_id is not None and subtask_id <= 0):
        raise InvalidIdFormat(
            f"Invalid task ID: '{value}'. Both parent and subtask IDs must be positive numbers."
        )
    return TaskRef(task_id, subtask_id)


def split_id_list(value: Union[str, int]) -> List[str]:
    """Split a comma-separated id list, dropping empty entries."""
    return [part.strip() for part in str(value).split(",") if part.strip()]


def resolve_task(collection: TasksCollection, task_id: Union[str, int, TaskRef]) -> Task:
    """Resolve a top-level task id or raise ``NotFound``."""
    ref = task_id if isinstance(task_id, TaskRef) else parse_task_id(task_id)
    if ref.is_subtask:
        raise InvalidIdFormat(f"Expected a task ID but got subtask ID '{ref}'")
    task = collection.get_task(ref.task_id)
    if task is None:
        raise NotFound(f"Task with ID {ref.task_id} not found")
    return task


def resolve_subtask(collection: TasksCollection, subtask_id: Union[str, TaskRef]) -> tuple[Task, Subtask]:
    """Resolve ``"P.S"`` to ``(parent, subtask)`` or raise ``NotFound``."""
    ref = subtask_id if isinstance(subtask_id, TaskRef) else parse_task_id(subtask_id)
    if not ref.is_subtask:
        raise InvalidIdFormat(f"Subtask ID '{ref}' must be in format 'parentId.subtaskId'")
    parent = collection.get_task(ref.task_id)
    if parent is None:
        raise NotFound(f"Parent task with ID {ref.task_id} not found")
    subtask = parent.get_subtask(ref.subtask_id)
    if subtask is None:
        raise NotFound(f"Subtask with ID {ref} not found")
    return parent, subtask


def resolve_id(collection: TasksCollection, value: Union[str, int, TaskRef]) -> ResolvedItem:
    """Resolve any task or subtask identifier."""
    ref = value if isinstance(value, TaskRef) else parse_task_id(value)
    if ref.is_subtask:
        parent, subtask = resolve_subtask(collection, ref)
        return ResolvedItem(ref=ref, item=subtask, parent=parent)
    return ResolvedItem(ref=ref, item=resolve_task(collection, ref))


def task_view(
    collection: TasksCollection,
    value: Union[str, int, TaskRef],
    status_filter: Optional[str] = None,
) -> ResolvedItem:
    """Resolve an id for display, optionally filtering a task's subtasks by status.

    The returned task is a shallow copy; the stored collection is untouched.
    """
    resolved = resolve_id(collection, value)
    if resolved.is_subtask or not isinstance(status_filter, str) or not status_filter.strip():
        return resolved

    wanted = status_filter.strip().lower()
    task = resolved.item
    filtered = [subtask for subtask in task.subtasks if (subtask.status or "").lower() == wanted]
    return ResolvedItem(ref=resolved.ref, item=replace(task, subtasks=filtered))
