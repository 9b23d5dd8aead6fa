"""Task selection ("next task") and read-only listing helpers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .dependencies import resolve_reference
from .models import ACTIVE_STATUSES, PRIORITIES, TASK_STATUSES, Task, TasksCollection, is_completed_status
from .resolver import resolve_id

logger = logging.getLogger("lmtasker.selection")

_PRIORITY_RANK = {priority: rank for rank, priority in enumerate(PRIORITIES)}


def priority_rank(priority: Optional[str]) -> int:
    """Lower is more urgent; unknown priorities sort after ``low``."""
    return _PRIORITY_RANK.get((priority or "").lower(), len(PRIORITIES))


def dependencies_satisfied(collection: TasksCollection, task: Task) -> bool:
    """Every dependency must name an existing item whose status is ``done``."""
    for dependency in task.dependencies:
        target_key = resolve_reference(collection, None, dependency)
        if target_key is None:
            return False
        if resolve_id(collection, target_key).item.status != "done":
            return False
    return True


def eligible_tasks(collection: TasksCollection) -> List[Task]:
    """Pending or in-progress tasks whose dependencies are all done."""
    return [
        task
        for task in collection.tasks
        if task.status in ACTIVE_STATUSES and dependencies_satisfied(collection, task)
    ]


def rank_key(task: Task) -> tuple:
    return priority_rank(task.priority), len(task.dependencies), task.id


def find_next_task(collection: TasksCollection) -> Optional[Task]:
    """Deterministically pick the task to work on next.

    Eligible tasks are ranked by priority (high first), then by fewest
    dependencies, then by lowest id. Returns ``None`` when nothing is
    eligible.
    """
    candidates = eligible_tasks(collection)
    if not candidates:
        logger.debug("No eligible task found")
        return None
    chosen = min(candidates, key=rank_key)
    logger.debug(f"Next task is {chosen.id} out of {len(candidates)} eligible")
    return chosen


def filter_tasks(collection: TasksCollection, status: Optional[str] = None) -> List[Task]:
    """Tasks in collection order, optionally restricted to one status."""
    if not status:
        return list(collection.tasks)
    wanted = status.strip().lower()
    return [task for task in collection.tasks if (task.status or "").lower() == wanted]


def summarize(collection: TasksCollection) -> Dict[str, Any]:
    """Counts by status and completion percentages for tasks and subtasks."""
    by_status: Dict[str, int] = {status: 0 for status in TASK_STATUSES}
    for task in collection.tasks:
        by_status[task.status] = by_status.get(task.status, 0) + 1

    total = len(collection.tasks)
    completed = sum(1 for task in collection.tasks if is_completed_status(task.status))
    subtasks = [subtask for task in collection.tasks for subtask in task.subtasks]
    subtasks_completed = sum(1 for subtask in subtasks if subtask.is_completed())

    return {
        "total": total,
        "completed": completed,
        "completionPercentage": round(completed / total * 100, 1) if total else 0.0,
        "byStatus": by_status,
        "subtasks": {
            "total": len(subtasks),
            "completed": subtasks_completed,
            "completionPercentage": round(subtasks_completed / len(subtasks) * 100, 1) if subtasks else 0.0,
        },
    }
