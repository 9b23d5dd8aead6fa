"""MCP server exposing LM-Tasker task management tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from mcp.server.fastmcp import FastMCP

from lmtasker import OperationResult, TaskerConfig, TaskManager
from lmtasker.errors import ValidationError
from lmtasker.tasker_logging import get_logger, setup_logging

mcp = FastMCP("lm-tasker")
logger = get_logger("server")

IdArg = Union[str, int, List[Union[str, int]]]


def _resolve_config(project_root: Optional[str], file: Optional[str]) -> TaskerConfig:
    if project_root:
        resolved = Path(project_root).expanduser().resolve()
        if not resolved.exists():
            raise ValidationError(f"Provided project_root '{project_root}' does not exist.")
    return TaskerConfig.from_env(project_root=project_root, tasks_file=file)


def _manager(project_root: Optional[str], file: Optional[str]) -> TaskManager:
    return TaskManager.from_config(_resolve_config(project_root, file), logger=logger)


def _run(
    project_root: Optional[str],
    file: Optional[str],
    call: Callable[[TaskManager], OperationResult],
) -> Dict[str, Any]:
    try:
        manager = _manager(project_root, file)
    except ValidationError as e:
        logger.error(f"Invalid tool arguments: {e.message}")
        return OperationResult.fail(e).to_dict()
    return call(manager).to_dict()


# ----------------------------------------------------------------------
# Queries
# ----------------------------------------------------------------------


@mcp.tool()
def get_tasks(
    status: Optional[str] = None,
    with_subtasks: bool = False,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """List tasks, optionally filtered by status, with completion summary counts."""

    return _run(project_root, file, lambda manager: manager.list_tasks(status, with_subtasks))


@mcp.tool()
def get_task(
    id: str,
    status: Optional[str] = None,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Show one task ('5') or subtask ('5.2'); status filters the task's subtasks."""

    return _run(project_root, file, lambda manager: manager.get_task(id, status))


@mcp.tool()
def next_task(project_root: Optional[str] = None, file: Optional[str] = None) -> Dict[str, Any]:
    """Find the next task to work on: pending or in-progress with all dependencies done,
    ranked by priority, then fewest dependencies, then lowest ID."""

    return _run(project_root, file, lambda manager: manager.next_task())


# ----------------------------------------------------------------------
# Mutations
# ----------------------------------------------------------------------


@mcp.tool()
def set_task_status(
    id: IdArg,
    status: str,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Set the status of one or more tasks or subtasks (comma-separated IDs).
    Setting a task to 'done' also marks all of its subtasks done."""

    return _run(project_root, file, lambda manager: manager.set_status(id, status))


@mcp.tool()
def generate(project_root: Optional[str] = None, file: Optional[str] = None) -> Dict[str, Any]:
    """Regenerate the individual task_NNN.txt files from tasks.json."""

    return _run(project_root, file, lambda manager: manager.generate_files())


@mcp.tool()
def add_task(
    title: str,
    description: str,
    details: str = "",
    test_strategy: str = "",
    dependencies: Optional[IdArg] = None,
    priority: Optional[str] = None,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Add a new task. Creates the tasks file (and its directory) when it does not exist yet."""

    return _run(
        project_root,
        file,
        lambda manager: manager.add_task(
            title,
            description,
            details=details,
            test_strategy=test_strategy,
            dependencies=dependencies,
            priority=priority,
        ),
    )


@mcp.tool()
def add_subtask(
    id: str,
    title: Optional[str] = None,
    description: str = "",
    details: str = "",
    dependencies: Optional[IdArg] = None,
    status: str = "pending",
    priority: Optional[str] = None,
    task_id: Optional[str] = None,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Add a subtask to parent task `id`, or convert existing task `task_id` into one."""

    return _run(
        project_root,
        file,
        lambda manager: manager.add_subtask(
            id,
            title=title,
            description=description,
            details=details,
            dependencies=dependencies,
            status=status,
            priority=priority,
            existing_task_id=task_id,
        ),
    )


@mcp.tool()
def update(
    from_id: str,
    prompt: str,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Append timestamped notes to every unfinished task with ID >= from_id."""

    return _run(project_root, file, lambda manager: manager.update_tasks(from_id, prompt))


@mcp.tool()
def update_task(
    id: str,
    prompt: str,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Append timestamped notes to a task's details. Done tasks are protected."""

    return _run(project_root, file, lambda manager: manager.update_task(id, prompt))


@mcp.tool()
def update_subtask(
    id: str,
    prompt: str,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Append timestamped notes to a subtask ('5.2'). Done subtasks are protected."""

    return _run(project_root, file, lambda manager: manager.update_subtask(id, prompt))


@mcp.tool()
def remove_task(
    id: IdArg,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Remove tasks or subtasks (comma-separated IDs) and every dependency reference to them."""

    return _run(project_root, file, lambda manager: manager.remove_task(id))


@mcp.tool()
def remove_subtask(
    id: str,
    convert: bool = False,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Remove a subtask, or convert it into a standalone task when convert is true."""

    return _run(project_root, file, lambda manager: manager.remove_subtask(id, convert=convert))


@mcp.tool()
def clear_subtasks(
    id: Optional[IdArg] = None,
    all_tasks: bool = False,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Remove all subtasks from the given tasks, or from every task when all_tasks is true."""

    return _run(project_root, file, lambda manager: manager.clear_subtasks(id, all_tasks=all_tasks))


@mcp.tool()
def move_task(
    from_id: str,
    to_id: str,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Move a task or subtask to another position or parent. IDs are preserved."""

    return _run(project_root, file, lambda manager: manager.move_task(from_id, to_id))


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------


@mcp.tool()
def add_dependency(
    id: str,
    depends_on: str,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Make task/subtask `id` depend on `depends_on`. Self, duplicate and circular links are rejected."""

    return _run(project_root, file, lambda manager: manager.add_dependency(id, depends_on))


@mcp.tool()
def remove_dependency(
    id: str,
    depends_on: str,
    project_root: Optional[str] = None,
    file: Optional[str] = None,
) -> Dict[str, Any]:
    """Remove `depends_on` from the dependencies of task/subtask `id`."""

    return _run(project_root, file, lambda manager: manager.remove_dependency(id, depends_on))


@mcp.tool()
def validate_dependencies(project_root: Optional[str] = None, file: Optional[str] = None) -> Dict[str, Any]:
    """Report dangling, self, duplicate and circular dependencies without changing anything."""

    return _run(project_root, file, lambda manager: manager.validate_dependencies())


@mcp.tool()
def fix_dependencies(project_root: Optional[str] = None, file: Optional[str] = None) -> Dict[str, Any]:
    """Remove invalid dependencies and break cycles, then regenerate task files."""

    return _run(project_root, file, lambda manager: manager.fix_dependencies())


@mcp.resource("lm-tasker://tasks")
def resource_tasks() -> str:
    """Text overview of the tasks in the configured project."""

    result = _manager(None, None).list_tasks()
    if not result.success:
        return f"No tasks available: {result.message}"

    tasks = result.data["tasks"]
    if not tasks:
        return "No tasks have been added yet."

    summary = result.data["summary"]
    lines = [f"LM-Tasker: {summary['completed']}/{summary['total']} tasks done ({summary['completionPercentage']}%)"]
    for task in tasks:
        lines.append(f"- #{task['id']} [{task['status']}] ({task['priority']}) {task['title']}")
    return "\n".join(lines)


def main() -> None:
    setup_logging(os.getenv(TaskerConfig.LOG_LEVEL_ENV, "INFO").upper())
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
