"""Per-task text file projection of the tasks collection.

Every task is rendered to ``task_NNN.txt`` in the output directory. The
JSON document is the source of truth; these files are regenerated
wholesale and are not meant to be edited by hand. Stale projection files
(for tasks that no longer exist) are deleted, while any other file in the
directory is left alone.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .dependencies import resolve_reference
from .models import Subtask, Task, TasksCollection
from .resolver import resolve_id

logger = logging.getLogger("lmtasker.projection")

TASK_FILE_PATTERN = re.compile(r"^task_(?P<id>\d+)\.txt$")
DONE_MARK = "✅"
PENDING_MARK = "⏱️"


@dataclass(slots=True)
class ProjectionReport:
    """Outcome of one regeneration pass."""

    output_dir: Optional[Path] = None
    written: List[Path] = field(default_factory=list)
    unchanged: List[Path] = field(default_factory=list)
    deleted: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outputDir": str(self.output_dir) if self.output_dir else None,
            "written": [str(path) for path in self.written],
            "unchanged": [str(path) for path in self.unchanged],
            "deleted": [str(path) for path in self.deleted],
            "errors": list(self.errors),
        }


def task_file_name(task_id: int) -> str:
    return f"task_{task_id:03d}.txt"


def task_file_path(output_dir: Union[Path, str], task_id: int) -> Path:
    return Path(output_dir) / task_file_name(task_id)


def format_dependencies(
    collection: TasksCollection,
    dependencies: List[Any],
    owner_parent: Optional[Task] = None,
) -> str:
    """Render a dependency list with a done/pending marker per entry."""
    if not dependencies:
        return "None"
    parts = []
    for dependency in dependencies:
        target_key = resolve_reference(collection, owner_parent, dependency)
        if target_key is None:
            parts.append(f"{dependency} (not found)")
            continue
        target = resolve_id(collection, target_key).item
        mark = DONE_MARK if target.is_completed() else PENDING_MARK
        parts.append(f"{target_key} ({mark})")
    return ", ".join(parts)


def _render_subtask(collection: TasksCollection, task: Task, subtask: Subtask) -> List[str]:
    lines = [f"{subtask.id}. {subtask.title} - {subtask.description}".rstrip(" -")]
    lines.append(f"   Status: {subtask.status}")
    if subtask.priority:
        lines.append(f"   Priority: {subtask.priority}")
    lines.append(f"   Dependencies: {format_dependencies(collection, subtask.dependencies, task)}")
    if subtask.details:
        lines.append("   Details:")
        lines.extend(f"   {line}" if line else "" for line in subtask.details.splitlines())
    return lines


def render_task(collection: TasksCollection, task: Task) -> str:
    """Render the fixed text layout for one task and its subtasks."""
    lines = [
        f"# Task ID: {task.id}",
        f"# Title: {task.title}",
        f"# Status: {task.status}",
        f"# Dependencies: {format_dependencies(collection, task.dependencies)}",
        f"# Priority: {task.priority}",
        f"# Description: {task.description}",
        "# Details:",
        task.details,
        "",
        "# Test Strategy:",
        task.test_strategy,
    ]

    if task.subtasks:
        lines.extend(["", "# Subtasks:"])
        for subtask in task.subtasks:
            lines.extend(_render_subtask(collection, task, subtask))

    return "\n".join(lines).rstrip() + "\n"


def existing_task_files(output_dir: Path) -> List[Tuple[int, Path]]:
    """List (task id, path) for every file matching the projection naming pattern."""
    found: List[Tuple[int, Path]] = []
    if not output_dir.is_dir():
        return found
    for path in sorted(output_dir.iterdir()):
        match = TASK_FILE_PATTERN.match(path.name)
        if match and path.is_file():
            found.append((int(match.group("id")), path))
    return found


def generate_task_files(
    collection: TasksCollection,
    output_dir: Union[Path, str],
    log: Optional[logging.Logger] = None,
) -> ProjectionReport:
    """Reconcile ``output_dir`` with the collection.

    File-system failures are recorded in the report and logged; they never
    raise.
    """
    log = log or logger
    directory = Path(output_dir)
    report = ProjectionReport(output_dir=directory)

    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        message = f"Could not create output directory {directory}: {e}"
        log.warning(message)
        report.errors.append(message)
        return report

    live_ids = set(collection.task_ids())
    for task_id, path in existing_task_files(directory):
        if task_id in live_ids and path.name == task_file_name(task_id):
            continue
        try:
            path.unlink()
            report.deleted.append(path)
            log.debug(f"Deleted stale task file {path}")
        except OSError as e:
            message = f"Could not delete stale task file {path}: {e}"
            log.warning(message)
            report.errors.append(message)

    for task in collection.tasks:
        path = task_file_path(directory, task.id)
        content = render_task(collection, task)
        try:
            if path.exists() and path.read_text(encoding="utf-8") == content:
                report.unchanged.append(path)
                continue
            path.write_text(content, encoding="utf-8")
            report.written.append(path)
        except OSError as e:
            message = f"Could not write task file {path}: {e}"
            log.warning(message)
            report.errors.append(message)

    log.info(
        f"Generated task files in {directory}: {len(report.written)} written, "
        f"{len(report.unchanged)} unchanged, {len(report.deleted)} deleted"
    )
    return report


def delete_task_file(output_dir: Union[Path, str], task_id: int) -> Optional[Path]:
    """Delete one task's projection file if present; returns the deleted path."""
    path = task_file_path(output_dir, task_id)
    if not path.exists():
        return None
    path.unlink()
    return path


class FileProjector:
    """Regenerates projection files into a fixed directory."""

    def __init__(self, output_dir: Union[Path, str], log: Optional[logging.Logger] = None):
        self.output_dir = Path(output_dir)
        self.log = log or logger

    def regenerate(self, collection: TasksCollection) -> ProjectionReport:
        return generate_task_files(collection, self.output_dir, self.log)

    def remove(self, task_id: int) -> ProjectionReport:
        report = ProjectionReport(output_dir=self.output_dir)
        try:
            deleted = delete_task_file(self.output_dir, task_id)
        except OSError as e:
            message = f"Could not delete task file for task {task_id}: {e}"
            self.log.warning(message)
            report.errors.append(message)
            return report
        if deleted:
            report.deleted.append(deleted)
        return report


class NullProjector:
    """Projector that touches no files; used where only the JSON matters."""

    output_dir = None

    def regenerate(self, collection: TasksCollection) -> ProjectionReport:
        return ProjectionReport()

    def remove(self, task_id: int) -> ProjectionReport:
        return ProjectionReport()
