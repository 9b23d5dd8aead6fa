"""Task store: load and persist the ``tasks.json`` document.

The whole document is rewritten on every save. Writes go to a sibling
temporary file that is then moved over the target, so an interrupted save
never leaves a truncated document behind. There is no locking: concurrent
writers are unsupported and the last writer wins.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ReadError, WriteError
from .models import TasksCollection, utc_timestamp

logger = logging.getLogger("lmtasker.store")

MINIMAL_VERSION = "0.1.0"
AUTO_INIT_MARKER = "add-task-auto-init"


def load_collection(path: Path | str) -> TasksCollection:
    """Load a tasks collection from ``path``.

    Raises ``ReadError`` with ``missing=True`` when the file does not exist,
    and ``missing=False`` when it exists but is not a valid tasks document.
    """
    tasks_path = Path(path)
    if not tasks_path.exists():
        raise ReadError(f"Tasks file not found at path: {tasks_path}", missing=True)

    try:
        raw = tasks_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ReadError(f"Could not read tasks file {tasks_path}: {e}") from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ReadError(f"No valid tasks found in {tasks_path}: invalid JSON ({e.msg} at line {e.lineno})") from e

    if not isinstance(data, dict) or not isinstance(data.get("tasks"), list):
        raise ReadError(f"No valid tasks found in {tasks_path}: expected an object with a 'tasks' array")
    if not isinstance(data.get("meta", {}), (dict, type(None))):
        raise ReadError(f"Tasks file {tasks_path} is corrupt: 'meta' must be an object")

    try:
        collection = TasksCollection.from_dict(data)
    except (KeyError, TypeError, AttributeError) as e:
        raise ReadError(f"No valid tasks found in {tasks_path}: malformed task entry ({e})") from e

    issues = collection.structural_issues()
    if issues:
        raise ReadError(f"Tasks file {tasks_path} is corrupt: {'; '.join(issues)}")

    logger.debug(f"Loaded {len(collection.tasks)} tasks from {tasks_path}")
    return collection


def serialize_collection(collection: TasksCollection) -> str:
    """Render the collection as stable, human-readable JSON."""
    return json.dumps(collection.to_dict(), indent=2, ensure_ascii=False) + "\n"


def save_collection(path: Path | str, collection: TasksCollection) -> Path:
    """Overwrite ``path`` with the full serialized collection."""
    tasks_path = Path(path)
    content = serialize_collection(collection)

    try:
        tasks_path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{tasks_path.name}.", suffix=".tmp", dir=str(tasks_path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(temp_name, tasks_path)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise WriteError(f"Could not write tasks file {tasks_path}: {e}") from e

    logger.debug(f"Saved {len(collection.tasks)} tasks to {tasks_path}")
    return tasks_path


def create_minimal_collection(
    project_name: Optional[str] = None,
    initialized_by: str = AUTO_INIT_MARKER,
) -> TasksCollection:
    """Create an empty collection with populated metadata."""
    now = utc_timestamp()
    meta: Dict[str, Any] = {
        "projectName": project_name or "lm-tasker-project",
        "version": MINIMAL_VERSION,
        "description": "A project managed with LM-Tasker",
        "createdAt": now,
        "updatedAt": now,
        "initializedBy": initialized_by,
    }
    return TasksCollection(meta=meta, tasks=[])
