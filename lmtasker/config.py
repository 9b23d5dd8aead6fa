"""Configuration for LM-Tasker.

Defaults mirror a fresh project layout (``tasks/tasks.json`` under the
project root) and may be overridden through ``LMTASKER_*`` environment
variables.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from .models import DEFAULT_PRIORITY, PRIORITIES

logger = logging.getLogger("lmtasker.config")

DEFAULT_TASKS_FILE = Path("tasks") / "tasks.json"
DEFAULT_PROJECT_NAME = "lm-tasker-project"


@dataclass(slots=True)
class TaskerConfig:
    """Resolved runtime configuration."""

    project_root: Path
    tasks_file: Path
    output_dir: Path
    default_priority: str = DEFAULT_PRIORITY
    project_name: str = DEFAULT_PROJECT_NAME
    log_level: str = "INFO"

    PROJECT_ROOT_ENV = "LMTASKER_PROJECT_ROOT"
    TASKS_FILE_ENV = "LMTASKER_TASKS_FILE"
    OUTPUT_DIR_ENV = "LMTASKER_OUTPUT_DIR"
    DEFAULT_PRIORITY_ENV = "LMTASKER_DEFAULT_PRIORITY"
    PROJECT_NAME_ENV = "LMTASKER_PROJECT_NAME"
    LOG_LEVEL_ENV = "LMTASKER_LOG_LEVEL"

    @classmethod
    def from_env(
        cls,
        project_root: Optional[str] = None,
        tasks_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "TaskerConfig":
        """Build configuration from explicit arguments, then environment, then defaults."""
        env = os.environ if environ is None else environ

        root_value = project_root or env.get(cls.PROJECT_ROOT_ENV)
        root = Path(root_value).expanduser() if root_value else Path.cwd()
        root = root.resolve()

        file_value = tasks_file or env.get(cls.TASKS_FILE_ENV)
        tasks_path = Path(file_value).expanduser() if file_value else DEFAULT_TASKS_FILE
        if not tasks_path.is_absolute():
            tasks_path = root / tasks_path

        output_value = env.get(cls.OUTPUT_DIR_ENV)
        if output_value:
            output_dir = Path(output_value).expanduser()
            if not output_dir.is_absolute():
                output_dir = root / output_dir
        else:
            output_dir = tasks_path.parent

        priority = (env.get(cls.DEFAULT_PRIORITY_ENV) or DEFAULT_PRIORITY).lower()
        if priority not in PRIORITIES:
            logger.warning(
                f"Invalid default priority '{priority}' in {cls.DEFAULT_PRIORITY_ENV}; using '{DEFAULT_PRIORITY}'"
            )
            priority = DEFAULT_PRIORITY

        return cls(
            project_root=root,
            tasks_file=tasks_path,
            output_dir=output_dir,
            default_priority=priority,
            project_name=env.get(cls.PROJECT_NAME_ENV) or DEFAULT_PROJECT_NAME,
            log_level=(env.get(cls.LOG_LEVEL_ENV) or "INFO").upper(),
        )
