"""LM-Tasker library exports."""

from .config import TaskerConfig
from .errors import ErrorKind, OperationResult, TaskerError
from .manager import TaskManager
from .models import Subtask, Task, TasksCollection
from .projection import FileProjector, NullProjector, generate_task_files
from .store import create_minimal_collection, load_collection, save_collection

__all__ = [
    "TaskerConfig",
    "ErrorKind",
    "OperationResult",
    "TaskerError",
    "TaskManager",
    "Subtask",
    "Task",
    "TasksCollection",
    "FileProjector",
    "NullProjector",
    "generate_task_files",
    "create_minimal_collection",
    "load_collection",
    "save_collection",
]

__version__ = "0.1.0"
