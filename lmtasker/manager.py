"""Task mutation operations for LM-Tasker.

Every operation follows the same cycle: load the tasks document, validate
the request against it, mutate the in-memory collection, persist it, then
regenerate the projection files. Expected failures never escape as
exceptions; they come back as ``OperationResult(success=False)`` with a
typed error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from . import dependencies as deps
from .config import TaskerConfig
from .errors import (
    CircularDependency,
    InvalidIdFormat,
    NotFound,
    OperationResult,
    ProjectionError,
    ReadError,
    TaskerError,
    ProtectedStateError,
    ValidationError,
    WriteError,
)
from .models import (
    DEFAULT_PRIORITY,
    PRIORITIES,
    TASK_STATUSES,
    DependencyRef,
    Subtask,
    Task,
    TasksCollection,
    utc_timestamp,
)
from .projection import FileProjector, NullProjector
from .resolver import (
    parse_task_id,
    resolve_id,
    resolve_subtask,
    resolve_task,
    split_id_list,
    task_view,
)
from .selection import eligible_tasks, filter_tasks, find_next_task, summarize
from .store import create_minimal_collection, load_collection, save_collection
from .tasker_logging import OperationHooks, get_logger, log_error_with_context, log_operation

IdList = Union[str, int, Sequence[Union[str, int]]]


@dataclass
class _Mutation:
    """Side effects gathered while one operation runs."""

    changed: bool = False
    initialized: bool = False
    removed_task_ids: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    events: List[Tuple[str, Dict[str, Any]]] = field(default_factory=list)
    error: Optional[TaskerError] = None
    projection_errors: List[ProjectionError] = field(default_factory=list)

    def emit(self, event_type: str, **data: Any) -> None:
        self.events.append((event_type, data))


def _id_values(value: Optional[IdList]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    return split_id_list(value)


def _require_text(value: Optional[str], label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} is required")
    return value.strip()


def _check_status(status: Optional[str]) -> str:
    normalized = (status or "").strip().lower()
    if normalized not in TASK_STATUSES:
        raise ValidationError(
            f"Invalid status value: {status!r}. Use one of: {', '.join(TASK_STATUSES)}"
        )
    return normalized


def _check_priority(priority: Optional[str], default: Optional[str]) -> Optional[str]:
    if priority is None or not str(priority).strip():
        return default
    normalized = str(priority).strip().lower()
    if normalized not in PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority!r}. Use one of: {', '.join(PRIORITIES)}")
    return normalized


def _update_block(text: str) -> str:
    return f"\n\n--- Updated {utc_timestamp()} ---\n{text}"


def _append_details(item: Union[Task, Subtask], text: str) -> None:
    block = _update_block(text)
    item.details = item.details + block if item.details else block.lstrip("\n")


class TaskManager:
    """Runs task operations against one ``tasks.json`` document."""

    def __init__(
        self,
        tasks_path: Union[Path, str],
        output_dir: Optional[Union[Path, str]] = None,
        projector: Optional[Any] = None,
        logger: Optional[logging.Logger] = None,
        hooks: Optional[OperationHooks] = None,
        config: Optional[TaskerConfig] = None,
    ):
        self.tasks_path = Path(tasks_path)
        self.logger = logger or get_logger("manager")
        self.hooks = hooks or OperationHooks(self.logger)
        self.default_priority = config.default_priority if config else DEFAULT_PRIORITY
        self.project_name = config.project_name if config else None

        if projector is None:
            target = output_dir or (config.output_dir if config else None) or self.tasks_path.parent
            projector = FileProjector(target, self.logger)
        self.projector = projector

    @classmethod
    def from_config(cls, config: TaskerConfig, **kwargs: Any) -> "TaskManager":
        return cls(config.tasks_file, output_dir=config.output_dir, config=config, **kwargs)

    @classmethod
    def without_projection(cls, tasks_path: Union[Path, str], **kwargs: Any) -> "TaskManager":
        """Manager that persists JSON but never touches projection files."""
        return cls(tasks_path, projector=NullProjector(), **kwargs)

    # ------------------------------------------------------------------
    # Operation plumbing
    # ------------------------------------------------------------------

    def _execute(
        self,
        operation: str,
        action: Callable[[TasksCollection, _Mutation], Dict[str, Any]],
        *,
        allow_missing: bool = False,
        **fields: Any,
    ) -> OperationResult:
        mutation = _Mutation()
        data: Dict[str, Any] = {}
        try:
            with log_operation(
                operation,
                logger=self.logger,
                expected_errors=(TaskerError,),
                tasks_path=str(self.tasks_path),
                **fields,
            ):
                collection = self._load(mutation, allow_missing)
                data = action(collection, mutation)
                if mutation.changed:
                    save_collection(self.tasks_path, collection)
                    self._project(collection, mutation)
        except TaskerError as e:
            log_error_with_context(
                e,
                {"operation": operation, "tasks_path": str(self.tasks_path), **fields},
                logger=self.logger,
                expected=not isinstance(e, (ReadError, WriteError)),
                error_code=e.kind.value,
            )
            return OperationResult.fail(e, warnings=mutation.warnings)

        for event_type, event_data in mutation.events:
            self.hooks.emit(event_type, **event_data)

        if mutation.projection_errors:
            data["projectionErrors"] = [error.to_dict() for error in mutation.projection_errors]
        if mutation.error is not None:
            self.logger.warning(f"{operation} finished with errors: {mutation.error.message}")
            return OperationResult.fail(mutation.error, data=data, warnings=mutation.warnings)
        return OperationResult.ok(data, warnings=mutation.warnings)

    def _load(self, mutation: _Mutation, allow_missing: bool) -> TasksCollection:
        try:
            return load_collection(self.tasks_path)
        except ReadError as e:
            if not (allow_missing and e.missing):
                raise

        self.logger.info(f"Tasks file not found at {self.tasks_path}; initializing a new project")
        try:
            self.tasks_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError(f"Could not create directory {self.tasks_path.parent}: {e}") from e

        mutation.changed = True
        mutation.initialized = True
        mutation.emit("project_initialized", tasks_path=str(self.tasks_path))
        return create_minimal_collection(self.project_name)

    def _project(self, collection: TasksCollection, mutation: _Mutation) -> None:
        for task_id in mutation.removed_task_ids:
            self._record_projection_errors(mutation, self.projector.remove(task_id).errors)
        report = self.projector.regenerate(collection)
        self._record_projection_errors(mutation, report.errors)
        mutation.emit(
            "files_generated",
            written=len(report.written),
            deleted=len(report.deleted),
            errors=len(report.errors),
        )

    def _record_projection_errors(self, mutation: _Mutation, messages: List[str]) -> None:
        # The JSON document is already saved; file failures never fail the operation.
        for message in messages:
            error = ProjectionError(message)
            self.logger.warning(f"Projection failed: {message}")
            mutation.projection_errors.append(error)
            mutation.warnings.append(message)

    def _encode_dependencies(
        self,
        collection: TasksCollection,
        owner_parent: Optional[Task],
        values: Optional[IdList],
        ignored: Optional[List[str]] = None,
    ) -> List[DependencyRef]:
        """Encode dependency ids for storage.

        Unknown ids raise ``NotFound`` unless an ``ignored`` list is given, in
        which case they are collected there and skipped.
        """
        encoded: List[DependencyRef] = []
        seen: set[str] = set()
        for value in _id_values(values):
            ref = parse_task_id(value)
            try:
                resolve_id(collection, ref)
            except NotFound:
                if ignored is None:
                    raise
                if str(ref) not in ignored:
                    ignored.append(str(ref))
                continue
            key = str(ref)
            if key in seen:
                continue
            seen.add(key)
            encoded.append(deps.encode_reference(owner_parent, key))
        return encoded

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def add_task(
        self,
        title: str,
        description: str,
        details: str = "",
        test_strategy: str = "",
        dependencies: Optional[IdList] = None,
        priority: Optional[str] = None,
    ) -> OperationResult:
        """Append a new task, creating the tasks document first if it does not exist.

        Dependency ids that do not resolve are skipped and reported as warnings.
        """

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            ignored: List[str] = []
            task = Task(
                id=collection.next_task_id(),
                title=_require_text(title, "Title"),
                description=_require_text(description, "Description"),
                priority=_check_priority(priority, self.default_priority),
                dependencies=self._encode_dependencies(collection, None, dependencies, ignored),
                details=details or "",
                test_strategy=test_strategy or "",
            )
            issues = task.validate()
            if issues:
                raise ValidationError("; ".join(issues))
            if ignored:
                message = f"Invalid dependencies ignored: {', '.join(ignored)}"
                self.logger.warning(message)
                mutation.warnings.append(message)

            collection.tasks.append(task)
            mutation.changed = True
            mutation.emit("task_added", task_id=task.id, title=task.title)
            return {
                "taskId": task.id,
                "task": task.to_dict(),
                "ignoredDependencies": ignored,
                "initialized": mutation.initialized,
                "message": f"Successfully added new task #{task.id}",
            }

        return self._execute("add_task", action, allow_missing=True, title=title)

    def add_subtask(
        self,
        parent_id: Union[str, int],
        title: Optional[str] = None,
        description: str = "",
        details: str = "",
        dependencies: Optional[IdList] = None,
        status: str = "pending",
        priority: Optional[str] = None,
        existing_task_id: Optional[Union[str, int]] = None,
    ) -> OperationResult:
        """Add a new subtask under ``parent_id``, or convert an existing task into one."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            parent = resolve_task(collection, parent_id)
            if existing_task_id is not None and str(existing_task_id).strip():
                subtask, converted = self._convert_task_to_subtask(collection, parent, existing_task_id, mutation)
            else:
                subtask_id = parent.next_subtask_id()
                subtask = Subtask(
                    id=subtask_id,
                    title=_require_text(title, "Title"),
                    description=description or "",
                    status=_check_status(status),
                    priority=_check_priority(priority, None),
                    dependencies=self._encode_dependencies(collection, parent, dependencies),
                    details=details or "",
                )
                deps.pin_task_references(parent, subtask_id)
                parent.subtasks.append(subtask)
                converted = None

            mutation.changed = True
            mutation.emit("subtask_added", parent_id=parent.id, subtask_id=subtask.id, converted_from=converted)
            subtask_key = f"{parent.id}.{subtask.id}"
            message = (
                f"Converted task {converted} into subtask {subtask_key}"
                if converted is not None
                else f"Added subtask {subtask_key}"
            )
            return {
                "parentId": parent.id,
                "subtaskId": subtask_key,
                "subtask": subtask.to_dict(),
                "convertedFrom": converted,
                "message": message,
            }

        return self._execute("add_subtask", action, parent_id=str(parent_id))

    def _convert_task_to_subtask(
        self,
        collection: TasksCollection,
        parent: Task,
        existing_task_id: Union[str, int],
        mutation: _Mutation,
    ) -> Tuple[Subtask, int]:
        ref = parse_task_id(existing_task_id)
        if ref.is_subtask:
            raise InvalidIdFormat(f"Only a top-level task can be converted into a subtask, got '{ref}'")
        if ref.task_id == parent.id:
            raise ValidationError(f"Task {parent.id} cannot become a subtask of itself")
        task = resolve_task(collection, ref)
        if task.subtasks:
            raise ValidationError(
                f"Task {task.id} has subtasks and cannot be converted; subtasks cannot be nested"
            )
        if deps.is_dependent_on(collection, str(parent.id), str(task.id)):
            raise CircularDependency(
                f"Cannot convert task {task.id} into a subtask of task {parent.id}: "
                f"task {parent.id} depends on task {task.id}"
            )

        old_key = str(task.id)
        subtask_id = parent.next_subtask_id()
        new_key = f"{parent.id}.{subtask_id}"

        sites = [
            site for site in deps.find_references(collection, {old_key}) if site.item is not task
        ]
        targets = [deps.resolve_reference(collection, None, dependency) for dependency in task.dependencies]

        collection.tasks.remove(task)
        deps.pin_task_references(parent, subtask_id)
        subtask = Subtask(
            id=subtask_id,
            title=task.title,
            description=task.description,
            status=task.status,
            priority=task.priority,
            details=task.details,
            test_strategy=task.test_strategy,
        )
        parent.subtasks.append(subtask)

        for dependency, target in zip(task.dependencies, targets):
            if target is None or target == old_key:
                mutation.warnings.append(f"Dropped invalid dependency {dependency} of converted task {task.id}")
                continue
            value = deps.encode_reference(parent, target)
            if value not in subtask.dependencies:
                subtask.dependencies.append(value)

        deps.rewrite_references(collection, sites, new_key)
        mutation.removed_task_ids.append(task.id)
        self.logger.info(f"Converted task {task.id} to subtask {new_key}")
        return subtask, task.id

    # ------------------------------------------------------------------
    # Detail updates
    # ------------------------------------------------------------------

    def _append(self, operation: str, item_id: Union[str, int], text: str, subtask_only: bool) -> OperationResult:
        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            content = _require_text(text, "Update text")
            ref = parse_task_id(item_id)
            if subtask_only and not ref.is_subtask:
                raise InvalidIdFormat(f"Subtask ID '{ref}' must be in format 'parentId.subtaskId'")
            resolved = resolve_id(collection, ref)

            label = "Subtask" if resolved.is_subtask else "Task"
            if resolved.item.is_completed():
                raise ProtectedStateError(
                    f"{label} {resolved.ref} is already marked as {resolved.item.status} and cannot be updated. "
                    f"Completed work is protected; change its status (e.g. to in-progress) first."
                )

            _append_details(resolved.item, content)
            mutation.changed = True
            mutation.emit("details_updated", item_id=str(resolved.ref))
            return {
                "id": str(resolved.ref),
                "item": resolved.item.to_dict(),
                "message": f"{label} {resolved.ref} updated",
            }

        return self._execute(operation, action, item_id=str(item_id))

    def update_task(self, task_id: Union[str, int], text: str) -> OperationResult:
        """Append timestamped text to a task's details (a ``P.S`` id updates that subtask)."""
        return self._append("update_task", task_id, text, subtask_only=False)

    def update_subtask(self, subtask_id: str, text: str) -> OperationResult:
        """Append timestamped text to a subtask's details."""
        return self._append("update_subtask", subtask_id, text, subtask_only=True)

    def update_tasks(self, from_id: Union[str, int], text: str) -> OperationResult:
        """Append the same text to every unfinished task with ``id >= from_id``."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            content = _require_text(text, "Update text")
            ref = parse_task_id(from_id)
            if ref.is_subtask:
                raise InvalidIdFormat(f"Expected a task ID but got subtask ID '{ref}'")

            updated: List[int] = []
            skipped: List[int] = []
            for task in collection.tasks:
                if task.id < ref.task_id:
                    continue
                if task.is_completed():
                    skipped.append(task.id)
                    continue
                _append_details(task, content)
                updated.append(task.id)

            if updated:
                mutation.changed = True
                mutation.emit("details_updated", item_ids=[str(task_id) for task_id in updated])
            return {
                "updated": updated,
                "skipped": skipped,
                "message": f"Updated {len(updated)} task(s) starting from ID {ref.task_id}",
            }

        return self._execute("update_tasks", action, from_id=str(from_id))

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def set_status(self, ids: IdList, status: str) -> OperationResult:
        """Set the status of one or more tasks/subtasks; ``done`` cascades to subtasks."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            new_status = _check_status(status)
            values = _id_values(ids)
            if not values:
                raise ValidationError("At least one task ID is required")

            updated: List[Dict[str, Any]] = []
            cascaded: List[str] = []
            failed: List[Dict[str, Any]] = []
            for value in values:
                try:
                    resolved = resolve_id(collection, value)
                except TaskerError as e:
                    failed.append({"id": value, "error": e.to_dict()})
                    if mutation.error is None:
                        mutation.error = e
                    continue

                old_status = resolved.item.status
                resolved.item.status = new_status
                updated.append({"id": str(resolved.ref), "oldStatus": old_status, "newStatus": new_status})
                mutation.emit(
                    "status_changed", item_id=str(resolved.ref), old_status=old_status, new_status=new_status
                )

                if new_status == "done" and not resolved.is_subtask:
                    for subtask in resolved.item.subtasks:
                        if subtask.status != "done":
                            subtask.status = "done"
                            cascaded.append(f"{resolved.item.id}.{subtask.id}")

            if not updated:
                raise mutation.error
            mutation.changed = True
            return {
                "updated": updated,
                "cascaded": cascaded,
                "failed": failed,
                "message": f"Set status to {new_status} for {len(updated)} item(s)",
            }

        return self._execute("set_status", action, ids=str(ids), status=status)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove_task(self, ids: IdList) -> OperationResult:
        """Remove tasks or subtasks and strip every dependency reference to them.

        Valid ids are removed and persisted even when other ids in the same
        batch fail; the result then reports ``success=False``.
        """

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            values = _id_values(ids)
            if not values:
                raise ValidationError("At least one task ID is required")

            failed: List[Dict[str, Any]] = []
            tasks: List[Task] = []
            subtasks: List[Tuple[Task, Subtask]] = []
            for value in values:
                try:
                    resolved = resolve_id(collection, value)
                except TaskerError as e:
                    failed.append({"id": value, "error": e.to_dict()})
                    if mutation.error is None:
                        mutation.error = e
                    continue
                if resolved.is_subtask:
                    pair = (resolved.parent, resolved.item)
                    if all(existing[1] is not resolved.item for existing in subtasks):
                        subtasks.append(pair)
                elif all(existing is not resolved.item for existing in tasks):
                    tasks.append(resolved.item)

            if not tasks and not subtasks:
                raise mutation.error

            # A subtask removed along with its parent is already covered.
            subtasks = [(parent, subtask) for parent, subtask in subtasks if parent not in tasks]
            keys = {str(task.id) for task in tasks}
            keys.update(f"{task.id}.{subtask.id}" for task in tasks for subtask in task.subtasks)
            keys.update(f"{parent.id}.{subtask.id}" for parent, subtask in subtasks)
            stripped = deps.strip_references(collection, keys)

            for parent, subtask in subtasks:
                parent.subtasks.remove(subtask)
            for task in tasks:
                collection.tasks.remove(task)
                mutation.removed_task_ids.append(task.id)

            mutation.changed = True
            mutation.emit(
                "task_removed",
                task_ids=[task.id for task in tasks],
                subtask_ids=[f"{parent.id}.{subtask.id}" for parent, subtask in subtasks],
                references_removed=stripped,
            )
            removed_count = len(tasks) + len(subtasks)
            return {
                "removedTasks": [task.to_dict() for task in tasks],
                "removedSubtasks": [
                    {"parentId": parent.id, **subtask.to_dict()} for parent, subtask in subtasks
                ],
                "dependencyReferencesRemoved": stripped,
                "failed": failed,
                "message": f"Removed {removed_count} item(s)",
            }

        return self._execute("remove_task", action, ids=str(ids))

    def remove_subtask(self, subtask_id: str, convert: bool = False) -> OperationResult:
        """Delete a subtask, or turn it into a new top-level task when ``convert`` is set."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            parent, subtask = resolve_subtask(collection, str(subtask_id))
            key = f"{parent.id}.{subtask.id}"

            if not convert:
                stripped = deps.strip_references(collection, {key})
                parent.subtasks.remove(subtask)
                mutation.changed = True
                mutation.emit("subtask_removed", subtask_id=key, references_removed=stripped)
                return {
                    "removed": subtask.to_dict(),
                    "convertedTo": None,
                    "dependencyReferencesRemoved": stripped,
                    "message": f"Removed subtask {key}",
                }

            new_id = collection.next_task_id()
            sites = [site for site in deps.find_references(collection, {key}) if site.item is not subtask]
            targets = [deps.resolve_reference(collection, parent, dependency) for dependency in subtask.dependencies]

            task = Task(
                id=new_id,
                title=subtask.title,
                description=subtask.description or subtask.title,
                status=subtask.status,
                priority=subtask.priority or self.default_priority,
                details=subtask.details,
                test_strategy=subtask.test_strategy,
            )
            for target in targets:
                if target is None:
                    continue
                # Dependencies on former siblings become a dependency on the old parent.
                if target.startswith(f"{parent.id}."):
                    target = str(parent.id)
                value = deps.encode_reference(None, target)
                if value not in task.dependencies:
                    task.dependencies.append(value)

            parent.subtasks.remove(subtask)
            collection.tasks.append(task)
            deps.rewrite_references(collection, sites, str(new_id))
            report = deps.validate_dependencies(collection)
            if not report.is_valid:
                mutation.warnings.extend(report.messages())

            mutation.changed = True
            mutation.emit("subtask_converted", subtask_id=key, task_id=new_id)
            return {
                "removed": subtask.to_dict(),
                "convertedTo": task.to_dict(),
                "message": f"Converted subtask {key} into task {new_id}",
            }

        return self._execute("remove_subtask", action, subtask_id=str(subtask_id), convert=convert)

    def clear_subtasks(self, ids: Optional[IdList] = None, all_tasks: bool = False) -> OperationResult:
        """Remove every subtask from the given tasks (or from all tasks)."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            if all_tasks:
                targets = list(collection.tasks)
            else:
                values = _id_values(ids)
                if not values:
                    raise ValidationError("Provide task IDs or set all_tasks")
                targets = [resolve_task(collection, value) for value in values]

            keys = {f"{task.id}.{subtask.id}" for task in targets for subtask in task.subtasks}
            stripped = deps.strip_references(collection, keys) if keys else 0

            cleared: List[Dict[str, int]] = []
            for task in targets:
                if task.subtasks:
                    cleared.append({"id": task.id, "count": len(task.subtasks)})
                    task.subtasks = []

            if cleared:
                mutation.changed = True
                mutation.emit("subtasks_cleared", task_ids=[entry["id"] for entry in cleared])
            return {
                "cleared": cleared,
                "dependencyReferencesRemoved": stripped,
                "message": f"Cleared subtasks from {len(cleared)} task(s)",
            }

        return self._execute("clear_subtasks", action, ids=str(ids), all_tasks=all_tasks)

    # ------------------------------------------------------------------
    # Reorganization
    # ------------------------------------------------------------------

    def move_task(self, source_id: Union[str, int], destination_id: Union[str, int]) -> OperationResult:
        """Move a task or subtask to a new position or parent without changing its id."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            source = parse_task_id(source_id)
            destination = parse_task_id(destination_id)
            if source == destination:
                raise ValidationError(f"Source and destination are the same: {source}")

            if not source.is_subtask:
                if destination.is_subtask:
                    raise ValidationError(
                        f"Cannot move task {source} into subtask position {destination}; "
                        f"use add_subtask with existing_task_id to convert a task into a subtask"
                    )
                task = resolve_task(collection, source)
                anchor = resolve_task(collection, destination)
                index = collection.tasks.index(anchor)
                collection.tasks.remove(task)
                collection.tasks.insert(index, task)
                new_key = str(task.id)
            else:
                parent, subtask = resolve_subtask(collection, source)
                target_parent = resolve_task(collection, destination.task_id)
                anchor = None
                if destination.is_subtask:
                    anchor = target_parent.get_subtask(destination.subtask_id)
                    if anchor is None:
                        raise ValidationError(f"Destination subtask {destination} does not exist")

                if target_parent is parent:
                    if anchor is None:
                        raise ValidationError(f"Subtask {source} already belongs to task {parent.id}")
                    index = parent.subtasks.index(anchor)
                    parent.subtasks.remove(subtask)
                    parent.subtasks.insert(index, subtask)
                    new_key = str(source)
                else:
                    new_key = self._relocate_subtask(collection, parent, subtask, target_parent, anchor)

            report = deps.validate_dependencies(collection)
            if not report.is_valid:
                mutation.warnings.extend(report.messages())

            mutation.changed = True
            mutation.emit("task_moved", source_id=str(source), destination_id=str(destination), new_id=new_key)
            return {
                "source": str(source),
                "destination": str(destination),
                "newId": new_key,
                "message": f"Moved {source} to {new_key}",
            }

        return self._execute(
            "move_task", action, source_id=str(source_id), destination_id=str(destination_id)
        )

    def _relocate_subtask(
        self,
        collection: TasksCollection,
        parent: Task,
        subtask: Subtask,
        target_parent: Task,
        anchor: Optional[Subtask],
    ) -> str:
        if target_parent.get_subtask(subtask.id) is not None:
            raise ValidationError(
                f"Task {target_parent.id} already has a subtask with ID {subtask.id}"
            )

        old_key = f"{parent.id}.{subtask.id}"
        new_key = f"{target_parent.id}.{subtask.id}"
        sites = [site for site in deps.find_references(collection, {old_key}) if site.item is not subtask]
        targets = [deps.resolve_reference(collection, parent, dependency) for dependency in subtask.dependencies]

        parent.subtasks.remove(subtask)
        deps.pin_task_references(target_parent, subtask.id)
        if anchor is None:
            target_parent.subtasks.append(subtask)
        else:
            target_parent.subtasks.insert(target_parent.subtasks.index(anchor), subtask)

        # Dangling entries are carried over unchanged and surface in validation.
        subtask.dependencies = [
            dependency if target is None else deps.encode_reference(target_parent, target)
            for dependency, target in zip(subtask.dependencies, targets)
        ]
        deps.rewrite_references(collection, sites, new_key)
        self.logger.info(f"Moved subtask {old_key} to {new_key}")
        return new_key

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(self, item_id: Union[str, int], depends_on: Union[str, int]) -> OperationResult:
        """Make ``item_id`` depend on ``depends_on``."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            stored = deps.add_dependency(collection, item_id, depends_on)
            mutation.changed = True
            mutation.emit("dependency_added", item_id=str(item_id), depends_on=str(depends_on))
            return {
                "id": str(parse_task_id(item_id)),
                "dependsOn": str(parse_task_id(depends_on)),
                "stored": stored,
                "message": f"Task {item_id} now depends on {depends_on}",
            }

        return self._execute("add_dependency", action, item_id=str(item_id), depends_on=str(depends_on))

    def remove_dependency(self, item_id: Union[str, int], depends_on: Union[str, int]) -> OperationResult:
        """Drop ``depends_on`` from ``item_id``'s dependencies."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            removed = deps.remove_dependency(collection, item_id, depends_on)
            mutation.changed = True
            mutation.emit("dependency_removed", item_id=str(item_id), depends_on=str(depends_on))
            return {
                "id": str(parse_task_id(item_id)),
                "dependsOn": str(parse_task_id(depends_on)),
                "removed": removed,
                "message": f"Removed dependency {depends_on} from {item_id}",
            }

        return self._execute(
            "remove_dependency", action, item_id=str(item_id), depends_on=str(depends_on)
        )

    def validate_dependencies(self) -> OperationResult:
        """Report every dependency issue without changing anything."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            report = deps.validate_dependencies(collection)
            data = report.to_dict()
            data["message"] = (
                "All dependencies are valid"
                if report.is_valid
                else f"Found {report.issue_count} dependency issue(s)"
            )
            return data

        return self._execute("validate_dependencies", action)

    def fix_dependencies(self) -> OperationResult:
        """Repair dependency issues; the document is only rewritten when something changed."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            summary = deps.fix_dependencies(collection)
            data = summary.to_dict()
            if summary.changed:
                mutation.changed = True
                mutation.emit(
                    "dependencies_fixed",
                    removed=len(summary.removed_edges),
                    tasks_fixed=summary.tasks_fixed,
                    subtasks_fixed=summary.subtasks_fixed,
                )
                data["message"] = f"Removed {len(summary.removed_edges)} invalid dependency entries"
            else:
                data["message"] = "No dependency issues found"
            data["remainingIssues"] = deps.validate_dependencies(collection).issue_count
            return data

        return self._execute("fix_dependencies", action)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def next_task(self) -> OperationResult:
        """Select the next task to work on."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            task = find_next_task(collection)
            if task is None:
                return {
                    "task": None,
                    "eligibleCount": 0,
                    "message": "No eligible tasks found. All tasks are done or blocked by dependencies.",
                }
            return {
                "task": task.to_dict(),
                "eligibleCount": len(eligible_tasks(collection)),
                "message": f"Next task: #{task.id} - {task.title}",
            }

        return self._execute("next_task", action)

    def get_task(self, item_id: Union[str, int], status_filter: Optional[str] = None) -> OperationResult:
        """Show one task or subtask, optionally filtering a task's subtasks by status."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            resolved = task_view(collection, item_id, status_filter)
            data: Dict[str, Any] = {
                "id": str(resolved.ref),
                "isSubtask": resolved.is_subtask,
                "item": resolved.item.to_dict(),
            }
            if resolved.is_subtask:
                data["parent"] = {
                    "id": resolved.parent.id,
                    "title": resolved.parent.title,
                    "status": resolved.parent.status,
                }
            if status_filter:
                data["statusFilter"] = status_filter
            return data

        return self._execute("get_task", action, item_id=str(item_id))

    def list_tasks(self, status_filter: Optional[str] = None, with_subtasks: bool = False) -> OperationResult:
        """List tasks with summary counts."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            tasks = []
            for task in filter_tasks(collection, status_filter):
                entry = task.to_dict()
                if not with_subtasks:
                    entry["subtasks"] = len(task.subtasks)
                tasks.append(entry)
            return {
                "tasks": tasks,
                "filter": status_filter,
                "summary": summarize(collection),
                "meta": dict(collection.meta),
            }

        return self._execute("list_tasks", action, status_filter=status_filter)

    def generate_files(self) -> OperationResult:
        """Regenerate every projection file from the tasks document."""

        def action(collection: TasksCollection, mutation: _Mutation) -> Dict[str, Any]:
            report = self.projector.regenerate(collection)
            self._record_projection_errors(mutation, report.errors)
            mutation.emit(
                "files_generated",
                written=len(report.written),
                deleted=len(report.deleted),
                errors=len(report.errors),
            )
            data = report.to_dict()
            data["message"] = f"Generated files for {len(collection.tasks)} task(s)"
            return data

        return self._execute("generate_files", action)
