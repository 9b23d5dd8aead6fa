"""Dependency graph engine.

Dependencies are directed "must be done before" edges. The graph used for
validation has one node per task (``"N"``) and one per subtask
(``"P.S"``), keyed by string id; edges are adjacency lists over those
keys, never object references.

Reference forms stored in a ``dependencies`` list:

* on a task: an ``int`` or digit string names a task, ``"P.S"`` names a
  subtask;
* on a subtask of parent ``P``: an ``int`` names sibling subtask ``P.int``
  when it exists and otherwise a task, a digit string always names a task,
  ``"Q.S"`` names a subtask.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple, Union

from .errors import (
    CircularDependency,
    DependencyNotPresent,
    DuplicateDependency,
    InvalidIdFormat,
    NotFound,
    SelfDependency,
)
from .models import DependencyRef, Subtask, Task, TasksCollection
from .resolver import TaskRef, parse_task_id, resolve_id

logger = logging.getLogger("lmtasker.dependencies")

_WHITE, _GRAY, _BLACK = 0, 1, 2

DANGLING = "dangling"
SELF = "self"
DUPLICATE = "duplicate"
CYCLE = "cycle"


# ----------------------------------------------------------------------
# Report types
# ----------------------------------------------------------------------


@dataclass(slots=True)
class DependencyIssue:
    """A single problem with one entry of a dependency list."""

    item_id: str
    dependency: DependencyRef
    kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {"itemId": self.item_id, "dependency": self.dependency, "kind": self.kind}


@dataclass(slots=True)
class DependencyReport:
    """Full validation result; every issue class is always computed."""

    dangling_refs: List[DependencyIssue] = field(default_factory=list)
    self_dependencies: List[DependencyIssue] = field(default_factory=list)
    duplicates: List[DependencyIssue] = field(default_factory=list)
    cycles: List[List[str]] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not (self.dangling_refs or self.self_dependencies or self.duplicates or self.cycles)

    @property
    def issue_count(self) -> int:
        return len(self.dangling_refs) + len(self.self_dependencies) + len(self.duplicates) + len(self.cycles)

    def messages(self) -> List[str]:
        """Human-readable description of each issue."""
        lines = []
        for issue in self.dangling_refs:
            lines.append(f"Task {issue.item_id} depends on non-existent task {issue.dependency}")
        for issue in self.self_dependencies:
            lines.append(f"Task {issue.item_id} depends on itself")
        for issue in self.duplicates:
            lines.append(f"Task {issue.item_id} lists dependency {issue.dependency} more than once")
        for cycle in self.cycles:
            lines.append("Circular dependency: " + " -> ".join(cycle + cycle[:1]))
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.is_valid,
            "issueCount": self.issue_count,
            "danglingRefs": [issue.to_dict() for issue in self.dangling_refs],
            "selfDependencies": [issue.to_dict() for issue in self.self_dependencies],
            "duplicates": [issue.to_dict() for issue in self.duplicates],
            "cycles": [list(cycle) for cycle in self.cycles],
            "messages": self.messages(),
        }


@dataclass(slots=True)
class RemovedEdge:
    item_id: str
    dependency: DependencyRef
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"itemId": self.item_id, "dependency": self.dependency, "reason": self.reason}


@dataclass(slots=True)
class FixSummary:
    """What a fix pass changed in the in-memory collection."""

    tasks_fixed: int = 0
    subtasks_fixed: int = 0
    removed_edges: List[RemovedEdge] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.removed_edges)

    def count(self, reason: str) -> int:
        return sum(1 for edge in self.removed_edges if edge.reason == reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tasksFixed": self.tasks_fixed,
            "subtasksFixed": self.subtasks_fixed,
            "removedEdges": [edge.to_dict() for edge in self.removed_edges],
            "danglingRemoved": self.count(DANGLING),
            "selfDependenciesRemoved": self.count(SELF),
            "duplicatesRemoved": self.count(DUPLICATE),
            "cycleEdgesRemoved": self.count(CYCLE),
        }


# ----------------------------------------------------------------------
# Reference resolution
# ----------------------------------------------------------------------


def item_key(parent: Optional[Task], item: Union[Task, Subtask]) -> str:
    """Graph key of a task (``"N"``) or subtask (``"P.S"``)."""
    if parent is None:
        return str(item.id)
    return f"{parent.id}.{item.id}"


def key_sort_order(key: str) -> Tuple[int, int]:
    task_part, _, sub_part = key.partition(".")
    return int(task_part), int(sub_part) if sub_part else 0


def iter_items(collection: TasksCollection) -> Iterator[Tuple[str, Optional[Task], Union[Task, Subtask]]]:
    """Yield ``(key, parent, item)`` for every task followed by its subtasks."""
    for task in collection.tasks:
        yield str(task.id), None, task
        for subtask in task.subtasks:
            yield f"{task.id}.{subtask.id}", task, subtask


def resolve_reference(
    collection: TasksCollection,
    owner_parent: Optional[Task],
    dependency: Any,
) -> Optional[str]:
    """Return the graph key a dependency entry points at, or ``None`` if dangling."""
    if isinstance(dependency, bool):
        return None
    if isinstance(dependency, int):
        if owner_parent is not None and owner_parent.get_subtask(dependency) is not None:
            return f"{owner_parent.id}.{dependency}"
        return str(dependency) if collection.get_task(dependency) is not None else None
    if not isinstance(dependency, str):
        return None
    try:
        ref = parse_task_id(dependency)
    except InvalidIdFormat:
        return None
    task = collection.get_task(ref.task_id)
    if task is None:
        return None
    if ref.is_subtask:
        return str(ref) if task.get_subtask(ref.subtask_id) is not None else None
    return str(ref.task_id)


def encode_reference(owner_parent: Optional[Task], target_key: str) -> DependencyRef:
    """Return the stored form of a reference to ``target_key`` from an item under ``owner_parent``."""
    ref = parse_task_id(target_key)
    if ref.is_subtask:
        if owner_parent is not None and owner_parent.id == ref.task_id:
            return ref.subtask_id
        return str(ref)
    if owner_parent is not None and owner_parent.get_subtask(ref.task_id) is not None:
        return str(ref.task_id)
    return ref.task_id


def build_graph(collection: TasksCollection) -> Dict[str, List[str]]:
    """Adjacency lists over resolvable, non-self, de-duplicated edges."""
    graph: Dict[str, List[str]] = {}
    for key, parent, item in iter_items(collection):
        edges: List[str] = []
        for dependency in item.dependencies:
            target = resolve_reference(collection, parent, dependency)
            if target is None or target == key or target in edges:
                continue
            edges.append(target)
        graph[key] = edges
    return graph


def find_cycles(graph: Dict[str, List[str]]) -> List[List[str]]:
    """Three-color DFS; each back edge into an in-progress node yields a cycle.

    Cycles are returned in dependency direction (each node depends on the
    next, the last on the first), rotated to start at the lowest key.
    """
    color = {node: _WHITE for node in graph}
    cycles: List[List[str]] = []
    seen: Set[Tuple[str, ...]] = set()

    for root in sorted(graph, key=key_sort_order):
        if color[root] != _WHITE:
            continue
        color[root] = _GRAY
        path = [root]
        stack = [(root, iter(graph[root]))]
        while stack:
            node, neighbors = stack[-1]
            advanced = False
            for neighbor in neighbors:
                state = color.get(neighbor, _BLACK)
                if state == _WHITE:
                    color[neighbor] = _GRAY
                    path.append(neighbor)
                    stack.append((neighbor, iter(graph[neighbor])))
                    advanced = True
                    break
                if state == _GRAY:
                    canonical = _canonical_cycle(path[path.index(neighbor):])
                    if canonical not in seen:
                        seen.add(canonical)
                        cycles.append(list(canonical))
            if not advanced:
                color[node] = _BLACK
                stack.pop()
                path.pop()

    return cycles


def _canonical_cycle(cycle: Sequence[str]) -> Tuple[str, ...]:
    start = min(range(len(cycle)), key=lambda idx: key_sort_order(cycle[idx]))
    return tuple(cycle[start:]) + tuple(cycle[:start])


def can_reach(graph: Dict[str, List[str]], start: str, target: str) -> bool:
    """Breadth-first reachability along dependency edges."""
    visited: Set[str] = set()
    queue = deque([start])
    while queue:
        current = queue.popleft()
        if current == target:
            return True
        if current in visited:
            continue
        visited.add(current)
        queue.extend(graph.get(current, []))
    return False


def is_dependent_on(collection: TasksCollection, item_id: Union[str, int], target_id: Union[str, int]) -> bool:
    """Check whether ``item_id`` depends on ``target_id`` directly or transitively."""
    source = str(parse_task_id(item_id))
    target = str(parse_task_id(target_id))
    graph = build_graph(collection)
    return any(can_reach(graph, neighbor, target) for neighbor in graph.get(source, []))


# ----------------------------------------------------------------------
# Validation and repair
# ----------------------------------------------------------------------


def validate_dependencies(collection: TasksCollection) -> DependencyReport:
    """Read-only pass reporting dangling, self, duplicate and cyclic dependencies."""
    report = DependencyReport()

    for key, parent, item in iter_items(collection):
        targets: List[str] = []
        for dependency in item.dependencies:
            target = resolve_reference(collection, parent, dependency)
            if target is None:
                report.dangling_refs.append(DependencyIssue(key, dependency, DANGLING))
            elif target == key:
                report.self_dependencies.append(DependencyIssue(key, dependency, SELF))
            elif target in targets:
                report.duplicates.append(DependencyIssue(key, dependency, DUPLICATE))
            else:
                targets.append(target)

    report.cycles = find_cycles(build_graph(collection))

    if report.is_valid:
        logger.debug("All dependencies are valid")
    else:
        logger.info(f"Found {report.issue_count} dependency issue(s)")
    return report


def fix_dependencies(collection: TasksCollection) -> FixSummary:
    """Remove dangling, self and duplicate entries, then break every cycle.

    Each cycle is broken by removing the edge leaving its highest-id node
    (ordered by task id, then subtask id). Detection and removal repeat
    until no cycle remains, so the result is a fixed point.
    """
    summary = FixSummary()
    touched: Set[str] = set()

    for key, parent, item in iter_items(collection):
        kept: List[DependencyRef] = []
        targets: List[str] = []
        for dependency in item.dependencies:
            target = resolve_reference(collection, parent, dependency)
            if target is None:
                reason = DANGLING
            elif target == key:
                reason = SELF
            elif target in targets:
                reason = DUPLICATE
            else:
                kept.append(dependency)
                targets.append(target)
                continue
            summary.removed_edges.append(RemovedEdge(key, dependency, reason))
            touched.add(key)
        item.dependencies = kept

    items = {key: (parent, item) for key, parent, item in iter_items(collection)}
    while True:
        cycles = find_cycles(build_graph(collection))
        if not cycles:
            break
        for cycle in cycles:
            source_index = max(range(len(cycle)), key=lambda idx: key_sort_order(cycle[idx]))
            source = cycle[source_index]
            target = cycle[(source_index + 1) % len(cycle)]
            parent, item = items[source]
            remaining = []
            for dependency in item.dependencies:
                if resolve_reference(collection, parent, dependency) == target:
                    summary.removed_edges.append(RemovedEdge(source, dependency, CYCLE))
                    touched.add(source)
                else:
                    remaining.append(dependency)
            item.dependencies = remaining

    summary.tasks_fixed = sum(1 for key in touched if "." not in key)
    summary.subtasks_fixed = sum(1 for key in touched if "." in key)

    if summary.changed:
        logger.info(
            f"Fixed dependencies: removed {len(summary.removed_edges)} edge(s) across "
            f"{summary.tasks_fixed} task(s) and {summary.subtasks_fixed} subtask(s)"
        )
    return summary


# ----------------------------------------------------------------------
# Single-edge operations
# ----------------------------------------------------------------------


def add_dependency(
    collection: TasksCollection,
    item_id: Union[str, int],
    depends_on: Union[str, int],
) -> DependencyRef:
    """Append ``depends_on`` to the dependency list of ``item_id``.

    Returns the stored form of the new entry.
    """
    item_ref = parse_task_id(item_id)
    target_ref = parse_task_id(depends_on)
    if item_ref == target_ref:
        raise SelfDependency(f"Task {item_ref} cannot depend on itself")

    resolved = resolve_id(collection, item_ref)
    try:
        resolve_id(collection, target_ref)
    except NotFound as e:
        raise NotFound(f"Dependency target {target_ref} does not exist: {e.message}") from e

    source_key = str(item_ref)
    target_key = str(target_ref)
    for dependency in resolved.item.dependencies:
        if resolve_reference(collection, resolved.parent, dependency) == target_key:
            raise DuplicateDependency(f"Task {source_key} already depends on {target_key}")

    graph = build_graph(collection)
    if can_reach(graph, target_key, source_key):
        raise CircularDependency(
            f"Cannot add dependency {target_key} to {source_key}: {target_key} already depends on {source_key}"
        )

    value = encode_reference(resolved.parent, target_key)
    resolved.item.dependencies.append(value)
    logger.debug(f"Added dependency {target_key} to {source_key}")
    return value


def remove_dependency(
    collection: TasksCollection,
    item_id: Union[str, int],
    depends_on: Union[str, int],
) -> List[DependencyRef]:
    """Remove every entry of ``item_id``'s dependencies that names ``depends_on``."""
    resolved = resolve_id(collection, item_id)
    target_ref = parse_task_id(depends_on)
    accepted = _stored_forms(resolved.parent, target_ref)

    removed = [dep for dep in resolved.item.dependencies if _matches(dep, accepted)]
    if not removed:
        raise DependencyNotPresent(f"Task {resolved.ref} does not depend on {target_ref}")

    resolved.item.dependencies = [dep for dep in resolved.item.dependencies if not _matches(dep, accepted)]
    logger.debug(f"Removed dependency {target_ref} from {resolved.ref}")
    return removed


def _stored_forms(owner_parent: Optional[Task], target: TaskRef) -> List[DependencyRef]:
    if target.is_subtask:
        forms: List[DependencyRef] = [str(target)]
        if owner_parent is not None and owner_parent.id == target.task_id:
            forms.append(target.subtask_id)
        return forms
    forms = [str(target.task_id)]
    if owner_parent is None or owner_parent.get_subtask(target.task_id) is None:
        forms.append(target.task_id)
    return forms


def _matches(dependency: Any, forms: List[DependencyRef]) -> bool:
    if isinstance(dependency, bool):
        return False
    if isinstance(dependency, str):
        dependency = dependency.strip()
    return any(type(dependency) is type(form) and dependency == form for form in forms)


# ----------------------------------------------------------------------
# Reference maintenance for structural edits
# ----------------------------------------------------------------------


@dataclass(slots=True)
class ReferenceSite:
    """Position of one dependency entry that points at a given key."""

    owner_key: str
    item: Union[Task, Subtask]
    index: int
    target_key: str


def find_references(collection: TasksCollection, target_keys: Set[str]) -> List[ReferenceSite]:
    """Locate every dependency entry resolving to one of ``target_keys``."""
    sites = []
    for key, parent, item in iter_items(collection):
        for index, dependency in enumerate(item.dependencies):
            target = resolve_reference(collection, parent, dependency)
            if target in target_keys:
                sites.append(ReferenceSite(key, item, index, target))
    return sites


def strip_references(collection: TasksCollection, target_keys: Set[str]) -> int:
    """Remove dependency entries pointing at ``target_keys``; return how many were removed."""
    sites = find_references(collection, target_keys)
    by_item: Dict[int, Tuple[Union[Task, Subtask], Set[int]]] = {}
    for site in sites:
        by_item.setdefault(id(site.item), (site.item, set()))[1].add(site.index)
    for item, indexes in by_item.values():
        item.dependencies = [dep for idx, dep in enumerate(item.dependencies) if idx not in indexes]
    return len(sites)


def owner_parent_of(collection: TasksCollection, owner_key: str) -> Optional[Task]:
    ref = parse_task_id(owner_key)
    return collection.get_task(ref.task_id) if ref.is_subtask else None


def rewrite_references(collection: TasksCollection, sites: List[ReferenceSite], new_key: str) -> int:
    """Point each collected reference site at ``new_key`` using the owner's stored form.

    Sites must have been collected before the structural edit; indexes stay
    valid because entries are replaced in place.
    """
    for site in sites:
        owner_parent = owner_parent_of(collection, site.owner_key)
        site.item.dependencies[site.index] = encode_reference(owner_parent, new_key)
    return len(sites)


def pin_task_references(parent: Task, subtask_id: int) -> int:
    """Turn bare ``subtask_id`` entries in ``parent``'s subtasks into digit strings.

    Must run before a subtask with that id joins ``parent``: those entries
    name task ``subtask_id`` today and would otherwise start naming the new
    sibling.
    """
    pinned = 0
    for subtask in parent.subtasks:
        for index, dependency in enumerate(subtask.dependencies):
            if type(dependency) is int and dependency == subtask_id:
                subtask.dependencies[index] = str(dependency)
                pinned += 1
    return pinned
