"""Unit tests for the dependency graph engine.

This module tests reference resolution, validation, cycle detection,
the fix pass and the single-edge add/remove operations.
"""

import copy

import pytest

from lmtasker.dependencies import (
    CYCLE,
    DANGLING,
    DUPLICATE,
    SELF,
    add_dependency,
    build_graph,
    encode_reference,
    find_cycles,
    fix_dependencies,
    is_dependent_on,
    pin_task_references,
    remove_dependency,
    resolve_reference,
    strip_references,
    validate_dependencies,
)
from lmtasker.errors import (
    CircularDependency,
    DependencyNotPresent,
    DuplicateDependency,
    NotFound,
    SelfDependency,
)
from lmtasker.models import Subtask, Task, TasksCollection


def make_collection(*tasks):
    return TasksCollection(meta={"projectName": "test"}, tasks=list(tasks))


def task(task_id, dependencies=None, subtasks=None, status="pending"):
    return Task(
        id=task_id,
        title=f"Task {task_id}",
        description=f"Description {task_id}",
        status=status,
        dependencies=list(dependencies or []),
        subtasks=list(subtasks or []),
    )


def subtask(subtask_id, dependencies=None, status="pending"):
    return Subtask(id=subtask_id, title=f"Subtask {subtask_id}", status=status, dependencies=list(dependencies or []))


class TestResolveReference:
    """Test cases for dependency reference resolution."""

    def test_task_references(self):
        """Ints and digit strings on tasks name tasks."""
        collection = make_collection(task(1), task(2, subtasks=[subtask(1)]))

        assert resolve_reference(collection, None, 1) == "1"
        assert resolve_reference(collection, None, "1") == "1"
        assert resolve_reference(collection, None, "2.1") == "2.1"
        assert resolve_reference(collection, None, 5) is None
        assert resolve_reference(collection, None, "2.7") is None

    def test_subtask_int_prefers_sibling(self):
        """A bare int on a subtask names a sibling when one exists."""
        parent = task(1, subtasks=[subtask(1), subtask(2)])
        collection = make_collection(parent, task(2), task(3))

        assert resolve_reference(collection, parent, 2) == "1.2"
        assert resolve_reference(collection, parent, "2") == "2"
        assert resolve_reference(collection, parent, 3) == "3"
        assert resolve_reference(collection, parent, 9) is None

    def test_unusable_entries_are_dangling(self):
        """Test that junk values never resolve."""
        collection = make_collection(task(1))

        assert resolve_reference(collection, None, True) is None
        assert resolve_reference(collection, None, "abc") is None
        assert resolve_reference(collection, None, None) is None

    def test_encode_reference(self):
        """Stored forms are chosen so they resolve back to the same key."""
        parent = task(1, subtasks=[subtask(1), subtask(2)])

        assert encode_reference(None, "3") == 3
        assert encode_reference(None, "1.2") == "1.2"
        assert encode_reference(parent, "1.2") == 2
        assert encode_reference(parent, "2") == "2"
        assert encode_reference(parent, "5") == 5
        assert encode_reference(parent, "4.1") == "4.1"


class TestValidateDependencies:
    """Test cases for validate_dependencies."""

    def test_clean_collection(self):
        """Test that a valid graph reports nothing."""
        collection = make_collection(task(1), task(2, [1]), task(3, [1, 2]))

        report = validate_dependencies(collection)

        assert report.is_valid
        assert report.issue_count == 0
        assert report.to_dict()["valid"] is True

    def test_dangling_reference(self):
        """Task 1 depending on 999 is reported as dangling."""
        collection = make_collection(task(1, [999]))

        report = validate_dependencies(collection)

        assert [(issue.item_id, issue.dependency) for issue in report.dangling_refs] == [("1", 999)]
        assert "Task 1 depends on non-existent task 999" in report.messages()

    def test_self_dependency(self):
        """Test that self references on tasks and subtasks are reported."""
        collection = make_collection(task(1, [1], subtasks=[subtask(1, ["1.1"])]))

        report = validate_dependencies(collection)

        assert {issue.item_id for issue in report.self_dependencies} == {"1", "1.1"}

    def test_duplicates(self):
        """Two stored forms naming the same task are a duplicate."""
        collection = make_collection(task(1), task(2, [1, "1"]))

        report = validate_dependencies(collection)

        assert [(issue.item_id, issue.dependency) for issue in report.duplicates] == [("2", "1")]

    def test_three_task_cycle(self):
        """A depends on B, B on C, C on A."""
        collection = make_collection(task(1, [2]), task(2, [3]), task(3, [1]))

        report = validate_dependencies(collection)

        assert report.cycles == [["1", "2", "3"]]
        assert set(report.cycles[0]) == {"1", "2", "3"}

    def test_all_issue_classes_reported_together(self):
        """The report is never short-circuited."""
        collection = make_collection(task(1, [2, 999]), task(2, [1, 2, 1]))

        report = validate_dependencies(collection)

        assert report.dangling_refs
        assert report.self_dependencies
        assert report.duplicates
        assert report.cycles

    def test_sibling_subtask_cycle(self):
        """Cycles are detected at subtask granularity."""
        collection = make_collection(task(1, subtasks=[subtask(1, [2]), subtask(2, [1])]))

        report = validate_dependencies(collection)

        assert report.cycles == [["1.1", "1.2"]]

    def test_cross_level_cycle(self):
        """A task and another task's subtask can form a cycle."""
        collection = make_collection(task(1, ["2.1"]), task(2, subtasks=[subtask(1, ["1"])]))

        report = validate_dependencies(collection)

        assert report.cycles == [["1", "2.1"]]


class TestFindCycles:
    """Test cases for find_cycles on raw graphs."""

    def test_overlapping_cycles(self):
        """Each back edge yields one canonical cycle."""
        graph = {"1": ["2"], "2": ["1", "3"], "3": ["2"]}

        assert find_cycles(graph) == [["1", "2"], ["2", "3"]]

    def test_acyclic_graph(self):
        """Test a diamond without cycles."""
        graph = {"1": ["2", "3"], "2": ["4"], "3": ["4"], "4": []}

        assert find_cycles(graph) == []

    def test_build_graph_skips_invalid_edges(self):
        """Dangling, self and duplicate entries are not edges."""
        collection = make_collection(task(1, [1, 2, 2, 77]), task(2))

        assert build_graph(collection) == {"1": ["2"], "2": []}


class TestFixDependencies:
    """Test cases for fix_dependencies."""

    def test_clean_collection_is_noop(self):
        """Fixing a valid collection changes nothing."""
        collection = make_collection(task(1), task(2, [1]))
        before = copy.deepcopy(collection)

        summary = fix_dependencies(collection)

        assert not summary.changed
        assert summary.tasks_fixed == 0
        assert summary.subtasks_fixed == 0
        assert collection == before

    def test_dangling_reference_removed(self):
        """999 is removed and a second validation is clean."""
        collection = make_collection(task(1, [999]))

        summary = fix_dependencies(collection)

        assert collection.get_task(1).dependencies == []
        assert summary.count(DANGLING) == 1
        assert summary.tasks_fixed == 1
        assert validate_dependencies(collection).is_valid

    def test_self_and_duplicate_removed(self):
        """Test self references and duplicates are removed, first occurrence kept."""
        collection = make_collection(task(1), task(2, [2, 1, "1"], subtasks=[subtask(1, ["1", "1"])]))

        summary = fix_dependencies(collection)

        assert collection.get_task(2).dependencies == [1]
        assert collection.get_task(2).subtasks[0].dependencies == ["1"]
        assert summary.count(SELF) == 1
        assert summary.count(DUPLICATE) == 2
        assert summary.tasks_fixed == 1
        assert summary.subtasks_fixed == 1

    def test_cycle_broken_at_highest_node(self):
        """The edge leaving the highest id in the cycle is removed."""
        collection = make_collection(task(1, [2]), task(2, [3]), task(3, [1]))

        summary = fix_dependencies(collection)

        assert collection.get_task(3).dependencies == []
        assert collection.get_task(1).dependencies == [2]
        assert collection.get_task(2).dependencies == [3]
        assert summary.count(CYCLE) == 1
        assert validate_dependencies(collection).cycles == []

    def test_overlapping_cycles_fixed(self):
        """Test that every overlapping cycle is broken."""
        collection = make_collection(task(1, [2]), task(2, [1, 3]), task(3, [2]))

        summary = fix_dependencies(collection)

        assert summary.count(CYCLE) == 2
        assert validate_dependencies(collection).is_valid

    def test_fix_is_idempotent(self):
        """A second fix pass finds nothing to change."""
        collection = make_collection(
            task(1, [2, 999]),
            task(2, [3, 3]),
            task(3, [1], subtasks=[subtask(1, [2]), subtask(2, [1])]),
        )

        fix_dependencies(collection)
        snapshot = copy.deepcopy(collection)
        second = fix_dependencies(collection)

        assert not second.changed
        assert collection == snapshot

    def test_fix_is_deterministic(self):
        """The same input always loses the same edges."""
        original = make_collection(task(1, [3]), task(2, [1]), task(3, [2, 4]), task(4, [1]))
        first = copy.deepcopy(original)
        second = copy.deepcopy(original)

        first_summary = fix_dependencies(first)
        second_summary = fix_dependencies(second)

        assert first_summary.to_dict() == second_summary.to_dict()
        assert first == second


class TestAddDependency:
    """Test cases for add_dependency."""

    def test_add_task_dependency(self):
        """Test appending a task dependency."""
        collection = make_collection(task(1), task(2))

        stored = add_dependency(collection, "2", "1")

        assert stored == 1
        assert collection.get_task(2).dependencies == [1]

    def test_self_dependency(self):
        """Test that an item cannot depend on itself."""
        collection = make_collection(task(1, subtasks=[subtask(1)]))

        with pytest.raises(SelfDependency):
            add_dependency(collection, "1", "1")
        with pytest.raises(SelfDependency):
            add_dependency(collection, "1.1", "1.1")

    def test_missing_ids(self):
        """Both ids must resolve."""
        collection = make_collection(task(1))

        with pytest.raises(NotFound):
            add_dependency(collection, "1", "5")
        with pytest.raises(NotFound):
            add_dependency(collection, "5", "1")

    def test_duplicate(self):
        """Test that an existing edge is rejected in any stored form."""
        collection = make_collection(task(1), task(2, ["1"]))

        with pytest.raises(DuplicateDependency):
            add_dependency(collection, "2", "1")

    def test_circular(self):
        """Test that a transitive cycle is rejected."""
        collection = make_collection(task(1, [2]), task(2, [3]), task(3))

        with pytest.raises(CircularDependency):
            add_dependency(collection, "3", "1")
        assert collection.get_task(3).dependencies == []

    def test_subtask_forms(self):
        """Subtask dependencies are stored in unambiguous forms."""
        parent = task(1, subtasks=[subtask(1), subtask(2)])
        collection = make_collection(parent, task(2, subtasks=[subtask(1)]))

        assert add_dependency(collection, "1.1", "1.2") == 2
        assert add_dependency(collection, "1.1", "2") == "2"
        assert add_dependency(collection, "1.1", "2.1") == "2.1"
        assert add_dependency(collection, "2", "1.2") == "1.2"
        assert validate_dependencies(collection).is_valid


class TestRemoveDependency:
    """Test cases for remove_dependency."""

    def test_remove(self):
        """Every stored form of the edge is removed."""
        collection = make_collection(task(1), task(2, [1, "1", 3]), task(3))

        removed = remove_dependency(collection, "2", "1")

        assert removed == [1, "1"]
        assert collection.get_task(2).dependencies == [3]

    def test_not_present(self):
        """Test removing an edge that does not exist."""
        collection = make_collection(task(1), task(2))

        with pytest.raises(DependencyNotPresent):
            remove_dependency(collection, "2", "1")

    def test_missing_item(self):
        """Test removing from an id that does not resolve."""
        collection = make_collection(task(1))

        with pytest.raises(NotFound):
            remove_dependency(collection, "4", "1")

    def test_sibling_form(self):
        """A sibling stored as a bare int is removed by its composite id."""
        collection = make_collection(task(1, subtasks=[subtask(1, [2]), subtask(2)]))

        remove_dependency(collection, "1.1", "1.2")

        assert collection.get_task(1).subtasks[0].dependencies == []


class TestReferenceMaintenance:
    """Test cases for dependency reference helpers used by structural edits."""

    def test_is_dependent_on(self):
        """Test transitive dependency detection."""
        collection = make_collection(task(1, [2]), task(2, [3]), task(3))

        assert is_dependent_on(collection, "1", "3")
        assert not is_dependent_on(collection, "3", "1")

    def test_strip_references(self):
        """Test removing every entry that points at given keys."""
        collection = make_collection(
            task(1, [3, "2.1"]),
            task(2, subtasks=[subtask(1, ["3"]), subtask(2, ["1"])]),
            task(3),
        )

        removed = strip_references(collection, {"3", "2.1"})

        assert removed == 3
        assert collection.get_task(1).dependencies == []
        assert collection.get_task(2).subtasks[0].dependencies == []
        assert collection.get_task(2).subtasks[1].dependencies == ["1"]

    def test_pin_task_references(self):
        """Bare ints that will collide with a new sibling become digit strings."""
        parent = task(1, subtasks=[subtask(1, [4, 2])])

        pinned = pin_task_references(parent, 4)

        assert pinned == 1
        assert parent.subtasks[0].dependencies == ["4", 2]
