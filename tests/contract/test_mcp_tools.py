"""
Contract tests for the MCP tool surface.

Every tool takes project_root/file, returns a JSON-ready dict shaped as
{success, data, error, warnings}, and never raises for expected failures.
"""

import json

import pytest

import main


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep developer environment variables out of the tests."""
    for name in (
        "LMTASKER_PROJECT_ROOT",
        "LMTASKER_TASKS_FILE",
        "LMTASKER_OUTPUT_DIR",
        "LMTASKER_DEFAULT_PRIORITY",
        "LMTASKER_PROJECT_NAME",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project(tmp_path):
    return str(tmp_path)


class TestResultShape:
    """Contract tests for the result envelope."""

    def test_success_envelope(self, project):
        """
        Contract Test: successful tools return data and no error.

        Given: An empty project directory
        When: add_task is called
        Then: The result has success=True, data, error=None and a warnings list
        """
        result = main.add_task("First", "First task", project_root=project)

        assert set(result) == {"success", "data", "error", "warnings"}
        assert result["success"] is True
        assert result["error"] is None
        assert result["data"]["taskId"] == 1
        assert isinstance(result["warnings"], list)

    def test_failure_envelope(self, project):
        """
        Contract Test: expected failures come back as error codes.

        Given: A project with one task
        When: get_task is called for a missing id
        Then: The result carries the NOT_FOUND code and a message
        """
        main.add_task("First", "First task", project_root=project)

        result = main.get_task("9", project_root=project)

        assert result["success"] is False
        assert result["error"]["code"] == "NOT_FOUND"
        assert result["error"]["message"]

    def test_results_are_json_serializable(self, project):
        """Test that every result can be sent over the wire as JSON."""
        main.add_task("First", "First task", project_root=project)
        main.add_subtask("1", title="Sub", project_root=project)

        for result in (
            main.get_tasks(with_subtasks=True, project_root=project),
            main.get_task("1.1", project_root=project),
            main.generate(project_root=project),
            main.validate_dependencies(project_root=project),
        ):
            json.dumps(result)

    def test_missing_project_root(self, tmp_path):
        """
        Contract Test: a nonexistent project_root is a validation error.

        Given: A project_root that does not exist
        When: Any tool is called
        Then: VALIDATION_ERROR is returned and nothing is created
        """
        missing = tmp_path / "nope"

        result = main.add_task("Title", "Description", project_root=str(missing))

        assert result["error"]["code"] == "VALIDATION_ERROR"
        assert not missing.exists()

    def test_read_tool_without_document(self, project):
        """Test that queries report READ_ERROR instead of creating a document."""
        result = main.next_task(project_root=project)

        assert result["error"]["code"] == "READ_ERROR"


class TestToolParameters:
    """Contract tests for tool parameter handling."""

    def test_custom_file(self, tmp_path):
        """Test that a relative file is resolved against project_root."""
        result = main.add_task("Title", "Description", project_root=str(tmp_path), file="plans/backlog.json")

        assert result["success"]
        assert (tmp_path / "plans" / "backlog.json").exists()
        assert (tmp_path / "plans" / "task_001.txt").exists()

    def test_environment_project_root(self, tmp_path, monkeypatch):
        """Test the LMTASKER_PROJECT_ROOT fallback."""
        monkeypatch.setenv("LMTASKER_PROJECT_ROOT", str(tmp_path))

        main.add_task("Title", "Description")

        assert (tmp_path / "tasks" / "tasks.json").exists()

    def test_comma_separated_and_list_ids(self, project):
        """Test both id list forms for batch tools."""
        for index in range(3):
            main.add_task(f"Task {index}", "Batch", project_root=project)

        by_string = main.set_task_status("1,2", "done", project_root=project)
        by_list = main.set_task_status(["3"], "review", project_root=project)

        assert [entry["id"] for entry in by_string["data"]["updated"]] == ["1", "2"]
        assert by_list["data"]["updated"][0]["newStatus"] == "review"

    def test_dependency_tools(self, project):
        """Test the dependency tool error codes."""
        main.add_task("A", "First", project_root=project)
        main.add_task("B", "Second", dependencies="1", project_root=project)

        assert main.add_dependency("1", "2", project_root=project)["error"]["code"] == "CIRCULAR_DEPENDENCY"
        assert main.add_dependency("2", "2", project_root=project)["error"]["code"] == "SELF_DEPENDENCY"
        assert main.remove_dependency("1", "2", project_root=project)["error"]["code"] == "DEPENDENCY_NOT_PRESENT"
        assert main.remove_dependency("2", "1", project_root=project)["success"]

    def test_protected_update(self, project):
        """Test that done work cannot receive appended notes."""
        main.add_task("A", "First", project_root=project)
        main.set_task_status("1", "done", project_root=project)

        result = main.update_task("1", "late note", project_root=project)

        assert result["error"]["code"] == "PROTECTED_STATE"

    def test_add_subtask_conversion_parameter(self, project):
        """Test converting a task through the task_id parameter."""
        main.add_task("Parent", "P", project_root=project)
        main.add_task("Child", "C", project_root=project)

        result = main.add_subtask("1", task_id="2", project_root=project)

        assert result["data"]["subtaskId"] == "1.1"
        assert result["data"]["convertedFrom"] == 2
        assert [task["id"] for task in main.get_tasks(project_root=project)["data"]["tasks"]] == [1]

    def test_invalid_id(self, project):
        """Test malformed ids."""
        main.add_task("A", "First", project_root=project)

        assert main.get_task("1.x", project_root=project)["error"]["code"] == "INVALID_ID_FORMAT"


class TestTasksResource:
    """Contract tests for the tasks overview resource."""

    def test_overview(self, tmp_path, monkeypatch):
        """Test the text overview of configured tasks."""
        monkeypatch.setenv("LMTASKER_PROJECT_ROOT", str(tmp_path))
        main.add_task("Write docs", "Docs", priority="low")
        main.set_task_status("1", "done")

        text = main.resource_tasks()

        assert "1/1 tasks done" in text
        assert "#1 [done] (low) Write docs" in text

    def test_overview_without_document(self, tmp_path, monkeypatch):
        """Test the overview when nothing has been created yet."""
        monkeypatch.setenv("LMTASKER_PROJECT_ROOT", str(tmp_path))

        assert main.resource_tasks().startswith("No tasks available")
