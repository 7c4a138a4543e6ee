"""Tests for the connection check and the self-test and performance tools."""

import json

import pytest

from todoist_mcp.dry_run import DryRunClient
from todoist_mcp.errors import AuthenticationError, TodoistAPIError, ValidationError
from todoist_mcp.tools.generic_tools import (
    FeatureSelfTest,
    check_connection,
    measure_performance,
    run_basic_checks,
    todoist_test_all_features,
    todoist_test_connection,
    todoist_test_performance,
)


async def rejected(*args, **kwargs):
    raise AuthenticationError()


class TestConnectionCheck:
    async def test_success_reports_projects_and_cache(self, installed_client):
        result = json.loads(await todoist_test_connection())

        assert result["status"] == "success"
        assert result["project_count"] == 2
        assert result["dry_run"] is False
        assert result["response_time_ms"] >= 0
        assert result["cache"]["total_hits"] == 0

    async def test_bypasses_the_projects_cache(self, client, caches):
        await check_connection(client, caches)
        await check_connection(client, caches)
        assert client.calls["get_projects"] == 2

    async def test_failure_is_reported_not_raised(self, client, caches, monkeypatch):
        monkeypatch.setattr(client, "get_projects", rejected)
        result = await check_connection(client, caches)

        assert result["status"] == "error"
        assert result["error"] == "Invalid or missing Todoist API token"
        assert result["error_code"] == "AUTHENTICATION_ERROR"

    async def test_requires_initialized_client(self):
        assert await todoist_test_connection() == "Error [TOOL_ERROR]: Todoist client not initialized."


# ============================================================================
# Read-only feature checks
# ============================================================================


class TestBasicChecks:
    async def test_every_area_passes(self, installed_client):
        result = json.loads(await todoist_test_all_features())

        assert result["mode"] == "basic"
        assert result["overall_status"] == "success"
        assert (result["total_tests"], result["passed"], result["failed"]) == (5, 5, 0)
        by_feature = {f["feature"]: f for f in result["features"]}
        assert by_feature["Task Operations"]["details"] == {"task_count": 6, "sample_task": "Launch website"}
        assert by_feature["Project Operations"]["details"]["sample_project"] == "Inbox"
        assert by_feature["Label Operations"]["message"] == "Retrieved 2 labels"
        assert by_feature["Section Operations"]["details"] == {"section_count": 0, "project_id": "inbox"}
        assert by_feature["Comment Operations"]["details"]["task_id"] == "p"

    async def test_checks_never_write(self, client):
        await run_basic_checks(client)
        for name in ("add_task", "update_task", "delete_task", "add_label", "delete_label"):
            assert client.calls[name] == 0

    async def test_one_failing_area_is_partial(self, client, monkeypatch):
        monkeypatch.setattr(client, "get_labels", rejected)
        result = await run_basic_checks(client)

        assert result["overall_status"] == "partial"
        assert (result["passed"], result["failed"]) == (4, 1)
        failed = [f for f in result["features"] if f["status"] == "error"]
        assert failed[0]["feature"] == "Label Operations"
        assert failed[0]["message"] == "Invalid or missing Todoist API token"

    async def test_everything_failing_is_an_error(self, client, monkeypatch):
        for name in ("get_tasks", "get_projects", "get_labels"):
            monkeypatch.setattr(client, name, rejected)
        result = await run_basic_checks(client)
        assert result["overall_status"] == "error"
        assert result["failed"] == 5

    async def test_empty_account(self, client):
        client.tasks.clear()
        client.projects.clear()
        result = await run_basic_checks(client)

        by_feature = {f["feature"]: f for f in result["features"]}
        assert by_feature["Section Operations"]["message"] == "No projects available to check sections"
        assert by_feature["Comment Operations"]["message"] == "No tasks available to check comments"
        assert by_feature["Task Operations"]["details"]["sample_task"] == "No tasks found"

    async def test_unknown_mode(self, installed_client):
        result = await todoist_test_all_features(mode="thorough")
        assert result == "Error [VALIDATION_ERROR]: Validation error for field 'mode': must be one of: basic, enhanced"


# ============================================================================
# Create/update/delete self-test
# ============================================================================


class TestEnhancedSelfTest:
    async def test_all_suites_pass_and_clean_up(self, client, caches):
        task_ids, label_ids = set(client.tasks), set(client.labels)
        result = await FeatureSelfTest(client, caches, stamp="20240601").run()

        assert result["overall_status"] == "success"
        assert (result["passed"], result["failed"], result["skipped"]) == (19, 0, 0)
        assert [s["suite"] for s in result["suites"]] == [
            "Task Operations",
            "Subtask Operations",
            "Label Operations",
            "Bulk Operations",
        ]
        assert set(client.tasks) == task_ids
        assert set(client.labels) == label_ids

    async def test_failed_create_skips_dependent_steps(self, client, caches):
        client.failing_contents.add("MCP self-test task 20240601")
        result = await FeatureSelfTest(client, caches, stamp="20240601").run()

        task_suite = result["suites"][0]
        statuses = [(t["tool"], t["status"]) for t in task_suite["tests"]]
        assert statuses == [
            ("todoist_task_create", "error"),
            ("todoist_task_get", "success"),
            ("todoist_task_update", "skipped"),
            ("todoist_task_complete", "skipped"),
            ("todoist_task_delete", "skipped"),
        ]
        assert task_suite["tests"][0]["error"] == "Todoist API error: 400 rejected"
        assert result["overall_status"] == "partial"

    async def test_dry_run_touches_nothing(self, client, caches):
        before = {k: dict(v) for k, v in client.tasks.items()}
        result = await FeatureSelfTest(DryRunClient(client), caches, stamp="20240601").run()

        assert result["dry_run"] is True
        assert (result["passed"], result["failed"], result["skipped"]) == (7, 0, 11)
        assert {k: dict(v) for k, v in client.tasks.items()} == before
        assert client.calls["add_task"] == 0

    async def test_enhanced_tool(self, installed_client):
        result = json.loads(await todoist_test_all_features(mode=" Enhanced "))
        assert result["mode"] == "enhanced"
        assert result["failed"] == 0


# ============================================================================
# Performance
# ============================================================================


class TestPerformance:
    async def test_times_each_request(self, client):
        result = await measure_performance(client, iterations=3)

        assert result["iterations"] == 3
        assert [r["operation"] for r in result["results"]] == ["get_projects", "get_tasks"] * 3
        assert client.calls["get_projects"] == 3
        assert client.calls["get_tasks"] == 3
        assert result["min_response_time_ms"] <= result["average_response_time_ms"] <= result["max_response_time_ms"]

    async def test_default_iterations(self, installed_client):
        result = json.loads(await todoist_test_performance())
        assert len(result["results"]) == 10

    @pytest.mark.parametrize("iterations", [0, 51, 2.5, True])
    async def test_invalid_iterations(self, client, iterations):
        with pytest.raises(ValidationError) as excinfo:
            await measure_performance(client, iterations=iterations)
        assert excinfo.value.field == "iterations"

    async def test_api_errors_are_reported(self, installed_client, monkeypatch):
        async def unavailable():
            raise TodoistAPIError("503 unavailable", status_code=503)

        monkeypatch.setattr(installed_client, "get_tasks", unavailable)
        result = await todoist_test_performance(iterations=1)
        assert result.startswith("Error [")
        assert "503 unavailable" in result
