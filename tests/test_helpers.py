"""Tests for response normalization, priority mapping, lookup and formatting helpers."""

import json

import pytest

from fakes import FakeTodoistClient, make_task
from todoist_mcp.errors import (
    AuthenticationError,
    TaskNotFoundError,
    TodoistAPIError,
    ValidationError,
    describe_error,
)
from todoist_mcp.helpers import (
    ALL_TASKS_KEY,
    create_cache_key,
    dry_run_prefix,
    extract_array_from_response,
    find_task,
    format_error,
    format_response,
    format_task_for_display,
    from_api_priority,
    get_all_tasks,
    get_due_date,
    percentage,
    to_api_priority,
)
from todoist_mcp.models import Task


class TestExtractArrayFromResponse:
    def test_bare_list_is_returned_unchanged(self):
        items = [{"id": "1"}]
        assert extract_array_from_response(items) is items

    def test_results_envelope(self):
        assert extract_array_from_response({"results": [1, 2], "next_cursor": None}) == [1, 2]

    def test_data_envelope(self):
        assert extract_array_from_response({"data": [3]}) == [3]

    @pytest.mark.parametrize("response", [None, "text", 42, {}, {"results": "nope"}, {"items": [1]}, True])
    def test_unrecognised_shapes_give_empty_list(self, response):
        assert extract_array_from_response(response) == []


class TestPriorityMapping:
    @pytest.mark.parametrize("user, api", [(1, 4), (2, 3), (3, 2), (4, 1)])
    def test_user_and_api_scales_are_inverted(self, user, api):
        assert to_api_priority(user) == api
        assert from_api_priority(api) == user

    @pytest.mark.parametrize("value", [None, 0, 5, True, "1"])
    def test_out_of_range_maps_to_none(self, value):
        assert to_api_priority(value) is None
        assert from_api_priority(value) is None


class TestPercentage:
    @pytest.mark.parametrize(
        "part, whole, expected",
        [(1, 3, 33), (2, 3, 67), (1, 2, 50), (1, 8, 13), (5, 8, 63), (0, 4, 0), (4, 4, 100), (3, 0, 0)],
    )
    def test_rounds_half_up(self, part, whole, expected):
        assert percentage(part, whole) == expected


class TestFormatting:
    def test_format_task_for_display(self):
        task = Task.from_api(
            make_task(
                "42",
                "Pay rent",
                description="Transfer to landlord",
                due={"string": "every 1st", "date": "2024-07-01"},
                deadline={"date": "2024-07-03"},
                priority=4,
                labels=["home", "money"],
            )
        )
        assert format_task_for_display(task) == "\n".join([
            "- Pay rent (ID: 42)",
            "  Description: Transfer to landlord",
            "  Due: every 1st (2024-07-01)",
            "  Deadline: 2024-07-03",
            "  Priority: 1",
            "  Labels: home, money",
        ])

    def test_format_task_for_display_minimal_dict(self):
        assert format_task_for_display({"id": "7", "content": "Call mom", "priority": 1}) == "- Call mom (ID: 7)\n  Priority: 4"

    def test_get_due_date_prefers_date_part(self):
        assert get_due_date({"date": "2024-05-06T10:00:00"}) == "2024-05-06"
        assert get_due_date({"datetime": "2024-05-07T10:00:00Z"}) == "2024-05-07"
        assert get_due_date(None) is None

    def test_create_cache_key_ignores_none_and_order(self):
        assert create_cache_key("tasks", {"b": 2, "a": 1, "c": None}) == create_cache_key("tasks", {"a": 1, "b": 2})

    def test_format_response_serializes_structures(self):
        assert json.loads(format_response({"a": [1]})) == {"a": [1]}
        assert format_response(None) == "null"

    def test_dry_run_prefix(self):
        assert dry_run_prefix({"__dry_run": True}) == "[DRY-RUN] "
        assert dry_run_prefix(dry_run=True) == "[DRY-RUN] "
        assert dry_run_prefix({"id": "1"}) == ""


class TestErrors:
    def test_describe_error_uses_code(self):
        assert describe_error(ValidationError("must not be empty", "content")) == (
            "Error [VALIDATION_ERROR]: Validation error for field 'content': must not be empty"
        )
        assert describe_error(TaskNotFoundError("ID: 9")) == 'Error [TASK_NOT_FOUND]: Could not find a task matching "ID: 9"'
        assert describe_error(RuntimeError("boom")) == "Error [UNKNOWN_ERROR]: boom"

    def test_error_status_codes(self):
        assert AuthenticationError().status_code == 401
        assert TodoistAPIError("x").status_code == 500
        assert TodoistAPIError("x", status_code=404).is_not_found

    def test_format_error_logs_unexpected_errors_with_traceback(self, caplog):
        with caplog.at_level("ERROR"):
            message = format_error("create task", TodoistAPIError("502 bad gateway", status_code=502))
        assert message == "Error [TODOIST_API_ERROR]: Todoist API error: 502 bad gateway"
        assert caplog.records[-1].exc_info is not None


class TestTaskLookup:
    async def test_all_tasks_are_cached(self, client, caches):
        cache = caches.get_or_create("tasks")
        first = await get_all_tasks(client, cache)
        second = await get_all_tasks(client, cache)
        assert first is second
        assert client.calls["get_tasks"] == 1
        assert cache.has(ALL_TASKS_KEY)

    @pytest.mark.parametrize("envelope", ["list", "results", "data"])
    async def test_all_tasks_accepts_every_envelope(self, caches, envelope):
        client = FakeTodoistClient(tasks=[make_task("1", "One")], envelope=envelope)
        tasks = await get_all_tasks(client, caches.get_or_create("tasks"))
        assert [t.id for t in tasks] == ["1"]

    async def test_find_by_id(self, client, caches):
        task = await find_task(client, caches.get_or_create("tasks"), task_id="c2")
        assert task.content == "Build pages"

    async def test_find_by_name_is_case_insensitive_substring(self, client, caches):
        task = await find_task(client, caches.get_or_create("tasks"), task_name="GROCER")
        assert task.id == "x"

    async def test_unknown_id_falls_back_to_name(self, client, caches):
        task = await find_task(client, caches.get_or_create("tasks"), task_id="nope", task_name="deploy")
        assert task.id == "c3"

    async def test_unknown_id_raises_not_found(self, client, caches):
        with pytest.raises(TaskNotFoundError):
            await find_task(client, caches.get_or_create("tasks"), task_id="nope")

    async def test_unknown_name_raises_not_found(self, client, caches):
        with pytest.raises(TaskNotFoundError):
            await find_task(client, caches.get_or_create("tasks"), task_name="nothing like this")

    async def test_requires_id_or_name(self, client, caches):
        with pytest.raises(ValidationError):
            await find_task(client, caches.get_or_create("tasks"))
