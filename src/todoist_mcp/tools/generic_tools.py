import datetime
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..cache import CacheManager
from ..client import TodoistClientSingleton
from ..errors import ValidationError
from ..helpers import extract_array_from_response, format_error, format_response, require_todoist_client
from ..mcp_instance import mcp
from .filter_tools import BulkHandlers
from .label_tools import LabelHandlers
from .subtask_tools import SubtaskHandlers
from .task_tools import TaskHandlers

TEST_MODES = ("basic", "enhanced")
MAX_PERFORMANCE_ITERATIONS = 50
_CREATED_ID = re.compile(r"ID: ([\w-]+)")

FeatureCheck = Callable[[Any], Awaitable[Tuple[str, Dict[str, Any]]]]


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _timestamp() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def _overall_status(passed: int, failed: int) -> str:
    if failed == 0:
        return "success"
    return "partial" if passed else "error"


def _error_text(error: BaseException) -> str:
    return getattr(error, "message", None) or str(error)


async def check_connection(client: Any, caches: CacheManager) -> Dict[str, Any]:
    """
    Calls the projects endpoint once and reports the outcome.

    Always goes to the API (not the projects cache), so the reported latency
    is a real round trip. Failures are reported in the result instead of raised.
    """
    started = time.perf_counter()
    try:
        projects = extract_array_from_response(await client.get_projects())
    except Exception as e:
        logging.error(f"Todoist connection test failed: {e}", exc_info=True)
        return {
            "status": "error",
            "message": "Connection to Todoist failed",
            "error": _error_text(e),
            "error_code": getattr(e, "code", None),
            "dry_run": bool(getattr(client, "dry_run", False)),
        }

    latency_ms = round((time.perf_counter() - started) * 1000)
    logging.info(f"Todoist connection test succeeded in {latency_ms} ms.")
    return {
        "status": "success",
        "message": "Connection successful",
        "response_time_ms": latency_ms,
        "project_count": len(projects),
        "dry_run": bool(getattr(client, "dry_run", False)),
        "cache": caches.global_stats(),
    }


# --- Read-only feature checks --- #

async def _check_tasks(client: Any) -> Tuple[str, Dict[str, Any]]:
    tasks = extract_array_from_response(await client.get_tasks())
    sample = tasks[0].get("content") if tasks else "No tasks found"
    return f"Retrieved {len(tasks)} tasks", {"task_count": len(tasks), "sample_task": sample}


async def _check_projects(client: Any) -> Tuple[str, Dict[str, Any]]:
    projects = extract_array_from_response(await client.get_projects())
    sample = projects[0].get("name") if projects else "No projects found"
    return f"Retrieved {len(projects)} projects", {"project_count": len(projects), "sample_project": sample}


async def _check_labels(client: Any) -> Tuple[str, Dict[str, Any]]:
    labels = extract_array_from_response(await client.get_labels())
    sample = labels[0].get("name") if labels else "No labels found"
    return f"Retrieved {len(labels)} labels", {"label_count": len(labels), "sample_label": sample}


async def _check_sections(client: Any) -> Tuple[str, Dict[str, Any]]:
    projects = extract_array_from_response(await client.get_projects())
    if not projects:
        return "No projects available to check sections", {}
    project_id = str(projects[0].get("id"))
    sections = extract_array_from_response(await client.get_sections(project_id=project_id))
    return f"Retrieved {len(sections)} sections", {"section_count": len(sections), "project_id": project_id}


async def _check_comments(client: Any) -> Tuple[str, Dict[str, Any]]:
    tasks = extract_array_from_response(await client.get_tasks())
    if not tasks:
        return "No tasks available to check comments", {}
    task_id = str(tasks[0].get("id"))
    comments = extract_array_from_response(await client.get_comments(task_id=task_id))
    return f"Retrieved {len(comments)} comments", {"comment_count": len(comments), "task_id": task_id}


BASIC_CHECKS: List[Tuple[str, FeatureCheck]] = [
    ("Task Operations", _check_tasks),
    ("Project Operations", _check_projects),
    ("Label Operations", _check_labels),
    ("Section Operations", _check_sections),
    ("Comment Operations", _check_comments),
]


async def run_basic_checks(client: Any) -> Dict[str, Any]:
    """One read-only API call per feature area. A failing area does not stop the others."""
    features: List[Dict[str, Any]] = []
    for feature, check in BASIC_CHECKS:
        started = time.perf_counter()
        try:
            message, details = await check(client)
        except Exception as e:
            logging.warning(f"Feature check '{feature}' failed: {e}")
            features.append({
                "feature": feature,
                "status": "error",
                "message": _error_text(e),
                "response_time_ms": _elapsed_ms(started),
            })
            continue
        features.append({
            "feature": feature,
            "status": "success",
            "message": message,
            "response_time_ms": _elapsed_ms(started),
            "details": details,
        })

    passed = sum(1 for f in features if f["status"] == "success")
    failed = len(features) - passed
    return {
        "mode": "basic",
        "overall_status": _overall_status(passed, failed),
        "total_tests": len(features),
        "passed": passed,
        "failed": failed,
        "features": features,
        "total_response_time_ms": round(sum(f["response_time_ms"] for f in features), 2),
        "timestamp": _timestamp(),
    }


# --- Create/update/delete self-test --- #

class SuiteRecorder:
    """Times each step of one suite and records whether it succeeded, failed or was skipped."""

    def __init__(self, name: str):
        self.name = name
        self.tests: List[Dict[str, Any]] = []
        self._started = time.perf_counter()

    async def run(self, tool: str, operation: str, call: Callable[[], Awaitable[Any]]) -> Optional[Any]:
        started = time.perf_counter()
        try:
            output = await call()
        except Exception as e:
            logging.warning(f"Self-test step {tool} ({operation}) failed: {e}")
            self.tests.append({
                "tool": tool,
                "operation": operation,
                "status": "error",
                "message": f"{tool} failed",
                "response_time_ms": _elapsed_ms(started),
                "error": _error_text(e),
            })
            return None
        self.tests.append({
            "tool": tool,
            "operation": operation,
            "status": "success",
            "message": f"{tool} succeeded",
            "response_time_ms": _elapsed_ms(started),
        })
        return output

    def skip(self, tool: str, operation: str, reason: str) -> None:
        self.tests.append({
            "tool": tool,
            "operation": operation,
            "status": "skipped",
            "message": f"Skipped: {reason}",
            "response_time_ms": 0,
        })

    def count(self, status: str) -> int:
        return sum(1 for t in self.tests if t["status"] == status)

    def summary(self) -> Dict[str, Any]:
        return {
            "suite": self.name,
            "tests": self.tests,
            "passed": self.count("success"),
            "failed": self.count("error"),
            "skipped": self.count("skipped"),
            "total_time_ms": _elapsed_ms(self._started),
        }


class FeatureSelfTest:
    """
    Exercises the tool handlers end to end on throwaway tasks and labels.

    Everything created is named after ``stamp`` and removed again at the end of
    its suite. Under dry-run the create steps are simulated, so steps that need
    a real id are reported as skipped.
    """

    def __init__(self, client: Any, caches: CacheManager, stamp: Optional[str] = None):
        self.client = client
        self.caches = caches
        self.stamp = stamp or datetime.datetime.now().strftime("%Y%m%d%H%M%S")

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self.client, "dry_run", False))

    def _created_id(self, output: Optional[str]) -> Optional[str]:
        # Dry-run ids are fabricated and cannot be read back
        if not output or self.dry_run:
            return None
        match = _CREATED_ID.search(output)
        return match.group(1) if match else None

    async def task_suite(self) -> Dict[str, Any]:
        suite = SuiteRecorder("Task Operations")
        tasks = TaskHandlers(self.client, self.caches)
        content = f"MCP self-test task {self.stamp}"

        task_id = self._created_id(await suite.run(
            "todoist_task_create",
            "CREATE",
            lambda: tasks.create_task(content=content, description="Created by todoist_test_all_features", priority=2),
        ))
        await suite.run("todoist_task_get", "READ", lambda: tasks.get_tasks(limit=5))
        if task_id is None:
            suite.skip("todoist_task_update", "UPDATE", "no task was created")
            suite.skip("todoist_task_complete", "UPDATE", "no task was created")
            suite.skip("todoist_task_delete", "DELETE", "no task was created")
            return suite.summary()

        await suite.run(
            "todoist_task_update",
            "UPDATE",
            lambda: tasks.update_task(task_id=task_id, content=f"{content} - updated", priority=3),
        )
        await suite.run("todoist_task_complete", "UPDATE", lambda: tasks.complete_task(task_id=task_id))
        await suite.run("todoist_task_delete", "DELETE", lambda: tasks.delete_task(task_id=task_id))
        return suite.summary()

    async def subtask_suite(self) -> Dict[str, Any]:
        suite = SuiteRecorder("Subtask Operations")
        tasks = TaskHandlers(self.client, self.caches)
        subtasks = SubtaskHandlers(self.client, self.caches)

        parent_id = self._created_id(await suite.run(
            "todoist_task_create",
            "CREATE",
            lambda: tasks.create_task(content=f"MCP self-test parent {self.stamp}"),
        ))
        if parent_id is None:
            for tool, operation in (
                ("todoist_subtask_create", "CREATE"),
                ("todoist_task_hierarchy_get", "READ"),
                ("todoist_subtask_promote", "UPDATE"),
                ("todoist_task_delete", "DELETE"),
            ):
                suite.skip(tool, operation, "no parent task was created")
            return suite.summary()

        subtask_id = self._created_id(await suite.run(
            "todoist_subtask_create",
            "CREATE",
            lambda: subtasks.create_subtask(f"MCP self-test subtask {self.stamp}", parent_task_id=parent_id),
        ))
        await suite.run("todoist_task_hierarchy_get", "READ", lambda: subtasks.get_hierarchy(task_id=parent_id))
        if subtask_id is None:
            suite.skip("todoist_subtask_promote", "UPDATE", "no subtask was created")
        else:
            await suite.run("todoist_subtask_promote", "UPDATE", lambda: subtasks.promote_subtask(subtask_id=subtask_id))
            await suite.run("todoist_task_delete", "DELETE", lambda: tasks.delete_task(task_id=subtask_id))
        await suite.run("todoist_task_delete", "DELETE", lambda: tasks.delete_task(task_id=parent_id))
        return suite.summary()

    async def label_suite(self) -> Dict[str, Any]:
        suite = SuiteRecorder("Label Operations")
        labels = LabelHandlers(self.client, self.caches)

        label_id = self._created_id(await suite.run(
            "todoist_label_create",
            "CREATE",
            lambda: labels.create_label(name=f"mcp-self-test-{self.stamp}", color="red", is_favorite=False),
        ))
        await suite.run("todoist_label_get", "READ", labels.get_labels)
        await suite.run("todoist_label_stats", "READ", labels.get_label_stats)
        if label_id is None:
            suite.skip("todoist_label_update", "UPDATE", "no label was created")
            suite.skip("todoist_label_delete", "DELETE", "no label was created")
            return suite.summary()

        await suite.run("todoist_label_update", "UPDATE", lambda: labels.update_label(label_id=label_id, color="blue"))
        await suite.run("todoist_label_delete", "DELETE", lambda: labels.delete_label(label_id=label_id))
        return suite.summary()

    async def bulk_suite(self) -> Dict[str, Any]:
        suite = SuiteRecorder("Bulk Operations")
        tasks = TaskHandlers(self.client, self.caches)
        bulk = BulkHandlers(self.client, self.caches)
        prefix = f"MCP self-test bulk {self.stamp}"
        criteria = {"content_contains": prefix}

        await suite.run(
            "todoist_tasks_bulk_create",
            "CREATE",
            lambda: tasks.bulk_create_tasks([{"content": f"{prefix} #1"}, {"content": f"{prefix} #2", "priority": 4}]),
        )
        if self.dry_run:
            suite.skip("todoist_tasks_bulk_update", "UPDATE", "dry-run tasks do not exist")
            suite.skip("todoist_tasks_bulk_delete", "DELETE", "dry-run tasks do not exist")
            return suite.summary()

        await suite.run("todoist_tasks_bulk_update", "UPDATE", lambda: bulk.bulk_update(criteria, {"priority": 2}))
        await suite.run("todoist_tasks_bulk_delete", "DELETE", lambda: bulk.bulk_delete(criteria))
        return suite.summary()

    async def run(self) -> Dict[str, Any]:
        started = time.perf_counter()
        suites = [
            await self.task_suite(),
            await self.subtask_suite(),
            await self.label_suite(),
            await self.bulk_suite(),
        ]
        passed = sum(s["passed"] for s in suites)
        failed = sum(s["failed"] for s in suites)
        return {
            "mode": "enhanced",
            "overall_status": _overall_status(passed, failed),
            "total_tests": sum(len(s["tests"]) for s in suites),
            "passed": passed,
            "failed": failed,
            "skipped": sum(s["skipped"] for s in suites),
            "dry_run": self.dry_run,
            "suites": suites,
            "total_response_time_ms": round(sum(s["total_time_ms"] for s in suites), 2),
            "timestamp": _timestamp(),
            "test_duration_ms": _elapsed_ms(started),
        }


async def run_feature_checks(client: Any, caches: CacheManager, mode: Optional[str] = "basic") -> Dict[str, Any]:
    mode = (mode or "basic").strip().lower()
    if mode not in TEST_MODES:
        raise ValidationError(f"must be one of: {', '.join(TEST_MODES)}", "mode")
    if mode == "enhanced":
        return await FeatureSelfTest(client, caches).run()
    return await run_basic_checks(client)


async def measure_performance(client: Any, iterations: int = 5) -> Dict[str, Any]:
    """
    Times repeated project and task listings.

    Calls go straight to the client, never through the caches, so every sample
    is a real request. API errors propagate.
    """
    if isinstance(iterations, bool) or not isinstance(iterations, int) or not 1 <= iterations <= MAX_PERFORMANCE_ITERATIONS:
        raise ValidationError(f"must be an integer between 1 and {MAX_PERFORMANCE_ITERATIONS}", "iterations")

    results: List[Dict[str, Any]] = []
    for _ in range(iterations):
        for operation, call in (("get_projects", client.get_projects), ("get_tasks", client.get_tasks)):
            started = time.perf_counter()
            await call()
            results.append({"operation": operation, "time_ms": _elapsed_ms(started)})

    times = [r["time_ms"] for r in results]
    logging.info(f"Performance test: {len(results)} requests over {iterations} iterations.")
    return {
        "iterations": iterations,
        "average_response_time_ms": round(sum(times) / len(times), 2),
        "min_response_time_ms": min(times),
        "max_response_time_ms": max(times),
        "results": results,
    }


# ================== #
# Diagnostics        #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_test_connection() -> str:
    """
    Verifies the API token and connectivity by listing projects.

    Returns:
        A JSON string:
        - Success: {"status": "success", "response_time_ms": ..., "project_count": ...,
                    "dry_run": ..., "cache": {...cache statistics...}}
        - Failure: {"status": "error", "error": "...", "error_code": "..."}

    Agent Usage Guide:
        - Run this first when other tools report authentication or API errors.
    """
    try:
        result = await check_connection(TodoistClientSingleton.get_client(), TodoistClientSingleton.get_caches())
        return format_response(result)
    except Exception as e:
        return format_error("test connection", e)


@mcp.tool()
@require_todoist_client
async def todoist_test_all_features(mode: Optional[str] = "basic") -> str:
    """
    Runs a self-test across the Todoist features this server exposes.

    Args:
        mode: "basic" (default) makes one read-only call per area: tasks, projects,
              labels, sections, comments.
              "enhanced" creates, updates and deletes throwaway tasks, subtasks and
              labels (named "MCP self-test ...") through the same code the tools use.

    Returns:
        A JSON string with "overall_status" ("success", "partial" or "error"),
        pass/fail counts, per-check timings and a timestamp. Basic mode lists
        "features"; enhanced mode lists "suites" of steps, each "success",
        "error" or "skipped".

    Agent Usage Guide:
        - Prefer "basic"; it never modifies the account.
        - Only run "enhanced" when the user asks for a full write test.
    """
    logging.info(f"Attempting to run feature self-test in {mode} mode")
    try:
        result = await run_feature_checks(
            TodoistClientSingleton.get_client(), TodoistClientSingleton.get_caches(), mode
        )
        return format_response(result)
    except Exception as e:
        return format_error("test all features", e)


@mcp.tool()
@require_todoist_client
async def todoist_test_performance(iterations: Optional[int] = 5) -> str:
    """
    Measures Todoist API response times.

    Args:
        iterations: How many times to list projects and tasks (1-50, default 5).

    Returns:
        A JSON string with average/min/max response times in milliseconds and
        every individual sample.

    Example:
        {"iterations": 3}
    """
    logging.info(f"Attempting to measure API performance over {iterations} iterations")
    try:
        result = await measure_performance(TodoistClientSingleton.get_client(), 5 if iterations is None else iterations)
        return format_response(result)
    except Exception as e:
        return format_error("test performance", e)
