import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..cache import CacheManager
from ..client import TASKS_CACHE, TodoistClientSingleton
from ..errors import ValidationError
from ..helpers import (
    dry_run_prefix,
    format_error,
    get_all_tasks,
    get_due_date,
    parse_model,
    require_todoist_client,
    to_api_priority,
)
from ..mcp_instance import mcp
from ..models import Task, TaskDict
from ..validation import (
    validate_date_string,
    validate_description,
    validate_id,
    validate_labels,
    validate_priority,
    validate_task_content,
)
from .project_tools import ProjectHandlers
from .task_tools import TaskHandlers, bulk_report


class SearchCriteria(BaseModel):
    """Selects the active tasks a bulk operation applies to.

    Attributes:
        project_id: Only tasks in this project.
        priority: User priority, 1 (highest) to 4 (lowest).
        content_contains: Case-insensitive substring of the task content. Blank matches nothing.
        due_before: YYYY-MM-DD; only tasks due strictly before this date.
        due_after: YYYY-MM-DD; only tasks due strictly after this date.
    """
    project_id: Optional[str] = Field(None, description="Filter tasks by project ID")
    priority: Optional[int] = Field(None, description="Filter tasks by priority (1=highest, 4=lowest)")
    content_contains: Optional[str] = Field(None, description="Case-insensitive substring of the task content")
    due_before: Optional[str] = Field(None, description="Tasks due strictly before this date (YYYY-MM-DD)")
    due_after: Optional[str] = Field(None, description="Tasks due strictly after this date (YYYY-MM-DD)")

    @field_validator("due_before", "due_after", mode="before")
    @classmethod
    def _check_date(cls, v: Any, info) -> Optional[str]:
        return validate_date_string(v, info.field_name)

    @field_validator("priority", mode="before")
    @classmethod
    def _check_priority(cls, v: Any) -> Optional[int]:
        return validate_priority(v)

    @field_validator("project_id", mode="before")
    @classmethod
    def _check_project(cls, v: Any) -> Optional[str]:
        return validate_id(v, "project_id")

    @model_validator(mode="after")
    def _require_one(self) -> "SearchCriteria":
        if all(
            value is None
            for value in (self.project_id, self.priority, self.content_contains, self.due_before, self.due_after)
        ):
            raise ValidationError("At least one search criterion must be provided", "search_criteria")
        return self

    def matches(self, task: Task) -> bool:
        if self.project_id and task.project_id != self.project_id:
            return False
        if self.priority is not None and task.priority != to_api_priority(self.priority):
            return False
        if self.content_contains is not None:
            needle = self.content_contains.strip().lower()
            if not needle or needle not in task.content.lower():
                return False

        if self.due_before or self.due_after:
            due_date = get_due_date(task.due)
            if not due_date:
                return False
            if self.due_before and not due_date < self.due_before:
                return False
            if self.due_after and not due_date > self.due_after:
                return False
        return True


class BulkUpdates(BaseModel):
    """Fields applied to every matched task. project_id accepts an id or a project name."""
    content: Optional[str] = None
    description: Optional[str] = None
    due_string: Optional[str] = None
    priority: Optional[int] = None
    labels: Optional[List[str]] = None
    project_id: Optional[str] = None
    section_id: Optional[str] = None

    def to_payload(self) -> TaskDict:
        payload: TaskDict = {}
        if self.content:
            payload["content"] = validate_task_content(self.content)
        if self.description is not None:
            payload["description"] = validate_description(self.description)
        if self.due_string:
            payload["due_string"] = self.due_string.strip()
        priority = to_api_priority(validate_priority(self.priority))
        if priority is not None:
            payload["priority"] = priority
        labels = validate_labels(self.labels)
        if labels is not None:
            payload["labels"] = labels
        return payload


def parse_criteria(search_criteria: Any) -> SearchCriteria:
    return parse_model(SearchCriteria, search_criteria, "search_criteria")


class BulkHandlers:
    """Update, delete or complete every active task matching a SearchCriteria."""

    def __init__(self, client: Any, caches: CacheManager):
        self.client = client
        self.caches = caches
        self.tasks = TaskHandlers(client, caches)

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self.client, "dry_run", False))

    async def find_matching(self, criteria: SearchCriteria) -> List[Task]:
        # Always work from a fresh task list
        self.tasks.invalidate_tasks()
        all_tasks = await get_all_tasks(self.client, self.caches.get_or_create(TASKS_CACHE))
        return [t for t in all_tasks if criteria.matches(t)]

    async def _apply(
        self,
        verb: str,
        criteria: SearchCriteria,
        action: Callable[[Task], Awaitable[Any]],
    ) -> str:
        matched = await self.find_matching(criteria)
        if not matched:
            return f"No tasks found matching the search criteria. Nothing to {verb}."

        done: List[Task] = []
        errors: List[str] = []
        for task in matched:
            try:
                await action(task)
                done.append(task)
            except Exception as e:
                logging.warning(f"Bulk {verb}: task {task.id} failed: {e}")
                errors.append(f'Failed to {verb} task "{task.content}" (ID: {task.id}): {getattr(e, "message", e)}')

        self.tasks.invalidate_tasks()
        past = {"update": "updated", "delete": "deleted", "complete": "completed"}[verb]
        return bulk_report(
            f"{dry_run_prefix(dry_run=self.dry_run)}Bulk {verb} completed: "
            f"{len(done)} of {len(matched)} matching tasks {past}, {len(errors)} failed.",
            f"{past.capitalize()} tasks",
            [f"- {t.content} (ID: {t.id})" for t in done],
            errors,
        )

    async def bulk_update(self, search_criteria: Any, updates: Any) -> str:
        criteria = parse_criteria(search_criteria)
        changes = parse_model(BulkUpdates, updates, "updates")
        payload = changes.to_payload()

        project_id = None
        if changes.project_id:
            project_id = await ProjectHandlers(self.client, self.caches).resolve_project_id(changes.project_id)
        section_id = validate_id(changes.section_id, "section_id")
        if not payload and not project_id and not section_id:
            raise ValidationError("At least one field to update must be provided", "updates")

        async def update(task: Task) -> None:
            if payload:
                await self.client.update_task(task.id, payload)
            if project_id and project_id != task.project_id:
                await self.client.move_task(task.id, project_id=project_id)
            if section_id and section_id != task.section_id:
                await self.client.move_task(task.id, section_id=section_id)

        return await self._apply("update", criteria, update)

    async def bulk_delete(self, search_criteria: Any) -> str:
        criteria = parse_criteria(search_criteria)
        return await self._apply("delete", criteria, lambda task: self.client.delete_task(task.id))

    async def bulk_complete(self, search_criteria: Any) -> str:
        criteria = parse_criteria(search_criteria)
        return await self._apply("complete", criteria, lambda task: self.client.close_task(task.id))


def _handlers() -> BulkHandlers:
    return BulkHandlers(TodoistClientSingleton.get_client(), TodoistClientSingleton.get_caches())


# ================== #
# Bulk Tools         #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_tasks_bulk_update(search_criteria: Dict[str, Any], updates: Dict[str, Any]) -> str:
    """
    Updates every active task that matches the search criteria.

    Args:
        search_criteria: At least one of:
            - project_id (str): Only tasks in this project.
            - priority (int): 1 (highest) to 4 (lowest).
            - content_contains (str): Case-insensitive substring of the content.
            - due_before (str): YYYY-MM-DD, strictly before.
            - due_after (str): YYYY-MM-DD, strictly after.
        updates: Fields to set on each task: content, description, due_string,
            priority, labels (replaces existing), project_id (ID or project name),
            section_id.

    Example:
        {
            "search_criteria": {"content_contains": "invoice", "due_before": "2024-07-01"},
            "updates": {"priority": 1, "due_string": "tomorrow"}
        }
    """
    logging.info(f"Bulk update requested with criteria: {search_criteria}")
    try:
        return await _handlers().bulk_update(search_criteria, updates)
    except Exception as e:
        return format_error("bulk update tasks", e)


@mcp.tool()
@require_todoist_client
async def todoist_tasks_bulk_delete(search_criteria: Dict[str, Any]) -> str:
    """
    Deletes every active task that matches the search criteria.

    Args:
        search_criteria: Same fields as todoist_tasks_bulk_update. At least one is required.

    Agent Usage Guide:
        - Check the matches first with todoist_task_get; deletion cannot be undone.
    """
    logging.info(f"Bulk delete requested with criteria: {search_criteria}")
    try:
        return await _handlers().bulk_delete(search_criteria)
    except Exception as e:
        return format_error("bulk delete tasks", e)


@mcp.tool()
@require_todoist_client
async def todoist_tasks_bulk_complete(search_criteria: Dict[str, Any]) -> str:
    """
    Completes every active task that matches the search criteria.

    Args:
        search_criteria: Same fields as todoist_tasks_bulk_update. At least one is required.
    """
    logging.info(f"Bulk complete requested with criteria: {search_criteria}")
    try:
        return await _handlers().bulk_complete(search_criteria)
    except Exception as e:
        return format_error("bulk complete tasks", e)
