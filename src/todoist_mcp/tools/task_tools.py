import logging
import re
from typing import Any, Dict, List, Optional

from ..cache import CacheManager
from ..client import LABEL_STATS_CACHE, LABELS_CACHE, TASKS_CACHE, TodoistClientSingleton
from ..errors import TaskNotFoundError, TodoistAPIError, ValidationError
from ..helpers import (
    create_cache_key,
    dry_run_prefix,
    extract_array_from_response,
    find_task,
    format_due_details,
    format_error,
    format_task_for_display,
    from_api_priority,
    get_all_tasks,
    get_due_date,
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
    validate_limit,
    validate_priority,
    validate_task_content,
    validate_task_identifier,
)

_LABEL_TOKEN = re.compile(r"@([\w-]+)")


def build_task_payload(
    content: Any,
    description: Optional[str] = None,
    due_string: Optional[str] = None,
    priority: Optional[int] = None,
    labels: Optional[List[str]] = None,
    deadline_date: Optional[str] = None,
    project_id: Optional[str] = None,
    section_id: Optional[str] = None,
    parent_id: Optional[str] = None,
) -> TaskDict:
    """Validates task fields and builds the body of a create-task request."""
    payload: TaskDict = {"content": validate_task_content(content)}
    description = validate_description(description)
    if description:
        payload["description"] = description
    if due_string:
        payload["due_string"] = due_string.strip()
    api_priority = to_api_priority(validate_priority(priority))
    if api_priority is not None:
        payload["priority"] = api_priority
    labels = validate_labels(labels)
    if labels:
        payload["labels"] = labels
    deadline_date = validate_date_string(deadline_date, "deadline_date")
    if deadline_date:
        payload["deadline_date"] = deadline_date
    project_id = validate_id(project_id, "project_id")
    if project_id:
        payload["project_id"] = project_id
    section_id = validate_id(section_id, "section_id")
    if section_id:
        payload["section_id"] = section_id
    if parent_id:
        payload["parent_id"] = parent_id
    return payload


def describe_api_failure(content: str, error: Exception) -> str:
    """Per-item message for bulk operations, keyed on the upstream status."""
    status = getattr(error, "status_code", None)
    if status == 400:
        return f'Failed to create task "{content}": Invalid request format. Check that all parameters are correct.'
    if status == 401:
        return f'Failed to create task "{content}": Authentication failed. Check your API token.'
    if status == 403:
        return f'Failed to create task "{content}": Access denied. You may not have permission to add tasks to this project.'
    if status == 404:
        return f'Failed to create task "{content}": Project or section not found. Verify the IDs are correct.'
    message = getattr(error, "message", None) or str(error)
    return f'Failed to create task "{content}": {message}'


class TaskHandlers:
    """Task operations behind the todoist_task_* tools."""

    def __init__(self, client: Any, caches: CacheManager):
        self.client = client
        self.caches = caches
        self.tasks_cache = caches.get_or_create(TASKS_CACHE)

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self.client, "dry_run", False))

    def invalidate_tasks(self) -> None:
        """Any task mutation drops cached task lists and the stats derived from them."""
        self.caches.invalidate(TASKS_CACHE, LABEL_STATS_CACHE)

    async def create_task(self, **fields: Any) -> str:
        payload = build_task_payload(**fields)
        task = await self.client.add_task(payload)
        self.invalidate_tasks()

        lines = [f"{dry_run_prefix(task, self.dry_run)}Task created:", f"ID: {task.get('id')}", f"Title: {task.get('content')}"]
        if task.get("description"):
            lines.append(f"Description: {task['description']}")
        due = format_due_details(task.get("due"))
        if due:
            lines.append(f"Due: {due}")
        priority = from_api_priority(task.get("priority"))
        if priority:
            lines.append(f"Priority: {priority}")
        if task.get("labels"):
            lines.append(f"Labels: {', '.join(task['labels'])}")
        if payload.get("deadline_date"):
            lines.append(f"Deadline: {payload['deadline_date']}")
        if payload.get("project_id"):
            lines.append(f"Project ID: {payload['project_id']}")
        if payload.get("section_id"):
            lines.append(f"Section ID: {payload['section_id']}")
        return "\n".join(lines)

    async def _labels(self) -> List[Dict[str, Any]]:
        cache = self.caches.get_or_create(LABELS_CACHE)
        labels = cache.get("all_labels")
        if labels is None:
            labels = extract_array_from_response(await self.client.get_labels())
            cache.set("all_labels", labels)
        return labels

    async def _filtered_tasks(self, query: str, lang: Optional[str], limit: Optional[int]) -> List[Task]:
        key = create_cache_key("tasks_filter", {"filter": query, "lang": lang, "limit": limit})
        tasks = self.tasks_cache.get(key)
        if tasks is not None:
            return tasks
        try:
            response = await self.client.get_tasks_by_filter(query, lang=lang, limit=limit)
        except TodoistAPIError as e:
            if e.status_code == 400:
                raise ValidationError(
                    f'Invalid filter syntax "{query}". The filter parameter expects Todoist filter syntax '
                    f"like 'today', 'overdue', 'p1', or 'search:\"{query}\"'. "
                    "For simple text search, use the task_name parameter instead.",
                    "filter",
                ) from e
            raise
        tasks = [Task.from_api(t) for t in extract_array_from_response(response)]
        self.tasks_cache.set(key, tasks)
        return tasks

    async def get_tasks(
        self,
        task_id: Optional[str] = None,
        project_id: Optional[str] = None,
        label_id: Optional[str] = None,
        priority: Optional[int] = None,
        filter: Optional[str] = None,
        lang: Optional[str] = None,
        due_before: Optional[str] = None,
        due_after: Optional[str] = None,
        task_name: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> str:
        validate_priority(priority)
        project_id = validate_id(project_id, "project_id")
        validate_limit(limit)
        due_before = validate_date_string(due_before, "due_before")
        due_after = validate_date_string(due_after, "due_after")

        if task_id:
            try:
                task = await find_task(self.client, self.tasks_cache, task_id=task_id)
            except TaskNotFoundError:
                logging.info(f"Task lookup for ID {task_id} found nothing.")
                return f'Task with ID "{task_id}" not found'
            return format_task_for_display(task)

        query = filter.strip() if filter else None
        if query:
            tasks = await self._filtered_tasks(query, lang.strip() if lang else None, limit)
        else:
            tasks = await get_all_tasks(self.client, self.tasks_cache)

        if project_id:
            tasks = [t for t in tasks if t.project_id == project_id]

        if label_id:
            # Accepts a label id, a name, or "@name"
            label_name = label_id[1:] if label_id.startswith("@") else label_id
            labels = await self._labels()
            found = next((label for label in labels if str(label.get("id")) == label_name), None)
            if found:
                label_name = found.get("name")
            tasks = [t for t in tasks if label_name in t.labels]

        if query:
            required = _LABEL_TOKEN.findall(query)
            if required:
                if "&" in query:
                    tasks = [t for t in tasks if all(name in t.labels for name in required)]
                else:
                    tasks = [t for t in tasks if any(name in t.labels for name in required)]

        api_priority = to_api_priority(priority)
        if api_priority is not None:
            tasks = [t for t in tasks if t.priority == api_priority]

        if due_before or due_after:
            tasks = [t for t in tasks if _due_in_range(t, due_before, due_after)]

        if task_name:
            search = task_name.lower()
            tasks = [t for t in tasks if search in t.content.lower()]

        if limit:
            tasks = tasks[:limit]

        if not tasks:
            return "No tasks found matching the criteria"
        word = "task" if len(tasks) == 1 else "tasks"
        listing = "\n\n".join(format_task_for_display(t) for t in tasks)
        return f"{len(tasks)} {word} found:\n\n{listing}"

    async def update_task(
        self,
        task_id: Optional[str] = None,
        task_name: Optional[str] = None,
        content: Optional[str] = None,
        description: Optional[str] = None,
        due_string: Optional[str] = None,
        priority: Optional[int] = None,
        labels: Optional[List[str]] = None,
        project_id: Optional[str] = None,
        section_id: Optional[str] = None,
    ) -> str:
        validate_task_identifier(task_id, task_name)
        labels = validate_labels(labels)
        validate_priority(priority)
        project_id = validate_id(project_id, "project_id")
        section_id = validate_id(section_id, "section_id")

        self.invalidate_tasks()
        task = await find_task(self.client, self.tasks_cache, task_id=task_id, task_name=task_name)

        update: TaskDict = {}
        if content:
            update["content"] = validate_task_content(content)
        if description is not None:
            update["description"] = validate_description(description)
        if due_string:
            update["due_string"] = due_string
        api_priority = to_api_priority(priority)
        if api_priority is not None:
            update["priority"] = api_priority
        if labels is not None:
            update["labels"] = labels

        latest: TaskDict = task.model_dump(by_alias=False)
        # A failed move can follow an applied update
        try:
            if update:
                latest = _merge(latest, await self.client.update_task(task.id, update))
            if project_id and project_id != latest.get("project_id"):
                moved = await self.client.move_task(task.id, project_id=project_id)
                latest = _merge({**latest, "project_id": project_id}, moved)
            if section_id and section_id != latest.get("section_id"):
                moved = await self.client.move_task(task.id, section_id=section_id)
                latest = _merge({**latest, "section_id": section_id}, moved)
        finally:
            self.invalidate_tasks()

        lines = [f'{dry_run_prefix(latest, self.dry_run)}Task "{task.content}" updated:', f"New Title: {latest.get('content')}"]
        if latest.get("description"):
            lines.append(f"New Description: {latest['description']}")
        due = format_due_details(latest.get("due"))
        if due:
            lines.append(f"New Due Date: {due}")
        new_priority = from_api_priority(latest.get("priority"))
        if new_priority:
            lines.append(f"New Priority: {new_priority}")
        if project_id and latest.get("project_id"):
            lines.append(f"New Project ID: {latest['project_id']}")
        if section_id:
            lines.append(f"New Section ID: {latest.get('section_id') or 'None'}")
        if labels is not None:
            lines.append(f"New Labels: {', '.join(latest.get('labels') or []) or 'None'}")
        return "\n".join(lines)

    async def delete_task(self, task_id: Optional[str] = None, task_name: Optional[str] = None) -> str:
        validate_task_identifier(task_id, task_name)
        task = await find_task(self.client, self.tasks_cache, task_id=task_id, task_name=task_name)
        try:
            await self.client.delete_task(task.id)
        finally:
            self.invalidate_tasks()
        return f'{dry_run_prefix(dry_run=self.dry_run)}Successfully deleted task: "{task.content}"'

    async def complete_task(self, task_id: Optional[str] = None, task_name: Optional[str] = None) -> str:
        validate_task_identifier(task_id, task_name)
        task = await find_task(self.client, self.tasks_cache, task_id=task_id, task_name=task_name)
        try:
            await self.client.close_task(task.id)
        finally:
            self.invalidate_tasks()
        return f'{dry_run_prefix(dry_run=self.dry_run)}Successfully completed task: "{task.content}"'

    async def bulk_create_tasks(self, tasks: List[Dict[str, Any]]) -> str:
        if not tasks:
            raise ValidationError("At least one task is required", "tasks")

        created: List[TaskDict] = []
        errors: List[str] = []
        # One request in flight at a time
        for item in tasks:
            content = item.get("content", "") if isinstance(item, dict) else ""
            try:
                if not isinstance(item, dict):
                    raise ValidationError("each task must be an object", "tasks")
                payload = build_task_payload(
                    item.get("content"),
                    description=item.get("description"),
                    due_string=item.get("due_string"),
                    priority=item.get("priority"),
                    labels=item.get("labels"),
                    deadline_date=item.get("deadline_date"),
                    project_id=item.get("project_id"),
                    section_id=item.get("section_id"),
                )
                created.append(await self.client.add_task(payload))
            except ValidationError as e:
                errors.append(f'Failed to create task "{content}": {e.message}')
            except Exception as e:
                logging.warning(f"Bulk create: task '{content}' failed: {e}")
                errors.append(describe_api_failure(content, e))

        self.invalidate_tasks()
        return bulk_report(
            f"{dry_run_prefix(dry_run=self.dry_run)}Bulk task creation completed: "
            f"{len(created)} created, {len(errors)} failed.",
            "Created tasks",
            [f"- {t.get('content')} (ID: {t.get('id')})" for t in created],
            errors,
        )

    async def get_completed_tasks(
        self,
        since: str,
        until: str,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> str:
        since = validate_date_string(since, "since")
        until = validate_date_string(until, "until")
        if not since or not until:
            raise ValidationError("Both since and until are required")
        if since > until:
            raise ValidationError("since must not be after until", "since")
        project_id = validate_id(project_id, "project_id")
        validate_limit(limit)

        response = await self.client.get_completed_tasks(
            f"{since}T00:00:00Z", f"{until}T23:59:59Z", project_id=project_id, limit=limit
        )
        items = extract_array_from_response(response)
        if not items and isinstance(response, dict):
            items = response.get("items") or []
        if not items:
            return f"No completed tasks found between {since} and {until}"

        lines = [f"{len(items)} completed task{'s' if len(items) != 1 else ''} between {since} and {until}:", ""]
        for item in items:
            completed_at = item.get("completed_at") or "unknown"
            lines.append(f"- {item.get('content')} (ID: {item.get('id') or item.get('task_id')}) completed {completed_at}")
        return "\n".join(lines)


def _merge(current: TaskDict, response: Any) -> TaskDict:
    # Some endpoints answer 204; keep what we already know
    if isinstance(response, dict):
        return {**current, **response}
    return current


def _due_in_range(task: Task, due_before: Optional[str], due_after: Optional[str]) -> bool:
    due_date = get_due_date(task.due)
    if not due_date:
        return False
    if due_before and not due_date < due_before:
        return False
    if due_after and not due_date > due_after:
        return False
    return True


def bulk_report(headline: str, success_title: str, successes: List[str], errors: List[str]) -> str:
    parts = [headline]
    if successes:
        parts.append(f"{success_title}:\n" + "\n".join(successes))
    if errors:
        parts.append("Errors:\n" + "\n".join(errors))
    return "\n\n".join(parts)


def _handlers() -> TaskHandlers:
    return TaskHandlers(TodoistClientSingleton.get_client(), TodoistClientSingleton.get_caches())


# ================== #
# Task Tools         #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_task_create(
    content: str,
    description: Optional[str] = None,
    due_string: Optional[str] = None,
    priority: Optional[int] = None,
    labels: Optional[List[str]] = None,
    deadline_date: Optional[str] = None,
    project_id: Optional[str] = None,
    section_id: Optional[str] = None,
) -> str:
    """
    Creates a new task in Todoist.

    Args:
        content (str): The title of the task.
        description (str, optional): Longer notes for the task.
        due_string (str, optional): Natural language due date (e.g., 'tomorrow at 5pm', 'every monday').
        priority (int, optional): 1 (highest) to 4 (lowest).
        labels (List[str], optional): Label names to attach.
        deadline_date (str, optional): Hard deadline in YYYY-MM-DD format.
        project_id (str, optional): Project to add the task to. Defaults to Inbox.
        section_id (str, optional): Section within the project.

    Returns:
        A text summary of the created task or an error message.

    Example:
        {
            "content": "Buy Groceries",
            "priority": 2,
            "due_string": "tomorrow"
        }
    """
    logging.info(f"Attempting to create task with content: '{content}'")
    try:
        return await _handlers().create_task(
            content=content,
            description=description,
            due_string=due_string,
            priority=priority,
            labels=labels,
            deadline_date=deadline_date,
            project_id=project_id,
            section_id=section_id,
        )
    except Exception as e:
        return format_error("create task", e)


@mcp.tool()
@require_todoist_client
async def todoist_task_get(
    task_id: Optional[str] = None,
    project_id: Optional[str] = None,
    label_id: Optional[str] = None,
    priority: Optional[int] = None,
    filter: Optional[str] = None,
    lang: Optional[str] = None,
    due_before: Optional[str] = None,
    due_after: Optional[str] = None,
    task_name: Optional[str] = None,
    limit: Optional[int] = None,
) -> str:
    """
    Retrieves one task by ID, or lists active tasks matching the given criteria.

    Args:
        task_id (str, optional): Return only this task.
        project_id (str, optional): Only tasks in this project.
        label_id (str, optional): Label ID or name ('@' prefix allowed).
        priority (int, optional): 1 (highest) to 4 (lowest).
        filter (str, optional): Todoist filter query (e.g., 'today', 'overdue', '@work & p1').
        lang (str, optional): Language of the filter query.
        due_before (str, optional): YYYY-MM-DD; only tasks due strictly before.
        due_after (str, optional): YYYY-MM-DD; only tasks due strictly after.
        task_name (str, optional): Case-insensitive substring of the task content.
        limit (int, optional): Maximum number of tasks (1-100).

    Agent Usage Guide:
        - Use task_name for plain text search; filter expects Todoist filter syntax.
        - Task IDs in the output can be passed to update, complete and hierarchy tools.
    """
    try:
        return await _handlers().get_tasks(
            task_id=task_id,
            project_id=project_id,
            label_id=label_id,
            priority=priority,
            filter=filter,
            lang=lang,
            due_before=due_before,
            due_after=due_after,
            task_name=task_name,
            limit=limit,
        )
    except Exception as e:
        return format_error("get tasks", e)


@mcp.tool()
@require_todoist_client
async def todoist_task_update(
    task_id: Optional[str] = None,
    task_name: Optional[str] = None,
    content: Optional[str] = None,
    description: Optional[str] = None,
    due_string: Optional[str] = None,
    priority: Optional[int] = None,
    labels: Optional[List[str]] = None,
    project_id: Optional[str] = None,
    section_id: Optional[str] = None,
) -> str:
    """
    Updates an existing task found by ID or by a part of its name.

    Args:
        task_id (str, optional): ID of the task to update.
        task_name (str, optional): Case-insensitive substring of the task content, used when task_id is absent.
        content (str, optional): New title.
        description (str, optional): New description.
        due_string (str, optional): New natural language due date.
        priority (int, optional): 1 (highest) to 4 (lowest).
        labels (List[str], optional): Replaces all labels; pass [] to remove them.
        project_id (str, optional): Move the task to this project.
        section_id (str, optional): Move the task to this section.

    Example:
        {
            "task_name": "quarterly report",
            "priority": 1,
            "due_string": "friday"
        }
    """
    logging.info(f"Attempting to update task: {task_id or task_name}")
    try:
        return await _handlers().update_task(
            task_id=task_id,
            task_name=task_name,
            content=content,
            description=description,
            due_string=due_string,
            priority=priority,
            labels=labels,
            project_id=project_id,
            section_id=section_id,
        )
    except Exception as e:
        return format_error("update task", e)


@mcp.tool()
@require_todoist_client
async def todoist_task_delete(task_id: Optional[str] = None, task_name: Optional[str] = None) -> str:
    """
    Deletes a task found by ID or by a part of its name.

    Args:
        task_id (str, optional): ID of the task to delete.
        task_name (str, optional): Case-insensitive substring of the task content.
    """
    logging.info(f"Attempting to delete task: {task_id or task_name}")
    try:
        return await _handlers().delete_task(task_id=task_id, task_name=task_name)
    except Exception as e:
        return format_error("delete task", e)


@mcp.tool()
@require_todoist_client
async def todoist_task_complete(task_id: Optional[str] = None, task_name: Optional[str] = None) -> str:
    """
    Marks a task as complete.

    Args:
        task_id (str, optional): ID of the task to complete.
        task_name (str, optional): Case-insensitive substring of the task content.
    """
    logging.info(f"Attempting to complete task: {task_id or task_name}")
    try:
        return await _handlers().complete_task(task_id=task_id, task_name=task_name)
    except Exception as e:
        return format_error("complete task", e)


@mcp.tool()
@require_todoist_client
async def todoist_tasks_bulk_create(tasks: List[Dict[str, Any]]) -> str:
    """
    Creates several tasks, one after another. A failing task does not stop the others.

    Args:
        tasks: List of task objects with the same fields as todoist_task_create
               (content required; description, due_string, priority, labels,
               deadline_date, project_id, section_id optional).

    Example:
        {
            "tasks": [
                {"content": "Draft agenda", "priority": 2},
                {"content": "Book room", "due_string": "monday"}
            ]
        }
    """
    logging.info(f"Attempting to bulk create {len(tasks) if isinstance(tasks, list) else 0} tasks")
    try:
        return await _handlers().bulk_create_tasks(tasks)
    except Exception as e:
        return format_error("bulk create tasks", e)


@mcp.tool()
@require_todoist_client
async def todoist_completed_tasks_get(
    since: str,
    until: str,
    project_id: Optional[str] = None,
    limit: Optional[int] = None,
) -> str:
    """
    Lists tasks completed within a date range.

    Args:
        since (str): First day of the range, YYYY-MM-DD.
        until (str): Last day of the range, YYYY-MM-DD.
        project_id (str, optional): Restrict to one project.
        limit (int, optional): Maximum number of tasks (1-100).
    """
    try:
        return await _handlers().get_completed_tasks(since, until, project_id=project_id, limit=limit)
    except Exception as e:
        return format_error("get completed tasks", e)
