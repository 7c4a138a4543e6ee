import logging
from typing import Any, Dict, List, Optional

from ..cache import CacheManager
from ..client import TASKS_CACHE, TodoistClientSingleton
from ..errors import SubtaskError, ValidationError
from ..helpers import dry_run_prefix, find_task, format_error, get_all_tasks, require_todoist_client
from ..hierarchy import TaskHierarchyBuilder, format_task_hierarchy
from ..mcp_instance import mcp
from ..models import Task, TaskDict
from ..validation import validate_id
from .task_tools import TaskHandlers, build_task_payload, bulk_report, describe_api_failure


class SubtaskHandlers:
    """Parent/child operations. Reparenting goes through the move endpoint so task ids survive."""

    def __init__(self, client: Any, caches: CacheManager):
        self.client = client
        self.caches = caches
        self.cache = caches.get_or_create(TASKS_CACHE)
        self.tasks = TaskHandlers(client, caches)

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self.client, "dry_run", False))

    async def _find(self, task_id: Optional[str], task_name: Optional[str], role: str) -> Task:
        if not task_id and not task_name:
            raise ValidationError(f"Either {role}_id or {role}_name is required")
        return await find_task(self.client, self.cache, task_id=task_id, task_name=task_name)

    async def create_subtask(
        self,
        content: str,
        parent_task_id: Optional[str] = None,
        parent_task_name: Optional[str] = None,
        **fields: Any,
    ) -> str:
        build_task_payload(content, **fields)  # validate before any remote call
        parent = await self._find(parent_task_id, parent_task_name, "parent_task")
        payload = build_task_payload(content, parent_id=parent.id, project_id=parent.project_id, **fields)

        subtask = await self.client.add_task(payload)
        self.tasks.invalidate_tasks()
        return (
            f"{dry_run_prefix(subtask, self.dry_run)}Created subtask \"{subtask.get('content')}\" "
            f"(ID: {subtask.get('id')}) under parent task \"{parent.content}\" (ID: {parent.id})"
        )

    async def bulk_create_subtasks(
        self,
        subtasks: List[Dict[str, Any]],
        parent_task_id: Optional[str] = None,
        parent_task_name: Optional[str] = None,
    ) -> str:
        if not subtasks:
            raise ValidationError("At least one subtask is required", "subtasks")
        parent = await self._find(parent_task_id, parent_task_name, "parent_task")

        created: List[TaskDict] = []
        errors: List[str] = []
        for item in subtasks:
            content = item.get("content", "") if isinstance(item, dict) else ""
            try:
                if not isinstance(item, dict):
                    raise ValidationError("each subtask must be an object", "subtasks")
                payload = build_task_payload(
                    item.get("content"),
                    description=item.get("description"),
                    due_string=item.get("due_string"),
                    priority=item.get("priority"),
                    labels=item.get("labels"),
                    deadline_date=item.get("deadline_date"),
                    project_id=parent.project_id,
                    parent_id=parent.id,
                )
                created.append(await self.client.add_task(payload))
            except ValidationError as e:
                errors.append(f"- {content}: {e.message}")
            except Exception as e:
                logging.warning(f"Bulk subtask create under {parent.id}: '{content}' failed: {e}")
                errors.append(f"- {describe_api_failure(content, e)}")

        self.tasks.invalidate_tasks()
        return bulk_report(
            f"{dry_run_prefix(dry_run=self.dry_run)}Created {len(created)} subtasks under parent "
            f"\"{parent.content}\" (ID: {parent.id})\nFailed: {len(errors)}",
            "Created subtasks",
            [f"- {t.get('content')} (ID: {t.get('id')})" for t in created],
            errors,
        )

    async def convert_to_subtask(
        self,
        task_id: Optional[str] = None,
        task_name: Optional[str] = None,
        parent_task_id: Optional[str] = None,
        parent_task_name: Optional[str] = None,
    ) -> str:
        task = await self._find(task_id, task_name, "task")
        parent = await self._find(parent_task_id, parent_task_name, "parent_task")

        if task.id == parent.id:
            raise ValidationError(f'Task "{task.content}" cannot be its own parent')
        if task.parent_id:
            raise ValidationError(f'Task "{task.content}" is already a subtask')
        if task.id in await self._ancestor_ids(parent):
            raise SubtaskError(f'"{parent.content}" is a descendant of "{task.content}"; this would create a cycle')

        moved = await self.client.move_task(task.id, parent_id=parent.id)
        self.tasks.invalidate_tasks()
        return (
            f"{dry_run_prefix(moved, self.dry_run)}Converted task \"{task.content}\" (ID: {task.id}) "
            f"to subtask of \"{parent.content}\" (ID: {parent.id})"
        )

    async def _ancestor_ids(self, task: Task) -> List[str]:
        tasks_by_id = {t.id: t for t in await get_all_tasks(self.client, self.cache)}
        ancestors: List[str] = []
        current = task
        while current.parent_id and current.parent_id not in ancestors:
            ancestors.append(current.parent_id)
            current = tasks_by_id.get(current.parent_id)
            if current is None:
                break
        return ancestors

    async def promote_subtask(
        self,
        subtask_id: Optional[str] = None,
        subtask_name: Optional[str] = None,
        project_id: Optional[str] = None,
        section_id: Optional[str] = None,
    ) -> str:
        project_id = validate_id(project_id, "project_id")
        section_id = validate_id(section_id, "section_id")
        subtask = await self._find(subtask_id, subtask_name, "subtask")
        if not subtask.parent_id:
            raise ValidationError(f'Task "{subtask.content}" is not a subtask')

        # Moving to a project or section detaches the task from its parent
        if section_id:
            moved = await self.client.move_task(subtask.id, section_id=section_id)
        else:
            moved = await self.client.move_task(subtask.id, project_id=project_id or subtask.project_id)
        self.tasks.invalidate_tasks()
        return f"{dry_run_prefix(moved, self.dry_run)}Promoted subtask \"{subtask.content}\" (ID: {subtask.id}) to main task"

    async def get_hierarchy(
        self,
        task_id: Optional[str] = None,
        task_name: Optional[str] = None,
        include_completed: bool = False,
    ) -> str:
        builder = TaskHierarchyBuilder(self.client, self.cache)
        hierarchy = await builder.get_hierarchy(task_id=task_id, task_name=task_name, include_completed=include_completed)
        return format_task_hierarchy(hierarchy)


def _handlers() -> SubtaskHandlers:
    return SubtaskHandlers(TodoistClientSingleton.get_client(), TodoistClientSingleton.get_caches())


# ================== #
# Subtask Tools      #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_subtask_create(
    content: str,
    parent_task_id: Optional[str] = None,
    parent_task_name: Optional[str] = None,
    description: Optional[str] = None,
    due_string: Optional[str] = None,
    priority: Optional[int] = None,
    labels: Optional[List[str]] = None,
    deadline_date: Optional[str] = None,
) -> str:
    """
    Creates a subtask under an existing task. The subtask is placed in the parent's project.

    Args:
        content (str): Title of the subtask.
        parent_task_id (str, optional): ID of the parent task.
        parent_task_name (str, optional): Part of the parent's title, used when no ID is given.
        description (str, optional): Notes for the subtask.
        due_string (str, optional): Natural language due date.
        priority (int, optional): 1 (highest) to 4 (lowest).
        labels (List[str], optional): Label names.
        deadline_date (str, optional): YYYY-MM-DD.

    Example:
        {"parent_task_name": "Plan trip", "content": "Book flights", "priority": 1}
    """
    logging.info(f"Attempting to create subtask '{content}' under {parent_task_id or parent_task_name}")
    try:
        return await _handlers().create_subtask(
            content,
            parent_task_id=parent_task_id,
            parent_task_name=parent_task_name,
            description=description,
            due_string=due_string,
            priority=priority,
            labels=labels,
            deadline_date=deadline_date,
        )
    except Exception as e:
        return format_error("create subtask", e)


@mcp.tool()
@require_todoist_client
async def todoist_subtasks_bulk_create(
    subtasks: List[Dict[str, Any]],
    parent_task_id: Optional[str] = None,
    parent_task_name: Optional[str] = None,
) -> str:
    """
    Creates several subtasks under one parent. Failures are listed without stopping the rest.

    Args:
        subtasks: List of objects with content (required) and optional description,
                  due_string, priority, labels, deadline_date.
        parent_task_id (str, optional): ID of the parent task.
        parent_task_name (str, optional): Part of the parent's title.
    """
    try:
        return await _handlers().bulk_create_subtasks(subtasks, parent_task_id=parent_task_id, parent_task_name=parent_task_name)
    except Exception as e:
        return format_error("bulk create subtasks", e)


@mcp.tool()
@require_todoist_client
async def todoist_task_convert_to_subtask(
    task_id: Optional[str] = None,
    task_name: Optional[str] = None,
    parent_task_id: Optional[str] = None,
    parent_task_name: Optional[str] = None,
) -> str:
    """
    Makes an existing top-level task a subtask of another task.

    Args:
        task_id / task_name: The task to convert.
        parent_task_id / parent_task_name: The new parent.
    """
    logging.info(f"Attempting to convert {task_id or task_name} to subtask of {parent_task_id or parent_task_name}")
    try:
        return await _handlers().convert_to_subtask(
            task_id=task_id,
            task_name=task_name,
            parent_task_id=parent_task_id,
            parent_task_name=parent_task_name,
        )
    except Exception as e:
        return format_error("convert task to subtask", e)


@mcp.tool()
@require_todoist_client
async def todoist_subtask_promote(
    subtask_id: Optional[str] = None,
    subtask_name: Optional[str] = None,
    project_id: Optional[str] = None,
    section_id: Optional[str] = None,
) -> str:
    """
    Turns a subtask into a top-level task.

    Args:
        subtask_id / subtask_name: The subtask to promote.
        project_id (str, optional): Destination project. Defaults to the subtask's current project.
        section_id (str, optional): Destination section.
    """
    logging.info(f"Attempting to promote subtask {subtask_id or subtask_name}")
    try:
        return await _handlers().promote_subtask(
            subtask_id=subtask_id,
            subtask_name=subtask_name,
            project_id=project_id,
            section_id=section_id,
        )
    except Exception as e:
        return format_error("promote subtask", e)


@mcp.tool()
@require_todoist_client
async def todoist_task_hierarchy_get(
    task_id: Optional[str] = None,
    task_name: Optional[str] = None,
    include_completed: bool = False,
) -> str:
    """
    Shows the full family tree of a task: its topmost ancestor and every
    descendant, with completion percentages.

    Args:
        task_id (str, optional): ID of any task in the family.
        task_name (str, optional): Part of the task's title.
        include_completed (bool): Also show completed subtasks. Defaults to False.

    Returns:
        An indented tree, e.g.
            ○ Launch website (ID: 1) [33%]
              ✓ Design (ID: 2)
              ○ Build (ID: 3) ← current task
    """
    try:
        return await _handlers().get_hierarchy(task_id=task_id, task_name=task_name, include_completed=include_completed)
    except Exception as e:
        return format_error("get task hierarchy", e)
