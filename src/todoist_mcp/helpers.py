import functools
import json
import logging
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .cache import TTLCache
from .errors import TaskNotFoundError, TodoistAPIError, ValidationError, describe_error
from .models import Task

ALL_TASKS_KEY = "all_tasks"

PRIORITY_MIN = 1
PRIORITY_MAX = 4


# --- Response Formatting --- #
def format_response(result: Any) -> str:
    """Formats a structured result into a JSON string for MCP."""
    if isinstance(result, (dict, list)):
        try:
            # default=str handles datetimes and pydantic leftovers
            return json.dumps(result, indent=2, default=str)
        except TypeError as e:
            logging.error(f"Failed to serialize response object: {e} - Object: {result}", exc_info=True)
            return json.dumps({"error": "Failed to serialize response", "details": str(e)})
    elif result is None:
        return json.dumps(None)
    else:
        logging.warning(f"Formatting unexpected type: {type(result)} - Value: {result}")
        return json.dumps({"result": str(result)})


def format_error(operation: str, error: BaseException) -> str:
    """Logs a failed tool call and renders the message returned to the client."""
    if isinstance(error, (ValidationError, TaskNotFoundError)):
        logging.warning(f"{operation} failed: {error}")
    else:
        logging.error(f"{operation} failed: {error}", exc_info=True)
    return describe_error(error)


# --- Decorator for Client Check --- #
def require_todoist_client(func):
    """Decorator to check the Todoist client is initialized before calling the tool."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        # Imported lazily so tests can reset the singleton between runs
        from .client import TodoistClientSingleton

        if not TodoistClientSingleton.is_initialized():
            logging.error(f"Todoist client accessed before initialization in tool '{func.__name__}'.")
            return "Error [TOOL_ERROR]: Todoist client not initialized."
        return await func(*args, **kwargs)
    return wrapper


# --- Response Normalizer --- #
def extract_array_from_response(response: Any) -> List[Any]:
    """
    Returns the entity list carried by a Todoist response.

    The API has answered with a bare list, {"results": [...]} and
    {"data": [...]} across versions. Unrecognised shapes give an empty list.
    """
    if isinstance(response, list):
        return response
    if isinstance(response, Mapping):
        if isinstance(response.get("results"), list):
            return response["results"]
        if isinstance(response.get("data"), list):
            return response["data"]
    return []


def create_cache_key(prefix: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Builds a stable cache key, ignoring parameters that are None."""
    clean = {k: v for k, v in sorted((params or {}).items()) if v is not None}
    return f"{prefix}_{json.dumps(clean, sort_keys=True, default=str)}"


# --- Priority Mapping --- #
def _is_valid_priority(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and PRIORITY_MIN <= value <= PRIORITY_MAX


def to_api_priority(priority: Optional[int]) -> Optional[int]:
    """User priority (1 = highest) to Todoist API priority (4 = highest)."""
    if not _is_valid_priority(priority):
        return None
    return PRIORITY_MAX + PRIORITY_MIN - priority


def from_api_priority(priority: Optional[int]) -> Optional[int]:
    """Todoist API priority (4 = highest) to user priority (1 = highest)."""
    if not _is_valid_priority(priority):
        return None
    return PRIORITY_MAX + PRIORITY_MIN - priority


def percentage(part: int, whole: int) -> int:
    """Integer percentage rounded half up (Python's round() rounds half to even)."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


# --- Display --- #
def _field(entity: Any, name: str, default: Any = None) -> Any:
    if isinstance(entity, Mapping):
        return entity.get(name, default)
    return getattr(entity, name, default)


def get_due_date(due: Any) -> Optional[str]:
    """YYYY-MM-DD part of a due object, or None."""
    if not due:
        return None
    date = _field(due, "date") or _field(due, "datetime")
    if not date or not isinstance(date, str):
        return None
    return date[:10]


def format_due_details(due: Any) -> Optional[str]:
    if not due:
        return None
    date = _field(due, "datetime") or _field(due, "date")
    text = _field(due, "string")
    if text and date and text != date:
        return f"{text} ({date})"
    return text or date


def format_task_for_display(task: Any) -> str:
    """Multi-line rendering of a single task, used by listing tools."""
    task_id = _field(task, "id")
    lines = [f"- {_field(task, 'content', '')}" + (f" (ID: {task_id})" if task_id else "")]
    description = _field(task, "description")
    if description:
        lines.append(f"  Description: {description}")
    due = format_due_details(_field(task, "due"))
    if due:
        lines.append(f"  Due: {due}")
    deadline = _field(task, "deadline")
    if deadline and _field(deadline, "date"):
        lines.append(f"  Deadline: {_field(deadline, 'date')}")
    priority = from_api_priority(_field(task, "priority"))
    if priority:
        lines.append(f"  Priority: {priority}")
    labels = _field(task, "labels") or []
    if labels:
        lines.append(f"  Labels: {', '.join(labels)}")
    return "\n".join(lines)


def dry_run_prefix(entity: Any = None, dry_run: bool = False) -> str:
    if dry_run or (isinstance(entity, Mapping) and entity.get("__dry_run")):
        return "[DRY-RUN] "
    return ""


# --- Task Lookup --- #
async def get_all_tasks(client: Any, cache: TTLCache) -> List[Task]:
    """Full set of active tasks, served from the cache when fresh."""
    tasks = cache.get(ALL_TASKS_KEY)
    if tasks is not None:
        return tasks

    response = await client.get_tasks()
    tasks = [Task.from_api(t) for t in extract_array_from_response(response) if isinstance(t, Mapping)]
    cache.set(ALL_TASKS_KEY, tasks)
    logging.info(f"Fetched {len(tasks)} tasks from Todoist.")
    return tasks


async def find_task(
    client: Any,
    cache: TTLCache,
    task_id: Optional[str] = None,
    task_name: Optional[str] = None,
) -> Task:
    """
    Resolves a task by id, or by case-insensitive substring of its content.

    An id is first looked up in the (cached) task set, then fetched directly
    so completed tasks can still be found. When both are given and the id
    does not resolve, the name is tried.
    """
    if not task_id and not task_name:
        raise ValidationError("Either task_id or task_name is required")

    if task_id:
        for task in await get_all_tasks(client, cache):
            if task.id == task_id:
                return task
        try:
            data = await client.get_task(task_id)
            if isinstance(data, Mapping):
                return Task.from_api(data)
        except TodoistAPIError as e:
            if not e.is_not_found:
                raise
        if not task_name:
            raise TaskNotFoundError(f"ID: {task_id}")

    search = task_name.lower()
    for task in await get_all_tasks(client, cache):
        if search in task.content.lower():
            return task
    raise TaskNotFoundError(task_name)


def task_summary(tasks: List[Any]) -> str:
    return "\n".join(f"- {_field(t, 'content', '')} (ID: {_field(t, 'id')})" for t in tasks)


# --- Input Models --- #
def parse_model(model: Any, data: Any, field: str) -> Any:
    """Validates tool input against a pydantic model, reporting failures as ValidationError."""
    if isinstance(data, model):
        return data
    if not isinstance(data, Mapping):
        raise ValidationError("must be an object", field)
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        # ValidationError raised inside a model validator propagates untouched
        problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ValidationError(problems, field) from e
