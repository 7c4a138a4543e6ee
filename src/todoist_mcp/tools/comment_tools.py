import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..cache import CacheManager
from ..client import COMMENTS_CACHE, TASKS_CACHE, TodoistClientSingleton
from ..errors import ValidationError
from ..helpers import (
    create_cache_key,
    dry_run_prefix,
    extract_array_from_response,
    find_task,
    format_error,
    parse_model,
    require_todoist_client,
)
from ..mcp_instance import mcp
from ..validation import sanitize_text, validate_comment_content, validate_id, validate_url


class CommentAttachment(BaseModel):
    """A file reference attached to a comment."""
    file_name: str = Field(..., description="Displayed file name")
    file_url: str = Field(..., description="Publicly reachable URL of the file")
    file_type: Optional[str] = Field(None, description="MIME type, e.g. application/pdf")

    def to_api(self) -> Dict[str, Any]:
        data = {
            "resource_type": "file",
            "file_name": sanitize_text(self.file_name, "attachment.file_name"),
            "file_url": validate_url(self.file_url, "attachment.file_url"),
        }
        if self.file_type:
            data["file_type"] = self.file_type
        return data


def _format_attachment(attachment: Any) -> Optional[str]:
    if not isinstance(attachment, dict) or not attachment.get("file_name"):
        return None
    return f"{attachment['file_name']} ({attachment.get('file_type') or 'unknown type'})"


class CommentHandlers:
    """Comments on tasks and projects. Listings are cached per target."""

    def __init__(self, client: Any, caches: CacheManager):
        self.client = client
        self.caches = caches
        self.cache = caches.get_or_create(COMMENTS_CACHE)
        self.tasks_cache = caches.get_or_create(TASKS_CACHE)

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self.client, "dry_run", False))

    async def create_comment(
        self,
        content: str,
        task_id: Optional[str] = None,
        task_name: Optional[str] = None,
        attachment: Optional[Dict[str, Any]] = None,
    ) -> str:
        content = validate_comment_content(content)
        if not task_id and not task_name:
            raise ValidationError("Either task_id or task_name must be provided")
        file = None
        if attachment is not None:
            file = parse_model(CommentAttachment, attachment, "attachment").to_api()

        task = await find_task(self.client, self.tasks_cache, task_id=task_id, task_name=task_name)
        payload: Dict[str, Any] = {"content": content, "task_id": task.id}
        if file:
            payload["attachment"] = file

        comment = await self.client.add_comment(payload)
        self.caches.invalidate(COMMENTS_CACHE)

        lines = [f"{dry_run_prefix(comment, self.dry_run)}Comment added to task \"{task.content}\":", f"Content: {comment.get('content')}"]
        described = _format_attachment(comment.get("attachment"))
        if described:
            lines.append(f"Attachment: {described}")
        lines.append(f"Posted at: {comment.get('posted_at') or 'just now'}")
        return "\n".join(lines)

    async def _comments_for(self, task_id: Optional[str], project_id: Optional[str]) -> List[Dict[str, Any]]:
        key = create_cache_key("comments", {"task_id": task_id, "project_id": project_id})
        comments = self.cache.get(key)
        if comments is None:
            comments = extract_array_from_response(await self.client.get_comments(task_id=task_id, project_id=project_id))
            self.cache.set(key, comments)
        return comments

    async def get_comments(
        self,
        task_id: Optional[str] = None,
        task_name: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> str:
        project_id = validate_id(project_id, "project_id")
        if task_id or task_name:
            task = await find_task(self.client, self.tasks_cache, task_id=task_id, task_name=task_name)
            comments = await self._comments_for(task.id, None)
        elif project_id:
            comments = await self._comments_for(None, project_id)
        else:
            raise ValidationError("One of task_id, task_name or project_id must be provided")

        if not comments:
            return "No comments found."
        blocks = []
        for comment in comments:
            lines = [f"- {comment.get('content')}"]
            described = _format_attachment(comment.get("attachment") or comment.get("file_attachment"))
            if described:
                lines.append(f"  Attachment: {described}")
            lines.append(f"  Posted: {comment.get('posted_at') or 'Unknown'}")
            if comment.get("task_id") or comment.get("item_id"):
                lines.append(f"  Task ID: {comment.get('task_id') or comment.get('item_id')}")
            if comment.get("project_id"):
                lines.append(f"  Project ID: {comment['project_id']}")
            blocks.append("\n".join(lines))
        return f"Found {len(comments)} comment{'s' if len(comments) > 1 else ''}:\n\n" + "\n\n".join(blocks)


def _handlers() -> CommentHandlers:
    return CommentHandlers(TodoistClientSingleton.get_client(), TodoistClientSingleton.get_caches())


# ================== #
# Comment Tools      #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_comment_create(
    content: str,
    task_id: Optional[str] = None,
    task_name: Optional[str] = None,
    attachment: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Adds a comment to a task.

    Args:
        content (str): Comment text (markdown allowed).
        task_id (str, optional): ID of the task.
        task_name (str, optional): Part of the task's title, used when no ID is given.
        attachment (dict, optional): {"file_name": ..., "file_url": ..., "file_type": ...}

    Example:
        {"task_name": "Quarterly report", "content": "Draft shared with finance"}
    """
    logging.info(f"Attempting to add comment to task: {task_id or task_name}")
    try:
        return await _handlers().create_comment(content, task_id=task_id, task_name=task_name, attachment=attachment)
    except Exception as e:
        return format_error("create comment", e)


@mcp.tool()
@require_todoist_client
async def todoist_comment_get(
    task_id: Optional[str] = None,
    task_name: Optional[str] = None,
    project_id: Optional[str] = None,
) -> str:
    """
    Lists the comments of a task (by ID or name) or of a project.

    Args:
        task_id (str, optional): Task whose comments to list.
        task_name (str, optional): Part of the task's title.
        project_id (str, optional): Project whose comments to list.
    """
    try:
        return await _handlers().get_comments(task_id=task_id, task_name=task_name, project_id=project_id)
    except Exception as e:
        return format_error("get comments", e)
