import datetime
import itertools
import json
import logging
from typing import Any, Dict, Optional

from .errors import (
    LabelNotFoundError,
    ProjectNotFoundError,
    SectionNotFoundError,
    TaskNotFoundError,
    TodoistAPIError,
)

_ID_BASES = {
    "task": 100000,
    "project": 200000,
    "section": 300000,
    "comment": 400000,
    "label": 500000,
}


class DryRunClient:
    """
    Wraps a TodoistClient so mutations are simulated instead of sent.

    Reads go to the real API. Each mutation first checks that the entities
    it references exist, logs what it would have done and returns a
    fabricated entity marked with "__dry_run".
    """

    dry_run = True

    def __init__(self, client: Any):
        self._client = client
        self._counters = {kind: itertools.count(base + 1) for kind, base in _ID_BASES.items()}

    def __getattr__(self, name: str) -> Any:
        # Read methods pass straight through
        return getattr(self._client, name)

    def _next_id(self, kind: str) -> str:
        return str(next(self._counters[kind]))

    @staticmethod
    def _log(action: str, entity: str, details: str) -> None:
        logging.info(f"[DRY-RUN] Would {action} {entity}: {details}")

    @staticmethod
    def _now() -> str:
        return datetime.datetime.now(datetime.timezone.utc).isoformat()

    async def _require(self, fetch, entity_id: Optional[str], not_found) -> Optional[Dict[str, Any]]:
        if not entity_id:
            return None
        try:
            return await fetch(entity_id)
        except TodoistAPIError as e:
            if e.is_not_found:
                raise not_found(entity_id) from e
            raise

    # --- Tasks --- #
    async def add_task(self, data: Dict[str, Any]) -> Dict[str, Any]:
        await self._require(self._client.get_project, data.get("project_id"), ProjectNotFoundError)
        await self._require(self._client.get_section, data.get("section_id"), SectionNotFoundError)
        await self._require(self._client.get_task, data.get("parent_id"), TaskNotFoundError)

        self._log(
            "create", "task",
            f"\"{data.get('content')}\" in project {data.get('project_id') or 'default'}, "
            f"section {data.get('section_id') or 'none'}",
        )
        due_string = data.get("due_string")
        return {
            "id": self._next_id("task"),
            "content": data.get("content", ""),
            "description": data.get("description") or "",
            "project_id": data.get("project_id") or "inbox",
            "section_id": data.get("section_id"),
            "parent_id": data.get("parent_id"),
            "labels": data.get("labels") or [],
            "priority": data.get("priority") or 1,
            "due": {"string": due_string, "date": due_string} if due_string else None,
            "deadline": {"date": data["deadline_date"]} if data.get("deadline_date") else None,
            "checked": False,
            "added_at": self._now(),
            "__dry_run": True,
        }

    async def update_task(self, task_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        existing = await self._require(self._client.get_task, task_id, TaskNotFoundError)
        self._log("update", "task", f"ID {task_id} - \"{existing.get('content')}\" changes: {json.dumps(data, default=str)}")
        updated = {**existing, **{k: v for k, v in data.items() if k != "due_string"}}
        if data.get("due_string"):
            updated["due"] = {"string": data["due_string"], "date": data["due_string"]}
        updated["__dry_run"] = True
        return updated

    async def delete_task(self, task_id: str) -> bool:
        existing = await self._require(self._client.get_task, task_id, TaskNotFoundError)
        self._log("delete", "task", f"ID {task_id} - \"{existing.get('content')}\"")
        return True

    async def close_task(self, task_id: str) -> bool:
        existing = await self._require(self._client.get_task, task_id, TaskNotFoundError)
        self._log("complete", "task", f"ID {task_id} - \"{existing.get('content')}\"")
        return True

    async def move_task(
        self,
        task_id: str,
        project_id: Optional[str] = None,
        section_id: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        existing = await self._require(self._client.get_task, task_id, TaskNotFoundError)
        await self._require(self._client.get_project, project_id, ProjectNotFoundError)
        await self._require(self._client.get_section, section_id, SectionNotFoundError)
        await self._require(self._client.get_task, parent_id, TaskNotFoundError)
        target = {"project_id": project_id, "section_id": section_id, "parent_id": parent_id}
        target = {k: v for k, v in target.items() if v}
        self._log("move", "task", f"ID {task_id} - \"{existing.get('content')}\" to {target}")
        moved = {**existing, **target, "__dry_run": True}
        if project_id and not parent_id:
            moved["parent_id"] = None
        return moved

    # --- Projects and Sections --- #
    async def add_project(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._log("create", "project", f"\"{data.get('name')}\"")
        return {
            "id": self._next_id("project"),
            "name": data.get("name"),
            "color": data.get("color") or "charcoal",
            "is_favorite": bool(data.get("is_favorite")),
            "parent_id": data.get("parent_id"),
            "__dry_run": True,
        }

    async def add_section(self, data: Dict[str, Any]) -> Dict[str, Any]:
        await self._require(self._client.get_project, data.get("project_id"), ProjectNotFoundError)
        self._log("create", "section", f"\"{data.get('name')}\" in project {data.get('project_id')}")
        return {
            "id": self._next_id("section"),
            "name": data.get("name"),
            "project_id": data.get("project_id"),
            "__dry_run": True,
        }

    # --- Labels --- #
    async def add_label(self, data: Dict[str, Any]) -> Dict[str, Any]:
        self._log("create", "label", f"\"{data.get('name')}\"")
        return {
            "id": self._next_id("label"),
            "name": data.get("name"),
            "color": data.get("color") or "charcoal",
            "item_order": data.get("item_order"),
            "is_favorite": bool(data.get("is_favorite")),
            "__dry_run": True,
        }

    async def update_label(self, label_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        existing = await self._require(self._client.get_label, label_id, LabelNotFoundError)
        self._log("update", "label", f"ID {label_id} - \"{existing.get('name')}\" changes: {json.dumps(data, default=str)}")
        return {**existing, **data, "__dry_run": True}

    async def delete_label(self, label_id: str) -> bool:
        existing = await self._require(self._client.get_label, label_id, LabelNotFoundError)
        self._log("delete", "label", f"ID {label_id} - \"{existing.get('name')}\"")
        return True

    # --- Comments --- #
    async def add_comment(self, data: Dict[str, Any]) -> Dict[str, Any]:
        await self._require(self._client.get_task, data.get("task_id"), TaskNotFoundError)
        await self._require(self._client.get_project, data.get("project_id"), ProjectNotFoundError)
        self._log("create", "comment", f"on task {data.get('task_id') or '-'}: \"{data.get('content')}\"")
        return {
            "id": self._next_id("comment"),
            "content": data.get("content"),
            "task_id": data.get("task_id"),
            "project_id": data.get("project_id"),
            "attachment": data.get("attachment"),
            "posted_at": self._now(),
            "__dry_run": True,
        }
