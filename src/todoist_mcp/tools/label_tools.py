import logging
from typing import Any, Dict, List, Optional

from ..cache import CacheManager
from ..client import LABEL_STATS_CACHE, LABELS_CACHE, TASKS_CACHE, TodoistClientSingleton
from ..errors import LabelNotFoundError, TodoistAPIError, ValidationError
from ..helpers import (
    dry_run_prefix,
    extract_array_from_response,
    format_error,
    get_all_tasks,
    percentage,
    require_todoist_client,
)
from ..mcp_instance import mcp
from ..validation import validate_color, validate_label_name

ALL_LABELS_KEY = "all_labels"
STATS_KEY = "stats"


def _validate_order(order: Any) -> Optional[int]:
    if order is None:
        return None
    if isinstance(order, bool) or not isinstance(order, int) or order < 0:
        raise ValidationError("must be a non-negative integer", "order")
    return order


class LabelHandlers:
    """Personal labels and their usage statistics."""

    def __init__(self, client: Any, caches: CacheManager):
        self.client = client
        self.caches = caches
        self.cache = caches.get_or_create(LABELS_CACHE)
        self.stats_cache = caches.get_or_create(LABEL_STATS_CACHE)

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self.client, "dry_run", False))

    def invalidate(self, tasks: bool = False) -> None:
        # Renaming or deleting a label rewrites it on every task carrying it
        names = [LABELS_CACHE, LABEL_STATS_CACHE]
        if tasks:
            names.append(TASKS_CACHE)
        self.caches.invalidate(*names)

    async def list_labels(self) -> List[Dict[str, Any]]:
        labels = self.cache.get(ALL_LABELS_KEY)
        if labels is None:
            labels = extract_array_from_response(await self.client.get_labels())
            self.cache.set(ALL_LABELS_KEY, labels)
        return labels

    async def find_label(self, label_id: Optional[str] = None, label_name: Optional[str] = None) -> Dict[str, Any]:
        """Looks a label up by id, or by name ignoring case (exact match)."""
        if label_id:
            try:
                return await self.client.get_label(label_id)
            except TodoistAPIError as e:
                if e.is_not_found:
                    raise LabelNotFoundError(f"ID: {label_id}") from e
                raise
        if not label_name:
            raise ValidationError("Either label_id or label_name must be provided")

        wanted = label_name.strip().lower()
        for label in await self.list_labels():
            if str(label.get("name", "")).lower() == wanted:
                return label
        raise LabelNotFoundError(label_name)

    async def get_labels(self) -> str:
        labels = await self.list_labels()
        if not labels:
            return "No labels found."
        lines = [f"Found {len(labels)} labels:"]
        for label in labels:
            color = f", Color: {label['color']}" if label.get("color") else ""
            lines.append(f"• {label.get('name')} (ID: {label.get('id')}{color})")
        return "\n".join(lines)

    async def create_label(
        self,
        name: str,
        color: Optional[str] = None,
        order: Optional[int] = None,
        is_favorite: Optional[bool] = None,
    ) -> str:
        payload: Dict[str, Any] = {"name": validate_label_name(name)}
        color = validate_color(color)
        if color:
            payload["color"] = color
        order = _validate_order(order)
        if order is not None:
            payload["item_order"] = order
        if is_favorite is not None:
            payload["is_favorite"] = bool(is_favorite)

        label = await self.client.add_label(payload)
        self.invalidate()
        return f"{dry_run_prefix(label, self.dry_run)}Label \"{label.get('name')}\" created successfully (ID: {label.get('id')})"

    async def update_label(
        self,
        label_id: Optional[str] = None,
        label_name: Optional[str] = None,
        name: Optional[str] = None,
        color: Optional[str] = None,
        order: Optional[int] = None,
        is_favorite: Optional[bool] = None,
    ) -> str:
        updates: Dict[str, Any] = {}
        changes: List[str] = []
        if name is not None:
            updates["name"] = validate_label_name(name)
            changes.append(f"name: \"{updates['name']}\"")
        color = validate_color(color)
        if color:
            updates["color"] = color
            changes.append(f"color: \"{color}\"")
        order = _validate_order(order)
        if order is not None:
            updates["item_order"] = order
            changes.append(f"order: {order}")
        if is_favorite is not None:
            updates["is_favorite"] = bool(is_favorite)
            changes.append(f"favorite: {str(bool(is_favorite)).lower()}")
        if not updates:
            raise ValidationError("At least one field to update must be provided")

        label = await self.find_label(label_id, label_name)
        result = await self.client.update_label(str(label["id"]), updates)
        self.invalidate(tasks=True)
        return (
            f"{dry_run_prefix(result, self.dry_run)}Label \"{label.get('name')}\" updated successfully"
            f" ({', '.join(changes)})"
        )

    async def delete_label(self, label_id: Optional[str] = None, label_name: Optional[str] = None) -> str:
        label = await self.find_label(label_id, label_name)
        await self.client.delete_label(str(label["id"]))
        self.invalidate(tasks=True)
        return f"{dry_run_prefix(dry_run=self.dry_run)}Label \"{label.get('name')}\" deleted successfully"

    async def label_stats(self) -> List[Dict[str, Any]]:
        """Per-label usage over the active task set, busiest label first."""
        stats = self.stats_cache.get(STATS_KEY)
        if stats is not None:
            return stats

        labels = await self.list_labels()
        tasks = await get_all_tasks(self.client, self.caches.get_or_create(TASKS_CACHE))
        stats = []
        for label in labels:
            name = label.get("name")
            tagged = [t for t in tasks if name in t.labels]
            completed = sum(1 for t in tagged if t.is_completed)
            added = [t.added_at for t in tagged if t.added_at]
            stats.append({
                "label": name,
                "total_tasks": len(tagged),
                "completed_tasks": completed,
                "completion_rate": percentage(completed, len(tagged)),
                "color": label.get("color"),
                "most_recent_use": max(added) if added else None,
            })
        # sorted() is stable, so ties keep label order
        stats = sorted(stats, key=lambda s: s["total_tasks"], reverse=True)
        self.stats_cache.set(STATS_KEY, stats)
        return stats

    async def get_label_stats(self) -> str:
        stats = await self.label_stats()
        if not stats:
            return "No labels found to generate statistics."
        blocks = []
        for stat in stats:
            last_used = stat["most_recent_use"][:10] if stat["most_recent_use"] else "Never"
            blocks.append(
                f"• {stat['label']} ({stat['color'] or 'default'})\n"
                f"  - Total tasks: {stat['total_tasks']}\n"
                f"  - Completed: {stat['completed_tasks']} ({stat['completion_rate']}%)\n"
                f"  - Last used: {last_used}"
            )
        return "Label Usage Statistics:\n\n" + "\n\n".join(blocks)


def _handlers() -> LabelHandlers:
    return LabelHandlers(TodoistClientSingleton.get_client(), TodoistClientSingleton.get_caches())


# ================== #
# Label Tools        #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_label_get() -> str:
    """Lists all personal labels with their IDs and colors."""
    try:
        return await _handlers().get_labels()
    except Exception as e:
        return format_error("get labels", e)


@mcp.tool()
@require_todoist_client
async def todoist_label_create(
    name: str,
    color: Optional[str] = None,
    order: Optional[int] = None,
    is_favorite: Optional[bool] = None,
) -> str:
    """
    Creates a personal label.

    Args:
        name (str): Label name (without '@').
        color (str, optional): Todoist palette name.
        order (int, optional): Position in the label list.
        is_favorite (bool, optional): Mark as favorite.
    """
    logging.info(f"Attempting to create label: '{name}'")
    try:
        return await _handlers().create_label(name, color=color, order=order, is_favorite=is_favorite)
    except Exception as e:
        return format_error("create label", e)


@mcp.tool()
@require_todoist_client
async def todoist_label_update(
    label_id: Optional[str] = None,
    label_name: Optional[str] = None,
    name: Optional[str] = None,
    color: Optional[str] = None,
    order: Optional[int] = None,
    is_favorite: Optional[bool] = None,
) -> str:
    """
    Updates a label found by ID or by exact name (case-insensitive).

    Args:
        label_id (str, optional): Label ID.
        label_name (str, optional): Current label name.
        name (str, optional): New name.
        color (str, optional): New palette color.
        order (int, optional): New position.
        is_favorite (bool, optional): Favorite flag.

    Example:
        {"label_name": "urgent", "color": "red"}
    """
    logging.info(f"Attempting to update label: {label_id or label_name}")
    try:
        return await _handlers().update_label(
            label_id=label_id,
            label_name=label_name,
            name=name,
            color=color,
            order=order,
            is_favorite=is_favorite,
        )
    except Exception as e:
        return format_error("update label", e)


@mcp.tool()
@require_todoist_client
async def todoist_label_delete(label_id: Optional[str] = None, label_name: Optional[str] = None) -> str:
    """
    Deletes a label found by ID or by exact name (case-insensitive).
    Tasks keep existing; the label is removed from them.
    """
    logging.info(f"Attempting to delete label: {label_id or label_name}")
    try:
        return await _handlers().delete_label(label_id=label_id, label_name=label_name)
    except Exception as e:
        return format_error("delete label", e)


@mcp.tool()
@require_todoist_client
async def todoist_label_stats() -> str:
    """
    Reports how each label is used across active tasks: task count, completed
    count and rate, color and the most recent task creation date. Sorted by task count.
    """
    try:
        return await _handlers().get_label_stats()
    except Exception as e:
        return format_error("get label stats", e)
