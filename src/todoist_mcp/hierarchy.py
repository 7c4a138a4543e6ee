import logging
from typing import Any, Dict, List, Optional, Set

from .cache import TTLCache
from .helpers import find_task, get_all_tasks, percentage
from .models import Task, TaskHierarchy, TaskNode


def find_topmost_ancestor(task: Task, tasks_by_id: Dict[str, Task]) -> Task:
    """
    Follows parent links upward from task.

    Stops at a task without a parent, at a parent missing from the set
    (dangling reference), or when a task is reached twice (cycle). In the
    last two cases the current task is taken as the top.
    """
    current = task
    visited: Set[str] = set()
    while current.parent_id:
        if current.id in visited:
            logging.warning(f"Parent cycle detected at task {current.id}, truncating ancestor walk.")
            break
        visited.add(current.id)
        parent = tasks_by_id.get(current.parent_id)
        if parent is None:
            logging.debug(f"Parent {current.parent_id} of task {current.id} not in task set, treating task as top.")
            break
        current = parent
    return current


class TaskHierarchyBuilder:
    """
    Builds the tree of a task's family: its topmost ancestor and every
    descendant of that ancestor, with completion rolled up at each node.

    The flat task list is cached; nodes are rebuilt on every query.
    """

    def __init__(self, client: Any, cache: TTLCache):
        self.client = client
        self.cache = cache

    async def get_hierarchy(
        self,
        task_id: Optional[str] = None,
        task_name: Optional[str] = None,
        include_completed: bool = False,
    ) -> TaskHierarchy:
        requested = await find_task(self.client, self.cache, task_id=task_id, task_name=task_name)
        all_tasks = await get_all_tasks(self.client, self.cache)
        return build_hierarchy(requested, all_tasks, include_completed)


def build_hierarchy(requested: Task, all_tasks: List[Task], include_completed: bool = False) -> TaskHierarchy:
    tasks_by_id: Dict[str, Task] = {t.id: t for t in all_tasks}
    # The requested task may come from a direct fetch (e.g. completed tasks)
    tasks_by_id.setdefault(requested.id, requested)

    children_by_parent: Dict[str, List[Task]] = {}
    for task in tasks_by_id.values():
        if task.parent_id:
            children_by_parent.setdefault(task.parent_id, []).append(task)

    root_task = find_topmost_ancestor(requested, tasks_by_id)
    keep = _ancestor_chain(requested, root_task, tasks_by_id)

    def build(task: Task, depth: int, path: Set[str]) -> TaskNode:
        path.add(task.id)
        child_nodes = []
        for child in children_by_parent.get(task.id, []):
            if child.id in path:
                continue
            if child.is_completed and not include_completed and child.id not in keep:
                continue
            child_nodes.append(build(child, depth + 1, path))
        path.discard(task.id)

        total = 1 + sum(c.total_tasks for c in child_nodes)
        completed = (1 if task.is_completed else 0) + sum(c.completed_tasks for c in child_nodes)
        if child_nodes:
            completion = percentage(completed, total)
        else:
            completion = 100 if task.is_completed else 0

        return TaskNode(
            task=task,
            children=child_nodes,
            depth=depth,
            completion_percentage=completion,
            total_tasks=total,
            completed_tasks=completed,
            is_original_task=task.id == requested.id,
        )

    root = build(root_task, 0, set())
    return TaskHierarchy(
        root=root,
        total_tasks=root.total_tasks,
        completed_tasks=root.completed_tasks,
        overall_completion=percentage(root.completed_tasks, root.total_tasks),
        original_task_id=requested.id,
    )


def _ancestor_chain(requested: Task, root: Task, tasks_by_id: Dict[str, Task]) -> Set[str]:
    """Ids from requested up to root; these survive completed-task pruning."""
    chain: Set[str] = set()
    current: Optional[Task] = requested
    while current is not None and current.id not in chain:
        chain.add(current.id)
        if current.id == root.id or not current.parent_id:
            break
        current = tasks_by_id.get(current.parent_id)
    return chain


def format_task_hierarchy(hierarchy: TaskHierarchy) -> str:
    lines: List[str] = []

    def render(node: TaskNode, indent: str) -> None:
        status = "✓" if node.task.is_completed else "○"
        completion = f" [{node.completion_percentage}%]" if node.children else ""
        marker = " ← current task" if node.is_original_task else ""
        lines.append(f"{indent}{status} {node.task.content} (ID: {node.task.id}){completion}{marker}")
        for child in node.children:
            render(child, indent + "  ")

    render(hierarchy.root, "")
    lines.append("")
    lines.append(f"Total tasks: {hierarchy.total_tasks}")
    lines.append(f"Completed: {hierarchy.completed_tasks} ({hierarchy.overall_completion}%)")
    return "\n".join(lines)
