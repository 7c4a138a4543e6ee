from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

TaskId = str
ProjectId = str
SectionId = str
TaskDict = Dict[str, Any]


class Due(BaseModel):
    """Due information as returned by Todoist. Only 'date' is relied upon."""
    date: Optional[str] = None
    string: Optional[str] = None
    datetime: Optional[str] = None
    timezone: Optional[str] = None
    is_recurring: Optional[bool] = None
    lang: Optional[str] = None

    class Config:
        extra = "allow"


class Task(BaseModel):
    """
    A Todoist task.

    Only the fields used by hierarchy building and display are declared;
    anything else the API sends is kept as an extra field.
    The API reports completion as 'checked' (v1) or 'is_completed' (REST v2),
    both populate is_completed.
    """
    id: TaskId
    content: str = ""
    description: Optional[str] = None
    project_id: Optional[ProjectId] = None
    section_id: Optional[SectionId] = None
    parent_id: Optional[TaskId] = Field(None)
    is_completed: bool = Field(False, alias="checked")
    labels: List[str] = Field(default_factory=list)
    priority: Optional[int] = None
    due: Optional[Due] = None
    deadline: Optional[Dict[str, Any]] = None
    added_at: Optional[str] = None

    class Config:
        populate_by_name = True
        extra = "allow"

    @field_validator("id", "parent_id", "project_id", "section_id", mode="before")
    @classmethod
    def _ids_as_strings(cls, v: Any) -> Any:
        # Older payloads carry numeric ids
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("labels", mode="before")
    @classmethod
    def _labels_default(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def from_api(cls, data: TaskDict) -> "Task":
        if "is_completed" in data and "checked" not in data:
            data = {**data, "checked": data["is_completed"]}
        return cls.model_validate(data)


class TaskNode(BaseModel):
    task: Task
    children: List["TaskNode"] = Field(default_factory=list)
    depth: int = 0
    completion_percentage: int = 0
    total_tasks: int = 1
    completed_tasks: int = 0
    is_original_task: bool = False

    def walk(self):
        """Yields this node and every descendant, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()


class TaskHierarchy(BaseModel):
    root: TaskNode
    total_tasks: int
    completed_tasks: int
    overall_completion: int
    original_task_id: TaskId


TaskNode.model_rebuild()
