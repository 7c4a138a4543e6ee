from typing import Optional


class TodoistMCPError(Exception):
    """Base class for errors surfaced to MCP tool callers."""

    code = "TODOIST_MCP_ERROR"
    status_code: Optional[int] = None

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class ValidationError(TodoistMCPError):
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        if field:
            message = f"Validation error for field '{field}': {message}"
        super().__init__(message)


class TaskNotFoundError(TodoistMCPError):
    code = "TASK_NOT_FOUND"
    status_code = 404

    def __init__(self, task_ref: str):
        self.task_ref = task_ref
        super().__init__(f'Could not find a task matching "{task_ref}"')


class ProjectNotFoundError(TodoistMCPError):
    code = "PROJECT_NOT_FOUND"
    status_code = 404

    def __init__(self, project_ref: str):
        super().__init__(f'Could not find project "{project_ref}"')


class SectionNotFoundError(TodoistMCPError):
    code = "SECTION_NOT_FOUND"
    status_code = 404

    def __init__(self, section_ref: str):
        super().__init__(f'Could not find section "{section_ref}"')


class LabelNotFoundError(TodoistMCPError):
    code = "LABEL_NOT_FOUND"
    status_code = 404

    def __init__(self, label_ref: str):
        super().__init__(f'Could not find label "{label_ref}"')


class SubtaskError(TodoistMCPError):
    code = "SUBTASK_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(f"Subtask operation error: {message}")


class AuthenticationError(TodoistMCPError):
    code = "AUTHENTICATION_ERROR"
    status_code = 401

    def __init__(self, message: str = "Invalid or missing Todoist API token"):
        super().__init__(message)


class TodoistAPIError(TodoistMCPError):
    """The remote call itself failed (HTTP error status or transport failure)."""

    code = "TODOIST_API_ERROR"
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(f"Todoist API error: {message}", status_code=status_code)

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class ToolLogicError(TodoistMCPError):
    """Raised for failures inside tool plumbing, e.g. an uninitialised client."""

    code = "TOOL_ERROR"
    status_code = 500


def describe_error(error: BaseException) -> str:
    """Renders any exception as the single-line message returned to the MCP client."""
    if isinstance(error, TodoistMCPError):
        return f"Error [{error.code}]: {error.message}"
    return f"Error [UNKNOWN_ERROR]: {error}"
