import datetime
import re
from typing import Any, List, Optional

from .errors import ValidationError

TASK_CONTENT_MAX = 500
TASK_NAME_MAX = 200
PROJECT_NAME_MAX = 120
SECTION_NAME_MAX = 120
LABEL_NAME_MAX = 100
DESCRIPTION_MAX = 16384
COMMENT_MAX = 10000
LABELS_MAX_COUNT = 10
QUERY_LIMIT_MAX = 100
URL_MAX = 2048
PRIORITY_MIN = 1
PRIORITY_MAX = 4

# Todoist palette names accepted for projects and labels
COLORS = {
    "berry_red", "red", "orange", "yellow", "olive_green", "lime_green", "green",
    "mint_green", "teal", "sky_blue", "light_blue", "blue", "grape", "violet",
    "lavender", "magenta", "salmon", "charcoal", "grey", "taupe",
}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def sanitize_text(value: Any, field: str) -> str:
    """Trims whitespace and strips control characters."""
    if not isinstance(value, str):
        raise ValidationError("must be a string", field)
    return _CONTROL_CHARS.sub("", value.strip())


def _require_text(value: Any, field: str, max_length: int) -> str:
    text = sanitize_text(value, field)
    if not text:
        raise ValidationError("must not be empty", field)
    if len(text) > max_length:
        raise ValidationError(f"must be at most {max_length} characters", field)
    return text


def validate_task_content(content: Any) -> str:
    return _require_text(content, "content", TASK_CONTENT_MAX)


def validate_description(description: Any) -> Optional[str]:
    if description is None:
        return None
    text = sanitize_text(description, "description")
    if len(text) > DESCRIPTION_MAX:
        raise ValidationError(f"must be at most {DESCRIPTION_MAX} characters", "description")
    return text


def validate_comment_content(content: Any) -> str:
    return _require_text(content, "content", COMMENT_MAX)


def validate_project_name(name: Any) -> str:
    return _require_text(name, "name", PROJECT_NAME_MAX)


def validate_section_name(name: Any) -> str:
    return _require_text(name, "name", SECTION_NAME_MAX)


def validate_label_name(name: Any) -> str:
    return _require_text(name, "name", LABEL_NAME_MAX)


def validate_priority(priority: Any) -> Optional[int]:
    if priority is None:
        return None
    if isinstance(priority, bool) or not isinstance(priority, int) or not PRIORITY_MIN <= priority <= PRIORITY_MAX:
        raise ValidationError(f"must be an integer between {PRIORITY_MIN} and {PRIORITY_MAX}", "priority")
    return priority


def validate_date_string(value: Any, field: str) -> Optional[str]:
    """Accepts YYYY-MM-DD dates that exist on the calendar."""
    if value is None or value == "":
        return None
    if not isinstance(value, str) or not re.fullmatch(r"\d{4}-\d{2}-\d{2}", value.strip()):
        raise ValidationError("must be in YYYY-MM-DD format", field)
    try:
        datetime.date.fromisoformat(value.strip())
    except ValueError:
        raise ValidationError("is not a valid date", field)
    return value.strip()


def validate_labels(labels: Any) -> Optional[List[str]]:
    if labels is None:
        return None
    if not isinstance(labels, list):
        raise ValidationError("must be a list of label names", "labels")
    if len(labels) > LABELS_MAX_COUNT:
        raise ValidationError(f"at most {LABELS_MAX_COUNT} labels are allowed", "labels")
    return [_require_text(label, "labels", LABEL_NAME_MAX) for label in labels]


def validate_id(value: Any, field: str) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or not _ID_PATTERN.match(value.strip()):
        raise ValidationError("must be a valid ID", field)
    return value.strip()


def validate_limit(limit: Any) -> Optional[int]:
    if limit is None:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= QUERY_LIMIT_MAX:
        raise ValidationError(f"must be an integer between 1 and {QUERY_LIMIT_MAX}", "limit")
    return limit


def validate_color(color: Any) -> Optional[str]:
    if color is None:
        return None
    if not isinstance(color, str) or color.strip().lower() not in COLORS:
        raise ValidationError(f"must be one of: {', '.join(sorted(COLORS))}", "color")
    return color.strip().lower()


def validate_url(url: Any, field: str = "url") -> str:
    text = _require_text(url, field, URL_MAX)
    if not re.match(r"^https?://[^\s/$.?#].[^\s]*$", text, re.IGNORECASE):
        raise ValidationError("must be a valid http or https URL", field)
    return text


def validate_task_identifier(task_id: Optional[str], task_name: Optional[str]) -> None:
    if not task_id and not task_name:
        raise ValidationError("Either task_id or task_name must be provided")
    if task_name is not None and task_name and len(task_name) > TASK_NAME_MAX:
        raise ValidationError(f"must be at most {TASK_NAME_MAX} characters", "task_name")
