import logging
from typing import Any, Dict, List, Optional

from ..cache import CacheManager
from ..client import PROJECTS_CACHE, TodoistClientSingleton
from ..errors import ProjectNotFoundError, TodoistAPIError, ValidationError
from ..helpers import (
    create_cache_key,
    dry_run_prefix,
    extract_array_from_response,
    format_error,
    require_todoist_client,
)
from ..mcp_instance import mcp
from ..validation import validate_color, validate_id, validate_project_name, validate_section_name

ALL_PROJECTS_KEY = "all_projects"


class ProjectHandlers:
    """Projects and sections. Both listings are cached in the projects cache."""

    def __init__(self, client: Any, caches: CacheManager):
        self.client = client
        self.caches = caches
        self.cache = caches.get_or_create(PROJECTS_CACHE)

    @property
    def dry_run(self) -> bool:
        return bool(getattr(self.client, "dry_run", False))

    async def list_projects(self) -> List[Dict[str, Any]]:
        projects = self.cache.get(ALL_PROJECTS_KEY)
        if projects is None:
            projects = extract_array_from_response(await self.client.get_projects())
            self.cache.set(ALL_PROJECTS_KEY, projects)
        return projects

    async def resolve_project_id(self, project: str) -> str:
        """Accepts a project id or a project name (case-insensitive, exact)."""
        projects = await self.list_projects()
        for item in projects:
            if str(item.get("id")) == project:
                return str(item["id"])
        wanted = project.strip().lower()
        for item in projects:
            if str(item.get("name", "")).lower() == wanted:
                return str(item["id"])
        raise ProjectNotFoundError(project)

    async def get_projects(self) -> str:
        projects = await self.list_projects()
        if not projects:
            return "No projects found"
        lines = [f"{len(projects)} project{'s' if len(projects) != 1 else ''} found:", ""]
        for item in projects:
            line = f"- {item.get('name')} (ID: {item.get('id')})"
            if item.get("is_favorite"):
                line += " ★"
            lines.append(line)
            if item.get("parent_id"):
                lines.append(f"  Parent ID: {item['parent_id']}")
            if item.get("color"):
                lines.append(f"  Color: {item['color']}")
        return "\n".join(lines)

    async def create_project(
        self,
        name: str,
        color: Optional[str] = None,
        is_favorite: Optional[bool] = None,
        parent_id: Optional[str] = None,
    ) -> str:
        payload: Dict[str, Any] = {"name": validate_project_name(name)}
        color = validate_color(color)
        if color:
            payload["color"] = color
        if is_favorite is not None:
            payload["is_favorite"] = bool(is_favorite)
        parent_id = validate_id(parent_id, "parent_id")
        if parent_id:
            payload["parent_id"] = parent_id

        project = await self.client.add_project(payload)
        self.caches.invalidate(PROJECTS_CACHE)

        lines = [
            f"{dry_run_prefix(project, self.dry_run)}Project created:",
            f"ID: {project.get('id')}",
            f"Name: {project.get('name')}",
        ]
        if project.get("color"):
            lines.append(f"Color: {project['color']}")
        if project.get("parent_id"):
            lines.append(f"Parent ID: {project['parent_id']}")
        if project.get("is_favorite"):
            lines.append("Favorite: yes")
        return "\n".join(lines)

    async def get_sections(self, project_id: Optional[str] = None) -> str:
        project_id = validate_id(project_id, "project_id")
        key = create_cache_key("sections", {"project_id": project_id})
        sections = self.cache.get(key)
        if sections is None:
            try:
                response = await self.client.get_sections(project_id)
            except TodoistAPIError as e:
                if e.is_not_found and project_id:
                    raise ProjectNotFoundError(project_id) from e
                raise
            sections = extract_array_from_response(response)
            self.cache.set(key, sections)

        if not sections:
            return f"No sections found in project {project_id}" if project_id else "No sections found"
        lines = [f"{len(sections)} section{'s' if len(sections) != 1 else ''} found:", ""]
        for item in sections:
            lines.append(f"- {item.get('name')} (ID: {item.get('id')}, Project ID: {item.get('project_id')})")
        return "\n".join(lines)

    async def create_section(self, name: str, project_id: str) -> str:
        payload = {"name": validate_section_name(name), "project_id": validate_id(project_id, "project_id")}
        if not payload["project_id"]:
            raise ValidationError("must not be empty", "project_id")
        try:
            section = await self.client.add_section(payload)
        except TodoistAPIError as e:
            if e.is_not_found:
                raise ProjectNotFoundError(payload["project_id"]) from e
            raise
        self.caches.invalidate(PROJECTS_CACHE)
        return "\n".join([
            f"{dry_run_prefix(section, self.dry_run)}Section created:",
            f"ID: {section.get('id')}",
            f"Name: {section.get('name')}",
            f"Project ID: {section.get('project_id')}",
        ])


def _handlers() -> ProjectHandlers:
    return ProjectHandlers(TodoistClientSingleton.get_client(), TodoistClientSingleton.get_caches())


# ================== #
# Project Tools      #
# ================== #

@mcp.tool()
@require_todoist_client
async def todoist_project_get() -> str:
    """
    Lists all projects with their IDs.

    Use the IDs with todoist_task_create, todoist_task_get (project_id)
    or todoist_section_get.
    """
    try:
        return await _handlers().get_projects()
    except Exception as e:
        return format_error("get projects", e)


@mcp.tool()
@require_todoist_client
async def todoist_project_create(
    name: str,
    color: Optional[str] = None,
    is_favorite: Optional[bool] = None,
    parent_id: Optional[str] = None,
) -> str:
    """
    Creates a new project.

    Args:
        name (str): Project name.
        color (str, optional): Todoist palette name (e.g., 'berry_red', 'sky_blue').
        is_favorite (bool, optional): Mark as favorite.
        parent_id (str, optional): Create as a sub-project of this project.

    Example:
        {"name": "Home Renovation", "color": "teal"}
    """
    logging.info(f"Attempting to create project: '{name}'")
    try:
        return await _handlers().create_project(name, color=color, is_favorite=is_favorite, parent_id=parent_id)
    except Exception as e:
        return format_error("create project", e)


@mcp.tool()
@require_todoist_client
async def todoist_section_get(project_id: Optional[str] = None) -> str:
    """
    Lists sections, optionally only those of one project.

    Args:
        project_id (str, optional): Project whose sections to list.
    """
    try:
        return await _handlers().get_sections(project_id)
    except Exception as e:
        return format_error("get sections", e)


@mcp.tool()
@require_todoist_client
async def todoist_section_create(name: str, project_id: str) -> str:
    """
    Creates a section inside a project.

    Args:
        name (str): Section name.
        project_id (str): Project that will contain the section.
    """
    logging.info(f"Attempting to create section '{name}' in project {project_id}")
    try:
        return await _handlers().create_section(name, project_id)
    except Exception as e:
        return format_error("create section", e)
