"""Tests for the project, section and comment tools."""

import pytest

from fakes import make_task
from todoist_mcp.dry_run import DryRunClient
from todoist_mcp.errors import ProjectNotFoundError, ValidationError
from todoist_mcp.tools.comment_tools import (
    CommentHandlers,
    todoist_comment_create,
    todoist_comment_get,
)
from todoist_mcp.tools.project_tools import (
    ProjectHandlers,
    todoist_project_create,
    todoist_project_get,
    todoist_section_create,
    todoist_section_get,
)


@pytest.fixture
def projects(client, caches):
    return ProjectHandlers(client, caches)


@pytest.fixture
def comments(client, caches):
    client.comments = [
        {"id": "k1", "content": "Remember the dairy aisle", "task_id": "x", "posted_at": "2024-05-01T09:00:00Z"},
        {
            "id": "k2",
            "content": "Receipt",
            "task_id": "x",
            "posted_at": "2024-05-02T09:00:00Z",
            "attachment": {"file_name": "receipt.pdf", "file_type": "application/pdf"},
        },
        {"id": "k3", "content": "Kickoff notes", "project_id": "work", "posted_at": "2024-05-03T09:00:00Z"},
    ]
    return CommentHandlers(client, caches)


# ============================================================================
# Projects and sections
# ============================================================================


class TestProjects:
    async def test_list(self, client, installed_client):
        client.projects["work"]["is_favorite"] = True
        assert await todoist_project_get() == "\n".join([
            "2 projects found:",
            "",
            "- Inbox (ID: inbox)",
            "- Work (ID: work) ★",
            "  Color: blue",
        ])

    async def test_create_child_project(self, installed_client):
        result = await todoist_project_create(name="Side gigs", color="green", parent_id="work")
        assert result.startswith("Project created:\nID: p1000\nName: Side gigs\nColor: green\nParent ID: work")

    async def test_create_invalidates_listing(self, projects, client):
        await projects.list_projects()
        await projects.create_project(name="Garden")
        assert "Garden" in await projects.get_projects()
        assert client.calls["get_projects"] == 2

    async def test_create_rejects_unknown_color(self, installed_client):
        result = await todoist_project_create(name="Art", color="plaid")
        assert result.startswith("Error [VALIDATION_ERROR]: Validation error for field 'color'")

    @pytest.mark.parametrize("ref, expected", [("work", "work"), ("WORK", "work"), (" inbox ", "inbox")])
    async def test_resolve_project_by_id_or_name(self, projects, ref, expected):
        assert await projects.resolve_project_id(ref) == expected

    async def test_resolve_unknown_project(self, projects):
        with pytest.raises(ProjectNotFoundError):
            await projects.resolve_project_id("Wor")


class TestSections:
    async def test_list_for_project(self, installed_client):
        result = await todoist_section_get(project_id="work")
        assert result == "1 section found:\n\n- Backlog (ID: sec1, Project ID: work)"

    async def test_empty_project(self, projects):
        assert await projects.get_sections("inbox") == "No sections found in project inbox"

    async def test_unknown_project(self, projects):
        with pytest.raises(ProjectNotFoundError):
            await projects.get_sections("ghost")

    async def test_listing_is_cached_per_project(self, projects, client):
        await projects.get_sections("work")
        await projects.get_sections("work")
        await projects.get_sections()
        assert client.calls["get_sections"] == 2

    async def test_create(self, installed_client):
        result = await todoist_section_create(name="Doing", project_id="work")
        assert result == "Section created:\nID: s1000\nName: Doing\nProject ID: work"

    async def test_create_in_unknown_project(self, installed_client):
        result = await todoist_section_create(name="Doing", project_id="ghost")
        assert result == 'Error [PROJECT_NOT_FOUND]: Could not find project "ghost"'

    async def test_create_requires_project(self, projects):
        with pytest.raises(ValidationError):
            await projects.create_section("Doing", "")

    async def test_dry_run_checks_project_exists(self, client, caches):
        handlers = ProjectHandlers(DryRunClient(client), caches)
        assert (await handlers.create_section("Doing", "work")).startswith("[DRY-RUN] Section created:\nID: 300001")
        with pytest.raises(ProjectNotFoundError):
            await handlers.create_section("Doing", "ghost")
        assert client.sections.keys() == {"sec1"}


# ============================================================================
# Comments
# ============================================================================


class TestComments:
    async def test_create_on_task_by_name(self, installed_client):
        result = await todoist_comment_create(content="Get oat milk", task_name="groceries")
        assert result == "\n".join([
            'Comment added to task "Buy groceries":',
            "Content: Get oat milk",
            "Posted at: 2024-05-01T09:00:00Z",
        ])
        assert installed_client.comments[-1]["task_id"] == "x"

    async def test_create_with_attachment(self, comments, client):
        result = await comments.create_comment(
            "See attached",
            task_id="x",
            attachment={"file_name": "list.pdf", "file_url": "https://example.com/list.pdf", "file_type": "application/pdf"},
        )
        assert "Attachment: list.pdf (application/pdf)" in result
        assert client.comments[-1]["attachment"]["resource_type"] == "file"

    @pytest.mark.parametrize(
        "attachment",
        [
            {"file_name": "list.pdf"},
            {"file_name": "list.pdf", "file_url": "ftp://example.com/list.pdf"},
            "list.pdf",
        ],
    )
    async def test_bad_attachment(self, comments, attachment):
        with pytest.raises(ValidationError):
            await comments.create_comment("See attached", task_id="x", attachment=attachment)

    async def test_create_needs_target(self, installed_client):
        result = await todoist_comment_create(content="Hello")
        assert result == "Error [VALIDATION_ERROR]: Either task_id or task_name must be provided"

    async def test_get_for_task(self, comments):
        result = await comments.get_comments(task_name="groceries")
        assert result.startswith("Found 2 comments:\n\n- Remember the dairy aisle\n  Posted: 2024-05-01T09:00:00Z\n  Task ID: x")
        assert "  Attachment: receipt.pdf (application/pdf)" in result

    async def test_get_for_project(self, comments):
        result = await comments.get_comments(project_id="work")
        assert result == "Found 1 comment:\n\n- Kickoff notes\n  Posted: 2024-05-03T09:00:00Z\n  Project ID: work"

    async def test_get_none(self, comments):
        assert await comments.get_comments(task_id="c3") == "No comments found."

    async def test_get_needs_target(self, installed_client):
        result = await todoist_comment_get()
        assert result == "Error [VALIDATION_ERROR]: One of task_id, task_name or project_id must be provided"

    async def test_new_comment_shows_up_in_listing(self, comments, client):
        await comments.get_comments(task_id="x")
        await comments.create_comment("Also eggs", task_id="x")
        assert "Found 3 comments" in await comments.get_comments(task_id="x")
        assert client.calls["get_comments"] == 2

    async def test_comment_on_completed_task_by_id(self, comments, client):
        client.tasks["old"] = make_task("old", "Archived chore", checked=True)
        result = await comments.create_comment("For the record", task_id="old")
        assert result.startswith('Comment added to task "Archived chore":')
