"""Pytest fixtures for the Todoist MCP tests."""

import os

import pytest
from hypothesis import Phase, settings

from fakes import FakeClock, FakeTodoistClient, make_task
from todoist_mcp.cache import CacheManager
from todoist_mcp.client import TodoistClientSingleton
from todoist_mcp.config import Settings

settings.register_profile(
    "ci",
    max_examples=200,
    deadline=None,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
)
settings.register_profile("dev", max_examples=50, deadline=None)
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "dev"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_000_000.0)


@pytest.fixture
def caches(clock) -> CacheManager:
    return CacheManager(clock=clock)


@pytest.fixture
def family_tasks():
    """
    Project launch (p) with three children; one of them has a grandchild.

        p  Launch website
        ├─ c1 Design mockups     (done)
        ├─ c2 Build pages
        │   └─ g1 Write copy     (done)
        └─ c3 Deploy
    plus an unrelated top-level task.
    """
    return [
        make_task("p", "Launch website"),
        make_task("c1", "Design mockups", parent_id="p", checked=True),
        make_task("c2", "Build pages", parent_id="p"),
        make_task("g1", "Write copy", parent_id="c2", checked=True),
        make_task("c3", "Deploy", parent_id="p"),
        make_task("x", "Buy groceries", labels=["errand"]),
    ]


@pytest.fixture
def client(family_tasks) -> FakeTodoistClient:
    return FakeTodoistClient(
        tasks=family_tasks,
        projects=[{"id": "inbox", "name": "Inbox"}, {"id": "work", "name": "Work", "color": "blue"}],
        sections=[{"id": "sec1", "name": "Backlog", "project_id": "work"}],
        labels=[
            {"id": "l1", "name": "errand", "color": "red"},
            {"id": "l2", "name": "Urgent", "color": "orange"},
        ],
    )


@pytest.fixture
def installed_client(client, caches):
    """Registers the fake client with the singleton so @mcp.tool functions can run."""
    TodoistClientSingleton.reset()
    TodoistClientSingleton.initialize(Settings(api_token="test-token"), client=client, caches=caches)
    yield client
    TodoistClientSingleton.reset()


@pytest.fixture(autouse=True)
def _reset_singleton():
    yield
    TodoistClientSingleton.reset()
