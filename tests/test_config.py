"""Tests for settings loading, CLI arguments and server start-up."""

import pytest

import main
from todoist_mcp import config
from todoist_mcp.api import DEFAULT_BASE_URL
from todoist_mcp.client import TodoistClientSingleton
from todoist_mcp.config import Settings
from todoist_mcp.mcp_instance import server_lifespan

ENV_VARS = (
    "TODOIST_API_TOKEN",
    "TODOIST_API_BASE_URL",
    "DRYRUN",
    "TODOIST_CACHE_TTL_MS",
    "TODOIST_CACHE_MAX_SIZE",
    "TODOIST_HTTP_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # load_dotenv writes os.environ directly; setting first makes teardown remove those values too
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


class TestLoadSettings:
    def test_defaults(self, tmp_path):
        settings = config.load_settings(str(tmp_path))
        assert settings.api_token is None
        assert settings.base_url == DEFAULT_BASE_URL
        assert settings.dry_run is False
        assert settings.cache_ttl_ms == 30000

    def test_reads_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("TODOIST_API_TOKEN=from-file\nDRYRUN=TRUE\nTODOIST_CACHE_TTL_MS=5000\n")
        settings = config.load_settings(str(tmp_path))

        assert settings.api_token == "from-file"
        assert settings.dry_run is True
        assert settings.cache_ttl_ms == 5000

    def test_process_environment_without_dotenv(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TODOIST_API_TOKEN", "from-env")
        monkeypatch.setenv("TODOIST_HTTP_TIMEOUT", "2.5")
        settings = config.load_settings(str(tmp_path / "missing"))
        assert settings.api_token == "from-env"
        assert settings.http_timeout == 2.5

    @pytest.mark.parametrize("value", ["soon", "1e3x", "  "])
    def test_invalid_numbers_fall_back_to_defaults(self, monkeypatch, value):
        monkeypatch.setenv("TODOIST_CACHE_MAX_SIZE", value)
        assert config.load_settings(None).cache_max_size == config.DEFAULT_CACHE_MAX_SIZE

    @pytest.mark.parametrize("value", ["false", "1", "yes", ""])
    def test_only_true_enables_dry_run(self, monkeypatch, value):
        monkeypatch.setenv("DRYRUN", value)
        assert config.load_settings(None).dry_run is False


class TestArgs:
    def test_defaults(self):
        args = config.parse_args([])
        assert args.dotenv_dir == config.DEFAULT_DOTENV_DIR
        assert args.log_level == "INFO"

    def test_overrides(self):
        args = config.parse_args(["--dotenv-dir", "/tmp/x", "--log-level", "DEBUG"])
        assert (args.dotenv_dir, args.log_level) == ("/tmp/x", "DEBUG")


class TestMain:
    def test_exits_without_token(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            main.main(["--dotenv-dir", str(tmp_path)])
        assert excinfo.value.code == 1
        assert not TodoistClientSingleton.is_initialized()

    def test_runs_stdio_server(self, tmp_path, monkeypatch):
        calls = []
        monkeypatch.setenv("TODOIST_API_TOKEN", "token")
        monkeypatch.setattr(main.mcp, "run", lambda **kwargs: calls.append(kwargs))

        main.main(["--dotenv-dir", str(tmp_path)])

        assert calls == [{"transport": "stdio"}]
        assert TodoistClientSingleton.is_initialized()

    async def test_all_tools_are_registered(self):
        names = {tool.name for tool in await main.mcp.list_tools()}
        assert {
            "todoist_task_create",
            "todoist_task_get",
            "todoist_task_update",
            "todoist_task_delete",
            "todoist_task_complete",
            "todoist_tasks_bulk_create",
            "todoist_completed_tasks_get",
            "todoist_tasks_bulk_update",
            "todoist_tasks_bulk_delete",
            "todoist_tasks_bulk_complete",
            "todoist_subtask_create",
            "todoist_subtasks_bulk_create",
            "todoist_task_convert_to_subtask",
            "todoist_subtask_promote",
            "todoist_task_hierarchy_get",
            "todoist_project_get",
            "todoist_project_create",
            "todoist_section_get",
            "todoist_section_create",
            "todoist_label_get",
            "todoist_label_create",
            "todoist_label_update",
            "todoist_label_delete",
            "todoist_label_stats",
            "todoist_comment_create",
            "todoist_comment_get",
            "todoist_test_connection",
            "todoist_test_all_features",
            "todoist_test_performance",
        } <= names


class TestShutdown:
    async def test_lifespan_closes_client_on_exit(self, installed_client):
        async with server_lifespan(main.mcp):
            assert not installed_client.closed
        assert installed_client.closed
        assert not TodoistClientSingleton.is_initialized()

    async def test_close_reaches_client_behind_dry_run(self, client, caches):
        TodoistClientSingleton.initialize(Settings(api_token="token", dry_run=True), client=client, caches=caches)
        await TodoistClientSingleton.close()
        assert client.closed

    async def test_close_shuts_http_pool(self):
        TodoistClientSingleton.initialize(Settings(api_token="token"))
        client = TodoistClientSingleton.get_client()
        await TodoistClientSingleton.close()
        assert client._http.is_closed

    async def test_close_without_client_is_harmless(self):
        await TodoistClientSingleton.close()
        assert not TodoistClientSingleton.is_initialized()
