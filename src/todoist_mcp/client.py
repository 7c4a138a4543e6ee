import logging
from typing import Any, Optional

from .api import TodoistClient
from .cache import CacheManager
from .config import Settings
from .dry_run import DryRunClient
from .errors import ToolLogicError

# Cache names shared by the tool handlers
TASKS_CACHE = "tasks"
LABELS_CACHE = "labels"
LABEL_STATS_CACHE = "label_stats"
COMMENTS_CACHE = "comments"
PROJECTS_CACHE = "projects"


class TodoistClientSingleton:
    """Holds the process-wide Todoist client and the cache manager handed to tool handlers."""

    _client: Optional[Any] = None
    _caches: Optional[CacheManager] = None
    _settings: Optional[Settings] = None

    @classmethod
    def initialize(
        cls,
        settings: Settings,
        client: Optional[Any] = None,
        caches: Optional[CacheManager] = None,
    ) -> Optional[Any]:
        if cls._client is not None:
            logging.info("Todoist client already initialized.")
            return cls._client

        if client is None:
            if not settings.api_token:
                logging.error("Todoist API token not found in environment variables. Ensure .env file is correct.")
                return None
            try:
                client = TodoistClient(settings.api_token, base_url=settings.base_url, timeout=settings.http_timeout)
            except Exception as e:
                logging.error(f"Error initializing Todoist client: {e}", exc_info=True)
                return None

        if settings.dry_run and not getattr(client, "dry_run", False):
            logging.info("DRYRUN=true: mutating operations will be simulated.")
            client = DryRunClient(client)

        cls._settings = settings
        cls._caches = caches or build_cache_manager(settings)
        cls._client = client
        logging.info(f"Todoist client initialized successfully ({settings.base_url}).")
        return client

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._client is not None

    @classmethod
    def get_client(cls) -> Any:
        if cls._client is None:
            raise ToolLogicError("Todoist client is not available.")
        return cls._client

    @classmethod
    def get_caches(cls) -> CacheManager:
        if cls._caches is None:
            raise ToolLogicError("Cache manager is not available.")
        return cls._caches

    @classmethod
    def reset(cls) -> None:
        cls._client = None
        cls._caches = None
        cls._settings = None

    @classmethod
    async def close(cls) -> None:
        """Closes the HTTP connection pool, then forgets the client and caches."""
        client = cls._client
        cls.reset()
        if client is not None and hasattr(client, "aclose"):
            await client.aclose()
            logging.info("Todoist client closed.")


def build_cache_manager(settings: Settings) -> CacheManager:
    caches = CacheManager(default_ttl_ms=settings.cache_ttl_ms)
    caches.get_or_create(TASKS_CACHE, max_size=settings.cache_max_size)
    caches.get_or_create(LABELS_CACHE)
    caches.get_or_create(LABEL_STATS_CACHE)
    caches.get_or_create(COMMENTS_CACHE)
    caches.get_or_create(PROJECTS_CACHE)
    return caches
