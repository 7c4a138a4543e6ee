import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, NamedTuple, Optional

from dotenv import load_dotenv

from .api import DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from .cache import DEFAULT_TTL_MS

DEFAULT_DOTENV_DIR = "~/.config/todoist-mcp"
DEFAULT_CACHE_MAX_SIZE = 1000


class Settings(NamedTuple):
    api_token: Optional[str]
    base_url: str = DEFAULT_BASE_URL
    dry_run: bool = False
    cache_ttl_ms: int = DEFAULT_TTL_MS
    cache_max_size: int = DEFAULT_CACHE_MAX_SIZE
    http_timeout: float = DEFAULT_TIMEOUT


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Todoist MCP server, specifying the directory for the .env file.")
    parser.add_argument(
        "--dotenv-dir",
        type=str,
        help=f"Path to the directory containing the .env file. Defaults to '{DEFAULT_DOTENV_DIR}'.",
        default=DEFAULT_DOTENV_DIR,
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (logs go to stderr).",
    )
    return parser.parse_args(argv)


def setup_logging(level: str = "INFO") -> None:
    # stdout carries the MCP protocol, so logs go to stderr
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _env_number(name: str, default, cast=int):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logging.warning(f"Ignoring invalid value for {name}: '{raw}'. Using default {default}.")
        return default


def load_settings(dotenv_dir: Optional[str] = None) -> Settings:
    """
    Loads settings from the environment, after reading <dotenv_dir>/.env when present.

    A missing .env file is not an error: variables may be set directly by the MCP host.
    """
    if dotenv_dir:
        dotenv_path = Path(dotenv_dir).expanduser() / ".env"
        if dotenv_path.is_file():
            if load_dotenv(dotenv_path=dotenv_path, override=True):
                logging.info(f"Loaded environment variables from: {dotenv_path}")
            else:
                logging.warning(f"No variables loaded from {dotenv_path}. Check file permissions and format.")
        else:
            logging.info(f"No .env file at {dotenv_path}, using process environment only.")

    api_token = os.getenv("TODOIST_API_TOKEN")
    if not api_token:
        logging.error("TODOIST_API_TOKEN is not set. Expected in the environment or the .env file.")

    return Settings(
        api_token=api_token,
        base_url=os.getenv("TODOIST_API_BASE_URL") or DEFAULT_BASE_URL,
        dry_run=os.getenv("DRYRUN", "").strip().lower() == "true",
        cache_ttl_ms=_env_number("TODOIST_CACHE_TTL_MS", DEFAULT_TTL_MS),
        cache_max_size=_env_number("TODOIST_CACHE_MAX_SIZE", DEFAULT_CACHE_MAX_SIZE),
        http_timeout=_env_number("TODOIST_HTTP_TIMEOUT", DEFAULT_TIMEOUT, cast=float),
    )
