from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from mcp.server.fastmcp import FastMCP

from .client import TodoistClientSingleton


@asynccontextmanager
async def server_lifespan(server: FastMCP) -> AsyncIterator[Dict[str, Any]]:
    """Closes the Todoist HTTP client when the server shuts down."""
    try:
        yield {}
    finally:
        await TodoistClientSingleton.close()


# Shared server instance; tool modules register on it via @mcp.tool()
mcp = FastMCP("todoist-server", lifespan=server_lifespan)
