#!/usr/bin/env python3

import sys
import logging

from todoist_mcp import config

# --- Core Imports --- #
from todoist_mcp.mcp_instance import mcp

# Todoist client initialization (singleton holding client and caches)
from todoist_mcp.client import TodoistClientSingleton

# --- Tool Registration --- #
# Importing a tools module runs its @mcp.tool() decorators against the shared instance.
from todoist_mcp.tools import task_tools  # noqa: F401
from todoist_mcp.tools import filter_tools  # noqa: F401
from todoist_mcp.tools import subtask_tools  # noqa: F401
from todoist_mcp.tools import project_tools  # noqa: F401
from todoist_mcp.tools import label_tools  # noqa: F401
from todoist_mcp.tools import comment_tools  # noqa: F401
from todoist_mcp.tools import generic_tools  # noqa: F401


# --- Main Execution Logic --- #
def main(argv=None):
    args = config.parse_args(argv)
    config.setup_logging(args.log_level)
    logging.info("Tool registration complete.")

    settings = config.load_settings(args.dotenv_dir)
    if TodoistClientSingleton.initialize(settings) is None:
        logging.error("Failed to initialize Todoist client. Set TODOIST_API_TOKEN and restart the server.")
        sys.exit(1)

    mcp.run(transport="stdio")


# --- Script Entry Point --- #
if __name__ == "__main__":
    main()
