"""MCP server exposing Todoist tasks, projects, sections, labels and comments as tools."""

__version__ = "0.8.1"
