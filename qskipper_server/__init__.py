"""QSkipper restaurant-admin MCP server and client core."""

__version__ = "0.1.0"
