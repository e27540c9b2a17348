"""HTTP surface: OAuth routes, bearer gate and the FastMCP server factory."""

from .main import TimeServerMCP, create_server

__all__ = ["TimeServerMCP", "create_server"]
