"""MCP time server: an MCP tool surface behind a GitHub-backed OAuth 2.1 layer."""

__version__ = "0.1.0"
