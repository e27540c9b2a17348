"""Command-line entry point: ``python -m mcp_time_server``."""

from __future__ import annotations

import argparse
import logging
import os
import sys

from mcp_time_server.oauth.config import OAuthConfig
from mcp_time_server.oauth.errors import ConfigurationError
from mcp_time_server.servers.main import MCP_PATH, create_server
from mcp_time_server.utils.logging import setup_logging

logger = logging.getLogger("mcp-time-server.main")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the MCP time server.")
    parser.add_argument(
        "--host", default=os.getenv("HOST", "0.0.0.0"), help="Bind address"  # noqa: S104
    )
    parser.add_argument(
        "--port", type=int, default=int(os.getenv("PORT", "8080")), help="Bind port"
    )
    parser.add_argument(
        "--transport",
        choices=("streamable-http", "sse", "stdio"),
        default="streamable-http",
        help="MCP transport",
    )
    parser.add_argument("--log-level", default=None, help="Overrides MCP_LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level)
    try:
        config = OAuthConfig.from_env()
        server = create_server(config)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    if args.transport == "stdio":
        server.run(transport="stdio")
    else:
        server.run(transport=args.transport, host=args.host, port=args.port, path=MCP_PATH)
    return 0


if __name__ == "__main__":
    sys.exit(main())
