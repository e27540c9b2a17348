"""Logging utilities for the MCP time server."""

import logging
import os
import sys
from typing import TextIO

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def setup_logging(
    level: int | str | None = None, stream: TextIO = sys.stderr
) -> logging.Logger:
    """
    Configure the root logger and return the application logger.

    Args:
        level: Log level name or number. Defaults to ``MCP_LOG_LEVEL`` or INFO.
        stream: Output stream; stderr keeps stdout free for stdio transports.

    Returns:
        The ``mcp-time-server`` logger.
    """
    if level is None:
        level = os.getenv("MCP_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        level = logging.getLevelName(level.strip().upper())
        if not isinstance(level, int):
            level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root_logger.addHandler(handler)

    logger = logging.getLogger("mcp-time-server")
    logger.setLevel(level)
    return logger


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """
    Mask a secret, keeping only ``keep_chars`` characters at each end.

    Values too short to keep both ends are masked entirely.
    """
    if not value:
        return "Not Provided"
    if len(value) <= keep_chars * 2:
        return "*" * len(value)
    return value[:keep_chars] + "*" * (len(value) - keep_chars * 2) + value[-keep_chars:]
