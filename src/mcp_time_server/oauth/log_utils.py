"""Structured logging helpers for the OAuth components.

Only the following *non-sensitive* fields are ever attached to log records:

- ``client_id``       – registered OAuth client identifier
- ``correlation_id``  – request correlation identifier (first 8 chars kept)
- ``subject``         – upstream GitHub login, once known

Tokens, codes, code verifiers and client secrets are never passed to the
adapter; use :func:`mcp_time_server.utils.logging.mask_sensitive` when a
fragment must appear in a message.

Usage
-----
>>> from mcp_time_server.oauth.log_utils import get_oauth_logger
>>> log = get_oauth_logger(
...     base_logger_name="mcp-time-server.oauth.service",
...     client_id="vscode",
...     correlation_id="0f1e2d3c-4b5a-6978-8796-a5b4c3d2e1f0",
... )
>>> log.info("Authorization request accepted")
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _OAuthLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted OAuth context into log records."""

    extra_keys = ("client_id", "correlation_id", "subject")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k == "correlation_id":
                extra_clean[k] = str(extra[k])[:8]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if kwargs.get("extra") is None:
            kwargs["extra"] = {}
        # call-site extras win
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_oauth_logger(
    *,
    base_logger_name: str = "mcp-time-server.oauth",
    client_id: str | None = None,
    correlation_id: str | None = None,
    subject: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with OAuth context."""
    logger = logging.getLogger(base_logger_name)
    return _OAuthLoggerAdapter(
        logger,
        {"client_id": client_id, "correlation_id": correlation_id, "subject": subject},
    )
