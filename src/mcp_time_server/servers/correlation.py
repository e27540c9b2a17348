"""Correlation ID middleware for request tracing.

Accepts an incoming ``X-Correlation-ID`` or generates one per HTTP request,
sets it in ``request.state.correlation_id`` for application use, propagates
it to the response headers and logs one line per request with method, path,
status and duration (plus the ``Mcp-Session-Id`` when present).

Secrets MUST NOT be logged. The correlation ID is a random UUID4 hex string.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

_HEADER_NAME = "X-Correlation-ID"
_MAX_INCOMING_LEN = 128
_logger = logging.getLogger("mcp-time-server.correlation")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that attaches a per-request correlation ID."""

    def __init__(self, app: ASGIApp, header_name: str = _HEADER_NAME) -> None:
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        incoming = request.headers.get(self.header_name) or ""
        correlation_id = (
            incoming if 0 < len(incoming) <= _MAX_INCOMING_LEN else uuid.uuid4().hex
        )
        request.state.correlation_id = correlation_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        response.headers[self.header_name] = correlation_id
        _logger.info(
            "%s %s -> %d (%.1f ms) session=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request.headers.get("mcp-session-id", "-"),
            extra={"correlation_id": correlation_id[:8]},
        )
        return response
