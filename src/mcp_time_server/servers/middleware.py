"""Bearer-token gate for protected endpoints.

:class:`BearerAuthMiddleware` is a plain ASGI middleware (no response
buffering, so streamed MCP responses pass through untouched).  For requests
to a protected path it resolves the ``Authorization`` header through
:meth:`OAuthService.authenticate` and either

* stores an :class:`AuthenticatedRequest` in ``scope["state"]["auth"]``
  (read by handlers as ``request.state.auth``), or
* answers 401 ``invalid_token`` / 403 ``insufficient_scope`` with an
  RFC 6750 ``WWW-Authenticate`` challenge pointing at the protected-resource
  metadata document.

Upstream failure details are logged, never returned to the caller.
"""

from __future__ import annotations

import json
import logging
from typing import Iterable

from starlette.concurrency import run_in_threadpool
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from mcp_time_server.oauth.errors import InsufficientScopeError, OAuthError
from mcp_time_server.oauth.service import OAuthService

logger = logging.getLogger("mcp-time-server.server.middleware")


class BearerAuthMiddleware:
    """ASGI middleware enforcing bearer authentication on selected paths."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        service: OAuthService,
        protected_paths: Iterable[str],
        required_scopes: Iterable[str] = (),
    ) -> None:
        self.app = app
        self.service = service
        self.protected_paths = tuple(p.rstrip("/") or "/" for p in protected_paths)
        self.required_scopes = tuple(required_scopes)

    def _is_protected(self, path: str) -> bool:
        path = path.rstrip("/") or "/"
        return any(path == p or path.startswith(p + "/") for p in self.protected_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        # lifespan and websocket traffic is not gated
        if scope["type"] != "http" or not self._is_protected(scope.get("path", "")):
            await self.app(scope, receive, send)
            return
        # CORS preflight carries no credentials
        if scope.get("method") == "OPTIONS":
            await self.app(scope, receive, send)
            return

        scope_copy: Scope = dict(scope)
        scope_copy["state"] = dict(scope.get("state") or {})
        scope_copy["state"]["auth"] = None

        authorization = None
        for name, value in scope.get("headers", []):
            if name == b"authorization":
                authorization = value.decode("latin-1")
                break

        try:
            auth = await run_in_threadpool(
                self.service.authenticate,
                authorization,
                required_scopes=self.required_scopes,
            )
        except OAuthError as exc:
            logger.info(
                "Rejected %s %s: %s (%s)",
                scope.get("method"),
                scope.get("path"),
                exc.error_code,
                exc.description,
            )
            await self._send_challenge(send, exc)
            return

        scope_copy["state"]["auth"] = auth
        logger.debug("Authenticated %s for client %s", auth.subject, auth.client_id)
        await self.app(scope_copy, receive, send)

    async def _send_challenge(self, send: Send, exc: OAuthError) -> None:
        metadata_url = self.service.config.resource_metadata_url
        challenge = f'Bearer error="{exc.error_code}", resource_metadata="{metadata_url}"'
        if isinstance(exc, InsufficientScopeError) and self.required_scopes:
            challenge += f', scope="{" ".join(self.required_scopes)}"'
        body = json.dumps(exc.to_payload()).encode("utf-8")
        start: Message = {
            "type": "http.response.start",
            "status": exc.status_code,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode("ascii")),
                (b"www-authenticate", challenge.encode("latin-1")),
                (b"cache-control", b"no-store"),
            ],
        }
        await send(start)
        await send({"type": "http.response.body", "body": body})
