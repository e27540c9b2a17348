"""Main FastMCP server setup for the MCP time server."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Literal

from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request
from mcp.types import ToolAnnotations
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from mcp_time_server.oauth.config import OAuthConfig
from mcp_time_server.oauth.models import AuthenticatedRequest
from mcp_time_server.oauth.service import OAuthService

from .auth import register_auth_routes
from .context import MainAppContext
from .correlation import CorrelationIdMiddleware
from .middleware import BearerAuthMiddleware

logger = logging.getLogger("mcp-time-server.server.main")

MCP_PATH = "/mcp"
WHOAMI_PATH = "/whoami"
SWEEP_INTERVAL_SECONDS = 300.0


def identity_payload(auth: AuthenticatedRequest | None) -> dict[str, Any]:
    """Serialise the authenticated identity for ``whoami`` responses."""
    if auth is None:
        return {"authenticated": False}
    user = auth.user or {}
    return {
        "authenticated": True,
        "subject": auth.subject,
        "client_id": auth.client_id,
        "scopes": list(auth.scopes),
        "resource": auth.resource,
        "expires_at": int(auth.expires_at),
        "name": user.get("name"),
    }


async def sweep_expired(service: OAuthService, interval: float = SWEEP_INTERVAL_SECONDS) -> None:
    """Purge expired states, codes and tokens every *interval* seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await run_in_threadpool(service.purge_expired)
        except Exception as e:
            logger.error("Expiry sweep failed: %s", e, exc_info=True)
            continue
        if any(removed.values()):
            logger.info("Expiry sweep removed %s", removed)


class TimeServerMCP(FastMCP[MainAppContext]):
    """FastMCP server with the OAuth routes, bearer gate and expiry sweeper."""

    def __init__(self, app_context: MainAppContext, **kwargs: Any) -> None:
        self.app_context = app_context
        super().__init__(**kwargs)

    def http_app(
        self,
        path: str | None = None,
        middleware: list[Middleware] | None = None,
        transport: Literal["streamable-http", "sse"] = "streamable-http",
        **kwargs: Any,
    ) -> "Starlette":
        ctx = self.app_context
        final_middleware_list = [Middleware(CorrelationIdMiddleware)]
        if ctx.oauth_enabled:
            final_middleware_list.append(
                Middleware(
                    BearerAuthMiddleware,
                    service=ctx.service,
                    protected_paths=[path or MCP_PATH, WHOAMI_PATH],
                    required_scopes=ctx.config.required_scopes,
                )
            )
        if middleware:
            final_middleware_list.extend(middleware)
        app = super().http_app(
            path=path or MCP_PATH,
            middleware=final_middleware_list,
            transport=transport,
            **kwargs,
        )

        inner_lifespan = app.router.lifespan_context

        @asynccontextmanager
        async def lifespan(starlette_app: Starlette) -> AsyncIterator[Any]:
            async with inner_lifespan(starlette_app) as state:
                task = asyncio.create_task(sweep_expired(ctx.service))
                logger.info("Expiry sweeper started (every %ss)", SWEEP_INTERVAL_SECONDS)
                try:
                    yield state
                finally:
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
                    logger.info("Expiry sweeper stopped")

        app.router.lifespan_context = lifespan
        return app


def create_server(config: OAuthConfig | None = None) -> TimeServerMCP:
    """Build the server: config, stores, service, routes and the ``whoami`` tool."""
    config = config or OAuthConfig.from_env()
    config.validate()
    logger.info("OAuth configuration: %s", config.summary())

    service = OAuthService(config)
    app_context = MainAppContext(
        config=config, service=service, oauth_enabled=config.oauth_enabled
    )

    @asynccontextmanager
    async def main_lifespan(app: FastMCP[MainAppContext]) -> AsyncIterator[dict]:
        logger.info("MCP time server lifespan starting...")
        try:
            yield {"app_lifespan_context": app_context}
        finally:
            logger.info("MCP time server lifespan shutdown complete.")

    mcp = TimeServerMCP(app_context, name="MCP Time Server", lifespan=main_lifespan)
    register_auth_routes(mcp, service)

    @mcp.custom_route("/health", methods=["GET"], include_in_schema=False)
    async def _health(request: Request) -> Response:
        return JSONResponse({"status": "ok", "oauth_enabled": config.oauth_enabled})

    @mcp.custom_route(WHOAMI_PATH, methods=["GET"])
    async def _whoami_route(request: Request) -> Response:
        return JSONResponse(identity_payload(getattr(request.state, "auth", None)))

    @mcp.tool(
        name="whoami",
        description="Return the authenticated GitHub identity.",
        annotations=ToolAnnotations(title="Who am I", readOnlyHint=True, openWorldHint=False),
    )
    async def whoami() -> dict[str, Any]:
        try:
            request = get_http_request()
        except RuntimeError:
            # stdio transport: no HTTP request, no identity
            return identity_payload(None)
        return identity_payload(getattr(request.state, "auth", None))

    return mcp
