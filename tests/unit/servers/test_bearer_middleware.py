"""Unit tests for the bearer gate on /mcp and /whoami."""

from __future__ import annotations

import httpx
import pytest
import requests
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from mcp_time_server.oauth.errors import InsufficientScopeError, InvalidTokenError
from mcp_time_server.oauth.models import AccessToken, AuthenticatedRequest
from mcp_time_server.servers.main import create_server, identity_payload
from mcp_time_server.servers.middleware import BearerAuthMiddleware

METADATA_URL = "https://mcp.example.com/.well-known/oauth-protected-resource"


class StubService:
    """Minimal stand-in exposing ``authenticate`` and ``config``."""

    def __init__(self, config, outcome) -> None:  # noqa: ANN001
        self.config = config
        self.outcome = outcome
        self.calls: list[tuple[str | None, tuple[str, ...]]] = []

    def authenticate(self, authorization, *, required_scopes=()):  # noqa: ANN001
        self.calls.append((authorization, tuple(required_scopes)))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _identity(**overrides) -> AuthenticatedRequest:  # noqa: ANN003
    fields = dict(
        client_id="vscode",
        subject="octocat",
        scopes=("mcp:tools",),
        expires_at=2_000_000.0,
        resource="https://mcp.example.com",
        user={"login": "octocat", "name": "The Octocat"},
    )
    fields.update(overrides)
    return AuthenticatedRequest(**fields)


def _app(service, required_scopes=()) -> Starlette:  # noqa: ANN001
    async def echo(request: Request) -> JSONResponse:
        return JSONResponse(identity_payload(getattr(request.state, "auth", None)))

    app = Starlette(
        routes=[
            Route("/mcp", echo, methods=["GET", "POST", "OPTIONS"]),
            Route("/mcp/sub", echo),
            Route("/public", echo),
        ]
    )
    return BearerAuthMiddleware(
        app, service=service, protected_paths=["/mcp"], required_scopes=required_scopes
    )


async def _get(app, path: str, method: str = "GET", **kwargs) -> httpx.Response:  # noqa: ANN001, ANN003
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="https://mcp.example.com"
    ) as ac:
        return await ac.request(method, path, **kwargs)


# --------------------------------------------------------------------------- #
# Middleware in isolation                                                     #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_missing_token_gets_challenge(config):
    service = StubService(config, InvalidTokenError("Missing bearer token"))
    resp = await _get(_app(service), "/mcp")

    assert resp.status_code == 401
    assert resp.json() == {"error": "invalid_token", "error_description": "Missing bearer token"}
    assert resp.headers["www-authenticate"] == (
        f'Bearer error="invalid_token", resource_metadata="{METADATA_URL}"'
    )
    assert resp.headers["cache-control"] == "no-store"
    assert service.calls == [(None, ())]


@pytest.mark.anyio
async def test_insufficient_scope_lists_required(config):
    service = StubService(config, InsufficientScopeError("Missing required scope(s): mcp:tools"))
    resp = await _get(
        _app(service, required_scopes=["mcp:tools"]),
        "/mcp",
        headers={"Authorization": "Bearer abc"},
    )

    assert resp.status_code == 403
    assert resp.headers["www-authenticate"] == (
        f'Bearer error="insufficient_scope", resource_metadata="{METADATA_URL}", scope="mcp:tools"'
    )
    assert service.calls == [("Bearer abc", ("mcp:tools",))]


@pytest.mark.anyio
async def test_valid_token_attaches_identity(config):
    service = StubService(config, _identity())
    resp = await _get(_app(service), "/mcp/sub", headers={"Authorization": "Bearer abc"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["authenticated"] is True
    assert body["subject"] == "octocat"
    assert body["name"] == "The Octocat"
    assert body["scopes"] == ["mcp:tools"]


@pytest.mark.anyio
@pytest.mark.parametrize("path, method", [("/public", "GET"), ("/mcp", "OPTIONS")])
async def test_unprotected_requests_pass_through(config, path, method):
    service = StubService(config, InvalidTokenError())
    resp = await _get(_app(service), path, method=method)

    assert resp.status_code == 200
    assert resp.json() == {"authenticated": False}
    assert service.calls == []


def test_protected_prefix_matching(config):
    gate = BearerAuthMiddleware(
        None, service=StubService(config, None), protected_paths=["/mcp/", "/whoami"]  # type: ignore[arg-type]
    )
    assert gate._is_protected("/mcp")
    assert gate._is_protected("/mcp/")
    assert gate._is_protected("/mcp/messages")
    assert gate._is_protected("/whoami")
    assert not gate._is_protected("/mcpx")
    assert not gate._is_protected("/health")


# --------------------------------------------------------------------------- #
# Wired into the server                                                       #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_server_protects_mcp_and_whoami(config):
    app = create_server(config).http_app()
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="https://mcp.example.com"
    ) as ac:
        mcp = await ac.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "ping"})
        whoami = await ac.get("/whoami", headers={"Authorization": "Bearer nope"})
        health = await ac.get("/health")

    assert mcp.status_code == 401
    assert "resource_metadata=" in mcp.headers["www-authenticate"]
    assert whoami.status_code == 401
    assert whoami.json()["error"] == "invalid_token"
    assert health.status_code == 200


@pytest.mark.anyio
async def test_whoami_with_issued_token(config, monkeypatch: pytest.MonkeyPatch, make_response):
    monkeypatch.setattr(
        requests,
        "get",
        lambda *a, **kw: make_response(
            200, {"login": "octocat", "name": "The Octocat"}, headers={"X-OAuth-Scopes": "repo"}
        ),
    )
    server = create_server(config)
    service = server.app_context.service
    service.tokens.save(
        "local-token",
        AccessToken(
            token="local-token",
            client_id="vscode",
            scope="mcp:tools mcp:resources read:user",
            upstream_token="gho_x",
            expires_at=9_999_999_999,
        ),
        3600,
    )
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=server.http_app()), base_url="https://mcp.example.com"
    ) as ac:
        resp = await ac.get("/whoami", headers={"Authorization": "Bearer local-token"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["subject"] == "octocat"
    assert body["client_id"] == "vscode"
    assert body["scopes"] == ["mcp:resources", "read:user"]
    assert resp.headers["x-correlation-id"]


@pytest.mark.anyio
async def test_oauth_disabled_leaves_routes_open(config):
    config.oauth_enabled = False
    app = create_server(config).http_app()
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="https://mcp.example.com"
    ) as ac:
        resp = await ac.get("/whoami")
    assert resp.status_code == 200
    assert resp.json() == {"authenticated": False}


def test_identity_payload_anonymous():
    assert identity_payload(None) == {"authenticated": False}
