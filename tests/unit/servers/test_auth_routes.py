"""Unit tests for the OAuth HTTP endpoints and discovery documents."""

from __future__ import annotations

import base64
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import requests

from mcp_time_server.oauth.pkce import code_challenge_s256, new_code_verifier
from mcp_time_server.servers.main import create_server

# --------------------------------------------------------------------------- #
# Constants                                                                   #
# --------------------------------------------------------------------------- #
REDIRECT_URI = "http://127.0.0.1:33418/done"
VERIFIER = new_code_verifier()


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture()
def server(config):
    return create_server(config)


@pytest.fixture()
def service(server):
    return server.app_context.service


@pytest.fixture(autouse=True)
def _stub_github(monkeypatch: pytest.MonkeyPatch, make_response):
    """Answer GitHub's token and user endpoints without the network."""
    monkeypatch.setattr(
        requests,
        "post",
        lambda *a, **kw: make_response(200, {"access_token": "gho_test"}),
    )
    monkeypatch.setattr(
        requests,
        "get",
        lambda *a, **kw: make_response(
            200,
            {"login": "octocat", "name": "The Octocat"},
            headers={"X-OAuth-Scopes": "repo, workflow"},
        ),
    )


@pytest.fixture()
async def client(server):
    transport = httpx.ASGITransport(app=server.http_app())
    async with httpx.AsyncClient(transport=transport, base_url="https://mcp.example.com") as ac:
        yield ac


def _authorize_query(**overrides: str) -> dict[str, str]:
    params = {
        "response_type": "code",
        "client_id": "vscode",
        "redirect_uri": REDIRECT_URI,
        "code_challenge": code_challenge_s256(VERIFIER),
        "code_challenge_method": "S256",
        "state": "xyz",
    }
    params.update(overrides)
    return params


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


async def _obtain_code(client: httpx.AsyncClient) -> str:
    resp = await client.get("/oauth/authorize", params=_authorize_query())
    upstream_state = _query(resp.headers["location"])["state"]
    resp = await client.get("/oauth/callback", params={"code": "gh", "state": upstream_state})
    return _query(resp.headers["location"])["code"]


# --------------------------------------------------------------------------- #
# Discovery                                                                   #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_authorization_server_metadata(client: httpx.AsyncClient):
    resp = await client.get("/.well-known/oauth-authorization-server")
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "public, max-age=3600"
    doc = resp.json()
    assert doc["issuer"] == "https://mcp.example.com"
    assert doc["registration_endpoint"] == "https://mcp.example.com/register"


@pytest.mark.anyio
async def test_protected_resource_metadata(client: httpx.AsyncClient):
    resp = await client.get("/.well-known/oauth-protected-resource")
    assert resp.status_code == 200
    assert resp.json()["authorization_servers"] == ["https://mcp.example.com"]


@pytest.mark.anyio
async def test_health(client: httpx.AsyncClient):
    resp = await client.get("/health")
    assert resp.json() == {"status": "ok", "oauth_enabled": True}


# --------------------------------------------------------------------------- #
# /oauth/authorize                                                            #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_authorize_redirects_to_github(client: httpx.AsyncClient):
    resp = await client.get("/oauth/authorize", params=_authorize_query())
    assert resp.status_code == 302
    location = resp.headers["location"]
    assert location.startswith("https://github.com/login/oauth/authorize?")
    assert _query(location)["redirect_uri"] == "https://mcp.example.com/oauth/callback"


@pytest.mark.anyio
async def test_authorize_unknown_redirect_uri_is_answered_directly(client: httpx.AsyncClient):
    resp = await client.get(
        "/oauth/authorize", params=_authorize_query(redirect_uri="https://evil.example.com/")
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"
    assert "location" not in resp.headers


@pytest.mark.anyio
async def test_authorize_unknown_client_is_answered_directly(client: httpx.AsyncClient):
    resp = await client.get("/oauth/authorize", params=_authorize_query(client_id="ghost"))
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_client"


@pytest.mark.anyio
async def test_authorize_missing_pkce_redirects_with_error(client: httpx.AsyncClient):
    resp = await client.get("/oauth/authorize", params=_authorize_query(code_challenge=""))
    assert resp.status_code == 302
    location = resp.headers["location"]
    assert location.startswith(REDIRECT_URI + "?")
    query = _query(location)
    assert query["error"] == "invalid_request"
    assert query["state"] == "xyz"


# --------------------------------------------------------------------------- #
# /oauth/callback                                                             #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_callback_redirects_with_code(client: httpx.AsyncClient):
    code = await _obtain_code(client)
    assert len(code) == 43


@pytest.mark.anyio
async def test_callback_unknown_state_renders_error_page(client: httpx.AsyncClient):
    resp = await client.get("/oauth/callback", params={"code": "gh", "state": "<b>forged</b>"})
    assert resp.status_code == 400
    assert resp.headers["content-type"].startswith("text/html")
    assert resp.headers["cache-control"] == "no-store"
    assert "<b>" not in resp.text


@pytest.mark.anyio
async def test_callback_github_failure_redirects_server_error(
    client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch, make_response
):
    monkeypatch.setattr(requests, "post", lambda *a, **kw: make_response(502, text="bad gateway"))
    resp = await client.get("/oauth/authorize", params=_authorize_query())
    upstream_state = _query(resp.headers["location"])["state"]

    resp = await client.get("/oauth/callback", params={"code": "gh", "state": upstream_state})
    assert resp.status_code == 302
    assert _query(resp.headers["location"]) == {
        "error": "server_error",
        "error_description": "Failed to obtain access token",
        "state": "xyz",
    }


# --------------------------------------------------------------------------- #
# /oauth/token                                                                #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_token_success_is_not_cached(client: httpx.AsyncClient):
    code = await _obtain_code(client)
    resp = await client.post(
        "/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": code,
            "client_id": "vscode",
            "code_verifier": VERIFIER,
            "redirect_uri": REDIRECT_URI,
        },
    )
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    assert resp.headers["pragma"] == "no-cache"
    body = resp.json()
    assert body["token_type"] == "Bearer"
    assert body["expires_in"] == 3600


@pytest.mark.anyio
async def test_token_unsupported_grant(client: httpx.AsyncClient):
    resp = await client.post("/oauth/token", data={"grant_type": "password"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "unsupported_grant_type"
    assert resp.headers["cache-control"] == "no-store"


@pytest.mark.anyio
async def test_token_bad_client_credentials_challenge(client: httpx.AsyncClient, service):
    body = service.register_client(
        {"redirect_uris": [REDIRECT_URI], "token_endpoint_auth_method": "client_secret_basic"}
    )
    basic = base64.b64encode(f"{body['client_id']}:wrong".encode()).decode()
    resp = await client.post(
        "/oauth/token",
        data={
            "grant_type": "authorization_code",
            "code": "c",
            "code_verifier": VERIFIER,
            "redirect_uri": REDIRECT_URI,
        },
        headers={"Authorization": f"Basic {basic}"},
    )
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_client"
    assert resp.headers["www-authenticate"] == 'Basic realm="oauth"'


# --------------------------------------------------------------------------- #
# /register                                                                   #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_register_created(client: httpx.AsyncClient):
    resp = await client.post(
        "/register", json={"redirect_uris": ["https://app.example.com/cb"], "client_name": "App"}
    )
    assert resp.status_code == 201
    assert resp.headers["cache-control"] == "no-store"
    body = resp.json()
    assert body["client_name"] == "App"
    assert body["client_secret_expires_at"] == 0


@pytest.mark.anyio
async def test_register_invalid_json(client: httpx.AsyncClient):
    resp = await client.post(
        "/register", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_client_metadata"


@pytest.mark.anyio
async def test_register_invalid_redirect(client: httpx.AsyncClient):
    resp = await client.post("/register", json={"redirect_uris": ["not-a-uri"]})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_redirect_uri"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "extra",
    [
        {"token_endpoint_auth_method": ["none"]},
        {"grant_types": [["authorization_code"]]},
        {"response_types": [{"a": 1}]},
        {"client_name": 123},
    ],
)
async def test_register_non_string_metadata_is_client_error(client: httpx.AsyncClient, extra):
    resp = await client.post(
        "/register", json={"redirect_uris": ["https://app.example.com/cb"], **extra}
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_client_metadata"


@pytest.mark.anyio
async def test_register_disabled(config):
    config.enable_dcr = False
    app = create_server(config).http_app()
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="https://mcp.example.com"
    ) as ac:
        resp = await ac.post("/register", json={"redirect_uris": ["https://app.example.com/cb"]})
        metadata = (await ac.get("/.well-known/oauth-authorization-server")).json()
    assert resp.status_code == 403
    assert "registration_endpoint" not in metadata
