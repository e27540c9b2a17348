"""Integration test: VS Code style login followed by an authenticated MCP call.

GitHub is stubbed at the ``requests`` layer, so the test is CI safe. The
Starlette ``TestClient`` context runs the app lifespan (MCP session manager
and expiry sweeper).
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
import requests
from starlette.testclient import TestClient

from mcp_time_server.oauth.pkce import code_challenge_s256, new_code_verifier
from mcp_time_server.servers.main import create_server

REDIRECT_URI = "http://127.0.0.1:33418/done"
MCP_HEADERS = {
    "Accept": "application/json, text/event-stream",
    "Content-Type": "application/json",
}
INITIALIZE = {
    "jsonrpc": "2.0",
    "id": 1,
    "method": "initialize",
    "params": {
        "protocolVersion": "2025-03-26",
        "capabilities": {},
        "clientInfo": {"name": "e2e", "version": "0.0.1"},
    },
}


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


@pytest.fixture()
def github_calls(monkeypatch: pytest.MonkeyPatch, make_response) -> dict[str, int]:
    calls = {"post": 0, "get": 0}

    def fake_post(*_a, **_kw):
        calls["post"] += 1
        return make_response(200, {"access_token": "gho_e2e", "token_type": "bearer"})

    def fake_get(*_a, **_kw):
        calls["get"] += 1
        return make_response(
            200, {"login": "octocat", "name": "The Octocat"}, headers={"X-OAuth-Scopes": "repo, workflow"}
        )

    monkeypatch.setattr(requests, "post", fake_post)
    monkeypatch.setattr(requests, "get", fake_get)
    return calls


@pytest.mark.integration
@pytest.mark.ci_safe
def test_login_then_call_mcp(config, github_calls) -> None:
    app = create_server(config).http_app()
    verifier = new_code_verifier()

    with TestClient(app, base_url="https://mcp.example.com", follow_redirects=False) as client:
        # 1. discovery starting from the 401 challenge
        challenge = client.post("/mcp", json=INITIALIZE, headers=MCP_HEADERS)
        assert challenge.status_code == 401
        assert 'resource_metadata="https://mcp.example.com/.well-known/oauth-protected-resource"' in (
            challenge.headers["www-authenticate"]
        )
        prm = client.get("/.well-known/oauth-protected-resource").json()
        asm = client.get("/.well-known/oauth-authorization-server").json()
        assert prm["authorization_servers"] == [asm["issuer"]]

        # 2. authorize -> GitHub -> callback
        resp = client.get(
            "/oauth/authorize",
            params={
                "response_type": "code",
                "client_id": "vscode",
                "redirect_uri": REDIRECT_URI,
                "code_challenge": code_challenge_s256(verifier),
                "code_challenge_method": "S256",
                "state": "vscode-state",
                "resource": prm["resource"],
            },
        )
        assert resp.status_code == 302
        upstream_state = _query(resp.headers["location"])["state"]

        resp = client.get("/oauth/callback", params={"code": "gh-code", "state": upstream_state})
        assert resp.status_code == 302
        back = _query(resp.headers["location"])
        assert back["state"] == "vscode-state"

        # 3. token
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": back["code"],
                "client_id": "vscode",
                "code_verifier": verifier,
                "redirect_uri": REDIRECT_URI,
            },
        )
        assert resp.status_code == 200
        token = resp.json()
        assert token["resource"] == "https://mcp.example.com"
        bearer = {"Authorization": f"Bearer {token['access_token']}"}

        # 4. replaying the code fails
        replay = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": back["code"],
                "client_id": "vscode",
                "code_verifier": verifier,
                "redirect_uri": REDIRECT_URI,
            },
        )
        assert replay.status_code == 400
        assert replay.json()["error"] == "invalid_grant"

        # 5. protected endpoints
        whoami = client.get("/whoami", headers=bearer)
        assert whoami.status_code == 200
        assert whoami.json()["subject"] == "octocat"

        init = client.post(
            "/mcp", json=INITIALIZE, headers={**MCP_HEADERS, **bearer}, follow_redirects=True
        )
        assert init.status_code == 200
        assert init.headers.get("mcp-session-id")

    assert github_calls == {"post": 1, "get": 1}
