"""Shared fixtures and the ``--integration`` switch."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from mcp_time_server.oauth.config import OAuthConfig


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless explicitly requested.

    Tests marked with 'ci_safe' are always run because they stub all external
    calls and are safe for CI.
    """
    if config.getoption("--integration"):
        return
    skip_integration = pytest.mark.skip(reason="Need --integration option to run")
    for item in items:
        if "integration" in item.keywords and "ci_safe" not in item.keywords:
            item.add_marker(skip_integration)


# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #
class FakeClock:
    """Manually advanced clock satisfying the ``Clock`` protocol."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def fake_response(
    status_code: int = 200,
    payload: Any = None,
    *,
    headers: dict[str, str] | None = None,
    text: str = "",
    json_error: bool = False,
) -> SimpleNamespace:
    """Minimal stand-in for ``requests.Response``."""

    def _json() -> Any:
        if json_error:
            raise ValueError("not json")
        return payload

    return SimpleNamespace(
        ok=200 <= status_code < 300,
        status_code=status_code,
        text=text,
        headers=headers or {},
        json=_json,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def config() -> OAuthConfig:
    return OAuthConfig(
        server_url="https://mcp.example.com",
        github_client_id="gh-client",
        github_client_secret="gh-secret",
        oauth_enabled=True,
    )


@pytest.fixture()
def make_response():
    """Factory fixture for ``requests.Response`` stand-ins."""
    return fake_response


@pytest.fixture()
def anyio_backend() -> str:
    # the server runs on uvicorn's asyncio loop
    return "asyncio"
