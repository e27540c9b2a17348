"""GitHub as the upstream identity provider.

:class:`GitHubClient` performs the two outbound calls this server makes:

* the authorization-code exchange (``POST {token_url}``), and
* the "who am I" lookup (``GET {api_url}/user``) used to validate a token.

:class:`GitHubTokenVerifier` wraps the lookup with a TTL cache that stores
positive **and** negative results, and maps GitHub OAuth scopes onto the
``mcp:*`` scope vocabulary.

Outbound calls use a 10 second timeout and are never retried.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Final, Iterable

import requests
from cachetools import TTLCache

from mcp_time_server.oauth.clock import Clock, default_clock
from mcp_time_server.oauth.config import OAuthConfig
from mcp_time_server.oauth.errors import GitHubAPIError
from mcp_time_server.oauth.models import TokenValidationResult
from mcp_time_server.utils.logging import mask_sensitive

logger = logging.getLogger("mcp-time-server.oauth.github")

HTTP_TIMEOUT: Final[float] = 10.0
SCOPE_TOOLS: Final[str] = "mcp:tools"
SCOPE_RESOURCES: Final[str] = "mcp:resources"

# GitHub scope -> local scope.  ``None`` marks scopes that are implied by any
# valid token and add nothing.
SCOPE_MAP: Final[dict[str, str | None]] = {
    "repo": SCOPE_RESOURCES,
    "public_repo": SCOPE_RESOURCES,
    "read:repo_hook": SCOPE_RESOURCES,
    "workflow": SCOPE_TOOLS,
    "write:repo_hook": SCOPE_TOOLS,
    "admin:repo_hook": SCOPE_TOOLS,
    "read:user": None,
    "user": None,
    "user:email": None,
}


def map_github_scopes(github_scopes: Iterable[str], *, fallback: bool = True) -> list[str]:
    """Translate GitHub scopes into local scopes.

    The result always starts with ``read:user``.  Unknown scopes pass through
    unchanged.  When nothing else was added and *fallback* is on, both
    ``mcp:tools`` and ``mcp:resources`` are granted.
    """
    mapped: list[str] = ["read:user"]
    for scope in github_scopes:
        scope = scope.strip()
        if not scope:
            continue
        if scope in SCOPE_MAP:
            target = SCOPE_MAP[scope]
            if target is not None and target not in mapped:
                mapped.append(target)
        elif scope not in mapped:
            mapped.append(scope)
    if fallback and mapped == ["read:user"]:
        mapped.extend([SCOPE_TOOLS, SCOPE_RESOURCES])
    return mapped


class GitHubClient:
    """Thin wrapper over ``requests`` for the GitHub OAuth and user APIs."""

    def __init__(self, config: OAuthConfig) -> None:
        self.config = config

    def exchange_code(self, code: str, redirect_uri: str) -> str:
        """Exchange an upstream authorization *code* for a GitHub access token.

        Raises
        ------
        GitHubAPIError
            On transport failure, non-200 status, malformed JSON, an ``error``
            field in the body, or a missing ``access_token``.
        """
        payload = {
            "client_id": self.config.github_client_id,
            "client_secret": self.config.github_client_secret,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        try:
            resp = requests.post(
                self.config.github_token_url,
                data=payload,
                headers={"Accept": "application/json"},
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise GitHubAPIError(f"token request failed: {exc}") from exc

        if resp.status_code != 200:
            raise GitHubAPIError(
                f"token endpoint returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise GitHubAPIError("token endpoint returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise GitHubAPIError("token endpoint returned invalid JSON")
        if data.get("error"):
            raise GitHubAPIError(
                f"GitHub OAuth error: {data['error']} - {data.get('error_description', '')}"
            )
        access_token = data.get("access_token")
        if not access_token:
            raise GitHubAPIError("token response missing access_token")
        logger.debug(
            "Exchanged GitHub code (masked %s) for token (masked %s)",
            mask_sensitive(code, 4),
            mask_sensitive(access_token, 4),
        )
        return access_token

    def get_user(self, token: str) -> tuple[dict[str, Any], list[str]]:
        """Return ``(user_json, github_scopes)`` for *token*.

        The scopes come from GitHub's ``X-OAuth-Scopes`` response header.
        """
        try:
            resp = requests.get(
                f"{self.config.github_api_url}/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/vnd.github.v3+json",
                },
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise GitHubAPIError(f"user request failed: {exc}") from exc

        if resp.status_code != 200:
            raise GitHubAPIError(
                f"GitHub API returned status {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        try:
            user = resp.json()
        except ValueError as exc:
            raise GitHubAPIError("failed to decode GitHub user") from exc
        if not isinstance(user, dict):
            raise GitHubAPIError("failed to decode GitHub user")
        header = (resp.headers or {}).get("X-OAuth-Scopes", "") or ""
        scopes = [s.strip() for s in header.split(",") if s.strip()]
        return user, scopes


class GitHubTokenVerifier:
    """Validate upstream tokens against GitHub with a result cache.

    Parameters
    ----------
    client
        The :class:`GitHubClient` used on cache misses.
    ttl
        Lifetime of cache entries in seconds; negative results use the same TTL.
    fallback
        Whether to grant ``mcp:tools`` and ``mcp:resources`` when no GitHub scope
        maps onto them.
    """

    def __init__(
        self,
        client: GitHubClient,
        *,
        ttl: float,
        fallback: bool = True,
        maxsize: int = 10_000,
        clock: Clock = default_clock,
    ) -> None:
        self.client = client
        self.ttl = ttl
        self.fallback = fallback
        self._clock = clock
        self._cache: TTLCache[str, TokenValidationResult] = TTLCache(
            maxsize=maxsize, ttl=ttl, timer=clock
        )
        # TTLCache reorders on read, so every access is exclusive.
        self._lock = threading.Lock()

    def verify(self, upstream_token: str) -> TokenValidationResult:
        with self._lock:
            cached = self._cache.get(upstream_token)
        if cached is not None:
            return cached

        result = self._validate(upstream_token)
        with self._lock:
            self._cache[upstream_token] = result
        return result

    def _validate(self, upstream_token: str) -> TokenValidationResult:
        expires_at = self._clock() + self.ttl
        try:
            user, github_scopes = self.client.get_user(upstream_token)
        except GitHubAPIError as exc:
            logger.warning(
                "GitHub rejected token %s: %s", mask_sensitive(upstream_token, 4), exc
            )
            return TokenValidationResult(valid=False, expires_at=expires_at, error=str(exc))

        subject = str(user.get("login") or user.get("id") or "") or None
        scopes = map_github_scopes(github_scopes, fallback=self.fallback)
        logger.debug("Validated GitHub token for %s with scopes %s", subject, scopes)
        return TokenValidationResult(
            valid=True,
            expires_at=expires_at,
            subject=subject,
            scopes=tuple(scopes),
            user=user,
        )
