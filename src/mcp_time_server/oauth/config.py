"""Environment-driven configuration for the OAuth layer.

All settings are read once by :meth:`OAuthConfig.from_env` and then passed
explicitly to the service, routes and middleware.

Environment variables
---------------------
MCP_SERVER_URL
    Canonical public URL of this server (trailing slash stripped).  When
    unset, ``HOST`` + ``PORT`` (+ ``USE_HTTPS``) are used if both are present.
GITHUB_CLIENT_ID / GITHUB_CLIENT_SECRET
    GitHub OAuth App credentials.
GITHUB_OAUTH_SECRET_NAME
    AWS Secrets Manager secret holding a JSON object with the two keys above;
    consulted only when either credential is missing from the environment.
OAUTH_REDIRECT_URIS, OAUTH_SCOPES_SUPPORTED, MCP_REQUIRED_SCOPES
    Comma separated lists.
TOKEN_EXPIRY_SECONDS
    Access-token lifetime (default 3600).
ENFORCE_HTTPS, OAUTH_ENABLED, ENABLE_DCR, ALLOW_PUBLIC_CLIENTS, GITHUB_SCOPE_FALLBACK
    Boolean flags.
GITHUB_API_URL / GITHUB_AUTH_URL / GITHUB_TOKEN_URL
    GitHub Enterprise overrides.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Final, Mapping
from urllib.parse import urlparse

from mcp_time_server.oauth.errors import ConfigurationError

logger = logging.getLogger("mcp-time-server.oauth.config")

_TRUTHY: Final[tuple[str, ...]] = ("true", "1", "yes", "y", "on")

DEFAULT_SERVER_URL: Final[str] = "http://localhost:8080"
DEFAULT_REDIRECT_URIS: Final[tuple[str, ...]] = (
    "http://127.0.0.1:33418",
    "https://vscode.dev/redirect",
)
DEFAULT_SCOPES: Final[tuple[str, ...]] = ("mcp:tools", "mcp:resources", "read:user")
DEFAULT_TOKEN_EXPIRY_SECONDS: Final[int] = 3600

GITHUB_API_URL: Final[str] = "https://api.github.com"
GITHUB_AUTH_URL: Final[str] = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL: Final[str] = "https://github.com/login/oauth/access_token"

_LOCAL_HOSTS: Final[frozenset[str]] = frozenset({"localhost", "127.0.0.1", "::1"})


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return _truthy(raw)


def _split(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def is_localhost(url_or_host: str) -> bool:
    """Return *True* for ``localhost``, ``127.0.0.1`` or ``::1`` (with or without port)."""
    host = urlparse(url_or_host).hostname if "://" in url_or_host else url_or_host
    if host is None:
        return False
    host = host.strip("[]")
    if host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.lower() in _LOCAL_HOSTS


def load_github_credentials_from_aws(secret_name: str) -> tuple[str, str]:
    """Fetch ``(client_id, client_secret)`` from AWS Secrets Manager.

    The secret string must be a JSON object with ``GITHUB_CLIENT_ID`` and
    ``GITHUB_CLIENT_SECRET`` keys.  ``boto3`` is imported lazily; install the
    ``aws`` extra to use this.
    """
    import boto3  # local import to keep AWS optional

    client = boto3.client("secretsmanager")
    response = client.get_secret_value(SecretId=secret_name)
    try:
        data = json.loads(response["SecretString"])
    except (KeyError, TypeError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"secret {secret_name!r} is not a JSON object") from exc
    client_id = str(data.get("GITHUB_CLIENT_ID") or "")
    client_secret = str(data.get("GITHUB_CLIENT_SECRET") or "")
    if not client_id or not client_secret:
        raise ConfigurationError(
            f"secret {secret_name!r} lacks GITHUB_CLIENT_ID or GITHUB_CLIENT_SECRET"
        )
    return client_id, client_secret


@dataclass(slots=True)
class OAuthConfig:
    """Resolved OAuth settings."""

    server_url: str = DEFAULT_SERVER_URL
    github_client_id: str = ""
    github_client_secret: str = ""
    redirect_uris: list[str] = field(default_factory=lambda: list(DEFAULT_REDIRECT_URIS))
    scopes_supported: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    token_expiry_seconds: int = DEFAULT_TOKEN_EXPIRY_SECONDS
    enforce_https: bool = False
    oauth_enabled: bool = False
    enable_dcr: bool = True
    allow_public_clients: bool = True
    github_api_url: str = GITHUB_API_URL
    github_auth_url: str = GITHUB_AUTH_URL
    github_token_url: str = GITHUB_TOKEN_URL
    scope_fallback: bool = True
    required_scopes: list[str] = field(default_factory=list)

    # ----- construction ---------------------------------------------------- #
    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str] | None = None,
        *,
        secrets_loader: Callable[[str], tuple[str, str]] = load_github_credentials_from_aws,
    ) -> "OAuthConfig":
        """Build a config from *env* (defaults to ``os.environ``).

        Raises
        ------
        ConfigurationError
            For unparseable values (bad integers, URLs without a scheme).
        """
        env = os.environ if env is None else env
        cfg = cls()

        server_url = (env.get("MCP_SERVER_URL") or "").strip()
        if server_url:
            cfg.server_url = server_url.rstrip("/")
        elif env.get("HOST") and env.get("PORT"):
            scheme = "https" if _truthy(env.get("USE_HTTPS")) else "http"
            cfg.server_url = f"{scheme}://{env['HOST']}:{env['PORT']}"

        cfg.github_client_id = (env.get("GITHUB_CLIENT_ID") or "").strip()
        cfg.github_client_secret = (env.get("GITHUB_CLIENT_SECRET") or "").strip()
        secret_name = (env.get("GITHUB_OAUTH_SECRET_NAME") or "").strip()
        if secret_name and not (cfg.github_client_id and cfg.github_client_secret):
            logger.info("Loading GitHub OAuth credentials from secret %s", secret_name)
            cfg.github_client_id, cfg.github_client_secret = secrets_loader(secret_name)

        for uri in _split(env.get("OAUTH_REDIRECT_URIS")):
            if not urlparse(uri).scheme:
                raise ConfigurationError(f"invalid redirect URI {uri!r}")
            if uri not in cfg.redirect_uris:
                cfg.redirect_uris.append(uri)

        if env.get("OAUTH_SCOPES_SUPPORTED"):
            cfg.scopes_supported = _split(env.get("OAUTH_SCOPES_SUPPORTED"))
        cfg.required_scopes = _split(env.get("MCP_REQUIRED_SCOPES"))

        expiry_raw = (env.get("TOKEN_EXPIRY_SECONDS") or "").strip()
        if expiry_raw:
            try:
                cfg.token_expiry_seconds = int(expiry_raw)
            except ValueError as exc:
                raise ConfigurationError(
                    f"invalid TOKEN_EXPIRY_SECONDS: {expiry_raw!r}"
                ) from exc

        cfg.enforce_https = _flag(env, "ENFORCE_HTTPS", cfg.enforce_https)
        cfg.oauth_enabled = _flag(env, "OAUTH_ENABLED", cfg.oauth_enabled)
        cfg.enable_dcr = _flag(env, "ENABLE_DCR", cfg.enable_dcr)
        cfg.allow_public_clients = _flag(env, "ALLOW_PUBLIC_CLIENTS", cfg.allow_public_clients)
        cfg.scope_fallback = _flag(env, "GITHUB_SCOPE_FALLBACK", cfg.scope_fallback)

        if env.get("GITHUB_API_URL"):
            cfg.github_api_url = env["GITHUB_API_URL"].rstrip("/")
        if env.get("GITHUB_AUTH_URL"):
            cfg.github_auth_url = env["GITHUB_AUTH_URL"]
        if env.get("GITHUB_TOKEN_URL"):
            cfg.github_token_url = env["GITHUB_TOKEN_URL"]
        return cfg

    # ----- validation ------------------------------------------------------ #
    def validate(self) -> None:
        """Raise :class:`ConfigurationError` if the settings are unusable."""
        if not self.server_url:
            raise ConfigurationError("server URL is required")
        parsed = urlparse(self.server_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError("server URL must use http or https scheme")
        if self.enforce_https and parsed.scheme == "http" and not is_localhost(self.server_url):
            raise ConfigurationError(
                "HTTPS enforcement enabled but server URL uses HTTP for non-localhost"
            )
        if self.oauth_enabled:
            if not self.github_client_id:
                raise ConfigurationError("GitHub client ID is required when OAuth is enabled")
            if not self.github_client_secret and not self.allow_public_clients:
                raise ConfigurationError(
                    "GitHub client secret is required when public clients are not allowed"
                )
        if not self.redirect_uris:
            raise ConfigurationError("at least one redirect URI must be configured")
        if not self.scopes_supported:
            raise ConfigurationError("at least one scope must be supported")
        if self.token_expiry_seconds <= 0:
            raise ConfigurationError("token expiry duration must be positive")

    # ----- derived URLs ---------------------------------------------------- #
    @property
    def callback_url(self) -> str:
        return f"{self.server_url}/oauth/callback"

    @property
    def resource_metadata_url(self) -> str:
        return f"{self.server_url}/.well-known/oauth-protected-resource"

    @property
    def registration_endpoint(self) -> str | None:
        return f"{self.server_url}/register" if self.enable_dcr else None

    def is_scope_supported(self, scope: str) -> bool:
        return scope in self.scopes_supported

    def summary(self) -> dict[str, Any]:
        """Non-secret view of the config for startup logging."""
        return {
            "server_url": self.server_url,
            "oauth_enabled": self.oauth_enabled,
            "enable_dcr": self.enable_dcr,
            "allow_public_clients": self.allow_public_clients,
            "enforce_https": self.enforce_https,
            "scopes_supported": list(self.scopes_supported),
            "token_expiry_seconds": self.token_expiry_seconds,
            "github_client_id_set": bool(self.github_client_id),
            "github_client_secret_set": bool(self.github_client_secret),
        }
