"""Typed, immutable records used by the OAuth core."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any

from mcp_time_server.oauth.clock import default_clock

AUTH_METHOD_NONE = "none"
AUTH_METHOD_POST = "client_secret_post"
AUTH_METHOD_BASIC = "client_secret_basic"


@dataclass(frozen=True, slots=True)
class RegisteredClient:
    """An OAuth client known to this server.

    ``client_secret_hash`` is ``None`` for public clients, which must use PKCE.
    """

    client_id: str
    redirect_uris: tuple[str, ...]
    client_secret_hash: str | None = None
    grant_types: tuple[str, ...] = ("authorization_code",)
    response_types: tuple[str, ...] = ("code",)
    token_endpoint_auth_method: str = AUTH_METHOD_NONE
    client_name: str | None = None
    client_uri: str | None = None
    logo_uri: str | None = None
    contacts: tuple[str, ...] = ()
    software_id: str | None = None
    software_version: str | None = None
    jwks_uri: str | None = None
    scope: str = ""
    created_at: int = field(default_factory=lambda: int(default_clock()))
    expires_at: int | None = None

    @property
    def is_public(self) -> bool:
        return self.client_secret_hash is None

    def copy(self) -> "RegisteredClient":
        """Return an independent copy of this record."""
        return replace(self)

    def to_metadata(self) -> dict[str, Any]:
        """Client metadata as echoed by the registration endpoint (no secret)."""
        data: dict[str, Any] = {
            "client_id": self.client_id,
            "redirect_uris": list(self.redirect_uris),
            "grant_types": list(self.grant_types),
            "response_types": list(self.response_types),
            "token_endpoint_auth_method": self.token_endpoint_auth_method,
            "client_id_issued_at": self.created_at,
        }
        optional = {
            "client_name": self.client_name,
            "client_uri": self.client_uri,
            "logo_uri": self.logo_uri,
            "software_id": self.software_id,
            "software_version": self.software_version,
            "jwks_uri": self.jwks_uri,
            "scope": self.scope or None,
        }
        data.update({k: v for k, v in optional.items() if v})
        if self.contacts:
            data["contacts"] = list(self.contacts)
        return data


@dataclass(frozen=True, slots=True)
class AuthorizationState:
    """Pending authorization request, keyed by the upstream ``state`` value."""

    correlation_token: str
    client_id: str
    redirect_uri: str
    scope: str
    client_state: str | None
    code_challenge: str
    code_challenge_method: str
    resource: str | None = None
    created_at: int = field(default_factory=lambda: int(default_clock()))


@dataclass(frozen=True, slots=True)
class AuthorizationCode:
    """Single-use code handed back to the client after the upstream login."""

    code: str
    client_id: str
    redirect_uri: str
    scope: str
    code_challenge: str
    code_challenge_method: str
    upstream_token: str
    expires_at: float
    resource: str | None = None
    created_at: int = field(default_factory=lambda: int(default_clock()))


@dataclass(frozen=True, slots=True)
class AccessToken:
    """Bearer token minted by this server and tied to an upstream GitHub token."""

    token: str
    client_id: str
    scope: str
    upstream_token: str
    expires_at: float
    resource: str | None = None
    created_at: int = field(default_factory=lambda: int(default_clock()))

    @property
    def scopes(self) -> tuple[str, ...]:
        return tuple(self.scope.split())


@dataclass(frozen=True, slots=True)
class TokenValidationResult:
    """Outcome of validating an upstream token against GitHub (cacheable)."""

    valid: bool
    expires_at: float
    subject: str | None = None
    scopes: tuple[str, ...] = ()
    user: dict[str, Any] | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class AuthenticatedRequest:
    """Identity attached to ``request.state.auth`` by the bearer gate."""

    client_id: str
    subject: str | None
    scopes: tuple[str, ...]
    expires_at: float
    resource: str | None = None
    user: dict[str, Any] | None = None

    def has_scopes(self, required: tuple[str, ...] | list[str]) -> bool:
        return set(required).issubset(self.scopes)
