"""OAuthService – authorization-server proxy and resource-server gate.

This service encapsulates the *business logic* of the OAuth flow.  Handlers
in :mod:`mcp_time_server.servers.auth` and the bearer middleware call the
façade methods below and only translate results and
:class:`~mcp_time_server.oauth.errors.OAuthError` instances into HTTP.

Flow
----
1. :meth:`OAuthService.authorize` validates the client request, parks an
   :class:`AuthorizationState` and returns the GitHub authorize URL.
2. :meth:`OAuthService.callback` consumes that state, exchanges the GitHub
   code and returns the client redirect carrying a fresh authorization code.
3. :meth:`OAuthService.exchange_token` redeems the code (single use, PKCE)
   for an access token bound to the upstream GitHub token.
4. :meth:`OAuthService.authenticate` resolves a bearer token on every
   protected request.

All secrets are redacted from logs.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Final, Mapping
from urllib.parse import parse_qsl, unquote, urlencode, urlparse, urlunparse

from mcp_time_server.oauth.clock import Clock, default_clock
from mcp_time_server.oauth.config import OAuthConfig, is_localhost
from mcp_time_server.oauth.errors import (
    AccessDeniedError,
    ClientNotFoundError,
    GitHubAPIError,
    InsufficientScopeError,
    InvalidClientError,
    InvalidClientMetadataError,
    InvalidGrantError,
    InvalidRedirectURIError,
    InvalidRequestError,
    InvalidScopeError,
    InvalidTokenError,
    NotFoundError,
    OAuthError,
    ServerError,
    UnauthorizedClientError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from mcp_time_server.oauth.github import GitHubClient, GitHubTokenVerifier
from mcp_time_server.oauth.log_utils import get_oauth_logger
from mcp_time_server.oauth.models import (
    AUTH_METHOD_BASIC,
    AUTH_METHOD_NONE,
    AUTH_METHOD_POST,
    AccessToken,
    AuthenticatedRequest,
    AuthorizationCode,
    AuthorizationState,
    RegisteredClient,
)
from mcp_time_server.oauth.pkce import S256, verify_code_challenge
from mcp_time_server.oauth.store import (
    ClientStore,
    ExpiringStore,
    InMemoryClientStore,
    InMemoryExpiringStore,
    hash_secret,
)
from mcp_time_server.oauth.tokens import (
    ACCESS_TOKEN_BYTES,
    AUTH_CODE_BYTES,
    CLIENT_ID_BYTES,
    CLIENT_SECRET_BYTES,
    STATE_TOKEN_BYTES,
    generate_token,
)
from mcp_time_server.utils.logging import mask_sensitive

_LOG = logging.getLogger("mcp-time-server.oauth.service")

STATE_TTL_SECONDS: Final[int] = 600
CODE_TTL_SECONDS: Final[int] = 600
DEFAULT_SCOPE: Final[str] = "mcp:tools mcp:resources read:user"
UPSTREAM_SCOPE: Final[str] = "read:user"

DEFAULT_CLIENT_ID: Final[str] = "vscode"
DEFAULT_CLIENT_NAME: Final[str] = "Visual Studio Code"

VALID_GRANT_TYPES: Final[frozenset[str]] = frozenset(
    {"authorization_code", "implicit", "password", "client_credentials", "refresh_token"}
)
VALID_RESPONSE_TYPES: Final[frozenset[str]] = frozenset({"code", "token"})
VALID_AUTH_METHODS: Final[frozenset[str]] = frozenset(
    {AUTH_METHOD_NONE, AUTH_METHOD_POST, AUTH_METHOD_BASIC}
)
MAX_REDIRECT_URI_LENGTH: Final[int] = 2048
MAX_CLIENT_NAME_LENGTH: Final[int] = 256


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #


def append_query(url: str, params: Mapping[str, str | None]) -> str:
    """Return *url* with *params* merged into its query string (``None`` skipped)."""
    parts = urlparse(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunparse(parts._replace(query=urlencode(query)))


def error_redirect_url(error: OAuthError) -> str:
    """Client redirect carrying *error*; requires ``error.redirect_uri``."""
    if not error.redirect_uri:
        raise ValueError("error has no validated redirect_uri")
    return append_query(
        error.redirect_uri,
        {
            "error": error.error_code,
            "error_description": error.description,
            "state": error.state or None,
        },
    )


def parse_basic_auth(header: str | None) -> tuple[str, str] | None:
    """Decode an ``Authorization: Basic`` header into ``(client_id, secret)``."""
    if not header or not header.lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(header[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, secret = decoded.split(":", 1)
    return unquote(client_id), unquote(secret)


def default_clients(config: OAuthConfig) -> list[RegisteredClient]:
    """Pre-registered public clients (VS Code)."""
    redirect_uris: list[str] = []
    for uri in (
        "http://127.0.0.1:33418",
        "http://127.0.0.1:33418/",
        "http://127.0.0.1:33418/done",
        "https://vscode.dev/redirect",
        *config.redirect_uris,
    ):
        if uri not in redirect_uris:
            redirect_uris.append(uri)
    return [
        RegisteredClient(
            client_id=DEFAULT_CLIENT_ID,
            redirect_uris=tuple(redirect_uris),
            token_endpoint_auth_method=AUTH_METHOD_NONE,
            client_name=DEFAULT_CLIENT_NAME,
            scope=DEFAULT_SCOPE,
        )
    ]


# --------------------------------------------------------------------------- #
# Service                                                                     #
# --------------------------------------------------------------------------- #


class OAuthService:
    """Façade over the stores, PKCE checks and the GitHub client."""

    def __init__(
        self,
        config: OAuthConfig,
        *,
        clients: ClientStore | None = None,
        states: ExpiringStore[AuthorizationState] | None = None,
        codes: ExpiringStore[AuthorizationCode] | None = None,
        tokens: ExpiringStore[AccessToken] | None = None,
        github: GitHubClient | None = None,
        verifier: GitHubTokenVerifier | None = None,
        clock: Clock = default_clock,
        seed_default_clients: bool = True,
    ) -> None:
        self.config = config
        self._clock = clock
        self.clients: ClientStore = clients if clients is not None else InMemoryClientStore()
        self.states: ExpiringStore[AuthorizationState] = (
            states if states is not None else InMemoryExpiringStore("state", clock=clock)
        )
        self.codes: ExpiringStore[AuthorizationCode] = (
            codes if codes is not None else InMemoryExpiringStore("code", clock=clock)
        )
        self.tokens: ExpiringStore[AccessToken] = (
            tokens if tokens is not None else InMemoryExpiringStore("token", clock=clock)
        )
        self.github = github or GitHubClient(config)
        self.verifier = verifier or GitHubTokenVerifier(
            self.github,
            ttl=config.token_expiry_seconds,
            fallback=config.scope_fallback,
            clock=clock,
        )
        if seed_default_clients:
            for client in default_clients(config):
                self.clients.save_client(client)

    def _now(self) -> int:
        return int(self._clock())

    def _get_client(self, client_id: str) -> RegisteredClient:
        try:
            return self.clients.get_client(client_id)
        except ClientNotFoundError:
            raise InvalidClientError("Unknown client_id") from None

    # ----- authorization endpoint ----------------------------------------- #
    def authorize(self, params: Mapping[str, str]) -> str:
        """Validate an authorization request and return the GitHub redirect URL.

        Errors raised before the redirect URI is validated carry no
        ``redirect_uri`` and must be answered directly; later errors carry
        the validated URI and the caller's ``state``.
        """
        if params.get("response_type") != "code":
            raise UnsupportedResponseTypeError("Only 'code' response_type is supported")

        client_id = params.get("client_id") or ""
        if not client_id:
            raise InvalidRequestError("client_id is required")
        client = self._get_client(client_id)

        redirect_uri = params.get("redirect_uri") or ""
        if not redirect_uri:
            raise InvalidRequestError("redirect_uri is required")
        if redirect_uri not in client.redirect_uris:
            raise InvalidRequestError("redirect_uri is not registered for this client")

        client_state = params.get("state") or None

        def fail(exc_type: type[OAuthError], description: str) -> OAuthError:
            return exc_type(description, redirect_uri=redirect_uri, state=client_state)

        if "code" not in client.response_types:
            raise fail(UnauthorizedClientError, "Client is not allowed to use response_type 'code'")

        code_challenge = params.get("code_challenge") or ""
        if not code_challenge:
            raise fail(InvalidRequestError, "code_challenge is required (PKCE)")
        if params.get("code_challenge_method") != S256:
            raise fail(InvalidRequestError, "code_challenge_method must be S256")

        scope = (params.get("scope") or "").strip() or DEFAULT_SCOPE
        for requested in scope.split():
            if not self.config.is_scope_supported(requested):
                raise fail(InvalidScopeError, f"Scope '{requested}' is not supported")

        correlation_token = generate_token(STATE_TOKEN_BYTES)
        self.states.save(
            correlation_token,
            AuthorizationState(
                correlation_token=correlation_token,
                client_id=client_id,
                redirect_uri=redirect_uri,
                scope=scope,
                client_state=client_state,
                code_challenge=code_challenge,
                code_challenge_method=S256,
                resource=params.get("resource") or None,
                created_at=self._now(),
            ),
            STATE_TTL_SECONDS,
        )

        url = append_query(
            self.config.github_auth_url,
            {
                "client_id": self.config.github_client_id,
                "redirect_uri": self.config.callback_url,
                "scope": UPSTREAM_SCOPE,
                "state": correlation_token,
            },
        )
        get_oauth_logger(
            base_logger_name="mcp-time-server.oauth.service", client_id=client_id
        ).info("Authorization request accepted; state %s", mask_sensitive(correlation_token, 4))
        return url

    # ----- callback -------------------------------------------------------- #
    def callback(self, params: Mapping[str, str]) -> str:
        """Complete the upstream login and return the client redirect URL."""
        state_token = params.get("state") or ""
        upstream_error = params.get("error")

        if upstream_error:
            description = params.get("error_description") or upstream_error
            pending = self._consume_state(state_token)
            if pending is None:
                raise AccessDeniedError(f"Authorization error: {upstream_error} - {description}")
            raise AccessDeniedError(
                description, redirect_uri=pending.redirect_uri, state=pending.client_state
            )

        github_code = params.get("code") or ""
        if not github_code:
            raise InvalidRequestError("No authorization code received")

        pending = self._consume_state(state_token)
        if pending is None:
            raise InvalidRequestError("Invalid or expired state parameter")

        log = get_oauth_logger(
            base_logger_name="mcp-time-server.oauth.service", client_id=pending.client_id
        )
        try:
            upstream_token = self.github.exchange_code(github_code, self.config.callback_url)
        except GitHubAPIError as exc:
            log.error("GitHub code exchange failed: %s", exc)
            raise ServerError(
                "Failed to obtain access token",
                redirect_uri=pending.redirect_uri,
                state=pending.client_state,
            ) from exc

        code = generate_token(AUTH_CODE_BYTES)
        now = self._clock()
        self.codes.save(
            code,
            AuthorizationCode(
                code=code,
                client_id=pending.client_id,
                redirect_uri=pending.redirect_uri,
                scope=pending.scope,
                code_challenge=pending.code_challenge,
                code_challenge_method=pending.code_challenge_method,
                upstream_token=upstream_token,
                expires_at=now + CODE_TTL_SECONDS,
                resource=pending.resource,
                created_at=int(now),
            ),
            CODE_TTL_SECONDS,
        )
        log.info("Issued authorization code %s", mask_sensitive(code, 4))
        return append_query(pending.redirect_uri, {"code": code, "state": pending.client_state})

    def _consume_state(self, state_token: str) -> AuthorizationState | None:
        if not state_token:
            return None
        try:
            return self.states.consume(state_token)
        except NotFoundError:
            return None

    # ----- token endpoint -------------------------------------------------- #
    def exchange_token(
        self, form: Mapping[str, str], *, authorization: str | None = None
    ) -> dict[str, Any]:
        """Redeem an authorization code for an access token.

        The code is consumed as soon as it is looked up, so any failed
        redemption attempt burns it.
        """
        if form.get("grant_type") != "authorization_code":
            raise UnsupportedGrantTypeError("Only authorization_code grant type is supported")

        basic = parse_basic_auth(authorization)
        code = form.get("code") or ""
        client_id = form.get("client_id") or (basic[0] if basic else "")
        code_verifier = form.get("code_verifier") or ""
        redirect_uri = form.get("redirect_uri") or ""
        for name, value in (
            ("code", code),
            ("client_id", client_id),
            ("code_verifier", code_verifier),
            ("redirect_uri", redirect_uri),
        ):
            if not value:
                suffix = " (PKCE)" if name == "code_verifier" else ""
                raise InvalidRequestError(f"{name} is required{suffix}")

        client = self._get_client(client_id)
        self._authenticate_client(client, form, basic)
        if "authorization_code" not in client.grant_types:
            raise UnauthorizedClientError("Client is not allowed to use authorization_code")

        log = get_oauth_logger(base_logger_name="mcp-time-server.oauth.service", client_id=client_id)
        try:
            grant = self.codes.consume(code)
        except NotFoundError:
            log.info("Rejected unknown or expired authorization code")
            raise InvalidGrantError("Invalid or expired authorization code") from None

        if grant.client_id != client_id:
            log.warning("client_id mismatch on code redemption")
            raise InvalidGrantError("client_id mismatch")
        if grant.redirect_uri != redirect_uri:
            log.warning("redirect_uri mismatch on code redemption")
            raise InvalidGrantError("redirect_uri mismatch")
        if not verify_code_challenge(code_verifier, grant.code_challenge, grant.code_challenge_method):
            log.warning("PKCE verification failed")
            raise InvalidGrantError("PKCE verification failed")

        token = generate_token(ACCESS_TOKEN_BYTES)
        now = self._clock()
        expiry = self.config.token_expiry_seconds
        self.tokens.save(
            token,
            AccessToken(
                token=token,
                client_id=client_id,
                scope=grant.scope,
                upstream_token=grant.upstream_token,
                expires_at=now + expiry,
                resource=grant.resource,
                created_at=int(now),
            ),
            expiry,
        )
        log.info("Issued access token %s (expires in %ss)", mask_sensitive(token, 4), expiry)

        body: dict[str, Any] = {
            "access_token": token,
            "token_type": "Bearer",
            "expires_in": expiry,
            "scope": grant.scope,
        }
        if grant.resource:
            body["resource"] = grant.resource
        return body

    def _authenticate_client(
        self,
        client: RegisteredClient,
        form: Mapping[str, str],
        basic: tuple[str, str] | None,
    ) -> None:
        if client.is_public:
            return
        if basic is not None:
            if basic[0] != client.client_id:
                raise InvalidClientError("client_id does not match credentials")
            secret = basic[1]
        else:
            secret = form.get("client_secret") or ""
        if not secret or not self.clients.validate_client_secret(client.client_id, secret):
            raise InvalidClientError("Client authentication failed")

    # ----- dynamic client registration ------------------------------------- #
    def register_client(self, metadata: Any) -> dict[str, Any]:
        """Register a client per RFC 7591 and return the response body."""
        if not self.config.enable_dcr:
            raise InvalidRequestError("Dynamic client registration is not enabled")
        if not isinstance(metadata, dict):
            raise InvalidClientMetadataError("Request body must be a JSON object")

        redirect_uris = self._validate_redirect_uris(metadata.get("redirect_uris"))
        grant_types = self._string_list(metadata, "grant_types", VALID_GRANT_TYPES)
        response_types = self._string_list(metadata, "response_types", VALID_RESPONSE_TYPES)

        auth_method = metadata.get("token_endpoint_auth_method")
        if auth_method is not None and not isinstance(auth_method, str):
            raise InvalidClientMetadataError("token_endpoint_auth_method must be a string")
        if auth_method:
            if auth_method not in VALID_AUTH_METHODS:
                raise InvalidClientMetadataError(
                    f"invalid token_endpoint_auth_method: {auth_method}"
                )
            if auth_method == AUTH_METHOD_NONE and not self.config.allow_public_clients:
                raise InvalidClientMetadataError("public clients are not allowed")
        else:
            auth_method = (
                AUTH_METHOD_NONE if self.config.allow_public_clients else AUTH_METHOD_BASIC
            )

        client_name = metadata.get("client_name")
        if client_name is not None:
            if not isinstance(client_name, str):
                raise InvalidClientMetadataError("client_name must be a string")
            if len(client_name) > MAX_CLIENT_NAME_LENGTH:
                raise InvalidClientMetadataError(
                    f"client_name too long (max {MAX_CLIENT_NAME_LENGTH} characters)"
                )

        contacts = metadata.get("contacts") or []
        if not isinstance(contacts, list) or not all(isinstance(c, str) for c in contacts):
            raise InvalidClientMetadataError("contacts must be a list of strings")

        client_secret: str | None = None
        if auth_method != AUTH_METHOD_NONE:
            client_secret = generate_token(CLIENT_SECRET_BYTES)

        def opt(name: str) -> str | None:
            value = metadata.get(name)
            return value if isinstance(value, str) and value else None

        client = RegisteredClient(
            client_id=generate_token(CLIENT_ID_BYTES),
            redirect_uris=tuple(redirect_uris),
            client_secret_hash=hash_secret(client_secret) if client_secret else None,
            grant_types=tuple(grant_types or ["authorization_code"]),
            response_types=tuple(response_types or ["code"]),
            token_endpoint_auth_method=auth_method,
            client_name=client_name or None,
            client_uri=opt("client_uri"),
            logo_uri=opt("logo_uri"),
            contacts=tuple(contacts),
            software_id=opt("software_id"),
            software_version=opt("software_version"),
            jwks_uri=opt("jwks_uri"),
            scope=opt("scope") or DEFAULT_SCOPE,
            created_at=self._now(),
        )
        self.clients.save_client(client)
        _LOG.info(
            "Registered client %s (%s, auth=%s)",
            client.client_id,
            client.client_name or "unnamed",
            auth_method,
        )

        body = client.to_metadata()
        if client_secret:
            body["client_secret"] = client_secret
        body["client_secret_expires_at"] = 0
        return body

    def _validate_redirect_uris(self, value: Any) -> list[str]:
        if not isinstance(value, list) or not value:
            raise InvalidRedirectURIError("at least one redirect_uri is required")
        for uri in value:
            if not isinstance(uri, str) or not uri:
                raise InvalidRedirectURIError("redirect_uri cannot be empty")
            if len(uri) > MAX_REDIRECT_URI_LENGTH:
                raise InvalidRedirectURIError("redirect_uri too long")
            parsed = urlparse(uri)
            if not parsed.scheme or (parsed.scheme in ("http", "https") and not parsed.netloc):
                raise InvalidRedirectURIError(f"redirect_uri must be absolute: {uri}")
            if parsed.fragment:
                raise InvalidRedirectURIError("redirect_uri must not contain a fragment")
            if (
                self.config.enforce_https
                and parsed.scheme == "http"
                and not is_localhost(uri)
            ):
                raise InvalidRedirectURIError("redirect_uri must use https")
        return list(value)

    @staticmethod
    def _string_list(metadata: Mapping[str, Any], key: str, allowed: frozenset[str]) -> list[str]:
        value = metadata.get(key)
        if value is None:
            return []
        if not isinstance(value, list):
            raise InvalidClientMetadataError(f"{key} must be a list")
        singular = key[:-1]
        for item in value:
            if not isinstance(item, str):
                raise InvalidClientMetadataError(f"{key} must be a list of strings")
            if item not in allowed:
                raise InvalidClientMetadataError(f"invalid {singular}: {item}")
        return list(value)

    # ----- resource server ------------------------------------------------- #
    def authenticate(
        self,
        authorization: str | None,
        *,
        required_scopes: tuple[str, ...] | list[str] = (),
    ) -> AuthenticatedRequest:
        """Resolve a bearer ``Authorization`` header into an identity.

        Raises
        ------
        InvalidTokenError
            Missing or malformed header, unknown or expired token, or the
            upstream GitHub token is no longer valid.
        InsufficientScopeError
            The effective scopes lack one of *required_scopes*.
        """
        if not authorization or not authorization.lower().startswith("bearer "):
            raise InvalidTokenError("Missing bearer token")
        token = authorization[7:].strip()
        if not token:
            raise InvalidTokenError("Missing bearer token")

        try:
            access = self.tokens.load(token)
        except NotFoundError:
            raise InvalidTokenError("Unknown or expired access token") from None

        result = self.verifier.verify(access.upstream_token)
        if not result.valid:
            _LOG.warning(
                "Upstream validation failed for token %s: %s",
                mask_sensitive(token, 4),
                result.error,
            )
            raise InvalidTokenError("The access token is no longer valid")

        upstream = set(result.scopes)
        auth = AuthenticatedRequest(
            client_id=access.client_id,
            subject=result.subject,
            scopes=tuple(s for s in access.scopes if s in upstream),
            expires_at=access.expires_at,
            resource=access.resource,
            user=result.user,
        )
        if not auth.has_scopes(required_scopes):
            missing = [s for s in required_scopes if s not in auth.scopes]
            raise InsufficientScopeError(f"Missing required scope(s): {' '.join(missing)}")
        return auth

    # ----- metadata -------------------------------------------------------- #
    def protected_resource_metadata(self) -> dict[str, Any]:
        """RFC 9728 document for this resource server."""
        return {
            "resource": self.config.server_url,
            "authorization_servers": [self.config.server_url],
            "scopes_supported": list(self.config.scopes_supported),
            "bearer_methods_supported": ["header"],
        }

    def authorization_server_metadata(self) -> dict[str, Any]:
        """RFC 8414 document for this authorization server."""
        base = self.config.server_url
        doc: dict[str, Any] = {
            "issuer": base,
            "authorization_endpoint": f"{base}/oauth/authorize",
            "token_endpoint": f"{base}/oauth/token",
            "scopes_supported": list(self.config.scopes_supported),
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code"],
            "token_endpoint_auth_methods_supported": [
                AUTH_METHOD_NONE,
                AUTH_METHOD_POST,
                AUTH_METHOD_BASIC,
            ],
            "code_challenge_methods_supported": [S256],
        }
        if self.config.registration_endpoint:
            doc["registration_endpoint"] = self.config.registration_endpoint
        return doc

    # ----- maintenance ----------------------------------------------------- #
    def purge_expired(self) -> dict[str, int]:
        """Sweep all expiring stores; returns removed counts per store."""
        return {
            "states": self.states.purge_expired(),
            "codes": self.codes.purge_expired(),
            "tokens": self.tokens.purge_expired(),
        }
