"""Exception types raised by the OAuth core.

Only lightweight, **data-carrying** exceptions live here so that the HTTP
layer can turn them into responses in one place.  ``OAuthError`` subclasses
map 1:1 onto the error codes of RFC 6749 §4.1.2.1 / §5.2, RFC 7591 §3.2.2 and
RFC 6750 §3.1; their ``description`` is safe to show to a client.
"""

from __future__ import annotations


class OAuthError(Exception):
    """Base class for errors surfaced verbatim to OAuth clients."""

    error_code: str = "server_error"
    status_code: int = 400

    def __init__(
        self,
        description: str | None = None,
        *,
        redirect_uri: str | None = None,
        state: str | None = None,
    ) -> None:
        super().__init__(description or self.error_code)
        self.description: str = description or self.error_code
        # Set only once the redirect URI has been validated for the client.
        self.redirect_uri: str | None = redirect_uri
        self.state: str | None = state

    def to_payload(self) -> dict[str, str]:
        """Return the JSON error body **without secrets**."""
        return {"error": self.error_code, "error_description": self.description}


class InvalidRequestError(OAuthError):
    error_code = "invalid_request"


class InvalidClientError(OAuthError):
    """Unknown client, failed client authentication, or an unusable client record."""

    error_code = "invalid_client"
    status_code = 401


class InvalidGrantError(OAuthError):
    error_code = "invalid_grant"


class UnauthorizedClientError(OAuthError):
    error_code = "unauthorized_client"


class UnsupportedGrantTypeError(OAuthError):
    error_code = "unsupported_grant_type"


class UnsupportedResponseTypeError(OAuthError):
    error_code = "unsupported_response_type"


class InvalidScopeError(OAuthError):
    error_code = "invalid_scope"


class InvalidRedirectURIError(OAuthError):
    error_code = "invalid_redirect_uri"


class InvalidClientMetadataError(OAuthError):
    error_code = "invalid_client_metadata"


class ServerError(OAuthError):
    error_code = "server_error"
    status_code = 500


class AccessDeniedError(OAuthError):
    """Upstream denial relayed to the client (e.g. the user cancelled on GitHub)."""

    error_code = "access_denied"


class InvalidTokenError(OAuthError):
    """Bearer token missing, unknown, expired or rejected upstream."""

    error_code = "invalid_token"
    status_code = 401


class InsufficientScopeError(OAuthError):
    error_code = "insufficient_scope"
    status_code = 403


# --------------------------------------------------------------------------- #
# Internal (never shown to clients as-is)                                     #
# --------------------------------------------------------------------------- #
class NotFoundError(KeyError):
    """Raised by stores when a key is absent **or** expired."""


class ClientNotFoundError(NotFoundError):
    """Raised by client stores for an unknown ``client_id``."""


class EntropyError(RuntimeError):
    """The operating system's random source failed."""


class TooShortError(ValueError):
    """A generated PKCE code verifier ended up shorter than 43 characters."""


class GitHubAPIError(RuntimeError):
    """A call to GitHub failed (transport, non-200 or malformed body)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code: int | None = status_code


class ConfigurationError(ValueError):
    """Raised by :meth:`OAuthConfig.validate` for unusable settings."""
