"""OAuth core package.

This namespace hosts the reusable, **HTTP-agnostic** building blocks of the
GitHub-backed OAuth 2.1 layer.

Sub-modules
-----------
clock
    Test-friendly time abstraction.
tokens
    Opaque random token generation.
pkce
    Proof-Key for Code Exchange helpers (S256 only).
models
    Immutable dataclasses for clients, pending states, codes and tokens.
store
    Storage protocols and their in-memory implementations.
config
    Environment-driven settings.
github
    GitHub client, token verifier and scope mapping.
service
    The authorization-server / resource-server façade.
errors
    Exception types used by the OAuth logic.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock  # noqa: F401
from .config import OAuthConfig  # noqa: F401
from .errors import NotFoundError, OAuthError  # noqa: F401
from .log_utils import get_oauth_logger  # noqa: F401
from .models import (  # noqa: F401
    AccessToken,
    AuthenticatedRequest,
    AuthorizationCode,
    AuthorizationState,
    RegisteredClient,
    TokenValidationResult,
)
from .pkce import code_challenge_s256, new_code_verifier, verify_code_challenge  # noqa: F401
from .service import OAuthService  # noqa: F401
from .store import InMemoryClientStore, InMemoryExpiringStore  # noqa: F401
from .tokens import generate_token  # noqa: F401

__all__ = [
    # clock
    "Clock",
    "default_clock",
    # config
    "OAuthConfig",
    # errors
    "NotFoundError",
    "OAuthError",
    # models
    "AccessToken",
    "AuthenticatedRequest",
    "AuthorizationCode",
    "AuthorizationState",
    "RegisteredClient",
    "TokenValidationResult",
    # pkce / tokens
    "code_challenge_s256",
    "new_code_verifier",
    "verify_code_challenge",
    "generate_token",
    # service / stores
    "OAuthService",
    "InMemoryClientStore",
    "InMemoryExpiringStore",
    # logging helpers
    "get_oauth_logger",
]
