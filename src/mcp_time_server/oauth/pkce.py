"""PKCE (Proof Key for Code Exchange) helpers.

RFC 7636 binds an authorization code to the client that requested it: the
client sends ``code_challenge = BASE64URL(SHA256(code_verifier))`` to the
authorization endpoint and later proves possession of ``code_verifier`` at
the token endpoint.

Only the S256 transformation is implemented.  ``plain`` is rejected
everywhere, for confidential and public clients alike.

This module intentionally performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import base64
import hmac
import re
from hashlib import sha256
from typing import Final

from mcp_time_server.oauth.errors import TooShortError
from mcp_time_server.oauth.tokens import generate_token

S256: Final[str] = "S256"

# RFC-7636 §4.1 mandates the verifier length between 43 and 128 characters.
_MIN_LEN: Final[int] = 43
_MAX_LEN: Final[int] = 128
_VERIFIER_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def new_code_verifier(entropy_bytes: int = 32) -> str:
    """Generate a code verifier from ``entropy_bytes`` of randomness.

    The default of 32 bytes (256 bits) encodes to exactly 43 characters.
    Larger inputs are truncated to 128 characters.

    Raises
    ------
    TooShortError
        If the encoded verifier is shorter than 43 characters.
    EntropyError
        If the random source fails.
    """
    verifier = generate_token(entropy_bytes)[:_MAX_LEN]
    if len(verifier) < _MIN_LEN:
        raise TooShortError(
            f"code verifier has {len(verifier)} characters, at least {_MIN_LEN} required"
        )
    return verifier


def code_challenge_s256(verifier: str) -> str:
    """Return the base64url-encoded SHA-256 of *verifier* without padding."""
    digest = sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_challenge(verifier: str, challenge: str, method: str) -> bool:
    """Return *True* if *verifier* hashes to the stored *challenge*.

    Any method other than ``S256`` fails, as does a verifier that is not a
    43-128 character string over the unreserved alphabet.
    """
    if method != S256 or not challenge:
        return False
    if not isinstance(verifier, str) or not _VERIFIER_RE.match(verifier):
        return False
    computed = code_challenge_s256(verifier)
    return hmac.compare_digest(computed.encode("ascii"), challenge.encode("utf-8"))
