"""Opaque random token generation.

State correlation tokens, authorization codes, access tokens and client
credentials are all unpadded base64url strings drawn from the OS CSPRNG.
"""

from __future__ import annotations

import secrets
from typing import Final

from mcp_time_server.oauth.errors import EntropyError

STATE_TOKEN_BYTES: Final[int] = 32
AUTH_CODE_BYTES: Final[int] = 32
ACCESS_TOKEN_BYTES: Final[int] = 43  # ~344 bits
CLIENT_ID_BYTES: Final[int] = 32
CLIENT_SECRET_BYTES: Final[int] = 32


def generate_token(byte_length: int = 32) -> str:
    """Return ``byte_length`` random bytes as an unpadded base64url string.

    Raises
    ------
    EntropyError
        If the operating system cannot provide random bytes.
    """
    if byte_length <= 0:
        raise ValueError("byte_length must be positive")
    try:
        return secrets.token_urlsafe(byte_length)
    except (OSError, NotImplementedError) as exc:
        raise EntropyError("random source unavailable") from exc
