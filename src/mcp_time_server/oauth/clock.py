"""Clock abstraction for testable expiry handling in the OAuth core.

Every store, record and verifier in :mod:`mcp_time_server.oauth` reads the
current time through an injected ``Clock`` instead of calling ``time.time()``
directly, so that TTL behaviour can be tested with a frozen or manually
advanced clock.

Example
-------
>>> from mcp_time_server.oauth.clock import default_clock
>>> isinstance(default_clock(), float)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Return ``time.time()``."""
    return time.time()
