"""Concurrency-safe, in-memory storage for the OAuth core.

Two narrow persistence interfaces live here:

* :class:`ExpiringStore` – keyed records with a per-entry TTL, used for
  pending authorization states, authorization codes and access tokens.
* :class:`ClientStore` – registered OAuth clients.

Both are :class:`typing.Protocol` contracts so a durable backend can be
slotted in later; the in-memory implementations below are the only ones
shipped.  The design follows these goals:

* **Concurrency** – one reader/writer lock per store: lookups and listing
  share it, inserts, deletes and sweeps take it exclusively.
* **Single use** – :meth:`ExpiringStore.consume` loads and deletes under one
  exclusive section, so at most one concurrent caller gets the record.
* **Expiry** – an expired entry is indistinguishable from an absent one.
  Every ``save`` sweeps expired entries; a miss on ``load`` sweeps too.
* **No secrets at rest in clear** – client secrets are stored as
  SHA-256 digests and compared in constant time.
"""

from __future__ import annotations

import base64
import hmac
import logging
from hashlib import sha256
from typing import Generic, Protocol, TypeVar, runtime_checkable

from mcp_time_server.oauth.clock import Clock, default_clock
from mcp_time_server.oauth.errors import (
    ClientNotFoundError,
    InvalidClientError,
    NotFoundError,
)
from mcp_time_server.oauth.locks import ReadWriteLock
from mcp_time_server.oauth.models import RegisteredClient

logger = logging.getLogger("mcp-time-server.oauth.store")

T = TypeVar("T")

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def hash_secret(secret: str) -> str:
    """Return the standard-base64 SHA-256 digest of *secret*."""
    return base64.b64encode(sha256(secret.encode("utf-8")).digest()).decode("ascii")


# --------------------------------------------------------------------------- #
# public interfaces                                                           #
# --------------------------------------------------------------------------- #


@runtime_checkable
class ExpiringStore(Protocol[T]):
    """Keyed records that disappear after their TTL."""

    def save(self, key: str, record: T, ttl: float) -> None: ...
    def load(self, key: str) -> T: ...
    def delete(self, key: str) -> None: ...
    def consume(self, key: str) -> T: ...

    # ----- maintenance ----------------------------------------------------- #
    def purge_expired(self) -> int: ...


@runtime_checkable
class ClientStore(Protocol):
    """Registered OAuth clients keyed by ``client_id``."""

    def save_client(self, client: RegisteredClient) -> None: ...
    def get_client(self, client_id: str) -> RegisteredClient: ...
    def delete_client(self, client_id: str) -> None: ...
    def list_clients(self) -> list[RegisteredClient]: ...
    def validate_client_secret(self, client_id: str, secret: str) -> bool: ...


# --------------------------------------------------------------------------- #
# In-memory implementations                                                   #
# --------------------------------------------------------------------------- #


class InMemoryExpiringStore(Generic[T]):
    """Dictionary-backed :class:`ExpiringStore`.

    Parameters
    ----------
    name
        Label used in log lines (``"state"``, ``"code"``, ``"token"``).
    clock
        Time source; injected so tests can advance time deterministically.
    """

    def __init__(self, name: str = "store", *, clock: Clock = default_clock) -> None:
        self.name = name
        self._clock = clock
        self._lock = ReadWriteLock()
        self._entries: dict[str, tuple[float, T]] = {}

    # ----- internal -------------------------------------------------------- #
    def _sweep_locked(self, now: float) -> int:
        stale = [k for k, (exp, _) in self._entries.items() if now >= exp]
        for k in stale:
            del self._entries[k]
        return len(stale)

    # ----- API ------------------------------------------------------------- #
    def save(self, key: str, record: T, ttl: float) -> None:
        if not key:
            raise ValueError("key must be non-empty")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock.write():
            now = self._clock()
            removed = self._sweep_locked(now)
            self._entries[key] = (now + ttl, record)
        if removed:
            logger.debug("%s store: swept %d expired entries on save", self.name, removed)

    def load(self, key: str) -> T:
        with self._lock.read():
            entry = self._entries.get(key)
            now = self._clock()
            if entry is not None and now < entry[0]:
                return entry[1]
        # miss or expired: sweep opportunistically, outside the read section
        self.purge_expired()
        raise NotFoundError(key)

    def delete(self, key: str) -> None:
        with self._lock.write():
            self._entries.pop(key, None)

    def consume(self, key: str) -> T:
        """Atomically load and remove *key*; only one caller can win."""
        with self._lock.write():
            entry = self._entries.pop(key, None)
            now = self._clock()
        if entry is None or now >= entry[0]:
            raise NotFoundError(key)
        return entry[1]

    def purge_expired(self) -> int:
        with self._lock.write():
            return self._sweep_locked(self._clock())

    def __len__(self) -> int:
        with self._lock.read():
            now = self._clock()
            return sum(1 for exp, _ in self._entries.values() if now < exp)


class InMemoryClientStore:
    """Dictionary-backed :class:`ClientStore`.

    Records are immutable dataclasses, but callers still receive copies so
    that identity checks never leak store internals.
    """

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._clients: dict[str, RegisteredClient] = {}

    def save_client(self, client: RegisteredClient) -> None:
        if not client.client_id:
            raise InvalidClientError("client_id is required")
        with self._lock.write():
            self._clients[client.client_id] = client.copy()

    def get_client(self, client_id: str) -> RegisteredClient:
        if not client_id:
            raise InvalidClientError("client_id is required")
        with self._lock.read():
            client = self._clients.get(client_id)
        if client is None:
            raise ClientNotFoundError(client_id)
        return client.copy()

    def delete_client(self, client_id: str) -> None:
        with self._lock.write():
            self._clients.pop(client_id, None)

    def list_clients(self) -> list[RegisteredClient]:
        with self._lock.read():
            return [c.copy() for c in self._clients.values()]

    def validate_client_secret(self, client_id: str, secret: str) -> bool:
        """Return *True* only for a confidential client whose secret matches."""
        try:
            client = self.get_client(client_id)
        except (ClientNotFoundError, InvalidClientError):
            return False
        if client.client_secret_hash is None or not secret:
            return False
        return hmac.compare_digest(
            hash_secret(secret).encode("ascii"),
            client.client_secret_hash.encode("ascii"),
        )
