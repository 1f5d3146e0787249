"""Lease Manager - exclusive, expiring, fenced ownership of a document.

A lease is a key holding an opaque owner token with a time-to-live. Only the
token holder may renew or release it; once it expires anyone may acquire it
again and the previous holder's token stops working. Expiry is enforced by
the backend, never by the client's own timers.

Backends:
- RedisLeaseManager: SET NX PX to acquire; WATCH/MULTI for the
  compare-and-extend and compare-and-delete steps. Shared by every
  controller instance.
- MemoryLeaseManager: the same semantics inside one process.
"""

import time
import uuid
from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from scenegen.errors import LeaseLost

logger = structlog.get_logger(__name__)

LEASE_PREFIX = "lease:document:"


def lease_key(document_id: str) -> str:
    return f"{LEASE_PREFIX}{document_id}"


def new_token() -> str:
    return uuid.uuid4().hex


class LeaseManager(ABC):
    """Mutually exclusive, time-bounded ownership of keys."""

    @abstractmethod
    async def acquire(self, key: str, ttl: float) -> Optional[str]:
        """Claim ``key`` for ``ttl`` seconds.

        Returns:
            A fresh owner token, or None when a live lease already exists
            (the key is busy).
        """

    @abstractmethod
    async def renew(self, key: str, token: str, ttl: float) -> None:
        """Extend the lease to ``ttl`` seconds from now.

        Raises:
            LeaseLost: If ``token`` does not own ``key`` anymore.
        """

    @abstractmethod
    async def release(self, key: str, token: str) -> None:
        """Drop the lease if ``token`` owns it; otherwise do nothing."""

    async def close(self) -> None:
        pass


class RedisLeaseManager(LeaseManager):
    """Leases stored as Redis keys with native expiry."""

    def __init__(self, client: Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisLeaseManager":
        return cls(Redis.from_url(url, decode_responses=True))

    async def acquire(self, key: str, ttl: float) -> Optional[str]:
        token = new_token()
        try:
            acquired = await self._client.set(key, token, nx=True, px=_millis(ttl))
        except RedisError as e:
            # Unreachable backend: nobody can prove ownership, so treat as busy
            logger.warning("lease_acquire_failed", key=key, error=str(e))
            return None
        if not acquired:
            return None
        logger.debug("lease_acquired", key=key, ttl=ttl)
        return token

    async def renew(self, key: str, token: str, ttl: float) -> None:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                if _decode(await pipe.get(key)) != token:
                    await pipe.unwatch()
                    raise LeaseLost(key)
                pipe.multi()
                pipe.pexpire(key, _millis(ttl))
                await pipe.execute()
        except WatchError:
            # Changed between GET and EXEC: expired and re-acquired
            raise LeaseLost(key) from None
        except RedisError as e:
            logger.warning("lease_renew_failed", key=key, error=str(e))
            raise LeaseLost(key) from e

    async def release(self, key: str, token: str) -> None:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                if _decode(await pipe.get(key)) != token:
                    await pipe.unwatch()
                    return
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
        except WatchError:
            return
        except RedisError as e:
            # The key still expires on its own
            logger.warning("lease_release_failed", key=key, error=str(e))
            return
        logger.debug("lease_released", key=key)

    async def close(self) -> None:
        await self._client.aclose()


class MemoryLeaseManager(LeaseManager):
    """In-process leases for a single controller process and for tests.

    None of the methods await, so each call is atomic on the event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._leases: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._leases.get(key)
        if entry is None:
            return None
        token, expires_at = entry
        if expires_at <= self._clock():
            del self._leases[key]
            return None
        return token

    async def acquire(self, key: str, ttl: float) -> Optional[str]:
        if self._live(key) is not None:
            return None
        token = new_token()
        self._leases[key] = (token, self._clock() + ttl)
        return token

    async def renew(self, key: str, token: str, ttl: float) -> None:
        if self._live(key) != token:
            raise LeaseLost(key)
        self._leases[key] = (token, self._clock() + ttl)

    async def release(self, key: str, token: str) -> None:
        if self._live(key) == token:
            del self._leases[key]

    def holder(self, key: str) -> Optional[str]:
        """Token currently owning ``key``, if any."""
        return self._live(key)


def _millis(seconds: float) -> int:
    return max(1, int(seconds * 1000))


def _decode(value) -> Optional[str]:
    if isinstance(value, bytes):
        return value.decode()
    return value
