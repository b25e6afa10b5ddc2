"""Key-value store backends for accounts and single-use tokens.

Two implementations share one async contract:

- ``MemoryKeyValueStore``: process-local dict; expired keys are dropped on
  read and swept on write. Not shared between server instances; intended for
  development and tests.
- ``RedisKeyValueStore``: Redis via ``redis.asyncio`` with native TTLs.

Values are strings; callers do their own JSON encoding. Backend failures are
raised as ``UpstreamError``.
"""

import heapq
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Callable, Optional

import redis.asyncio as redis
import structlog

from exposureshield.config import Settings
from exposureshield.exceptions import UpstreamError

logger = structlog.get_logger(__name__)


class KeyValueStore(ABC):
    """Async get/set/delete contract with optional per-key TTL."""

    name: str = "kv"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the value for key, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Store value under key, replacing any existing value."""

    @abstractmethod
    async def set_if_absent(
        self, key: str, value: str, ttl_seconds: Optional[int] = None
    ) -> bool:
        """Store value only if key does not exist. Returns True if stored."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. Returns True if something was deleted."""

    @abstractmethod
    async def get_and_delete(self, key: str) -> Optional[str]:
        """Read and delete key in as few round trips as the backend allows."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True if the backend is reachable."""

    async def close(self) -> None:
        """Release backend resources."""


class MemoryKeyValueStore(KeyValueStore):
    """In-memory store with TTL expiry.

    Expired keys are dropped when read, and every write also sweeps keys whose
    TTL has passed (oldest first, via a heap of expiry times), so records that
    are never read again do not accumulate.

    Operations never await, so each one is atomic with respect to other
    coroutines on the same event loop.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, tuple[str, Optional[float]]] = {}
        # (expires_at, key); entries go stale when a key is rewritten or deleted
        self._expiries: list[tuple[float, str]] = []

    def _expires_at(self, ttl_seconds: Optional[int]) -> Optional[float]:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def _sweep(self) -> None:
        now = self._clock()
        while self._expiries and self._expiries[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiries)
            entry = self._data.get(key)
            if entry is not None and entry[1] == expires_at:
                del self._data[key]

    def _store(self, key: str, value: str, ttl_seconds: Optional[int]) -> None:
        expires_at = self._expires_at(ttl_seconds)
        self._data[key] = (value, expires_at)
        if expires_at is not None:
            heapq.heappush(self._expiries, (expires_at, key))

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._sweep()
        self._store(key, value, ttl_seconds)

    async def set_if_absent(
        self, key: str, value: str, ttl_seconds: Optional[int] = None
    ) -> bool:
        self._sweep()
        if self._live(key) is not None:
            return False
        self._store(key, value, ttl_seconds)
        return True

    async def delete(self, key: str) -> bool:
        return self._live(key) is not None and self._data.pop(key, None) is not None

    async def get_and_delete(self, key: str) -> Optional[str]:
        value = self._live(key)
        if value is not None:
            del self._data[key]
        return value

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return sum(1 for key in list(self._data) if self._live(key) is not None)


class RedisKeyValueStore(KeyValueStore):
    """Redis-backed store. Uniqueness (SET NX) and consume (GETDEL) are atomic."""

    name = "redis"

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKeyValueStore":
        """Create a store from a redis:// or rediss:// URL."""
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client)

    @asynccontextmanager
    async def _errors(self, operation: str):
        try:
            yield
        except redis.RedisError as e:
            logger.error("kv_store_error", backend=self.name, operation=operation, error=str(e))
            raise UpstreamError(detail=f"Redis {operation} failed: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        async with self._errors("get"):
            return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        async with self._errors("set"):
            await self._client.set(key, value, ex=ttl_seconds)

    async def set_if_absent(
        self, key: str, value: str, ttl_seconds: Optional[int] = None
    ) -> bool:
        async with self._errors("set_if_absent"):
            return bool(await self._client.set(key, value, ex=ttl_seconds, nx=True))

    async def delete(self, key: str) -> bool:
        async with self._errors("delete"):
            return bool(await self._client.delete(key))

    async def get_and_delete(self, key: str) -> Optional[str]:
        async with self._errors("get_and_delete"):
            return await self._client.getdel(key)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("redis_connection_closed")


def build_kv_store(settings: Settings) -> KeyValueStore:
    """Select the store backend from configuration.

    Args:
        settings: Application settings

    Returns:
        Redis store if ``redis_url`` is set, otherwise the in-memory store
    """
    if settings.redis_url:
        logger.info("kv_store_selected", backend="redis", url=settings.redis_url.split("@")[-1])
        return RedisKeyValueStore.from_url(settings.redis_url)

    logger.warning(
        "kv_store_selected",
        backend="memory",
        note="In-memory store is not shared between instances; use REDIS_URL in production",
    )
    return MemoryKeyValueStore()
