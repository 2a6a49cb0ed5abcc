"""
Ephemeral key-value store used for login roundtrip state and session records.
Core code depends only on the KVStore protocol; Redis backs it in production and
MemoryStore (same TTL semantics, injectable clock) backs it in tests or single-process runs.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import redis.asyncio
from redis.exceptions import RedisError

from gallery_web.errors import StoreError

logger = logging.getLogger(__name__)

# How often an in-process store drops expired keys when nothing writes to it
MEMORY_SWEEP_INTERVAL = 60.0

# Redis client timeouts (seconds); never indefinite
REDIS_CONNECT_TIMEOUT = 5.0
REDIS_RESPONSE_TIMEOUT = 10.0


class KVStore(Protocol):
    async def get(self, key: str) -> str | None:
        ...

    async def set_ex(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def get_del(self, key: str) -> str | None:
        """Atomically return the value and remove the key."""
        ...

    async def delete(self, key: str) -> None:
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def aclose(self) -> None:
        ...


class RedisStore:
    """KVStore over redis.asyncio. Client errors are wrapped in StoreError."""

    def __init__(self, client: redis.asyncio.Redis):
        self.redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        client = redis.asyncio.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=REDIS_CONNECT_TIMEOUT,
            socket_timeout=REDIS_RESPONSE_TIMEOUT,
        )
        return cls(client)

    async def get(self, key: str) -> str | None:
        try:
            return await self.redis.get(key)
        except RedisError as e:
            raise StoreError(f"GET failed: {e}") from e

    async def set_ex(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.redis.setex(key, ttl_seconds, value)
        except RedisError as e:
            raise StoreError(f"SETEX failed: {e}") from e

    async def get_del(self, key: str) -> str | None:
        # GETDEL is a single command, so two callers can never both see the value
        try:
            return await self.redis.getdel(key)
        except RedisError as e:
            raise StoreError(f"GETDEL failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(key)
        except RedisError as e:
            raise StoreError(f"DEL failed: {e}") from e

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.redis.exists(key))
        except RedisError as e:
            raise StoreError(f"EXISTS failed: {e}") from e

    async def ping(self) -> None:
        try:
            await self.redis.ping()
        except RedisError as e:
            raise StoreError(f"PING failed: {e}") from e

    async def aclose(self) -> None:
        await self.redis.aclose()


@dataclass
class _Entry:
    value: str
    expires_at: float


class MemoryStore:
    """
    In-process KVStore with per-key TTL. Expired keys are dropped on access, and every
    write sweeps the whole table so abandoned keys cannot pile up.
    No await happens between read and delete in get_del, so it is atomic on one event loop.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: dict[str, _Entry] = {}

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry.value if entry else None

    async def set_ex(self, key: str, value: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.clean_expired()
        self._data[key] = _Entry(value=value, expires_at=self._clock() + ttl_seconds)

    async def get_del(self, key: str) -> str | None:
        entry = self._live(key)
        if entry is None:
            return None
        del self._data[key]
        return entry.value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def aclose(self) -> None:
        self._data.clear()

    def clean_expired(self) -> int:
        """Drop every expired key; returns how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._data.items() if now >= e.expires_at]
        for k in expired:
            del self._data[k]
        return len(expired)


async def sweep_periodically(store: MemoryStore, interval: float = MEMORY_SWEEP_INTERVAL) -> None:
    """Run until cancelled, dropping expired keys every interval seconds."""
    while True:
        await asyncio.sleep(interval)
        removed = store.clean_expired()
        if removed:
            logger.debug("Dropped %d expired keys", removed)


def open_store(url: str) -> KVStore:
    """Open a store from a URL: memory:// for the in-process store, anything else goes to Redis."""
    if url.startswith("memory://"):
        logger.warning("Using in-process memory store; sessions will not survive restarts")
        return MemoryStore()
    return RedisStore.from_url(url)
