"""
Read-through cache over Redis.

The relational store is always the source of truth; everything here is a
disposable projection. All operations are fail-open: when Redis is down they
return ``None`` / ``False`` and log, they never raise.
"""

from __future__ import annotations

import json
import time
from collections.abc import Awaitable, Callable
from functools import lru_cache
from typing import Any, Protocol, TypeVar

from loguru import logger
from pydantic import TypeAdapter, ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from rentals import settings

T = TypeVar("T")

# Batch size for SCAN / DEL during pattern invalidation
_SCAN_COUNT = 500


class Cache(Protocol):
    def is_connected(self) -> bool: ...

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: int) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_pattern(self, pattern: str) -> bool: ...

    async def inspect(self, pattern: str = "*") -> list[tuple[str, int]]: ...

    async def clear(self) -> bool: ...


class RedisCache:
    """
    ``Cache`` implementation backed by ``redis.asyncio``.

    Connectivity is tracked explicitly: a failed call flips the cache to
    disconnected, and every operation short-circuits until ``retry_after``
    seconds have passed. The next operation after that sends a PING and
    resumes normal service if Redis answers.
    """

    def __init__(self, redis: Redis, retry_after: float = settings.CACHE_RETRY_SECONDS):
        self._redis = redis
        self._retry_after = retry_after
        self._connected = True
        self._retry_at = 0.0

    def is_connected(self) -> bool:
        return self._connected

    def _mark_down(self, op: str, key: str, exc: Exception) -> None:
        if self._connected:
            logger.opt(exception=exc).warning(
                "Redis {} failed for {!r}, cache disabled for {}s",
                op,
                key,
                self._retry_after,
            )
        else:
            logger.warning("Redis {} failed for {!r}: {}", op, key, exc)
        self._connected = False
        self._retry_at = time.monotonic() + self._retry_after

    async def _available(self) -> bool:
        if self._connected:
            return True
        if time.monotonic() < self._retry_at:
            return False
        try:
            await self._redis.ping()
        except (RedisError, OSError) as exc:
            self._mark_down("ping", "-", exc)
            return False
        logger.info("Redis reachable again, cache re-enabled")
        self._connected = True
        return True

    async def connect(self) -> bool:
        """Ping Redis once, e.g. at startup. Never raises."""
        try:
            await self._redis.ping()
        except (RedisError, OSError) as exc:
            self._mark_down("ping", "-", exc)
            return False
        self._connected = True
        return True

    async def get(self, key: str) -> Any | None:
        if not await self._available():
            logger.debug("Redis not connected, skipping cache get for {}", key)
            return None
        try:
            data = await self._redis.get(key)
        except (RedisError, OSError) as exc:
            self._mark_down("get", key, exc)
            return None
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError:
            return data

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        if not await self._available():
            logger.debug("Redis not connected, skipping cache set for {}", key)
            return False
        payload = value if isinstance(value, str) else json.dumps(value)
        try:
            await self._redis.setex(key, ttl, payload)
        except (RedisError, OSError) as exc:
            self._mark_down("set", key, exc)
            return False
        return True

    async def delete(self, key: str) -> bool:
        if not await self._available():
            return False
        try:
            await self._redis.delete(key)
        except (RedisError, OSError) as exc:
            self._mark_down("delete", key, exc)
            return False
        return True

    async def delete_pattern(self, pattern: str) -> bool:
        if not await self._available():
            return False
        try:
            batch: list[str] = []
            async for key in self._redis.scan_iter(match=pattern, count=_SCAN_COUNT):
                batch.append(key)
                if len(batch) >= _SCAN_COUNT:
                    await self._redis.delete(*batch)
                    batch.clear()
            if batch:
                await self._redis.delete(*batch)
        except (RedisError, OSError) as exc:
            self._mark_down("delete_pattern", pattern, exc)
            return False
        return True

    async def inspect(self, pattern: str = "*") -> list[tuple[str, int]]:
        """List ``(key, ttl)`` pairs for the admin cache viewer."""
        if not await self._available():
            return []
        try:
            keys = sorted([k async for k in self._redis.scan_iter(match=pattern)])
            return [(k, await self._redis.ttl(k)) for k in keys]
        except (RedisError, OSError) as exc:
            self._mark_down("inspect", pattern, exc)
            return []

    async def clear(self) -> bool:
        if not await self._available():
            return False
        try:
            await self._redis.flushdb()
        except (RedisError, OSError) as exc:
            self._mark_down("flushdb", "*", exc)
            return False
        return True

    async def close(self) -> None:
        await self._redis.aclose()


@lru_cache(maxsize=1)
def get_redis_cache() -> RedisCache:
    redis = Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=2.0,
        socket_connect_timeout=2.0,
    )
    return RedisCache(redis)


# ---------------------------------------------------------------------------
# Key construction & read-through
# ---------------------------------------------------------------------------


def cache_key(prefix: str, **params: Any) -> str:
    """
    Build a key that encodes every parameter affecting the cached result.

    ``cache_key("vehicles:list", type="SUV", max_price=None)`` →
    ``vehicles:list:{"max_price":null,"type":"SUV"}``. Parameters are sorted,
    so equal filters always map to the same key regardless of order.
    """
    if not params:
        return prefix
    encoded = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{prefix}:{encoded}"


async def read_through(
    cache: Cache,
    key: str,
    ttl: int,
    loader: Callable[[], Awaitable[T]],
    adapter: TypeAdapter[T],
) -> T:
    """
    Return the cached value for ``key`` or load, cache and return it.

    ``loader`` errors propagate untouched and nothing is cached. A ``None``
    result is returned but not cached, since a cache miss already reads as
    ``None``. An entry that no longer fits ``adapter`` is evicted and
    treated as a miss.
    """
    cached = await cache.get(key)
    if cached is not None:
        try:
            value = adapter.validate_python(cached)
        except ValidationError as exc:
            logger.warning(
                "Discarding stale cache entry {}: {} validation error(s)",
                key,
                exc.error_count(),
            )
            await cache.delete(key)
        else:
            logger.debug("Cache hit: {}", key)
            return value
    else:
        logger.debug("Cache miss: {}", key)

    value = await loader()
    if value is not None:
        await cache.set(key, adapter.dump_python(value, mode="json"), ttl)
    return value
