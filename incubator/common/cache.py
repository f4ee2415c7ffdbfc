"""Async Redis helpers used for short-lived report caching."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from redis.asyncio import Redis

from .config import ServiceSettings

_LOGGER = logging.getLogger(__name__)
_CLIENTS: dict[str, Redis] = {}


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ex: int | None = None) -> Any: ...

    async def delete(self, key: str) -> Any: ...


def get_redis_client(redis_url: str) -> Redis:
    """Return a cached Redis client for the given URL."""

    if redis_url not in _CLIENTS:
        _CLIENTS[redis_url] = Redis.from_url(redis_url, decode_responses=True)
    return _CLIENTS[redis_url]


def resolve_redis(settings: ServiceSettings) -> Redis | None:
    """Return a Redis client or None if caching is not configured."""

    if not settings.redis_url:
        return None
    return get_redis_client(settings.redis_url)


async def close_redis_connections() -> None:
    """Close all cached Redis connections (used for shutdown/tests)."""

    for client in _CLIENTS.values():
        await client.aclose()
    _CLIENTS.clear()


class JsonCache:
    """JSON document cache on top of a Redis-like backend.

    Cache failures are logged and treated as misses; callers always fall back
    to computing the value from the database.
    """

    def __init__(self, backend: CacheBackend | None, *, ttl_seconds: int, namespace: str) -> None:
        self._backend = backend
        self._ttl = ttl_seconds
        self._namespace = namespace

    @property
    def enabled(self) -> bool:
        return self._backend is not None and self._ttl > 0

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Any | None:
        if not self.enabled:
            return None
        try:
            raw = await self._backend.get(self._key(key))
        except Exception as exc:  # noqa: BLE001 - cache outages degrade to a miss
            _LOGGER.warning("Cache read failed for %s: %s", key, exc)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            _LOGGER.warning("Discarding undecodable cache entry %s", key)
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any) -> None:
        if not self.enabled:
            return
        try:
            await self._backend.set(self._key(key), json.dumps(value, default=str), ex=self._ttl)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Cache write failed for %s: %s", key, exc)

    async def delete(self, key: str) -> None:
        if self._backend is None:
            return
        try:
            await self._backend.delete(self._key(key))
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Cache delete failed for %s: %s", key, exc)
