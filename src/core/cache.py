import asyncio
import json
import re
import time
from collections.abc import Awaitable, Callable
from typing import Protocol

from loguru import logger
from redis.asyncio import Redis

ROLE_KEY_PREFIX = "roles"
GLOB_SPECIAL = re.compile(r"([\\*?\[\]^])")


def _escape_glob(value: str) -> str:
    """Escapes Redis MATCH metacharacters so user ids are matched literally."""
    return GLOB_SPECIAL.sub(r"\\\1", value)


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None: ...

    async def delete(self, *keys: str) -> None: ...

    async def delete_matching(self, pattern_prefix: str, suffix: str) -> int: ...


class InMemoryCacheBackend:
    """Per-process TTL map. Entries past their deadline are treated as absent."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[float, str]] = {}
        self._clock = clock
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        deadline, value = entry
        if self._clock() >= deadline:
            self._entries.pop(key, None)
            return None
        return value

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        async with self._lock:
            self._entries[key] = (self._clock() + ttl_seconds, value)

    async def delete(self, *keys: str) -> None:
        async with self._lock:
            for key in keys:
                self._entries.pop(key, None)

    async def delete_matching(self, pattern_prefix: str, suffix: str) -> int:
        async with self._lock:
            doomed = [k for k in self._entries if k.startswith(pattern_prefix) and k.endswith(suffix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)


class RedisCacheBackend:
    """Shared backend so every API instance sees the same invalidations."""

    def __init__(self, redis_client: Redis) -> None:
        self.redis = redis_client

    async def get(self, key: str) -> str | None:
        value = await self.redis.get(key)
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self.redis.setex(key, ttl_seconds, value)

    async def delete(self, *keys: str) -> None:
        await self.redis.delete(*keys)

    async def delete_matching(self, pattern_prefix: str, suffix: str) -> int:
        pattern = f"{_escape_glob(pattern_prefix)}*{_escape_glob(suffix)}"
        doomed = [key async for key in self.redis.scan_iter(match=pattern)]
        if doomed:
            await self.redis.delete(*doomed)
        return len(doomed)


class RoleCache:
    """Read-through cache of resolved role sets keyed by (tenant, user)."""

    def __init__(self, backend: CacheBackend, ttl_seconds: int = 300) -> None:
        """
        Args:
            backend: Storage for the serialized role lists.
            ttl_seconds: Lifetime of an entry (default: 5 minutes).
        """
        self.backend = backend
        self.ttl = ttl_seconds

    @staticmethod
    def key(tenant_id: str | None, user_id: str) -> str:
        return f"{ROLE_KEY_PREFIX}:{tenant_id or ''}:{user_id}"

    async def get_or_load(
        self, tenant_id: str | None, user_id: str, loader: Callable[[], Awaitable[list[str] | None]]
    ) -> list[str] | None:
        """Returns the cached role list, falling back to ``loader`` on a miss.

        A ``None`` from the loader (unknown user) is passed through and not cached.
        """
        key = self.key(tenant_id, user_id)
        cached = await self.backend.get(key)
        if cached is not None:
            return json.loads(cached)

        logger.debug(f"Role cache miss for {key}")
        roles = await loader()
        if roles is not None:
            await self.backend.setex(key, self.ttl, json.dumps(roles))
        return roles

    async def invalidate(self, tenant_id: str | None, user_id: str) -> None:
        await self.backend.delete(self.key(tenant_id, user_id))

    async def invalidate_user(self, user_id: str) -> None:
        """Drops the user's entries for every tenant (global flag changes)."""
        removed = await self.backend.delete_matching(f"{ROLE_KEY_PREFIX}:", f":{user_id}")
        logger.debug(f"Invalidated {removed} role cache entries for {user_id}")
