"""Courtesy cache of resolved roles, keyed by caller id.

The remote procedure is always authoritative. Entries only save a round trip
while they are fresh; replacing an entry is idempotent.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Protocol

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

from .roles import Role, parse_role

logger = logging.getLogger("admin_gate.roles")

DEFAULT_TTL_SECONDS = 300
# Entries older than RETENTION_FACTOR * ttl are dropped on the next write.
RETENTION_FACTOR = 2
DEFAULT_MAX_ENTRIES = 10_000

Clock = Callable[[], float]


@dataclass(frozen=True)
class CachedRole:
    role: Role | None
    fetched_at: float


class RoleCacheBackend(Protocol):
    ttl_seconds: int

    async def get(self, user_id: str) -> CachedRole | None: ...

    async def set(self, user_id: str, role: Role | None) -> CachedRole: ...

    async def invalidate(self, user_id: str) -> None: ...

    async def clear(self) -> None: ...

    def is_fresh(self, entry: CachedRole) -> bool: ...


class RoleCache:
    """In-process role cache with a freshness window.

    Bounded two ways: writes sweep out entries past the retention window, and
    the oldest entries are evicted once ``max_entries`` is exceeded.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = time.monotonic,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than 0")
        if max_entries <= 0:
            raise ValueError("max_entries must be greater than 0")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CachedRole] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_fresh(self, entry: CachedRole) -> bool:
        return self._clock() - entry.fetched_at < self.ttl_seconds

    async def get(self, user_id: str) -> CachedRole | None:
        return self._entries.get(user_id)

    async def set(self, user_id: str, role: Role | None) -> CachedRole:
        entry = CachedRole(role=role, fetched_at=self._clock())
        # Re-inserting keeps the dict ordered oldest first.
        self._entries.pop(user_id, None)
        self._entries[user_id] = entry
        self.prune()
        return entry

    def prune(self) -> int:
        """Drop expired entries and enforce ``max_entries``. Returns the number removed."""
        cutoff = self._clock() - self.ttl_seconds * RETENTION_FACTOR
        expired: list[str] = []
        for key, entry in self._entries.items():
            if entry.fetched_at > cutoff:
                break
            expired.append(key)
        for key in expired:
            del self._entries[key]
        overflow = len(self._entries) - self.max_entries
        for key in list(self._entries)[: max(overflow, 0)]:
            del self._entries[key]
        removed = len(expired) + max(overflow, 0)
        if removed:
            logger.debug("Pruned role cache entries removed=%d size=%d", removed, len(self._entries))
        return removed

    async def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    async def clear(self) -> None:
        self._entries.clear()


class RedisRoleCache:
    """Role cache shared across workers, stored under ``role:{user_id}`` with EX=ttl.

    Expired keys disappear on their own, so every hit is fresh. Redis failures are logged and treated as a cache miss.
    """

    def __init__(
        self,
        redis_client: AsyncRedis,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be greater than 0")
        self._redis = redis_client
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @staticmethod
    def _key(user_id: str) -> str:
        return f"role:{user_id}"

    def is_fresh(self, entry: CachedRole) -> bool:
        return True

    async def get(self, user_id: str) -> CachedRole | None:
        try:
            raw = await self._redis.get(self._key(user_id))
        except RedisError as exc:
            logger.error(
                "Redis operation failed operation=GET key=%s error=%s",
                self._key(user_id),
                exc,
            )
            return None
        if raw is None:
            return None
        return CachedRole(role=parse_role(raw), fetched_at=self._clock())

    async def set(self, user_id: str, role: Role | None) -> CachedRole:
        entry = CachedRole(role=role, fetched_at=self._clock())
        value = role.value if role is not None else ""
        try:
            await self._redis.set(self._key(user_id), value, ex=self.ttl_seconds)
        except RedisError as exc:
            logger.error(
                "Redis operation failed operation=SET key=%s error=%s",
                self._key(user_id),
                exc,
            )
        return entry

    async def invalidate(self, user_id: str) -> None:
        try:
            await self._redis.delete(self._key(user_id))
        except RedisError as exc:
            logger.error(
                "Redis operation failed operation=DEL key=%s error=%s",
                self._key(user_id),
                exc,
            )

    async def clear(self) -> None:
        try:
            async for key in self._redis.scan_iter(match="role:*"):
                await self._redis.delete(key)
        except RedisError as exc:
            logger.error("Redis operation failed operation=SCAN pattern=role:* error=%s", exc)
