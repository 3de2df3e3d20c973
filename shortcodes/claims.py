"""Atomic "claim with TTL" primitive.

A claim is a key that can be taken by exactly one caller until it is released
or its TTL runs out. Shortcode reservations and webhook de-duplication are both
built on this primitive, each in its own key namespace.

Claim Lifecycle
===============
::
    ┌─────────────┐  claim() wins   ┌─────────────┐
    │   absent    │ ──────────────▶ │   claimed   │
    │             │ ◀────────────── │  (TTL runs) │
    └─────────────┘  release() /    └──────┬──────┘
           ▲         TTL expiry            │ persist()
           │                               ▼
           │                        ┌─────────────┐
           └─────── release() ───── │  permanent  │
                                    │  (no TTL)   │
                                    └─────────────┘

Redis Mapping
=============
- ``claim``   → ``SET key value NX EX ttl`` (set-if-absent and expiry in one command)
- ``exists``  → ``EXISTS key``
- ``get``     → ``GET key``
- ``release`` → ``DEL key``
- ``persist`` → ``SET key value``

Key Behaviours
===============
- ``claim`` returns False when the key is already present. Concurrent callers
  racing for the same key get exactly one True.
- ``release`` is idempotent.
- Redis errors surface as StoreUnavailableError so callers fail closed.
"""

from typing import Protocol

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError

from shortcodes.enums import StoreName
from shortcodes.errors import StoreUnavailableError

__all__ = ["ClaimStore", "RedisClaimStore", "REDIS_OPERATIONS_TOTAL"]

REDIS_OPERATIONS_TOTAL = Counter(
    "shortcodes_redis_operations_total",
    "Redis operations issued by the claim store",
    ["operation"],
)


class ClaimStore(Protocol):
    async def claim(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def exists(self, key: str) -> bool: ...

    async def get(self, key: str) -> str | None: ...

    async def release(self, key: str) -> None: ...

    async def persist(self, key: str, value: str) -> None: ...


class RedisClaimStore:
    """ClaimStore backed by a single Redis primary."""

    def __init__(self, cache: redis.Redis, store: StoreName = StoreName.RESERVATION) -> None:
        self._cache = cache
        self._store = store

    async def claim(self, key: str, value: str, ttl_seconds: int) -> bool:
        assert ttl_seconds > 0, f"ttl_seconds must be positive, got {ttl_seconds!r}"
        try:
            claimed = await self._cache.set(key, value, ex=ttl_seconds, nx=True)
        except RedisError as exc:
            raise StoreUnavailableError(self._store, f"claim failed for {key}: {exc}") from exc
        REDIS_OPERATIONS_TOTAL.labels(operation="claim").inc()
        return bool(claimed)

    async def exists(self, key: str) -> bool:
        try:
            count = await self._cache.exists(key)
        except RedisError as exc:
            raise StoreUnavailableError(self._store, f"exists failed for {key}: {exc}") from exc
        REDIS_OPERATIONS_TOTAL.labels(operation="exists").inc()
        return count > 0

    async def get(self, key: str) -> str | None:
        try:
            value = await self._cache.get(key)
        except RedisError as exc:
            raise StoreUnavailableError(self._store, f"get failed for {key}: {exc}") from exc
        REDIS_OPERATIONS_TOTAL.labels(operation="get").inc()
        return value

    async def release(self, key: str) -> None:
        try:
            await self._cache.delete(key)
        except RedisError as exc:
            raise StoreUnavailableError(self._store, f"release failed for {key}: {exc}") from exc
        REDIS_OPERATIONS_TOTAL.labels(operation="release").inc()

    async def persist(self, key: str, value: str) -> None:
        try:
            await self._cache.set(key, value)
        except RedisError as exc:
            raise StoreUnavailableError(self._store, f"persist failed for {key}: {exc}") from exc
        REDIS_OPERATIONS_TOTAL.labels(operation="persist").inc()
