"""Fixed-window rate limiting on Redis counters.

Flow Diagram — check()
======================
::
    ┌─────────────┐
    │ INCR        │  rate_limit:<operation>:<identifier>
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ EXPIRE      │  window seconds
    │ TTL         │
    └──────┬──────┘
    count <= limit?
    ┌─────┴─────┐
    │ YES        │ NO
    ▼            ▼
┌─────────┐  ┌──────────┐
│ allowed │  │ denied,  │
│         │  │ retry in │
│         │  │ TTL secs │
└─────────┘  └──────────┘

Key Behaviours
===============
- Redis failures deny the request (fail closed) and flag the result as
  store_unavailable so callers can answer 503 instead of 429.
- status() reads the window without counting a request.
- Identifiers are ``user:<id>`` for known owners, otherwise ``ip:<address>``.
"""

import time
from dataclasses import dataclass

import redis.asyncio as redis
from fastapi import Request
from prometheus_client import Counter

from shortcodes.config import get_settings

__all__ = ["RateLimitConfig", "RateLimitResult", "RateLimiter", "RATE_LIMITS", "client_identifier"]

settings = get_settings()

RATE_LIMITED_TOTAL = Counter(
    "shortcodes_rate_limited_total",
    "Requests denied by the rate limiter",
    ["operation"],
)


@dataclass(frozen=True)
class RateLimitConfig:
    requests: int
    window: int


RATE_LIMITS: dict[str, RateLimitConfig] = {
    "shortcode_generation": RateLimitConfig(requests=50, window=60),
    "shortcode_reservation": RateLimitConfig(requests=30, window=60),
    "webhook": RateLimitConfig(requests=100, window=60),
    "api_general": RateLimitConfig(requests=100, window=60),
}


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: int | None = None
    store_unavailable: bool = False

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_time)),
        }
        if not self.success:
            headers["Retry-After"] = str(self.retry_after or 60)
        return headers


def client_identifier(request: Request, owner_id: str | None = None) -> str:
    if owner_id:
        return f"user:{owner_id}"

    forwarded = request.headers.get("x-forwarded-for")
    real_ip = request.headers.get("x-real-ip")
    host = request.client.host if request.client else None
    ip = (forwarded.split(",")[0].strip() if forwarded else None) or real_ip or host or "unknown"
    return f"ip:{ip}"


class RateLimiter:
    def __init__(self, cache: redis.Redis, logger=None, key_prefix: str = settings.RATE_LIMIT_KEY_PREFIX) -> None:
        self._cache = cache
        self._logger = logger
        self._key_prefix = key_prefix

    def config_for(self, operation: str) -> RateLimitConfig:
        return RATE_LIMITS.get(operation, RATE_LIMITS["api_general"])

    def _key(self, operation: str, identifier: str) -> str:
        return f"{self._key_prefix}:{operation}:{identifier}"

    async def check(
        self, operation: str, identifier: str, config: RateLimitConfig | None = None
    ) -> RateLimitResult:
        config = config or self.config_for(operation)
        key = self._key(operation, identifier)

        try:
            current = await self._cache.incr(key)
            await self._cache.expire(key, config.window)
            ttl = await self._cache.ttl(key)
        except Exception as exc:
            RATE_LIMITED_TOTAL.labels(operation=operation).inc()
            return self._fail_closed(operation, config, exc)

        ttl = ttl if ttl and ttl > 0 else config.window
        reset_time = time.time() + ttl
        if current <= config.requests:
            return RateLimitResult(
                success=True,
                limit=config.requests,
                remaining=max(0, config.requests - current),
                reset_time=reset_time,
            )

        RATE_LIMITED_TOTAL.labels(operation=operation).inc()
        return RateLimitResult(
            success=False,
            limit=config.requests,
            remaining=0,
            reset_time=reset_time,
            retry_after=ttl,
        )

    async def status(self, operation: str, identifier: str) -> RateLimitResult:
        config = self.config_for(operation)
        key = self._key(operation, identifier)
        try:
            current = int(await self._cache.get(key) or 0)
            ttl = await self._cache.ttl(key)
        except Exception as exc:
            return self._fail_closed(operation, config, exc)

        ttl = ttl if ttl and ttl > 0 else config.window
        blocked = current >= config.requests
        return RateLimitResult(
            success=not blocked,
            limit=config.requests,
            remaining=max(0, config.requests - current),
            reset_time=time.time() + ttl,
            retry_after=ttl if blocked else None,
        )

    def _fail_closed(self, operation: str, config: RateLimitConfig, exc: Exception) -> RateLimitResult:
        if self._logger is not None:
            self._logger.error(f"Rate limiting error for {operation}: {exc}")
        return RateLimitResult(
            success=False,
            limit=config.requests,
            remaining=0,
            reset_time=time.time() + config.window,
            retry_after=config.window,
            store_unavailable=True,
        )
