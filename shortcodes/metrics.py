"""Allocation attempt metrics.

Every allocation reports how many attempts it needed and whether it succeeded.
The report feeds two places: Prometheus in-process (scraped from ``/metrics``)
and per-day Redis aggregates that survive restarts and are shared by all
instances.

Redis Aggregates
================
::
    metrics:2026-10-19:total_attempts       INCRBY attempts
    metrics:2026-10-19:multiple_attempts    INCR   (attempts > 1)
    metrics:2026-10-19:failures             INCR   (not success)
    metrics:2026-10-19:attempts_histogram   HINCRBY <attempts> 1
    (each key: EXPIRE 90 days)

Record Flow
===========
::
    ┌──────────────┐
    │ record(n, ok)│  ← called on the allocation path, returns immediately
    └──────┬───────┘
           ├──────────────▶ Prometheus histogram / counter (in-process)
           ▼
    ┌──────────────┐
    │ create_task( │
    │  _write())   │  ← background; failures are logged, never raised
    └──────────────┘

Key Behaviours
===============
- record() never blocks and never raises.
- drain() waits for in-flight writes; call it on shutdown.
- Dates are UTC calendar days.
"""

import asyncio
import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

import redis.asyncio as redis
from prometheus_client import Counter, Histogram
from redis.exceptions import RedisError

from shortcodes.config import get_settings
from shortcodes.enums import StoreName
from shortcodes.errors import StoreUnavailableError

__all__ = [
    "AllocationMetricsSink",
    "DailyAllocationMetrics",
    "RedisMetricsSink",
    "ALLOCATION_ATTEMPTS",
    "ALLOCATION_FAILURES_TOTAL",
]

settings = get_settings()

ALLOCATION_ATTEMPTS = Histogram(
    "shortcodes_allocation_attempts",
    "Attempts needed per shortcode allocation",
    buckets=[1, 2, 3, 4, 5, 6, 7, 8, 9, 10],
)
ALLOCATION_FAILURES_TOTAL = Counter(
    "shortcodes_allocation_failures_total",
    "Allocations that exhausted every attempt",
)
METRICS_WRITE_ERRORS_TOTAL = Counter(
    "shortcodes_metrics_write_errors_total",
    "Allocation metric writes to Redis that failed",
)


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class AllocationMetricsSink(Protocol):
    def record(self, attempts_needed: int, success: bool) -> None: ...


@dataclass
class DailyAllocationMetrics:
    day: datetime.date
    total_attempts: int = 0
    multiple_attempts: int = 0
    failures: int = 0
    attempts_histogram: dict[int, int] = field(default_factory=dict)

    @property
    def allocations(self) -> int:
        return sum(self.attempts_histogram.values())

    @property
    def average_attempts(self) -> float:
        return self.total_attempts / max(self.allocations, 1)


class RedisMetricsSink:
    def __init__(
        self,
        cache: redis.Redis,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        key_prefix: str = settings.METRICS_KEY_PREFIX,
        retention_seconds: int = settings.METRICS_RETENTION_SECONDS,
        clock: Callable[[], datetime.datetime] = _utc_now,
    ) -> None:
        self._cache = cache
        self._logger = logger or logging.getLogger("shortcodes")
        self._key_prefix = key_prefix
        self._retention_seconds = retention_seconds
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    def keys_for(self, day: datetime.date) -> dict[str, str]:
        base = f"{self._key_prefix}:{day.isoformat()}"
        return {
            "total_attempts": f"{base}:total_attempts",
            "multiple_attempts": f"{base}:multiple_attempts",
            "failures": f"{base}:failures",
            "attempts_histogram": f"{base}:attempts_histogram",
        }

    def record(self, attempts_needed: int, success: bool) -> None:
        try:
            ALLOCATION_ATTEMPTS.observe(attempts_needed)
            if not success:
                ALLOCATION_FAILURES_TOTAL.inc()
            task = asyncio.get_running_loop().create_task(
                self._write(self._clock().date(), attempts_needed, success)
            )
        except Exception as exc:
            self._logger.error(f"Failed to schedule allocation metrics: {exc}")
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _write(self, day: datetime.date, attempts_needed: int, success: bool) -> None:
        keys = self.keys_for(day)
        try:
            await self._cache.incrby(keys["total_attempts"], attempts_needed)
            if attempts_needed > 1:
                await self._cache.incr(keys["multiple_attempts"])
            if not success:
                await self._cache.incr(keys["failures"])
            await self._cache.hincrby(keys["attempts_histogram"], str(attempts_needed), 1)
            for key in keys.values():
                await self._cache.expire(key, self._retention_seconds)
        except Exception as exc:
            METRICS_WRITE_ERRORS_TOTAL.inc()
            self._logger.error(f"Failed to record shortcode metrics: {exc}")

    async def daily_summary(self, day: datetime.date) -> DailyAllocationMetrics:
        """Read one day of aggregates back.

        Raises:
            StoreUnavailableError: Redis could not be reached.
        """
        keys = self.keys_for(day)
        try:
            total, multiple, failures = await self._cache.mget(
                keys["total_attempts"], keys["multiple_attempts"], keys["failures"]
            )
            histogram = await self._cache.hgetall(keys["attempts_histogram"])
        except RedisError as exc:
            raise StoreUnavailableError(StoreName.METRICS, f"metrics store is unavailable: {exc}") from exc
        return DailyAllocationMetrics(
            day=day,
            total_attempts=int(total or 0),
            multiple_attempts=int(multiple or 0),
            failures=int(failures or 0),
            attempts_histogram={int(k): int(v) for k, v in histogram.items()},
        )
