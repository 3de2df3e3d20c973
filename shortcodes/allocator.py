"""Shortcode Allocator - Core Business Logic

This module hands out short, unique codes for dynamic QR codes. It coordinates
an ephemeral reservation store (Redis, TTL'd claims) with the durable store of
issued codes (PostgreSQL) and reports attempt counts to the metrics sink.

Architecture Overview
=====================
::
    ┌─────────────────────────────────────────────────────────────┐
    │                    ShortcodeAllocator                       │
    │  ┌─────────────────┐  ┌─────────────────┐  ┌──────────────┐ │
    │  │ Code Generator  │  │ Retry Loop      │  │ Metrics Sink │ │
    │  │                 │  │                 │  │              │ │
    │  │ • Random codes  │  │ • exists probes │  │ • Histogram  │ │
    │  │ • 8 → 9 chars   │  │ • SET NX gate   │  │ • Daily aggs │ │
    │  └─────────────────┘  └─────────────────┘  └──────────────┘ │
    └─────────────────────────────────────────────────────────────┘
                │                    │                    │
                ▼                    ▼                    ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐
    │ ReservationStore│  │ DurableCodeStore│  │      Redis      │
    │ reserved:<code> │  │  codes table    │  │ metrics:<date>  │
    └─────────────────┘  └─────────────────┘  └─────────────────┘

Allocation Flow
---------------
::
    ┌─────────────┐
    │ allocate()  │
    └──────┬──────┘
           ▼
    ┌─────────────┐   attempt > 5 → 9 chars, else 8
    │ Generate    │
    │ candidate   │◀──────────────────────────┐
    └──────┬──────┘                           │
           ▼                                  │
    ┌─────────────┐   reserved?               │
    │ Reservation │ ──────── YES ─────────────┤
    │ exists?     │                           │
    └──────┬──────┘                           │
           ▼ NO                               │
    ┌─────────────┐   issued?                 │
    │ Durable     │ ──────── YES ─────────────┤
    │ exists?     │                           │
    └──────┬──────┘                           │
           ▼ NO                               │
    ┌─────────────┐   lost race               │
    │ SET NX EX   │ ──────── NO ──────────────┘
    │ reserve()   │         (until max_attempts, then ExhaustedError)
    └──────┬──────┘
           ▼ YES
    ┌─────────────┐
    │ Record      │
    │ metrics,    │
    │ return code │
    └─────────────┘

The exists probes only save round-trips. The atomic reserve() is the real gate,
so losing it after both probes passed is expected under contention and simply
costs another attempt. No lock spans the probes and the reserve.

Failure Modes
=============
- Reservation or durable store unreachable → StoreUnavailableError (fail closed).
- Every attempt collided → ExhaustedError, metrics record (max_attempts, False).
- Metrics or release failures → logged only.

Usage Examples
==============
```python
allocator = ShortcodeAllocator(
    reservations=ReservationStore(RedisClaimStore(cache)),
    durable=DurableCodeStore(session),
    metrics=RedisMetricsSink(cache),
)
result = await allocator.allocate("user-42")
print(result.code, result.ttl)

# user abandoned the editor
await allocator.release(result.code)
```
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

from shortcodes.config import Settings, get_settings
from shortcodes.durable import IssuedCodeStore
from shortcodes.enums import IssueOutcome, RequestStatus, ReservationOrigin
from shortcodes.errors import CodeUnavailableError, ExhaustedError, StoreUnavailableError
from shortcodes.generator import generate_short_code
from shortcodes.metrics import AllocationMetricsSink
from shortcodes.models import IssuedCode
from shortcodes.reservations import ReservationStore

if TYPE_CHECKING:
    from shortcodes.dependencies import RequestContext

__all__ = ["AllocationResult", "ShortcodeAllocator"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

ALLOCATION_REQUESTS_TOTAL = Counter(
    "shortcodes_allocation_requests_total",
    "Total shortcode allocation requests",
    ["status"],
)
ALLOCATION_DURATION = Histogram(
    "shortcodes_allocation_duration_seconds",
    "Time taken to allocate a shortcode",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)
RESERVATION_RACES_LOST_TOTAL = Counter(
    "shortcodes_reservation_races_lost_total",
    "Candidates that passed both probes but lost the atomic reserve",
)
RELEASE_FAILURES_TOTAL = Counter(
    "shortcodes_release_failures_total",
    "Best-effort reservation releases that failed",
)
METRICS_RECORD_FAILURES_TOTAL = Counter(
    "shortcodes_metrics_record_failures_total",
    "Allocation metrics that could not be handed to the sink",
)


# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass(frozen=True)
class AllocationResult:
    code: str
    ttl: int
    attempts: int = 1


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class ShortcodeAllocator:
    """Allocates, reserves, releases and confirms shortcodes.

    Stores are injected so the allocator holds no global clients and tests can
    swap in in-memory fakes.

    Example:
        >>> allocator = ShortcodeAllocator.from_context(ctx)
        >>> result = await allocator.allocate("user-42")
        >>> print(f"Reserved {result.code} for {result.ttl}s")
    """

    def __init__(
        self,
        reservations: ReservationStore,
        durable: IssuedCodeStore,
        metrics: AllocationMetricsSink,
        generator: Callable[[int], str] = generate_short_code,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._reservations = reservations
        self._durable = durable
        self._metrics = metrics
        self._generate = generator
        self._logger = logger or logging.getLogger("shortcodes")
        self._settings = settings or get_settings()

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "ShortcodeAllocator":
        """Build an allocator from the per-request context.

        Args:
            ctx: Request context carrying the shared Redis client, metrics sink
                and the request's database session.

        Returns:
            ShortcodeAllocator: Allocator bound to this request's stores.
        """
        return cls(
            reservations=ctx.reservations,
            durable=ctx.durable,
            metrics=ctx.metrics_sink,
            logger=ctx.logger,
            settings=ctx.settings,
        )

    @property
    def reservation_ttl(self) -> int:
        return self._settings.RESERVATION_TTL_SECONDS

    def length_for_attempt(self, attempt: int) -> int:
        if attempt > self._settings.LENGTH_ESCALATION_AFTER_ATTEMPT:
            return self._settings.ESCALATED_SHORT_CODE_LENGTH
        return self._settings.SHORT_CODE_LENGTH

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def allocate(self, owner_id: str, max_attempts: int | None = None) -> AllocationResult:
        """Find a free code and reserve it for ``owner_id``.

        Args:
            owner_id: Owner the reservation is made for.
            max_attempts: Upper bound on candidates tried (default from settings).

        Returns:
            AllocationResult: The reserved code, its TTL and attempts used.

        Raises:
            ExhaustedError: Every candidate collided.
            StoreUnavailableError: A store could not be reached.
        """
        if max_attempts is None:
            max_attempts = self._settings.MAX_ALLOCATION_ATTEMPTS
        assert isinstance(max_attempts, int) and max_attempts > 0, (
            f"max_attempts must be a positive integer, got {max_attempts!r}"
        )
        ttl = self.reservation_ttl
        start_time = time.perf_counter()

        try:
            for attempt in range(max_attempts):
                candidate = self._generate(self.length_for_attempt(attempt))

                if await self._reservations.exists(candidate):
                    self._logger.debug(f"Candidate {candidate} already reserved (attempt {attempt + 1})")
                    continue
                if await self._durable.exists(candidate):
                    self._logger.debug(f"Candidate {candidate} already issued (attempt {attempt + 1})")
                    continue
                if await self._reservations.reserve(candidate, owner_id, ttl):
                    attempts_needed = attempt + 1
                    self._record_metrics(attempts_needed, True)
                    duration = time.perf_counter() - start_time
                    ALLOCATION_DURATION.observe(duration)
                    ALLOCATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS).inc()
                    self._log_allocation(candidate, attempts_needed, duration)
                    return AllocationResult(code=candidate, ttl=ttl, attempts=attempts_needed)

                RESERVATION_RACES_LOST_TOTAL.inc()
                self._logger.debug(f"Lost reservation race for {candidate} (attempt {attempt + 1})")

        except StoreUnavailableError as exc:
            ALLOCATION_DURATION.observe(time.perf_counter() - start_time)
            ALLOCATION_REQUESTS_TOTAL.labels(status=RequestStatus.UNAVAILABLE).inc()
            self._logger.error(f"Shortcode allocation failed closed: {exc}")
            raise

        self._record_metrics(max_attempts, False)
        ALLOCATION_DURATION.observe(time.perf_counter() - start_time)
        ALLOCATION_REQUESTS_TOTAL.labels(status=RequestStatus.EXHAUSTED).inc()
        self._logger.error(f"Failed to generate unique shortcode after {max_attempts} attempts")
        raise ExhaustedError(max_attempts)

    async def reserve_code(self, code: str, owner_id: str) -> AllocationResult:
        """Reserve a caller-chosen code.

        Re-reserving a code the same owner already holds succeeds without
        touching the existing reservation.

        Raises:
            CodeUnavailableError: Issued already, or held by another owner.
            StoreUnavailableError: A store could not be reached.
        """
        if await self._durable.exists(code):
            raise CodeUnavailableError(code, "already issued")

        ttl = self.reservation_ttl
        if await self._reservations.reserve(code, owner_id, ttl, origin=ReservationOrigin.CUSTOM):
            self._logger.info(f"Reserved custom shortcode {code}")
            return AllocationResult(code=code, ttl=ttl)

        existing = await self._reservations.lookup(code)
        if existing is None:
            # Expired between the two calls
            if await self._reservations.reserve(code, owner_id, ttl, origin=ReservationOrigin.CUSTOM):
                return AllocationResult(code=code, ttl=ttl)
            raise CodeUnavailableError(code, "reserved by another owner")
        if existing.is_permanent:
            raise CodeUnavailableError(code, "already saved")
        if existing.owner_id != owner_id:
            raise CodeUnavailableError(code, "reserved by another owner")
        return AllocationResult(code=code, ttl=ttl)

    async def check_availability(self, code: str) -> bool:
        if await self._reservations.exists(code):
            return False
        return not await self._durable.exists(code)

    async def confirm(self, code: str, owner_id: str) -> IssuedCode:
        """Durably issue ``code`` to ``owner_id`` and drop its reservation.

        Raises:
            CodeUnavailableError: Another owner holds the reservation, or the
                durable store already has the code.
            StoreUnavailableError: A store could not be reached.
        """
        reservation = await self._reservations.lookup(code)
        if (
            reservation is not None
            and not reservation.is_permanent
            and reservation.owner_id is not None
            and reservation.owner_id != owner_id
        ):
            raise CodeUnavailableError(code, "reserved by another owner")

        result = await self._durable.issue(code, owner_id)
        if result.outcome is IssueOutcome.CONFLICT:
            raise CodeUnavailableError(code, "already issued")

        self._logger.info(f"Issued shortcode {code}")
        await self.release(code)
        return result.record

    async def release(self, code: str, saved: bool = False) -> None:
        """Best-effort release; never raises.

        Args:
            code: Code whose reservation should go away.
            saved: Keep a permanent marker instead of deleting the key.
        """
        try:
            if saved:
                await self._reservations.mark_permanent(code)
            else:
                await self._reservations.release(code)
        except Exception as exc:
            RELEASE_FAILURES_TOTAL.inc()
            self._logger.warning(f"Failed to release shortcode {code}: {exc}")

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    def _record_metrics(self, attempts_needed: int, success: bool) -> None:
        try:
            self._metrics.record(attempts_needed, success)
        except Exception as exc:
            METRICS_RECORD_FAILURES_TOTAL.inc()
            self._logger.warning(f"Failed to record allocation metrics: {exc}")

    def _log_allocation(self, code: str, attempts: int, duration: float) -> None:
        duration_ms = duration * 1000
        if (
            duration_ms > self._settings.SLOW_ALLOCATION_WARN_MS
            or attempts > self._settings.SLOW_ALLOCATION_WARN_ATTEMPTS
        ):
            self._logger.warning(f"Shortcode generation took {duration_ms:.0f}ms with {attempts} attempts")
        else:
            self._logger.info(f"Allocated shortcode {code} in {duration_ms:.1f}ms")
