"""FastAPI route definitions for the shortcode REST API.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /api/shortcodes/allocate
        ├─ AllocateRequest (request body)
        └─ AllocateResponse (201) or 409 exhausted / 503 store down / 429

    POST /api/shortcodes/reserve
        ├─ ReserveRequest
        └─ AllocateResponse (201) or 409 / 503 / 429

    POST /api/shortcodes/release
        ├─ ReleaseRequest
        └─ ReleaseResponse (200, always)

    POST /api/shortcodes/confirm
        ├─ ConfirmRequest
        └─ IssuedCodeResponse (201) or 409 / 503

    GET  /api/shortcodes/{code}/availability
    GET  /api/shortcodes/{code}/reservation
    GET  /api/shortcodes/metrics/{day}
    GET  /api/rate-limit/status?operation=...
    POST /api/webhooks/{provider}

Request Flow Diagram
====================
::
    ┌─────────────┐
    │  HTTP       │
    │  Request    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Validate &  │
    │ Parse       │
    │ (Pydantic)   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Rate limit  │
    │ (Redis)     │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Allocator   │
    │ (injected)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Map errors  │
    │ to HTTP     │
    └─────────────┘

Key Behaviours
===============
- ExhaustedError and CodeUnavailableError map to 409, StoreUnavailableError to 503.
- A rate limiter that cannot reach Redis still denies the request, but as 503
  rather than 429.
- Error bodies carry ``error`` (machine code) and ``retryable``.
- Release always answers 200; it is best-effort cleanup.
"""

import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from sqlalchemy import text

from shortcodes.allocator import ShortcodeAllocator
from shortcodes.dependencies import (
    RequestContext,
    get_allocator,
    get_idempotency_guard,
    get_metrics_sink,
    get_rate_limiter,
    get_request_context,
)
from shortcodes.enums import HealthStatus, StoreName
from shortcodes.errors import CodeUnavailableError, ExhaustedError, ShortcodeError, StoreUnavailableError
from shortcodes.idempotency import WebhookIdempotencyGuard
from shortcodes.metrics import RedisMetricsSink
from shortcodes.rate_limit import RateLimiter, client_identifier
from shortcodes.schemas import (
    AllocateRequest,
    AllocateResponse,
    AvailabilityResponse,
    ConfirmRequest,
    DailyMetricsResponse,
    HealthResponse,
    IssuedCodeResponse,
    RateLimitStatusResponse,
    ReleaseRequest,
    ReleaseResponse,
    ReservationResponse,
    ReserveRequest,
    WebhookEvent,
    WebhookReceipt,
)

__all__ = ["router"]

router = APIRouter()


def _http_error(exc: ShortcodeError, headers: dict[str, str] | None = None) -> HTTPException:
    if isinstance(exc, StoreUnavailableError):
        status_code = 503
    elif isinstance(exc, (ExhaustedError, CodeUnavailableError)):
        status_code = 409
    else:
        status_code = 500
    return HTTPException(
        status_code=status_code,
        detail={"error": exc.code, "detail": exc.message, "retryable": exc.retryable},
        headers=headers,
    )


async def _enforce_rate_limit(
    limiter: RateLimiter, operation: str, identifier: str, response: Response
) -> None:
    result = await limiter.check(operation, identifier)
    if result.store_unavailable:
        raise _http_error(StoreUnavailableError(StoreName.RATE_LIMIT), headers=result.headers())
    if not result.success:
        raise HTTPException(
            status_code=429,
            detail={"error": "rate_limited", "detail": "Rate limit exceeded", "retryable": True},
            headers=result.headers(),
        )
    response.headers.update(result.headers())


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/shortcodes/allocate", response_model=AllocateResponse, status_code=201, tags=["shortcodes"])
async def allocate_shortcode(
    payload: AllocateRequest,
    request: Request,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    allocator: ShortcodeAllocator = Depends(get_allocator),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> AllocateResponse:
    ctx.add_tag("allocation")
    await _enforce_rate_limit(
        limiter, "shortcode_generation", client_identifier(request, payload.owner_id), response
    )

    try:
        result = await allocator.allocate(payload.owner_id, payload.max_attempts)
    except ShortcodeError as exc:
        ctx.logger.warning(
            f"Shortcode allocation failed: {exc}",
            extra={"operation": "allocate", "error": exc.code, "duration_ms": ctx.get_duration()},
        )
        raise _http_error(exc) from exc

    ctx.logger.info(
        f"Shortcode allocated: {result.code}",
        extra={"operation": "allocate", "attempts": result.attempts, "duration_ms": ctx.get_duration()},
    )
    return AllocateResponse(code=result.code, ttl=result.ttl)


@router.post("/api/shortcodes/reserve", response_model=AllocateResponse, status_code=201, tags=["shortcodes"])
async def reserve_shortcode(
    payload: ReserveRequest,
    request: Request,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    allocator: ShortcodeAllocator = Depends(get_allocator),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> AllocateResponse:
    await _enforce_rate_limit(
        limiter, "shortcode_reservation", client_identifier(request, payload.owner_id), response
    )
    try:
        result = await allocator.reserve_code(payload.code, payload.owner_id)
    except ShortcodeError as exc:
        ctx.logger.warning(f"Custom shortcode reservation failed: {exc}")
        raise _http_error(exc) from exc
    return AllocateResponse(code=result.code, ttl=result.ttl)


@router.post("/api/shortcodes/release", response_model=ReleaseResponse, tags=["shortcodes"])
async def release_shortcode(
    payload: ReleaseRequest,
    allocator: ShortcodeAllocator = Depends(get_allocator),
) -> ReleaseResponse:
    await allocator.release(payload.code, saved=payload.saved)
    return ReleaseResponse(success=True)


@router.post("/api/shortcodes/confirm", response_model=IssuedCodeResponse, status_code=201, tags=["shortcodes"])
async def confirm_shortcode(
    payload: ConfirmRequest,
    ctx: RequestContext = Depends(get_request_context),
    allocator: ShortcodeAllocator = Depends(get_allocator),
) -> IssuedCodeResponse:
    try:
        record = await allocator.confirm(payload.code, payload.owner_id)
    except ShortcodeError as exc:
        ctx.logger.warning(f"Shortcode confirmation failed: {exc}")
        raise _http_error(exc) from exc
    return IssuedCodeResponse(code=record.code, owner_id=record.owner_id, created_at=record.created_at)


@router.get("/api/shortcodes/metrics/{day}", response_model=DailyMetricsResponse, tags=["metrics"])
async def get_daily_metrics(
    day: datetime.date,
    sink: RedisMetricsSink = Depends(get_metrics_sink),
) -> DailyMetricsResponse:
    try:
        summary = await sink.daily_summary(day)
    except ShortcodeError as exc:
        raise _http_error(exc) from exc
    return DailyMetricsResponse(
        day=summary.day,
        total_attempts=summary.total_attempts,
        multiple_attempts=summary.multiple_attempts,
        failures=summary.failures,
        attempts_histogram=summary.attempts_histogram,
        average_attempts=summary.average_attempts,
    )


@router.get("/api/shortcodes/{code}/availability", response_model=AvailabilityResponse, tags=["shortcodes"])
async def check_availability(
    code: str,
    allocator: ShortcodeAllocator = Depends(get_allocator),
) -> AvailabilityResponse:
    try:
        available = await allocator.check_availability(code)
    except ShortcodeError as exc:
        raise _http_error(exc) from exc
    return AvailabilityResponse(code=code, available=available)


@router.get("/api/shortcodes/{code}/reservation", response_model=ReservationResponse, tags=["shortcodes"])
async def get_reservation(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
) -> ReservationResponse:
    try:
        reservation = await ctx.reservations.lookup(code)
    except ShortcodeError as exc:
        raise _http_error(exc) from exc
    if reservation is None:
        raise HTTPException(status_code=404, detail="Reservation not found")
    return ReservationResponse(
        code=reservation.code,
        owner_id=reservation.owner_id,
        reserved_at=reservation.reserved_at,
        origin=reservation.origin,
    )


@router.get("/api/rate-limit/status", response_model=RateLimitStatusResponse, tags=["rate-limit"])
async def rate_limit_status(
    request: Request,
    operation: str = Query(..., min_length=1),
    owner_id: str | None = Query(None, alias="ownerId"),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> RateLimitStatusResponse:
    result = await limiter.status(operation, client_identifier(request, owner_id))
    if result.store_unavailable:
        raise _http_error(StoreUnavailableError(StoreName.RATE_LIMIT))
    return RateLimitStatusResponse(
        operation=operation,
        limit=result.limit,
        remaining=result.remaining,
        blocked=not result.success,
        reset_time=result.reset_time,
    )


@router.post("/api/webhooks/{provider}", response_model=WebhookReceipt, tags=["webhooks"])
async def receive_webhook(
    provider: str,
    payload: WebhookEvent,
    request: Request,
    response: Response,
    ctx: RequestContext = Depends(get_request_context),
    guard: WebhookIdempotencyGuard = Depends(get_idempotency_guard),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> WebhookReceipt:
    await _enforce_rate_limit(limiter, "webhook", client_identifier(request), response)
    try:
        first_delivery = await guard.claim(provider, payload.event_id, payload.event_type)
    except ShortcodeError as exc:
        raise _http_error(exc) from exc

    if not first_delivery:
        ctx.logger.info(f"Duplicate {provider} webhook {payload.event_id} ignored")
    return WebhookReceipt(received=True, duplicate=not first_delivery)
