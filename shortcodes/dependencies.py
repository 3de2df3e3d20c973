"""Dependency injection with a singleton service manager.

This module provides a centralized way to inject database and cache dependencies
with consistent naming across all API endpoints, using a singleton pattern for
shared resources to minimize per-request overhead.

Stores are assembled per request from shared clients and handed to the
allocator through its constructor; no module-level store instances exist.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shortcodes.allocator import ShortcodeAllocator
from shortcodes.claims import RedisClaimStore
from shortcodes.config import Settings, get_settings
from shortcodes.database import get_db
from shortcodes.durable import DurableCodeStore
from shortcodes.enums import StoreName
from shortcodes.idempotency import WebhookIdempotencyGuard
from shortcodes.metrics import RedisMetricsSink
from shortcodes.rate_limit import RateLimiter
from shortcodes.redis import close_redis, get_redis
from shortcodes.reservations import ReservationStore


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Holds what outlives a request: settings, the logger, the Redis client and
    the metrics sink (which tracks its own in-flight background writes).
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if not self._initialized:
            self.settings = get_settings()
            self.logger = self._setup_logger()
            self.cache = await get_redis()
            self.metrics_sink = RedisMetricsSink(self.cache, self.logger)
            self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortcodes")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if hasattr(self, "metrics_sink"):
            await self.metrics_sink.drain()
        await close_redis()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Request context with tracking and shared resource access.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def cache(self) -> redis.Redis:
        return self.service_manager.cache

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def metrics_sink(self) -> RedisMetricsSink:
        return self.service_manager.metrics_sink

    @property
    def reservations(self) -> ReservationStore:
        return ReservationStore(
            RedisClaimStore(self.cache, StoreName.RESERVATION),
            key_prefix=self.settings.RESERVATION_KEY_PREFIX,
        )

    @property
    def durable(self) -> DurableCodeStore:
        return DurableCodeStore(self.database)

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    client_ip = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    trace_id = request.headers.get("x-trace-id")

    return RequestContext(
        database=db,
        service_manager=manager,
        trace_id=trace_id,
        user_agent=user_agent,
        client_ip=client_ip,
    )


def get_allocator(ctx: RequestContext = Depends(get_request_context)) -> ShortcodeAllocator:
    return ShortcodeAllocator.from_context(ctx)


def get_rate_limiter(ctx: RequestContext = Depends(get_request_context)) -> RateLimiter:
    return RateLimiter(ctx.cache, ctx.logger, key_prefix=ctx.settings.RATE_LIMIT_KEY_PREFIX)


def get_idempotency_guard(ctx: RequestContext = Depends(get_request_context)) -> WebhookIdempotencyGuard:
    return WebhookIdempotencyGuard(
        RedisClaimStore(ctx.cache, StoreName.IDEMPOTENCY),
        ttl_seconds=ctx.settings.WEBHOOK_IDEMPOTENCY_TTL_SECONDS,
        key_prefix=ctx.settings.WEBHOOK_KEY_PREFIX,
    )


def get_metrics_sink(ctx: RequestContext = Depends(get_request_context)) -> RedisMetricsSink:
    return ctx.metrics_sink
