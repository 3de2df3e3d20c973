"""Shared pytest fixtures: in-memory stores, a controllable clock and an API client."""

import asyncio
import datetime
import logging
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
import redis.asyncio as redis
from httpx import ASGITransport, AsyncClient

from shortcodes.allocator import ShortcodeAllocator
from shortcodes.config import Settings, get_settings
from shortcodes.dependencies import get_idempotency_guard, get_request_context
from shortcodes.durable import IssueResult
from shortcodes.enums import IssueOutcome, StoreName
from shortcodes.errors import StoreUnavailableError
from shortcodes.idempotency import WebhookIdempotencyGuard
from shortcodes.main import app
from shortcodes.models import IssuedCode
from shortcodes.reservations import ReservationStore

# ============================================================================
# FAKES
# ============================================================================


class FakeClock:
    def __init__(self, start: float = 1_760_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryClaimStore:
    """ClaimStore over a dict with expiry driven by FakeClock.

    Every operation yields to the event loop first so concurrent callers
    interleave, but the check-and-set inside claim() runs without a suspension
    point, which keeps it atomic like SET NX.
    """

    def __init__(self, clock: FakeClock) -> None:
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError(StoreName.RESERVATION, "fake redis is down")

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    async def claim(self, key: str, value: str, ttl_seconds: int) -> bool:
        await asyncio.sleep(0)
        self._check()
        if self._live(key) is not None:
            return False
        self._data[key] = (value, self._clock() + ttl_seconds)
        return True

    async def exists(self, key: str) -> bool:
        await asyncio.sleep(0)
        self._check()
        return self._live(key) is not None

    async def get(self, key: str) -> str | None:
        await asyncio.sleep(0)
        self._check()
        return self._live(key)

    async def release(self, key: str) -> None:
        await asyncio.sleep(0)
        self._check()
        self._data.pop(key, None)

    async def persist(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        self._check()
        self._data[key] = (value, None)


class InMemoryDurableStore:
    def __init__(self) -> None:
        self.records: dict[str, IssuedCode] = {}
        self.available = True
        self.lookups: list[str] = []

    def _check(self) -> None:
        if not self.available:
            raise StoreUnavailableError(StoreName.DURABLE, "fake database is down")

    async def exists(self, code: str) -> bool:
        await asyncio.sleep(0)
        self._check()
        self.lookups.append(code)
        return code in self.records

    async def issue(self, code: str, owner_id: str) -> IssueResult:
        await asyncio.sleep(0)
        self._check()
        if code in self.records:
            return IssueResult(IssueOutcome.CONFLICT)
        record = IssuedCode(
            id=len(self.records) + 1,
            code=code,
            owner_id=owner_id,
            created_at=datetime.datetime(2026, 10, 19, tzinfo=datetime.timezone.utc),
        )
        self.records[code] = record
        return IssueResult(IssueOutcome.ISSUED, record)


class RecordingMetricsSink:
    def __init__(self) -> None:
        self.records: list[tuple[int, bool]] = []

    def record(self, attempts_needed: int, success: bool) -> None:
        self.records.append((attempts_needed, success))


@dataclass
class FakeRequestContext:
    """Stands in for RequestContext without a database session or Redis."""

    reservations: ReservationStore
    durable: InMemoryDurableStore
    metrics_sink: Any
    cache: Any
    settings: Settings
    database: Any = field(default_factory=AsyncMock)
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("shortcodes"))
    tags: list[str] = field(default_factory=list)

    def add_tag(self, tag: str) -> None:
        self.tags.append(tag)

    def get_duration(self) -> float:
        return 0.0


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def claims(clock: FakeClock) -> InMemoryClaimStore:
    return InMemoryClaimStore(clock)


@pytest.fixture
def reservations(claims: InMemoryClaimStore, clock: FakeClock) -> ReservationStore:
    return ReservationStore(claims, clock=clock)


@pytest.fixture
def durable() -> InMemoryDurableStore:
    return InMemoryDurableStore()


@pytest.fixture
def metrics() -> RecordingMetricsSink:
    return RecordingMetricsSink()


@pytest.fixture
def make_allocator(
    reservations: ReservationStore,
    durable: InMemoryDurableStore,
    metrics: RecordingMetricsSink,
    settings: Settings,
) -> Callable[..., ShortcodeAllocator]:
    def factory(generator: Callable[[int], str] | None = None) -> ShortcodeAllocator:
        kwargs = {"generator": generator} if generator is not None else {}
        return ShortcodeAllocator(
            reservations=reservations,
            durable=durable,
            metrics=metrics,
            settings=settings,
            **kwargs,
        )

    return factory


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Mock Redis client."""
    redis_client = AsyncMock(spec=redis.Redis)
    redis_client.ping = AsyncMock(return_value=True)
    redis_client.get = AsyncMock(return_value=None)
    redis_client.set = AsyncMock(return_value=True)
    redis_client.exists = AsyncMock(return_value=0)
    redis_client.delete = AsyncMock(return_value=1)
    redis_client.incr = AsyncMock(return_value=1)
    redis_client.incrby = AsyncMock(return_value=1)
    redis_client.hincrby = AsyncMock(return_value=1)
    redis_client.expire = AsyncMock(return_value=True)
    redis_client.ttl = AsyncMock(return_value=60)
    return redis_client


@pytest.fixture
def fake_context(
    reservations: ReservationStore,
    durable: InMemoryDurableStore,
    metrics: RecordingMetricsSink,
    mock_redis: AsyncMock,
    settings: Settings,
) -> FakeRequestContext:
    database = AsyncMock()
    database.execute = AsyncMock(return_value=MagicMock())
    return FakeRequestContext(
        reservations=reservations,
        durable=durable,
        metrics_sink=metrics,
        cache=mock_redis,
        settings=settings,
        database=database,
    )


@pytest_asyncio.fixture
async def client(
    fake_context: FakeRequestContext, claims: InMemoryClaimStore
) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_request_context() -> FakeRequestContext:
        return fake_context

    def override_get_idempotency_guard() -> WebhookIdempotencyGuard:
        return WebhookIdempotencyGuard(claims)

    app.dependency_overrides[get_request_context] = override_get_request_context
    app.dependency_overrides[get_idempotency_guard] = override_get_idempotency_guard

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
