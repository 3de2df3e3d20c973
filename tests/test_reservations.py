"""Reservation store and Redis claim primitive tests."""

import datetime
import json
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError

from shortcodes.claims import RedisClaimStore
from shortcodes.enums import ReservationOrigin, StoreName
from shortcodes.errors import StoreUnavailableError
from shortcodes.reservations import ReservationStore


@pytest.fixture
def redis_claims(mock_redis: AsyncMock) -> RedisClaimStore:
    return RedisClaimStore(mock_redis)


# ============================================================================
# REDIS CLAIM STORE
# ============================================================================


@pytest.mark.asyncio
async def test_claim_uses_set_nx_with_expiry(redis_claims, mock_redis) -> None:
    mock_redis.set.return_value = True

    assert await redis_claims.claim("reserved:Ab3xKm7q", "payload", 300)
    mock_redis.set.assert_awaited_once_with("reserved:Ab3xKm7q", "payload", ex=300, nx=True)


@pytest.mark.asyncio
async def test_claim_returns_false_when_key_present(redis_claims, mock_redis) -> None:
    mock_redis.set.return_value = None

    assert not await redis_claims.claim("reserved:Ab3xKm7q", "payload", 300)


@pytest.mark.asyncio
async def test_exists_release_and_persist(redis_claims, mock_redis) -> None:
    mock_redis.exists.return_value = 1

    assert await redis_claims.exists("reserved:Ab3xKm7q")
    await redis_claims.release("reserved:Ab3xKm7q")
    await redis_claims.persist("reserved:Ab3xKm7q", "permanent")

    mock_redis.exists.assert_awaited_once_with("reserved:Ab3xKm7q")
    mock_redis.delete.assert_awaited_once_with("reserved:Ab3xKm7q")
    mock_redis.set.assert_awaited_once_with("reserved:Ab3xKm7q", "permanent")


@pytest.mark.asyncio
@pytest.mark.parametrize("method, args", [
    ("claim", ("k", "v", 300)),
    ("exists", ("k",)),
    ("get", ("k",)),
    ("release", ("k",)),
    ("persist", ("k", "v")),
])
async def test_redis_errors_surface_as_store_unavailable(method, args) -> None:
    cache = AsyncMock(spec=redis.Redis)
    for name in ("set", "exists", "get", "delete"):
        setattr(cache, name, AsyncMock(side_effect=RedisConnectionError("connection refused")))
    store = RedisClaimStore(cache, StoreName.RESERVATION)

    with pytest.raises(StoreUnavailableError) as excinfo:
        await getattr(store, method)(*args)

    assert excinfo.value.store is StoreName.RESERVATION


# ============================================================================
# RESERVATION STORE
# ============================================================================


@pytest.mark.asyncio
async def test_reserve_writes_owner_metadata(reservations, claims, clock) -> None:
    assert await reservations.reserve("Ab3xKm7q", "owner-1", ttl_seconds=300)

    raw = await claims.get("reserved:Ab3xKm7q")
    data = json.loads(raw)
    assert data == {"userId": "owner-1", "reservedAt": int(clock() * 1000), "origin": "generation"}


@pytest.mark.asyncio
async def test_second_reserve_does_not_overwrite(reservations) -> None:
    assert await reservations.reserve("Ab3xKm7q", "owner-1")
    assert not await reservations.reserve("Ab3xKm7q", "owner-2")

    reservation = await reservations.lookup("Ab3xKm7q")
    assert reservation.owner_id == "owner-1"


@pytest.mark.asyncio
async def test_anonymous_owner(reservations) -> None:
    await reservations.reserve("Ab3xKm7q", "")

    assert (await reservations.lookup("Ab3xKm7q")).owner_id == "anonymous"


@pytest.mark.asyncio
async def test_lookup_decodes_timestamp(reservations, clock) -> None:
    await reservations.reserve("Ab3xKm7q", "owner-1")

    reservation = await reservations.lookup("Ab3xKm7q")

    assert reservation.reserved_at == datetime.datetime.fromtimestamp(clock(), tz=datetime.timezone.utc)


@pytest.mark.asyncio
async def test_lookup_tolerates_bare_owner_and_permanent_marker(claims, reservations) -> None:
    await claims.persist("reserved:Legacy22", "owner-7")
    await claims.persist("reserved:Saved222", "permanent")

    legacy = await reservations.lookup("Legacy22")
    saved = await reservations.lookup("Saved222")

    assert legacy.owner_id == "owner-7"
    assert legacy.origin is ReservationOrigin.CUSTOM
    assert saved.is_permanent
    assert saved.owner_id is None


@pytest.mark.asyncio
async def test_lookup_missing_returns_none(reservations) -> None:
    assert await reservations.lookup("Nothing2") is None


@pytest.mark.asyncio
async def test_reservation_expires_after_ttl(reservations, clock) -> None:
    await reservations.reserve("Ab3xKm7q", "owner-1", ttl_seconds=300)

    clock.advance(300)

    assert not await reservations.exists("Ab3xKm7q")
    assert await reservations.reserve("Ab3xKm7q", "owner-2")


@pytest.mark.asyncio
async def test_custom_key_prefix(claims) -> None:
    store = ReservationStore(claims, key_prefix="qr:reserved")

    await store.reserve("Ab3xKm7q", "owner-1")

    assert await claims.exists("qr:reserved:Ab3xKm7q")


@pytest.mark.asyncio
async def test_lookup_unknown_origin_falls_back_to_generation(claims, reservations) -> None:
    await claims.persist(
        "reserved:Ab3xKm7q", json.dumps({"userId": "owner-1", "reservedAt": 1792411200000, "origin": "batch"})
    )

    reservation = await reservations.lookup("Ab3xKm7q")

    assert reservation.owner_id == "owner-1"
    assert reservation.origin is ReservationOrigin.GENERATION
    assert reservation.reserved_at == datetime.datetime(2026, 10, 19, 12, tzinfo=datetime.timezone.utc)
