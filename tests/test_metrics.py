"""Allocation metrics sink tests."""

import datetime
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from shortcodes.enums import StoreName
from shortcodes.errors import StoreUnavailableError
from shortcodes.metrics import RedisMetricsSink

NINETY_DAYS = 60 * 60 * 24 * 90


def fixed_now() -> datetime.datetime:
    return datetime.datetime(2026, 10, 19, 12, 30, tzinfo=datetime.timezone.utc)


@pytest.fixture
def sink(mock_redis: AsyncMock) -> RedisMetricsSink:
    return RedisMetricsSink(mock_redis, clock=fixed_now)


@pytest.mark.asyncio
async def test_failed_allocation_writes_all_aggregates(sink, mock_redis) -> None:
    sink.record(10, False)
    await sink.drain()

    mock_redis.incrby.assert_awaited_once_with("metrics:2026-10-19:total_attempts", 10)
    assert [c.args[0] for c in mock_redis.incr.await_args_list] == [
        "metrics:2026-10-19:multiple_attempts",
        "metrics:2026-10-19:failures",
    ]
    mock_redis.hincrby.assert_awaited_once_with("metrics:2026-10-19:attempts_histogram", "10", 1)
    expired = {c.args for c in mock_redis.expire.await_args_list}
    assert expired == {
        ("metrics:2026-10-19:total_attempts", NINETY_DAYS),
        ("metrics:2026-10-19:multiple_attempts", NINETY_DAYS),
        ("metrics:2026-10-19:failures", NINETY_DAYS),
        ("metrics:2026-10-19:attempts_histogram", NINETY_DAYS),
    }


@pytest.mark.asyncio
async def test_first_try_success_skips_multi_and_failure_counters(sink, mock_redis) -> None:
    sink.record(1, True)
    await sink.drain()

    mock_redis.incrby.assert_awaited_once_with("metrics:2026-10-19:total_attempts", 1)
    mock_redis.incr.assert_not_awaited()
    mock_redis.hincrby.assert_awaited_once_with("metrics:2026-10-19:attempts_histogram", "1", 1)


@pytest.mark.asyncio
async def test_redis_failure_is_swallowed(sink, mock_redis) -> None:
    mock_redis.incrby.side_effect = RedisConnectionError("connection refused")

    sink.record(3, True)
    await sink.drain()

    mock_redis.hincrby.assert_not_awaited()


def test_record_outside_event_loop_does_not_raise(sink, mock_redis) -> None:
    sink.record(2, True)

    mock_redis.incrby.assert_not_called()


@pytest.mark.asyncio
async def test_daily_summary(sink, mock_redis) -> None:
    mock_redis.mget = AsyncMock(return_value=["14", "2", None])
    mock_redis.hgetall = AsyncMock(return_value={"1": "8", "3": "2"})

    summary = await sink.daily_summary(datetime.date(2026, 10, 19))

    mock_redis.mget.assert_awaited_once_with(
        "metrics:2026-10-19:total_attempts",
        "metrics:2026-10-19:multiple_attempts",
        "metrics:2026-10-19:failures",
    )
    assert summary.total_attempts == 14
    assert summary.multiple_attempts == 2
    assert summary.failures == 0
    assert summary.attempts_histogram == {1: 8, 3: 2}
    assert summary.allocations == 10
    assert summary.average_attempts == pytest.approx(1.4)


@pytest.mark.asyncio
async def test_daily_summary_redis_failure_is_store_unavailable(sink, mock_redis) -> None:
    mock_redis.mget = AsyncMock(side_effect=RedisConnectionError("connection refused"))

    with pytest.raises(StoreUnavailableError) as excinfo:
        await sink.daily_summary(datetime.date(2026, 10, 19))

    assert excinfo.value.store is StoreName.METRICS
