from __future__ import annotations

import pytest

from bridge_shared.config.app_config import AppConfig
from bridge_shared.models.events import FailureCode, StatusEvent
from bridge_shared.services.outcome_cache import OutcomeCache
from tests.factories import make_command


@pytest.mark.asyncio
async def test_record_then_get(fake_redis) -> None:
    cache = OutcomeCache(fake_redis, ttl_seconds=86400)
    event = StatusEvent.success(make_command(), "0000100001")

    assert await cache.get(event.correlation_id) is None
    assert await cache.record(event) == event
    assert await cache.get(event.correlation_id) == event
    assert fake_redis.ttls[AppConfig.get_outcome_key(event.correlation_id)] == 86400


@pytest.mark.asyncio
async def test_first_recorded_outcome_wins(fake_redis) -> None:
    cache = OutcomeCache(fake_redis, ttl_seconds=60)
    command = make_command()
    first = StatusEvent.success(command, "0000100001")
    second = StatusEvent.failure(command, ["late"], FailureCode.DEAD_LETTER_EXHAUSTED)

    await cache.record(first)
    assert await cache.record(second) == first
    assert await cache.get(command.correlation_id) == first


@pytest.mark.asyncio
async def test_unreadable_cached_outcome_is_replaced(fake_redis) -> None:
    cache = OutcomeCache(fake_redis, ttl_seconds=60)
    event = StatusEvent.success(make_command(), "0000100001")
    fake_redis.store[AppConfig.get_outcome_key(event.correlation_id)] = "not json"

    assert await cache.get(event.correlation_id) is None
    assert await cache.record(event) == event
    assert await cache.get(event.correlation_id) == event
