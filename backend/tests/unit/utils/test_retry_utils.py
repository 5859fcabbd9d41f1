from __future__ import annotations

import pytest

from bridge_shared.utils import retry as retry_module
from bridge_shared.utils.retry import RetryError, exponential_backoff, retry_async, run_with_retry


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(retry_module.asyncio, "sleep", fake_sleep)
    return sleeps


def test_exponential_backoff_is_capped() -> None:
    assert exponential_backoff(0, 1.0, 60.0, jitter=False) == 1.0
    assert exponential_backoff(3, 1.0, 60.0, jitter=False) == 8.0
    assert exponential_backoff(10, 1.0, 60.0, jitter=False) == 60.0
    jittered = exponential_backoff(2, 1.0, 60.0)
    assert 2.0 <= jittered < 4.0


@pytest.mark.asyncio
async def test_run_with_retry_recovers(no_sleep) -> None:
    calls = {"n": 0}

    async def flaky(value):
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("down")
        return value

    assert await run_with_retry(flaky, "ok", max_attempts=3, delay=0.1, exceptions=(ConnectionError,)) == "ok"
    assert calls["n"] == 3
    assert len(no_sleep) == 2


@pytest.mark.asyncio
async def test_run_with_retry_raises_retry_error_with_last_error() -> None:
    async def always_down():
        raise ConnectionError("still down")

    with pytest.raises(RetryError) as exc_info:
        await run_with_retry(always_down, max_attempts=2, delay=0.1, exceptions=(ConnectionError,))

    assert exc_info.value.attempts == 2
    assert isinstance(exc_info.value.last_error, ConnectionError)


@pytest.mark.asyncio
async def test_unlisted_exceptions_propagate_immediately() -> None:
    calls = {"n": 0}

    @retry_async(max_attempts=5, delay=0.1, exceptions=(ConnectionError,))
    async def broken():
        calls["n"] += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await broken()
    assert calls["n"] == 1
