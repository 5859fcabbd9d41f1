from __future__ import annotations

import pytest

from tests.factories import FakeRedis


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
