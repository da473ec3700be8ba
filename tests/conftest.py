# Copyright (c) 2026 ConsentVault Contributors. All Rights Reserved.

"""
Shared test fixtures for all ConsentVault tests.
"""

from datetime import datetime, timedelta, timezone

import fakeredis
import fakeredis.aioredis
import pytest

from consent_vault.core.context import init_vault_context
from consent_vault.kernel.redis_client import use_redis_pool

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def mock_redis():
    """Provide an isolated FakeRedis async instance."""
    r = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    use_redis_pool(r)
    return r


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def vault(mock_redis, clock):
    """VaultContext wired to FakeRedis and the fake clock."""
    return init_vault_context(mock_redis, clock=clock)


@pytest.fixture
def router(vault):
    return vault.router
