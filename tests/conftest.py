"""
Pytest configuration and fixtures for queue tests.
"""
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import fakeredis
import pytest

from reliable_queue.core.database import create_queue_engine
from reliable_queue.core.retry_policies import RetryPolicy
from reliable_queue.engines.redis_queue import RedisQueueEngine
from reliable_queue.engines.relational import RelationalQueueEngine


class FakeClock:
    """Float clock (seconds) advanced by hand."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeDateClock:
    """Naive UTC datetime clock advanced by hand."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def date_clock():
    return FakeDateClock()


@pytest.fixture
def fast_retry():
    """Retry policy without backoff so tests never wait."""
    return RetryPolicy(max_retries=2, base_delay_ms=0, backoff_multiplier=1.0, jitter=0.0)


@pytest.fixture
def no_sleep():
    return MagicMock()


@pytest.fixture
def sqlite_engine():
    """In-memory SQLite engine."""
    engine = create_queue_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def sqlite_file_url(tmp_path):
    return f"sqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture
def relational_engine(sqlite_engine, date_clock):
    """Relational queue engine on the default table."""
    return RelationalQueueEngine(
        sqlite_engine,
        {"queue_name": "default", "redeliver_timeout": 60},
        clock=date_clock,
    )


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    """Fake Redis client with Lua scripting."""
    client = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def redis_engine(redis_client, clock):
    return RedisQueueEngine(
        redis_client,
        {"queue": "jobs", "redeliver_timeout": 60, "claim_interval": 0},
        clock=clock,
    )


def make_member():
    """Mock failover member."""
    member = MagicMock()
    member.poll.return_value = None
    member.count.return_value = 0
    member.all.return_value = []
    member.find.return_value = None
    return member


@pytest.fixture
def members():
    return {"primary": make_member(), "secondary": make_member()}


@pytest.fixture
def member_factory():
    return make_member
