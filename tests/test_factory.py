"""
Unit tests for building transports from DSNs.
"""
import pytest

from reliable_queue.core.exceptions import InvalidConfigurationError
from reliable_queue.engines.redis_queue import RedisQueueEngine
from reliable_queue.engines.relational import RelationalQueueEngine
from reliable_queue.failover.strategies import LatencyAwareStrategy
from reliable_queue.failover.transport import FailoverTransport
from reliable_queue.schemas.envelope import Envelope
from reliable_queue.transports.factory import TransportFactory
from reliable_queue.transports.transport import QueueTransport


@pytest.fixture
def factory(sqlite_engine, redis_client):
    return TransportFactory(db_engine=sqlite_engine, redis_client=redis_client)


class TestTransportFactory:
    """Test cases for TransportFactory."""

    def test_relational(self, factory):
        transport = factory.create("orders", "relational://?table_name=queue_messages&queue_name=orders")

        assert isinstance(transport, QueueTransport)
        assert isinstance(transport.engine, RelationalQueueEngine)
        assert transport.engine.options.table_name == "queue_messages"
        assert transport.engine.options.queue_name == "orders"
        assert factory.get("orders") is transport

    def test_redis(self, factory):
        transport = factory.create("jobs", "redis://localhost:6379/0?queue=jobs&queue_max_entries=10")

        assert isinstance(transport.engine, RedisQueueEngine)
        assert transport.engine.options.queue == "jobs"
        assert transport.engine.options.queue_max_entries == 10

    def test_options_argument(self, factory):
        transport = factory.create("db", "relational://", {"redeliver_timeout": 30})

        assert transport.engine.redeliver_timeout == 30

    def test_failover(self, factory):
        factory.create("db", "relational://")
        factory.create("cache", "redis://localhost?queue=jobs")

        transport = factory.create(
            "reliable", "failover://db,cache?consumption_strategy=latency_aware&failure_threshold=2"
        )

        assert isinstance(transport, FailoverTransport)
        assert list(transport.transports) == ["db", "cache"]
        assert isinstance(transport.strategy, LatencyAwareStrategy)
        assert transport.breaker.options.failure_threshold == 2

    def test_failover_round_trip(self, factory):
        factory.create("db", "relational://")
        factory.create("cache", "redis://localhost?queue=jobs")
        transport = factory.create("reliable", "failover://db,cache")

        sent = transport.send(Envelope({"id": 1}))
        received = transport.all()

        assert sent.transport_name == "db"
        assert [e.message for e in received] == [{"id": 1}]

    def test_failover_needs_two_names(self, factory):
        factory.create("db", "relational://")

        with pytest.raises(InvalidConfigurationError, match="at least 2"):
            factory.create("reliable", "failover://db")

    def test_failover_unknown_member(self, factory):
        factory.create("db", "relational://")

        with pytest.raises(InvalidConfigurationError, match="Unknown transport"):
            factory.create("reliable", "failover://db,missing")

    def test_unknown_scheme(self, factory):
        with pytest.raises(InvalidConfigurationError, match="amqp"):
            factory.create("rabbit", "amqp://guest@localhost")

    def test_unknown_option(self, factory):
        with pytest.raises(InvalidConfigurationError):
            factory.create("db", "relational://?queue=typo")
