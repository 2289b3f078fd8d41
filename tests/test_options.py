"""
Unit tests for option models.
"""
import pytest

from reliable_queue.core.config import settings
from reliable_queue.core.exceptions import InvalidConfigurationError
from reliable_queue.schemas.options import (
    CircuitBreakerOptions,
    FailoverOptions,
    RedisQueueOptions,
    RelationalQueueOptions,
)


class TestQueueOptions:
    """Test cases for option validation."""

    def test_relational_defaults(self):
        options = RelationalQueueOptions.from_options(None)

        assert options.table_name == "messenger_messages"
        assert options.queue_name == "default"
        assert options.redeliver_timeout == settings.REDELIVER_TIMEOUT
        assert options.auto_setup is settings.AUTO_SETUP

    def test_redis_defaults(self):
        options = RedisQueueOptions.from_options({})

        assert options.queue == "async_messages"
        assert options.delayed_queue == "async_messages_delayed"
        assert options.queue_max_entries == 0
        assert options.claim_interval == 60000

    def test_instance_passes_through(self):
        options = RelationalQueueOptions(queue_name="orders")

        assert RelationalQueueOptions.from_options(options) is options

    def test_string_values_are_coerced(self):
        options = RedisQueueOptions.from_options({"redeliver_timeout": "30", "auto_setup": "false"})

        assert options.redeliver_timeout == 30
        assert options.auto_setup is False

    def test_unknown_key_lists_allowed_options(self):
        with pytest.raises(InvalidConfigurationError) as exc_info:
            RelationalQueueOptions.from_options({"tablename": "x"})

        assert "tablename" in str(exc_info.value)
        assert "table_name" in str(exc_info.value)

    def test_redeliver_timeout_positive(self):
        with pytest.raises(InvalidConfigurationError):
            RelationalQueueOptions.from_options({"redeliver_timeout": 0})

    def test_empty_queue(self):
        with pytest.raises(InvalidConfigurationError):
            RedisQueueOptions.from_options({"queue": ""})

    def test_failover_defaults(self):
        options = FailoverOptions.from_options(None)

        assert options.consumption_strategy == "round_robin"
        assert options.try_unhealthy_on_failure is False
        assert options.circuit_breaker == CircuitBreakerOptions()

    def test_nested_unknown_key(self):
        with pytest.raises(InvalidConfigurationError, match="circuit_breaker"):
            FailoverOptions.from_options({"circuit_breaker": {"timeout": 5}})
