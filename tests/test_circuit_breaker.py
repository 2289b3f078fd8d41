"""
Unit tests for the circuit breaker.
"""
import pytest

from reliable_queue.core.exceptions import InvalidConfigurationError, TransportError
from reliable_queue.failover.circuit_breaker import CircuitBreaker, CircuitState


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        {"failure_threshold": 3, "cooldown": 10, "cooldown_multiplier": 2.0, "max_cooldown": 25},
        clock=clock,
    )


def fail(breaker, name, times):
    for _ in range(times):
        breaker.record_failure(name, TransportError("down"))


class TestCircuitBreaker:
    """Test cases for CircuitBreaker."""

    def test_closed_by_default(self, breaker):
        assert breaker.is_available("db")
        assert breaker.get_state("db") is CircuitState.CLOSED

    def test_opens_at_threshold(self, breaker):
        """Test exactly threshold consecutive failures open the circuit."""
        fail(breaker, "db", 2)
        assert breaker.is_available("db")

        fail(breaker, "db", 1)
        assert not breaker.is_available("db")
        assert breaker.get_state("db") is CircuitState.OPEN

    def test_half_open_after_cooldown(self, breaker, clock):
        """Test an open circuit is probed again once its cooldown elapsed."""
        fail(breaker, "db", 3)

        clock.advance(9)
        assert not breaker.is_available("db")

        clock.advance(1)
        assert breaker.is_available("db")
        assert breaker.get_state("db") is CircuitState.HALF_OPEN

    def test_half_open_success_closes(self, breaker, clock):
        fail(breaker, "db", 3)
        clock.advance(10)

        breaker.record_success("db")

        assert breaker.get_state("db") is CircuitState.CLOSED

    def test_half_open_failure_reopens_with_longer_cooldown(self, breaker, clock):
        """Test each consecutive reopening doubles the cooldown up to the cap."""
        fail(breaker, "db", 3)
        clock.advance(10)
        fail(breaker, "db", 1)
        assert breaker.get_state("db") is CircuitState.OPEN

        clock.advance(19)
        assert not breaker.is_available("db")
        clock.advance(1)
        assert breaker.is_available("db")

        fail(breaker, "db", 1)
        clock.advance(24)
        assert not breaker.is_available("db")
        clock.advance(1)
        assert breaker.is_available("db")

    def test_cooldown_resets_after_closing(self, breaker, clock):
        fail(breaker, "db", 3)
        clock.advance(10)
        fail(breaker, "db", 1)
        clock.advance(20)
        breaker.record_success("db")

        fail(breaker, "db", 3)
        clock.advance(10)

        assert breaker.is_available("db")

    def test_success_resets_failure_count(self, breaker):
        """Test a single success in the closed state resets the failure count."""
        fail(breaker, "db", 2)
        breaker.record_success("db")
        fail(breaker, "db", 2)

        assert breaker.is_available("db")
        assert breaker.get_status()["db"]["failure_count"] == 2

    def test_backends_are_independent(self, breaker):
        fail(breaker, "db", 3)

        assert not breaker.is_available("db")
        assert breaker.is_available("redis")

    def test_success_threshold(self, clock):
        breaker = CircuitBreaker({"failure_threshold": 1, "success_threshold": 2, "cooldown": 5}, clock=clock)
        fail(breaker, "db", 1)
        clock.advance(5)

        breaker.record_success("db")
        assert breaker.get_state("db") is CircuitState.HALF_OPEN

        breaker.record_success("db")
        assert breaker.get_state("db") is CircuitState.CLOSED

    def test_reset(self, breaker):
        fail(breaker, "db", 3)
        fail(breaker, "redis", 3)

        breaker.reset("db")
        assert breaker.is_available("db")
        assert not breaker.is_available("redis")

        breaker.reset()
        assert breaker.is_available("redis")

    def test_status(self, breaker):
        fail(breaker, "db", 3)

        status = breaker.get_status()

        assert status["db"]["state"] == "open"
        assert status["db"]["open_count"] == 1
        assert status["db"]["cooldown"] == 10

    def test_invalid_options(self):
        with pytest.raises(InvalidConfigurationError):
            CircuitBreaker({"failure_threshold": 0})
