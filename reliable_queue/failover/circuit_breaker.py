import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from reliable_queue.core.logging import get_logger
from reliable_queue.schemas.options import CircuitBreakerOptions


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class BackendHealth:
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    # consecutive openings without closing in between
    open_count: int = 0
    last_state_change: Optional[float] = None


class CircuitBreaker:
    """
    Per-backend circuit breaker.

    A backend opens after ``failure_threshold`` consecutive failures and is
    probed again (half-open) once its cooldown elapsed. A failure while
    half-open reopens it with the cooldown multiplied by
    ``cooldown_multiplier``, up to ``max_cooldown``.

    State is held by the instance only; it is shared by passing the same
    breaker to every component of a failover composition.
    """

    def __init__(
        self,
        options: Union[None, CircuitBreakerOptions, Mapping[str, Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.options = CircuitBreakerOptions.from_options(options)
        self._clock = clock
        self._backends: Dict[str, BackendHealth] = {}
        self._lock = threading.Lock()
        self.logger = get_logger(self.__class__.__name__)

    def _health(self, name: str) -> BackendHealth:
        health = self._backends.get(name)
        if health is None:
            health = self._backends[name] = BackendHealth()
        return health

    def _cooldown(self, health: BackendHealth) -> float:
        growth = self.options.cooldown_multiplier ** max(0, health.open_count - 1)
        return min(self.options.cooldown * growth, self.options.max_cooldown)

    def _transition(self, name: str, health: BackendHealth, state: CircuitState) -> None:
        previous = health.state
        health.state = state
        health.last_state_change = self._clock()
        health.failure_count = 0
        health.success_count = 0
        if state is CircuitState.OPEN:
            health.open_count += 1
        elif state is CircuitState.CLOSED:
            health.open_count = 0

        log = self.logger.warning if state is CircuitState.OPEN else self.logger.info
        log(
            "Circuit state changed",
            transport=name,
            previous=previous.value,
            state=state.value,
            cooldown=self._cooldown(health) if state is CircuitState.OPEN else None,
        )

    def _current_state(self, name: str, health: BackendHealth) -> CircuitState:
        if health.state is CircuitState.OPEN:
            elapsed = self._clock() - health.last_state_change
            if elapsed >= self._cooldown(health):
                self._transition(name, health, CircuitState.HALF_OPEN)
        return health.state

    def get_state(self, name: str) -> CircuitState:
        with self._lock:
            return self._current_state(name, self._health(name))

    def is_available(self, name: str) -> bool:
        return self.get_state(name) is not CircuitState.OPEN

    def record_success(self, name: str) -> None:
        with self._lock:
            health = self._health(name)
            state = self._current_state(name, health)
            if state is CircuitState.CLOSED:
                health.failure_count = 0
                return

            health.success_count += 1
            if health.success_count >= self.options.success_threshold:
                self._transition(name, health, CircuitState.CLOSED)

    def record_failure(self, name: str, error: Optional[BaseException] = None) -> None:
        with self._lock:
            health = self._health(name)
            state = self._current_state(name, health)
            if state is CircuitState.HALF_OPEN:
                self._transition(name, health, CircuitState.OPEN)
            elif state is CircuitState.CLOSED:
                health.failure_count += 1
                if health.failure_count >= self.options.failure_threshold:
                    self._transition(name, health, CircuitState.OPEN)

        if error is not None:
            self.logger.debug("Failure recorded", transport=name, error=str(error))

    def reset(self, name: Optional[str] = None) -> None:
        """Forget the health of one backend, or of every backend."""
        with self._lock:
            if name is None:
                self._backends.clear()
            else:
                self._backends.pop(name, None)

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {
                name: {
                    "state": self._current_state(name, health).value,
                    "failure_count": health.failure_count,
                    "open_count": health.open_count,
                    "cooldown": self._cooldown(health),
                    "last_state_change": health.last_state_change,
                }
                for name, health in self._backends.items()
            }
