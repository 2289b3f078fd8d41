"""
Consumption strategies choosing which backend a failover composition uses.

Every strategy only considers names the circuit breaker reports available
and returns None when there is none.
"""

import random
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from reliable_queue.core.exceptions import InvalidConfigurationError
from reliable_queue.failover.circuit_breaker import CircuitBreaker


class ConsumptionStrategy(ABC):
    @abstractmethod
    def select_backend(self, names: Sequence[str], breaker: CircuitBreaker) -> Optional[str]:
        pass

    def record_result(self, name: str, success: bool, latency_ms: float) -> None:
        """Feed the outcome of an operation on ``name`` back into the strategy."""

    @staticmethod
    def eligible(names: Sequence[str], breaker: CircuitBreaker) -> List[str]:
        return [name for name in names if breaker.is_available(name)]


class RoundRobinStrategy(ConsumptionStrategy):
    """Rotates over the currently available names."""

    def __init__(self):
        self._cursor = 0
        self._lock = threading.Lock()

    def select_backend(self, names: Sequence[str], breaker: CircuitBreaker) -> Optional[str]:
        candidates = self.eligible(names, breaker)
        if not candidates:
            return None
        with self._lock:
            # the list may have changed size since the last call
            index = self._cursor % len(candidates)
            self._cursor = index + 1
        return candidates[index]


@dataclass
class BackendStats:
    successes: int = 0
    failures: int = 0
    latency_sum: float = 0.0

    @property
    def total(self) -> int:
        return self.successes + self.failures

    @property
    def mean_latency(self) -> float:
        return self.latency_sum / self.total if self.total else 0.0


class WeightedRoundRobinStrategy(ConsumptionStrategy):
    """
    Random pick weighted by success rate and latency.

    The success rate is smoothed so that a backend without history weighs the
    same as one with an even record; latency scales the weight down by
    ``1 / (1 + mean_latency / latency_reference_ms)``.
    """

    def __init__(
        self,
        latency_reference_ms: float = 100.0,
        min_weight: float = 0.01,
        rng: Optional[random.Random] = None,
    ):
        self.latency_reference_ms = latency_reference_ms
        self.min_weight = min_weight
        self._rng = rng or random.Random()
        self._stats: Dict[str, BackendStats] = {}
        self._lock = threading.Lock()

    def weight(self, name: str) -> float:
        stats = self._stats.get(name) or BackendStats()
        success_rate = (stats.successes + 1) / (stats.total + 2)
        latency_factor = 1 / (1 + stats.mean_latency / self.latency_reference_ms)
        return max(self.min_weight, success_rate * latency_factor)

    def select_backend(self, names: Sequence[str], breaker: CircuitBreaker) -> Optional[str]:
        candidates = self.eligible(names, breaker)
        if not candidates:
            return None
        weights = [self.weight(name) for name in candidates]
        return self._rng.choices(candidates, weights=weights, k=1)[0]

    def record_result(self, name: str, success: bool, latency_ms: float) -> None:
        with self._lock:
            stats = self._stats.setdefault(name, BackendStats())
            if success:
                stats.successes += 1
            else:
                stats.failures += 1
            stats.latency_sum += latency_ms


class LatencyAwareStrategy(ConsumptionStrategy):
    """
    Picks the available backend with the lowest mean latency.

    Backends without measurements count as 0ms so new or recovered backends
    get exercised. Failures are recorded as twice ``latency_threshold_ms``.
    Ties go to the first name in declared order.
    """

    def __init__(self, latency_threshold_ms: float = 500.0):
        self.latency_threshold_ms = latency_threshold_ms
        self._stats: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def mean_latency(self, name: str) -> float:
        count, total = self._stats.get(name, (0, 0.0))
        return total / count if count else 0.0

    def select_backend(self, names: Sequence[str], breaker: CircuitBreaker) -> Optional[str]:
        candidates = self.eligible(names, breaker)
        if not candidates:
            return None
        return min(candidates, key=self.mean_latency)

    def record_result(self, name: str, success: bool, latency_ms: float) -> None:
        if not success:
            latency_ms = self.latency_threshold_ms * 2
        with self._lock:
            count, total = self._stats.get(name, (0, 0.0))
            self._stats[name] = (count + 1, total + latency_ms)


class AdaptivePriorityStrategy(ConsumptionStrategy):
    """
    Scores backends over a sliding window of recent results.

    score = latency_weight * latency_score + success_weight * success_score,
    both on a 0-100 scale (latency_score drops by 1 per 10ms of mean
    latency). A weighted random pick among the three best scores keeps the
    others from starving.
    """

    NEUTRAL_SCORE = 50.0
    TOP_COUNT = 3

    def __init__(
        self,
        window_size: int = 10,
        latency_weight: float = 0.7,
        success_weight: float = 0.3,
        rng: Optional[random.Random] = None,
    ):
        if window_size < 1:
            raise InvalidConfigurationError("window_size must be at least 1.")
        self.window_size = window_size
        self.latency_weight = latency_weight
        self.success_weight = success_weight
        self._rng = rng or random.Random()
        self._windows: Dict[str, Deque[Tuple[bool, float]]] = {}
        self._lock = threading.Lock()

    def score(self, name: str) -> float:
        window = self._windows.get(name)
        if not window:
            return self.NEUTRAL_SCORE
        mean_latency = sum(latency for _, latency in window) / len(window)
        success_rate = sum(1 for success, _ in window if success) / len(window)
        latency_score = max(0.0, 100 - mean_latency / 10)
        return self.latency_weight * latency_score + self.success_weight * success_rate * 100

    def select_backend(self, names: Sequence[str], breaker: CircuitBreaker) -> Optional[str]:
        candidates = self.eligible(names, breaker)
        if not candidates:
            return None
        # sorted() is stable, equal scores keep declared order
        top = sorted(candidates, key=self.score, reverse=True)[: self.TOP_COUNT]
        if len(top) == 1:
            return top[0]
        weights = [max(1.0, self.score(name)) for name in top]
        return self._rng.choices(top, weights=weights, k=1)[0]

    def record_result(self, name: str, success: bool, latency_ms: float) -> None:
        with self._lock:
            window = self._windows.setdefault(name, deque(maxlen=self.window_size))
            window.append((success, latency_ms))


STRATEGIES = {
    "round_robin": RoundRobinStrategy,
    "weighted_round_robin": WeightedRoundRobinStrategy,
    "latency_aware": LatencyAwareStrategy,
    "adaptive_priority": AdaptivePriorityStrategy,
}


def create_consumption_strategy(
    name: str, options: Optional[Mapping[str, Any]] = None
) -> ConsumptionStrategy:
    strategy_class = STRATEGIES.get(name)
    if strategy_class is None:
        raise InvalidConfigurationError(
            f'Unknown consumption strategy "{name}". Available: {", ".join(STRATEGIES)}.'
        )
    try:
        return strategy_class(**dict(options or {}))
    except TypeError as e:
        raise InvalidConfigurationError(f'Invalid options for strategy "{name}": {e}') from e
