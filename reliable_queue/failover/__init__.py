from .circuit_breaker import CircuitBreaker, CircuitState
from .strategies import (
    ConsumptionStrategy, RoundRobinStrategy, WeightedRoundRobinStrategy,
    LatencyAwareStrategy, AdaptivePriorityStrategy, create_consumption_strategy
)
from .sender import FailoverSender
from .receiver import FailoverReceiver
from .transport import FailoverTransport

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ConsumptionStrategy",
    "RoundRobinStrategy",
    "WeightedRoundRobinStrategy",
    "LatencyAwareStrategy",
    "AdaptivePriorityStrategy",
    "create_consumption_strategy",
    "FailoverSender",
    "FailoverReceiver",
    "FailoverTransport",
]
