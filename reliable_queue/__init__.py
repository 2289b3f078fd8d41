from .core.exceptions import (
    QueueError, TransportError, RetryableTransportError, StructureNotFoundError,
    FailoverError, NoAvailableTransportError, MessageDecodingError,
    UsageError, InvalidConfigurationError
)
from .engines import QueueEngine, RelationalQueueEngine, RedisQueueEngine
from .failover import CircuitBreaker, FailoverTransport
from .schemas import Envelope, ReceivedEnvelope, SentEnvelope, SourceStamp
from .serialization import JsonSerializer, Serializer
from .transports import QueueTransport
from .transports.factory import TransportFactory
from .workers import QueueConsumer

__all__ = [
    # Errors
    "QueueError", "TransportError", "RetryableTransportError", "StructureNotFoundError",
    "FailoverError", "NoAvailableTransportError", "MessageDecodingError",
    "UsageError", "InvalidConfigurationError",

    # Engines
    "QueueEngine", "RelationalQueueEngine", "RedisQueueEngine",

    # Transports
    "QueueTransport", "FailoverTransport", "CircuitBreaker", "TransportFactory",

    # Envelopes and serialization
    "Envelope", "ReceivedEnvelope", "SentEnvelope", "SourceStamp",
    "Serializer", "JsonSerializer",

    # Workers
    "QueueConsumer",
]
