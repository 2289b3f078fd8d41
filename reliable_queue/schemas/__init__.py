from .envelope import Envelope, SourceStamp, SentEnvelope, ReceivedEnvelope
from .message import QueueMessage
from .options import (
    QueueOptions, RelationalQueueOptions, RedisQueueOptions,
    CircuitBreakerOptions, FailoverOptions
)

__all__ = [
    # Envelopes
    "Envelope", "SourceStamp", "SentEnvelope", "ReceivedEnvelope",

    # Stored messages
    "QueueMessage",

    # Options
    "QueueOptions", "RelationalQueueOptions", "RedisQueueOptions",
    "CircuitBreakerOptions", "FailoverOptions",
]
