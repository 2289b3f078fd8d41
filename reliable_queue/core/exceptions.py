"""
Error kinds raised by queue engines, transports and the failover layer.

Driver exceptions (SQLAlchemy, redis-py) are always translated into one of
these before leaving an engine.
"""

from typing import Optional, Sequence


class QueueError(Exception):
    """Base class for every error raised by reliable_queue."""


class TransportError(QueueError):
    """The underlying storage failed to complete an operation."""


class RetryableTransportError(TransportError):
    """Transient storage failure (deadlock, lock timeout, lost connection)."""


class StructureNotFoundError(TransportError):
    """The queue table or structure does not exist and could not be created."""


class FailoverError(TransportError):
    """Every backend of a failover composition was tried and failed."""

    def __init__(self, message: str, attempted: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.attempted = list(attempted or [])


class NoAvailableTransportError(FailoverError):
    """The circuit breaker filtered every backend before any attempt."""


class MessageDecodingError(QueueError):
    """A stored message could not be decoded."""

    def __init__(self, message: str, message_id: Optional[str] = None):
        super().__init__(message)
        self.message_id = message_id


class UsageError(QueueError):
    """The caller misused the API; never retried."""


class InvalidConfigurationError(UsageError):
    """Options or composition given at construction time are invalid."""
