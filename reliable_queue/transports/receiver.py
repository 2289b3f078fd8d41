import time
from typing import Any, Callable, List, Optional, TypeVar

from reliable_queue.core.exceptions import MessageDecodingError, UsageError
from reliable_queue.core.logging import get_logger
from reliable_queue.core.retry_policies import DEFAULT_RETRY_POLICY, RetryPolicy, call_with_retry
from reliable_queue.engines.base import QueueEngine
from reliable_queue.schemas.envelope import ReceivedEnvelope, SourceStamp
from reliable_queue.schemas.message import QueueMessage
from reliable_queue.serialization import JsonSerializer, Serializer

T = TypeVar("T")


def require_received(envelope: Any) -> ReceivedEnvelope:
    """Only envelopes handed out by a receiver carry a source stamp."""
    if not isinstance(envelope, ReceivedEnvelope):
        raise UsageError(
            f"Expected an envelope returned by a receiver, got {type(envelope).__name__}; "
            "it carries no source stamp."
        )
    return envelope


class QueueReceiver:
    """Claims messages from one queue engine and routes acknowledgements back to it."""

    def __init__(
        self,
        name: str,
        engine: QueueEngine,
        serializer: Optional[Serializer] = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.name = name
        self.engine = engine
        self.serializer = serializer or JsonSerializer()
        self.retry_policy = retry_policy
        self._sleep = sleep
        self.logger = get_logger(self.__class__.__name__, transport=name)

    def _retry(self, operation: Callable[[], T], action: str) -> T:
        return call_with_retry(
            operation,
            policy=self.retry_policy,
            sleep=self._sleep,
            label=f"{self.name}.{action}",
        )

    def poll(self) -> Optional[ReceivedEnvelope]:
        """
        Claim and decode the next message.

        Raises:
            MessageDecodingError: After rejecting a message that cannot be decoded
        """
        try:
            message = self._retry(self.engine.poll, "poll")
        except MessageDecodingError as e:
            if e.message_id is not None:
                self._reject_undecodable(e.message_id, e)
            raise

        if message is None:
            return None
        return self._decode(message)

    def _decode(self, message: QueueMessage) -> ReceivedEnvelope:
        try:
            envelope = self.serializer.decode(message.body, message.headers)
        except MessageDecodingError as e:
            e.message_id = message.id
            self._reject_undecodable(message.id, e)
            raise
        return ReceivedEnvelope(envelope=envelope, stamp=SourceStamp(self.name, message.id))

    def _reject_undecodable(self, message_id: str, error: Exception) -> None:
        self.logger.error("Rejecting undecodable message", message_id=message_id, error=str(error))
        self._retry(lambda: self.engine.reject(message_id), "reject")

    def ack(self, envelope: ReceivedEnvelope) -> bool:
        message_id = self._message_id(envelope)
        return self._retry(lambda: self.engine.ack(message_id), "ack")

    def reject(self, envelope: ReceivedEnvelope) -> bool:
        message_id = self._message_id(envelope)
        return self._retry(lambda: self.engine.reject(message_id), "reject")

    def keepalive(self, envelope: ReceivedEnvelope, extend_seconds: Optional[int] = None) -> None:
        message_id = self._message_id(envelope)
        self._retry(lambda: self.engine.keepalive(message_id, extend_seconds), "keepalive")

    def count(self) -> int:
        return self._retry(self.engine.count, "count")

    def all(self, limit: Optional[int] = None) -> List[ReceivedEnvelope]:
        messages = self._retry(lambda: self.engine.find_all(limit), "find_all")
        return [
            ReceivedEnvelope(
                envelope=self.serializer.decode(m.body, m.headers),
                stamp=SourceStamp(self.name, m.id),
            )
            for m in messages
        ]

    def find(self, message_id: str) -> Optional[ReceivedEnvelope]:
        message = self._retry(lambda: self.engine.find(message_id), "find")
        if message is None:
            return None
        return ReceivedEnvelope(
            envelope=self.serializer.decode(message.body, message.headers),
            stamp=SourceStamp(self.name, message.id),
        )

    def _message_id(self, envelope: ReceivedEnvelope) -> str:
        envelope = require_received(envelope)
        if envelope.transport_name != self.name:
            raise UsageError(
                f'Envelope was received from "{envelope.transport_name}", not from "{self.name}".'
            )
        return envelope.message_id
