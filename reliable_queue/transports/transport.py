import time
from typing import Callable, List, Optional

from reliable_queue.core.retry_policies import DEFAULT_RETRY_POLICY, RetryPolicy
from reliable_queue.engines.base import QueueEngine
from reliable_queue.schemas.envelope import Envelope, ReceivedEnvelope, SentEnvelope
from reliable_queue.serialization import JsonSerializer, Serializer
from reliable_queue.transports.receiver import QueueReceiver
from reliable_queue.transports.sender import QueueSender


class QueueTransport:
    """
    Named transport over a single queue engine.

    Envelopes it hands out are stamped with ``name``; acknowledgements must
    come back with that stamp.
    """

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
        self.sender = QueueSender(name, engine, self.serializer, retry_policy, sleep)
        self.receiver = QueueReceiver(name, engine, self.serializer, retry_policy, sleep)

    def send(self, envelope: Envelope) -> SentEnvelope:
        return self.sender.send(envelope)

    def poll(self) -> Optional[ReceivedEnvelope]:
        return self.receiver.poll()

    def ack(self, envelope: ReceivedEnvelope) -> bool:
        return self.receiver.ack(envelope)

    def reject(self, envelope: ReceivedEnvelope) -> bool:
        return self.receiver.reject(envelope)

    def keepalive(self, envelope: ReceivedEnvelope, extend_seconds: Optional[int] = None) -> None:
        self.receiver.keepalive(envelope, extend_seconds)

    def count(self) -> int:
        return self.receiver.count()

    def all(self, limit: Optional[int] = None) -> List[ReceivedEnvelope]:
        return self.receiver.all(limit)

    def find(self, message_id: str) -> Optional[ReceivedEnvelope]:
        return self.receiver.find(message_id)

    def setup(self) -> None:
        self.engine.setup()

    def close(self) -> None:
        self.engine.close()
