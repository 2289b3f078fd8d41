import time
from typing import Callable, Optional

from reliable_queue.core.logging import get_logger
from reliable_queue.core.retry_policies import DEFAULT_RETRY_POLICY, RetryPolicy, call_with_retry
from reliable_queue.engines.base import QueueEngine
from reliable_queue.schemas.envelope import Envelope, SentEnvelope, SourceStamp
from reliable_queue.serialization import JsonSerializer, Serializer


class QueueSender:
    """Encodes envelopes and stores them through one queue engine."""

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

    def send(self, envelope: Envelope) -> SentEnvelope:
        body, headers = self.serializer.encode(envelope)
        message_id = call_with_retry(
            lambda: self.engine.send(body, headers, envelope.delay_ms),
            policy=self.retry_policy,
            sleep=self._sleep,
            label=f"{self.name}.send",
        )
        self.logger.debug("Message sent", message_id=message_id, delay_ms=envelope.delay_ms)
        return SentEnvelope(envelope=envelope, stamp=SourceStamp(self.name, message_id))
