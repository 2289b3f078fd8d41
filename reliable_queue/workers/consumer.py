import time
from typing import Any, Callable, Optional

from reliable_queue.core.exceptions import MessageDecodingError, TransportError
from reliable_queue.core.logging import get_logger
from reliable_queue.schemas.envelope import ReceivedEnvelope

RETRY_COUNT_HEADER = "x-retry-count"
ERROR_HEADER = "x-error-message"
ORIGINAL_TRANSPORT_HEADER = "x-original-transport"

Handler = Callable[[ReceivedEnvelope], Optional[bool]]


class QueueConsumer:
    """
    Poll-until-empty worker loop over any transport.

    The handler acknowledges a message by returning normally; returning
    False or raising schedules a retry. Retries are re-sent with an
    exponential delay and an ``x-retry-count`` header. Once ``max_retries``
    is reached the message goes to ``failure_transport`` when one is
    configured, otherwise it is rejected.
    """

    def __init__(
        self,
        transport: Any,
        handler: Handler,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 60000,
        failure_transport: Any = None,
        idle_sleep: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.transport = transport
        self.handler = handler
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.failure_transport = failure_transport
        self.idle_sleep = idle_sleep
        self._sleep = sleep
        self._running = False
        self.logger = get_logger(self.__class__.__name__)

    def stop(self) -> None:
        """Finish the current message and leave the loop."""
        self._running = False

    def run(self, limit: Optional[int] = None, stop_when_empty: bool = False) -> int:
        """
        Consume messages until stopped.

        Args:
            limit: Stop after this many messages were handled
            stop_when_empty: Stop on the first empty poll instead of sleeping

        Returns:
            Number of messages handled
        """
        self._running = True
        handled = 0
        self.logger.info("Starting consumer", limit=limit)

        while self._running and (limit is None or handled < limit):
            try:
                envelope = self.transport.poll()
            except MessageDecodingError as e:
                # already rejected by the receiver
                self.logger.error("Dropped undecodable message", message_id=e.message_id, error=str(e))
                continue
            except TransportError as e:
                self.logger.error(f"Error in consumer loop: {e}")
                self._sleep(self.idle_sleep)
                continue

            if envelope is None:
                if stop_when_empty:
                    break
                self._sleep(self.idle_sleep)
                continue

            self.process(envelope)
            handled += 1

        self._running = False
        self.logger.info("Consumer stopped", handled=handled)
        return handled

    def process(self, envelope: ReceivedEnvelope) -> bool:
        """Run the handler on one message. Returns True if it was acknowledged."""
        try:
            result = self.handler(envelope)
        except Exception as e:
            self.logger.error(
                f"Error processing message: {e}",
                message_id=envelope.message_id,
                transport=envelope.transport_name,
            )
            self.handle_retry(envelope, e)
            return False

        if result is False:
            self.handle_retry(envelope, Exception("Processing failed"))
            return False

        self.transport.ack(envelope)
        self.logger.debug("Message processed successfully", message_id=envelope.message_id)
        return True

    def retry_delay_ms(self, retry_count: int) -> int:
        return min(self.base_delay_ms * (2 ** retry_count), self.max_delay_ms)

    def handle_retry(self, envelope: ReceivedEnvelope, error: Exception) -> None:
        try:
            retry_count = int(envelope.headers.get(RETRY_COUNT_HEADER, 0))
        except ValueError:
            retry_count = 0

        if retry_count < self.max_retries:
            delay_ms = self.retry_delay_ms(retry_count)
            retry = envelope.envelope.with_headers(**{RETRY_COUNT_HEADER: str(retry_count + 1)}).with_delay(delay_ms)
            self.transport.send(retry)
            self.transport.ack(envelope)
            self.logger.warning(
                "Message queued for retry",
                message_id=envelope.message_id,
                retry_count=retry_count + 1,
                max_retries=self.max_retries,
                delay_ms=delay_ms,
                error=str(error),
            )
            return

        if self.failure_transport is not None:
            failed = envelope.envelope.with_headers(
                **{ERROR_HEADER: str(error), ORIGINAL_TRANSPORT_HEADER: envelope.transport_name}
            ).with_delay(0)
            self.failure_transport.send(failed)
            self.transport.ack(envelope)
            self.logger.error(
                "Message moved to failure transport",
                message_id=envelope.message_id,
                retry_count=retry_count,
                error=str(error),
            )
            return

        self.transport.reject(envelope)
        self.logger.error(
            "Message rejected after retries",
            message_id=envelope.message_id,
            retry_count=retry_count,
            error=str(error),
        )
