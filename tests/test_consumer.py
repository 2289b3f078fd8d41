"""
Unit tests for the queue consumer worker.
"""
from unittest.mock import MagicMock

import pytest

from reliable_queue.core.exceptions import MessageDecodingError, TransportError
from reliable_queue.schemas.envelope import Envelope, ReceivedEnvelope, SourceStamp
from reliable_queue.transports.transport import QueueTransport
from reliable_queue.workers.consumer import (
    ERROR_HEADER,
    ORIGINAL_TRANSPORT_HEADER,
    RETRY_COUNT_HEADER,
    QueueConsumer,
)


def received(message="job", headers=None, message_id="1"):
    return ReceivedEnvelope(Envelope(message, headers=headers or {}), SourceStamp("db", message_id))


@pytest.fixture
def transport():
    transport = MagicMock()
    transport.poll.return_value = None
    return transport


class TestQueueConsumer:
    """Test cases for QueueConsumer."""

    def test_processes_until_empty(self, relational_engine, fast_retry, no_sleep):
        """Test every message is handled and acknowledged."""
        queue = QueueTransport("db", relational_engine, retry_policy=fast_retry, sleep=no_sleep)
        for i in range(3):
            queue.send(Envelope({"n": i}))
        handled = []
        consumer = QueueConsumer(queue, lambda envelope: handled.append(envelope.message["n"]))

        assert consumer.run(stop_when_empty=True) == 3
        assert handled == [0, 1, 2]
        assert relational_engine.count() == 0

    def test_limit(self, transport):
        transport.poll.side_effect = [received(message_id="1"), received(message_id="2"), received(message_id="3")]
        consumer = QueueConsumer(transport, MagicMock())

        assert consumer.run(limit=2) == 2
        assert transport.ack.call_count == 2

    def test_idle_sleep(self, transport):
        sleep = MagicMock()
        transport.poll.side_effect = [None, received()]
        consumer = QueueConsumer(transport, MagicMock(), idle_sleep=0.5, sleep=sleep)

        consumer.run(limit=1)

        sleep.assert_called_once_with(0.5)

    def test_failed_handler_schedules_retry(self, transport):
        """Test a failing message is re-sent with a delay and a retry count."""
        envelope = received()
        transport.poll.side_effect = [envelope, None]
        handler = MagicMock(side_effect=ValueError("boom"))
        consumer = QueueConsumer(transport, handler, base_delay_ms=1000)

        consumer.run(stop_when_empty=True)

        retry = transport.send.call_args[0][0]
        assert retry.headers[RETRY_COUNT_HEADER] == "1"
        assert retry.delay_ms == 1000
        transport.ack.assert_called_once_with(envelope)

    def test_false_result_schedules_retry(self, transport):
        envelope = received(headers={RETRY_COUNT_HEADER: "2"})
        consumer = QueueConsumer(transport, MagicMock(return_value=False), base_delay_ms=1000)

        assert consumer.process(envelope) is False

        retry = transport.send.call_args[0][0]
        assert retry.headers[RETRY_COUNT_HEADER] == "3"
        assert retry.delay_ms == 4000

    def test_retry_delay_cap(self):
        consumer = QueueConsumer(MagicMock(), MagicMock(), base_delay_ms=1000, max_delay_ms=5000)

        assert consumer.retry_delay_ms(10) == 5000

    def test_exhausted_retries_go_to_failure_transport(self, transport):
        envelope = received(headers={RETRY_COUNT_HEADER: "3"})
        failures = MagicMock()
        consumer = QueueConsumer(
            transport, MagicMock(side_effect=RuntimeError("fatal")), max_retries=3, failure_transport=failures
        )

        consumer.process(envelope)

        failed = failures.send.call_args[0][0]
        assert failed.headers[ERROR_HEADER] == "fatal"
        assert failed.headers[ORIGINAL_TRANSPORT_HEADER] == "db"
        transport.send.assert_not_called()
        transport.ack.assert_called_once_with(envelope)

    def test_exhausted_retries_rejected(self, transport):
        envelope = received(headers={RETRY_COUNT_HEADER: "3"})
        consumer = QueueConsumer(transport, MagicMock(side_effect=RuntimeError("fatal")), max_retries=3)

        consumer.process(envelope)

        transport.reject.assert_called_once_with(envelope)
        transport.ack.assert_not_called()

    def test_undecodable_message_skipped(self, transport):
        transport.poll.side_effect = [MessageDecodingError("bad", message_id="9"), received(), None]
        handler = MagicMock()
        consumer = QueueConsumer(transport, handler)

        assert consumer.run(stop_when_empty=True) == 1
        handler.assert_called_once()

    def test_transport_error_waits(self, transport):
        sleep = MagicMock()
        transport.poll.side_effect = [TransportError("down"), received()]
        consumer = QueueConsumer(transport, MagicMock(), idle_sleep=2, sleep=sleep)

        assert consumer.run(limit=1) == 1
        sleep.assert_called_once_with(2)

    def test_stop(self, transport):
        consumer = QueueConsumer(transport, MagicMock())
        transport.poll.side_effect = lambda: consumer.stop() or received()

        assert consumer.run() == 1
