from typing import Any, List, Mapping, Optional, Union

from reliable_queue.core.logging import get_logger
from reliable_queue.failover.circuit_breaker import CircuitBreaker
from reliable_queue.failover.members import MemberTransport
from reliable_queue.failover.receiver import FailoverReceiver
from reliable_queue.failover.sender import FailoverSender
from reliable_queue.failover.strategies import ConsumptionStrategy, create_consumption_strategy
from reliable_queue.schemas.envelope import Envelope, ReceivedEnvelope, SentEnvelope
from reliable_queue.schemas.options import FailoverOptions


class FailoverTransport:
    """
    Composes two or more transports into one.

    The sender and receiver share one circuit breaker owned by this instance.
    Sends go to the first available member in declared order; the consumption
    strategy picks the member for each poll.
    """

    def __init__(
        self,
        transports: Mapping[str, MemberTransport],
        options: Union[None, FailoverOptions, Mapping[str, Any]] = None,
        breaker: Optional[CircuitBreaker] = None,
        strategy: Optional[ConsumptionStrategy] = None,
    ):
        self.options = FailoverOptions.from_options(options)
        self.transports = dict(transports)
        self.breaker = breaker or CircuitBreaker(self.options.circuit_breaker)
        self.strategy = strategy or create_consumption_strategy(
            self.options.consumption_strategy, self.options.strategy_options
        )
        self.sender = FailoverSender(
            self.transports,
            self.breaker,
            try_unhealthy_on_failure=self.options.try_unhealthy_on_failure,
        )
        self.receiver = FailoverReceiver(self.transports, self.breaker, self.strategy)
        self.logger = get_logger(self.__class__.__name__, transports=list(self.transports))

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
        total = 0
        for name, transport in self.transports.items():
            if not self.breaker.is_available(name):
                continue
            try:
                total += transport.count()
            except Exception as e:
                self.breaker.record_failure(name, e)
                self.logger.warning("Failed to count messages", transport=name, error=str(e))
        return total

    def setup(self) -> None:
        for transport in self.transports.values():
            transport.setup()

    def all(self, limit: Optional[int] = None) -> List[ReceivedEnvelope]:
        return self.receiver.all(limit)

    def find(self, message_id: str) -> Optional[ReceivedEnvelope]:
        return self.receiver.find(message_id)

    def get_status(self):
        """Circuit state of every member."""
        return {name: self.breaker.get_state(name).value for name in self.transports}
