import time
from typing import List, Mapping, Optional

from reliable_queue.core.exceptions import FailoverError, NoAvailableTransportError
from reliable_queue.core.logging import get_logger
from reliable_queue.failover.circuit_breaker import CircuitBreaker
from reliable_queue.failover.members import MemberRouter, MemberTransport
from reliable_queue.failover.strategies import ConsumptionStrategy
from reliable_queue.schemas.envelope import Envelope, SentEnvelope, SourceStamp


class FailoverSender:
    """
    Sends to the first backend that accepts the message.

    Candidates are the strategy's pick (when a strategy is given) followed by
    the remaining names in declared order, skipping backends whose circuit is
    open. With ``try_unhealthy_on_failure`` the skipped backends are tried
    last.
    """

    def __init__(
        self,
        transports: Mapping[str, MemberTransport],
        breaker: CircuitBreaker,
        strategy: Optional[ConsumptionStrategy] = None,
        try_unhealthy_on_failure: bool = False,
    ):
        self.router = MemberRouter(transports)
        self.breaker = breaker
        self.strategy = strategy
        self.try_unhealthy_on_failure = try_unhealthy_on_failure
        self.logger = get_logger(self.__class__.__name__)

    def _candidates(self) -> List[str]:
        names = self.router.names
        preferred = self.strategy.select_backend(names, self.breaker) if self.strategy else None
        ordered = ([preferred] if preferred else []) + [n for n in names if n != preferred]
        return [name for name in ordered if self.breaker.is_available(name)]

    def send(self, envelope: Envelope) -> SentEnvelope:
        attempted: List[str] = []
        last_error: Optional[Exception] = None

        for name in self._candidates():
            attempted.append(name)
            sent, error = self._try_send(name, envelope)
            if sent is not None:
                return sent
            last_error = error

        if self.try_unhealthy_on_failure:
            for name in self.router.names:
                if name in attempted:
                    continue
                attempted.append(name)
                sent, error = self._try_send(name, envelope)
                if sent is not None:
                    self.logger.info("Message sent to previously unhealthy transport", transport=name)
                    return sent
                last_error = error

        if not attempted:
            self.logger.error("No transport available", transports=self.router.names)
            raise NoAvailableTransportError(
                f"No transport available. Every circuit is open: {', '.join(self.router.names)}.",
                attempted=attempted,
            )

        message = f"All transports failed. Attempted: {', '.join(attempted)}."
        self.logger.error(message, last_error=str(last_error))
        raise FailoverError(message, attempted=attempted) from last_error

    def _try_send(self, name: str, envelope: Envelope):
        started = time.perf_counter()
        try:
            sent = self.router.transports[name].send(envelope)
        except Exception as e:
            latency_ms = (time.perf_counter() - started) * 1000
            self.breaker.record_failure(name, e)
            if self.strategy:
                self.strategy.record_result(name, False, latency_ms)
            self.logger.warning("Failed to send message to transport", transport=name, error=str(e))
            return None, e

        latency_ms = (time.perf_counter() - started) * 1000
        self.breaker.record_success(name)
        if self.strategy:
            self.strategy.record_result(name, True, latency_ms)
        self.logger.debug("Message sent", transport=name, latency_ms=round(latency_ms, 2))
        return SentEnvelope(envelope=envelope, stamp=SourceStamp(name, sent.message_id)), None
