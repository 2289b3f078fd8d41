import time
from typing import List, Mapping, Optional

from reliable_queue.core.exceptions import MessageDecodingError
from reliable_queue.core.logging import get_logger
from reliable_queue.failover.circuit_breaker import CircuitBreaker
from reliable_queue.failover.members import MemberRouter, MemberTransport
from reliable_queue.failover.strategies import ConsumptionStrategy
from reliable_queue.schemas.envelope import ReceivedEnvelope


class FailoverReceiver:
    """
    Polls one backend per call, chosen by the consumption strategy.

    A failing backend is recorded on the breaker and the call returns None;
    the next poll picks again. Received envelopes are stamped with the
    member name so acknowledgements go back to the same backend.
    """

    def __init__(
        self,
        transports: Mapping[str, MemberTransport],
        breaker: CircuitBreaker,
        strategy: ConsumptionStrategy,
    ):
        self.router = MemberRouter(transports)
        self.breaker = breaker
        self.strategy = strategy
        self.logger = get_logger(self.__class__.__name__)

    def poll(self) -> Optional[ReceivedEnvelope]:
        name = self.strategy.select_backend(self.router.names, self.breaker)
        if name is None:
            self.logger.debug("No transport available for polling")
            return None

        started = time.perf_counter()
        try:
            envelope = self.router.transports[name].poll()
        except MessageDecodingError:
            # the member already rejected the message; the backend is healthy
            raise
        except Exception as e:
            latency_ms = (time.perf_counter() - started) * 1000
            self.breaker.record_failure(name, e)
            self.strategy.record_result(name, False, latency_ms)
            self.logger.error("Failed to consume from transport", transport=name, error=str(e))
            return None

        latency_ms = (time.perf_counter() - started) * 1000
        self.breaker.record_success(name)
        self.strategy.record_result(name, True, latency_ms)
        if envelope is None:
            return None
        return envelope.restamped(name)

    def ack(self, envelope: ReceivedEnvelope) -> bool:
        name = self.router.resolve(envelope)
        try:
            result = self.router.transports[name].ack(self.router.for_member(name, envelope))
        except Exception as e:
            self.breaker.record_failure(name, e)
            raise
        self.breaker.record_success(name)
        return result

    def reject(self, envelope: ReceivedEnvelope) -> bool:
        name = self.router.resolve(envelope)
        try:
            result = self.router.transports[name].reject(self.router.for_member(name, envelope))
        except Exception as e:
            self.breaker.record_failure(name, e)
            raise
        self.breaker.record_success(name)
        return result

    def keepalive(self, envelope: ReceivedEnvelope, extend_seconds: Optional[int] = None) -> None:
        name = self.router.resolve(envelope)
        self.router.transports[name].keepalive(self.router.for_member(name, envelope), extend_seconds)

    def all(self, limit: Optional[int] = None) -> List[ReceivedEnvelope]:
        envelopes: List[ReceivedEnvelope] = []
        for name, transport in self.router.transports.items():
            if limit is not None and len(envelopes) >= limit:
                break
            if not self.breaker.is_available(name):
                continue
            remaining = None if limit is None else limit - len(envelopes)
            try:
                found = transport.all(remaining)
            except MessageDecodingError:
                raise
            except Exception as e:
                self.breaker.record_failure(name, e)
                self.logger.warning("Failed to list transport", transport=name, error=str(e))
                continue
            envelopes.extend(envelope.restamped(name) for envelope in found)

        return envelopes if limit is None else envelopes[:limit]

    def find(self, message_id: str) -> Optional[ReceivedEnvelope]:
        for name, transport in self.router.transports.items():
            if not self.breaker.is_available(name):
                continue
            try:
                envelope = transport.find(message_id)
            except MessageDecodingError:
                raise
            except Exception as e:
                self.breaker.record_failure(name, e)
                self.logger.warning("Failed to search transport", transport=name, error=str(e))
                continue
            if envelope is not None:
                return envelope.restamped(name)
        return None
