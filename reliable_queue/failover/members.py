from typing import Dict, List, Mapping, Optional, Protocol

from reliable_queue.core.exceptions import InvalidConfigurationError, UsageError
from reliable_queue.schemas.envelope import Envelope, ReceivedEnvelope, SentEnvelope
from reliable_queue.transports.receiver import require_received
from reliable_queue.transports.transport import QueueTransport


class MemberTransport(Protocol):
    """Operations a failover composition needs from each backend."""

    def send(self, envelope: Envelope) -> SentEnvelope: ...

    def poll(self) -> Optional[ReceivedEnvelope]: ...

    def ack(self, envelope: ReceivedEnvelope) -> bool: ...

    def reject(self, envelope: ReceivedEnvelope) -> bool: ...

    def keepalive(self, envelope: ReceivedEnvelope, extend_seconds: Optional[int] = None) -> None: ...

    def count(self) -> int: ...

    def setup(self) -> None: ...

    def all(self, limit: Optional[int] = None) -> List[ReceivedEnvelope]: ...

    def find(self, message_id: str) -> Optional[ReceivedEnvelope]: ...


class MemberRouter:
    """
    Routes stamped envelopes to the member they came from.

    Envelopes leaving the composition are stamped with the member's key and
    keep the member's own envelope as their origin; that origin is what goes
    back to the member, so nested compositions unwind one level per hop.
    Envelopes built without an origin are re-stamped with the member's name.
    """

    def __init__(self, transports: Mapping[str, MemberTransport]):
        if len(transports) < 2:
            raise InvalidConfigurationError(
                f"Failover transport requires at least 2 transports, got {len(transports)}."
            )

        self.transports: Dict[str, MemberTransport] = dict(transports)
        self.names: List[str] = list(self.transports)
        self._member_names = {
            key: member.name if isinstance(member, QueueTransport) else key
            for key, member in self.transports.items()
        }

    def resolve(self, envelope: ReceivedEnvelope) -> str:
        envelope = require_received(envelope)
        name = envelope.transport_name
        if name not in self.transports:
            raise UsageError(
                f'Envelope was received from unknown transport "{name}". '
                f"Known transports: {', '.join(self.names)}."
            )
        return name

    def for_member(self, name: str, envelope: ReceivedEnvelope) -> ReceivedEnvelope:
        if envelope.origin is not None:
            return envelope.origin
        return envelope.restamped(self._member_names[name])
