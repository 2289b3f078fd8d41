"""
Envelope types exchanged with transports.

Only ``ReceivedEnvelope`` can be acked, rejected or kept alive; its stamp is a
required constructor argument, so a received envelope always knows which
backend and backend-local id it came from.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Envelope:
    message: Any
    headers: Dict[str, str] = field(default_factory=dict)
    delay_ms: int = 0

    def with_headers(self, **headers: str) -> "Envelope":
        return replace(self, headers={**self.headers, **headers})

    def with_delay(self, delay_ms: int) -> "Envelope":
        return replace(self, delay_ms=delay_ms)


@dataclass(frozen=True)
class SourceStamp:
    """Provenance of a message: the backend name and its id there."""

    transport_name: str
    message_id: str


@dataclass(frozen=True)
class SentEnvelope:
    envelope: Envelope
    stamp: SourceStamp

    @property
    def message_id(self) -> str:
        return self.stamp.message_id

    @property
    def transport_name(self) -> str:
        return self.stamp.transport_name


@dataclass(frozen=True)
class ReceivedEnvelope:
    envelope: Envelope
    stamp: SourceStamp
    # the member's own envelope when this one was re-stamped by a composition
    origin: Optional["ReceivedEnvelope"] = field(default=None, compare=False, repr=False)

    @property
    def message(self) -> Any:
        return self.envelope.message

    @property
    def headers(self) -> Dict[str, str]:
        return self.envelope.headers

    @property
    def message_id(self) -> str:
        return self.stamp.message_id

    @property
    def transport_name(self) -> str:
        return self.stamp.transport_name

    def restamped(self, transport_name: str) -> "ReceivedEnvelope":
        """Same message, provenance re-pointed at ``transport_name``."""
        return replace(self, stamp=replace(self.stamp, transport_name=transport_name), origin=self)
