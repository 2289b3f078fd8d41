from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from reliable_queue.core.exceptions import UsageError
from reliable_queue.schemas.message import QueueMessage


class QueueEngine(ABC):
    """
    Storage contract every queue backend implements.

    Implementations must provide:
    - send: persist a message, visible after an optional delay
    - poll: atomically claim at most one available message
    - ack / reject: remove a message (idempotent)
    - keepalive: refresh a claim so it is not redelivered
    - count: approximate number of messages in the queue
    - setup: idempotently create the physical structures
    """

    @property
    @abstractmethod
    def queue_name(self) -> str:
        """Logical queue this engine instance serves."""

    @property
    @abstractmethod
    def redeliver_timeout(self) -> int:
        """Seconds before an unacknowledged claim is treated as abandoned."""

    @abstractmethod
    def send(self, body: str, headers: Dict[str, str], delay_ms: int = 0) -> str:
        """
        Persist a message.

        Args:
            body: Encoded message body
            headers: Encoded message headers
            delay_ms: Milliseconds before the message becomes visible

        Returns:
            Backend-assigned message id
        """

    @abstractmethod
    def poll(self) -> Optional[QueueMessage]:
        """
        Claim the next available message.

        Returns:
            The claimed message or None if nothing is available
        """

    @abstractmethod
    def ack(self, message_id: str) -> bool:
        """Remove a processed message. Returns False if it was already gone."""

    @abstractmethod
    def reject(self, message_id: str) -> bool:
        """Remove a message without redelivery. Returns False if it was already gone."""

    @abstractmethod
    def keepalive(self, message_id: str, extend_seconds: Optional[int] = None) -> None:
        """
        Refresh the claim clock of a message still being processed.

        Raises:
            UsageError: If ``extend_seconds`` exceeds the redeliver timeout
        """

    @abstractmethod
    def count(self) -> int:
        """Approximate number of messages belonging to this queue."""

    @abstractmethod
    def setup(self) -> None:
        """Create the structures the backend needs; safe to call repeatedly."""

    @abstractmethod
    def find_all(self, limit: Optional[int] = None) -> List[QueueMessage]:
        """List messages without claiming them."""

    @abstractmethod
    def find(self, message_id: str) -> Optional[QueueMessage]:
        """Fetch a single message of this queue by id without claiming it."""

    def close(self) -> None:
        """Release engine-held resources. Connections are owned by the caller."""

    def _check_keepalive_interval(self, extend_seconds: Optional[int], backend: str) -> None:
        if extend_seconds is not None and self.redeliver_timeout < extend_seconds:
            raise UsageError(
                f"{backend} redeliver_timeout ({self.redeliver_timeout}s) cannot be smaller "
                f"than the keepalive interval ({extend_seconds}s)."
            )

    @staticmethod
    def _check_delay(delay_ms: int) -> None:
        if delay_ms < 0:
            raise UsageError(f"Message delay cannot be negative, got {delay_ms}ms.")
