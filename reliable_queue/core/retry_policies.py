import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from reliable_queue.core.config import settings
from reliable_queue.core.exceptions import RetryableTransportError, TransportError
from reliable_queue.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_retries: int
    base_delay_ms: int
    backoff_multiplier: float
    jitter: float

    def compute_delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay in seconds before retry number ``attempt`` (1-based)."""
        delay = self.base_delay_ms * (self.backoff_multiplier ** max(0, attempt - 1))
        spread = delay * self.jitter
        delay += (rng or random).uniform(-spread, spread)
        return max(0.0, delay) / 1000


DEFAULT_RETRY_POLICY = RetryPolicy(
    max_retries=settings.RETRY_MAX_ATTEMPTS,
    base_delay_ms=settings.RETRY_BASE_DELAY_MS,
    backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
    jitter=settings.RETRY_JITTER,
)

NO_RETRY_POLICY = RetryPolicy(max_retries=0, base_delay_ms=0, backoff_multiplier=1.0, jitter=0.0)


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RetryableTransportError)


def call_with_retry(
    operation: Callable[[], T],
    retryable: Callable[[BaseException], bool] = is_retryable,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "operation",
) -> T:
    """
    Run ``operation`` retrying transient failures with backoff and jitter.

    Once ``policy.max_retries`` retries are exhausted the last error is
    surfaced as a terminal TransportError.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as e:
            if not retryable(e):
                raise
            attempt += 1
            if attempt > policy.max_retries:
                logger.error(
                    "Retry limit reached",
                    operation=label,
                    attempts=attempt,
                    error=str(e),
                )
                raise TransportError(str(e)) from e

            delay = policy.compute_delay(attempt)
            logger.warning(
                "Transient failure, retrying",
                operation=label,
                attempt=attempt,
                max_retries=policy.max_retries,
                delay_ms=round(delay * 1000, 1),
                error=str(e),
            )
            sleep(delay)
