"""Retry logic for provider calls.

Only transient provider rejections (throttling, request limits) are
retried, with exponential backoff and jitter. Every other error is
returned to the caller on the first attempt.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .exceptions import ProviderRejected

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of retries (0 = no retries)
        initial_delay: Delay before the first retry in seconds
        max_delay: Cap for the backoff delay
        backoff_factor: Multiplier applied per attempt
    """

    max_attempts: int = 0
    initial_delay: float = 2.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Calculate the delay before retrying after ``attempt`` (1-based).

        Uses exponential backoff with +/-10% jitter.
        """
        if attempt <= 1:
            delay = self.initial_delay
        else:
            delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))
        delay = min(delay, self.max_delay)

        jitter = delay * 0.1 * (random.random() * 2 - 1)
        return max(0.0, delay + jitter)


def is_transient(exc: BaseException) -> bool:
    """Check if an exception is worth retrying."""
    return isinstance(exc, ProviderRejected) and exc.transient


async def retry_with_backoff(
    call: Callable[[], Awaitable[Any]],
    config: RetryConfig,
    name: str = "",
    on_retry: Callable[[str, int, int, str, float], None] | None = None,
) -> Any:
    """Await ``call()``, retrying transient provider rejections.

    Args:
        call: Callable returning a fresh awaitable per attempt
        config: Retry configuration
        name: Resource name for logging
        on_retry: Called with (name, attempt, max_attempts, error, delay)
            before each retry

    Returns:
        The result of the first successful attempt

    Raises:
        The last exception when attempts are exhausted or the error
        is not transient
    """
    total_attempts = config.max_attempts + 1

    for attempt in range(1, total_attempts + 1):
        try:
            return await call()
        except ProviderRejected as e:
            if attempt >= total_attempts or not is_transient(e):
                raise
            delay = config.get_delay(attempt)
            logger.info(
                f"Retry {attempt}/{config.max_attempts} for {name}: {e.reason} - waiting {delay:.1f}s"
            )
            if on_retry:
                on_retry(name, attempt, config.max_attempts, e.reason, delay)
            await asyncio.sleep(delay)

    # range() always returns or raises above
    raise AssertionError("unreachable")
