"""Bounded exponential backoff for storage operations."""

import asyncio
import logging
import math
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2.0,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for a given attempt using exponential backoff.

        Args:
            attempt: The current attempt number (1-indexed).

        Returns:
            The delay in seconds, capped at max_delay.
        """
        if attempt < 1:
            return self.initial_delay

        delay = self.initial_delay * math.pow(self.backoff_multiplier, attempt - 1)
        return min(delay, self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.STORAGE_RETRY_ATTEMPTS,
            initial_delay=settings.STORAGE_RETRY_INITIAL_DELAY,
            max_delay=settings.STORAGE_RETRY_MAX_DELAY,
        )


NO_RETRY = RetryConfig(max_attempts=1, initial_delay=0.0, max_delay=0.0)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retry_on: tuple[type[BaseException], ...],
    description: str = "operation",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """Run an async operation, retrying on the given exceptions.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        config: Retry configuration
        retry_on: Exception types that trigger another attempt
        description: Label used in log messages
        sleep: Sleep coroutine (injectable for tests)

    Returns:
        The result of the first successful attempt

    Raises:
        The last exception once attempts are exhausted.
    """
    sleep = sleep or asyncio.sleep
    attempts = max(1, config.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as e:
            if attempt >= attempts:
                raise
            delay = config.calculate_delay(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{attempts}), "
                f"retrying in {delay:.1f}s: {e}"
            )
            await sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{description}: retry loop exited without result")
