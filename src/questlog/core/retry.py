"""Bounded retry with exponential backoff for conflicting transactions."""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryBackoff:
    """Exponential backoff with jitter between retry attempts."""

    def __init__(
        self,
        base_delay: float = 0.05,
        max_delay: float = 0.5,
        jitter: float = 0.1
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._attempt = 0

    def next_delay(self) -> float:
        """Get next delay and increment attempt counter."""
        delay = min(self.base_delay * (2 ** self._attempt), self.max_delay)
        # Add jitter: +/- jitter%
        jitter_range = delay * self.jitter
        delay += random.uniform(-jitter_range, jitter_range)
        self._attempt += 1
        return max(0.0, delay)

    def reset(self):
        """Reset after a successful attempt."""
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Current attempt number."""
        return self._attempt


class RetryExhaustedError(Exception):
    """Raised when every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int,
    backoff: RetryBackoff,
    retry_on: tuple[type[BaseException], ...],
    label: str = "operation",
) -> tuple[T, int]:
    """Run an async operation, retrying on the given exception types.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        max_attempts: Upper bound on attempts (must be >= 1).
        backoff: Delay policy between attempts.
        retry_on: Exception types that count as transient.
        label: Name used in log messages.

    Returns:
        Tuple of (operation result, attempts used).

    Raises:
        RetryExhaustedError: If all attempts raised a retryable error.
        Exception: Any non-retryable error is propagated immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            result = await operation()
            backoff.reset()
            return result, attempt
        except retry_on as e:
            if attempt >= max_attempts:
                logger.error(f"{label} failed after {attempt} attempts: {e}")
                raise RetryExhaustedError(attempt, e) from e
            delay = backoff.next_delay()
            logger.warning(
                f"{label} conflicted (attempt {attempt}/{max_attempts}), retrying in {delay:.3f}s"
            )
            await asyncio.sleep(delay)
