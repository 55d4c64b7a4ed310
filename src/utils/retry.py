"""Retry helpers for provider calls that can hit rate limits.

Only rate-limit failures are retried. Anything else is re-raised on the first
attempt so callers see the original error.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY = 1.0

RATE_LIMIT_MARKERS = ("429", "RESOURCE_EXHAUSTED")


class APIRateLimitError(Exception):
    """Raised when the provider signals a rate limit."""

    pass


class MaxRetriesExceededError(Exception):
    """Raised when every attempt failed with a rate limit."""

    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(f"Max retries exceeded after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


def is_rate_limit_error(error: BaseException) -> bool:
    """Check whether an error signals a rate limit.

    Looks at the status attributes google-genai and httpx errors carry, then
    falls back to the message text.
    """
    if isinstance(error, APIRateLimitError):
        return True

    for attr in ("code", "status_code", "status"):
        value = getattr(error, attr, None)
        if value is None:
            continue
        if value == 429 or str(value) in RATE_LIMIT_MARKERS:
            return True

    message = str(error)
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def backoff_delay(attempt: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Exponential delay for a zero-based attempt number, plus jitter."""
    return base_delay * (2**attempt) + random.uniform(0, base_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run an async operation, retrying rate-limit failures with backoff.

    Args:
        operation: Zero-argument coroutine factory. Called once per attempt.
        max_attempts: Total number of attempts, including the first.
        base_delay: Delay before the first retry, doubled each time.
        sleep: Awaitable sleep function (injectable for tests).

    Returns:
        Whatever the operation returns.

    Raises:
        MaxRetriesExceededError: Every attempt hit a rate limit.
        Exception: Any non-rate-limit error, unchanged, on first occurrence.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: BaseException | None = None
    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as e:
            if not is_rate_limit_error(e):
                raise
            last_error = e
            if attempt == max_attempts - 1:
                break
            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"Rate limited (attempt {attempt + 1}/{max_attempts}), "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)

    logger.error(f"Giving up after {max_attempts} rate-limited attempts")
    raise MaxRetriesExceededError(last_error, max_attempts) from last_error
