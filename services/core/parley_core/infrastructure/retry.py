"""Retry utilities for broker calls.

Usage:
    config = rate_limit_retry(delay=5.0)
    page = await call_with_retry(
        gateway.list_conversations, connection, cursor, config=config
    )
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from parley_core.providers.base import RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        retryable_exceptions: tuple = (Exception,),
    ) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.retryable_exceptions = retryable_exceptions


def exponential_backoff(attempt: int, config: RetryConfig) -> float:
    """Calculate exponential backoff delay."""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    return min(delay, config.max_delay)


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig,
    **kwargs: Any,
) -> T:
    """Await ``func`` and retry on the configured exceptions.

    The last exception propagates once attempts are exhausted.
    """
    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as e:
            if attempt >= config.max_attempts:
                raise
            delay = exponential_backoff(attempt, config)
            logger.warning(
                f"{type(e).__name__} on attempt {attempt}/{config.max_attempts}, "
                f"retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected retry state")


def rate_limit_retry(delay: float) -> RetryConfig:
    """Retry a rate-limited broker call exactly once after ``delay`` seconds."""
    return RetryConfig(
        max_attempts=2,
        base_delay=delay,
        max_delay=delay,
        exponential_base=1.0,
        retryable_exceptions=(RateLimitedError,),
    )
