"""Infrastructure components for Parley.

This package contains infrastructure-level components like:
- Retry helpers for rate-limited broker calls
"""

from parley_core.infrastructure.retry import (
    RetryConfig,
    call_with_retry,
    exponential_backoff,
    rate_limit_retry,
)

__all__ = [
    "RetryConfig",
    "call_with_retry",
    "exponential_backoff",
    "rate_limit_retry",
]
