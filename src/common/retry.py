"""
Retry utilities for calls to external services.

Defaults to a single attempt; a failed call goes straight to the caller's
fallback. Raise ``RetryConfig.max_retries`` to allow further attempts.
"""

import random
import asyncio
from typing import Any, Awaitable, Callable, TypeVar
import logging

logger = logging.getLogger(__name__)

T = TypeVar("T")


def calculate_retry_delay(
    attempt: int,
    base_delay: float = 0.5,
    max_delay: float = 5.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    backoff_factor: float = 0.1,
) -> float:
    """
    Calculate retry delay with exponential backoff and jitter.

    Args:
        attempt: Current attempt number (0-based)
        base_delay: Base delay in seconds
        max_delay: Maximum delay
        exponential_base: Base for exponential calculation
        jitter: Whether to add jitter
        backoff_factor: Factor for jitter calculation

    Returns:
        Calculated delay in seconds
    """
    delay = min(base_delay * (exponential_base**attempt), max_delay)

    if jitter:
        jitter_range = delay * backoff_factor
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 0,
        base_delay: float = 0.5,
        max_delay: float = 5.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        backoff_factor: float = 0.1,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_factor = backoff_factor

    @classmethod
    def from_settings(cls, settings) -> "RetryConfig":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    def get_delay(self, attempt: int) -> float:
        """Get retry delay for given attempt."""
        return calculate_retry_delay(
            attempt=attempt,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
            backoff_factor=self.backoff_factor,
        )


async def retry_async(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retry_exceptions: tuple = (Exception,),
    stop_exceptions: tuple = (),
    operation: str = "external call",
) -> T:
    """Await ``func()`` up to ``config.max_retries + 1`` times.

    The last exception is re-raised unchanged so callers keep their own
    error taxonomy. ``stop_exceptions`` are never retried.
    """
    for attempt in range(config.max_retries + 1):
        try:
            return await func()
        except stop_exceptions:
            raise
        except retry_exceptions as e:
            if attempt == config.max_retries:
                raise
            delay = config.get_delay(attempt)
            logger.warning(
                f"Attempt {attempt + 1}/{config.max_retries + 1} failed for {operation}: {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
