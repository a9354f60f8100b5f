"""Retry logic with exponential backoff for async calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class RetryConfig:
    """
    Configuration for retry behavior.

    Parameters
    ----------
    max_attempts : int
        Total number of attempts, including the first call
    base_delay : float
        Delay in seconds before the second attempt
    max_delay : float
        Maximum delay between attempts
    exponential_base : float
        Base for exponential backoff calculation

    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
    ) -> None:
        if max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {max_attempts}"
            raise ValueError(msg)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay after a failed attempt using exponential backoff.

        Parameters
        ----------
        attempt : int
            Failed attempt number (0-indexed)

        Returns
        -------
        float
            Delay in seconds

        """
        delay = self.base_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)


def with_retry(
    config: RetryConfig | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Sleep = asyncio.sleep,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator adding retry with exponential backoff to a coroutine function.

    Parameters
    ----------
    config : RetryConfig | None
        Retry configuration. Uses default config if None.
    retry_on : tuple[type[BaseException], ...]
        Exception types that trigger another attempt; anything else propagates at once
    sleep : Sleep
        Awaitable sleep, injectable for tests

    Returns
    -------
    Callable
        Decorated coroutine function with retry logic

    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(config.max_attempts):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt == config.max_attempts - 1:
                        raise
                    delay = config.get_delay(attempt)
                    logger.debug(
                        "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                        func.__qualname__,
                        attempt + 1,
                        config.max_attempts,
                        e,
                        delay,
                    )
                    await sleep(delay)
            msg = "unreachable"
            raise AssertionError(msg)

        return wrapper

    return decorator
