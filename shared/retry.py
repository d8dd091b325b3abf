"""
Retry support for transient chain endpoint failures.
"""

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger

logger = get_logger("proxy.retry")


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 backoff_strategy: str = "exponential"):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy


class RetryError(Exception):
    """Every attempt failed with a retryable exception."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                       config: Optional[RetryConfig] = None,
                       operation: Optional[str] = None) -> Callable:
    """Retry an async callable while it raises one of ``exceptions``.

    Other exceptions propagate from the first attempt unchanged. Once
    ``config.max_attempts`` is reached a ``RetryError`` wrapping the last
    failure is raised.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        label = operation or func.__name__

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 1
            while True:
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= config.max_attempts:
                        logger.error("Giving up on chain call", operation=label, attempts=attempt, error=str(e))
                        raise RetryError(
                            f"{label} failed after {attempt} attempts: {e}",
                            last_exception=e,
                            attempts=attempt,
                        ) from e

                    delay = backoff_delay(attempt, config)
                    logger.warning("Chain call failed, retrying", operation=label, attempt=attempt, delay=delay, error=str(e))
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 1:
                    logger.info("Chain call recovered", operation=label, attempt=attempt)
                return result

        return wrapper

    return decorator


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (1-based)."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    if config.jitter:
        spread = delay * 0.1
        delay += random.uniform(-spread, spread)

    return max(0.0, delay)
