"""
Retry and backoff utilities
Automatic retries for network errors and transient outages.
"""

import asyncio
import logging
import random
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryError(Exception):
    """Raised when every attempt failed"""
    def __init__(self, message: str, last_error: Optional[Exception] = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


def exponential_backoff(attempt: int,
                        base_delay: float = 1.0,
                        max_delay: float = 60.0,
                        jitter: bool = True) -> float:
    """
    Exponential backoff delay

    Args:
        attempt: Attempt number (0-based)
        base_delay: Base delay in seconds
        max_delay: Upper bound in seconds
        jitter: Apply a random factor in [0.5, 1.0)

    Returns:
        Seconds to wait
    """
    delay = min(base_delay * (2 ** attempt), max_delay)

    if jitter:
        delay *= (0.5 + random.random() * 0.5)

    return delay


def _wait_time(backoff: str, attempt: int, delay: float, max_delay: float) -> float:
    if backoff == "fixed":
        return delay
    if backoff == "linear":
        return min(delay * (attempt + 1), max_delay)
    return exponential_backoff(attempt, delay, max_delay)


async def run_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: str = "exponential",
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> T:
    """
    Await ``func`` up to ``max_attempts`` times.

    Raises:
        RetryError: when the attempts (or the overall timeout) are exhausted.
            The original exception is kept on ``last_error``.
    """
    start_time = time.monotonic()
    last_exception: Optional[Exception] = None
    name = getattr(func, "__name__", repr(func))

    for attempt in range(max_attempts):
        if timeout and (time.monotonic() - start_time) > timeout:
            raise RetryError(
                f"Timeout exceeded after {attempt} attempts",
                last_exception,
                attempt
            )
        try:
            result = await func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Successfully executed {name} after {attempt + 1} attempts")
            return result
        except exceptions as e:
            last_exception = e
            if attempt == max_attempts - 1:
                logger.error(f"Failed to execute {name} after {max_attempts} attempts: {e}")
                raise RetryError(f"Max attempts ({max_attempts}) exceeded", e, max_attempts) from e

            logger.warning(f"Attempt {attempt + 1}/{max_attempts} failed for {name}: {e}")
            if on_retry:
                on_retry(e, attempt + 1)

            wait_time = _wait_time(backoff, attempt, delay, max_delay)
            logger.debug(f"Waiting {wait_time:.2f}s before retry...")
            await asyncio.sleep(wait_time)

    raise RetryError("Unexpected retry error", last_exception, max_attempts)


def retry_async(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: str = "exponential",
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[Exception, int], None]] = None,
    timeout: Optional[float] = None
) -> Callable:
    """
    Retry decorator for coroutine functions

    Args: same as run_with_retry()
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await run_with_retry(
                func,
                *args,
                max_attempts=max_attempts,
                delay=delay,
                backoff=backoff,
                max_delay=max_delay,
                exceptions=exceptions,
                on_retry=on_retry,
                timeout=timeout,
                **kwargs,
            )

        return wrapper
    return decorator
