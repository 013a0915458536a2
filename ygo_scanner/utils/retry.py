"""
Retry utilities with exponential backoff.

Used around calls to unreliable collaborators (the external card catalog,
remote image URLs, the vision identification service). Recognition itself is
never retried here; re-running a scan is an explicit lifecycle operation.
"""

import asyncio
import functools
import random
import time
from typing import Any, Callable, Optional, Type, Union

import aiohttp


def _backoff_delay(attempt: int, base_delay: float, max_delay: float,
                   exponential_base: float, jitter: bool) -> float:
    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay *= (0.5 + random.random() * 0.5)
    return delay


def retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: Union[Type[Exception], tuple] = Exception,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    logger: Optional[Any] = None
):
    """
    Retry decorator with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts, including the first call
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Whether to add random jitter to delays
        exceptions: Exception types to retry on
        should_retry: Optional predicate; errors it rejects are raised at once
        logger: structlog logger for retry logging

    Returns:
        Decorated function with retry logic (sync or async)
    """
    def decorator(func: Callable) -> Callable:
        def _give_up(attempt: int, error: Exception) -> bool:
            if should_retry is not None and not should_retry(error):
                return True
            if attempt == max_attempts:
                if logger:
                    logger.error(
                        "Retries exhausted",
                        function=func.__name__,
                        attempts=max_attempts,
                        final_exception=str(error),
                    )
                return True
            return False

        def _log_retry(attempt: int, delay: float, error: Exception) -> None:
            if logger:
                logger.warning(
                    "Retrying after failure",
                    function=func.__name__,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay=round(delay, 2),
                    exception=str(error),
                )

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if _give_up(attempt, e):
                        raise
                    delay = _backoff_delay(attempt, base_delay, max_delay, exponential_base, jitter)
                    _log_retry(attempt, delay, e)
                    time.sleep(delay)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if _give_up(attempt, e):
                        raise
                    delay = _backoff_delay(attempt, base_delay, max_delay, exponential_base, jitter)
                    _log_retry(attempt, delay, e)
                    await asyncio.sleep(delay)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return wrapper

    return decorator


RETRYABLE_STATUS = (429, 500, 502, 503, 504)


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error from a remote collaborator is worth retrying.

    Args:
        error: The exception to check

    Returns:
        True if the error is transient, False otherwise
    """
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status in RETRYABLE_STATUS

    retryable_errors = (
        aiohttp.ClientConnectionError,
        asyncio.TimeoutError,
        ConnectionError,
        TimeoutError,
    )
    if isinstance(error, retryable_errors):
        return True

    error_str = str(error).lower()
    retryable_keywords = [
        'timeout', 'connection refused', 'network unreachable',
        'temporary failure', 'service unavailable', 'rate limit',
        'too many requests', 'gateway timeout'
    ]

    return any(keyword in error_str for keyword in retryable_keywords)
