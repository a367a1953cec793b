"""
Retry Decorator with Exponential Backoff
Automatic retry logic for transient provider failures
"""

import asyncio
import functools
import random
from typing import Type, Tuple, Optional, Callable

from .logger import get_logger
from .exceptions import ProviderError, RateLimitError

logger = get_logger()


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, ProviderError):
        return exc.retryable
    return True


def retry_async(
    max_retries: int = 2,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (ProviderError,),
    on_retry: Optional[Callable[[Exception, int], None]] = None
):
    """
    Async retry decorator with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries
        exponential_base: Base for exponential backoff calculation
        jitter: Add random jitter to prevent thundering herd
        retryable_exceptions: Tuple of exception types to retry on.
            A ProviderError with retryable=False is raised immediately.
        on_retry: Optional callback called on each retry (exception, attempt)
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except retryable_exceptions as e:
                    if not _is_retryable(e) or attempt >= max_retries:
                        if attempt:
                            logger.error(
                                f"Giving up on {func.__name__} after {attempt + 1} attempts: {e}"
                            )
                        raise

                    # Rate limits may carry an explicit wait
                    if isinstance(e, RateLimitError) and e.details.get("retry_after"):
                        delay = min(float(e.details["retry_after"]), max_delay)
                    else:
                        delay = min(base_delay * (exponential_base ** attempt), max_delay)
                        if jitter:
                            delay = delay * (0.5 + random.random())

                    logger.warning(
                        f"Retry {attempt + 1}/{max_retries} for {func.__name__} "
                        f"after {delay:.1f}s: {str(e)[:100]}"
                    )
                    if on_retry:
                        on_retry(e, attempt + 1)
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
