"""
Resilience patterns for error recovery

Transient/terminal error classification, exponential backoff and a retry loop
whose sleep can be injected so callers and tests control time.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from app.exceptions import CalendarServiceError

logger = logging.getLogger(__name__)

# Substrings of error messages that indicate a transient provider condition
RETRYABLE_MESSAGE_PATTERNS = (
    "quota exceeded",
    "rate limit",
    "temporarily unavailable",
    "internal error",
    "service unavailable",
    "backend error",
    "timeout",
    "timed out",
    "connection reset",
    "network error",
)

Sleep = Callable[[float], Awaitable[None]]


def is_retryable_error(error: BaseException) -> bool:
    """
    Classify an error as transient (worth retrying) or terminal.

    Provider errors carry their own classification; transport failures are
    always transient; anything else falls back to message matching.
    """
    if isinstance(error, CalendarServiceError):
        return error.retryable
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError, httpx.TransportError)):
        return True

    message = str(error).lower()
    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)


def backoff_delay(attempt: int, base_delay: float = 2.0, factor: float = 2.0) -> float:
    """
    Delay before retrying after the given (1-based) failed attempt.

    backoff_delay(1) == base_delay, backoff_delay(2) == base_delay * factor, ...
    """
    if attempt < 1:
        return 0.0
    return base_delay * (factor ** (attempt - 1))


async def retry_async(
    operation: Callable[[], Awaitable[Any]],
    *,
    step: str,
    max_attempts: int = 3,
    base_delay: float = 2.0,
    sleep: Sleep = asyncio.sleep,
    retry_if: Callable[[BaseException], bool] = is_retryable_error,
    context: Optional[str] = None,
) -> Any:
    """
    Run an async operation, retrying transient failures with exponential backoff.

    Terminal errors and the last transient error are re-raised unchanged.

    Args:
        operation: Zero-argument coroutine factory
        step: Name of the step, used in log messages
        max_attempts: Maximum number of attempts (including the first)
        base_delay: Delay after the first failure in seconds
        sleep: Awaitable sleep used between attempts
        retry_if: Predicate deciding whether an error is worth retrying
        context: Extra identifier for log messages
    """
    label = f"{step} ({context})" if context else step

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_attempts or not retry_if(e):
                if attempt > 1:
                    logger.error(f"{label} failed after {attempt} attempts: {e}")
                raise

            delay = backoff_delay(attempt, base_delay)
            logger.warning(
                f"{label} attempt {attempt}/{max_attempts} failed, retrying in {delay:.1f}s: {e}"
            )
            await sleep(delay)


def with_retry(max_attempts: int = 3, delay: float = 1.0, retry_if: Callable[[BaseException], bool] = is_retryable_error):
    """
    Decorator for retrying failed operations

    Args:
        max_attempts: Maximum number of retry attempts
        delay: Delay after the first failure in seconds
        retry_if: Predicate deciding whether an error is worth retrying
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await retry_async(
                lambda: func(*args, **kwargs),
                step=func.__name__,
                max_attempts=max_attempts,
                base_delay=delay,
                retry_if=retry_if,
            )

        return wrapper
    return decorator
