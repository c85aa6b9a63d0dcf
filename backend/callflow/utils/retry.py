# backend/callflow/utils/retry.py
"""
Exponential backoff for provider HTTP calls.

Only speech synthesis is retried: it sits on the live call path, and a
dropped connection or a 429 is usually gone a second later. Anything not
listed as retryable propagates on the first failure.
"""

import asyncio
import random
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

import httpx

from callflow.utils.logger import logger


class RetryError(Exception):
    """All attempts failed; `last_exception` is the final cause."""

    def __init__(self, message: str, last_exception: Optional[Exception] = None, attempts: int = 0):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


class RateLimitError(Exception):
    """HTTP 429 from a provider."""

    def __init__(self, retry_after: float = 60.0, message: str = "Rate limited"):
        super().__init__(message)
        self.retry_after = retry_after


RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    RateLimitError,
)


def backoff_delay(
    attempt: int,
    initial_delay: float,
    backoff_factor: float,
    max_delay: float,
    jitter: bool = True,
) -> float:
    """Delay before retry number `attempt` (1-based), capped at max_delay."""
    delay = initial_delay * (backoff_factor ** (attempt - 1))
    if jitter:
        delay *= 0.5 + random.random()
    return min(delay, max_delay)


def async_retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    operation_name: Optional[str] = None,
) -> Callable:
    """
    Retry an async callable with exponential backoff.

    A RateLimitError waits for its Retry-After (capped at max_delay) instead
    of the backoff delay. Raises RetryError once max_attempts are used up.
    """
    retryable = retryable_exceptions or RETRYABLE_EXCEPTIONS

    def decorator(func: Callable) -> Callable:
        op_name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            last_exception: Optional[Exception] = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable as e:
                    last_exception = e

                if attempt == max_attempts:
                    break

                if isinstance(last_exception, RateLimitError):
                    wait = min(last_exception.retry_after, max_delay)
                else:
                    wait = backoff_delay(attempt, initial_delay, backoff_factor, max_delay, jitter)
                logger.warning(
                    f"[{op_name}] attempt {attempt}/{max_attempts} failed "
                    f"({type(last_exception).__name__}: {last_exception}); retrying in {wait:.1f}s"
                )
                await asyncio.sleep(wait)

            logger.error(f"[{op_name}] giving up after {max_attempts} attempts: {last_exception}")
            raise RetryError(
                f"[{op_name}] Failed after {max_attempts} attempts",
                last_exception=last_exception,
                attempts=max_attempts,
            )

        return wrapper

    return decorator


def synthesis_retry() -> Callable:
    """Short budget for TTS on the call path: 3 tries within a few seconds."""
    return async_retry(
        max_attempts=3,
        initial_delay=0.5,
        max_delay=5.0,
        backoff_factor=2.0,
        operation_name="elevenlabs_tts",
    )


def check_rate_limit_response(response: httpx.Response) -> None:
    """Raise RateLimitError for a 429 response, honouring Retry-After."""
    if response.status_code != 429:
        return

    retry_after = 60.0
    header = response.headers.get("Retry-After", "")
    if header:
        try:
            retry_after = float(header)
        except ValueError:
            pass

    raise RateLimitError(retry_after=retry_after, message="API rate limit exceeded")
