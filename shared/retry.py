"""
Retry logic with exponential backoff.

``execute`` wraps one fallible async operation with bounded retry;
``retry_with_backoff`` is the decorator form built on top of it.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx

from shared.config import settings
from shared.errors import (
    PipelineError,
    RateLimitError,
    RetryableError,
    RetryExhaustedError,
    ValidationError,
)
from shared.logging import get_logger

T = TypeVar("T")
logger = get_logger("retry")


@dataclass(frozen=True)
class RetryOptions:
    """Per-call retry configuration."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True
    retryable_exceptions: Tuple[Type[BaseException], ...] = (RetryableError,)
    # Label used in log lines
    operation_name: str = "operation"

    @classmethod
    def from_settings(cls, operation_name: str = "operation") -> "RetryOptions":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            jitter=settings.retry_jitter,
            operation_name=operation_name,
        )


def compute_delay(attempt: int, options: RetryOptions, error: Optional[BaseException] = None) -> float:
    """
    Backoff delay before the retry that follows ``attempt`` (0-based).

    A rate limit with a Retry-After hint wins over the exponential schedule.
    """
    retry_after = getattr(error, "retry_after", None)
    if isinstance(error, RateLimitError) and retry_after is not None:
        return min(float(retry_after), options.max_delay)

    delay = options.base_delay * (2 ** attempt)
    if options.jitter:
        delay = delay * random.uniform(0.5, 1.5)
    return min(delay, options.max_delay)


async def execute(operation: Callable[[], Awaitable[T]], options: Optional[RetryOptions] = None) -> T:
    """
    Run ``operation`` with retry on transient failures.

    Args:
        operation: Zero-argument coroutine function
        options: Retry configuration for this call

    Returns:
        Result of the operation

    Raises:
        RetryExhaustedError: Transient failure persisted for max_attempts
        Exception: Any non-transient failure, unchanged and unretried
    """
    options = options or RetryOptions()
    last_exception: Optional[BaseException] = None

    for attempt in range(options.max_attempts):
        try:
            return await operation()
        except options.retryable_exceptions as e:
            last_exception = e
            if attempt < options.max_attempts - 1:
                delay = compute_delay(attempt, options, e)
                logger.warning(
                    f"Retry attempt {attempt + 1}/{options.max_attempts} for {options.operation_name} "
                    f"after {delay:.2f}s delay",
                    extra={"error": str(e), "attempt": attempt + 1}
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    f"All {options.max_attempts} retry attempts failed for {options.operation_name}",
                    extra={"error": str(e)}
                )

    raise RetryExhaustedError(last_exception, options.max_attempts)


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 2,
    max_delay: float = 30.0,
    jitter: bool = False,
    retryable_exceptions: Tuple[Type[BaseException], ...] = (RetryableError,)
):
    """
    Decorator for retrying coroutine functions with exponential backoff.

    Example:
        @retry_with_backoff(max_attempts=3, base_delay=2)
        async def call_api():
            # Will retry on RetryableError
            return await api_client.call(...)
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            options = RetryOptions(
                max_attempts=max_attempts,
                base_delay=base_delay,
                max_delay=max_delay,
                jitter=jitter,
                retryable_exceptions=retryable_exceptions,
                operation_name=func.__name__,
            )
            return await execute(lambda: func(*args, **kwargs), options)

        return wrapper

    return decorator


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_http_error(exc: Exception, provider_id: Optional[str] = None) -> PipelineError:
    """
    Translate an httpx failure into the error taxonomy.

    429 becomes RateLimitError, 5xx/timeouts/connection failures become
    RetryableError, any other 4xx is a ValidationError.
    """
    if isinstance(exc, PipelineError):
        return exc
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        body = exc.response.text[:500]
        if status_code == 429:
            return RateLimitError(
                f"Rate limited (429): {body}",
                retry_after=parse_retry_after(exc.response.headers.get("retry-after")),
                provider_id=provider_id,
            )
        if status_code >= 500:
            return RetryableError(f"Server error ({status_code}): {body}", provider_id=provider_id)
        return ValidationError(f"Request rejected ({status_code}): {body}", provider_id=provider_id)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return RetryableError(f"Network error: {exc}", provider_id=provider_id)
    return PipelineError(str(exc), provider_id=provider_id)
