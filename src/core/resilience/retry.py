"""
Retry utilities with exception-aware handling.

Uses the exception hierarchy to make intelligent retry decisions:
- Transient errors: retry with exponential backoff and equal jitter
- Auth errors: retry (credentials may be rotated underneath us)
- Permanent errors: fail immediately (no retry)
- Throttling: honour the server-provided retry_after when present

Every external call can additionally be bounded with run_with_timeout();
exceeding the bound raises OperationTimeoutError, which is transient.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any, TypeVar

from core.errors.exceptions import (
    OperationTimeoutError,
    PipelineError,
    ThrottlingError,
    classify_exception,
    wrap_exception,
)
from core.types import ErrorCategory

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _extract_error_category(wrapped: Exception) -> str:
    """Return a string error category from a wrapped exception."""
    if isinstance(wrapped, PipelineError):
        cat = wrapped.category
    else:
        cat = classify_exception(wrapped)
    return cat.value if hasattr(cat, "value") else str(cat)


def _log_retry_failure(
    operation: str,
    wrapped: Exception,
    e: Exception,
    error_category: str,
    config: "RetryConfig",
) -> bool:
    """Log permanent-error or max-retries-exhausted and return True if permanent."""
    error_type = type(wrapped).__name__
    if isinstance(wrapped, PipelineError) and not wrapped.is_retryable:
        logger.warning(
            "Permanent error for %s, not retrying: %s",
            operation,
            str(e)[:200],
            extra={
                "operation": operation,
                "error_type": error_type,
                "error_category": error_category,
                "error_message": str(e)[:200],
            },
        )
        return True

    logger.error(
        "Max retries exhausted for %s: %s",
        operation,
        str(e)[:200],
        extra={
            "operation": operation,
            "error_type": error_type,
            "error_category": error_category,
            "max_attempts": config.max_attempts,
            "error_message": str(e)[:200],
        },
    )
    return False


def _log_retry_attempt(
    operation: str,
    attempt: int,
    config: "RetryConfig",
    error_category: str,
    delay: float,
    e: Exception,
    wrapped: Exception,
) -> None:
    """Build log extras and emit the retry-attempt warning."""
    log_extras: dict[str, object] = {
        "operation": operation,
        "attempt": attempt + 1,
        "max_attempts": config.max_attempts,
        "error_category": error_category,
        "delay_seconds": round(delay, 3),
        "error_message": str(e)[:200],
    }

    using_server_delay = (
        config.respect_retry_after
        and isinstance(wrapped, ThrottlingError)
        and wrapped.retry_after is not None
    )

    if using_server_delay:
        log_extras["server_retry_after"] = wrapped.retry_after
        log_extras["delay_source"] = "server"
        log_message = "Retryable error for %s, will retry (using server-provided delay)"
    else:
        log_extras["delay_source"] = "exponential_backoff"
        log_message = "Retryable error for %s, will retry"

    logger.warning(log_message, operation, extra=log_extras)


def _safe_invoke_on_retry(
    on_retry: Callable[[Exception, int, float], None],
    wrapped: Exception,
    attempt: int,
    delay: float,
    operation: str,
) -> None:
    """Call the on_retry callback, swallowing and logging any errors."""
    try:
        on_retry(wrapped, attempt, delay)
    except Exception as cb_err:
        logger.warning(
            "Error in on_retry callback for %s: %s",
            operation,
            str(cb_err)[:100],
            extra={
                "operation": operation,
                "callback_error": str(cb_err)[:100],
            },
        )


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    # If True, don't retry permanent errors even if max_attempts > 0
    respect_permanent: bool = True

    # If True, use retry_after from ThrottlingError when available
    respect_retry_after: bool = True

    # Optional set of exception types to always retry (overrides classification)
    always_retry: set[type[Exception]] = field(default_factory=set)

    # Optional set of exception types to never retry (overrides classification)
    never_retry: set[type[Exception]] = field(default_factory=set)

    def __post_init__(self):
        """Ensure proper types from YAML/env vars."""
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)
        # bool('false') would be True, so only coerce non-bools
        self.respect_permanent = (
            self.respect_permanent
            if isinstance(self.respect_permanent, bool)
            else bool(self.respect_permanent)
        )
        self.respect_retry_after = (
            self.respect_retry_after
            if isinstance(self.respect_retry_after, bool)
            else bool(self.respect_retry_after)
        )

    def get_delay(self, attempt: int, error: Exception | None = None) -> float:
        """
        Calculate delay with equal jitter to prevent thundering herd.

        Args:
            attempt: 0-indexed attempt number
            error: Optional exception to check for retry_after

        Returns:
            Delay in seconds
        """
        if (
            self.respect_retry_after
            and isinstance(error, ThrottlingError)
            and error.retry_after
        ):
            return min(error.retry_after, self.max_delay)

        # Cap the exponent so long-running retry loops never overflow
        base_delay = self.base_delay * (self.exponential_base ** min(attempt, 32))
        base_delay = min(base_delay, self.max_delay)

        # Equal jitter: half fixed, half random
        jitter = random.uniform(0, base_delay / 2)
        delay = (base_delay / 2) + jitter

        return min(delay, self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """
        Determine if error should be retried.

        Args:
            error: The exception that occurred
            attempt: 0-indexed current attempt

        Returns:
            True if should retry
        """
        if attempt >= self.max_attempts - 1:
            return False

        if self.never_retry and isinstance(error, tuple(self.never_retry)):
            return False

        if self.always_retry and isinstance(error, tuple(self.always_retry)):
            return True

        if isinstance(error, PipelineError):
            if self.respect_permanent and not error.is_retryable:
                return False
            return error.is_retryable

        category = classify_exception(error)
        if self.respect_permanent and category == ErrorCategory.PERMANENT:
            return False

        return category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )


# Default configurations
DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0)
ALERT_RETRY = RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout: float | None,
    operation: str,
) -> T:
    """Await with a bounded timeout, raising OperationTimeoutError on expiry."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(operation, timeout, cause=e) from e


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    operation: str | None = None,
    timeout: float | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
    wrap_errors: bool = True,
    **kwargs: Any,
) -> T:
    """
    Await func(*args, **kwargs) with classification-driven retries.

    Args:
        func: Async callable to invoke on every attempt
        config: Retry configuration (defaults to DEFAULT_RETRY)
        operation: Name used in logs (defaults to func.__name__)
        timeout: Per-attempt timeout in seconds; expiry is a transient failure
        on_retry: Callback before each retry (error, attempt, delay)
        wrap_errors: If True, raise unknown exceptions wrapped in PipelineError

    Raises:
        The last (wrapped) error once retries are exhausted or the error
        is permanent.
    """
    config = config or DEFAULT_RETRY
    operation = operation or getattr(func, "__name__", "operation")
    last_error: Exception | None = None

    for attempt in range(config.max_attempts):
        try:
            result = await run_with_timeout(func(*args, **kwargs), timeout, operation)

            if attempt > 0:
                logger.info(
                    "Retry succeeded for %s after %d attempts",
                    operation,
                    attempt + 1,
                    extra={
                        "operation": operation,
                        "attempt": attempt + 1,
                        "total_attempts": config.max_attempts,
                    },
                )

            return result

        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = e
            wrapped = (
                wrap_exception(e)
                if wrap_errors and not isinstance(e, PipelineError)
                else e
            )
            error_category = _extract_error_category(wrapped)

            if not config.should_retry(wrapped, attempt):
                _log_retry_failure(operation, wrapped, e, error_category, config)
                if wrap_errors and wrapped is not e:
                    raise wrapped from e
                raise

            delay = config.get_delay(attempt, wrapped)
            _log_retry_attempt(
                operation, attempt, config, error_category, delay, e, wrapped,
            )

            if on_retry:
                _safe_invoke_on_retry(on_retry, wrapped, attempt, delay, operation)

            await asyncio.sleep(delay)

    # Only reachable with max_attempts < 1
    if last_error:
        raise last_error
    raise ValueError(f"RetryConfig.max_attempts must be >= 1, got {config.max_attempts}")


def with_retry_async(
    config: RetryConfig | None = None,
    on_retry: Callable[[Exception, int, float], None] | None = None,
    timeout: float | None = None,
    wrap_errors: bool = True,
):
    """
    Decorator for retrying async functions with intelligent backoff.

    Usage:
        @with_retry_async(config=ALERT_RETRY, timeout=5.0)
        async def send_alert(message):
            ...
    """

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await call_with_retry(
                func,
                *args,
                config=config,
                operation=func.__name__,
                timeout=timeout,
                on_retry=on_retry,
                wrap_errors=wrap_errors,
                **kwargs,
            )

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "DEFAULT_RETRY",
    "ALERT_RETRY",
    "call_with_retry",
    "run_with_timeout",
    "with_retry_async",
]
