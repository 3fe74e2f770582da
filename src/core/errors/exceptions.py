"""
Unified exception hierarchy for the kit telemetry pipeline.

Provides typed exceptions with retry classification so every stage can make
the same decision about a failure: retry it, recover locally, escalate it,
or stop the partition.
"""

import errno

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.AUTH,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


# =============================================================================
# Authentication Errors
# =============================================================================


class AuthError(PipelineError):
    """Credential rejected by a stream, channel or store (401, expired SAS)."""

    category = ErrorCategory.AUTH


# =============================================================================
# Transient I/O Errors
# =============================================================================


class TransientIOError(PipelineError):
    """Read/write/route timeouts, throttling and dropped connections.

    Retried with bounded exponential backoff; never surfaced as a pipeline
    failure unless the retry budget is exhausted.
    """

    category = ErrorCategory.TRANSIENT


class ThrottlingError(TransientIOError):
    """Rate limited (429 / ServerBusy) - should back off."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after  # Seconds to wait if provided


class OperationTimeoutError(TransientIOError):
    """An external call exceeded its bounded timeout."""

    def __init__(
        self,
        operation: str,
        timeout_seconds: float,
        cause: Exception | None = None,
    ):
        super().__init__(
            f"{operation} timed out after {timeout_seconds:.2f}s",
            cause,
            {"operation": operation, "timeout_seconds": timeout_seconds},
        )
        self.operation = operation
        self.timeout_seconds = timeout_seconds


# =============================================================================
# Permanent Errors (Don't Retry)
# =============================================================================


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class PermanentSourceError(PermanentError):
    """Partition gone or stream malformed - fatal for that partition's worker."""

    def __init__(
        self,
        message: str,
        partition_id: str | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        context = dict(context or {})
        if partition_id is not None:
            context.setdefault("partition_id", partition_id)
        super().__init__(message, cause, context)
        self.partition_id = partition_id


# =============================================================================
# Pipeline Outcome Errors
# =============================================================================


class ClassificationAnomaly(PipelineError):
    """Payload could not be parsed or evaluated.

    Recovered locally by the classifier: the event is downgraded to routine
    and flagged as malformed, never dropped.
    """

    category = ErrorCategory.PERMANENT


class AlertDeliveryExhausted(PipelineError):
    """Alert delivery used its whole retry budget.

    Recovered at the pipeline level (the event is still persisted) and
    surfaced as a degradation signal for operator escalation.
    """

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        device_id: str,
        event_id: str,
        attempts: int,
        cause: Exception | None = None,
    ):
        super().__init__(
            f"Alert delivery exhausted for {device_id}/{event_id} after {attempts} attempts",
            cause,
            {"device_id": device_id, "event_id": event_id, "attempts": attempts},
        )
        self.device_id = device_id
        self.event_id = event_id
        self.attempts = attempts


class PersistenceExhausted(PipelineError):
    """Store write could not be acknowledged within the operator's bound.

    The one condition that blocks checkpoint advance; the partition stalls
    with an explicit alarm instead of losing the record.
    """

    category = ErrorCategory.PERMANENT

    def __init__(
        self,
        device_id: str,
        event_id: str,
        attempts: int,
        cause: Exception | None = None,
    ):
        super().__init__(
            f"Persistence exhausted for {device_id}/{event_id} after {attempts} attempts",
            cause,
            {"device_id": device_id, "event_id": event_id, "attempts": attempts},
        )
        self.device_id = device_id
        self.event_id = event_id
        self.attempts = attempts


# =============================================================================
# Error Classification Utilities
# =============================================================================

# Markers for string-based detection (fallback for non-PipelineError exceptions)
AUTH_ERROR_MARKERS = frozenset(
    {
        "401",
        "unauthorized",
        "authentication",
        "token expired",
        "invalid token",
        "sas token",
        "signature did not match",
    }
)

TRANSIENT_ERROR_MARKERS = frozenset(
    {
        "429",
        "503",
        "502",
        "504",
        "timeout",
        "timed out",
        "connection",
        "throttl",
        "server busy",
        "rate limit",
        "temporarily unavailable",
        "service unavailable",
    }
)


def is_transient_error(exc: Exception) -> bool:
    """
    Check if exception is transient (retriable).

    Returns True if this is a transient error that may succeed on retry.
    """
    if isinstance(exc, PipelineError):
        return exc.category == ErrorCategory.TRANSIENT

    error_str = str(exc).lower()
    return any(marker in error_str for marker in TRANSIENT_ERROR_MARKERS)


def is_retryable_error(exc: Exception) -> bool:
    """
    Check if exception should be retried.

    Retryable errors include:
    - Transient errors (connection, timeout, throttling, 5xx)
    - Auth errors (credentials may be rotated underneath us)
    - Unknown errors (conservative retry)

    Non-retryable:
    - Permanent errors (partition gone, 404, 403, validation)
    """
    if isinstance(exc, PipelineError):
        return exc.is_retryable

    category = classify_exception(exc)
    return category in (
        ErrorCategory.TRANSIENT,
        ErrorCategory.AUTH,
        ErrorCategory.UNKNOWN,
    )


def classify_http_status(status_code: int) -> ErrorCategory:
    """Classify HTTP status code into error category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code == 401:
        return ErrorCategory.AUTH

    if status_code in (408, 429):
        return ErrorCategory.TRANSIENT

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def classify_os_error(error: OSError) -> ErrorCategory:
    """
    Classify OSError by errno into error category.

    Conservative classification: only mark as PERMANENT if certain.
    Disk full (ENOSPC), read-only filesystem (EROFS), permission denied (EACCES/EPERM).
    """
    permanent_errnos = (errno.ENOSPC, errno.EROFS, errno.EACCES, errno.EPERM)
    return ErrorCategory.PERMANENT if error.errno in permanent_errnos else ErrorCategory.TRANSIENT


def classify_exception(exc: Exception) -> ErrorCategory:
    """Classify an exception into error category."""
    if isinstance(exc, PipelineError):
        return exc.category

    # asyncio.TimeoutError is an alias of the builtin since 3.11
    if isinstance(exc, TimeoutError):
        return ErrorCategory.TRANSIENT

    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return classify_http_status(status_code)

    if isinstance(exc, OSError) and exc.errno is not None:
        return classify_os_error(exc)

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "connectionerror",
        "connection refused",
        "connection reset",
        "connection aborted",
        "network unreachable",
        "name resolution",
        "broken pipe",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    if any(m in exc_str for m in AUTH_ERROR_MARKERS):
        return ErrorCategory.AUTH

    if "429" in exc_str or "throttl" in exc_str or "server busy" in exc_str:
        return ErrorCategory.TRANSIENT

    if "503" in exc_str or "502" in exc_str or "504" in exc_str:
        return ErrorCategory.TRANSIENT

    if "403" in exc_str or "forbidden" in exc_str:
        return ErrorCategory.PERMANENT

    if "404" in exc_str or "not found" in exc_str:
        return ErrorCategory.PERMANENT

    return ErrorCategory.UNKNOWN


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """Wrap a generic exception in appropriate PipelineError subclass."""
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    category = classify_exception(exc)
    exc_str = str(exc).lower()
    context = context or {}

    if isinstance(exc, TimeoutError) or "timeout" in exc_str:
        context["error_type"] = "timeout"
    elif "429" in exc_str or "throttl" in exc_str or "server busy" in exc_str:
        context["error_type"] = "throttling"
    elif "404" in exc_str or "not found" in exc_str:
        context["error_type"] = "not_found"

    message = str(exc) or type(exc).__name__

    if category == ErrorCategory.AUTH:
        return AuthError(message, cause=exc, context=context)

    if category == ErrorCategory.TRANSIENT:
        if context.get("error_type") == "throttling":
            return ThrottlingError(message, cause=exc, context=context)
        return TransientIOError(message, cause=exc, context=context)

    if category == ErrorCategory.PERMANENT:
        return PermanentError(message, cause=exc, context=context)

    return default_class(message, cause=exc, context=context)
