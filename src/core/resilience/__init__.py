"""
Resilience patterns module.

Provides fault tolerance primitives for the telemetry pipeline.

Components:
    - RetryConfig: Exponential backoff configuration with equal jitter
    - call_with_retry / @with_retry_async: Classification-driven retry
    - run_with_timeout: Bounded awaits raising OperationTimeoutError
    - Standard configs: DEFAULT_RETRY, ALERT_RETRY
"""

from .retry import (
    ALERT_RETRY,
    DEFAULT_RETRY,
    RetryConfig,
    call_with_retry,
    run_with_timeout,
    with_retry_async,
)

__all__ = [
    "RetryConfig",
    "call_with_retry",
    "run_with_timeout",
    "with_retry_async",
    "DEFAULT_RETRY",
    "ALERT_RETRY",
]
