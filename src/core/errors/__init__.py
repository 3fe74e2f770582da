"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
- Transport error classifier for stream, channel and store SDKs
"""

from core.errors.exceptions import (
    AlertDeliveryExhausted,
    AuthError,
    ClassificationAnomaly,
    # Enums
    ErrorCategory,
    OperationTimeoutError,
    PermanentError,
    PermanentSourceError,
    PersistenceExhausted,
    # Base classes
    PipelineError,
    ThrottlingError,
    TransientIOError,
    classify_exception,
    classify_http_status,
    # Classification utilities
    is_retryable_error,
    is_transient_error,
    wrap_exception,
)
from core.errors.transport_classifier import (
    classify_transport_error,
    is_missing_partition_error,
)

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientIOError",
    "ThrottlingError",
    "OperationTimeoutError",
    "PermanentError",
    "PermanentSourceError",
    # Pipeline outcomes
    "ClassificationAnomaly",
    "AlertDeliveryExhausted",
    "PersistenceExhausted",
    # Classification utilities
    "is_transient_error",
    "is_retryable_error",
    "classify_http_status",
    "classify_exception",
    "wrap_exception",
    "classify_transport_error",
    "is_missing_partition_error",
]
