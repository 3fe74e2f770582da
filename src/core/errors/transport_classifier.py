"""
Transport error classification for stream, alert channel and store operations.

Maps aiokafka, azure-eventhub and azure-core exceptions onto the typed
PipelineError hierarchy so callers only ever see retry decisions, never
SDK-specific exception types.
"""

from core.errors.exceptions import (
    AuthError,
    PermanentError,
    PermanentSourceError,
    PipelineError,
    ThrottlingError,
    TransientIOError,
    wrap_exception,
)

# Kafka error classifications based on aiokafka exception types
KAFKA_ERROR_MAPPINGS = {
    "transient": [
        "BrokerNotAvailableError",
        "KafkaConnectionError",
        "NodeNotReadyError",
        "LeaderNotAvailableError",
        "NotLeaderForPartitionError",
        "RequestTimedOutError",
        "KafkaTimeoutError",
        "NetworkException",
    ],
    "auth": [
        "TopicAuthorizationFailedError",
        "GroupAuthorizationFailedError",
        "ClusterAuthorizationFailedError",
        "SaslAuthenticationError",
    ],
    "permanent": [
        "UnknownTopicOrPartitionError",
        "MessageSizeTooLargeError",
        "RecordTooLargeError",
        "InvalidTopicError",
        "OffsetOutOfRangeError",
    ],
    "throttling": [
        "KafkaThrottlingError",
    ],
}

# Azure SDK error classifications (azure-eventhub, azure-core)
AZURE_ERROR_MAPPINGS = {
    "transient": [
        "EventHubError",
        "ConnectionLostError",
        "ConnectError",
        "OperationTimeoutError",
        "AMQPConnectionError",
        "ServiceRequestError",
        "ServiceResponseError",
    ],
    "auth": [
        "AuthenticationError",
        "ClientAuthenticationError",
    ],
    "permanent": [
        "EventDataSendError",
        "EventDataError",
        "SchemaError",
        "ResourceNotFoundError",
    ],
    "throttling": [
        "ServerBusyError",
    ],
}

# Message fragments meaning the partition (or the whole entity) no longer exists
MISSING_PARTITION_MARKERS = (
    "unknowntopicorpartition",
    "partition does not exist",
    "partition not found",
    "entity could not be found",
    "messagingentitynotfound",
    "resourcenotfound",
)


def classify_error_type(error_type_name: str) -> str | None:
    """
    Classify error by exception type name, checking Kafka then Azure mappings.

    Args:
        error_type_name: Name of the exception class

    Returns:
        Error category: "transient", "auth", "permanent", "throttling", or None
    """
    for category, error_types in KAFKA_ERROR_MAPPINGS.items():
        if error_type_name in error_types:
            return category

    for category, error_types in AZURE_ERROR_MAPPINGS.items():
        if error_type_name in error_types:
            return category

    return None


def is_missing_partition_error(error: Exception) -> bool:
    """True when the error says the partition or stream entity is gone."""
    text = f"{type(error).__name__} {error}".lower()
    return any(marker in text for marker in MISSING_PARTITION_MARKERS)


def classify_transport_error(
    error: Exception,
    service_name: str,
    partition_id: str | None = None,
    context: dict | None = None,
) -> PipelineError:
    """
    Classify a transport exception into the PipelineError hierarchy.

    Args:
        error: Exception raised by the transport SDK
        service_name: "source", "alerts", "store" or "checkpoints"
        partition_id: Stream partition involved, when known
        context: Additional context for the wrapped error

    Returns:
        Typed PipelineError. For the source service, a missing partition or
        stream becomes PermanentSourceError.
    """
    if isinstance(error, PipelineError):
        return error

    ctx = {"service": service_name, **(context or {})}
    if partition_id is not None:
        ctx["partition_id"] = partition_id

    error_type = type(error).__name__
    label = f"{service_name} {error_type}"

    if service_name == "source" and is_missing_partition_error(error):
        return PermanentSourceError(
            f"Stream partition unavailable: {error}",
            partition_id=partition_id,
            cause=error,
            context=ctx,
        )

    category = classify_error_type(error_type)

    if category == "throttling":
        return ThrottlingError(f"{label} throttled: {error}", cause=error, context=ctx)
    if category == "auth":
        return AuthError(f"{label} authentication failed: {error}", cause=error, context=ctx)
    if category == "permanent":
        if service_name == "source":
            return PermanentSourceError(
                f"{label} permanent error: {error}",
                partition_id=partition_id,
                cause=error,
                context=ctx,
            )
        return PermanentError(f"{label} permanent error: {error}", cause=error, context=ctx)
    if category == "transient":
        return TransientIOError(f"{label} transient error: {error}", cause=error, context=ctx)

    return wrap_exception(error, context=ctx)


__all__ = [
    "KAFKA_ERROR_MAPPINGS",
    "AZURE_ERROR_MAPPINGS",
    "classify_error_type",
    "classify_transport_error",
    "is_missing_partition_error",
]
