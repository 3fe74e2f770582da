"""
Prometheus metrics for the kit telemetry pipeline.

All metrics live on a dedicated CollectorRegistry so tests and embedding
applications never collide with the process-wide default registry.

Focused on the signals operators need:
- Events processed per partition and severity, malformed payloads
- End-to-end processing latency
- Dedup hit rate
- Alert delivery success rate
- Store write attempts and retries
- Checkpoint position and lag, stalled partitions, escalations
"""

import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

_registry = CollectorRegistry(auto_describe=True)


def get_prometheus_registry() -> CollectorRegistry:
    """Registry to expose via start_http_server()."""
    return _registry


# =============================================================================
# Event processing
# =============================================================================

events_processed_counter = Counter(
    "kit_events_processed_total",
    "Events whose checkpoint was committed, by severity",
    labelnames=["partition", "severity"],
    registry=_registry,
)

malformed_events_counter = Counter(
    "kit_events_malformed_total",
    "Events whose payload could not be parsed or evaluated",
    labelnames=["partition"],
    registry=_registry,
)

processing_duration_seconds = Histogram(
    "kit_event_processing_duration_seconds",
    "Time from read to checkpoint commit for one event",
    labelnames=["partition"],
    buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0],
    registry=_registry,
)

# =============================================================================
# Deduplication
# =============================================================================

dedup_hits_counter = Counter(
    "kit_dedup_hits_total",
    "Events skipped because they were already written",
    labelnames=["partition", "source"],
    registry=_registry,
)

dedup_misses_counter = Counter(
    "kit_dedup_misses_total",
    "Events not found in the dedup cache",
    labelnames=["partition"],
    registry=_registry,
)

# =============================================================================
# Alerts and store writes
# =============================================================================

alert_deliveries_counter = Counter(
    "kit_alert_deliveries_total",
    "Alert routing outcomes",
    labelnames=["outcome"],
    registry=_registry,
)

store_write_attempts_counter = Counter(
    "kit_store_write_attempts_total",
    "Event store upsert attempts, by result",
    labelnames=["partition", "result"],
    registry=_registry,
)

store_write_retries_counter = Counter(
    "kit_store_write_retries_total",
    "Event store upsert retries",
    labelnames=["partition"],
    registry=_registry,
)

# =============================================================================
# Partition position and health
# =============================================================================

checkpoint_offset_gauge = Gauge(
    "kit_checkpoint_committed_offset",
    "Last committed offset per partition",
    labelnames=["partition"],
    registry=_registry,
)

checkpoint_lag_gauge = Gauge(
    "kit_checkpoint_lag",
    "Offsets read but not yet committed per partition",
    labelnames=["partition"],
    registry=_registry,
)

partition_stalled_gauge = Gauge(
    "kit_partition_stalled",
    "1 while a partition is blocked on an unacknowledged store write",
    labelnames=["partition"],
    registry=_registry,
)

partition_restarts_counter = Counter(
    "kit_partition_restarts_total",
    "Partition worker restarts after a fatal error",
    labelnames=["partition"],
    registry=_registry,
)

escalations_counter = Counter(
    "kit_escalations_total",
    "Operator escalation signals raised",
    labelnames=["kind"],
    registry=_registry,
)


# =============================================================================
# Convenience functions
# =============================================================================


def record_event_processed(partition: str, severity: str, duration_seconds: float) -> None:
    events_processed_counter.labels(partition=partition, severity=severity).inc()
    processing_duration_seconds.labels(partition=partition).observe(duration_seconds)


def record_malformed_event(partition: str) -> None:
    malformed_events_counter.labels(partition=partition).inc()


def record_dedup_result(partition: str, hit: bool, source: str = "memory") -> None:
    """Record a dedup lookup. source is "memory" or "shared" for hits."""
    if hit:
        dedup_hits_counter.labels(partition=partition, source=source).inc()
    else:
        dedup_misses_counter.labels(partition=partition).inc()


def record_alert_delivery(outcome: str) -> None:
    alert_deliveries_counter.labels(outcome=outcome).inc()


def record_store_write(partition: str, success: bool, retry: bool = False) -> None:
    store_write_attempts_counter.labels(
        partition=partition, result="success" if success else "failure"
    ).inc()
    if retry:
        store_write_retries_counter.labels(partition=partition).inc()


def update_checkpoint_position(partition: str, committed_offset: int, lag: int) -> None:
    checkpoint_offset_gauge.labels(partition=partition).set(committed_offset)
    checkpoint_lag_gauge.labels(partition=partition).set(lag)


def update_partition_stalled(partition: str, stalled: bool) -> None:
    partition_stalled_gauge.labels(partition=partition).set(1 if stalled else 0)


def record_partition_restart(partition: str) -> None:
    partition_restarts_counter.labels(partition=partition).inc()


def record_escalation(kind: str) -> None:
    escalations_counter.labels(kind=kind).inc()


__all__ = [
    "get_prometheus_registry",
    "record_event_processed",
    "record_malformed_event",
    "record_dedup_result",
    "record_alert_delivery",
    "record_store_write",
    "update_checkpoint_position",
    "update_partition_stalled",
    "record_partition_restart",
    "record_escalation",
]
