"""Stream source protocol and record conversion helpers."""

import logging
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from kit_pipeline.common.types import PartitionBatch, RawEvent

logger = logging.getLogger(__name__)

UNKNOWN_DEVICE_ID = "unknown-device"
DEVICE_ID_KEYS = ("device_id", "deviceId")
EVENT_ID_KEYS = ("event_id", "eventId")
TIMESTAMP_KEYS = ("timestamp", "event_time")


@runtime_checkable
class StreamSource(Protocol):
    """Partitioned, ordered, at-least-once stream read.

    Positions are opaque integers that increase within a partition. The
    source does not persist them; durable checkpoints are owned by the
    CheckpointManager.
    """

    async def start(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def list_partitions(self) -> list[str]:
        ...

    async def fetch(
        self,
        partition_id: str,
        after_offset: int | None,
        max_records: int,
        timeout: float,
    ) -> PartitionBatch:
        """
        Return up to max_records events with offset > after_offset, in order.

        after_offset=None means the start of retained data. Returns an empty
        batch when nothing arrives within timeout. Raises TransientIOError
        or PermanentSourceError (partition gone).
        """
        ...


def _decode(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def normalize_properties(properties: Any) -> dict[str, str]:
    """Turn Event Hub properties (bytes keys) or Kafka headers (tuples) into a str dict."""
    if not properties:
        return {}
    items = properties.items() if isinstance(properties, dict) else properties
    return {_decode(k): _decode(v) for k, v in items if v is not None}


def _first(properties: dict[str, str], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = properties.get(key)
        if value:
            return value
    return None


def parse_timestamp(value: str | None, fallback: datetime | None) -> datetime:
    """Parse an ISO-8601 timestamp property; fall back to the broker timestamp."""
    if value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
        except ValueError:
            logger.debug("Unparseable timestamp property %r, using broker time", value)
    if fallback is None:
        return datetime.fromtimestamp(0, tz=UTC)
    return fallback if fallback.tzinfo else fallback.replace(tzinfo=UTC)


def build_raw_event(
    partition_id: str,
    offset: int,
    body: bytes,
    properties: dict[str, str],
    broker_time: datetime | None,
    key: str | None = None,
) -> RawEvent:
    """
    Convert a transport record into a RawEvent.

    device_id comes from the device_id property, then the message key;
    event_id from the event_id property, else "{partition_id}-{offset}" so
    a redelivered record maps to the same logical event.
    """
    device_id = _first(properties, DEVICE_ID_KEYS) or key or UNKNOWN_DEVICE_ID
    event_id = _first(properties, EVENT_ID_KEYS) or f"{partition_id}-{offset}"
    timestamp = parse_timestamp(_first(properties, TIMESTAMP_KEYS), broker_time)
    return RawEvent(
        device_id=device_id,
        event_id=event_id,
        timestamp=timestamp,
        payload=body,
        partition_offset=offset,
        partition_id=partition_id,
    )
