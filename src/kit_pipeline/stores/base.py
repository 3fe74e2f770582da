"""Document store protocol: partition-key-scoped idempotent upsert and query."""

from datetime import datetime
from typing import Protocol, runtime_checkable

from kit_pipeline.schemas.records import StoredEventRecord


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """Protocol for event store backends.

    Documents are keyed by (device_id, event_id) and partitioned by
    device_id. upsert() must be idempotent: repeating it with the same key
    and content leaves the stored state unchanged. It returns only once the
    write is durable.
    """

    async def start(self) -> None:
        ...

    async def upsert(self, record: StoredEventRecord) -> None:
        ...

    async def get(self, device_id: str, event_id: str) -> StoredEventRecord | None:
        ...

    async def query(
        self,
        device_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[StoredEventRecord]:
        """Return the device's records with start <= timestamp < end, oldest first."""
        ...

    async def close(self) -> None:
        ...


def in_range(record: StoredEventRecord, start: datetime | None, end: datetime | None) -> bool:
    if start is not None and record.timestamp < start:
        return False
    if end is not None and record.timestamp >= end:
        return False
    return True


def sort_records(records: list[StoredEventRecord]) -> list[StoredEventRecord]:
    return sorted(records, key=lambda r: (r.timestamp, r.event_id))
