"""In-memory stream source for development and tests."""

import asyncio
import json
import logging
from collections import deque
from datetime import UTC, datetime
from typing import Any

from core.errors.exceptions import PermanentSourceError
from kit_pipeline.common.types import PartitionBatch, RawEvent

logger = logging.getLogger(__name__)


class _Partition:
    def __init__(self) -> None:
        self.events: list[RawEvent] = []
        self.closed = False
        self.deleted = False
        self.failures: deque[Exception] = deque()
        self.changed = asyncio.Event()


class InMemoryStreamSource:
    """
    Appendable, closable partitions held in process memory.

    Offsets are list positions starting at 0. Tests can inject fetch
    failures per partition, close a partition (fetch then reports
    end_of_partition once drained) or delete it (fetch raises
    PermanentSourceError).
    """

    def __init__(self, partition_count: int = 2, partition_ids: list[str] | None = None):
        ids = partition_ids or [str(i) for i in range(partition_count)]
        self._partitions: dict[str, _Partition] = {pid: _Partition() for pid in ids}
        self.fetch_calls = 0

    async def start(self) -> None:
        logger.info(
            "In-memory stream source started",
            extra={"entries": len(self._partitions)},
        )

    async def close(self) -> None:
        for partition in self._partitions.values():
            partition.changed.set()

    async def list_partitions(self) -> list[str]:
        return [pid for pid, p in self._partitions.items() if not p.deleted]

    def _get(self, partition_id: str) -> _Partition:
        partition = self._partitions.get(partition_id)
        if partition is None or partition.deleted:
            raise PermanentSourceError(
                f"Stream partition does not exist: {partition_id}",
                partition_id=partition_id,
            )
        return partition

    def append(
        self,
        partition_id: str,
        device_id: str,
        event_id: str,
        payload: bytes | dict[str, Any] | str,
        timestamp: datetime | None = None,
    ) -> RawEvent:
        """Append an event; dict payloads are JSON-encoded."""
        partition = self._get(partition_id)
        if partition.closed:
            raise ValueError(f"Partition {partition_id} is closed")

        if isinstance(payload, dict):
            body = json.dumps(payload).encode("utf-8")
        elif isinstance(payload, str):
            body = payload.encode("utf-8")
        else:
            body = payload

        event = RawEvent(
            device_id=device_id,
            event_id=event_id,
            timestamp=timestamp or datetime.now(UTC),
            payload=body,
            partition_offset=len(partition.events),
            partition_id=partition_id,
        )
        partition.events.append(event)
        partition.changed.set()
        return event

    def close_partition(self, partition_id: str) -> None:
        partition = self._get(partition_id)
        partition.closed = True
        partition.changed.set()

    def delete_partition(self, partition_id: str) -> None:
        partition = self._get(partition_id)
        partition.deleted = True
        partition.changed.set()

    def fail_next(self, partition_id: str, error: Exception, times: int = 1) -> None:
        """Make the next `times` fetches on the partition raise `error`."""
        partition = self._get(partition_id)
        partition.failures.extend([error] * times)

    def events(self, partition_id: str) -> list[RawEvent]:
        return list(self._partitions[partition_id].events)

    def _slice(self, partition: _Partition, after_offset: int | None, max_records: int) -> list[RawEvent]:
        start = 0 if after_offset is None else after_offset + 1
        return partition.events[start:start + max_records]

    async def fetch(
        self,
        partition_id: str,
        after_offset: int | None,
        max_records: int,
        timeout: float,
    ) -> PartitionBatch:
        self.fetch_calls += 1
        partition = self._get(partition_id)

        if partition.failures:
            raise partition.failures.popleft()

        events = self._slice(partition, after_offset, max_records)
        if not events and not partition.closed:
            partition.changed.clear()
            try:
                await asyncio.wait_for(partition.changed.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return PartitionBatch()
            partition = self._get(partition_id)
            events = self._slice(partition, after_offset, max_records)

        drained = partition.closed and (
            not events or events[-1].partition_offset == len(partition.events) - 1
        )
        return PartitionBatch(events=events, end_of_partition=drained)
