"""In-memory document store for tests and the memory pipeline profile."""

import logging
from collections import Counter, defaultdict
from datetime import datetime

from kit_pipeline.schemas.records import StoredEventRecord
from kit_pipeline.stores.base import in_range, sort_records

logger = logging.getLogger(__name__)


class MemoryDocumentStore:
    """
    Dict-backed document store.

    Counts upsert calls per (device_id, event_id) so tests can check how many write
    attempts reached the store, independently of how many logical records
    exist. fail_next() injects failures into the next upserts.
    """

    def __init__(self) -> None:
        self._partitions: dict[str, dict[str, StoredEventRecord]] = defaultdict(dict)
        self.write_counts: Counter[tuple[str, str]] = Counter()
        self._failures: list[Exception] = []

    async def start(self) -> None:
        pass

    def fail_next(self, error: Exception, times: int = 1) -> None:
        self._failures.extend([error] * times)

    async def upsert(self, record: StoredEventRecord) -> None:
        self.write_counts[(record.device_id, record.event_id)] += 1
        if self._failures:
            raise self._failures.pop(0)
        self._partitions[record.device_id][record.event_id] = record

    async def get(self, device_id: str, event_id: str) -> StoredEventRecord | None:
        return self._partitions.get(device_id, {}).get(event_id)

    async def query(
        self,
        device_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[StoredEventRecord]:
        records = self._partitions.get(device_id, {}).values()
        return sort_records([r for r in records if in_range(r, start, end)])

    async def close(self) -> None:
        logger.debug("MemoryDocumentStore closed (no-op)")

    def all_records(self) -> list[StoredEventRecord]:
        return [r for partition in self._partitions.values() for r in partition.values()]

    def total_writes(self) -> int:
        return sum(self.write_counts.values())
