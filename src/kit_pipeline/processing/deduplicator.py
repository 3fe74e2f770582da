"""
Deduplicator: write-once-on-success cache of recently written dedup keys.

Hybrid lookup: fast in-memory cache, then an optional shared store on a
miss (partitions of one stream spread over several processes). Keys are
recorded "pending" when processing starts and promoted to "written" only
after the store acknowledged the write; a failed write rolls the pending
marker back so the event is retried.

The cache is an optimization that avoids redundant store writes. Duplicate
safety comes from the idempotent upsert, so expiry and eviction are safe.
"""

import logging
import time
from collections import OrderedDict
from collections.abc import Callable

from kit_pipeline.common.telemetry import TelemetrySink
from kit_pipeline.common.types import ClassifiedEvent, DedupEntry, DedupState
from kit_pipeline.idempotency.base import SharedDedupStoreProtocol

logger = logging.getLogger(__name__)


class Deduplicator:
    """Time-windowed, size-bounded dedup cache owned by one partition worker."""

    def __init__(
        self,
        window_seconds: float = 600.0,
        max_entries: int = 100_000,
        shared_store: SharedDedupStoreProtocol | None = None,
        namespace: str = "default",
        partition_id: str = "",
        telemetry: TelemetrySink | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self.shared_store = shared_store
        self.namespace = namespace
        self.partition_id = partition_id
        self.telemetry = telemetry or TelemetrySink(metrics_enabled=False)
        self.clock = clock

        # OrderedDict for O(1) LRU eviction: dedup_key -> DedupEntry
        self._cache: OrderedDict[str, DedupEntry] = OrderedDict()

        self.memory_hits = 0
        self.shared_hits = 0
        self.misses = 0
        self.evictions = 0
        self.shared_errors = 0

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, dedup_key: str) -> DedupEntry | None:
        return self._cache.get(dedup_key)

    def _expired(self, entry: DedupEntry, now: float) -> bool:
        return now - entry.first_seen_at >= self.window_seconds

    async def should_process(self, event: ClassifiedEvent) -> bool:
        """
        False if the key is recorded as written within the window (skip
        downstream effects); otherwise records the key as pending and
        returns True.
        """
        key = event.dedup_key
        now = self.clock()

        # Fast path: memory cache
        entry = self._cache.get(key)
        if entry is not None:
            if self._expired(entry, now):
                del self._cache[key]
            elif entry.state == DedupState.WRITTEN:
                self._cache.move_to_end(key)
                self.memory_hits += 1
                self.telemetry.record_dedup(self.partition_id, hit=True, source="memory")
                logger.debug(
                    "Duplicate event skipped (memory)",
                    extra={"dedup_key": key, "device_id": event.device_id, "event_id": event.event_id},
                )
                return False
            else:
                # A pending marker left behind is reprocessed; the upsert is idempotent
                logger.debug("Reprocessing event with stale pending marker", extra={"dedup_key": key})
                self._cache.move_to_end(key)
                self.misses += 1
                self.telemetry.record_dedup(self.partition_id, hit=False)
                return True

        # Slow path: shared store, persistent across processes and restarts
        if self.shared_store is not None:
            try:
                written, metadata = await self.shared_store.check_written(
                    self.namespace, key, self.window_seconds
                )
            except Exception as e:
                written, metadata = False, None
                self.shared_errors += 1
                logger.warning(
                    "Error checking shared dedup store (falling back to memory-only)",
                    extra={"dedup_key": key, "error": str(e)},
                )
            if written:
                first_seen = (metadata or {}).get("timestamp", now)
                self._insert(DedupEntry(key, float(first_seen), DedupState.WRITTEN))
                self.shared_hits += 1
                self.telemetry.record_dedup(self.partition_id, hit=True, source="shared")
                logger.debug(
                    "Duplicate event skipped (shared store, restored to memory cache)",
                    extra={"dedup_key": key, "device_id": event.device_id, "event_id": event.event_id},
                )
                return False

        self._insert(DedupEntry(key, now, DedupState.PENDING))
        self.misses += 1
        self.telemetry.record_dedup(self.partition_id, hit=False)
        return True

    async def mark_written(self, event: ClassifiedEvent) -> None:
        """Promote the key to written after the store acknowledged the event."""
        key = event.dedup_key
        now = self.clock()
        entry = self._cache.get(key)
        if entry is None:
            self._insert(DedupEntry(key, now, DedupState.WRITTEN))
        else:
            entry.state = DedupState.WRITTEN
            self._cache.move_to_end(key)

        if self.shared_store is not None:
            try:
                await self.shared_store.mark_written(
                    self.namespace,
                    key,
                    {
                        "device_id": event.device_id,
                        "event_id": event.event_id,
                        "partition_id": self.partition_id,
                        "timestamp": now,
                    },
                )
            except Exception as e:
                self.shared_errors += 1
                logger.warning(
                    "Error persisting to shared dedup store (memory cache still updated)",
                    extra={"dedup_key": key, "error": str(e)},
                )

    def rollback(self, event: ClassifiedEvent) -> None:
        """Drop a pending marker so a failed event is processed again."""
        entry = self._cache.get(event.dedup_key)
        if entry is not None and entry.state == DedupState.PENDING:
            del self._cache[event.dedup_key]
            logger.debug("Rolled back pending dedup marker", extra={"dedup_key": event.dedup_key})

    def _insert(self, entry: DedupEntry) -> None:
        # If memory cache is full, evict oldest entries (LRU via OrderedDict)
        if entry.dedup_key not in self._cache and len(self._cache) >= self.max_entries:
            evict_count = min(max(1, self.max_entries // 10), len(self._cache))
            for _ in range(evict_count):
                self._cache.popitem(last=False)
            self.evictions += evict_count
            logger.debug(
                "Evicted old entries from memory dedup cache",
                extra={"entries": len(self._cache)},
            )
        self._cache[entry.dedup_key] = entry
        self._cache.move_to_end(entry.dedup_key)

    def cleanup_expired(self) -> int:
        now = self.clock()
        expired_keys = [
            key for key, entry in self._cache.items() if self._expired(entry, now)
        ]
        for key in expired_keys:
            self._cache.pop(key, None)

        if expired_keys:
            logger.debug(
                "Cleaned up expired dedup cache entries",
                extra={"removed_count": len(expired_keys), "entries": len(self._cache)},
            )
        return len(expired_keys)

    async def cleanup_shared(self) -> int:
        if self.shared_store is None:
            return 0
        try:
            return await self.shared_store.cleanup_expired(self.namespace, self.window_seconds)
        except Exception as e:
            self.shared_errors += 1
            logger.warning("Shared dedup cleanup failed", extra={"error": str(e)})
            return 0

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._cache),
            "dedup_memory_hits": self.memory_hits,
            "dedup_shared_hits": self.shared_hits,
            "dedup_misses": self.misses,
            "dedup_evictions": self.evictions,
        }


__all__ = ["Deduplicator"]
