"""
Partition worker: strict FIFO processing of one stream partition.

Each event completes read -> classify -> dedup -> write -> alert -> checkpoint
before the next one is read, so the committed offset never has gaps.
"""

import asyncio
import logging
import time
from typing import Any

from core.logging.partition_context import PartitionLogContext
from kit_pipeline.common.telemetry import TelemetrySink
from kit_pipeline.common.types import AlertOutcome, RawEvent, WriteOutcome
from kit_pipeline.processing.alert_router import AlertRouter
from kit_pipeline.processing.checkpoint_manager import CheckpointManager
from kit_pipeline.processing.classifier import Classifier
from kit_pipeline.processing.deduplicator import Deduplicator
from kit_pipeline.processing.reader import PartitionReader
from kit_pipeline.processing.store_writer import EventStoreWriter
from kit_pipeline.schemas.records import AlertMessage, StoredEventRecord

logger = logging.getLogger(__name__)

# Time allowed for an abandoned write to unwind before the task is cancelled
ABANDON_GRACE_SECONDS = 1.0


class PartitionWorker:
    """
    Runs the processing pipeline for a single partition.

    Shutdown is cooperative: stop() ends reading, lets the in-flight event
    finish within `shutdown_grace_seconds`, then abandons it before its
    checkpoint. An abandoned event is re-read after restart.
    """

    def __init__(
        self,
        partition_id: str,
        reader: PartitionReader,
        classifier: Classifier,
        deduplicator: Deduplicator,
        router: AlertRouter,
        writer: EventStoreWriter,
        checkpoints: CheckpointManager,
        telemetry: TelemetrySink | None = None,
        shutdown_grace_seconds: float = 10.0,
    ):
        self.partition_id = partition_id
        self.reader = reader
        self.classifier = classifier
        self.deduplicator = deduplicator
        self.router = router
        self.writer = writer
        self.checkpoints = checkpoints
        self.telemetry = telemetry or TelemetrySink(metrics_enabled=False)
        self.shutdown_grace_seconds = shutdown_grace_seconds

        self._current: asyncio.Task | None = None
        self._abandoned = False
        self._stop_requested = False
        self._running = False
        self._finished = False
        self.failed = False

        self.records_succeeded = 0
        self.records_failed = 0
        self.records_skipped = 0
        self.records_deduplicated = 0
        self.records_malformed = 0
        self.alerts_sent = 0
        self.alerts_failed = 0

    async def process(self, raw: RawEvent) -> None:
        """Take one event through to its checkpoint commit."""
        started = time.perf_counter()
        offset = raw.partition_offset
        with PartitionLogContext(
            partition_id=self.partition_id,
            offset=offset,
            device_id=raw.device_id,
            event_id=raw.event_id,
        ):
            self.checkpoints.begin(offset)

            event = self.classifier.classify(raw)
            if event.malformed:
                self.records_malformed += 1
                self.telemetry.record_malformed(self.partition_id)

            if not await self.deduplicator.should_process(event):
                # Already persisted within the window: alert suppressed too
                self.checkpoints.confirm_effects(offset)
                await self.checkpoints.commit(offset)
                self.records_deduplicated += 1
                return

            self.checkpoints.await_effects(offset)
            record = StoredEventRecord.from_classified(event)
            try:
                outcome = await self.writer.upsert(record, self.partition_id)
            except BaseException:
                self.deduplicator.rollback(event)
                self.records_failed += 1
                raise

            if outcome == WriteOutcome.FAILED:
                self.deduplicator.rollback(event)
                self.checkpoints.abandon()
                self.records_skipped += 1
                return

            await self.deduplicator.mark_written(event)
            self.checkpoints.confirm_effects(offset)

            if event.is_critical:
                alert = await self.router.route(
                    AlertMessage.from_classified(event), self.partition_id
                )
                if alert == AlertOutcome.DELIVERED:
                    self.alerts_sent += 1
                else:
                    self.alerts_failed += 1

            await self.checkpoints.commit(offset)
            self.records_succeeded += 1
            self.telemetry.record_event_processed(
                self.partition_id,
                event.severity.value,
                time.perf_counter() - started,
            )

    async def run(self) -> None:
        """
        Process events until the partition is drained or stop() is called.

        Raises:
            PermanentSourceError: Partition gone; the supervisor decides
            TransientIOError: Read retries exhausted
            PersistenceExhausted: Store writes bounded by max_attempts failed
        """
        self._running = True
        logger.info("Partition worker started", extra={"partition_id": self.partition_id})
        try:
            async for raw in self.reader.read(self.partition_id):
                if self._stop_requested:
                    # Not started, so it is re-read after restart
                    break
                self._current = asyncio.create_task(
                    self.process(raw), name=f"process-{self.partition_id}-{raw.partition_offset}"
                )
                try:
                    await self._current
                except asyncio.CancelledError:
                    if not self._abandoned:
                        raise
                    self.checkpoints.abandon()
                    break
                finally:
                    self._current = None
        except BaseException:
            self.failed = True
            raise
        finally:
            self._running = False
            self._finished = True
            await self.checkpoints.flush()
            logger.info(
                "Partition worker stopped",
                extra={
                    "partition_id": self.partition_id,
                    "committed_offset": self.checkpoints.committed_offset,
                    "records_succeeded": self.records_succeeded,
                    "records_deduplicated": self.records_deduplicated,
                },
            )

    async def stop(self) -> None:
        """Stop reading; finish or abandon the in-flight event."""
        self._stop_requested = True
        self.reader.stop()
        current = self._current
        if current is None or current.done():
            return

        done, _ = await asyncio.wait({current}, timeout=self.shutdown_grace_seconds)
        if done:
            return

        logger.warning(
            "In-flight event did not finish within shutdown grace, abandoning",
            extra={
                "partition_id": self.partition_id,
                "partition_offset": self.checkpoints.in_flight_offset,
            },
        )
        self._abandoned = True
        self.writer.abandon()
        done, _ = await asyncio.wait({current}, timeout=ABANDON_GRACE_SECONDS)
        if not done:
            current.cancel()
            await asyncio.wait({current})

    @property
    def state(self) -> str:
        if self.failed:
            return "failed"
        if self._finished:
            return "stopped"
        if not self._running:
            return "starting"
        if self.writer.stalled:
            return "stalled"
        return "running"

    def get_stats(self) -> dict[str, Any]:
        return {
            "records_succeeded": self.records_succeeded,
            "records_failed": self.records_failed,
            "records_skipped": self.records_skipped,
            "records_deduplicated": self.records_deduplicated,
            "records_malformed": self.records_malformed,
            "alerts_sent": self.alerts_sent,
            "alerts_failed": self.alerts_failed,
        }

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "committed_offset": self.checkpoints.committed_offset,
            "last_read_offset": self.checkpoints.last_read_offset,
            "lag": self.checkpoints.lag,
            **self.get_stats(),
        }


__all__ = ["PartitionWorker"]
