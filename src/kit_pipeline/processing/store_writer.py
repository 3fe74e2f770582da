"""
Event store writer: acknowledged, idempotent upserts.

Every failure is retried with capped exponential backoff and a per-call
timeout, because silently losing a record is not acceptable. After
`alarm_after_attempts` consecutive failures the partition is reported as
stalled (one escalation per record) and retries continue. An optional
`max_attempts` bound turns exhaustion into PersistenceExhausted, which
stops the partition without advancing its checkpoint.
"""

import asyncio
import logging

from core.errors.exceptions import PersistenceExhausted, PipelineError, wrap_exception
from core.resilience.retry import RetryConfig, run_with_timeout
from kit_pipeline.common.telemetry import TelemetrySink
from kit_pipeline.common.types import EscalationKind, EscalationSignal, WriteOutcome
from kit_pipeline.schemas.records import StoredEventRecord
from kit_pipeline.stores.base import DocumentStoreProtocol

logger = logging.getLogger(__name__)


class EventStoreWriter:
    """Writes StoredEventRecords to the document store."""

    def __init__(
        self,
        store: DocumentStoreProtocol,
        telemetry: TelemetrySink | None = None,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        alarm_after_attempts: int = 5,
        max_attempts: int = 0,
        timeout: float | None = 10.0,
    ):
        """
        Args:
            store: Document store backend
            telemetry: Sink for metrics and escalations
            base_delay: First retry delay in seconds
            max_delay: Backoff cap in seconds
            alarm_after_attempts: Failed attempts before a partition_stalled escalation
            max_attempts: 0 retries forever; otherwise raise PersistenceExhausted
            timeout: Per-call timeout; expiry counts as a transient failure
        """
        self.store = store
        self.telemetry = telemetry or TelemetrySink(metrics_enabled=False)
        # max_attempts on the config is unused; this loop owns the budget
        self.backoff = RetryConfig(max_attempts=1, base_delay=base_delay, max_delay=max_delay)
        self.alarm_after_attempts = alarm_after_attempts
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.stalled = False
        self._abandon = asyncio.Event()

    def abandon(self) -> None:
        """Give up on the record being retried; upsert() returns FAILED."""
        self._abandon.set()

    async def upsert(self, record: StoredEventRecord, partition_id: str = "") -> WriteOutcome:
        """
        Upsert until the store acknowledges.

        Returns:
            ACKNOWLEDGED once durable, FAILED if abandon() was called

        Raises:
            PersistenceExhausted: max_attempts is set and was reached
        """
        self._abandon.clear()
        attempt = 0
        alarmed = False

        while True:
            try:
                await run_with_timeout(
                    self.store.upsert(record),
                    self.timeout,
                    "store upsert",
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e if isinstance(e, PipelineError) else wrap_exception(e)
                attempt += 1
                self.telemetry.record_store_write(partition_id, success=False)

                if self.max_attempts and attempt >= self.max_attempts:
                    raise PersistenceExhausted(
                        record.device_id, record.event_id, attempt, cause=error
                    ) from e

                if not alarmed and self.alarm_after_attempts and attempt >= self.alarm_after_attempts:
                    alarmed = True
                    await self._raise_stall_alarm(record, partition_id, attempt, error)

                delay = self.backoff.get_delay(attempt - 1, error)
                logger.warning(
                    "Store write failed, retrying",
                    extra={
                        "device_id": record.device_id,
                        "event_id": record.event_id,
                        "attempt": attempt,
                        "delay_seconds": round(delay, 3),
                        "error_category": error.category.value,
                        "error_message": str(error),
                    },
                )
                try:
                    await asyncio.wait_for(self._abandon.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    continue
                logger.warning(
                    "Store write abandoned during shutdown",
                    extra={"device_id": record.device_id, "event_id": record.event_id},
                )
                return WriteOutcome.FAILED

            self.telemetry.record_store_write(partition_id, success=True, retry=attempt > 0)
            if self.stalled:
                self.stalled = False
                self.telemetry.record_stalled(partition_id, False)
                logger.info(
                    "Store write recovered, partition no longer stalled",
                    extra={"partition_id": partition_id, "total_attempts": attempt + 1},
                )
            return WriteOutcome.ACKNOWLEDGED

    async def _raise_stall_alarm(
        self,
        record: StoredEventRecord,
        partition_id: str,
        attempt: int,
        error: PipelineError,
    ) -> None:
        self.stalled = True
        self.telemetry.record_stalled(partition_id, True)
        await self.telemetry.escalate(
            EscalationSignal(
                kind=EscalationKind.PARTITION_STALLED,
                partition_id=partition_id,
                device_id=record.device_id,
                event_id=record.event_id,
                reason=f"store write failed {attempt} times: {error}",
            )
        )


__all__ = ["EventStoreWriter"]
