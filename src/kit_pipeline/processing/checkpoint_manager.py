"""
Checkpoint manager: the durable read position of one partition.

State machine per event:

    IDLE -> READING -> AWAITING_EFFECTS -> COMMITTED -> READING (next offset)

An offset is committed only after its effects were confirmed: the store
write was acknowledged, or the dedup cache showed it was already written.
Alert outcome never blocks a commit. Commits are strictly increasing and
never pass the last fully-effected event.

Durable saves happen every `checkpoint_interval` commits and always on
flush(). A failed save is retried, then logged; the next save covers it
because it always writes the latest committed offset.
"""

import logging

from core.errors.exceptions import PipelineError
from core.logging.utilities import log_exception
from core.resilience.retry import RetryConfig, call_with_retry
from kit_pipeline.checkpoints.base import CheckpointStoreProtocol
from kit_pipeline.common.telemetry import TelemetrySink
from kit_pipeline.common.types import CheckpointState, PartitionCheckpoint

logger = logging.getLogger(__name__)

DEFAULT_SAVE_RETRY = RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)


class CheckpointError(RuntimeError):
    """A commit that would break monotonicity or skip unconfirmed effects."""


class CheckpointManager:
    """Tracks and persists the committed offset of a single partition."""

    def __init__(
        self,
        store: CheckpointStoreProtocol,
        telemetry: TelemetrySink | None = None,
        checkpoint_interval: int = 1,
        save_retry: RetryConfig = DEFAULT_SAVE_RETRY,
        timeout: float | None = 10.0,
    ):
        self.store = store
        self.telemetry = telemetry or TelemetrySink(metrics_enabled=False)
        self.checkpoint_interval = max(1, checkpoint_interval)
        self.save_retry = save_retry
        self.timeout = timeout

        self.partition_id = ""
        self.state = CheckpointState.IDLE
        self.committed_offset: int | None = None
        self.durable_offset: int | None = None
        self.last_read_offset: int | None = None
        self._in_flight: int | None = None
        self._effects_confirmed = False
        self._commits_since_save = 0
        self.save_failures = 0

    async def start(self, partition_id: str) -> int | None:
        """Load the durable checkpoint; returns the offset to resume after."""
        self.partition_id = partition_id
        checkpoint = await call_with_retry(
            self.store.load,
            partition_id,
            config=self.save_retry,
            operation="load checkpoint",
            timeout=self.timeout,
        )
        offset = checkpoint.offset if checkpoint else None
        self.committed_offset = offset
        self.durable_offset = offset
        self.last_read_offset = offset
        self.state = CheckpointState.IDLE
        self._in_flight = None
        self._commits_since_save = 0
        logger.info(
            "Resuming partition from checkpoint" if offset is not None
            else "No checkpoint, starting from retained data",
            extra={"partition_id": partition_id, "committed_offset": offset},
        )
        return offset

    @property
    def lag(self) -> int:
        """Offsets read but not yet durably checkpointed."""
        read = self.last_read_offset if self.last_read_offset is not None else -1
        durable = self.durable_offset if self.durable_offset is not None else -1
        return max(0, read - durable)

    @property
    def in_flight_offset(self) -> int | None:
        return self._in_flight

    def begin(self, offset: int) -> None:
        """An event at `offset` was read and is about to be processed."""
        if self.state in (CheckpointState.READING, CheckpointState.AWAITING_EFFECTS):
            raise CheckpointError(
                f"Partition {self.partition_id}: offset {offset} read while "
                f"{self._in_flight} is still in flight"
            )
        if self.last_read_offset is not None and offset <= self.last_read_offset:
            raise CheckpointError(
                f"Partition {self.partition_id}: offset {offset} is not after "
                f"last read offset {self.last_read_offset}"
            )
        self._in_flight = offset
        self._effects_confirmed = False
        self.last_read_offset = offset
        self.state = CheckpointState.READING

    def await_effects(self, offset: int) -> None:
        """Downstream effects for `offset` were started."""
        self._require_in_flight(offset)
        self.state = CheckpointState.AWAITING_EFFECTS

    def confirm_effects(self, offset: int) -> None:
        """The store acknowledged `offset` (or it was already written)."""
        self._require_in_flight(offset)
        self._effects_confirmed = True

    def abandon(self) -> None:
        """Drop the in-flight event without committing; it is re-read on restart."""
        if self._in_flight is not None:
            logger.info(
                "Abandoning in-flight event before checkpoint",
                extra={"partition_id": self.partition_id, "partition_offset": self._in_flight},
            )
        self._in_flight = None
        self._effects_confirmed = False
        self.state = CheckpointState.IDLE

    async def commit(self, offset: int) -> None:
        """Advance the committed offset to `offset`.

        Raises:
            CheckpointError: `offset` is not the in-flight event, or its
                effects were not confirmed
        """
        self._require_in_flight(offset)
        if not self._effects_confirmed:
            raise CheckpointError(
                f"Partition {self.partition_id}: commit of offset {offset} "
                f"before its store write was acknowledged"
            )
        if self.committed_offset is not None and offset <= self.committed_offset:
            raise CheckpointError(
                f"Partition {self.partition_id}: offset {offset} does not advance "
                f"committed offset {self.committed_offset}"
            )

        self.committed_offset = offset
        self._in_flight = None
        self._effects_confirmed = False
        self.state = CheckpointState.COMMITTED
        self._commits_since_save += 1

        if self._commits_since_save >= self.checkpoint_interval:
            await self._save()
        self.telemetry.record_checkpoint(self.partition_id, offset, self.lag)

    async def flush(self) -> None:
        """Persist the committed offset if the durable copy is behind."""
        if self.committed_offset is None or self.committed_offset == self.durable_offset:
            return
        await self._save()

    async def _save(self) -> bool:
        offset = self.committed_offset
        checkpoint = PartitionCheckpoint(partition_id=self.partition_id, offset=offset)
        try:
            await call_with_retry(
                self.store.save,
                checkpoint,
                config=self.save_retry,
                operation="save checkpoint",
                timeout=self.timeout,
            )
        except PipelineError as e:
            self.save_failures += 1
            log_exception(
                logger,
                e,
                "Checkpoint save failed, will be covered by the next save",
                level=logging.WARNING,
                include_traceback=False,
                partition_id=self.partition_id,
                committed_offset=offset,
            )
            return False

        self.durable_offset = offset
        self._commits_since_save = 0
        logger.debug(
            "Checkpoint saved",
            extra={"partition_id": self.partition_id, "committed_offset": offset},
        )
        return True

    def _require_in_flight(self, offset: int) -> None:
        if self._in_flight != offset:
            raise CheckpointError(
                f"Partition {self.partition_id}: offset {offset} is not the "
                f"in-flight offset {self._in_flight}"
            )


__all__ = ["CheckpointManager", "CheckpointError", "DEFAULT_SAVE_RETRY"]
