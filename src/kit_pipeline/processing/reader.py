"""
Partition reader: ordered, restartable RawEvent sequence for one partition.

read() resumes strictly after the committed checkpoint and yields events in
partition order. Transient fetch failures re-fetch from the last yielded
offset with bounded exponential backoff; the retry budget resets after every
successful fetch. PermanentSourceError (partition gone) is never retried.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

from core.errors.exceptions import (
    PermanentSourceError,
    PipelineError,
    TransientIOError,
    wrap_exception,
)
from core.resilience.retry import RetryConfig, run_with_timeout
from kit_pipeline.common.types import RawEvent
from kit_pipeline.processing.checkpoint_manager import CheckpointManager
from kit_pipeline.sources.base import StreamSource

logger = logging.getLogger(__name__)

DEFAULT_READ_RETRY = RetryConfig(max_attempts=5, base_delay=0.5, max_delay=10.0)


class PartitionReader:
    """Reads one stream partition in arrival order."""

    def __init__(
        self,
        source: StreamSource,
        checkpoints: CheckpointManager,
        retry: RetryConfig = DEFAULT_READ_RETRY,
        max_batch_size: int = 100,
        fetch_timeout: float = 1.0,
        read_timeout: float | None = 10.0,
    ):
        """
        Args:
            source: Stream source to fetch from
            checkpoints: Supplies the resume position and records each
                yielded offset as in-flight
            retry: Backoff for transient fetch failures
            max_batch_size: Records per fetch
            fetch_timeout: How long one fetch waits for new data
            read_timeout: Bound on a whole fetch call; expiry is transient
        """
        self.source = source
        self.checkpoints = checkpoints
        self.retry = retry
        self.max_batch_size = max_batch_size
        self.fetch_timeout = fetch_timeout
        self.read_timeout = read_timeout
        self._stopping = asyncio.Event()
        self.last_yielded_offset: int | None = None
        self.replays_dropped = 0

    def stop(self) -> None:
        """Stop after the current fetch; no new events are yielded."""
        self._stopping.set()

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    async def _fetch(self, partition_id: str):
        timeout = self.read_timeout
        if timeout is not None:
            timeout = max(timeout, self.fetch_timeout * 2)
        return await run_with_timeout(
            self.source.fetch(
                partition_id,
                self.last_yielded_offset,
                self.max_batch_size,
                self.fetch_timeout,
            ),
            timeout,
            f"fetch partition {partition_id}",
        )

    async def _backoff(self, partition_id: str, error: PipelineError, attempt: int) -> None:
        """Sleep before the next fetch, or raise once the budget is spent."""
        if isinstance(error, PermanentSourceError) or not error.is_retryable:
            raise error
        if attempt >= self.retry.max_attempts - 1:
            logger.error(
                "Read retries exhausted",
                extra={
                    "partition_id": partition_id,
                    "attempt": attempt + 1,
                    "max_attempts": self.retry.max_attempts,
                    "error_message": str(error),
                },
            )
            raise TransientIOError(
                f"Read retries exhausted on partition {partition_id}: {error}",
                cause=error,
                context={"partition_id": partition_id, "attempts": attempt + 1},
            ) from error

        delay = self.retry.get_delay(attempt, error)
        logger.warning(
            "Transient read error, re-fetching",
            extra={
                "partition_id": partition_id,
                "partition_offset": self.last_yielded_offset,
                "attempt": attempt + 1,
                "max_attempts": self.retry.max_attempts,
                "delay_seconds": round(delay, 3),
                "error_message": str(error),
            },
        )
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def read(self, partition_id: str) -> AsyncIterator[RawEvent]:
        """
        Yield events after the committed checkpoint until the partition is
        closed and drained, or stop() is called.

        Raises:
            PermanentSourceError: Partition deleted or stream malformed
            TransientIOError: Read retry budget exhausted
        """
        committed = await self.checkpoints.start(partition_id)
        self.last_yielded_offset = committed
        logger.info(
            "Partition reader started",
            extra={"partition_id": partition_id, "committed_offset": committed},
        )

        attempt = 0
        while not self.stopping:
            try:
                batch = await self._fetch(partition_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                error = e if isinstance(e, PipelineError) else wrap_exception(e)
                await self._backoff(partition_id, error, attempt)
                attempt += 1
                continue

            attempt = 0
            for event in batch.events:
                if (
                    self.last_yielded_offset is not None
                    and event.partition_offset <= self.last_yielded_offset
                ):
                    self.replays_dropped += 1
                    logger.debug(
                        "Dropping replayed record",
                        extra={"partition_id": partition_id, "partition_offset": event.partition_offset},
                    )
                    continue
                if self.stopping:
                    return
                self.last_yielded_offset = event.partition_offset
                yield event

            if batch.end_of_partition:
                logger.info(
                    "Partition closed and drained",
                    extra={"partition_id": partition_id, "partition_offset": self.last_yielded_offset},
                )
                return


__all__ = ["PartitionReader", "DEFAULT_READ_RETRY"]
