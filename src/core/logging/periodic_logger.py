"""Periodic statistics logging for long-running partition workers."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from core.logging.utilities import format_cycle_output

logger = logging.getLogger(__name__)

_COUNTER_KEYS = {
    "succeeded": "records_succeeded",
    "failed": "records_failed",
    "skipped": "records_skipped",
    "deduplicated": "records_deduplicated",
}


class PeriodicStatsLogger:
    """
    Logs cumulative counters every interval, with deltas since the last cycle.

    The owner provides a callback returning a dict of cumulative counts
    (records_succeeded, records_failed, records_skipped, records_deduplicated
    plus any extra numeric fields to attach to the log record).
    """

    def __init__(
        self,
        interval_seconds: float,
        get_stats: Callable[[], dict[str, Any]],
        stage: str,
        worker_id: str,
    ):
        self.interval_seconds = interval_seconds
        self.get_stats = get_stats
        self.stage = stage
        self.worker_id = worker_id
        self._task: asyncio.Task | None = None
        self._cycle_count = 0
        self._previous: dict[str, int] = {}

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Periodic stats logger already running")
            return
        self._task = asyncio.create_task(self._run(), name=f"stats-{self.stage}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def _snapshot(self) -> tuple[dict[str, int], dict[str, Any]]:
        extra = self.get_stats()
        counts = {key: int(extra.get(field, 0)) for key, field in _COUNTER_KEYS.items()}
        return counts, extra

    def log_cycle(self) -> str:
        """Emit one cycle line and advance the delta baseline."""
        counts, extra = self._snapshot()
        deltas = {key: counts[key] - self._previous.get(key, 0) for key in counts}
        self._previous = counts

        msg = format_cycle_output(
            cycle_count=self._cycle_count,
            succeeded=counts["succeeded"],
            failed=counts["failed"],
            skipped=counts["skipped"],
            deduplicated=counts["deduplicated"],
            since_last=deltas if self._cycle_count > 0 else None,
            interval_seconds=self.interval_seconds,
        )

        delta_total = deltas["succeeded"] + deltas["failed"] + deltas["skipped"]
        rate = delta_total / self.interval_seconds if self.interval_seconds > 0 else 0

        logger.info(
            msg,
            extra={
                "worker_id": self.worker_id,
                "stage": self.stage,
                "cycle": self._cycle_count,
                "rate_msg_per_sec": round(rate, 1),
                **extra,
            },
        )
        self._cycle_count += 1
        return msg

    async def _run(self) -> None:
        try:
            self.log_cycle()
            while True:
                await asyncio.sleep(self.interval_seconds)
                self.log_cycle()
        except asyncio.CancelledError:
            logger.debug("Periodic stats logger task cancelled")
            raise
