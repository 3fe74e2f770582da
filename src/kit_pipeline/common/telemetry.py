"""
Telemetry sink for the processing core.

Every emission is guarded: a failing metric backend or escalation listener
is logged and ignored, never propagated into the pipeline.

Usage:
    sink = TelemetrySink()
    sink.add_escalation_listener(pager.notify)
    sink.record_dedup("0", hit=True)
    await sink.escalate(EscalationSignal(...))
"""

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from kit_pipeline.common import metrics
from kit_pipeline.common.types import EscalationKind, EscalationSignal

logger = logging.getLogger(__name__)

EscalationListener = Callable[[EscalationSignal], Awaitable[None] | None]

RECENT_ESCALATIONS = 100


class TelemetrySink:
    """Guarded metrics emission plus operator escalation fan-out."""

    def __init__(self, metrics_enabled: bool = True) -> None:
        self.metrics_enabled = metrics_enabled
        self._listeners: list[EscalationListener] = []
        self.escalations: deque[EscalationSignal] = deque(maxlen=RECENT_ESCALATIONS)
        self.emit_failures = 0

    def add_escalation_listener(self, listener: EscalationListener) -> None:
        self._listeners.append(listener)

    def _emit(self, fn: Callable[..., None], *args: Any, **kwargs: Any) -> None:
        if not self.metrics_enabled:
            return
        try:
            fn(*args, **kwargs)
        except Exception as e:
            self.emit_failures += 1
            logger.debug(
                "Telemetry emission failed",
                extra={"operation": getattr(fn, "__name__", "emit"), "error": str(e)},
            )

    def record_event_processed(self, partition_id: str, severity: str, duration_seconds: float) -> None:
        self._emit(metrics.record_event_processed, partition_id, severity, duration_seconds)

    def record_malformed(self, partition_id: str) -> None:
        self._emit(metrics.record_malformed_event, partition_id)

    def record_dedup(self, partition_id: str, hit: bool, source: str = "memory") -> None:
        self._emit(metrics.record_dedup_result, partition_id, hit, source)

    def record_alert(self, outcome: str) -> None:
        self._emit(metrics.record_alert_delivery, outcome)

    def record_store_write(self, partition_id: str, success: bool, retry: bool = False) -> None:
        self._emit(metrics.record_store_write, partition_id, success, retry)

    def record_checkpoint(self, partition_id: str, committed_offset: int, lag: int) -> None:
        self._emit(metrics.update_checkpoint_position, partition_id, committed_offset, lag)

    def record_stalled(self, partition_id: str, stalled: bool) -> None:
        self._emit(metrics.update_partition_stalled, partition_id, stalled)

    def record_restart(self, partition_id: str) -> None:
        self._emit(metrics.record_partition_restart, partition_id)

    async def escalate(self, signal: EscalationSignal) -> None:
        """Log, count and fan out an escalation signal to every listener."""
        self.escalations.append(signal)
        level = (
            logging.ERROR
            if signal.kind == EscalationKind.PARTITION_FAILED
            else logging.WARNING
        )
        logger.log(
            level,
            f"Escalation: {signal.kind.value}",
            extra={
                "escalation": signal.kind.value,
                "partition_id": signal.partition_id,
                "device_id": signal.device_id,
                "event_id": signal.event_id,
                "reason": signal.reason,
            },
        )
        self._emit(metrics.record_escalation, signal.kind.value)

        for listener in self._listeners:
            try:
                result = listener(signal)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.emit_failures += 1
                logger.warning(
                    "Escalation listener failed",
                    extra={"escalation": signal.kind.value, "error": str(e)},
                    exc_info=True,
                )

    def escalations_of(self, kind: EscalationKind) -> list[EscalationSignal]:
        return [s for s in self.escalations if s.kind == kind]


__all__ = ["TelemetrySink", "EscalationListener"]
