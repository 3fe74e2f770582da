"""
Alert router: at-least-once delivery of critical-event alerts.

Bounded retry with exponential backoff and a per-call timeout. Exhaustion
is degraded service, not pipeline failure: the router returns FAILED and
raises an alert_delivery_failed escalation, and the caller still commits
the event once it is persisted.
"""

import logging

from core.errors.exceptions import AlertDeliveryExhausted, PipelineError
from core.logging.utilities import log_exception
from core.resilience.retry import ALERT_RETRY, RetryConfig, call_with_retry
from kit_pipeline.alerts.base import AlertChannelProtocol
from kit_pipeline.common.telemetry import TelemetrySink
from kit_pipeline.common.types import AlertOutcome, EscalationKind, EscalationSignal
from kit_pipeline.schemas.records import AlertMessage

logger = logging.getLogger(__name__)


class AlertRouter:
    """Routes AlertMessages to the alert channel."""

    def __init__(
        self,
        channel: AlertChannelProtocol,
        retry: RetryConfig = ALERT_RETRY,
        timeout: float | None = 5.0,
        telemetry: TelemetrySink | None = None,
    ):
        self.channel = channel
        self.retry = retry
        self.timeout = timeout
        self.telemetry = telemetry or TelemetrySink(metrics_enabled=False)
        self.delivered = 0
        self.failed = 0

    async def route(self, message: AlertMessage, partition_id: str = "") -> AlertOutcome:
        """Deliver one alert; never raises for delivery failures."""
        attempts = 1

        def _on_retry(error: Exception, attempt: int, delay: float) -> None:
            nonlocal attempts
            attempts = attempt + 2

        try:
            await call_with_retry(
                self.channel.send,
                message,
                config=self.retry,
                operation="route alert",
                timeout=self.timeout,
                on_retry=_on_retry,
            )
        except PipelineError as e:
            exhausted = AlertDeliveryExhausted(
                message.device_id, message.event_id, attempts, cause=e
            )
            await self._escalate(exhausted, partition_id)
            return AlertOutcome.FAILED

        self.delivered += 1
        self.telemetry.record_alert(AlertOutcome.DELIVERED.value)
        logger.info(
            "Alert delivered",
            extra={
                "device_id": message.device_id,
                "event_id": message.event_id,
                "reason": message.reason,
                "attempt": attempts,
            },
        )
        return AlertOutcome.DELIVERED

    async def _escalate(self, error: AlertDeliveryExhausted, partition_id: str) -> None:
        self.failed += 1
        self.telemetry.record_alert(AlertOutcome.FAILED.value)
        log_exception(
            logger,
            error,
            "Alert delivery exhausted, event will still be persisted",
            include_traceback=False,
            device_id=error.device_id,
            event_id=error.event_id,
            total_attempts=error.attempts,
        )
        await self.telemetry.escalate(
            EscalationSignal(
                kind=EscalationKind.ALERT_DELIVERY_FAILED,
                partition_id=partition_id,
                device_id=error.device_id,
                event_id=error.event_id,
                reason=str(error.cause) if error.cause else error.message,
            )
        )


__all__ = ["AlertRouter"]
