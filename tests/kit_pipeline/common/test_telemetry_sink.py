"""Tests for TelemetrySink guarded emission and escalation fan-out."""

import logging
from unittest.mock import AsyncMock, Mock, patch

import pytest

from kit_pipeline.common import metrics
from kit_pipeline.common.telemetry import RECENT_ESCALATIONS, TelemetrySink
from kit_pipeline.common.types import EscalationKind, EscalationSignal


def _signal(kind=EscalationKind.ALERT_DELIVERY_FAILED, partition_id="0"):
    return EscalationSignal(kind=kind, partition_id=partition_id, device_id="kit-1", event_id="e1")


def _sample(name, labels):
    return metrics.get_prometheus_registry().get_sample_value(name, labels) or 0.0


class TestTelemetryEmission:
    def test_records_metrics_when_enabled(self):
        sink = TelemetrySink()
        before = _sample("kit_events_malformed_total", {"partition": "sink-test"})
        sink.record_malformed("sink-test")
        assert _sample("kit_events_malformed_total", {"partition": "sink-test"}) == before + 1

    def test_disabled_sink_emits_nothing(self):
        sink = TelemetrySink(metrics_enabled=False)
        with patch.object(metrics, "record_malformed_event") as record:
            sink.record_malformed("0")
        record.assert_not_called()

    def test_emission_failure_is_swallowed(self):
        sink = TelemetrySink()
        with patch.object(metrics, "record_dedup_result", side_effect=RuntimeError("boom")):
            sink.record_dedup("0", hit=True)
        assert sink.emit_failures == 1

    def test_checkpoint_gauges(self):
        sink = TelemetrySink()
        sink.record_checkpoint("gauge-test", committed_offset=17, lag=2)
        assert _sample("kit_checkpoint_committed_offset", {"partition": "gauge-test"}) == 17
        assert _sample("kit_checkpoint_lag", {"partition": "gauge-test"}) == 2


class TestEscalation:
    async def test_sync_and_async_listeners(self):
        sink = TelemetrySink(metrics_enabled=False)
        sync_listener = Mock()
        async_listener = AsyncMock()
        sink.add_escalation_listener(sync_listener)
        sink.add_escalation_listener(async_listener)

        signal = _signal()
        await sink.escalate(signal)

        sync_listener.assert_called_once_with(signal)
        async_listener.assert_awaited_once_with(signal)
        assert list(sink.escalations) == [signal]

    async def test_failing_listener_does_not_block_others(self):
        sink = TelemetrySink(metrics_enabled=False)
        failing = Mock(side_effect=RuntimeError("pager down"))
        healthy = Mock()
        sink.add_escalation_listener(failing)
        sink.add_escalation_listener(healthy)

        await sink.escalate(_signal())

        healthy.assert_called_once()
        assert sink.emit_failures == 1

    async def test_partition_failed_logged_as_error(self, caplog):
        sink = TelemetrySink(metrics_enabled=False)
        with caplog.at_level(logging.WARNING, logger="kit_pipeline.common.telemetry"):
            await sink.escalate(_signal(kind=EscalationKind.PARTITION_FAILED))
            await sink.escalate(_signal(kind=EscalationKind.PARTITION_STALLED))

        levels = [r.levelno for r in caplog.records if r.message.startswith("Escalation")]
        assert levels == [logging.ERROR, logging.WARNING]

    async def test_escalation_history_bounded(self):
        sink = TelemetrySink(metrics_enabled=False)
        for i in range(RECENT_ESCALATIONS + 5):
            await sink.escalate(_signal(partition_id=str(i)))
        assert len(sink.escalations) == RECENT_ESCALATIONS
        assert sink.escalations[0].partition_id == "5"

    async def test_escalations_of(self):
        sink = TelemetrySink(metrics_enabled=False)
        await sink.escalate(_signal(kind=EscalationKind.PARTITION_STALLED))
        await sink.escalate(_signal(kind=EscalationKind.ALERT_DELIVERY_FAILED))
        stalled = sink.escalations_of(EscalationKind.PARTITION_STALLED)
        assert [s.kind for s in stalled] == [EscalationKind.PARTITION_STALLED]

    async def test_escalation_counter(self):
        sink = TelemetrySink()
        before = _sample("kit_escalations_total", {"kind": "partition_stalled"})
        await sink.escalate(_signal(kind=EscalationKind.PARTITION_STALLED))
        assert _sample("kit_escalations_total", {"kind": "partition_stalled"}) == before + 1


@pytest.mark.parametrize(
    "record,args,name,labels",
    [
        (metrics.record_alert_delivery, ("delivered",), "kit_alert_deliveries_total", {"outcome": "delivered"}),
        (metrics.record_dedup_result, ("m", True, "shared"), "kit_dedup_hits_total", {"partition": "m", "source": "shared"}),
        (metrics.record_dedup_result, ("m", False), "kit_dedup_misses_total", {"partition": "m"}),
        (metrics.record_partition_restart, ("m",), "kit_partition_restarts_total", {"partition": "m"}),
        (metrics.record_store_write, ("m", True, True), "kit_store_write_retries_total", {"partition": "m"}),
    ],
)
def test_metric_helpers_increment(record, args, name, labels):
    before = _sample(name, labels)
    record(*args)
    assert _sample(name, labels) == before + 1


def test_stalled_gauge_toggles():
    metrics.update_partition_stalled("stall-gauge", True)
    assert _sample("kit_partition_stalled", {"partition": "stall-gauge"}) == 1
    metrics.update_partition_stalled("stall-gauge", False)
    assert _sample("kit_partition_stalled", {"partition": "stall-gauge"}) == 0
