"""Tests for the event store writer."""

import asyncio

import pytest

from conftest import make_raw_event
from core.errors.exceptions import PermanentError, PersistenceExhausted, TransientIOError
from kit_pipeline.common.telemetry import TelemetrySink
from kit_pipeline.common.types import EscalationKind, WriteOutcome
from kit_pipeline.processing.classifier import Classifier
from kit_pipeline.processing.store_writer import EventStoreWriter
from kit_pipeline.schemas.records import StoredEventRecord
from kit_pipeline.stores.memory import MemoryDocumentStore


@pytest.fixture
def record():
    return StoredEventRecord.from_classified(Classifier().classify(make_raw_event()))


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def telemetry():
    return TelemetrySink(metrics_enabled=False)


def _writer(store, telemetry, **kwargs):
    kwargs.setdefault("base_delay", 0.0)
    kwargs.setdefault("max_delay", 0.0)
    return EventStoreWriter(store, telemetry, **kwargs)


class TestUpsert:
    async def test_acknowledged(self, store, telemetry, record):
        outcome = await _writer(store, telemetry).upsert(record, "0")

        assert outcome == WriteOutcome.ACKNOWLEDGED
        assert await store.get("kit-42", "e1") == record

    async def test_retries_until_acknowledged(self, store, telemetry, record):
        store.fail_next(TransientIOError("connection reset"), times=4)

        outcome = await _writer(store, telemetry, alarm_after_attempts=10).upsert(record, "0")

        assert outcome == WriteOutcome.ACKNOWLEDGED
        assert store.write_counts[(record.device_id, record.event_id)] == 5

    async def test_permanent_errors_also_retried(self, store, telemetry, record):
        store.fail_next(PermanentError("bad request"))

        assert await _writer(store, telemetry).upsert(record) == WriteOutcome.ACKNOWLEDGED

    async def test_upsert_is_idempotent(self, store, telemetry, record):
        writer = _writer(store, telemetry)
        await writer.upsert(record)
        await writer.upsert(record)

        assert store.all_records() == [record]
        assert store.write_counts[(record.device_id, record.event_id)] == 2


class TestStallAlarm:
    async def test_single_alarm_then_recovery(self, store, telemetry, record):
        store.fail_next(TransientIOError("server busy"), times=5)
        writer = _writer(store, telemetry, alarm_after_attempts=2)

        assert await writer.upsert(record, "3") == WriteOutcome.ACKNOWLEDGED

        [signal] = telemetry.escalations_of(EscalationKind.PARTITION_STALLED)
        assert signal.partition_id == "3"
        assert signal.event_id == "e1"
        assert "failed 2 times" in signal.reason
        assert writer.stalled is False

    async def test_stalled_while_retrying(self, store, telemetry, record):
        store.fail_next(TransientIOError("server busy"), times=1000)
        writer = _writer(store, telemetry, base_delay=0.01, max_delay=0.01, alarm_after_attempts=2)

        task = asyncio.create_task(writer.upsert(record, "0"))
        while not writer.stalled:
            await asyncio.sleep(0.01)
        writer.abandon()

        assert await task == WriteOutcome.FAILED

    async def test_alarm_disabled(self, store, telemetry, record):
        store.fail_next(TransientIOError("server busy"), times=3)
        writer = _writer(store, telemetry, alarm_after_attempts=0)

        await writer.upsert(record)
        assert telemetry.escalations_of(EscalationKind.PARTITION_STALLED) == []


class TestBoundedPersistence:
    async def test_max_attempts_raises(self, store, telemetry, record):
        store.fail_next(TransientIOError("server busy"), times=10)
        writer = _writer(store, telemetry, max_attempts=3)

        with pytest.raises(PersistenceExhausted) as exc_info:
            await writer.upsert(record)

        assert exc_info.value.attempts == 3
        assert store.write_counts[(record.device_id, record.event_id)] == 3


class TestAbandon:
    async def test_abandon_interrupts_backoff(self, store, telemetry, record):
        store.fail_next(TransientIOError("server busy"), times=1000)
        writer = _writer(store, telemetry, base_delay=30.0, max_delay=30.0)

        task = asyncio.create_task(writer.upsert(record))
        await asyncio.sleep(0.05)
        writer.abandon()

        assert await asyncio.wait_for(task, timeout=2) == WriteOutcome.FAILED
        assert store.write_counts[(record.device_id, record.event_id)] == 1

    async def test_abandon_reset_for_next_record(self, store, telemetry, record):
        writer = _writer(store, telemetry)
        writer.abandon()

        assert await writer.upsert(record) == WriteOutcome.ACKNOWLEDGED
