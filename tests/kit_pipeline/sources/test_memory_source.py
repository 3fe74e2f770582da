"""Tests for the in-memory stream source."""

import asyncio
import json

import pytest

from core.errors.exceptions import PermanentSourceError, TransientIOError
from kit_pipeline.sources.memory import InMemoryStreamSource


@pytest.fixture
def source():
    return InMemoryStreamSource(partition_count=2)


class TestAppend:
    async def test_offsets_are_list_positions(self, source):
        first = source.append("0", "kit-1", "e1", {"heartRate": 70})
        second = source.append("0", "kit-1", "e2", {"heartRate": 71})
        assert (first.partition_offset, second.partition_offset) == (0, 1)
        assert first.partition_id == "0"

    async def test_dict_payload_is_json(self, source):
        event = source.append("0", "kit-1", "e1", {"spo2": 97})
        assert json.loads(event.payload) == {"spo2": 97}

    async def test_str_and_bytes_payloads(self, source):
        assert source.append("0", "kit-1", "e1", "raw").payload == b"raw"
        assert source.append("0", "kit-1", "e2", b"\x00").payload == b"\x00"

    async def test_closed_partition_rejects_appends(self, source):
        source.close_partition("0")
        with pytest.raises(ValueError):
            source.append("0", "kit-1", "e1", {})

    async def test_unknown_partition(self, source):
        with pytest.raises(PermanentSourceError):
            source.append("9", "kit-1", "e1", {})


class TestFetch:
    async def test_fetch_from_start(self, source):
        for i in range(3):
            source.append("0", "kit-1", f"e{i}", {})
        batch = await source.fetch("0", None, max_records=10, timeout=0.01)
        assert [e.event_id for e in batch.events] == ["e0", "e1", "e2"]
        assert batch.end_of_partition is False

    async def test_fetch_after_offset(self, source):
        for i in range(5):
            source.append("0", "kit-1", f"e{i}", {})
        batch = await source.fetch("0", 2, max_records=10, timeout=0.01)
        assert [e.partition_offset for e in batch.events] == [3, 4]

    async def test_max_records(self, source):
        for i in range(5):
            source.append("0", "kit-1", f"e{i}", {})
        batch = await source.fetch("0", None, max_records=2, timeout=0.01)
        assert len(batch.events) == 2

    async def test_empty_fetch_times_out(self, source):
        batch = await source.fetch("0", None, max_records=10, timeout=0.01)
        assert batch.events == []
        assert batch.end_of_partition is False

    async def test_fetch_wakes_on_append(self, source):
        async def append_later():
            await asyncio.sleep(0.01)
            source.append("0", "kit-1", "late", {})

        task = asyncio.create_task(append_later())
        batch = await source.fetch("0", None, max_records=10, timeout=1.0)
        await task
        assert [e.event_id for e in batch.events] == ["late"]

    async def test_end_of_partition_only_when_drained(self, source):
        for i in range(3):
            source.append("0", "kit-1", f"e{i}", {})
        source.close_partition("0")

        partial = await source.fetch("0", None, max_records=2, timeout=0.01)
        assert partial.end_of_partition is False
        rest = await source.fetch("0", 1, max_records=2, timeout=0.01)
        assert rest.end_of_partition is True
        empty = await source.fetch("0", 2, max_records=2, timeout=0.01)
        assert empty.events == [] and empty.end_of_partition is True

    async def test_injected_failures(self, source):
        source.append("0", "kit-1", "e1", {})
        source.fail_next("0", TransientIOError("flaky"), times=2)

        for _ in range(2):
            with pytest.raises(TransientIOError):
                await source.fetch("0", None, 10, 0.01)
        batch = await source.fetch("0", None, 10, 0.01)
        assert len(batch.events) == 1
        assert source.fetch_calls == 3

    async def test_deleted_partition_is_permanent(self, source):
        source.delete_partition("1")
        with pytest.raises(PermanentSourceError):
            await source.fetch("1", None, 10, 0.01)
        assert await source.list_partitions() == ["0"]

    async def test_custom_partition_ids(self):
        source = InMemoryStreamSource(partition_ids=["a", "b", "c"])
        assert await source.list_partitions() == ["a", "b", "c"]
