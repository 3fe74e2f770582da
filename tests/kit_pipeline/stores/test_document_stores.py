"""Tests for the memory and JSON document stores and the store factory."""

from datetime import timedelta

import pytest

from config.config import StoreSettings
from conftest import EVENT_TIME
from core.errors.exceptions import TransientIOError
from kit_pipeline.common.types import Severity
from kit_pipeline.schemas.records import StoredEventRecord
from kit_pipeline.stores import (
    DocumentStoreProtocol,
    JsonDocumentStore,
    MemoryDocumentStore,
    create_document_store,
)


def _record(device_id="kit-1", event_id="e1", minutes=0, severity=Severity.ROUTINE, payload=b"{}"):
    return StoredEventRecord(
        device_id=device_id,
        event_id=event_id,
        timestamp=EVENT_TIME + timedelta(minutes=minutes),
        severity=severity,
        payload=payload,
    )


@pytest.fixture(params=["memory", "json"])
async def store(request, tmp_path):
    backend = MemoryDocumentStore() if request.param == "memory" else JsonDocumentStore(tmp_path)
    await backend.start()
    yield backend
    await backend.close()


class TestDocumentStoreContract:
    async def test_upsert_and_get(self, store):
        record = _record(severity=Severity.CRITICAL)
        await store.upsert(record)
        assert await store.get("kit-1", "e1") == record

    async def test_get_missing(self, store):
        assert await store.get("kit-1", "missing") is None

    async def test_upsert_is_idempotent(self, store):
        record = _record()
        await store.upsert(record)
        await store.upsert(record)
        assert await store.query("kit-1") == [record]

    async def test_upsert_replaces_same_key(self, store):
        await store.upsert(_record(payload=b"old"))
        await store.upsert(_record(payload=b"new"))
        assert (await store.get("kit-1", "e1")).payload == b"new"

    async def test_query_scoped_to_device_and_ordered(self, store):
        await store.upsert(_record(event_id="late", minutes=10))
        await store.upsert(_record(event_id="early", minutes=1))
        await store.upsert(_record(device_id="kit-2", event_id="other"))

        assert [r.event_id for r in await store.query("kit-1")] == ["early", "late"]
        assert await store.query("kit-unknown") == []

    async def test_query_time_range_is_half_open(self, store):
        for minute in (0, 5, 10):
            await store.upsert(_record(event_id=f"m{minute}", minutes=minute))

        window = await store.query(
            "kit-1",
            start=EVENT_TIME + timedelta(minutes=5),
            end=EVENT_TIME + timedelta(minutes=10),
        )
        assert [r.event_id for r in window] == ["m5"]

    async def test_binary_payload_preserved(self, store):
        await store.upsert(_record(payload=b"\xff\xfe not json"))
        assert (await store.get("kit-1", "e1")).payload == b"\xff\xfe not json"

    async def test_lookalike_event_ids_are_distinct(self, store):
        for event_id in ("e.1", "e_1", "e:1", "e/1", "e%2E1"):
            await store.upsert(_record(event_id=event_id, payload=event_id.encode()))

        records = await store.query("kit-1")
        assert sorted(r.event_id for r in records) == ["e%2E1", "e.1", "e/1", "e:1", "e_1"]
        assert (await store.get("kit-1", "e.1")).payload == b"e.1"
        assert (await store.get("kit-1", "e_1")).payload == b"e_1"

    async def test_lookalike_devices_are_distinct(self, store):
        await store.upsert(_record(device_id="kit.1", event_id="x"))
        await store.upsert(_record(device_id="kit_1", event_id="y"))

        assert [r.event_id for r in await store.query("kit_1")] == ["y"]
        assert [r.event_id for r in await store.query("kit.1")] == ["x"]
        assert await store.get("kit_1", "x") is None


class TestMemoryDocumentStore:
    async def test_write_counts(self):
        store = MemoryDocumentStore()
        await store.upsert(_record())
        await store.upsert(_record())
        assert store.write_counts[("kit-1", "e1")] == 2
        assert store.total_writes() == 2
        assert len(store.all_records()) == 1

    async def test_write_counts_keep_colon_ids_apart(self):
        store = MemoryDocumentStore()
        await store.upsert(_record(device_id="kit:a", event_id="e1"))
        await store.upsert(_record(device_id="kit", event_id="a:e1"))

        assert store.write_counts[("kit:a", "e1")] == 1
        assert store.write_counts[("kit", "a:e1")] == 1
        assert len(store.all_records()) == 2

    async def test_injected_failures(self):
        store = MemoryDocumentStore()
        store.fail_next(TransientIOError("store busy"), times=1)

        with pytest.raises(TransientIOError):
            await store.upsert(_record())
        await store.upsert(_record())

        assert store.write_counts[("kit-1", "e1")] == 2
        assert len(store.all_records()) == 1


class TestJsonDocumentStore:
    async def test_layout_by_device(self, tmp_path):
        store = JsonDocumentStore(tmp_path)
        await store.start()
        await store.upsert(_record(device_id="kit.7", event_id="evt:1"))
        assert (tmp_path / "kit%2E7" / "evt%3A1.json").exists()

    async def test_dot_ids_stay_inside_storage_path(self, tmp_path):
        store = JsonDocumentStore(tmp_path / "records")
        await store.start()
        await store.upsert(_record(device_id="..", event_id=".."))

        assert (tmp_path / "records" / "%2E%2E" / "%2E%2E.json").exists()
        assert [r.device_id for r in await store.query("..")] == [".."]

    async def test_unchanged_record_not_rewritten(self, tmp_path):
        store = JsonDocumentStore(tmp_path)
        await store.start()
        await store.upsert(_record())
        path = tmp_path / "kit-1" / "e1.json"
        mtime = path.stat().st_mtime_ns

        await store.upsert(_record())

        assert path.stat().st_mtime_ns == mtime

    async def test_unreadable_file_skipped(self, tmp_path):
        store = JsonDocumentStore(tmp_path)
        await store.start()
        await store.upsert(_record(event_id="good"))
        (tmp_path / "kit-1" / "bad.json").write_text("{nope")

        assert [r.event_id for r in await store.query("kit-1")] == ["good"]


class TestCreateDocumentStore:
    def test_memory(self):
        store = create_document_store(StoreSettings(type="memory"))
        assert isinstance(store, MemoryDocumentStore)
        assert isinstance(store, DocumentStoreProtocol)

    def test_json(self, tmp_path):
        assert isinstance(
            create_document_store(StoreSettings(type="json", path=str(tmp_path))),
            JsonDocumentStore,
        )

    def test_blob(self):
        from kit_pipeline.stores.blob_store import BlobDocumentStore

        store = create_document_store(
            StoreSettings(type="blob", blob_connection_string="UseDevelopmentStorage=true")
        )
        assert isinstance(store, BlobDocumentStore)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown event store type"):
            create_document_store(StoreSettings(type="cosmos"))
