"""Local filesystem JSON document store.

One file per record under a directory per device (the partition key):

    <storage_path>/<device_id>/<event_id>.json

with both ids percent-encoded so distinct ids never share a path.

Upserts are atomic (temp file + os.replace()) and skip the write when the
stored bytes already match, so replays leave files untouched.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path

from pydantic import ValidationError

from kit_pipeline.common.files import encode_path_segment, write_bytes_atomic
from kit_pipeline.schemas.records import StoredEventRecord
from kit_pipeline.stores.base import in_range, sort_records

logger = logging.getLogger(__name__)


class JsonDocumentStore:
    """Document store backed by one JSON file per record."""

    def __init__(self, storage_path: str | Path) -> None:
        self._base_path = Path(storage_path)
        self._locks: dict[str, asyncio.Lock] = {}

    async def start(self) -> None:
        self._base_path.mkdir(parents=True, exist_ok=True)
        logger.info(
            "JsonDocumentStore initialized",
            extra={"path": str(self._base_path), "backend": "json"},
        )

    def _device_dir(self, device_id: str) -> Path:
        return self._base_path / encode_path_segment(device_id)

    def _record_path(self, device_id: str, event_id: str) -> Path:
        return self._device_dir(device_id) / f"{encode_path_segment(event_id)}.json"

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def upsert(self, record: StoredEventRecord) -> None:
        path = self._record_path(record.device_id, record.event_id)
        content = record.to_json_bytes()
        async with self._get_lock(str(path)):
            if path.exists() and path.read_bytes() == content:
                logger.debug(
                    "Record unchanged, skipping write",
                    extra={"device_id": record.device_id, "event_id": record.event_id},
                )
                return
            write_bytes_atomic(path, content)

    def _load(self, path: Path) -> StoredEventRecord | None:
        try:
            return StoredEventRecord.from_json_bytes(path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.warning(
                "Unreadable record file, skipping",
                extra={"path": str(path), "error_message": str(e)},
            )
            return None

    async def get(self, device_id: str, event_id: str) -> StoredEventRecord | None:
        return self._load(self._record_path(device_id, event_id))

    async def query(
        self,
        device_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[StoredEventRecord]:
        device_dir = self._device_dir(device_id)
        if not device_dir.exists():
            return []
        records = []
        for path in device_dir.glob("*.json"):
            record = self._load(path)
            if record is not None and record.device_id == device_id and in_range(record, start, end):
                records.append(record)
        return sort_records(records)

    async def close(self) -> None:
        logger.debug("JsonDocumentStore closed (no-op)")


__all__ = ["JsonDocumentStore"]
