"""Local filesystem JSON checkpoint store.

One JSON file per stream namespace (stream name plus consumer group),
holding the checkpoint of every partition of that stream:

    <storage_path>/
      <sanitized_namespace>/
        checkpoints.json

Writes are atomic (temp file + os.replace()) and serialized per file with
an asyncio.Lock. Single-process concurrency only; different pipelines
reading different streams write to separate files.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any

from kit_pipeline.common.files import read_json, sanitize_name, write_json_atomic
from kit_pipeline.common.types import PartitionCheckpoint

logger = logging.getLogger(__name__)


class JsonCheckpointStore:
    """Checkpoint store backed by local JSON files."""

    def __init__(self, storage_path: str | Path, namespace: str = "default") -> None:
        """
        Args:
            storage_path: Base directory for checkpoint files. Created on
                first write.
            namespace: Stream identity, e.g. "telemetry-hub/$Default".
        """
        self._base_path = Path(storage_path)
        self.namespace = namespace
        self._locks: dict[str, asyncio.Lock] = {}

        logger.info(
            "JsonCheckpointStore initialized",
            extra={"path": str(self.file_path), "backend": "json"},
        )

    @property
    def file_path(self) -> Path:
        return self._base_path / sanitize_name(self.namespace) / "checkpoints.json"

    async def load(self, partition_id: str) -> PartitionCheckpoint | None:
        async with self._get_lock(str(self.file_path)):
            data = self._read()
        entry = data["partitions"].get(partition_id)
        if entry is None:
            return None
        return PartitionCheckpoint.from_dict(entry)

    async def save(self, checkpoint: PartitionCheckpoint) -> None:
        async with self._get_lock(str(self.file_path)):
            data = self._read()
            entry = checkpoint.to_dict()
            entry["updated_at"] = time.time()
            data["partitions"][checkpoint.partition_id] = entry
            write_json_atomic(self.file_path, data)

    async def list_checkpoints(self) -> list[PartitionCheckpoint]:
        async with self._get_lock(str(self.file_path)):
            data = self._read()
        return [PartitionCheckpoint.from_dict(e) for e in data["partitions"].values()]

    async def close(self) -> None:
        logger.debug("JsonCheckpointStore closed (no-op)")

    def _get_lock(self, file_path: str) -> asyncio.Lock:
        if file_path not in self._locks:
            self._locks[file_path] = asyncio.Lock()
        return self._locks[file_path]

    def _read(self) -> dict[str, Any]:
        data = read_json(self.file_path)
        if not isinstance(data, dict) or not isinstance(data.get("partitions"), dict):
            if data is not None:
                logger.warning(f"Malformed checkpoint file {self.file_path}, resetting")
            return {"partitions": {}}
        return data


__all__ = ["JsonCheckpointStore"]
