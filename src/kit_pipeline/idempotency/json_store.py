"""Local JSON file shared dedup store.

Stores dedup keys as individual JSON files, mirroring the blob layout so
several local processes can share one directory:

    storage_path/<namespace>/<key>.json -> {"event_id": "...", "timestamp": 1234567890}
"""

import json
import logging
import time
from pathlib import Path
from typing import Any

from kit_pipeline.common.files import sanitize_name, write_json_atomic

logger = logging.getLogger(__name__)


class JsonSharedDedupStore:
    """Local filesystem JSON implementation of the shared dedup store."""

    def __init__(self, storage_path: str | Path):
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        logger.info(
            "Initialized JSON shared dedup store",
            extra={"path": str(self.storage_path), "backend": "json"},
        )

    def _key_path(self, namespace: str, key: str) -> Path:
        return self.storage_path / sanitize_name(namespace) / f"{key}.json"

    async def check_written(
        self,
        namespace: str,
        key: str,
        ttl_seconds: float,
    ) -> tuple[bool, dict[str, Any] | None]:
        file_path = self._key_path(namespace, key)
        if not file_path.exists():
            return False, None

        try:
            with open(file_path) as f:
                metadata = json.load(f)

            age_seconds = time.time() - metadata.get("timestamp", 0)
            if age_seconds < ttl_seconds:
                logger.debug(
                    "Found written key in JSON store",
                    extra={"namespace": namespace, "dedup_key": key, "age_seconds": age_seconds},
                )
                return True, metadata

            file_path.unlink(missing_ok=True)
            return False, None

        except (OSError, ValueError) as e:
            logger.warning(
                "Error checking JSON dedup store",
                extra={"namespace": namespace, "dedup_key": key, "error": str(e)},
            )
            return False, None

    async def mark_written(
        self,
        namespace: str,
        key: str,
        metadata: dict[str, Any],
    ) -> None:
        entry = dict(metadata)
        entry.setdefault("timestamp", time.time())
        try:
            write_json_atomic(self._key_path(namespace, key), entry)
        except OSError as e:
            logger.warning(
                "Error marking key as written in JSON store",
                extra={"namespace": namespace, "dedup_key": key, "error": str(e)},
                exc_info=True,
            )

    async def cleanup_expired(self, namespace: str, ttl_seconds: float) -> int:
        namespace_dir = self.storage_path / sanitize_name(namespace)
        if not namespace_dir.exists():
            return 0

        now = time.time()
        removed_count = 0
        for file_path in namespace_dir.glob("*.json"):
            try:
                with open(file_path) as f:
                    metadata = json.load(f)
                if now - metadata.get("timestamp", 0) >= ttl_seconds:
                    file_path.unlink(missing_ok=True)
                    removed_count += 1
            except (OSError, ValueError) as e:
                logger.warning(
                    "Error cleaning up dedup file",
                    extra={"namespace": namespace, "path": file_path.name, "error": str(e)},
                )

        if removed_count > 0:
            logger.info(
                "Cleaned up expired shared dedup entries",
                extra={"namespace": namespace, "removed_count": removed_count},
            )
        return removed_count

    async def close(self) -> None:
        pass


__all__ = ["JsonSharedDedupStore"]
