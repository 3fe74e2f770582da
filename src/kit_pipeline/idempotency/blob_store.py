"""Azure Blob Storage shared dedup store.

Storage structure:
    container/<namespace>/<key>.json -> {"event_id": "...", "timestamp": 1234567890}
"""

import json
import logging
import time
from typing import Any

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob.aio import BlobServiceClient, ContainerClient

from kit_pipeline.common.files import sanitize_name

logger = logging.getLogger(__name__)


class BlobSharedDedupStore:
    """Azure Blob Storage implementation of the shared dedup store."""

    def __init__(self, connection_string: str, container_name: str):
        if not connection_string:
            raise ValueError("Shared dedup blob connection string is required")
        self.connection_string = connection_string
        self.container_name = container_name
        self._client: BlobServiceClient | None = None
        self._container: ContainerClient | None = None

    async def initialize(self) -> None:
        self._client = BlobServiceClient.from_connection_string(self.connection_string)
        self._container = self._client.get_container_client(self.container_name)
        try:
            await self._container.create_container()
        except ResourceExistsError:
            pass

        logger.info(
            "BlobSharedDedupStore client initialized",
            extra={"container": self.container_name, "backend": "blob"},
        )

    @staticmethod
    def _blob_name(namespace: str, key: str) -> str:
        return f"{sanitize_name(namespace)}/{key}.json"

    async def check_written(
        self,
        namespace: str,
        key: str,
        ttl_seconds: float,
    ) -> tuple[bool, dict[str, Any] | None]:
        if not self._container:
            return False, None

        blob_client = self._container.get_blob_client(self._blob_name(namespace, key))
        try:
            download = await blob_client.download_blob()
            metadata = json.loads(await download.readall())
        except ResourceNotFoundError:
            return False, None
        except Exception as e:
            logger.warning(
                "Error checking blob dedup store",
                extra={"namespace": namespace, "dedup_key": key, "error": str(e)},
            )
            return False, None

        age_seconds = time.time() - metadata.get("timestamp", 0)
        if age_seconds < ttl_seconds:
            return True, metadata
        # Expired; cleanup_expired() handles bulk deletion
        return False, None

    async def mark_written(
        self,
        namespace: str,
        key: str,
        metadata: dict[str, Any],
    ) -> None:
        if not self._container:
            return

        entry = dict(metadata)
        entry.setdefault("timestamp", time.time())
        blob_client = self._container.get_blob_client(self._blob_name(namespace, key))
        try:
            await blob_client.upload_blob(
                json.dumps(entry),
                overwrite=True,
                content_type="application/json",
            )
        except Exception as e:
            logger.warning(
                "Error marking key as written in blob store",
                extra={"namespace": namespace, "dedup_key": key, "error": str(e)},
                exc_info=True,
            )

    async def cleanup_expired(self, namespace: str, ttl_seconds: float) -> int:
        if not self._container:
            return 0

        now = time.time()
        removed_count = 0
        prefix = f"{sanitize_name(namespace)}/"
        try:
            async for blob in self._container.list_blobs(name_starts_with=prefix):
                try:
                    blob_client = self._container.get_blob_client(blob.name)
                    download = await blob_client.download_blob()
                    metadata = json.loads(await download.readall())
                    if now - metadata.get("timestamp", 0) >= ttl_seconds:
                        await blob_client.delete_blob()
                        removed_count += 1
                except Exception as e:
                    logger.warning(
                        "Error cleaning up dedup blob",
                        extra={"namespace": namespace, "blob_path": blob.name, "error": str(e)},
                    )
        except Exception as e:
            logger.error(
                "Error during shared dedup cleanup",
                extra={"namespace": namespace, "error": str(e)},
                exc_info=True,
            )

        if removed_count > 0:
            logger.info(
                "Cleaned up expired shared dedup entries",
                extra={"namespace": namespace, "removed_count": removed_count},
            )
        return removed_count

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None
            self._container = None


__all__ = ["BlobSharedDedupStore"]
