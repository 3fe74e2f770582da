"""Azure Blob Storage document store.

Blob layout: container/<device_id>/<event_id>.json. Upserts use
overwrite=True, which makes repeated writes of the same document
idempotent; queries list the device prefix.
"""

import logging
from datetime import datetime
from urllib.parse import quote

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob.aio import BlobServiceClient, ContainerClient
from pydantic import ValidationError

from core.errors.transport_classifier import classify_transport_error
from kit_pipeline.schemas.records import StoredEventRecord
from kit_pipeline.stores.base import in_range, sort_records

logger = logging.getLogger(__name__)


def _segment(value: str) -> str:
    return quote(value, safe="-_.")


class BlobDocumentStore:
    """Document store backed by Azure Blob Storage."""

    def __init__(self, connection_string: str, container_name: str):
        if not connection_string:
            raise ValueError("Event store blob connection string is required")
        self.connection_string = connection_string
        self.container_name = container_name
        self._client: BlobServiceClient | None = None
        self._container: ContainerClient | None = None

    async def start(self) -> None:
        if self._container is not None:
            return
        self._client = BlobServiceClient.from_connection_string(self.connection_string)
        self._container = self._client.get_container_client(self.container_name)
        try:
            await self._container.create_container()
        except ResourceExistsError:
            pass
        except Exception as e:
            raise classify_transport_error(e, "store") from e

        logger.info(
            "BlobDocumentStore client initialized",
            extra={"container": self.container_name, "backend": "blob"},
        )

    def _blob_name(self, device_id: str, event_id: str) -> str:
        return f"{_segment(device_id)}/{_segment(event_id)}.json"

    def _require_started(self) -> ContainerClient:
        if self._container is None:
            raise RuntimeError("BlobDocumentStore not started")
        return self._container

    async def upsert(self, record: StoredEventRecord) -> None:
        container = self._require_started()
        blob_client = container.get_blob_client(
            self._blob_name(record.device_id, record.event_id)
        )
        try:
            await blob_client.upload_blob(
                record.to_json_bytes(),
                overwrite=True,
                content_type="application/json",
                metadata={"severity": record.severity.value},
            )
        except Exception as e:
            raise classify_transport_error(
                e, "store", context={"device_id": record.device_id, "event_id": record.event_id}
            ) from e

    async def _download(self, blob_name: str) -> StoredEventRecord | None:
        container = self._require_started()
        try:
            download = await container.get_blob_client(blob_name).download_blob()
            content = await download.readall()
        except ResourceNotFoundError:
            return None
        except Exception as e:
            raise classify_transport_error(e, "store") from e
        try:
            return StoredEventRecord.from_json_bytes(content)
        except ValidationError as e:
            logger.warning(
                "Unreadable record blob, skipping",
                extra={"path": blob_name, "error_message": str(e)},
            )
            return None

    async def get(self, device_id: str, event_id: str) -> StoredEventRecord | None:
        return await self._download(self._blob_name(device_id, event_id))

    async def query(
        self,
        device_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[StoredEventRecord]:
        container = self._require_started()
        records = []
        try:
            async for blob in container.list_blobs(name_starts_with=f"{_segment(device_id)}/"):
                record = await self._download(blob.name)
                if record is not None and record.device_id == device_id and in_range(record, start, end):
                    records.append(record)
        except ResourceNotFoundError:
            return []
        return sort_records(records)

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None
            self._container = None


__all__ = ["BlobDocumentStore"]
