"""Azure Blob Storage checkpoint store.

One blob per partition:

    container/<namespace>/<partition_id>.json -> {"partition_id": "0", "offset": 41}
"""

import json
import logging
import time

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.blob.aio import BlobServiceClient, ContainerClient

from core.errors.transport_classifier import classify_transport_error
from kit_pipeline.common.files import sanitize_name
from kit_pipeline.common.types import PartitionCheckpoint

logger = logging.getLogger(__name__)


class BlobCheckpointStore:
    """Checkpoint store backed by Azure Blob Storage."""

    def __init__(self, connection_string: str, container_name: str, namespace: str = "default"):
        if not connection_string:
            raise ValueError("Checkpoint blob connection string is required")
        self.connection_string = connection_string
        self.container_name = container_name
        self.namespace = namespace
        self._client: BlobServiceClient | None = None
        self._container: ContainerClient | None = None

    async def initialize(self) -> None:
        """Create the blob client and make sure the container exists."""
        if self._container is not None:
            return
        self._client = BlobServiceClient.from_connection_string(self.connection_string)
        self._container = self._client.get_container_client(self.container_name)
        try:
            await self._container.create_container()
        except ResourceExistsError:
            pass
        except Exception as e:
            raise classify_transport_error(e, "checkpoints") from e

        logger.info(
            "BlobCheckpointStore client initialized",
            extra={"container": self.container_name, "backend": "blob"},
        )

    def _blob_name(self, partition_id: str) -> str:
        return f"{sanitize_name(self.namespace)}/{partition_id}.json"

    async def load(self, partition_id: str) -> PartitionCheckpoint | None:
        await self.initialize()
        blob_client = self._container.get_blob_client(self._blob_name(partition_id))
        try:
            download = await blob_client.download_blob()
            content = await download.readall()
        except ResourceNotFoundError:
            return None
        except Exception as e:
            raise classify_transport_error(e, "checkpoints", partition_id) from e

        try:
            return PartitionCheckpoint.from_dict(json.loads(content))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(
                "Malformed checkpoint blob, starting from retained data",
                extra={"partition_id": partition_id, "error_message": str(e)},
            )
            return None

    async def save(self, checkpoint: PartitionCheckpoint) -> None:
        await self.initialize()
        blob_client = self._container.get_blob_client(
            self._blob_name(checkpoint.partition_id)
        )
        entry = checkpoint.to_dict()
        entry["updated_at"] = time.time()
        try:
            await blob_client.upload_blob(
                json.dumps(entry),
                overwrite=True,
                content_type="application/json",
            )
        except Exception as e:
            raise classify_transport_error(e, "checkpoints", checkpoint.partition_id) from e

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None
            self._container = None


__all__ = ["BlobCheckpointStore"]
