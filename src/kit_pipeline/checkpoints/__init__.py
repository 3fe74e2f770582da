"""
Durable partition checkpoint stores.

Backends:
- "memory": process-local dict (tests, development)
- "json": local JSON file per stream, atomic writes (development, single host)
- "blob": Azure Blob Storage, one blob per partition (production)
"""

import logging

from config.config import CheckpointSettings
from kit_pipeline.checkpoints.base import CheckpointStoreProtocol
from kit_pipeline.checkpoints.json_store import JsonCheckpointStore
from kit_pipeline.checkpoints.memory import MemoryCheckpointStore

logger = logging.getLogger(__name__)


def create_checkpoint_store(
    settings: CheckpointSettings,
    namespace: str = "default",
) -> CheckpointStoreProtocol:
    """Build the checkpoint store selected by checkpoints.type.

    Raises:
        ValueError: If the store type is unknown or the blob backend is
            selected without a connection string
    """
    store_type = settings.type
    if store_type == "memory":
        logger.warning(
            "Using in-memory checkpoint store; progress is lost on restart"
        )
        return MemoryCheckpointStore()

    if store_type == "json":
        return JsonCheckpointStore(storage_path=settings.path, namespace=namespace)

    if store_type == "blob":
        from kit_pipeline.checkpoints.blob_store import BlobCheckpointStore

        return BlobCheckpointStore(
            connection_string=settings.blob_connection_string,
            container_name=settings.container,
            namespace=namespace,
        )

    raise ValueError(
        f"Unknown checkpoint store type: '{store_type}'. "
        f"Must be 'memory', 'json' or 'blob'."
    )


__all__ = [
    "CheckpointStoreProtocol",
    "MemoryCheckpointStore",
    "JsonCheckpointStore",
    "create_checkpoint_store",
]
