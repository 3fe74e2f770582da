"""
Event document stores.

Backends:
- "memory": process-local dicts with write counters (tests, development)
- "json": one JSON file per record on the local filesystem
- "blob": Azure Blob Storage, one blob per record under a device prefix
"""

import logging

from config.config import StoreSettings
from kit_pipeline.schemas.records import StoredEventRecord
from kit_pipeline.stores.base import DocumentStoreProtocol
from kit_pipeline.stores.json_store import JsonDocumentStore
from kit_pipeline.stores.memory import MemoryDocumentStore

logger = logging.getLogger(__name__)


def create_document_store(settings: StoreSettings) -> DocumentStoreProtocol:
    """Build the document store selected by store.type."""
    if settings.type == "memory":
        store = MemoryDocumentStore()
    elif settings.type == "json":
        store = JsonDocumentStore(storage_path=settings.path)
    elif settings.type == "blob":
        from kit_pipeline.stores.blob_store import BlobDocumentStore

        store = BlobDocumentStore(
            connection_string=settings.blob_connection_string,
            container_name=settings.container,
        )
    else:
        raise ValueError(
            f"Unknown event store type: '{settings.type}'. "
            f"Must be 'memory', 'json' or 'blob'."
        )

    # All bundled backends give read-your-writes on a single writer
    logger.info(
        "Event store configured",
        extra={"backend": settings.type, "consistency_level": settings.consistency_level},
    )
    return store


__all__ = [
    "DocumentStoreProtocol",
    "StoredEventRecord",
    "MemoryDocumentStore",
    "JsonDocumentStore",
    "create_document_store",
]
