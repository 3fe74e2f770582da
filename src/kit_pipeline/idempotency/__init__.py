"""
Shared idempotency stores for cross-process deduplication.

Backends:
- "json": local JSON files (several processes on one host)
- "blob": Azure Blob Storage (production)
- "none": memory-only deduplication
"""

import logging

from config.config import DedupSettings
from kit_pipeline.idempotency.base import SharedDedupStoreProtocol
from kit_pipeline.idempotency.json_store import JsonSharedDedupStore

logger = logging.getLogger(__name__)


async def create_shared_dedup_store(settings: DedupSettings) -> SharedDedupStoreProtocol | None:
    """Build the shared dedup store selected by dedup.shared_store.

    Returns None for "none". A blob store without a connection string
    degrades to memory-only deduplication with a warning.
    """
    store_type = settings.shared_store
    if store_type == "none":
        logger.info("Shared dedup store not configured - using memory-only deduplication")
        return None

    if store_type == "json":
        return JsonSharedDedupStore(storage_path=settings.shared_path)

    if store_type == "blob":
        if not settings.blob_connection_string:
            logger.warning(
                "Shared dedup store type is 'blob' but blob_connection_string is empty; "
                "using memory-only deduplication"
            )
            return None

        from kit_pipeline.idempotency.blob_store import BlobSharedDedupStore

        store = BlobSharedDedupStore(
            connection_string=settings.blob_connection_string,
            container_name=settings.container,
        )
        await store.initialize()
        return store

    raise ValueError(
        f"Unknown shared dedup store type: '{store_type}'. "
        f"Must be 'none', 'json' or 'blob'."
    )


__all__ = [
    "SharedDedupStoreProtocol",
    "JsonSharedDedupStore",
    "create_shared_dedup_store",
]
