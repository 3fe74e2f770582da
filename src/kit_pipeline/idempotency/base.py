"""Shared dedup store protocol.

The coordination point used when partitions of one stream are spread over
several processes: a device's events can arrive on any partition, so the
per-worker memory cache alone cannot see another process's writes.
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SharedDedupStoreProtocol(Protocol):
    """Protocol for shared dedup backends.

    Only successfully written events are recorded, so a hit means the
    event's store write has already been acknowledged somewhere.
    """

    async def check_written(
        self,
        namespace: str,
        key: str,
        ttl_seconds: float,
    ) -> tuple[bool, dict[str, Any] | None]:
        """Check if key was recorded as written within ttl_seconds.

        Args:
            namespace: Stream identity, shared by every worker of one stream
            key: Dedup key
            ttl_seconds: Time-to-live in seconds

        Returns:
            (is_written, metadata) where metadata is the stored data if found
        """
        ...

    async def mark_written(
        self,
        namespace: str,
        key: str,
        metadata: dict[str, Any],
    ) -> None:
        """Record key as written. metadata gets a "timestamp" if missing."""
        ...

    async def cleanup_expired(self, namespace: str, ttl_seconds: float) -> int:
        """Remove expired entries, returning how many were removed."""
        ...

    async def close(self) -> None:
        ...
