"""Durable partition checkpoint storage protocol."""

from typing import Protocol, runtime_checkable

from kit_pipeline.common.types import PartitionCheckpoint


@runtime_checkable
class CheckpointStoreProtocol(Protocol):
    """Protocol for checkpoint storage backends.

    A store holds at most one checkpoint per partition. save() must be
    durable when it returns; the CheckpointManager is responsible for
    monotonicity.
    """

    async def load(self, partition_id: str) -> PartitionCheckpoint | None:
        """Return the last saved checkpoint, or None if the partition has none."""
        ...

    async def save(self, checkpoint: PartitionCheckpoint) -> None:
        ...

    async def close(self) -> None:
        ...
