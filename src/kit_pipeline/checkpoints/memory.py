"""In-memory checkpoint store for tests and the memory pipeline profile."""

import logging

from kit_pipeline.common.types import PartitionCheckpoint

logger = logging.getLogger(__name__)


class MemoryCheckpointStore:
    """Checkpoint store backed by a dict. Not durable across processes."""

    def __init__(self) -> None:
        self._checkpoints: dict[str, PartitionCheckpoint] = {}
        self.save_calls = 0

    async def load(self, partition_id: str) -> PartitionCheckpoint | None:
        return self._checkpoints.get(partition_id)

    async def save(self, checkpoint: PartitionCheckpoint) -> None:
        self.save_calls += 1
        self._checkpoints[checkpoint.partition_id] = checkpoint

    async def close(self) -> None:
        logger.debug("MemoryCheckpointStore closed (no-op)")

    def snapshot(self) -> dict[str, int]:
        return {pid: cp.offset for pid, cp in self._checkpoints.items()}
