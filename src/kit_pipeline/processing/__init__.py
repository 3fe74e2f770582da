"""
Processing stages of the kit telemetry pipeline.

Per partition, strictly in order:
    PartitionReader -> Classifier -> Deduplicator
        -> EventStoreWriter -> AlertRouter (critical only) -> CheckpointManager

PartitionWorker drives one partition through these stages and
TelemetryPipeline supervises one worker per partition.
"""

from kit_pipeline.processing.alert_router import AlertRouter
from kit_pipeline.processing.checkpoint_manager import CheckpointError, CheckpointManager
from kit_pipeline.processing.classifier import Classifier, decode_payload
from kit_pipeline.processing.deduplicator import Deduplicator
from kit_pipeline.processing.pipeline import TelemetryPipeline, build_pipeline, stream_namespace
from kit_pipeline.processing.policies import get_policy
from kit_pipeline.processing.reader import PartitionReader
from kit_pipeline.processing.store_writer import EventStoreWriter
from kit_pipeline.processing.worker import PartitionWorker

__all__ = [
    "AlertRouter",
    "CheckpointError",
    "CheckpointManager",
    "Classifier",
    "Deduplicator",
    "EventStoreWriter",
    "PartitionReader",
    "PartitionWorker",
    "TelemetryPipeline",
    "build_pipeline",
    "decode_payload",
    "get_policy",
    "stream_namespace",
]
