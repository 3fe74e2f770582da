"""
Telemetry pipeline: one supervised worker per stream partition.

Partitions run independently and concurrently. A worker that fails is
reported with a partition_failed escalation and, per the operator policy,
either restarted fresh from its last checkpoint or left stopped.

Usage:
    pipeline = await build_pipeline(config)
    await pipeline.start()
    await pipeline.run()     # until stop() or every partition is drained
    await pipeline.close()
"""

import asyncio
import logging
from collections import Counter
from typing import Any

from config.config import SourceSettings, TelemetryConfig
from core.errors.exceptions import is_retryable_error
from core.logging.periodic_logger import PeriodicStatsLogger
from core.logging.utilities import log_exception
from core.resilience.retry import RetryConfig
from core.utils.worker_id import generate_worker_id
from kit_pipeline.alerts import create_alert_channel
from kit_pipeline.alerts.base import AlertChannelProtocol
from kit_pipeline.checkpoints import create_checkpoint_store
from kit_pipeline.checkpoints.base import CheckpointStoreProtocol
from kit_pipeline.common.telemetry import TelemetrySink
from kit_pipeline.common.types import EscalationKind, EscalationSignal
from kit_pipeline.idempotency import create_shared_dedup_store
from kit_pipeline.idempotency.base import SharedDedupStoreProtocol
from kit_pipeline.processing.alert_router import AlertRouter
from kit_pipeline.processing.checkpoint_manager import CheckpointManager
from kit_pipeline.processing.classifier import Classifier
from kit_pipeline.processing.deduplicator import Deduplicator
from kit_pipeline.processing.policies import get_policy
from kit_pipeline.processing.reader import PartitionReader
from kit_pipeline.processing.store_writer import EventStoreWriter
from kit_pipeline.processing.worker import PartitionWorker
from kit_pipeline.sources import create_stream_source
from kit_pipeline.sources.base import StreamSource
from kit_pipeline.stores import create_document_store
from kit_pipeline.stores.base import DocumentStoreProtocol

logger = logging.getLogger(__name__)


def stream_namespace(settings: SourceSettings) -> str:
    """Identifies one stream + consumer group for checkpoints and shared dedup."""
    name = settings.eventhub_name or settings.topic or "memory"
    return f"{settings.type}-{name}-{settings.consumer_group}"


class TelemetryPipeline:
    """Supervises the partition workers of one stream."""

    def __init__(
        self,
        config: TelemetryConfig,
        source: StreamSource,
        checkpoint_store: CheckpointStoreProtocol,
        document_store: DocumentStoreProtocol,
        alert_channel: AlertChannelProtocol,
        shared_dedup: SharedDedupStoreProtocol | None = None,
        telemetry: TelemetrySink | None = None,
        classifier: Classifier | None = None,
        worker_id: str | None = None,
    ):
        self.config = config
        self.source = source
        self.checkpoint_store = checkpoint_store
        self.document_store = document_store
        self.alert_channel = alert_channel
        self.shared_dedup = shared_dedup
        self.telemetry = telemetry or TelemetrySink(
            metrics_enabled=config.observability.metrics_enabled
        )
        self.classifier = classifier or Classifier(
            get_policy(config.classification.policy, config.classification.thresholds)
        )
        self.worker_id = worker_id or generate_worker_id(config.pipeline.worker_id_prefix)
        self.namespace = stream_namespace(config.source)

        self.router = AlertRouter(
            alert_channel,
            retry=RetryConfig(
                max_attempts=config.alerts.max_attempts,
                base_delay=config.alerts.base_delay_seconds,
                max_delay=config.alerts.max_delay_seconds,
            ),
            timeout=config.timeouts.route_seconds,
            telemetry=self.telemetry,
        )

        self.partitions: list[str] = []
        self._workers: dict[str, PartitionWorker] = {}
        self._deduplicators: dict[str, Deduplicator] = {}
        self._supervisor_states: dict[str, str] = {}
        self._restarts: Counter[str] = Counter()
        self._retired_stats: Counter[str] = Counter()
        self._shutdown = asyncio.Event()
        self._started = False
        self._running = False
        self._stats_logger: PeriodicStatsLogger | None = None
        self._cleanup_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Connect the backends and resolve the partitions to process."""
        if self._started:
            return
        await self.source.start()
        await self.document_store.start()
        await self.alert_channel.start()

        configured = [str(p) for p in self.config.pipeline.partitions]
        self.partitions = configured or await self.source.list_partitions()
        self._started = True
        logger.info(
            "Telemetry pipeline started",
            extra={
                "worker_id": self.worker_id,
                "namespace": self.namespace,
                "partitions": ",".join(self.partitions),
                "policy": self.classifier.policy_name,
            },
        )

    def _deduplicator_for(self, partition_id: str) -> Deduplicator:
        # Kept across worker restarts so recently written keys stay cached
        dedup = self._deduplicators.get(partition_id)
        if dedup is None:
            settings = self.config.dedup
            dedup = Deduplicator(
                window_seconds=settings.window_seconds,
                max_entries=settings.max_entries,
                shared_store=self.shared_dedup,
                namespace=self.namespace,
                partition_id=partition_id,
                telemetry=self.telemetry,
            )
            self._deduplicators[partition_id] = dedup
        return dedup

    def build_worker(self, partition_id: str) -> PartitionWorker:
        """A fresh worker that resumes from the partition's durable checkpoint."""
        cfg = self.config
        checkpoints = CheckpointManager(
            self.checkpoint_store,
            telemetry=self.telemetry,
            checkpoint_interval=cfg.checkpoints.checkpoint_interval,
            save_retry=RetryConfig(
                max_attempts=cfg.checkpoints.save_max_attempts,
                base_delay=0.2,
                max_delay=2.0,
            ),
            timeout=cfg.timeouts.checkpoint_seconds,
        )
        reader = PartitionReader(
            self.source,
            checkpoints,
            retry=RetryConfig(
                max_attempts=cfg.source.read_max_attempts,
                base_delay=cfg.source.read_base_delay_seconds,
                max_delay=cfg.source.read_max_delay_seconds,
            ),
            max_batch_size=cfg.source.max_batch_size,
            fetch_timeout=cfg.source.fetch_timeout_seconds,
            read_timeout=cfg.timeouts.read_seconds,
        )
        writer = EventStoreWriter(
            self.document_store,
            telemetry=self.telemetry,
            base_delay=cfg.store.base_delay_seconds,
            max_delay=cfg.store.max_delay_seconds,
            alarm_after_attempts=cfg.store.alarm_after_attempts,
            max_attempts=cfg.store.max_attempts,
            timeout=cfg.timeouts.write_seconds,
        )
        return PartitionWorker(
            partition_id,
            reader=reader,
            classifier=self.classifier,
            deduplicator=self._deduplicator_for(partition_id),
            router=self.router,
            writer=writer,
            checkpoints=checkpoints,
            telemetry=self.telemetry,
            shutdown_grace_seconds=cfg.pipeline.shutdown_grace_seconds,
        )

    async def _supervise(self, partition_id: str) -> None:
        policy = self.config.pipeline
        while not self._shutdown.is_set():
            worker = self.build_worker(partition_id)
            previous = self._workers.get(partition_id)
            if previous is not None:
                self._retired_stats.update(previous.get_stats())
            self._workers[partition_id] = worker
            self._supervisor_states.pop(partition_id, None)

            try:
                await worker.run()
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                restarts = self._restarts[partition_id]
                log_exception(
                    logger,
                    e,
                    "Partition worker failed",
                    partition_id=partition_id,
                    restart_count=restarts,
                    policy=policy.on_permanent_error,
                )
                await self.telemetry.escalate(
                    EscalationSignal(
                        kind=EscalationKind.PARTITION_FAILED,
                        partition_id=partition_id,
                        reason=f"{type(e).__name__}: {e}",
                    )
                )

                # Transient exhaustion always restarts; permanent errors follow policy
                if not is_retryable_error(e) and policy.on_permanent_error == "exit":
                    self._supervisor_states[partition_id] = "failed"
                    logger.error(
                        "Partition worker exited on permanent error",
                        extra={"partition_id": partition_id},
                    )
                    return
                if restarts >= policy.max_restarts:
                    self._supervisor_states[partition_id] = "failed"
                    logger.error(
                        "Partition worker restart limit reached",
                        extra={"partition_id": partition_id, "restart_count": restarts},
                    )
                    return

            restarts = self._restarts[partition_id] + 1
            self._restarts[partition_id] = restarts
            self._supervisor_states[partition_id] = "restarting"
            self.telemetry.record_restart(partition_id)
            delay = policy.restart_backoff_seconds * restarts
            logger.warning(
                "Restarting partition worker from last checkpoint",
                extra={
                    "partition_id": partition_id,
                    "restart_count": restarts,
                    "delay_seconds": delay,
                },
            )
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    async def _periodic_cleanup(self) -> None:
        interval = self.config.dedup.cleanup_interval_seconds
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            removed = sum(d.cleanup_expired() for d in self._deduplicators.values())
            if self.shared_dedup is not None and self._deduplicators:
                # One namespace for the whole stream, so one sweep covers it
                removed += await next(iter(self._deduplicators.values())).cleanup_shared()
            if removed:
                logger.debug("Dedup cleanup finished", extra={"removed_count": removed})

    async def run(self) -> None:
        """Run every partition worker until stop() or all are finished."""
        await self.start()
        self._running = True
        self._stats_logger = PeriodicStatsLogger(
            interval_seconds=self.config.observability.stats_interval_seconds,
            get_stats=self.get_stats,
            stage="processing",
            worker_id=self.worker_id,
        )
        self._stats_logger.start()
        self._cleanup_task = asyncio.create_task(self._periodic_cleanup(), name="dedup-cleanup")

        supervisors = [
            asyncio.create_task(self._supervise(pid), name=f"partition-{pid}")
            for pid in self.partitions
        ]
        try:
            await asyncio.gather(*supervisors)
        finally:
            for task in supervisors:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*supervisors, return_exceptions=True)
            self._running = False
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            await self._stats_logger.stop()
            logger.info("Telemetry pipeline stopped", extra=self.get_stats())

    async def stop(self) -> None:
        """Stop reading on every partition and let in-flight events settle."""
        if self._shutdown.is_set():
            return
        logger.info("Stopping telemetry pipeline", extra={"worker_id": self.worker_id})
        self._shutdown.set()
        await asyncio.gather(
            *(worker.stop() for worker in list(self._workers.values())),
            return_exceptions=True,
        )

    async def close(self) -> None:
        """Release backend connections."""
        resources = [
            ("source", self.source),
            ("alerts", self.alert_channel),
            ("store", self.document_store),
            ("checkpoints", self.checkpoint_store),
        ]
        if self.shared_dedup is not None:
            resources.append(("dedup", self.shared_dedup))
        for name, resource in resources:
            try:
                await resource.close()
            except Exception as e:
                log_exception(logger, e, "Error closing backend", service=name)

    @property
    def is_running(self) -> bool:
        return self._running

    def _partition_state(self, partition_id: str) -> str:
        override = self._supervisor_states.get(partition_id)
        if override:
            return override
        worker = self._workers.get(partition_id)
        return worker.state if worker else "starting"

    def status(self) -> dict[str, Any]:
        partitions = {}
        for pid in self.partitions:
            worker = self._workers.get(pid)
            info = worker.status() if worker else {}
            info["state"] = self._partition_state(pid)
            info["restarts"] = self._restarts[pid]
            partitions[pid] = info
        return {
            "running": self._running,
            "worker_id": self.worker_id,
            "partitions": partitions,
        }

    def get_stats(self) -> dict[str, Any]:
        totals = Counter(self._retired_stats)
        for worker in self._workers.values():
            totals.update(worker.get_stats())
        stats: dict[str, Any] = dict(totals)
        stats["entries"] = sum(len(d) for d in self._deduplicators.values())
        stats["lag"] = sum(w.checkpoints.lag for w in self._workers.values())
        return stats


async def build_pipeline(
    config: TelemetryConfig,
    telemetry: TelemetrySink | None = None,
) -> TelemetryPipeline:
    """Create a pipeline with the backends selected in configuration."""
    namespace = stream_namespace(config.source)
    return TelemetryPipeline(
        config,
        source=create_stream_source(config.source),
        checkpoint_store=create_checkpoint_store(config.checkpoints, namespace=namespace),
        document_store=create_document_store(config.store),
        alert_channel=create_alert_channel(config.alerts),
        shared_dedup=await create_shared_dedup_store(config.dedup),
        telemetry=telemetry,
    )


__all__ = ["TelemetryPipeline", "build_pipeline", "stream_namespace"]
