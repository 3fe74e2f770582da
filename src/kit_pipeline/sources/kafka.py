"""Kafka stream source.

One AIOKafkaConsumer per partition, manually assigned, auto-commit disabled.
Consumer-group offsets are never used: each partition is positioned from the
processing core's own durable checkpoint via seek().
"""

import logging
from datetime import UTC, datetime

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from core.errors.exceptions import PermanentSourceError
from core.errors.transport_classifier import classify_transport_error
from kit_pipeline.common.connections import KafkaConnection, build_kafka_security_config
from kit_pipeline.common.types import PartitionBatch, RawEvent
from kit_pipeline.sources.base import build_raw_event, normalize_properties

logger = logging.getLogger(__name__)


def consumer_record_to_raw_event(record: ConsumerRecord, partition_id: str) -> RawEvent:
    broker_time = None
    if record.timestamp is not None and record.timestamp >= 0:
        broker_time = datetime.fromtimestamp(record.timestamp / 1000, tz=UTC)
    key = record.key.decode("utf-8", errors="replace") if record.key else None
    return build_raw_event(
        partition_id=partition_id,
        offset=record.offset,
        body=record.value or b"",
        properties=normalize_properties(record.headers),
        broker_time=broker_time,
        key=key,
    )


class _AssignedPartition:
    def __init__(self, consumer: AIOKafkaConsumer, tp: TopicPartition) -> None:
        self.consumer = consumer
        self.tp = tp
        # Offset of the last record handed out; None before the first seek
        self.position: int | None = None
        self.positioned = False


class KafkaStreamSource:
    """Stream source over aiokafka with manual partition assignment."""

    def __init__(self, connection: KafkaConnection, topic: str):
        if not connection.bootstrap_servers:
            raise ValueError("Kafka bootstrap_servers is required")
        if not topic:
            raise ValueError("Kafka topic is required")
        self.connection = connection
        self.topic = topic
        self._metadata_consumer: AIOKafkaConsumer | None = None
        self._assigned: dict[str, _AssignedPartition] = {}

    def _consumer_config(self) -> dict:
        config = {
            "bootstrap_servers": self.connection.bootstrap_servers,
            "group_id": None,
            "enable_auto_commit": False,
            "auto_offset_reset": "earliest",
            "request_timeout_ms": self.connection.request_timeout_ms,
        }
        config.update(build_kafka_security_config(self.connection))
        return config

    async def start(self) -> None:
        if self._metadata_consumer is not None:
            logger.warning("Kafka source already started, ignoring duplicate start call")
            return
        logger.info(
            "Starting Kafka stream source",
            extra={"service": "source", "backend": "kafka", "path": self.topic},
        )
        consumer = AIOKafkaConsumer(**self._consumer_config())
        try:
            await consumer.start()
        except Exception as e:
            raise classify_transport_error(e, "source") from e
        self._metadata_consumer = consumer

    async def close(self) -> None:
        for assigned in self._assigned.values():
            try:
                await assigned.consumer.stop()
            except Exception:
                logger.error(
                    "Error stopping Kafka partition consumer",
                    extra={"partition_id": str(assigned.tp.partition)},
                    exc_info=True,
                )
        self._assigned.clear()
        if self._metadata_consumer is not None:
            await self._metadata_consumer.stop()
            self._metadata_consumer = None
        logger.info("Kafka stream source closed")

    async def list_partitions(self) -> list[str]:
        if self._metadata_consumer is None:
            raise RuntimeError("Kafka source not started")
        try:
            await self._metadata_consumer.topics()
            partitions = self._metadata_consumer.partitions_for_topic(self.topic)
        except Exception as e:
            raise classify_transport_error(e, "source") from e
        if not partitions:
            raise PermanentSourceError(f"Topic not found or has no partitions: {self.topic}")
        return [str(p) for p in sorted(partitions)]

    async def _assign(self, partition_id: str) -> _AssignedPartition:
        assigned = self._assigned.get(partition_id)
        if assigned is not None:
            return assigned

        tp = TopicPartition(self.topic, int(partition_id))
        consumer = AIOKafkaConsumer(**self._consumer_config())
        await consumer.start()
        consumer.assign([tp])
        assigned = _AssignedPartition(consumer, tp)
        self._assigned[partition_id] = assigned
        logger.debug("Assigned Kafka partition", extra={"partition_id": partition_id})
        return assigned

    async def _seek(self, assigned: _AssignedPartition, after_offset: int | None) -> None:
        if after_offset is None:
            await assigned.consumer.seek_to_beginning(assigned.tp)
        else:
            assigned.consumer.seek(assigned.tp, after_offset + 1)
        assigned.position = after_offset
        assigned.positioned = True

    async def fetch(
        self,
        partition_id: str,
        after_offset: int | None,
        max_records: int,
        timeout: float,
    ) -> PartitionBatch:
        try:
            assigned = await self._assign(partition_id)
            if not assigned.positioned or assigned.position != after_offset:
                await self._seek(assigned, after_offset)

            data = await assigned.consumer.getmany(
                assigned.tp,
                timeout_ms=int(timeout * 1000),
                max_records=max_records,
            )
        except Exception as e:
            raise classify_transport_error(e, "source", partition_id) from e

        records = data.get(assigned.tp, [])
        events = [consumer_record_to_raw_event(r, partition_id) for r in records]
        if events:
            assigned.position = events[-1].partition_offset
        return PartitionBatch(events=events)
