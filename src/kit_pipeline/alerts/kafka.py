"""Kafka alert channel (aiokafka producer, acks=all, key=device_id)."""

import logging

from aiokafka import AIOKafkaProducer

from core.errors.transport_classifier import classify_transport_error
from kit_pipeline.alerts.base import alert_headers
from kit_pipeline.common.connections import KafkaConnection, build_kafka_security_config
from kit_pipeline.schemas.records import AlertMessage

logger = logging.getLogger(__name__)


class KafkaAlertChannel:
    """Alert channel backed by AIOKafkaProducer."""

    def __init__(self, connection: KafkaConnection, topic: str):
        if not connection.bootstrap_servers:
            raise ValueError(
                "Alert channel bootstrap_servers is empty; set alerts.bootstrap_servers "
                "or use alerts.type=memory"
            )
        if not topic:
            raise ValueError("Alert channel topic is required")
        self.connection = connection
        self.topic = topic
        self._producer: AIOKafkaProducer | None = None

    async def start(self) -> None:
        if self._producer is not None:
            logger.warning("Alert producer already started, ignoring duplicate start call")
            return

        config = {
            "bootstrap_servers": self.connection.bootstrap_servers,
            "acks": "all",
            "enable_idempotence": True,
            "request_timeout_ms": self.connection.request_timeout_ms,
        }
        config.update(build_kafka_security_config(self.connection))

        logger.info(
            "Starting Kafka alert channel",
            extra={"service": "alerts", "backend": "kafka", "path": self.topic},
        )
        producer = AIOKafkaProducer(**config)
        try:
            await producer.start()
        except Exception as e:
            raise classify_transport_error(e, "alerts") from e
        self._producer = producer

    async def send(self, message: AlertMessage) -> None:
        if self._producer is None:
            raise RuntimeError("Alert producer not started. Call start() first.")

        headers = [(k, v.encode("utf-8")) for k, v in alert_headers(message).items()]
        try:
            await self._producer.send_and_wait(
                self.topic,
                key=message.device_id.encode("utf-8"),
                value=message.to_bytes(),
                headers=headers,
            )
        except Exception as e:
            raise classify_transport_error(
                e, "alerts", context={"device_id": message.device_id, "event_id": message.event_id}
            ) from e

    async def close(self) -> None:
        if self._producer is None:
            return
        try:
            await self._producer.flush()
            await self._producer.stop()
        except Exception as e:
            logger.error(
                "Error stopping Kafka alert producer",
                extra={"error": str(e)},
                exc_info=True,
            )
        finally:
            self._producer = None


__all__ = ["KafkaAlertChannel"]
