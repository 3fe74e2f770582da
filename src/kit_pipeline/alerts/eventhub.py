"""Azure Event Hub alert channel.

Alerts are sent one per batch with partition_key=device_id, so a device's
alerts land on one Event Hub partition and keep their relative order.
"""

import asyncio
import logging

from azure.eventhub import EventData
from azure.eventhub.aio import EventHubProducerClient

from core.errors.transport_classifier import classify_transport_error
from kit_pipeline.alerts.base import alert_headers
from kit_pipeline.common.connections import eventhub_transport_type, mask_connection_string
from kit_pipeline.schemas.records import AlertMessage

logger = logging.getLogger(__name__)


class EventHubAlertChannel:
    """Alert channel backed by EventHubProducerClient."""

    def __init__(self, connection_string: str, eventhub_name: str = "", transport: str = "amqp"):
        if not connection_string:
            raise ValueError(
                "Alert channel connection string is empty; set alerts.connection_string "
                "or use alerts.type=memory"
            )
        self.connection_string = connection_string
        self.eventhub_name = eventhub_name
        self.transport = transport
        self._producer: EventHubProducerClient | None = None

    async def start(self) -> None:
        if self._producer is not None:
            logger.warning("Alert producer already started, ignoring duplicate start call")
            return

        logger.info(
            "Starting Event Hub alert channel",
            extra={
                "service": "alerts",
                "backend": "eventhub",
                "path": mask_connection_string(self.connection_string),
            },
        )
        self._producer = EventHubProducerClient.from_connection_string(
            conn_str=self.connection_string,
            eventhub_name=self.eventhub_name or None,
            transport_type=eventhub_transport_type(self.transport),
        )

    async def send(self, message: AlertMessage) -> None:
        if self._producer is None:
            raise RuntimeError("Alert producer not started. Call start() first.")

        event_data = EventData(message.to_bytes())
        event_data.properties = alert_headers(message)
        try:
            batch = await self._producer.create_batch(partition_key=message.device_id)
            batch.add(event_data)
            await self._producer.send_batch(batch)
        except Exception as e:
            raise classify_transport_error(
                e, "alerts", context={"device_id": message.device_id, "event_id": message.event_id}
            ) from e

        logger.debug(
            "Alert sent to Event Hub",
            extra={"device_id": message.device_id, "event_id": message.event_id},
        )

    async def close(self) -> None:
        if self._producer is None:
            return
        try:
            await self._producer.close()
        except Exception as e:
            logger.error(
                "Error stopping Event Hub alert producer",
                extra={"error": str(e)},
                exc_info=True,
            )
        finally:
            self._producer = None
            # aiohttp sessions under AmqpOverWebsocket need a moment to close
            await asyncio.sleep(0.25)


__all__ = ["EventHubAlertChannel"]
