"""Azure Event Hub stream source.

Each partition gets its own receive task on a shared EventHubConsumerClient.
The task feeds a bounded asyncio.Queue; when the worker falls behind the
queue fills and the SDK callback blocks, which stops the receive loop from
pulling more events (backpressure).

Positions are Event Hub sequence numbers. The client is created without a
checkpoint store: the processing core resumes each partition from its own
durable checkpoint and passes it as an exclusive starting position.
"""

import asyncio
import contextlib
import logging

from azure.eventhub import EventData
from azure.eventhub.aio import EventHubConsumerClient

from core.errors.transport_classifier import classify_transport_error
from kit_pipeline.common.connections import eventhub_transport_type, mask_connection_string
from kit_pipeline.common.types import PartitionBatch, RawEvent
from kit_pipeline.sources.base import build_raw_event, normalize_properties

logger = logging.getLogger(__name__)

# Beginning of the retained stream
EARLIEST_POSITION = "-1"


def event_data_to_raw_event(event: EventData, partition_id: str) -> RawEvent:
    """Convert EventData to RawEvent, keyed by sequence number."""
    body = event.body if isinstance(event.body, bytes) else b"".join(event.body)
    properties = normalize_properties(event.properties)
    return build_raw_event(
        partition_id=partition_id,
        offset=event.sequence_number,
        body=body,
        properties=properties,
        broker_time=event.enqueued_time,
        key=event.partition_key,
    )


class _PartitionReceiver:
    def __init__(self, queue_size: int) -> None:
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.task: asyncio.Task | None = None
        self.position: int | None = None
        self.pending_error: Exception | None = None


class EventHubStreamSource:
    """Stream source over azure-eventhub with per-partition bounded queues."""

    def __init__(
        self,
        connection_string: str,
        eventhub_name: str,
        consumer_group: str = "$Default",
        queue_size: int = 500,
        transport: str = "amqp",
        prefetch: int = 300,
        max_wait_time: float = 5.0,
    ):
        if not connection_string:
            raise ValueError("Event Hub connection string is required")
        self.connection_string = connection_string
        self.eventhub_name = eventhub_name
        self.consumer_group = consumer_group
        self.queue_size = queue_size
        self.transport = transport
        self.prefetch = prefetch
        self.max_wait_time = max_wait_time
        self._client: EventHubConsumerClient | None = None
        self._receivers: dict[str, _PartitionReceiver] = {}

    async def start(self) -> None:
        if self._client is not None:
            logger.warning("Event Hub source already started, ignoring duplicate start call")
            return

        logger.info(
            "Starting Event Hub stream source",
            extra={
                "service": "source",
                "backend": "eventhub",
                "path": mask_connection_string(self.connection_string),
            },
        )
        self._client = EventHubConsumerClient.from_connection_string(
            conn_str=self.connection_string,
            consumer_group=self.consumer_group,
            eventhub_name=self.eventhub_name or None,
            transport_type=eventhub_transport_type(self.transport),
        )

    async def close(self) -> None:
        for receiver in self._receivers.values():
            await self._cancel_receiver(receiver)
        self._receivers.clear()

        if self._client is not None:
            try:
                await self._client.close()
            finally:
                self._client = None
                # aiohttp sessions under AmqpOverWebsocket need a moment to close
                await asyncio.sleep(0.25)
        logger.info("Event Hub stream source closed")

    async def list_partitions(self) -> list[str]:
        if self._client is None:
            raise RuntimeError("Event Hub source not started")
        try:
            return list(await self._client.get_partition_ids())
        except Exception as e:
            raise classify_transport_error(e, "source") from e

    @staticmethod
    async def _cancel_receiver(receiver: _PartitionReceiver) -> None:
        if receiver.task is not None and not receiver.task.done():
            receiver.task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await receiver.task
        receiver.task = None

    async def _receive(self, partition_id: str, receiver: _PartitionReceiver, after_offset: int | None) -> None:
        async def on_event(_partition_context, event):
            if event is not None:
                await receiver.queue.put(event)

        async def on_error(_partition_context, error):
            await receiver.queue.put(error)

        starting_position = EARLIEST_POSITION if after_offset is None else after_offset
        try:
            await self._client.receive(
                on_event=on_event,
                on_error=on_error,
                partition_id=partition_id,
                starting_position=starting_position,
                starting_position_inclusive=False,
                max_wait_time=self.max_wait_time,
                prefetch=self.prefetch,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await receiver.queue.put(e)

    async def _ensure_receiver(self, partition_id: str, after_offset: int | None) -> _PartitionReceiver:
        if self._client is None:
            raise RuntimeError("Event Hub source not started")

        receiver = self._receivers.get(partition_id)
        if receiver is None:
            receiver = _PartitionReceiver(self.queue_size)
            self._receivers[partition_id] = receiver

        restart = (
            receiver.task is None
            or receiver.task.done()
            or receiver.position != after_offset
        )
        if restart:
            await self._cancel_receiver(receiver)
            receiver.queue = asyncio.Queue(maxsize=self.queue_size)
            receiver.pending_error = None
            receiver.position = after_offset
            receiver.task = asyncio.create_task(
                self._receive(partition_id, receiver, after_offset),
                name=f"eventhub-receive-{partition_id}",
            )
            logger.debug(
                "Started Event Hub partition receiver",
                extra={"partition_id": partition_id, "partition_offset": after_offset},
            )
        return receiver

    async def fetch(
        self,
        partition_id: str,
        after_offset: int | None,
        max_records: int,
        timeout: float,
    ) -> PartitionBatch:
        receiver = await self._ensure_receiver(partition_id, after_offset)

        if receiver.pending_error is not None:
            error, receiver.pending_error = receiver.pending_error, None
            raise classify_transport_error(error, "source", partition_id) from error

        events: list[RawEvent] = []
        try:
            item = await asyncio.wait_for(receiver.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return PartitionBatch()

        while True:
            if isinstance(item, Exception):
                if events:
                    receiver.pending_error = item
                    break
                raise classify_transport_error(item, "source", partition_id) from item

            events.append(event_data_to_raw_event(item, partition_id))
            if len(events) >= max_records:
                break
            try:
                item = receiver.queue.get_nowait()
            except asyncio.QueueEmpty:
                break

        if events:
            receiver.position = events[-1].partition_offset
        return PartitionBatch(events=events)
