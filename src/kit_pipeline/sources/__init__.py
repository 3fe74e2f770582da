"""
Stream sources.

Backends are imported lazily by create_stream_source() so the in-memory
source works without the Azure or Kafka SDKs being importable.
"""

from config.config import SourceSettings
from kit_pipeline.sources.base import StreamSource, build_raw_event
from kit_pipeline.sources.memory import InMemoryStreamSource


def create_stream_source(settings: SourceSettings) -> StreamSource:
    """Build the stream source selected by source.type."""
    if settings.type == "memory":
        return InMemoryStreamSource(partition_count=settings.partition_count)

    if settings.type == "eventhub":
        from kit_pipeline.sources.eventhub import EventHubStreamSource

        return EventHubStreamSource(
            connection_string=settings.eventhub_connection_string,
            eventhub_name=settings.eventhub_name,
            consumer_group=settings.consumer_group,
            queue_size=settings.queue_size,
            transport=settings.transport,
        )

    if settings.type == "kafka":
        from kit_pipeline.common.connections import KafkaConnection
        from kit_pipeline.sources.kafka import KafkaStreamSource

        return KafkaStreamSource(
            KafkaConnection(
                bootstrap_servers=settings.bootstrap_servers,
                security_protocol=settings.security_protocol,
                sasl_mechanism=settings.sasl_mechanism,
                sasl_plain_username=settings.sasl_username,
                sasl_plain_password=settings.sasl_password,
            ),
            topic=settings.topic,
        )

    raise ValueError(f"Unknown stream source type: {settings.type}")


__all__ = [
    "StreamSource",
    "InMemoryStreamSource",
    "build_raw_event",
    "create_stream_source",
]
