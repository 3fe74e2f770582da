"""
Alert channels for critical events.

Backends are imported lazily by create_alert_channel() so the in-memory
channel works without the Azure or Kafka SDKs being importable.
"""

from config.config import AlertSettings
from kit_pipeline.alerts.base import AlertChannelProtocol
from kit_pipeline.alerts.memory import MemoryAlertChannel


def create_alert_channel(settings: AlertSettings) -> AlertChannelProtocol:
    """Build the alert channel selected by alerts.type.

    Raises:
        ValueError: Unknown type, or a networked channel with empty
            connection settings
    """
    if settings.type == "memory":
        return MemoryAlertChannel()

    if settings.type == "eventhub":
        from kit_pipeline.alerts.eventhub import EventHubAlertChannel

        return EventHubAlertChannel(
            connection_string=settings.connection_string,
            eventhub_name=settings.eventhub_name,
        )

    if settings.type == "kafka":
        from kit_pipeline.alerts.kafka import KafkaAlertChannel
        from kit_pipeline.common.connections import KafkaConnection

        return KafkaAlertChannel(
            KafkaConnection(
                bootstrap_servers=settings.bootstrap_servers,
                security_protocol=settings.security_protocol,
                sasl_mechanism=settings.sasl_mechanism,
                sasl_plain_username=settings.sasl_username,
                sasl_plain_password=settings.sasl_password,
            ),
            topic=settings.topic,
        )

    raise ValueError(f"Unknown alert channel type: {settings.type}")


__all__ = [
    "AlertChannelProtocol",
    "MemoryAlertChannel",
    "create_alert_channel",
]
