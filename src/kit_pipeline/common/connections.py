"""Shared Kafka / Event Hub connection helpers."""

import re
import ssl
from dataclasses import dataclass

from azure.eventhub import TransportType


@dataclass
class KafkaConnection:
    """Broker connection settings shared by the Kafka source and alert channel."""

    bootstrap_servers: str
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_plain_username: str = ""
    sasl_plain_password: str = ""
    request_timeout_ms: int = 30000


def build_kafka_security_config(connection: KafkaConnection) -> dict:
    """Build aiokafka security kwargs.

    Handles PLAIN and SCRAM SASL mechanisms and SSL context creation.
    Returns an empty dict for PLAINTEXT connections.
    """
    if connection.security_protocol == "PLAINTEXT":
        return {}

    security_config = {"security_protocol": connection.security_protocol}

    if "SSL" in connection.security_protocol:
        security_config["ssl_context"] = ssl.create_default_context()

    if connection.security_protocol.startswith("SASL"):
        security_config["sasl_mechanism"] = connection.sasl_mechanism
        security_config["sasl_plain_username"] = connection.sasl_plain_username
        security_config["sasl_plain_password"] = connection.sasl_plain_password

    return security_config


def mask_connection_string(conn_str: str) -> str:
    """Mask SharedAccessKey / AccountKey values for logging."""
    if not conn_str:
        return ""
    return re.sub(
        r"((?:SharedAccessKey|AccountKey)=)[^;]+",
        r"\1***MASKED***",
        conn_str,
        flags=re.IGNORECASE,
    )


def eventhub_transport_type(name: str) -> TransportType:
    """Map a configured transport name to the azure-eventhub enum.

    "websocket" (AMQP over WebSocket, port 443) works through Private Link
    and proxies that block 5671.
    """
    if name == "websocket":
        return TransportType.AmqpOverWebsocket
    return TransportType.Amqp
