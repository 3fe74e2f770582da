"""Pydantic schemas for kit telemetry payloads, alerts and stored records."""

from kit_pipeline.schemas.payload import KitTelemetryPayload
from kit_pipeline.schemas.records import AlertMessage, StoredEventRecord

__all__ = [
    "KitTelemetryPayload",
    "AlertMessage",
    "StoredEventRecord",
]
