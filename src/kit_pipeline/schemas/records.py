"""
Alert and stored-record schemas.

Both are built deterministically from a ClassifiedEvent: no wall-clock or
random fields, so a redelivered event produces byte-identical alert
messages and store documents.
"""

import base64
import binascii
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from kit_pipeline.common.types import ClassifiedEvent, Severity


class AlertMessage(BaseModel):
    """Wire form of a critical-event alert.

    Delivered at-least-once; consumers must be idempotent on
    (device_id, event_id).
    """

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(..., min_length=1)
    event_id: str = Field(..., min_length=1)
    timestamp: datetime
    reason: str

    @classmethod
    def from_classified(cls, event: ClassifiedEvent) -> "AlertMessage":
        return cls(
            device_id=event.device_id,
            event_id=event.event_id,
            timestamp=event.timestamp,
            reason=event.reason or "critical",
        )

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes | str) -> "AlertMessage":
        return cls.model_validate_json(data)


class StoredEventRecord(BaseModel):
    """One logical document per (device_id, event_id), partitioned by device_id.

    The raw payload is kept verbatim and base64-encoded in JSON so malformed
    payloads survive persistence unchanged.
    """

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(..., min_length=1)
    event_id: str = Field(..., min_length=1)
    timestamp: datetime
    severity: Severity
    payload: bytes
    malformed: bool = False
    reason: str | None = None

    @field_validator("payload", mode="before")
    @classmethod
    def decode_payload(cls, v):
        if isinstance(v, str):
            try:
                return base64.b64decode(v, validate=True)
            except (binascii.Error, ValueError) as e:
                raise ValueError(f"payload is not valid base64: {e}") from e
        return v

    @field_serializer("payload", when_used="json")
    def encode_payload(self, v: bytes) -> str:
        return base64.b64encode(v).decode("ascii")

    @property
    def document_id(self) -> str:
        return f"{self.device_id}:{self.event_id}"

    @property
    def partition_key(self) -> str:
        return self.device_id

    @classmethod
    def from_classified(cls, event: ClassifiedEvent) -> "StoredEventRecord":
        return cls(
            device_id=event.device_id,
            event_id=event.event_id,
            timestamp=event.timestamp,
            severity=event.severity,
            payload=event.payload,
            malformed=event.malformed,
            reason=event.reason,
        )

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_json_bytes(cls, data: bytes | str) -> "StoredEventRecord":
        return cls.model_validate_json(data)
