"""Transport-agnostic event and state types for the processing core."""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

__all__ = [
    "Severity",
    "RawEvent",
    "ClassifiedEvent",
    "PartitionCheckpoint",
    "DedupState",
    "DedupEntry",
    "PartitionBatch",
    "AlertOutcome",
    "WriteOutcome",
    "CheckpointState",
    "EscalationKind",
    "EscalationSignal",
    "make_dedup_key",
]


class Severity(str, Enum):
    CRITICAL = "critical"
    ROUTINE = "routine"


def make_dedup_key(device_id: str, event_id: str) -> str:
    """Stable dedup key for a logical event: sha256 of the JSON array [device_id, event_id]."""
    return hashlib.sha256(json.dumps([device_id, event_id]).encode()).hexdigest()


@dataclass(frozen=True)
class RawEvent:
    """Event record as read from one stream partition."""

    device_id: str
    event_id: str
    timestamp: datetime
    payload: bytes
    partition_offset: int
    partition_id: str = ""


@dataclass(frozen=True)
class ClassifiedEvent:
    """RawEvent plus the classifier's verdict."""

    raw: RawEvent
    severity: Severity
    dedup_key: str
    malformed: bool = False
    # Critical reason, or the anomaly description for malformed payloads
    reason: str | None = None

    @property
    def device_id(self) -> str:
        return self.raw.device_id

    @property
    def event_id(self) -> str:
        return self.raw.event_id

    @property
    def timestamp(self) -> datetime:
        return self.raw.timestamp

    @property
    def payload(self) -> bytes:
        return self.raw.payload

    @property
    def partition_id(self) -> str:
        return self.raw.partition_id

    @property
    def partition_offset(self) -> int:
        return self.raw.partition_offset

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL


@dataclass(frozen=True)
class PartitionCheckpoint:
    """Last fully-processed position in a partition."""

    partition_id: str
    offset: int

    def to_dict(self) -> dict:
        return {"partition_id": self.partition_id, "offset": self.offset}

    @classmethod
    def from_dict(cls, data: dict) -> "PartitionCheckpoint":
        return cls(partition_id=str(data["partition_id"]), offset=int(data["offset"]))


class DedupState(str, Enum):
    PENDING = "pending"
    WRITTEN = "written"


@dataclass
class DedupEntry:
    dedup_key: str
    first_seen_at: float
    state: DedupState = DedupState.PENDING


@dataclass
class PartitionBatch:
    """Result of one fetch against a stream partition."""

    events: list[RawEvent] = field(default_factory=list)
    # True once the partition is closed and fully drained
    end_of_partition: bool = False


class AlertOutcome(str, Enum):
    DELIVERED = "delivered"
    FAILED = "failed"


class WriteOutcome(str, Enum):
    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"


class CheckpointState(str, Enum):
    IDLE = "idle"
    READING = "reading"
    AWAITING_EFFECTS = "awaiting_effects"
    COMMITTED = "committed"


class EscalationKind(str, Enum):
    ALERT_DELIVERY_FAILED = "alert_delivery_failed"
    PARTITION_STALLED = "partition_stalled"
    PARTITION_FAILED = "partition_failed"


@dataclass(frozen=True)
class EscalationSignal:
    """Operator-facing degradation signal."""

    kind: EscalationKind
    partition_id: str
    device_id: str | None = None
    event_id: str | None = None
    reason: str = ""
    raised_at: datetime = field(default_factory=lambda: datetime.now(UTC))
