"""Tests for the alert message and stored record schemas."""

import base64
import json

import pytest
from pydantic import ValidationError

from conftest import EVENT_TIME, make_raw_event
from kit_pipeline.common.types import ClassifiedEvent, Severity
from kit_pipeline.schemas.records import AlertMessage, StoredEventRecord


def _classified(severity=Severity.CRITICAL, reason="sos_pressed", malformed=False, payload=None):
    raw = make_raw_event(device_id="kit-42", event_id="e1", payload=payload)
    return ClassifiedEvent(
        raw=raw, severity=severity, dedup_key="k", malformed=malformed, reason=reason
    )


class TestAlertMessage:
    def test_from_classified(self):
        message = AlertMessage.from_classified(_classified())
        assert message.device_id == "kit-42"
        assert message.event_id == "e1"
        assert message.timestamp == EVENT_TIME
        assert message.reason == "sos_pressed"

    def test_default_reason(self):
        assert AlertMessage.from_classified(_classified(reason=None)).reason == "critical"

    def test_deterministic_bytes(self):
        event = _classified()
        first = AlertMessage.from_classified(event).to_bytes()
        second = AlertMessage.from_classified(event).to_bytes()
        assert first == second

    def test_from_bytes(self):
        message = AlertMessage.from_classified(_classified())
        assert AlertMessage.from_bytes(message.to_bytes()) == message

    def test_requires_ids(self):
        with pytest.raises(ValidationError):
            AlertMessage(device_id="", event_id="e1", timestamp=EVENT_TIME, reason="x")


class TestStoredEventRecord:
    def test_from_classified(self):
        record = StoredEventRecord.from_classified(_classified())
        assert record.severity == Severity.CRITICAL
        assert record.document_id == "kit-42:e1"
        assert record.partition_key == "kit-42"
        assert record.malformed is False

    def test_payload_base64_in_json(self):
        record = StoredEventRecord.from_classified(
            _classified(severity=Severity.ROUTINE, reason="bad", malformed=True, payload=b"\xff\x00")
        )
        data = json.loads(record.to_json_bytes())
        assert data["payload"] == base64.b64encode(b"\xff\x00").decode("ascii")
        assert data["severity"] == "routine"

    def test_malformed_payload_survives_json(self):
        record = StoredEventRecord.from_classified(
            _classified(severity=Severity.ROUTINE, reason="bad", malformed=True, payload=b"not json{")
        )
        restored = StoredEventRecord.from_json_bytes(record.to_json_bytes())
        assert restored == record
        assert restored.payload == b"not json{"

    def test_invalid_base64_rejected(self):
        with pytest.raises(ValidationError):
            StoredEventRecord.model_validate(
                {
                    "device_id": "kit-1",
                    "event_id": "e1",
                    "timestamp": EVENT_TIME.isoformat(),
                    "severity": "routine",
                    "payload": "***",
                }
            )

    def test_frozen(self):
        record = StoredEventRecord.from_classified(_classified())
        with pytest.raises(ValidationError):
            record.device_id = "other"
