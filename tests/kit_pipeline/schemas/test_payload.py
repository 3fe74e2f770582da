"""Tests for the kit telemetry payload schema."""

import pytest
from pydantic import ValidationError

from kit_pipeline.schemas.payload import KitTelemetryPayload


class TestKitTelemetryPayload:
    def test_snake_case_fields(self):
        payload = KitTelemetryPayload.model_validate(
            {"heart_rate_bpm": 72, "spo2_pct": 98, "skin_temp_c": 36.5}
        )
        assert payload.heart_rate_bpm == 72.0
        assert payload.spo2_pct == 98.0
        assert payload.skin_temp_c == 36.5

    @pytest.mark.parametrize(
        "data,field,expected",
        [
            ({"heartRate": 190}, "heart_rate_bpm", 190.0),
            ({"spo2": 85}, "spo2_pct", 85.0),
            ({"skinTemp": 41}, "skin_temp_c", 41.0),
            ({"fallDetected": True}, "fall_detected", True),
            ({"sos": True}, "sos_pressed", True),
            ({"batteryLevel": 12}, "battery_pct", 12.0),
        ],
    )
    def test_firmware_aliases(self, data, field, expected):
        payload = KitTelemetryPayload.model_validate(data)
        assert getattr(payload, field) == expected

    def test_everything_optional(self):
        payload = KitTelemetryPayload.model_validate({})
        assert payload.heart_rate_bpm is None
        assert payload.sos_pressed is None

    def test_unknown_fields_kept(self):
        payload = KitTelemetryPayload.model_validate({"heartRate": 70, "vendor_co2": 400})
        assert payload.extra_fields() == {"vendor_co2": 400}

    @pytest.mark.parametrize(
        "data",
        [
            {"heart_rate_bpm": -1},
            {"heart_rate_bpm": 500},
            {"spo2_pct": 101},
            {"skin_temp_c": 120},
            {"battery_pct": -5},
            {"heart_rate_bpm": "fast"},
        ],
    )
    def test_out_of_range_rejected(self, data):
        with pytest.raises(ValidationError):
            KitTelemetryPayload.model_validate(data)

    def test_severity_normalized(self):
        assert KitTelemetryPayload.model_validate({"severity": "  CRITICAL "}).severity == "critical"
        assert KitTelemetryPayload.model_validate({"severity": "   "}).severity is None
