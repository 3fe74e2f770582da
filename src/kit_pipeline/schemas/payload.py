"""
Kit telemetry payload schema.

Kits publish a JSON object per event. Field names are accepted in snake_case
or the camelCase used by the kit firmware; unknown fields are kept so that
severity policies can evaluate vendor-specific readings.
"""

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class KitTelemetryPayload(BaseModel):
    """Decoded sensor reading from a wearable/mobile kit.

    Every field is optional: kits report the sensors they carry. Values
    outside physical ranges fail validation and the event is classified as
    malformed.

    Example:
        >>> KitTelemetryPayload.model_validate({"heartRate": 192, "spo2": 97})
        KitTelemetryPayload(heart_rate_bpm=192.0, spo2_pct=97.0, ...)
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    heart_rate_bpm: float | None = Field(
        default=None,
        ge=0,
        le=400,
        validation_alias=AliasChoices("heart_rate_bpm", "heartRate", "heart_rate"),
    )
    spo2_pct: float | None = Field(
        default=None,
        ge=0,
        le=100,
        validation_alias=AliasChoices("spo2_pct", "spo2", "spO2"),
    )
    skin_temp_c: float | None = Field(
        default=None,
        ge=-50,
        le=80,
        validation_alias=AliasChoices("skin_temp_c", "skinTemp", "skin_temp"),
    )
    fall_detected: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("fall_detected", "fallDetected"),
    )
    sos_pressed: bool | None = Field(
        default=None,
        validation_alias=AliasChoices("sos_pressed", "sosPressed", "sos"),
    )
    battery_pct: float | None = Field(
        default=None,
        ge=0,
        le=100,
        validation_alias=AliasChoices("battery_pct", "battery", "batteryLevel"),
    )
    # Device-side severity hint, used by the explicit_flag policy
    severity: str | None = None
    alert: bool | None = None

    @field_validator("severity")
    @classmethod
    def normalize_severity(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    def extra_fields(self) -> dict[str, Any]:
        """Fields the schema does not model explicitly."""
        return dict(self.model_extra or {})
