"""
Severity policies.

A policy inspects a decoded payload and returns the critical reason, or
None for routine events. Policies must be pure: the same payload always
yields the same verdict, so a redelivered event is classified identically.

Policies:
- vitals_threshold: explicit SOS/fall flags plus configurable vital-sign limits
- explicit_flag: trust the device's own severity/alert fields
- never_critical: everything is routine (alerting disabled)
"""

from collections.abc import Callable, Mapping
from functools import partial

from kit_pipeline.schemas.payload import KitTelemetryPayload

SeverityPolicy = Callable[[KitTelemetryPayload], str | None]

DEFAULT_THRESHOLDS: dict[str, float] = {
    "heart_rate_high_bpm": 180.0,
    "heart_rate_low_bpm": 40.0,
    "spo2_low_pct": 88.0,
    "skin_temp_high_c": 40.0,
    "skin_temp_low_c": 34.0,
}


def explicit_flag(payload: KitTelemetryPayload) -> str | None:
    """Critical when the device itself flagged the event."""
    if payload.severity == "critical":
        return "device_severity_critical"
    if payload.alert:
        return "device_alert_flag"
    return None


def never_critical(payload: KitTelemetryPayload) -> str | None:
    return None


def vitals_threshold(
    payload: KitTelemetryPayload,
    thresholds: Mapping[str, float] | None = None,
) -> str | None:
    """Critical on SOS, a detected fall, or a vital sign outside its limits.

    Checks run in a fixed order so the reported reason is deterministic when
    several conditions hold at once.
    """
    limits = {**DEFAULT_THRESHOLDS, **(thresholds or {})}

    if payload.sos_pressed:
        return "sos_pressed"
    if payload.fall_detected:
        return "fall_detected"

    hr = payload.heart_rate_bpm
    if hr is not None:
        if hr > limits["heart_rate_high_bpm"]:
            return f"heart_rate_high:{hr:g}"
        if hr < limits["heart_rate_low_bpm"]:
            return f"heart_rate_low:{hr:g}"

    spo2 = payload.spo2_pct
    if spo2 is not None and spo2 < limits["spo2_low_pct"]:
        return f"spo2_low:{spo2:g}"

    temp = payload.skin_temp_c
    if temp is not None:
        if temp > limits["skin_temp_high_c"]:
            return f"skin_temp_high:{temp:g}"
        if temp < limits["skin_temp_low_c"]:
            return f"skin_temp_low:{temp:g}"

    return None


POLICIES = ("vitals_threshold", "explicit_flag", "never_critical")


def get_policy(name: str, thresholds: Mapping[str, float] | None = None) -> SeverityPolicy:
    """Resolve a policy identifier from configuration.

    Raises:
        ValueError: Unknown policy name or threshold key
    """
    if name == "vitals_threshold":
        unknown = set(thresholds or {}) - set(DEFAULT_THRESHOLDS)
        if unknown:
            raise ValueError(f"Unknown vitals thresholds: {sorted(unknown)}")
        policy = partial(vitals_threshold, thresholds=dict(thresholds or {}))
        policy.__name__ = "vitals_threshold"
        return policy
    if name == "explicit_flag":
        return explicit_flag
    if name == "never_critical":
        return never_critical
    raise ValueError(f"Unknown severity policy: '{name}'. Must be one of {', '.join(POLICIES)}")


__all__ = [
    "SeverityPolicy",
    "DEFAULT_THRESHOLDS",
    "POLICIES",
    "explicit_flag",
    "never_critical",
    "vitals_threshold",
    "get_policy",
]
