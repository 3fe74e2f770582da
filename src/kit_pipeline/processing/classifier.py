"""Event classifier: severity verdict plus stable dedup key."""

import json
import logging

from pydantic import ValidationError

from core.errors.exceptions import ClassificationAnomaly
from kit_pipeline.common.types import ClassifiedEvent, RawEvent, Severity, make_dedup_key
from kit_pipeline.processing.policies import SeverityPolicy, vitals_threshold
from kit_pipeline.schemas.payload import KitTelemetryPayload

logger = logging.getLogger(__name__)


def decode_payload(payload: bytes) -> KitTelemetryPayload:
    """Decode a raw payload.

    Raises:
        ClassificationAnomaly: Not UTF-8 JSON, not an object, or out of range
    """
    try:
        data = json.loads(payload)
    except (UnicodeDecodeError, ValueError) as e:
        raise ClassificationAnomaly(f"payload is not valid JSON: {e}", cause=e) from e
    if not isinstance(data, dict):
        raise ClassificationAnomaly(
            f"payload is a JSON {type(data).__name__}, expected an object"
        )
    try:
        return KitTelemetryPayload.model_validate(data)
    except ValidationError as e:
        fields = ",".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ClassificationAnomaly(f"payload failed validation: {fields}", cause=e) from e


class Classifier:
    """
    Assigns severity and dedup key to raw events.

    classify() never raises for payload problems: malformed payloads and
    policy failures become routine events with malformed=True and the
    anomaly as reason, so they are still persisted.
    """

    def __init__(self, policy: SeverityPolicy = vitals_threshold):
        self.policy = policy
        self.policy_name = getattr(policy, "__name__", type(policy).__name__)

    def classify(self, raw: RawEvent) -> ClassifiedEvent:
        dedup_key = make_dedup_key(raw.device_id, raw.event_id)
        try:
            payload = decode_payload(raw.payload)
            reason = self.policy(payload)
        except ClassificationAnomaly as e:
            return self._malformed(raw, dedup_key, e.message)
        except Exception as e:
            anomaly = ClassificationAnomaly(
                f"policy {self.policy_name} failed: {type(e).__name__}: {e}", cause=e
            )
            return self._malformed(raw, dedup_key, anomaly.message)

        if reason:
            return ClassifiedEvent(
                raw=raw,
                severity=Severity.CRITICAL,
                dedup_key=dedup_key,
                reason=reason,
            )
        return ClassifiedEvent(raw=raw, severity=Severity.ROUTINE, dedup_key=dedup_key)

    def _malformed(self, raw: RawEvent, dedup_key: str, reason: str) -> ClassifiedEvent:
        logger.warning(
            "Malformed payload classified as routine",
            extra={
                "device_id": raw.device_id,
                "event_id": raw.event_id,
                "partition_id": raw.partition_id,
                "partition_offset": raw.partition_offset,
                "reason": reason,
                "policy": self.policy_name,
            },
        )
        return ClassifiedEvent(
            raw=raw,
            severity=Severity.ROUTINE,
            dedup_key=dedup_key,
            malformed=True,
            reason=reason,
        )


__all__ = ["Classifier", "decode_payload"]
