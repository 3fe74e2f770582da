"""Tests for the shared JSON serializer."""

import json
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

from core.utils.json_serializers import json_serializer
from kit_pipeline.common.types import Severity


class TestJsonSerializer:
    def test_datetime_and_date(self):
        assert json_serializer(datetime(2026, 3, 1, 12, 0, tzinfo=UTC)) == "2026-03-01T12:00:00+00:00"
        assert json_serializer(date(2026, 3, 1)) == "2026-03-01"

    def test_decimal_stays_numeric(self):
        assert json_serializer(Decimal("1.5")) == 1.5

    def test_enum_value(self):
        assert json_serializer(Severity.CRITICAL) == "critical"

    def test_bytes_base64(self):
        assert json_serializer(b"\x00\x01") == "AAE="

    def test_path(self):
        assert json_serializer(Path("a/b")) == str(Path("a/b"))

    def test_fallback_to_str(self):
        assert json_serializer(object()).startswith("<object")

    def test_used_as_json_default(self):
        encoded = json.dumps({"severity": Severity.ROUTINE, "lag": 3}, default=json_serializer)
        assert json.loads(encoded) == {"severity": "routine", "lag": 3}
