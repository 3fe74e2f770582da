"""Shared JSON serialization helpers for log records and stored documents."""

import base64
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any


def json_serializer(obj: Any) -> Any:
    """
    Type-preserving fallback for json.dumps(default=...).

    - datetime/date -> ISO 8601 string
    - Decimal -> float
    - Enum -> value
    - bytes -> base64 text
    - Path -> string
    - objects exposing model_dump() (pydantic) -> dict
    - everything else -> string

    Numeric values are never stringified, so downstream aggregations see
    real numbers.
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (bytes, bytearray)):
        return base64.b64encode(bytes(obj)).decode("ascii")
    if isinstance(obj, Path):
        return str(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    return str(obj)


__all__ = ["json_serializer"]
