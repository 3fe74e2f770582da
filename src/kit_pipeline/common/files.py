"""Crash-safe JSON file helpers shared by the local filesystem backends."""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any
from urllib.parse import quote

logger = logging.getLogger(__name__)

REPLACE_MAX_RETRIES = 5


def sanitize_name(name: str) -> str:
    """Sanitize a name for filesystem path safety."""
    return (
        name.replace(".", "_")
        .replace("/", "_")
        .replace("\\", "_")
        .replace(":", "_")
        .replace("$", "_")
    )


def encode_path_segment(value: str) -> str:
    """Reversible, filesystem-safe encoding of an id for use as one path segment.

    Unlike sanitize_name, distinct ids always map to distinct segments.
    """
    return quote(value, safe="-_").replace(".", "%2E")


def read_json(file_path: Path, default: Any = None) -> Any:
    """Read a JSON file, returning default if missing or corrupt."""
    if not file_path.exists():
        return default
    try:
        with open(file_path) as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Failed to read {file_path}: {e}, ignoring")
        return default


def write_bytes_atomic(file_path: Path, content: bytes) -> None:
    """Atomic write: write to temp file, fsync, then os.replace().

    On Windows, os.replace() can fail with PermissionError when another
    process briefly locks the target file, so the replace is retried with
    short delays.
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = file_path.with_name(file_path.name + ".tmp")
    with open(tmp_path, "wb") as f:
        f.write(content)
        f.flush()
        os.fsync(f.fileno())

    for attempt in range(REPLACE_MAX_RETRIES):
        try:
            os.replace(str(tmp_path), str(file_path))
            return
        except PermissionError:
            if attempt < REPLACE_MAX_RETRIES - 1:
                delay = 0.05 * (2**attempt)  # 50ms, 100ms, 200ms, 400ms
                logger.debug(
                    f"os.replace failed for {file_path.name} "
                    f"(attempt {attempt + 1}/{REPLACE_MAX_RETRIES}), "
                    f"retrying in {delay * 1000:.0f}ms"
                )
                time.sleep(delay)
            else:
                logger.error(
                    f"os.replace failed for {file_path.name} "
                    f"after {REPLACE_MAX_RETRIES} attempts, raising"
                )
                raise


def write_json_atomic(file_path: Path, data: Any) -> None:
    write_bytes_atomic(
        file_path, json.dumps(data, indent=2, default=str).encode("utf-8")
    )


__all__ = [
    "sanitize_name",
    "encode_path_segment",
    "read_json",
    "write_bytes_atomic",
    "write_json_atomic",
]
