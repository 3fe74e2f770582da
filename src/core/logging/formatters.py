"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.logging.partition_context import get_partition_context
from core.utils.json_serializers import json_serializer


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Sanitizes connection strings and SAS URLs before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Identifiers
        "device_id",
        "event_id",
        "dedup_key",
        "document_id",
        "severity",
        "reason",
        "policy",
        # Stream position
        "partition_id",
        "partition_offset",
        "committed_offset",
        "last_read_offset",
        "lag",
        "batch_size",
        # Errors
        "error_category",
        "error_message",
        "error_type",
        "error",
        # Resilience
        "attempt",
        "max_attempts",
        "total_attempts",
        "delay_seconds",
        "delay_source",
        "server_retry_after",
        "callback_error",
        "timeout_seconds",
        # Escalation
        "escalation",
        "consecutive_failures",
        "restart_count",
        # Processing metrics
        "records_processed",
        "records_succeeded",
        "records_failed",
        "records_skipped",
        "records_deduplicated",
        "records_malformed",
        "alerts_sent",
        "alerts_failed",
        "duration_ms",
        "processing_time_ms",
        # Storage
        "blob_path",
        "container",
        "path",
        "entries",
        "backend",
        "consistency_level",
        "namespace",
        "removed_count",
        "age_seconds",
        # Operation tracking
        "operation",
        "service",
        "cycle",
        "rate_msg_per_sec",
    ]

    # Type mapping for numeric fields so aggregations never see strings
    NUMERIC_FIELDS = {
        "duration_ms": float,
        "processing_time_ms": float,
        "delay_seconds": float,
        "server_retry_after": float,
        "timeout_seconds": float,
        "rate_msg_per_sec": float,
        "partition_offset": int,
        "committed_offset": int,
        "last_read_offset": int,
        "lag": int,
        "batch_size": int,
        "attempt": int,
        "max_attempts": int,
        "total_attempts": int,
        "consecutive_failures": int,
        "restart_count": int,
        "records_processed": int,
        "records_succeeded": int,
        "records_failed": int,
        "records_skipped": int,
        "records_deduplicated": int,
        "records_malformed": int,
        "alerts_sent": int,
        "alerts_failed": int,
        "entries": int,
        "removed_count": int,
        "age_seconds": float,
        "cycle": int,
    }

    # Fields that may carry credentials and should be sanitized
    URL_FIELDS = ["blob_path", "path", "error_message", "error"]

    SENSITIVE_PARAMS_PATTERN = re.compile(
        r"([?&;])(sig|token|key|secret|password|SharedAccessKey|AccountKey)=[^&;]*",
        re.IGNORECASE,
    )

    def _sanitize_url(self, url: str) -> str:
        return self.SENSITIVE_PARAMS_PATTERN.sub(r"\1\2=[REDACTED]", url)

    def _sanitize_value(self, key: str, value: Any) -> Any:
        if key in self.URL_FIELDS and isinstance(value, str):
            return self._sanitize_url(value)
        return value

    def _ensure_type(self, field: str, value: Any) -> Any:
        """
        Convert a known numeric field to its expected type.

        Returns None when the conversion fails; a null is preferable to an
        invalid value downstream.
        """
        if field not in self.NUMERIC_FIELDS or value is None:
            return value

        expected_type = self.NUMERIC_FIELDS[field]
        try:
            return expected_type(value)
        except (ValueError, TypeError):
            return None

    @staticmethod
    def _base_log_entry(record: logging.LogRecord) -> dict[str, Any]:
        return {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

    @staticmethod
    def _inject_context(log_entry: dict[str, Any], log_context: dict[str, Any]) -> None:
        for field in ("pipeline", "stage", "cycle_id", "worker_id"):
            if log_context.get(field):
                log_entry[field] = log_context[field]

    @staticmethod
    def _inject_partition_context(log_entry: dict[str, Any]) -> None:
        partition_context = get_partition_context()
        if partition_context["partition_id"]:
            log_entry["partition_id"] = partition_context["partition_id"]
        if partition_context["partition_offset"] >= 0:
            log_entry["partition_offset"] = partition_context["partition_offset"]
        for field in ("device_id", "event_id"):
            if field in partition_context:
                log_entry[field] = partition_context[field]

    @staticmethod
    def _should_include_source_location(record: logging.LogRecord) -> bool:
        return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)

    def _inject_extra_fields(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                typed_value = self._ensure_type(field, value)
                log_entry[field] = self._sanitize_value(field, typed_value)

    def _inject_exception(self, log_entry: dict[str, Any], record: logging.LogRecord) -> None:
        if not record.exc_info:
            return

        exc_type, exc_value, _ = record.exc_info
        log_entry["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": self._sanitize_url(str(exc_value)) if exc_value else None,
            "stacktrace": self.formatException(record.exc_info),
        }

    def format(self, record: logging.LogRecord) -> str:
        log_entry = self._base_log_entry(record)

        self._inject_context(log_entry, get_log_context())
        self._inject_partition_context(log_entry)

        if self._should_include_source_location(record):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        # Explicit extras win over ambient context
        self._inject_extra_fields(log_entry, record)
        self._inject_exception(log_entry, record)

        return json.dumps(log_entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with color-coded log levels.

    Colors are auto-disabled when output is not a TTY (pipes, files).
    """

    COLORS = {
        logging.DEBUG: "\033[36m",  # Cyan
        logging.INFO: "\033[32m",  # Green
        logging.WARNING: "\033[33m",  # Yellow
        logging.ERROR: "\033[31m",  # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _format_level_name(self, record: logging.LogRecord) -> str:
        level_name = record.levelname
        if not self._use_colors:
            return level_name

        color = self.COLORS.get(record.levelno, "")
        if not color:
            return level_name

        return f"{color}{level_name}{self.RESET}"

    @staticmethod
    def _build_prefix(level_name: str, log_context: dict[str, Any]) -> str:
        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            level_name,
        ]

        if log_context.get("pipeline"):
            parts.append(f"[{log_context['pipeline']}]")
        if log_context.get("stage"):
            parts.append(f"[{log_context['stage']}]")

        return " - ".join(parts)

    @staticmethod
    def _build_tags(record: logging.LogRecord) -> list[str]:
        partition_context = get_partition_context()
        partition_id = getattr(record, "partition_id", None) or partition_context["partition_id"]
        device_id = getattr(record, "device_id", None) or partition_context.get("device_id")
        event_id = getattr(record, "event_id", None) or partition_context.get("event_id")

        tags = []
        if partition_id:
            tags.append(f"[p:{partition_id}]")
        if device_id:
            tags.append(f"[dev:{device_id}]")
        if event_id:
            tags.append(f"[evt:{str(event_id)[:12]}]")
        return tags

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output with optional color coding."""
        level_name = self._format_level_name(record)
        prefix = self._build_prefix(level_name, get_log_context())
        tags = self._build_tags(record)

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"

        if tags:
            return f"{prefix} - {' '.join(tags)} {message}"

        return f"{prefix} - {message}"
