"""Logging utility functions."""

import logging
from typing import Any

# Reserved LogRecord attribute names that cannot be used in extra dict
_RESERVED_LOG_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "asctime",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured context fields.

    Example:
        log_with_context(
            logger, logging.INFO, "Checkpoint committed",
            partition_id="3",
            committed_offset=1200,
        )
    """
    exc_info = kwargs.pop("exc_info", None)
    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}
    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category from PipelineError subclasses and
    truncates long error messages.

    Example:
        try:
            await store.upsert(record)
        except Exception as e:
            log_exception(logger, e, "Store write failed", device_id=event.device_id)
    """
    error_category = kwargs.get("error_category")
    if error_category is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}
    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=extra)
    else:
        logger.log(level, msg, extra=extra)


def format_cycle_output(
    cycle_count: int,
    succeeded: int,
    failed: int,
    skipped: int = 0,
    deduplicated: int = 0,
    since_last: dict[str, int] | None = None,
    interval_seconds: int = 30,
) -> str:
    """
    Format standardized cycle output for workers with delta tracking.

    Args:
        cycle_count: Current cycle number
        succeeded: Total count of successfully processed records
        failed: Total count of failed records
        skipped: Total count of skipped records
        deduplicated: Total count of deduplicated records
        since_last: Optional delta counts since last cycle
        interval_seconds: Cycle interval in seconds

    Example:
        >>> format_cycle_output(1, 1200, 34, 50, 100)
        'Cycle 1: processed=1284, succeeded=1200, failed=34, skipped=50, deduped=100'
        >>> format_cycle_output(5, 1200, 0, 0, 0, {"succeeded": 240}, 30)
        'Cycle 5: +240 this cycle | total: 1200 succeeded | 8.0 msg/s'
    """
    if since_last is not None:
        delta_total = (
            since_last.get("succeeded", 0)
            + since_last.get("failed", 0)
            + since_last.get("skipped", 0)
        )
        rate = delta_total / interval_seconds if interval_seconds > 0 else 0

        total_parts = [f"{succeeded} succeeded"]
        if failed > 0:
            total_parts.append(f"{failed} failed")
        if skipped > 0:
            total_parts.append(f"{skipped} skipped")
        if deduplicated > 0:
            total_parts.append(f"{deduplicated} deduped")

        parts = [
            f"+{delta_total} this cycle",
            f"total: {', '.join(total_parts)}",
            f"{rate:.1f} msg/s",
        ]
        return f"Cycle {cycle_count}: {' | '.join(parts)}"

    parts = [
        f"processed={succeeded + failed + skipped}",
        f"succeeded={succeeded}",
        f"failed={failed}",
    ]
    if skipped > 0:
        parts.append(f"skipped={skipped}")
    if deduplicated > 0:
        parts.append(f"deduped={deduplicated}")

    return f"Cycle {cycle_count}: {', '.join(parts)}"


def log_startup_banner(
    logger: logging.Logger,
    title: str,
    **fields: Any,
) -> None:
    """
    Log startup banner with pipeline configuration.

    Example:
        log_startup_banner(
            logger,
            "Kit Telemetry Pipeline",
            worker_id="brave-golden-tiger",
            source="eventhub",
            partitions="0,1,2,3",
        )
    """
    separator = "=" * 50
    lines = ["", separator, title, separator]
    for key, value in fields.items():
        if value is not None and value != "":
            label = f"{key.replace('_', ' ').title()}:"
            lines.append(f"{label:<14}{value}")
    lines.append(separator)
    lines.append("")

    logger.info("\n".join(lines))
