"""Partition-level context variables for structured logging."""

from contextvars import ContextVar
from typing import Any, Dict, Optional


_partition_id: ContextVar[str] = ContextVar("partition_id", default="")
_partition_offset: ContextVar[int] = ContextVar("partition_offset", default=-1)
_device_id: ContextVar[str] = ContextVar("device_id", default="")
_event_id: ContextVar[str] = ContextVar("event_id", default="")


def set_partition_context(
    partition_id: Optional[str] = None,
    offset: Optional[int] = None,
    device_id: Optional[str] = None,
    event_id: Optional[str] = None,
) -> None:
    """
    Set partition/event context variables for structured logging.

    Args:
        partition_id: Stream partition being processed
        offset: Offset of the event within the partition
        device_id: Kit that produced the event
        event_id: Device-assigned event identifier
    """
    if partition_id is not None:
        _partition_id.set(partition_id)
    if offset is not None:
        _partition_offset.set(offset)
    if device_id is not None:
        _device_id.set(device_id)
    if event_id is not None:
        _event_id.set(event_id)


def get_partition_context() -> Dict[str, Any]:
    """
    Get current partition logging context.

    Returns:
        Dictionary with partition_id and partition_offset, plus device_id and
        event_id when an event is in flight
    """
    context: Dict[str, Any] = {
        "partition_id": _partition_id.get(),
        "partition_offset": _partition_offset.get(),
    }

    device_id = _device_id.get()
    if device_id:
        context["device_id"] = device_id

    event_id = _event_id.get()
    if event_id:
        context["event_id"] = event_id

    return context


def clear_partition_context() -> None:
    """Clear all partition logging context variables."""
    _partition_id.set("")
    _partition_offset.set(-1)
    _device_id.set("")
    _event_id.set("")


class PartitionLogContext:
    """
    Context manager for event processing with automatic context setting.

    Usage:
        with PartitionLogContext(partition_id="3", offset=12345, device_id="kit-1"):
            # All logs in this block will include partition context
            await process_event()
    """

    def __init__(
        self,
        partition_id: Optional[str] = None,
        offset: Optional[int] = None,
        device_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ):
        self.new_context = {
            "partition_id": partition_id,
            "offset": offset,
            "device_id": device_id,
            "event_id": event_id,
        }
        self.old_context: Dict[str, Any] = {}

    def __enter__(self) -> "PartitionLogContext":
        self.old_context = {
            "partition_id": _partition_id.get(),
            "offset": _partition_offset.get(),
            "device_id": _device_id.get(),
            "event_id": _event_id.get(),
        }

        for key, value in self.new_context.items():
            if value is not None:
                set_partition_context(**{key: value})

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_partition_context(
            partition_id=self.old_context.get("partition_id", ""),
            offset=self.old_context.get("offset", -1),
            device_id=self.old_context.get("device_id", ""),
            event_id=self.old_context.get("event_id", ""),
        )
        return False
