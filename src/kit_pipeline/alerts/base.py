"""Alert channel protocol: at-least-once enqueue of alert messages."""

from typing import Protocol, runtime_checkable

from kit_pipeline.schemas.records import AlertMessage


@runtime_checkable
class AlertChannelProtocol(Protocol):
    """Protocol for alert channel backends.

    send() returns once the channel has accepted the message. No ordering
    guarantee is required; consumers of the channel deduplicate on
    (device_id, event_id).
    """

    async def start(self) -> None:
        ...

    async def send(self, message: AlertMessage) -> None:
        ...

    async def close(self) -> None:
        ...


def alert_headers(message: AlertMessage) -> dict[str, str]:
    """Properties attached to every alert so consumers can dedupe without parsing."""
    return {"device_id": message.device_id, "event_id": message.event_id}
