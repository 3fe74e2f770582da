"""In-memory alert channel for tests and the memory pipeline profile."""

import asyncio
import logging

from kit_pipeline.schemas.records import AlertMessage

logger = logging.getLogger(__name__)


class MemoryAlertChannel:
    """Collects delivered alerts in a list.

    fail_next() makes the next sends raise; delay simulates a slow channel
    so per-call timeouts can be exercised.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delivered: list[AlertMessage] = []
        self.send_attempts = 0
        self.delay = delay
        self._failures: list[Exception] = []

    async def start(self) -> None:
        pass

    def fail_next(self, error: Exception, times: int = 1) -> None:
        self._failures.extend([error] * times)

    async def send(self, message: AlertMessage) -> None:
        self.send_attempts += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._failures:
            raise self._failures.pop(0)
        self.delivered.append(message)

    async def close(self) -> None:
        logger.debug("MemoryAlertChannel closed (no-op)")

    def for_event(self, device_id: str, event_id: str) -> list[AlertMessage]:
        return [
            m for m in self.delivered
            if m.device_id == device_id and m.event_id == event_id
        ]
