"""
pytest configuration for the kit pipeline tests.

Adds src directory to Python path for imports and provides shared event
fixtures.
"""

import json
import sys
from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from config.config import TelemetryConfig  # noqa: E402
from core.logging.context import clear_log_context  # noqa: E402
from core.logging.partition_context import clear_partition_context  # noqa: E402
from kit_pipeline.common.types import RawEvent  # noqa: E402

EVENT_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def make_raw_event(
    device_id: str = "kit-42",
    event_id: str = "e1",
    offset: int = 0,
    partition_id: str = "0",
    payload: dict | bytes | None = None,
) -> RawEvent:
    """Build a RawEvent; dict payloads are JSON-encoded."""
    if payload is None:
        payload = {"heart_rate_bpm": 72, "spo2_pct": 98}
    if isinstance(payload, dict):
        payload = json.dumps(payload).encode("utf-8")
    return RawEvent(
        device_id=device_id,
        event_id=event_id,
        timestamp=EVENT_TIME,
        payload=payload,
        partition_offset=offset,
        partition_id=partition_id,
    )


@pytest.fixture(autouse=True)
def _clear_logging_context():
    yield
    clear_log_context()
    clear_partition_context()


@pytest.fixture
def raw_event():
    return make_raw_event()


@pytest.fixture
def memory_config() -> TelemetryConfig:
    """All-in-memory configuration with fast retries for pipeline tests."""
    return TelemetryConfig.from_dict(
        {
            "pipeline": {
                "max_restarts": 2,
                "restart_backoff_seconds": 0.01,
                "shutdown_grace_seconds": 0.5,
            },
            "source": {
                "type": "memory",
                "partition_count": 2,
                "fetch_timeout_seconds": 0.05,
                "read_max_attempts": 3,
                "read_base_delay_seconds": 0.0,
                "read_max_delay_seconds": 0.0,
            },
            "checkpoints": {"type": "memory"},
            "dedup": {"window_seconds": 600, "max_entries": 1000},
            "alerts": {
                "type": "memory",
                "max_attempts": 3,
                "base_delay_seconds": 0.0,
                "max_delay_seconds": 0.0,
            },
            "store": {
                "type": "memory",
                "base_delay_seconds": 0.0,
                "max_delay_seconds": 0.0,
                "alarm_after_attempts": 3,
            },
            "observability": {"metrics_enabled": False, "health_enabled": False},
        }
    )


class FakeBlobClient:
    def __init__(self, container: "FakeBlobContainer", name: str):
        self.container = container
        self.name = name

    async def download_blob(self):
        self.container.check_failure()
        if self.name not in self.container.blobs:
            raise ResourceNotFoundError("The specified blob does not exist.")
        content = self.container.blobs[self.name]

        class _Download:
            async def readall(self):
                return content

        return _Download()

    async def upload_blob(self, data, overwrite=False, content_type=None, metadata=None):
        self.container.check_failure()
        if not overwrite and self.name in self.container.blobs:
            raise ResourceExistsError("The specified blob already exists.")
        self.container.blobs[self.name] = data.encode("utf-8") if isinstance(data, str) else data
        self.container.uploads.append((self.name, metadata))

    async def delete_blob(self):
        self.container.blobs.pop(self.name, None)


class FakeBlobContainer:
    """Dict-backed stand-in for azure.storage.blob.aio.ContainerClient."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.uploads: list = []
        self.created = False
        self.failure: Exception | None = None

    def check_failure(self):
        if self.failure is not None:
            raise self.failure

    async def create_container(self):
        if self.created:
            raise ResourceExistsError("The specified container already exists.")
        self.created = True

    def get_blob_client(self, name: str) -> FakeBlobClient:
        return FakeBlobClient(self, name)

    async def list_blobs(self, name_starts_with: str = ""):
        self.check_failure()
        for name in sorted(self.blobs):
            if name.startswith(name_starts_with):
                yield SimpleNamespace(name=name)


@pytest.fixture
def blob_container(monkeypatch):
    """Patch BlobServiceClient in every blob backend to serve a FakeBlobContainer."""
    container = FakeBlobContainer()
    service = MagicMock()
    service.get_container_client.return_value = container
    service.close = AsyncMock()
    for module in (
        "kit_pipeline.checkpoints.blob_store",
        "kit_pipeline.stores.blob_store",
        "kit_pipeline.idempotency.blob_store",
    ):
        monkeypatch.setattr(
            f"{module}.BlobServiceClient.from_connection_string",
            MagicMock(return_value=service),
        )
    container.service = service
    return container
