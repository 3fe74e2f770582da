"""Shared infrastructure for the processing core.

Import concrete implementations from submodules to avoid loading heavy
dependencies (prometheus_client, aiohttp) at package import time:
    from kit_pipeline.common.types import RawEvent, Severity
    from kit_pipeline.common.telemetry import TelemetrySink
"""

__all__: list[str] = []
