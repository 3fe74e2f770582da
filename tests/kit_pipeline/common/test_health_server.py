"""Tests for the health check endpoints."""

import json
from unittest.mock import MagicMock, patch

from kit_pipeline.common.health import HealthCheckServer, readiness_reasons


def _status(running=True, **partitions):
    return {"running": running, "partitions": {pid: {"state": s} for pid, s in partitions.items()}}


class TestReadinessReasons:
    def test_ready(self):
        assert readiness_reasons(_status(**{"0": "running", "1": "running"})) == []

    def test_not_running(self):
        assert "pipeline_not_running" in readiness_reasons(_status(running=False, **{"0": "running"}))

    def test_no_partitions(self):
        assert readiness_reasons(_status()) == ["no_partitions"]

    def test_degraded_partitions_listed(self):
        reasons = readiness_reasons(_status(**{"0": "stalled", "1": "running", "2": "failed"}))
        assert reasons == ["partition_0_stalled", "partition_2_failed"]


class TestHealthHandlers:
    async def test_liveness(self):
        server = HealthCheckServer(port=0, worker_name="kit-test")
        response = await server.handle_liveness(MagicMock())
        body = json.loads(response.text)
        assert response.status == 200
        assert body["status"] == "alive"
        assert body["worker"] == "kit-test"

    async def test_readiness_ready(self):
        server = HealthCheckServer(
            port=0, status_provider=lambda: _status(**{"0": "running"})
        )
        response = await server.handle_readiness(MagicMock())
        body = json.loads(response.text)
        assert response.status == 200
        assert body["status"] == "ready"
        assert "reasons" not in body

    async def test_readiness_not_ready(self):
        server = HealthCheckServer(
            port=0, status_provider=lambda: _status(**{"0": "stalled"})
        )
        response = await server.handle_readiness(MagicMock())
        body = json.loads(response.text)
        assert response.status == 503
        assert body["reasons"] == ["partition_0_stalled"]

    async def test_failing_status_provider_is_not_ready(self):
        def broken():
            raise RuntimeError("boom")

        server = HealthCheckServer(port=0, status_provider=broken)
        response = await server.handle_readiness(MagicMock())
        assert response.status == 503


class TestHealthServerLifecycle:
    async def test_disabled_is_noop(self):
        server = HealthCheckServer(port=None)
        await server.start()
        assert server.actual_port is None
        await server.stop()

    async def test_start_on_dynamic_port(self):
        server = HealthCheckServer(port=0, host="127.0.0.1")
        await server.start()
        try:
            assert server.actual_port and server.actual_port > 0
        finally:
            await server.stop()
        assert server.actual_port is None

    async def test_falls_back_when_port_in_use(self):
        server = HealthCheckServer(port=8080, host="127.0.0.1")
        attempts = []

        async def fake_try(port):
            attempts.append(port)
            return port == 0

        with patch.object(server, "_try_start_on_port", side_effect=fake_try):
            await server.start()
        assert attempts == [8080, 0]

    async def test_startup_failure_keeps_running_without_health(self):
        server = HealthCheckServer(port=8080, host="127.0.0.1")
        with patch.object(server, "_try_start_on_port", side_effect=RuntimeError("no sockets")):
            await server.start()
        assert server._enabled is False
