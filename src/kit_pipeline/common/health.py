"""
Health check endpoints for the telemetry pipeline.

Provides Kubernetes-compatible health check endpoints:
- /health/live - Liveness probe (is the process running?)
- /health/ready - Readiness probe (are all partition workers processing?)

Readiness is derived from a status provider, normally
TelemetryPipeline.status, so the server holds no pipeline state itself.

Usage:
    server = HealthCheckServer(port=8080, worker_name="kit-pipeline",
                               status_provider=pipeline.status)
    await server.start()
    ...
    await server.stop()
"""

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from aiohttp import web

from core.utils.json_serializers import json_serializer

logger = logging.getLogger(__name__)

StatusProvider = Callable[[], dict[str, Any]]

# Partition states that keep the pipeline ready
READY_STATES = frozenset({"running"})


def _dumps(obj: Any) -> str:
    return json.dumps(obj, default=json_serializer)


def readiness_reasons(status: dict[str, Any]) -> list[str]:
    """Reasons the pipeline is not ready; empty means ready."""
    reasons = []
    if not status.get("running"):
        reasons.append("pipeline_not_running")
    partitions = status.get("partitions") or {}
    if not partitions:
        reasons.append("no_partitions")
    for partition_id, info in sorted(partitions.items()):
        state = info.get("state")
        if state not in READY_STATES:
            reasons.append(f"partition_{partition_id}_{state}")
    return reasons


class HealthCheckServer:
    """
    HTTP server for Kubernetes health check endpoints, run on the
    pipeline's own event loop.

    If the configured port is in use, falls back to a dynamic port. If the
    server cannot start at all, the pipeline keeps running without it.
    """

    def __init__(
        self,
        port: int | None = 8080,
        worker_name: str = "kit-pipeline",
        status_provider: StatusProvider | None = None,
        enabled: bool = True,
        host: str = "0.0.0.0",
    ):
        """
        Args:
            port: HTTP port to listen on. 0 for dynamic assignment, None
                disables the server.
            worker_name: Name reported in responses and logs
            status_provider: Returns {"running": bool, "partitions": {id: {"state": ...}}}
            enabled: If False, start() and stop() are no-ops
        """
        self.port = port
        self.host = host
        self.worker_name = worker_name
        self.status_provider = status_provider or (lambda: {"running": True, "partitions": {}})
        self._enabled = enabled and port is not None
        self._started_at = datetime.now(UTC)
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self.actual_port: int | None = None

    async def handle_liveness(self, request: web.Request) -> web.Response:
        uptime_seconds = (datetime.now(UTC) - self._started_at).total_seconds()
        return web.json_response(
            {
                "status": "alive",
                "worker": self.worker_name,
                "uptime_seconds": int(uptime_seconds),
                "timestamp": datetime.now(UTC).isoformat(),
            },
            status=200,
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        try:
            status = self.status_provider()
        except Exception as e:
            logger.warning(
                "Status provider failed during readiness check",
                extra={"error": str(e)},
                exc_info=True,
            )
            status = {"running": False, "partitions": {}}

        reasons = readiness_reasons(status)
        body = {
            "status": "ready" if not reasons else "not_ready",
            "worker": self.worker_name,
            "partitions": status.get("partitions", {}),
            "timestamp": datetime.now(UTC).isoformat(),
        }
        if reasons:
            body["reasons"] = reasons
        return web.json_response(body, status=200 if not reasons else 503, dumps=_dumps)

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        return app

    async def _try_start_on_port(self, port: int) -> bool:
        runner = web.AppRunner(self.create_app())
        await runner.setup()
        site = web.TCPSite(runner, self.host, port, reuse_address=True)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            # Port in use: errno 98 (Linux), 48 (macOS) or 10048 (Windows)
            if e.errno in (48, 98, 10048):
                return False
            raise

        self._runner = runner
        self._site = site
        server = getattr(site, "_server", None)
        if server is not None and server.sockets:
            self.actual_port = server.sockets[0].getsockname()[1]
        else:
            self.actual_port = port
        return True

    async def start(self) -> None:
        if not self._enabled:
            logger.debug("Health check server is disabled, skipping start")
            return
        if self._runner is not None:
            return

        try:
            started = await self._try_start_on_port(self.port)
            if not started and self.port != 0:
                logger.warning(
                    f"Port {self.port} in use, falling back to dynamic port assignment",
                    extra={"worker_name": self.worker_name},
                )
                started = await self._try_start_on_port(0)
        except Exception as e:
            logger.error(
                f"Failed to start health check server: {e}",
                extra={"worker_name": self.worker_name},
                exc_info=True,
            )
            started = False

        if not started:
            logger.warning(
                "Continuing without health checks",
                extra={"worker_name": self.worker_name},
            )
            self._enabled = False
            return

        logger.info(
            "Health check server started",
            extra={
                "worker_name": self.worker_name,
                "port": self.actual_port,
            },
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        try:
            await self._runner.cleanup()
            logger.info("Health check server stopped", extra={"worker_name": self.worker_name})
        except Exception as e:
            logger.error(
                f"Error stopping health check server: {e}",
                extra={"worker_name": self.worker_name},
                exc_info=True,
            )
        finally:
            self._runner = None
            self._site = None
            self.actual_port = None


__all__ = ["HealthCheckServer", "readiness_reasons"]
