"""
Entry point for running the kit telemetry pipeline.

Usage:
    # Run every partition reported by the configured source
    python -m kit_pipeline

    # Run selected partitions only (spread partitions over several processes)
    python -m kit_pipeline --partitions 0,1

    # Alternate configuration file, container-friendly logging
    python -m kit_pipeline --config /etc/kit/config.yaml --log-to-stdout

Configuration:
    src/config/config.yaml, or the file named by KIT_PIPELINE_CONFIG.
    ${VAR} references are expanded from the environment and .env.
"""

import argparse
import asyncio
import logging
import os
import socket
import sys
from pathlib import Path

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config.config import TelemetryConfig, load_config
from core.logging.setup import get_logger, setup_logging
from core.logging.utilities import log_exception, log_startup_banner
from core.utils.worker_id import generate_worker_id
from kit_pipeline.common.health import HealthCheckServer
from kit_pipeline.common.metrics import get_prometheus_registry
from kit_pipeline.common.signals import (
    remove_shutdown_signal_handlers,
    setup_shutdown_signal_handlers,
)
from kit_pipeline.processing.pipeline import build_pipeline

# Project root directory (where .env file is located)
# __main__.py is at src/kit_pipeline/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the kit telemetry processing pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.yaml (default: KIT_PIPELINE_CONFIG or src/config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Console logging level (default: logging.level from config)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping file handlers. "
        "Can also be set via LOG_TO_STDOUT environment variable.",
    )
    parser.add_argument(
        "--partitions",
        type=str,
        default=None,
        help="Comma-separated partition ids to process (default: all)",
    )
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {}
    if args.partitions:
        partitions = [p.strip() for p in args.partitions.split(",") if p.strip()]
        overrides["pipeline"] = {"partitions": partitions}
    if args.log_level:
        overrides["logging"] = {"level": args.log_level}
    if args.log_to_stdout or os.getenv("LOG_TO_STDOUT", "false").lower() in ("true", "1", "yes"):
        overrides.setdefault("logging", {})["log_to_stdout"] = True
    return overrides


def start_metrics_server(preferred_port: int) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    registry = get_prometheus_registry()
    try:
        start_http_server(preferred_port, registry=registry)
        return preferred_port
    except OSError as e:
        if e.errno not in (48, 98, 10048):
            raise
        logger.info(
            "Port already in use, finding available port",
            extra={"preferred_port": preferred_port},
        )
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("", 0))
            s.listen(1)
            available_port = s.getsockname()[1]
        start_http_server(available_port, registry=registry)
        return available_port


def schedule_stop(pipeline, pending: set[asyncio.Task]) -> asyncio.Task:
    """Start pipeline.stop() from a signal handler, tracked in `pending` until done."""
    task = asyncio.get_running_loop().create_task(pipeline.stop(), name="pipeline-stop")
    pending.add(task)

    def _on_done(t: asyncio.Task) -> None:
        pending.discard(t)
        if not t.cancelled() and t.exception() is not None:
            log_exception(logger, t.exception(), "Pipeline stop failed")

    task.add_done_callback(_on_done)
    return task


async def run_pipeline(config: TelemetryConfig, worker_id: str) -> None:
    pipeline = await build_pipeline(config)
    pipeline.worker_id = worker_id

    health_server = HealthCheckServer(
        port=config.observability.health_port,
        worker_name=worker_id,
        status_provider=pipeline.status,
        enabled=config.observability.health_enabled,
    )

    stop_tasks: set[asyncio.Task] = set()

    def request_shutdown() -> None:
        schedule_stop(pipeline, stop_tasks)

    setup_shutdown_signal_handlers(request_shutdown)
    await health_server.start()
    try:
        await pipeline.start()
        log_startup_banner(
            logger,
            "Kit Telemetry Pipeline",
            worker_id=worker_id,
            source=config.source.type,
            partitions=",".join(pipeline.partitions),
            store=f"{config.store.type} ({config.store.consistency_level})",
            alerts=config.alerts.type,
            checkpoints=config.checkpoints.type,
            policy=pipeline.classifier.policy_name,
        )
        await pipeline.run()
    finally:
        remove_shutdown_signal_handlers()
        await pipeline.stop()
        if stop_tasks:
            await asyncio.gather(*stop_tasks, return_exceptions=True)
        await health_server.stop()
        await pipeline.close()


def main(argv: list[str] | None = None) -> int:
    load_dotenv(PROJECT_ROOT / ".env")

    global logger
    args = parse_args(argv)

    try:
        config = load_config(args.config, overrides=build_overrides(args))
    except (FileNotFoundError, ValueError) as e:
        logging.basicConfig(level=logging.INFO)
        logging.getLogger(__name__).error("Configuration error: %s", e)
        return 1

    worker_id = os.getenv("WORKER_ID") or generate_worker_id(config.pipeline.worker_id_prefix)
    setup_logging(
        name="kit_pipeline",
        stage="processing",
        pipeline=config.pipeline.name,
        log_dir=Path(config.logging.log_dir),
        json_format=config.logging.json_format,
        console_level=getattr(logging, config.logging.level.upper(), logging.INFO),
        worker_id=worker_id,
        log_to_stdout=config.logging.log_to_stdout,
    )
    logger = get_logger(__name__)

    if config.observability.metrics_enabled:
        actual_port = start_metrics_server(config.observability.metrics_port)
        logger.info("Metrics server started", extra={"port": actual_port})

    try:
        asyncio.run(run_pipeline(config, worker_id))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down")
    except Exception as e:
        log_exception(logger, e, "Pipeline terminated with an error")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
