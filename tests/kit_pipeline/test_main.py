"""Tests for the kit_pipeline command line entry point."""

import asyncio
import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

import kit_pipeline.__main__ as entry
from kit_pipeline.alerts.memory import MemoryAlertChannel
from kit_pipeline.checkpoints.memory import MemoryCheckpointStore
from kit_pipeline.processing.pipeline import TelemetryPipeline
from kit_pipeline.sources.memory import InMemoryStreamSource
from kit_pipeline.stores.memory import MemoryDocumentStore


class TestParseArgs:
    def test_defaults(self):
        args = entry.parse_args([])
        assert args.config is None
        assert args.log_level is None
        assert args.log_to_stdout is False
        assert args.partitions is None

    def test_all_options(self):
        args = entry.parse_args(
            ["--config", "/etc/kit/config.yaml", "--log-level", "DEBUG", "--log-to-stdout", "--partitions", "0,3"]
        )
        assert args.config == Path("/etc/kit/config.yaml")
        assert args.log_level == "DEBUG"
        assert args.log_to_stdout is True
        assert args.partitions == "0,3"

    def test_invalid_log_level(self):
        with pytest.raises(SystemExit):
            entry.parse_args(["--log-level", "TRACE"])


class TestBuildOverrides:
    def test_none(self, monkeypatch):
        monkeypatch.delenv("LOG_TO_STDOUT", raising=False)
        assert entry.build_overrides(entry.parse_args([])) == {}

    def test_partitions_trimmed(self, monkeypatch):
        monkeypatch.delenv("LOG_TO_STDOUT", raising=False)
        overrides = entry.build_overrides(entry.parse_args(["--partitions", " 0, 2,,"]))
        assert overrides == {"pipeline": {"partitions": ["0", "2"]}}

    def test_logging(self, monkeypatch):
        monkeypatch.delenv("LOG_TO_STDOUT", raising=False)
        overrides = entry.build_overrides(entry.parse_args(["--log-level", "WARNING", "--log-to-stdout"]))
        assert overrides == {"logging": {"level": "WARNING", "log_to_stdout": True}}

    def test_log_to_stdout_from_env(self, monkeypatch):
        monkeypatch.setenv("LOG_TO_STDOUT", "yes")
        overrides = entry.build_overrides(entry.parse_args([]))
        assert overrides == {"logging": {"log_to_stdout": True}}


class TestMain:
    @pytest.fixture(autouse=True)
    def _no_side_effects(self, monkeypatch):
        monkeypatch.setattr(entry, "load_dotenv", MagicMock())
        monkeypatch.setattr(entry, "setup_logging", MagicMock())

    def test_missing_config(self, tmp_path):
        assert entry.main(["--config", str(tmp_path / "missing.yaml")]) == 1

    def test_invalid_config(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("store:\n  type: cosmos\n")
        assert entry.main(["--config", str(path)]) == 1

    def test_runs_pipeline(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(
            "source:\n  type: memory\n"
            "checkpoints:\n  type: memory\n"
            "store:\n  type: memory\n"
            "observability:\n  metrics_enabled: false\n  health_enabled: false\n"
        )
        run_pipeline = AsyncMock()
        monkeypatch.setattr(entry, "run_pipeline", run_pipeline)
        monkeypatch.setenv("WORKER_ID", "kit-test-worker")

        assert entry.main(["--config", str(path), "--partitions", "1"]) == 0

        config, worker_id = run_pipeline.await_args.args
        assert worker_id == "kit-test-worker"
        assert config.pipeline.partitions == ["1"]

    def test_pipeline_error_returns_failure(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("observability:\n  metrics_enabled: false\n")
        monkeypatch.setattr(entry, "run_pipeline", AsyncMock(side_effect=RuntimeError("boom")))

        assert entry.main(["--config", str(path)]) == 1


class TestRunPipeline:
    async def test_runs_until_partitions_drained(self, memory_config, monkeypatch):
        source = InMemoryStreamSource(partition_count=2)
        source.append("0", "kit-1", "e1", {"sos": True})
        source.close_partition("0")
        source.close_partition("1")
        store = MemoryDocumentStore()
        channel = MemoryAlertChannel()
        pipeline = TelemetryPipeline(
            memory_config,
            source=source,
            checkpoint_store=MemoryCheckpointStore(),
            document_store=store,
            alert_channel=channel,
        )
        monkeypatch.setattr(entry, "build_pipeline", AsyncMock(return_value=pipeline))

        await asyncio.wait_for(entry.run_pipeline(memory_config, "kit-test"), timeout=5)

        assert pipeline.worker_id == "kit-test"
        assert await store.get("kit-1", "e1") is not None
        assert len(channel.delivered) == 1
        assert pipeline.is_running is False

    async def test_signal_stops_pipeline(self, memory_config, monkeypatch):
        source = InMemoryStreamSource(partition_count=1)
        pipeline = TelemetryPipeline(
            memory_config,
            source=source,
            checkpoint_store=MemoryCheckpointStore(),
            document_store=MemoryDocumentStore(),
            alert_channel=MemoryAlertChannel(),
        )
        monkeypatch.setattr(entry, "build_pipeline", AsyncMock(return_value=pipeline))
        handlers = []
        monkeypatch.setattr(entry, "setup_shutdown_signal_handlers", handlers.append)
        monkeypatch.setattr(entry, "remove_shutdown_signal_handlers", MagicMock())

        task = asyncio.create_task(entry.run_pipeline(memory_config, "kit-test"))
        while not pipeline.is_running:
            await asyncio.sleep(0.01)
        handlers[0]()
        await asyncio.wait_for(task, timeout=5)

        assert pipeline.is_running is False


class TestScheduleStop:
    async def test_task_tracked_until_done(self):
        pipeline = MagicMock()
        pipeline.stop = AsyncMock()
        pending = set()

        task = entry.schedule_stop(pipeline, pending)

        assert pending == {task}
        await task
        await asyncio.sleep(0)
        assert pending == set()
        pipeline.stop.assert_awaited_once()

    async def test_failure_is_logged(self, caplog):
        pipeline = MagicMock()
        pipeline.stop = AsyncMock(side_effect=RuntimeError("checkpoint flush failed"))
        pending = set()

        with caplog.at_level(logging.ERROR):
            task = entry.schedule_stop(pipeline, pending)
            await asyncio.wait({task})
            await asyncio.sleep(0)

        assert pending == set()
        assert "Pipeline stop failed" in caplog.text
