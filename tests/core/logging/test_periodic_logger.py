"""Tests for PeriodicStatsLogger."""

import asyncio
import logging

from core.logging.periodic_logger import PeriodicStatsLogger


class TestPeriodicStatsLogger:
    def test_first_cycle_uses_totals(self, caplog):
        stats = {"records_succeeded": 10, "records_failed": 1, "lag": 4}
        stats_logger = PeriodicStatsLogger(30, lambda: stats, "processing", "w-1")
        with caplog.at_level(logging.INFO, logger="core.logging.periodic_logger"):
            msg = stats_logger.log_cycle()
        assert msg == "Cycle 0: processed=11, succeeded=10, failed=1"
        record = caplog.records[-1]
        assert record.worker_id == "w-1"
        assert record.stage == "processing"
        assert record.lag == 4

    def test_later_cycles_report_deltas(self):
        stats = {"records_succeeded": 10}
        stats_logger = PeriodicStatsLogger(10, lambda: stats, "processing", "w-1")
        stats_logger.log_cycle()
        stats["records_succeeded"] = 30
        msg = stats_logger.log_cycle()
        assert msg.startswith("Cycle 1: +20 this cycle")
        assert "2.0 msg/s" in msg

    async def test_start_and_stop(self):
        calls = []

        def get_stats():
            calls.append(1)
            return {}

        stats_logger = PeriodicStatsLogger(0.01, get_stats, "processing", "w-1")
        stats_logger.start()
        assert stats_logger.is_running
        await asyncio.sleep(0.05)
        await stats_logger.stop()
        assert not stats_logger.is_running
        assert len(calls) >= 2

    async def test_stop_without_start(self):
        await PeriodicStatsLogger(1, dict, "processing", "w-1").stop()
