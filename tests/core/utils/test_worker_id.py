"""Tests for worker ID generation."""

from core.utils.worker_id import generate_worker_id


class TestGenerateWorkerId:
    def test_no_prefix(self):
        worker_id = generate_worker_id()
        assert worker_id
        assert "-" in worker_id
        assert not worker_id.startswith("-")

    def test_prefix(self):
        worker_id = generate_worker_id("kit-pipeline")
        assert worker_id.startswith("kit-pipeline-")
        assert worker_id.removeprefix("kit-pipeline-")

    def test_unique(self):
        assert len({generate_worker_id() for _ in range(10)}) > 1
