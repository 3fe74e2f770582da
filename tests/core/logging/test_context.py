"""Tests for logging context variables."""

from core.logging.context import clear_log_context, get_log_context, set_log_context


class TestLogContext:
    def test_defaults_are_empty(self):
        clear_log_context()
        assert get_log_context() == {"cycle_id": "", "stage": "", "worker_id": "", "pipeline": ""}

    def test_set_partial_context_keeps_other_fields(self):
        set_log_context(stage="processing", worker_id="kit-pipeline-brave-tiger")
        set_log_context(pipeline="kit_pipeline")
        ctx = get_log_context()
        assert ctx["stage"] == "processing"
        assert ctx["worker_id"] == "kit-pipeline-brave-tiger"
        assert ctx["pipeline"] == "kit_pipeline"

    def test_clear(self):
        set_log_context(cycle_id="c-1")
        clear_log_context()
        assert get_log_context()["cycle_id"] == ""
