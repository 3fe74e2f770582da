"""
Tests for retry logic with exponential backoff, jitter and timeouts.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from core.errors.exceptions import (
    OperationTimeoutError,
    PermanentError,
    PipelineError,
    ThrottlingError,
    TransientIOError,
)
from core.resilience.retry import (
    ALERT_RETRY,
    RetryConfig,
    call_with_retry,
    run_with_timeout,
    with_retry_async,
)

FAST = RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0)


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_values(self):
        config = RetryConfig()
        assert config.max_attempts == 3
        assert config.base_delay == 1.0
        assert config.max_delay == 30.0
        assert config.exponential_base == 2.0
        assert config.respect_permanent is True

    def test_alert_retry_defaults(self):
        assert ALERT_RETRY.max_attempts == 3
        assert ALERT_RETRY.base_delay == 0.2

    def test_type_conversion_from_strings(self):
        """Config handles string inputs (e.g., from YAML)."""
        config = RetryConfig(max_attempts="5", base_delay="2.5", max_delay="60")
        assert config.max_attempts == 5
        assert config.base_delay == 2.5
        assert config.max_delay == 60.0

    def test_equal_jitter_bounds(self):
        config = RetryConfig(base_delay=1.0, exponential_base=2.0, max_delay=30.0)
        for attempt, (low, high) in enumerate([(0.5, 1.0), (1.0, 2.0), (2.0, 4.0)]):
            delay = config.get_delay(attempt)
            assert low <= delay <= high

    def test_max_delay_cap(self):
        config = RetryConfig(base_delay=10.0, max_delay=5.0)
        assert config.get_delay(10) <= 5.0

    def test_large_attempt_does_not_overflow(self):
        config = RetryConfig(base_delay=0.5, max_delay=30.0)
        assert config.get_delay(10_000) <= 30.0

    def test_retry_after_respected_and_capped(self):
        config = RetryConfig(max_delay=10.0)
        assert config.get_delay(0, ThrottlingError("busy", retry_after=5.0)) == 5.0
        assert config.get_delay(0, ThrottlingError("busy", retry_after=60.0)) == 10.0

    def test_should_retry_transient(self):
        assert FAST.should_retry(TransientIOError("x"), 0)

    def test_should_not_retry_permanent(self):
        assert not FAST.should_retry(PermanentError("x"), 0)

    def test_should_not_retry_on_last_attempt(self):
        assert not FAST.should_retry(TransientIOError("x"), 2)

    def test_never_retry_overrides_classification(self):
        config = RetryConfig(never_retry={TransientIOError})
        assert not config.should_retry(TransientIOError("x"), 0)


class TestRunWithTimeout:
    async def test_returns_result(self):
        async def quick():
            return 42

        assert await run_with_timeout(quick(), 1.0, "quick") == 42

    async def test_no_timeout(self):
        async def quick():
            return "ok"

        assert await run_with_timeout(quick(), None, "quick") == "ok"

    async def test_expiry_raises_operation_timeout(self):
        with pytest.raises(OperationTimeoutError) as exc_info:
            await run_with_timeout(asyncio.sleep(1.0), 0.01, "slow call")
        assert exc_info.value.operation == "slow call"
        assert exc_info.value.is_retryable


class TestCallWithRetry:
    async def test_success_first_attempt(self):
        func = AsyncMock(return_value="done")
        assert await call_with_retry(func, "a", config=FAST, key="v") == "done"
        func.assert_awaited_once_with("a", key="v")

    async def test_retries_transient_then_succeeds(self):
        func = AsyncMock(side_effect=[ConnectionError("connection reset"), "done"])
        on_retry = Mock()
        assert await call_with_retry(func, config=FAST, on_retry=on_retry) == "done"
        assert func.await_count == 2
        on_retry.assert_called_once()
        error, attempt, _delay = on_retry.call_args.args
        assert isinstance(error, TransientIOError)
        assert attempt == 0

    async def test_exhaustion_raises_wrapped_error(self):
        func = AsyncMock(side_effect=ConnectionError("connection reset"))
        with pytest.raises(TransientIOError) as exc_info:
            await call_with_retry(func, config=FAST, operation="send")
        assert func.await_count == 3
        assert isinstance(exc_info.value.cause, ConnectionError)

    async def test_permanent_not_retried(self):
        func = AsyncMock(side_effect=PermanentError("gone"))
        with pytest.raises(PermanentError):
            await call_with_retry(func, config=FAST)
        assert func.await_count == 1

    async def test_timeout_counts_as_transient(self):
        calls = 0

        async def slow_then_fast():
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1.0)
            return "ok"

        assert await call_with_retry(slow_then_fast, config=FAST, timeout=0.01) == "ok"
        assert calls == 2

    async def test_wrap_errors_disabled_reraises_original(self):
        func = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await call_with_retry(func, config=RetryConfig(max_attempts=1), wrap_errors=False)

    async def test_failing_on_retry_callback_is_ignored(self):
        func = AsyncMock(side_effect=[TransientIOError("x"), "ok"])
        on_retry = Mock(side_effect=ValueError("callback bug"))
        assert await call_with_retry(func, config=FAST, on_retry=on_retry) == "ok"


class TestWithRetryAsync:
    async def test_decorator_retries(self):
        attempts = []

        @with_retry_async(config=FAST)
        async def send(message):
            attempts.append(message)
            if len(attempts) < 2:
                raise TransientIOError("flaky")
            return "sent"

        assert await send("alert") == "sent"
        assert attempts == ["alert", "alert"]
        assert send.__name__ == "send"

    async def test_decorator_raises_pipeline_error(self):
        @with_retry_async(config=RetryConfig(max_attempts=1))
        async def broken():
            raise RuntimeError("boom")

        with pytest.raises(PipelineError):
            await broken()
