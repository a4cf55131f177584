"""Tests for retry.py — bounded attempts, fixed delay, exhaustion."""

from unittest.mock import AsyncMock

import pytest

from retry import RetryExhausted, RetryPolicy, retry_async


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.delay == 1.0

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError, match="delay"):
            RetryPolicy(delay=-1)


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_first_attempt_success(self):
        op = AsyncMock(return_value="ok")
        sleep = AsyncMock()
        assert await retry_async(op, RetryPolicy(), sleep=sleep) == "ok"
        assert op.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_success_after_failures(self):
        op = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "ok"])
        sleep = AsyncMock()
        assert await retry_async(op, RetryPolicy(3, 1.0), sleep=sleep) == "ok"
        assert op.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_raises_with_last_error(self):
        errors = [RuntimeError("a"), RuntimeError("b"), RuntimeError("c")]
        op = AsyncMock(side_effect=errors)
        sleep = AsyncMock()
        with pytest.raises(RetryExhausted) as exc_info:
            await retry_async(op, RetryPolicy(3, 1.0), label="Send to x", sleep=sleep)
        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is errors[2]
        assert exc_info.value.__cause__ is errors[2]
        assert "Send to x" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_no_sleep_after_last_attempt(self):
        op = AsyncMock(side_effect=RuntimeError("nope"))
        sleep = AsyncMock()
        with pytest.raises(RetryExhausted):
            await retry_async(op, RetryPolicy(3, 1.0), sleep=sleep)
        assert sleep.await_count == 2
        for call in sleep.await_args_list:
            assert call.args == (1.0,)

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self):
        op = AsyncMock(side_effect=RuntimeError("nope"))
        sleep = AsyncMock()
        with pytest.raises(RetryExhausted):
            await retry_async(op, RetryPolicy(1, 1.0), sleep=sleep)
        assert op.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failures_logged_with_attempt(self, caplog):
        op = AsyncMock(side_effect=[RuntimeError("flaky"), None])
        with caplog.at_level("WARNING", logger="retry"):
            await retry_async(op, RetryPolicy(3, 0), label="Send to 1@c.us", sleep=AsyncMock())
        assert "Send to 1@c.us failed (attempt 1/3): flaky" in caplog.text
