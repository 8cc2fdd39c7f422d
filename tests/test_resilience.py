"""
Tests for error classification and retry with backoff
"""

import asyncio

import httpx
import pytest

from app.exceptions import CalendarServiceError, QuotaExceededError, ResourceNotFoundError
from app.resilience import backoff_delay, is_retryable_error, retry_async, with_retry
from tests.fakes import RecordingSleep


class TestClassification:

    @pytest.mark.parametrize("error", [
        QuotaExceededError(),
        CalendarServiceError("boom", retryable=True),
        asyncio.TimeoutError(),
        ConnectionError("reset"),
        httpx.ConnectError("refused"),
        RuntimeError("Rate limit exceeded for user"),
        RuntimeError("The service is temporarily unavailable"),
    ])
    def test_transient(self, error):
        assert is_retryable_error(error)

    @pytest.mark.parametrize("error", [
        ResourceNotFoundError("gone"),
        CalendarServiceError("Invalid email", retryable=False),
        ValueError("bad input"),
    ])
    def test_terminal(self, error):
        assert not is_retryable_error(error)

    def test_provider_classification_wins_over_message(self):
        assert not is_retryable_error(CalendarServiceError("timeout in request", retryable=False))


class TestBackoff:

    def test_exponential(self):
        assert [backoff_delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_custom_base(self):
        assert backoff_delay(2, base_delay=1.0, factor=3.0) == 3.0

    def test_no_delay_before_first_attempt(self):
        assert backoff_delay(0) == 0.0


class TestRetryAsync:

    async def test_returns_first_success(self):
        sleep = RecordingSleep()

        async def operation():
            return "ok"

        assert await retry_async(operation, step="op", sleep=sleep) == "ok"
        assert sleep.delays == []

    async def test_retries_transient_then_succeeds(self):
        sleep = RecordingSleep()
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise QuotaExceededError()
            return "ok"

        assert await retry_async(operation, step="op", max_attempts=3, base_delay=2.0, sleep=sleep) == "ok"
        assert sleep.delays == [2.0, 4.0]

    async def test_terminal_error_is_not_retried(self):
        sleep = RecordingSleep()
        calls = []

        async def operation():
            calls.append(1)
            raise CalendarServiceError("Invalid email", retryable=False)

        with pytest.raises(CalendarServiceError):
            await retry_async(operation, step="op", sleep=sleep)
        assert len(calls) == 1
        assert sleep.delays == []

    async def test_last_transient_error_propagates(self):
        sleep = RecordingSleep()

        async def operation():
            raise QuotaExceededError()

        with pytest.raises(QuotaExceededError):
            await retry_async(operation, step="op", max_attempts=3, sleep=sleep)
        assert len(sleep.delays) == 2

    async def test_custom_predicate(self):
        sleep = RecordingSleep()
        calls = []

        async def operation():
            calls.append(1)
            raise QuotaExceededError()

        with pytest.raises(QuotaExceededError):
            await retry_async(operation, step="op", sleep=sleep, retry_if=lambda e: False)
        assert len(calls) == 1


class TestWithRetryDecorator:

    async def test_decorated_coroutine_is_retried(self):
        calls = []

        @with_retry(max_attempts=2, delay=0.01)
        async def fetch(value):
            calls.append(value)
            if len(calls) == 1:
                raise ConnectionError("connection reset")
            return value * 2

        assert await fetch(21) == 42
        assert calls == [21, 21]
