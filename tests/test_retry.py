"""Tests for the back-off helpers (``src.utils.retry``)."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from src.utils.retry import linear_delay, retry, sleep_linear


# =========================================================================
# Decorator construction
# =========================================================================


class TestRetryConstruction:
    def test_max_attempts_less_than_one_raises(self) -> None:
        with pytest.raises(ValueError, match="max_attempts must be >= 1"):
            @retry(max_attempts=0)
            async def invalid():
                pass

    def test_sync_function_rejected(self) -> None:
        with pytest.raises(TypeError, match="only decorates async functions"):
            @retry()
            def not_async():
                return 1


# =========================================================================
# Async retry
# =========================================================================


class TestAsyncRetry:
    """Verify the retry decorator on async functions."""

    @patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_async_succeeds_first_attempt(
        self, mock_sleep: AsyncMock
    ) -> None:
        call_count = 0

        @retry(max_attempts=3)
        async def succeed():
            nonlocal call_count
            call_count += 1
            return "async_ok"

        result = await succeed()
        assert result == "async_ok"
        assert call_count == 1
        mock_sleep.assert_not_called()

    @patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_async_retries_then_succeeds(
        self, mock_sleep: AsyncMock
    ) -> None:
        call_count = 0

        @retry(max_attempts=4, base_delay=0.1)
        async def flaky():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConnectionError("transient")
            return "recovered"

        result = await flaky()
        assert result == "recovered"
        assert call_count == 3
        assert mock_sleep.call_count == 2

    @patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_async_exhausts_retries(self, mock_sleep: AsyncMock) -> None:
        @retry(max_attempts=2, base_delay=0.1)
        async def always_fails():
            raise TimeoutError("timed out")

        with pytest.raises(TimeoutError, match="timed out"):
            await always_fails()

        assert mock_sleep.call_count == 1

    @patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_async_only_specified_exceptions_trigger_retry(
        self, mock_sleep: AsyncMock
    ) -> None:
        call_count = 0

        @retry(max_attempts=3, exceptions=(ConnectionError,))
        async def wrong_exception():
            nonlocal call_count
            call_count += 1
            raise RuntimeError("not retryable")

        with pytest.raises(RuntimeError, match="not retryable"):
            await wrong_exception()

        assert call_count == 1
        mock_sleep.assert_not_called()

    @patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_async_preserves_function_name(
        self, mock_sleep: AsyncMock
    ) -> None:
        @retry()
        async def my_async_function():
            return True

        assert my_async_function.__name__ == "my_async_function"

    @patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_async_backoff_delay_increases(
        self, mock_sleep: AsyncMock
    ) -> None:
        """Successive delays grow (exponential backoff)."""
        call_count = 0

        @retry(max_attempts=4, base_delay=1.0, max_delay=100.0)
        async def fails_three_times():
            nonlocal call_count
            call_count += 1
            if call_count < 4:
                raise ConnectionError("retry me")
            return "done"

        result = await fails_three_times()
        assert result == "done"
        assert mock_sleep.call_count == 3

        delays = [call.args[0] for call in mock_sleep.call_args_list]
        for d in delays:
            assert d >= 0.0
        # attempt 0 -> [1, 2), attempt 2 -> [4, 5)
        assert delays[-1] > delays[0]

    @patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_delay_capped_by_max_delay(self, mock_sleep: AsyncMock) -> None:
        @retry(max_attempts=3, base_delay=10.0, max_delay=2.0)
        async def always_fails():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            await always_fails()
        assert all(call.args[0] <= 2.0 for call in mock_sleep.call_args_list)


# =========================================================================
# Linear back-off
# =========================================================================


class TestLinearDelay:
    def test_linear_steps(self) -> None:
        assert [linear_delay(i, 1.0) for i in range(3)] == [1.0, 2.0, 3.0]

    def test_custom_step(self) -> None:
        assert linear_delay(1, 0.5) == 1.0

    @patch("src.utils.retry.asyncio.sleep", new_callable=AsyncMock)
    async def test_sleep_linear_waits_incrementally(self, mock_sleep: AsyncMock) -> None:
        await sleep_linear(0, 1.0)
        await sleep_linear(2, 1.0, model="m")
        assert [call.args[0] for call in mock_sleep.call_args_list] == [1.0, 3.0]
