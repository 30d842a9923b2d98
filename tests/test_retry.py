"""Tests for store-call retries with exponential backoff."""

from unittest.mock import AsyncMock

import pytest

from authcore.core.errors import DuplicateKeyError, StoreUnavailableError
from authcore.core.retry import RetryConfig, calculate_backoff_delay, retry_async

NO_DELAY = RetryConfig(max_retries=2, base_delay=0, jitter=False)


@pytest.mark.asyncio
class TestRetryAsync:
    async def test_success_on_first_attempt(self):
        func = AsyncMock(return_value="ok")

        assert await retry_async(func, "a", config=NO_DELAY, flag=True) == "ok"
        func.assert_awaited_once_with("a", flag=True)

    async def test_transient_failure_is_retried(self):
        func = AsyncMock(side_effect=[StoreUnavailableError(), "ok"])

        assert await retry_async(func, config=NO_DELAY) == "ok"
        assert func.await_count == 2

    async def test_gives_up_after_max_retries(self):
        func = AsyncMock(side_effect=StoreUnavailableError())

        with pytest.raises(StoreUnavailableError):
            await retry_async(func, config=NO_DELAY)
        assert func.await_count == 3

    async def test_business_errors_are_not_retried(self):
        """A duplicate key is a definitive answer, not an outage."""
        func = AsyncMock(side_effect=DuplicateKeyError())

        with pytest.raises(DuplicateKeyError):
            await retry_async(func, config=NO_DELAY)
        assert func.await_count == 1

    async def test_zero_retries_means_single_attempt(self):
        func = AsyncMock(side_effect=ConnectionError("refused"))

        with pytest.raises(ConnectionError):
            await retry_async(func, config=RetryConfig(max_retries=0))
        assert func.await_count == 1


class TestBackoffDelay:
    def test_exponential_growth_without_jitter(self):
        config = RetryConfig(base_delay=0.1, max_delay=10, jitter=False)

        assert calculate_backoff_delay(0, config) == pytest.approx(0.1)
        assert calculate_backoff_delay(1, config) == pytest.approx(0.2)
        assert calculate_backoff_delay(3, config) == pytest.approx(0.8)

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=0.5, max_delay=1.0, jitter=False)
        assert calculate_backoff_delay(5, config) == 1.0

    def test_jitter_stays_within_bounds(self):
        config = RetryConfig(base_delay=0.1, max_delay=10, jitter=True)
        for _ in range(50):
            assert 0.05 <= calculate_backoff_delay(0, config) <= 0.15
