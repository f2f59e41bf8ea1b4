"""
Tests for retry and backoff.
"""

from unittest.mock import AsyncMock

import pytest

from tbtc_client.errors import AlreadyDone, NotFound, TransientError
from tbtc_client.retry import backoff_delay, backoff_retrier, is_retryable, send_with_retry


class TestIsRetryable:
    def test_transport_errors_are_retryable(self) -> None:
        assert is_retryable(ConnectionError("reset"))
        assert is_retryable(TransientError("timeout"))

    def test_domain_errors_are_not(self) -> None:
        assert not is_retryable(NotFound("missing"))
        assert not is_retryable(AlreadyDone("done"))


class TestBackoffDelay:
    def test_grows_exponentially(self) -> None:
        assert 1.0 <= backoff_delay(1, 1.0) <= 1.5
        assert 2.0 <= backoff_delay(2, 1.0) <= 2.5
        assert 4.0 <= backoff_delay(3, 1.0) <= 4.5

    def test_zero_step(self) -> None:
        assert backoff_delay(5, 0) == 0


class TestBackoffRetrier:
    @pytest.mark.asyncio
    async def test_returns_first_success(self) -> None:
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=[ConnectionError("reset"), 42])

        result = await backoff_retrier(3, sleep=sleep)(operation)

        assert result == 42
        assert operation.await_count == 2
        assert sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error_unchanged(self) -> None:
        sleep = AsyncMock()
        errors = [ConnectionError("first"), ConnectionError("second"), ConnectionError("third")]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(ConnectionError) as exc_info:
            await backoff_retrier(3, sleep=sleep)(operation)

        assert exc_info.value is errors[2]
        assert operation.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self) -> None:
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=NotFound("no such request"))

        with pytest.raises(NotFound):
            await backoff_retrier(5, sleep=sleep)(operation)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            backoff_retrier(0)


class TestSendWithRetry:
    @pytest.mark.asyncio
    async def test_expected_error_counts_as_success(self) -> None:
        sleep = AsyncMock()
        operation = AsyncMock(
            side_effect=ValueError("execution reverted: Deposit already revealed")
        )

        result = await send_with_retry(
            operation, 3, expected_errors=["Deposit already revealed"], sleep=sleep
        )

        assert result is None
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unrelated_error_exhausts_attempts(self) -> None:
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=ValueError("nonce too low"))

        with pytest.raises(ValueError, match="nonce too low"):
            await send_with_retry(
                operation, 3, expected_errors=["Deposit already revealed"], sleep=sleep
            )

        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_expected_error_after_transient_failure(self) -> None:
        sleep = AsyncMock()
        operation = AsyncMock(
            side_effect=[ConnectionError("reset"), ValueError("already known")]
        )

        result = await send_with_retry(operation, 3, expected_errors=["already known"], sleep=sleep)

        assert result is None
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_returns_operation_result(self) -> None:
        operation = AsyncMock(return_value="0xabc")

        assert await send_with_retry(operation, 3, sleep=AsyncMock()) == "0xabc"
