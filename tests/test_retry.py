import pytest

from common.retry import RetryConfig, calculate_retry_delay, retry_async


def test_delay_is_capped_without_jitter():
    assert calculate_retry_delay(0, base_delay=0.5, jitter=False) == 0.5
    assert calculate_retry_delay(10, base_delay=0.5, max_delay=5.0, jitter=False) == 5.0


@pytest.mark.asyncio
async def test_single_attempt_by_default():
    calls = []

    async def flaky():
        calls.append(1)
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await retry_async(flaky, RetryConfig())
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_retries_until_success():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("down")
        return "ok"

    config = RetryConfig(max_retries=2, base_delay=0, jitter=False)
    assert await retry_async(flaky, config) == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_stop_exceptions_are_not_retried():
    calls = []

    async def fatal():
        calls.append(1)
        raise PermissionError("no")

    config = RetryConfig(max_retries=3, base_delay=0, jitter=False)
    with pytest.raises(PermissionError):
        await retry_async(fatal, config, stop_exceptions=(PermissionError,))
    assert len(calls) == 1
