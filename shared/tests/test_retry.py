"""
Tests for the retry executor and HTTP error classification.
"""

import pytest
import httpx
from unittest.mock import AsyncMock, patch

from shared.retry import (
    RetryOptions,
    classify_http_error,
    compute_delay,
    execute,
    parse_retry_after,
    retry_with_backoff,
)
from shared.errors import (
    ContentPolicyError,
    ErrorKind,
    QuotaExhaustedError,
    RateLimitError,
    RetryableError,
    RetryExhaustedError,
    ValidationError,
)

FAST = RetryOptions(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.mark.asyncio
async def test_execute_returns_first_success():
    operation = AsyncMock(return_value="ok")

    assert await execute(operation, FAST) == "ok"
    assert operation.await_count == 1


@pytest.mark.asyncio
async def test_execute_retries_transient_then_succeeds():
    operation = AsyncMock(side_effect=[RetryableError("503"), RetryableError("timeout"), "ok"])

    assert await execute(operation, FAST) == "ok"
    assert operation.await_count == 3


@pytest.mark.asyncio
async def test_execute_wraps_last_error_when_exhausted():
    last = RetryableError("still overloaded", provider_id="kling")
    operation = AsyncMock(side_effect=[RetryableError("overloaded"), RetryableError("overloaded"), last])

    with pytest.raises(RetryExhaustedError) as exc_info:
        await execute(operation, FAST)

    error = exc_info.value
    assert error.attempts == 3
    assert error.last_error is last
    assert error.kind == ErrorKind.EXHAUSTED_RETRIES
    assert error.provider_id == "kling"
    assert error.to_dict()["attempts"] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    ValidationError("bad request"),
    QuotaExhaustedError("out of credits"),
    ContentPolicyError("flagged"),
])
async def test_execute_does_not_retry_non_transient(error):
    operation = AsyncMock(side_effect=error)

    with pytest.raises(type(error)):
        await execute(operation, FAST)
    assert operation.await_count == 1


@pytest.mark.asyncio
async def test_execute_sleeps_with_backoff_between_attempts():
    options = RetryOptions(max_attempts=3, base_delay=1.0, max_delay=30.0, jitter=False)
    operation = AsyncMock(side_effect=[RetryableError("a"), RetryableError("b"), "ok"])

    with patch("shared.retry.asyncio.sleep", new=AsyncMock()) as sleep:
        await execute(operation, options)

    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]


def test_compute_delay_is_exponential_and_capped():
    options = RetryOptions(base_delay=2.0, max_delay=10.0, jitter=False)

    assert compute_delay(0, options) == 2.0
    assert compute_delay(1, options) == 4.0
    assert compute_delay(2, options) == 8.0
    assert compute_delay(5, options) == 10.0


def test_compute_delay_jitter_stays_within_bounds():
    options = RetryOptions(base_delay=4.0, max_delay=100.0, jitter=True)

    for _ in range(50):
        assert 2.0 <= compute_delay(0, options) <= 6.0


def test_compute_delay_honours_retry_after():
    options = RetryOptions(base_delay=1.0, max_delay=20.0, jitter=False)

    assert compute_delay(0, options, RateLimitError("slow down", retry_after=7)) == 7.0
    assert compute_delay(0, options, RateLimitError("slow down", retry_after=60)) == 20.0


@pytest.mark.asyncio
async def test_retry_with_backoff_decorator():
    calls = 0

    @retry_with_backoff(max_attempts=2, base_delay=0)
    async def flaky():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RetryableError("once")
        return calls

    assert await flaky() == 2


def test_parse_retry_after():
    assert parse_retry_after("12") == 12.0
    assert parse_retry_after(None) is None
    assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None


def _status_error(code: int, headers=None) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://provider.test/v1/jobs")
    response = httpx.Response(code, request=request, headers=headers or {}, text="body")
    return httpx.HTTPStatusError("failed", request=request, response=response)


def test_classify_http_error_by_status():
    rate_limited = classify_http_error(_status_error(429, {"retry-after": "3"}), "runway")
    assert isinstance(rate_limited, RateLimitError)
    assert rate_limited.retry_after == 3.0
    assert rate_limited.provider_id == "runway"

    assert isinstance(classify_http_error(_status_error(502)), RetryableError)
    assert isinstance(classify_http_error(_status_error(400)), ValidationError)


def test_classify_http_error_network_failures_are_transient():
    request = httpx.Request("GET", "https://provider.test")
    assert isinstance(classify_http_error(httpx.ConnectError("refused", request=request)), RetryableError)
    assert isinstance(classify_http_error(httpx.ReadTimeout("slow", request=request)), RetryableError)


def test_classify_http_error_passes_pipeline_errors_through():
    error = ContentPolicyError("nsfw")
    assert classify_http_error(error) is error
