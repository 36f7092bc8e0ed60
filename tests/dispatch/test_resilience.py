from __future__ import annotations

import httpx
import pytest

from services.dispatch.resilience import (
    RetryableUpstreamError,
    RetryPolicy,
    call_async_with_retry,
    raise_for_retryable_status,
)

NO_WAIT = RetryPolicy(attempts=3, initial_delay=0.0, max_delay=0.0)


@pytest.mark.anyio("asyncio")
async def test_retryable_errors_are_retried_until_success() -> None:
    calls: list[int] = []

    async def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise RetryableUpstreamError("upstream returned HTTP 503")
        return "ok"

    assert await call_async_with_retry(flaky, policy=NO_WAIT, upstream="osrm") == "ok"
    assert len(calls) == 3


@pytest.mark.anyio("asyncio")
async def test_last_error_is_reraised_once_attempts_run_out() -> None:
    calls: list[int] = []

    async def down() -> None:
        calls.append(1)
        raise httpx.ConnectError("refused")

    with pytest.raises(httpx.ConnectError):
        await call_async_with_retry(down, policy=NO_WAIT)
    assert len(calls) == 3


@pytest.mark.anyio("asyncio")
async def test_other_errors_are_not_retried() -> None:
    calls: list[int] = []

    async def broken() -> None:
        calls.append(1)
        raise ValueError("bad payload")

    with pytest.raises(ValueError):
        await call_async_with_retry(broken, policy=NO_WAIT)
    assert calls == [1]


@pytest.mark.parametrize(("status_code", "retryable"), [(200, False), (404, False), (429, True), (502, True)])
def test_retryable_statuses(status_code, retryable) -> None:
    response = httpx.Response(status_code)

    if retryable:
        with pytest.raises(RetryableUpstreamError):
            raise_for_retryable_status(response)
    else:
        raise_for_retryable_status(response)
