"""Retry orchestration for outbound calls (severity scorer, geocoder, router)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.observability.logger import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class RetryableUpstreamError(RuntimeError):
    """An upstream reply that is worth retrying, such as HTTP 429 or 5xx."""


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for Tenacity retry execution."""

    attempts: int = 2
    initial_delay: float = 0.2
    max_delay: float = 2.0
    backoff_multiplier: float = 2.0
    retry_exceptions: tuple[type[BaseException], ...] = (httpx.TransportError, RetryableUpstreamError)


def raise_for_retryable_status(response: httpx.Response) -> None:
    """Turn throttling and server errors into :class:`RetryableUpstreamError`."""

    if response.status_code == 429 or response.status_code >= 500:
        raise RetryableUpstreamError(f"upstream returned HTTP {response.status_code}")


def _log_retry(upstream: str, retry_state: RetryCallState) -> None:
    exception = None
    if retry_state.outcome is not None and retry_state.outcome.failed:
        exception = retry_state.outcome.exception()
    logger.warning(
        "upstream_retry",
        upstream=upstream,
        attempt=retry_state.attempt_number,
        wait=getattr(retry_state.next_action, "sleep", None),
        error=str(exception) if exception else None,
    )


async def call_async_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: RetryPolicy | None = None,
    upstream: str = "upstream",
    **kwargs: Any,
) -> T:
    """Execute async ``func`` with Tenacity retry semantics."""

    resolved_policy = policy or RetryPolicy()
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(resolved_policy.retry_exceptions),
        stop=stop_after_attempt(resolved_policy.attempts),
        wait=wait_exponential(
            multiplier=resolved_policy.initial_delay,
            min=resolved_policy.initial_delay,
            max=resolved_policy.max_delay,
            exp_base=resolved_policy.backoff_multiplier,
        ),
        reraise=True,
        before_sleep=lambda state: _log_retry(upstream, state),
    )

    async for attempt in retrying:
        with attempt:
            return await func(*args, **kwargs)

    raise RuntimeError("Async retry loop terminated without executing the function.")


__all__ = [
    "RetryPolicy",
    "RetryableUpstreamError",
    "call_async_with_retry",
    "raise_for_retryable_status",
]
