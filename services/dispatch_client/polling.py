"""Fixed-interval dashboard polling with exponential backoff on failure."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, TypeVar

from shared.config.settings import DispatchClientSettings
from shared.observability.logger import get_logger

__all__ = ["BackoffPolicy", "DashboardPoller", "policy_for"]

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class BackoffPolicy:
    """``min(cap, base * multiplier**failures)`` plus up to ``jitter`` of that delay."""

    base: float
    cap: float = 60.0
    multiplier: float = 2.0
    jitter: float = 0.1
    failures: int = 0
    rng: Callable[[], float] = field(default=random.random, repr=False)

    def __post_init__(self) -> None:
        if self.base <= 0 or self.cap <= 0:
            raise ValueError("base and cap must be positive")
        if not 0 <= self.jitter <= 1:
            raise ValueError("jitter must be between 0 and 1")

    def raw_delay(self) -> float:
        return min(self.cap, self.base * self.multiplier**self.failures)

    def next_delay(self) -> float:
        delay = self.raw_delay()
        if self.failures and self.jitter:
            delay = min(self.cap, delay + delay * self.jitter * self.rng())
        return delay

    def record_success(self) -> None:
        self.failures = 0

    def record_failure(self) -> None:
        self.failures += 1


class DashboardPoller(Generic[T]):
    """Runs ``fetch`` on its own task and hands each result to ``on_result``.

    A failure in ``fetch`` or ``on_result`` is passed to ``on_error`` when given
    and grows the delay per the backoff policy; a success resets it to the base
    interval.
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        on_result: Callable[[T], Awaitable[None] | None],
        *,
        policy: BackoffPolicy,
        on_error: Callable[[Exception], Awaitable[None] | None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self._fetch = fetch
        self._on_result = on_result
        self._on_error = on_error
        self._policy = policy
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self._stopped = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> float:
        """Fetch once, dispatch the outcome, and return the delay before the next poll."""

        try:
            result = await self._fetch()
            outcome = self._on_result(result)
            if asyncio.iscoroutine(outcome):
                await outcome
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - a failed poll only delays the next one
            self._policy.record_failure()
            delay = self._policy.next_delay()
            logger.warning("dashboard_poll_failed", poller=self.name, failures=self._policy.failures, retry_in=delay, error=str(exc))
            if self._on_error is not None:
                outcome = self._on_error(exc)
                if asyncio.iscoroutine(outcome):
                    await outcome
            return delay

        self._policy.record_success()
        return self._policy.next_delay()

    async def _run(self) -> None:
        while not self._stopped.is_set():
            delay = await self.poll_once()
            if self._stopped.is_set():
                break
            await self._sleep(delay)

    def start(self) -> asyncio.Task[None]:
        if self.running:
            assert self._task is not None
            return self._task
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name=f"dashboard-poller-{self.name}")
        return self._task

    async def stop(self) -> None:
        self._stopped.set()
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


def policy_for(concern: str, settings: DispatchClientSettings) -> BackoffPolicy:
    """Backoff policy for one dashboard concern: ``feed``, ``tracking`` or ``assignment``."""

    intervals = {
        "feed": settings.feed_interval_seconds,
        "tracking": settings.tracking_interval_seconds,
        "assignment": settings.assignment_interval_seconds,
    }
    try:
        base = intervals[concern]
    except KeyError as exc:
        raise ValueError(f"Unknown dashboard concern {concern!r}") from exc
    return BackoffPolicy(base=base, cap=settings.backoff_cap_seconds)
