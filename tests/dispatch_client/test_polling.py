from __future__ import annotations

import asyncio

import pytest

from services.dispatch_client import BackoffPolicy, DashboardPoller, policy_for
from shared.config.settings import DispatchClientSettings


def test_backoff_doubles_up_to_the_cap_and_resets() -> None:
    policy = BackoffPolicy(base=8.0, cap=60.0, jitter=0.0)

    assert policy.next_delay() == 8.0
    delays = []
    for _ in range(4):
        policy.record_failure()
        delays.append(policy.next_delay())
    assert delays == [16.0, 32.0, 60.0, 60.0]

    policy.record_success()
    assert policy.next_delay() == 8.0


def test_jitter_only_applies_after_failures() -> None:
    policy = BackoffPolicy(base=10.0, cap=60.0, jitter=0.1, rng=lambda: 1.0)

    assert policy.next_delay() == 10.0
    policy.record_failure()
    assert policy.next_delay() == pytest.approx(22.0)


@pytest.mark.parametrize("kwargs", [{"base": 0}, {"base": 1, "cap": -1}, {"base": 1, "jitter": 2}])
def test_invalid_policies_are_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        BackoffPolicy(**kwargs)


def test_policy_for_each_dashboard_concern() -> None:
    settings = DispatchClientSettings(feed_interval_seconds=12, tracking_interval_seconds=8, backoff_cap_seconds=45)

    assert policy_for("feed", settings).base == 12
    assert policy_for("tracking", settings).cap == 45
    with pytest.raises(ValueError):
        policy_for("weather", settings)


@pytest.mark.anyio("asyncio")
async def test_poll_once_hands_results_and_errors_to_callbacks() -> None:
    outcomes = iter([RuntimeError("503"), RuntimeError("503"), {"items": []}])
    results: list[object] = []
    errors: list[Exception] = []

    async def fetch() -> object:
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    poller = DashboardPoller(
        "feed",
        fetch,
        results.append,
        policy=BackoffPolicy(base=12.0, jitter=0.0),
        on_error=errors.append,
    )

    assert await poller.poll_once() == 24.0
    assert await poller.poll_once() == 48.0
    assert await poller.poll_once() == 12.0
    assert results == [{"items": []}]
    assert [str(error) for error in errors] == ["503", "503"]


@pytest.mark.anyio("asyncio")
async def test_started_poller_sleeps_between_polls_until_stopped() -> None:
    sleeps: list[float] = []
    results: list[int] = []
    counter = iter(range(100))

    async def fetch() -> int:
        return next(counter)

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        await asyncio.sleep(0)

    async def on_result(value: int) -> None:
        results.append(value)

    poller = DashboardPoller(
        "tracking", fetch, on_result, policy=BackoffPolicy(base=8.0, jitter=0.0), sleep=fake_sleep
    )
    task = poller.start()
    assert poller.start() is task
    while len(results) < 3:
        await asyncio.sleep(0)

    await poller.stop()

    assert poller.running is False
    assert results[:3] == [0, 1, 2]
    assert set(sleeps) == {8.0}


@pytest.mark.anyio("asyncio")
async def test_failing_result_callback_backs_off_like_a_failed_fetch() -> None:
    errors: list[Exception] = []

    async def fetch() -> dict:
        return {"items": []}

    def on_result(_: dict) -> None:
        raise RuntimeError("render failed")

    poller = DashboardPoller(
        "feed", fetch, on_result, policy=BackoffPolicy(base=12.0, jitter=0.0), on_error=errors.append
    )

    assert await poller.poll_once() == 24.0
    assert await poller.poll_once() == 48.0
    assert [str(error) for error in errors] == ["render failed", "render failed"]


@pytest.mark.anyio("asyncio")
async def test_started_poller_survives_callback_failures() -> None:
    sleeps: list[float] = []
    seen: list[int] = []
    counter = iter(range(100))

    async def fetch() -> int:
        return next(counter)

    async def on_result(value: int) -> None:
        seen.append(value)
        if value == 0:
            raise RuntimeError("render failed")

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        await asyncio.sleep(0)

    poller = DashboardPoller(
        "assignment", fetch, on_result, policy=BackoffPolicy(base=15.0, jitter=0.0), sleep=fake_sleep
    )
    poller.start()
    while len(seen) < 3:
        await asyncio.sleep(0)

    assert poller.running is True
    await poller.stop()

    assert seen[:3] == [0, 1, 2]
    assert sleeps[:2] == [30.0, 15.0]
