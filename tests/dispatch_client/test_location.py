from __future__ import annotations

from services.dispatch_client import LocationReportThrottle


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_first_fix_is_always_sent() -> None:
    assert LocationReportThrottle(clock=_Clock()).offer(28.62, 77.22) is True


def test_small_moves_inside_the_interval_are_held_back() -> None:
    clock = _Clock()
    throttle = LocationReportThrottle(clock=clock)
    throttle.offer(28.62, 77.22)

    clock.now += 2
    assert throttle.offer(28.62010, 77.22010) is False

    clock.now += 3
    assert throttle.offer(28.62010, 77.22010) is True


def test_large_moves_are_sent_immediately() -> None:
    clock = _Clock()
    throttle = LocationReportThrottle(clock=clock)
    throttle.offer(28.62, 77.22)

    clock.now += 1
    assert throttle.offer(28.62, 77.2202) is True
    assert throttle.offer(28.62, 77.2202) is False


def test_reset_forgets_the_last_fix() -> None:
    clock = _Clock()
    throttle = LocationReportThrottle(clock=clock)
    throttle.offer(28.62, 77.22)

    throttle.reset()

    assert throttle.should_send(28.62, 77.22) is True
