"""Client-side rate limiting of driver GPS reports."""

from __future__ import annotations

import time
from typing import Callable

__all__ = ["LocationReportThrottle"]


class LocationReportThrottle:
    """Decides whether a GPS fix is worth sending.

    A fix is sent when ``min_interval`` seconds passed since the last sent one,
    or when either axis moved more than ``min_delta_degrees``.
    """

    def __init__(
        self,
        *,
        min_interval: float = 5.0,
        min_delta_degrees: float = 0.00015,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_interval = min_interval
        self.min_delta_degrees = min_delta_degrees
        self._clock = clock
        self._last_sent_at: float | None = None
        self._last_position: tuple[float, float] | None = None

    def should_send(self, lat: float, lng: float) -> bool:
        if self._last_sent_at is None or self._last_position is None:
            return True
        if self._clock() - self._last_sent_at >= self.min_interval:
            return True
        last_lat, last_lng = self._last_position
        return abs(lat - last_lat) > self.min_delta_degrees or abs(lng - last_lng) > self.min_delta_degrees

    def mark_sent(self, lat: float, lng: float) -> None:
        self._last_sent_at = self._clock()
        self._last_position = (lat, lng)

    def offer(self, lat: float, lng: float) -> bool:
        """``should_send`` followed by ``mark_sent`` when it returns true."""

        if not self.should_send(lat, lng):
            return False
        self.mark_sent(lat, lng)
        return True

    def reset(self) -> None:
        self._last_sent_at = None
        self._last_position = None
