"""Per-process key/value cache with a freshness window and a stale fallback."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, TypeVar

__all__ = ["CacheEntry", "ExpiringCache", "make_cache_key"]

V = TypeVar("V")


@dataclass(frozen=True, slots=True)
class CacheEntry(Generic[V]):
    value: V
    stored_at: float
    expires_at: float

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)


def make_cache_key(*parts: object) -> str:
    """Join non-empty key parts with ``:``, e.g. ``driver:d1:emergency_tracking:e9``."""

    return ":".join(str(part) for part in parts if part is not None and part != "")


class ExpiringCache(Generic[V]):
    """Insertion-ordered cache keyed by requester identity.

    Entries stay readable after their TTL so callers can serve them as stale
    data while the backing store is failing; ``get_if_fresher_than`` bounds how
    old such an entry may be. The oldest entries are evicted once
    ``max_entries`` is exceeded.
    """

    def __init__(
        self,
        *,
        max_entries: int = 2048,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._entries: dict[Hashable, CacheEntry[V]] = {}
        self._max_entries = max_entries
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: Hashable) -> V | None:
        """Return the value only while it is within its TTL."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            return None
        return entry.value

    def get_if_fresher_than(self, key: Hashable, max_age_seconds: float) -> V | None:
        """Return the value if it was stored less than ``max_age_seconds`` ago, expired or not."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.age(self._clock()) >= max_age_seconds:
            return None
        return entry.value

    def set(self, key: Hashable, value: V, ttl_seconds: float) -> None:
        now = self._clock()
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(value=value, stored_at=now, expires_at=now + ttl_seconds)
        while len(self._entries) > self._max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def prune(self, max_age_seconds: float) -> int:
        """Drop entries older than ``max_age_seconds`` and return how many were removed."""

        now = self._clock()
        stale = [key for key, entry in self._entries.items() if entry.age(now) >= max_age_seconds]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
