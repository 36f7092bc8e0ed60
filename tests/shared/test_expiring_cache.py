from __future__ import annotations

import pytest

from shared.cache import ExpiringCache, make_cache_key


class _Clock:
    def __init__(self) -> None:
        self.now = 50.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_their_ttl_but_stay_available_as_stale() -> None:
    clock = _Clock()
    cache: ExpiringCache[str] = ExpiringCache(clock=clock)
    cache.set("patient:p1:emergency_tracking:e1", "view", 2.0)

    assert cache.get("patient:p1:emergency_tracking:e1") == "view"

    clock.now += 2.0
    assert cache.get("patient:p1:emergency_tracking:e1") is None
    assert cache.get_if_fresher_than("patient:p1:emergency_tracking:e1", 30.0) == "view"

    clock.now += 28.0
    assert cache.get_if_fresher_than("patient:p1:emergency_tracking:e1", 30.0) is None


def test_oldest_entries_are_evicted_beyond_capacity() -> None:
    cache: ExpiringCache[int] = ExpiringCache(max_entries=2, clock=_Clock())
    cache.set("a", 1, 10)
    cache.set("b", 2, 10)
    cache.set("a", 3, 10)
    cache.set("c", 4, 10)

    assert "b" not in cache
    assert cache.get("a") == 3
    assert cache.get("c") == 4
    assert len(cache) == 2


def test_prune_and_invalidate() -> None:
    clock = _Clock()
    cache: ExpiringCache[int] = ExpiringCache(clock=clock)
    cache.set("old", 1, 1)
    clock.now += 40
    cache.set("new", 2, 1)

    assert cache.prune(30) == 1
    cache.invalidate("new")
    assert len(cache) == 0


def test_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ExpiringCache(max_entries=0)


def test_cache_keys_skip_empty_parts() -> None:
    assert make_cache_key("hospital", "h1", "feed", None, "", "limit=20") == "hospital:h1:feed:limit=20"
