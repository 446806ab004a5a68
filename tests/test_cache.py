"""Tests for the TTL cache."""

from __future__ import annotations

import pytest

from branchpanel.cache import TTLCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_entry_is_served_until_ttl_elapses() -> None:
    clock = _Clock()
    cache: TTLCache[str, str] = TTLCache(60, clock=clock)
    cache.set("ep-1", "value")

    clock.now += 59.999
    assert cache.get("ep-1") == "value"

    clock.now += 0.001
    assert cache.get("ep-1") is None
    assert len(cache) == 0


def test_invalidate_all_clears_entries() -> None:
    cache: TTLCache[str, int] = TTLCache(300, clock=_Clock())
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    assert "a" not in cache
    assert "b" in cache

    cache.invalidate_all()
    assert cache.get("b") is None


def test_rejects_non_positive_ttl() -> None:
    with pytest.raises(ValueError):
        TTLCache(0)


def test_membership_and_length_skip_expired_entries() -> None:
    clock = _Clock()
    cache: TTLCache[str, str | None] = TTLCache(10, clock=clock)
    cache.set("old", "stale")
    clock.now += 5
    cache.set("fresh", "value")
    cache.set("empty", None)

    assert "empty" in cache
    assert len(cache) == 3

    clock.now += 5
    assert "old" not in cache
    assert len(cache) == 2
