"""Unit tests for the TTL cache."""

from src.fleet.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_returns_fresh_entries():
    cache = TTLCache(ttl_seconds=10, clock=FakeClock())
    cache.set("labels:fac-1", ["pipeline:qa"])
    assert cache.get("labels:fac-1") == ["pipeline:qa"]


def test_expires_entries():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, clock=clock)
    cache.set("key", "value")

    clock.now += 10
    assert cache.get("key") == "value"

    clock.now += 0.5
    assert cache.get("key") is None
    assert len(cache) == 0


def test_missing_key():
    assert TTLCache().get("absent") is None


def test_empty_values_are_cached():
    cache = TTLCache()
    cache.set("labels", [])
    assert cache.get("labels") == []


def test_invalidate():
    cache = TTLCache()
    cache.set("a", 1)
    cache.set("b", 2)

    cache.invalidate("a")
    cache.invalidate("missing")
    assert cache.get("a") is None
    assert cache.get("b") == 2

    cache.invalidate_all()
    assert len(cache) == 0
