"""Unit tests for the in-process TTL cache."""

from __future__ import annotations

from relay.services.cache import RATE_LIMITS_REGION, SUBSCRIPTIONS_REGION, TTLCacheService


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _cache(clock: FakeClock, **kwargs) -> TTLCacheService:
    cache = TTLCacheService(clock=clock, **kwargs)
    cache.init()
    return cache


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = _cache(clock, ttl_minutes=1)

    cache.put(SUBSCRIPTIONS_REGION, "k", "v")
    clock.now += 59
    assert cache.get(SUBSCRIPTIONS_REGION, "k") == "v"

    clock.now += 2
    assert cache.get(SUBSCRIPTIONS_REGION, "k") is None


def test_rate_limit_region_uses_its_own_ttl():
    clock = FakeClock()
    cache = _cache(clock, ttl_minutes=1)

    cache.put(RATE_LIMITS_REGION, "k", 1)
    clock.now += 90
    assert cache.get(RATE_LIMITS_REGION, "k") == 1

    clock.now += 31
    assert cache.get(RATE_LIMITS_REGION, "k") is None


def test_region_is_bounded_by_heap_size():
    cache = _cache(FakeClock(), heap_size=2)

    cache.put(SUBSCRIPTIONS_REGION, "a", 1)
    cache.put(SUBSCRIPTIONS_REGION, "b", 2)
    assert cache.get(SUBSCRIPTIONS_REGION, "a") == 1
    cache.put(SUBSCRIPTIONS_REGION, "c", 3)

    assert cache.get(SUBSCRIPTIONS_REGION, "b") is None
    assert cache.get(SUBSCRIPTIONS_REGION, "a") == 1
    assert cache.get(SUBSCRIPTIONS_REGION, "c") == 3


def test_remove_and_clear():
    cache = _cache(FakeClock())
    cache.put(SUBSCRIPTIONS_REGION, "a", 1)
    cache.put(SUBSCRIPTIONS_REGION, "b", 2)

    cache.remove(SUBSCRIPTIONS_REGION, "a")
    cache.remove(SUBSCRIPTIONS_REGION, "never-there")
    assert cache.get(SUBSCRIPTIONS_REGION, "a") is None

    cache.clear(SUBSCRIPTIONS_REGION)
    assert cache.get(SUBSCRIPTIONS_REGION, "b") is None


def test_unknown_region_is_a_miss():
    cache = _cache(FakeClock())

    cache.put("nope", "k", "v")

    assert cache.get("nope", "k") is None


def test_disabled_cache_never_stores_but_stays_available():
    cache = _cache(FakeClock(), enabled=False)

    cache.put(SUBSCRIPTIONS_REGION, "k", "v")

    assert cache.get(SUBSCRIPTIONS_REGION, "k") is None
    assert cache.is_available() is True


def test_update_configuration_rebuilds_regions():
    cache = _cache(FakeClock())
    cache.put(SUBSCRIPTIONS_REGION, "k", "v")

    config = cache.update_configuration(enabled=True, heap_size=5, ttl_minutes=2)

    assert config == {"enabled": True, "heap_size": 5, "ttl_minutes": 2}
    assert cache.get(SUBSCRIPTIONS_REGION, "k") is None


def test_is_available_reinitializes_after_close():
    cache = _cache(FakeClock())
    cache.close()

    assert cache.get(SUBSCRIPTIONS_REGION, "k") is None
    assert cache.is_available() is True
    cache.put(SUBSCRIPTIONS_REGION, "k", "v")
    assert cache.get(SUBSCRIPTIONS_REGION, "k") == "v"
