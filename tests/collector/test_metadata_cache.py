"""Tests for the series lookup cache."""

import threading
from datetime import timedelta

import pytest

from collector.metadata_cache import MetadataCache

KEY = ("org1", "episode-1")


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MetadataCache(ttl=timedelta(minutes=10), clock=clock)


class TestExpiry:

    def test_hit_just_before_ttl(self, cache, clock):
        cache.put(KEY, "series-1")
        clock.advance(600 - 0.001)

        assert cache.get(KEY) == "series-1"

    def test_miss_at_and_after_ttl(self, cache, clock):
        cache.put(KEY, "series-1")
        clock.advance(600)

        assert cache.get(KEY) is None
        assert len(cache) == 0
        assert cache.get_stats()["expirations"] == 1

    def test_overwrite_restarts_ttl(self, cache, clock):
        cache.put(KEY, "series-1")
        clock.advance(500)
        cache.put(KEY, "series-2")
        clock.advance(500)

        assert cache.get(KEY) == "series-2"

    def test_hits_do_not_extend_lifetime(self, cache, clock):
        cache.put(KEY, "series-1")
        clock.advance(500)
        assert cache.get(KEY) == "series-1"
        clock.advance(100)

        assert cache.get(KEY) is None

    def test_empty_value_is_cached(self, cache):
        cache.put(KEY, "")
        assert cache.get(KEY) == ""


class TestDisabled:

    @pytest.mark.parametrize("ttl", [timedelta(0), timedelta(seconds=-5)])
    def test_zero_ttl_stores_nothing(self, ttl, clock):
        cache = MetadataCache(ttl=ttl, clock=clock)
        cache.put(KEY, "series-1")

        assert cache.enabled is False
        assert cache.get(KEY) is None
        assert len(cache) == 0

    def test_default_is_disabled(self):
        assert MetadataCache().enabled is False


class TestBoundedSize:

    def test_evicts_least_recently_used(self, clock):
        cache = MetadataCache(ttl=timedelta(hours=1), max_entries=2, clock=clock)
        cache.put(("org", "a"), "1")
        cache.put(("org", "b"), "2")
        cache.get(("org", "a"))
        cache.put(("org", "c"), "3")

        assert cache.get(("org", "b")) is None
        assert cache.get(("org", "a")) == "1"
        assert cache.get(("org", "c")) == "3"
        assert cache.get_stats()["evictions"] == 1

    def test_unbounded_by_default(self, cache):
        for i in range(100):
            cache.put(("org", str(i)), str(i))
        assert len(cache) == 100


class TestMaintenance:

    def test_invalidate(self, cache):
        cache.put(KEY, "series-1")
        cache.invalidate(KEY)
        cache.invalidate(("other", "key"))

        assert cache.get(KEY) is None

    def test_clear(self, cache):
        cache.put(KEY, "series-1")
        cache.clear()
        assert len(cache) == 0


class TestStats:

    def test_counts_hits_and_misses(self, cache):
        cache.get(KEY)
        cache.put(KEY, "series-1")
        cache.get(KEY)
        cache.get(KEY)

        stats = cache.get_stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["size"] == 1
        assert stats["hit_rate_pct"] == 66.7

    def test_empty_hit_rate(self, cache):
        assert cache.get_stats()["hit_rate_pct"] == 0.0

    def test_reset_stats(self, cache):
        cache.get(KEY)
        cache.reset_stats()
        assert cache.get_stats()["misses"] == 0


class TestConcurrency:

    def test_parallel_put_and_get(self, cache):
        errors = []

        def worker(n):
            try:
                for i in range(200):
                    key = ("org", f"{n}-{i % 10}")
                    cache.put(key, str(i))
                    cache.get(key)
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(cache) == 80
        assert cache.get_stats()["hits"] == 8 * 200
