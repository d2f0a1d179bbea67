"""Tests for IndicatorCache."""

import threading

from crossover_backtester.caching.indicator_cache import IndicatorCache


class TestIndicatorCache:

    def test_put_and_get(self):
        cache = IndicatorCache()
        cache.put("sma:abc:20", [1.0, 2.0])
        assert cache.get("sma:abc:20") == [1.0, 2.0]

    def test_miss_returns_none(self):
        assert IndicatorCache().get("missing") is None

    def test_get_or_compute_calls_once(self):
        cache = IndicatorCache()
        calls = []

        def compute():
            calls.append(1)
            return [None, 1.5]

        assert cache.get_or_compute("k", compute) == [None, 1.5]
        assert cache.get_or_compute("k", compute) == [None, 1.5]
        assert len(calls) == 1

    def test_eviction_at_capacity(self):
        cache = IndicatorCache(max_size=10)
        for i in range(10):
            cache.put(f"k{i}", i + 1)
        cache.put("k10", 11)
        assert cache.stats["size"] == 10
        assert cache.get("k0") is None
        assert cache.get("k10") == 11

    def test_clear_resets_stats(self):
        cache = IndicatorCache()
        cache.put("a", 1)
        cache.get("a")
        cache.clear()
        assert cache.stats == {"size": 0, "max_size": 256, "hits": 0, "misses": 0, "hit_rate": 0.0}

    def test_hit_rate(self):
        cache = IndicatorCache()
        cache.put("a", 1)
        cache.get("a")
        cache.get("b")
        assert cache.stats["hit_rate"] == 0.5

    def test_make_key_order_independent(self):
        a = IndicatorCache.make_key("sma", "h", length=5, source="close")
        b = IndicatorCache.make_key("sma", "h", source="close", length=5)
        assert a == b

    def test_hash_data(self):
        h1 = IndicatorCache.hash_data([1.0, 2.0, 3.0])
        assert h1 == IndicatorCache.hash_data([1, 2, 3])
        assert h1 != IndicatorCache.hash_data([1.0, 2.0, 3.5])
        assert len(h1) == 16

    def test_thread_safe_puts(self):
        cache = IndicatorCache(max_size=1000)

        def worker(offset):
            for i in range(100):
                cache.put(f"k{offset}-{i}", i + 1)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.stats["size"] == 400
