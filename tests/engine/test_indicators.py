"""Tests for aligned indicator series."""

import pytest

from crossover_backtester.caching.indicator_cache import IndicatorCache
from crossover_backtester.engine.indicators import cached_sma, simple_moving_average


class TestSimpleMovingAverage:

    def test_aligned_with_input(self):
        sma = simple_moving_average([1.0, 2.0, 3.0, 4.0, 5.0], 3)
        assert len(sma) == 5
        assert sma[:2] == [None, None]
        assert sma[2:] == [pytest.approx(2.0), pytest.approx(3.0), pytest.approx(4.0)]

    def test_length_one_is_identity(self):
        assert simple_moving_average([3.0, 1.0, 2.0], 1) == [3.0, 1.0, 2.0]

    def test_length_longer_than_series(self):
        assert simple_moving_average([1.0, 2.0], 5) == [None, None]

    def test_invalid_length(self):
        with pytest.raises(ValueError):
            simple_moving_average([1.0], 0)


class TestCachedSma:

    def test_without_cache(self):
        closes = [float(i) for i in range(10)]
        assert cached_sma(closes, 4, None) == simple_moving_average(closes, 4)

    def test_second_call_hits_cache(self):
        cache = IndicatorCache()
        closes = [float(i) for i in range(10)]
        first = cached_sma(closes, 4, cache)
        second = cached_sma(closes, 4, cache)
        assert first == second
        assert cache.stats["hits"] == 1
        assert cache.stats["misses"] == 1

    def test_different_lengths_cached_separately(self):
        cache = IndicatorCache()
        closes = [float(i) for i in range(10)]
        cached_sma(closes, 3, cache)
        cached_sma(closes, 5, cache)
        assert cache.stats["size"] == 2
