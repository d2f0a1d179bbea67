"""
Indicator series aligned bar-for-bar with their input.

Each series has exactly one entry per bar; entries inside the warmup period
are None rather than being dropped, so index i always refers to bars[i].
"""

import math
from typing import Sequence

import pandas as pd

from crossover_backtester.caching.indicator_cache import IndicatorCache

AlignedSeries = list[float | None]


def simple_moving_average(closes: Sequence[float], length: int) -> AlignedSeries:
    """SMA of ``length`` closes; the first ``length - 1`` entries are None."""
    if length < 1:
        raise ValueError(f"SMA length must be >= 1, got {length}")
    rolled = pd.Series(closes, dtype="float64").rolling(window=length, min_periods=length).mean()
    return [None if math.isnan(v) else float(v) for v in rolled]


def cached_sma(
    closes: Sequence[float],
    length: int,
    cache: IndicatorCache | None,
    data_hash: str | None = None,
) -> AlignedSeries:
    """SMA served from the indicator cache when one is given."""
    if cache is None:
        return simple_moving_average(closes, length)
    data_hash = data_hash or IndicatorCache.hash_data(list(closes))
    key = IndicatorCache.make_key("sma", data_hash, length=length)
    return cache.get_or_compute(key, lambda: simple_moving_average(closes, length))
