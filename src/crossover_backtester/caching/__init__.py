"""In-memory indicator caching shared across optimization candidates."""

from crossover_backtester.caching.indicator_cache import IndicatorCache

__all__ = ["IndicatorCache"]
