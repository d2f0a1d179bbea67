"""
IndicatorCache — reuse moving-average series across optimization candidates.

A grid search evaluates many (fast, slow) pairs over the same closes, and
each length recurs across several pairs. Series are cached under a key built
from a hash of the closes plus the indicator parameters.
"""

import hashlib
import json
import threading
from typing import Any, Callable

from crossover_backtester.logging import get_logger

logger = get_logger(__name__)


class IndicatorCache:
    """
    In-memory cache for indicator calculations.

    Safe to share between threads. Worker processes each build their own
    series; the cache is not shared across process boundaries.
    """

    def __init__(self, max_size: int = 256) -> None:
        self._cache: dict[str, Any] = {}
        self._max_size = max_size
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Get cached value by key."""
        with self._lock:
            value = self._cache.get(key)
            if value is not None:
                self._hits += 1
            else:
                self._misses += 1
            return value

    def put(self, key: str, value: Any) -> None:
        """Cache a value. Evicts oldest entries if at capacity."""
        with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_size:
                # Remove oldest 10%
                remove_count = max(1, self._max_size // 10)
                for k in list(self._cache.keys())[:remove_count]:
                    del self._cache[k]
                logger.debug("Cache eviction", evicted=remove_count)
            self._cache[key] = value

    def get_or_compute(self, key: str, compute_fn: Callable[[], Any]) -> Any:
        """Get cached value or compute and cache it."""
        value = self.get(key)
        if value is not None:
            return value
        value = compute_fn()
        self.put(key, value)
        return value

    def clear(self) -> None:
        """Clear all cached entries."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    @property
    def stats(self) -> dict[str, Any]:
        """Cache statistics."""
        total = self._hits + self._misses
        return {
            "size": len(self._cache),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total > 0 else 0.0,
        }

    @staticmethod
    def make_key(indicator: str, data_hash: str, **params: Any) -> str:
        """Build a cache key from indicator name, data hash, and parameters."""
        param_str = json.dumps(params, sort_keys=True)
        return f"{indicator}:{data_hash}:{param_str}"

    @staticmethod
    def hash_data(data: list[float]) -> str:
        """Generate a short hash of numeric data for cache keys."""
        serialized = ",".join(repr(float(x)) for x in data)
        return hashlib.sha256(serialized.encode()).hexdigest()[:16]
