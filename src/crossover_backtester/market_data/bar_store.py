"""
BarStore — ordered bar sequences per (symbol, timeframe) with a freshness policy.

Serving rules:
1. A cached batch refreshed within the timeframe's freshness window is
   returned unmodified.
2. Otherwise bars are fetched from the routed provider and written back,
   replacing the batch.
3. If the cache backend is unavailable, network results are served without
   being persisted (degraded mode).
4. Concurrent refreshes of the same key share one upstream fetch.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable

import pandas as pd

from crossover_backtester.errors import (
    CacheUnavailableError,
    DataUnavailableError,
    ProviderError,
)
from crossover_backtester.market_data.models import Bar, bars_to_frame, normalize_bars
from crossover_backtester.market_data.providers import BarProvider
from crossover_backtester.market_data.routing import DataSource, normalize_symbol, resolve_route
from crossover_backtester.market_data.timeframes import Timeframe
from crossover_backtester.persistence.bar_cache import BarCache
from crossover_backtester.logging import get_logger

logger = get_logger(__name__)

CacheKey = tuple[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BarStore:
    """
    Supplies bar DataFrames, refreshing stale cache entries from upstream.

    Usage:
        store = BarStore(cache, providers)
        bars = await store.get_bars("BTCUSDT", Timeframe.H1)
    """

    def __init__(
        self,
        cache: BarCache | None,
        providers: dict[DataSource, BarProvider],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.cache = cache
        self.providers = providers
        self.clock = clock
        self._inflight: dict[CacheKey, asyncio.Task[list[Bar]]] = {}
        self._stats = {"cache_hits": 0, "refreshes": 0, "degraded": 0, "stale_served": 0}

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    async def get_bars(self, symbol: str, timeframe: Timeframe | str) -> pd.DataFrame:
        """Return ascending, de-duplicated bars for the instrument."""
        bars = await self.get_bar_list(symbol, timeframe)
        return bars_to_frame(bars)

    async def get_bar_list(self, symbol: str, timeframe: Timeframe | str) -> list[Bar]:
        symbol = normalize_symbol(symbol)
        timeframe = Timeframe.parse(timeframe)
        key: CacheKey = (symbol, timeframe.value)

        fresh = await self._read_fresh(key, timeframe)
        if fresh:
            self._stats["cache_hits"] += 1
            logger.debug("Serving cached bars", symbol=symbol, timeframe=timeframe.value, count=len(fresh))
            return fresh

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(symbol, timeframe))
            self._inflight[key] = task
            task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        else:
            logger.debug("Joining in-flight refresh", symbol=symbol, timeframe=timeframe.value)

        return await asyncio.shield(task)

    # =========================================================================
    # Cache access
    # =========================================================================

    async def _read_fresh(self, key: CacheKey, timeframe: Timeframe) -> list[Bar] | None:
        """Cached batch if it is within the freshness window, else None."""
        if self.cache is None:
            return None
        symbol, tf = key
        try:
            refreshed_at = await self.cache.last_refreshed_at(symbol, tf)
            if refreshed_at is None or not self._is_fresh(refreshed_at, timeframe):
                return None
            bars = await self.cache.read_cached_bars(symbol, tf)
        except CacheUnavailableError as e:
            logger.warning("Bar cache unavailable on read", symbol=symbol, timeframe=tf, error=str(e))
            return None
        return bars or None

    def _is_fresh(self, refreshed_at: datetime, timeframe: Timeframe) -> bool:
        if refreshed_at.tzinfo is None:
            refreshed_at = refreshed_at.replace(tzinfo=timezone.utc)
        return self.clock() - refreshed_at < timeframe.freshness_window

    async def _read_stale(self, symbol: str, timeframe: Timeframe) -> list[Bar]:
        if self.cache is None:
            return []
        try:
            return await self.cache.read_cached_bars(symbol, timeframe.value)
        except CacheUnavailableError:
            return []

    # =========================================================================
    # Refresh
    # =========================================================================

    async def _refresh(self, symbol: str, timeframe: Timeframe) -> list[Bar]:
        route = resolve_route(symbol)
        provider = self.providers.get(route.source)
        if provider is None:
            raise DataUnavailableError(f"No provider configured for {route.source.value}")

        self._stats["refreshes"] += 1
        logger.info(
            "Refreshing bars",
            symbol=symbol,
            timeframe=timeframe.value,
            source=route.source.value,
            external_symbol=route.external_symbol,
        )

        try:
            raw = await provider.fetch_bars(symbol, route.external_symbol, timeframe)
        except ProviderError as e:
            return await self._fallback_to_stale(symbol, timeframe, str(e))

        bars = normalize_bars(raw)
        if not bars:
            return await self._fallback_to_stale(symbol, timeframe, "provider returned no valid bars")

        if len(bars) != len(raw):
            logger.debug("Filtered raw bars", symbol=symbol, total=len(raw), valid=len(bars))

        await self._persist(symbol, timeframe, bars)
        return bars

    async def _persist(self, symbol: str, timeframe: Timeframe, bars: list[Bar]) -> None:
        if self.cache is None:
            self._stats["degraded"] += 1
            return
        try:
            await self.cache.write_cached_bars(symbol, timeframe.value, bars, refreshed_at=self.clock())
        except CacheUnavailableError as e:
            self._stats["degraded"] += 1
            logger.warning(
                "Bar cache unavailable, serving uncached bars",
                symbol=symbol,
                timeframe=timeframe.value,
                error=str(e),
            )

    async def _fallback_to_stale(self, symbol: str, timeframe: Timeframe, reason: str) -> list[Bar]:
        stale = await self._read_stale(symbol, timeframe)
        if not stale:
            logger.error("No bars available", symbol=symbol, timeframe=timeframe.value, reason=reason)
            raise DataUnavailableError(
                f"No bars available for {symbol} {timeframe.value}: {reason}"
            )
        self._stats["stale_served"] += 1
        logger.warning(
            "Upstream fetch failed, serving stale bars",
            symbol=symbol,
            timeframe=timeframe.value,
            count=len(stale),
            reason=reason,
        )
        return stale
