"""
BacktestSystem — end-to-end crossover backtesting entry points.

Orchestrates:
1. Bar loading (BarStore: SQLite cache with upstream refresh)
2. Instrument classification (contract spec lookup)
3. Neighborhood grid search (GridOptimizer, off the event loop)
4. Single-run simulation for a chosen parameter set
"""

import asyncio
import functools
import threading

import pandas as pd

from crossover_backtester.caching.indicator_cache import IndicatorCache
from crossover_backtester.config import BacktesterSettings, get_settings
from crossover_backtester.engine.models import CapitalConfig, ParameterSet, SimulationResult
from crossover_backtester.engine.optimizer import GridOptimizer, OptimizationResult
from crossover_backtester.engine.simulator import CrossoverSimulator, PositionMode, prepare_bars
from crossover_backtester.errors import CacheUnavailableError, DataUnavailableError
from crossover_backtester.market_data.bar_store import BarStore
from crossover_backtester.market_data.contracts import lookup
from crossover_backtester.market_data.models import Bar
from crossover_backtester.market_data.providers import build_default_providers
from crossover_backtester.market_data.routing import normalize_symbol
from crossover_backtester.market_data.timeframes import Timeframe
from crossover_backtester.persistence.bar_cache import BarCache
from crossover_backtester.logging import get_logger, log_context

logger = get_logger(__name__)


class BacktestSystem:
    """End-to-end crossover backtesting system."""

    def __init__(
        self,
        bar_store: BarStore | None = None,
        settings: BacktesterSettings | None = None,
        optimizer: GridOptimizer | None = None,
        indicator_cache: IndicatorCache | None = None,
        position_mode: PositionMode = PositionMode.LONG_SHORT,
    ) -> None:
        self.settings = settings or get_settings()
        self.bar_store = bar_store
        self.indicator_cache = indicator_cache or IndicatorCache()
        self.position_mode = position_mode
        self.optimizer = optimizer or GridOptimizer(
            max_workers=self.settings.max_workers,
            indicator_cache=self.indicator_cache,
            default_initial_capital=self.settings.default_initial_capital,
            position_mode=position_mode,
        )

    @classmethod
    async def create(cls, settings: BacktesterSettings | None = None, **kwargs) -> "BacktestSystem":
        """Build a system wired to the SQLite cache and the default providers."""
        settings = settings or get_settings()

        cache: BarCache | None = BarCache(settings.cache_db_path)
        try:
            await cache.initialize()
        except CacheUnavailableError as e:
            logger.warning("Bar cache disabled, running without persistence", error=str(e))
            cache = None

        store = BarStore(cache, build_default_providers(settings))
        return cls(bar_store=store, settings=settings, **kwargs)

    async def close(self) -> None:
        """Release the cache connection and provider sessions."""
        if self.bar_store is None:
            return
        if self.bar_store.cache is not None:
            await self.bar_store.cache.close()
        for provider in self.bar_store.providers.values():
            close = getattr(provider, "close", None)
            if close is not None:
                await close()

    async def optimize(
        self,
        symbol: str,
        timeframe: Timeframe | str,
        seed: ParameterSet,
        capital_config: CapitalConfig | None = None,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> OptimizationResult:
        """
        Load bars for the instrument and grid-search around ``seed``.

        The search runs in an executor thread so the event loop stays free.
        Cancelling the awaiting task sets the cancel token, which stops any
        outstanding candidates.
        """
        if self.bar_store is None:
            raise DataUnavailableError("No bar store configured")

        symbol = normalize_symbol(symbol)
        timeframe = Timeframe.parse(timeframe)
        cancel_event = cancel_event or threading.Event()
        if timeout is None:
            timeout = self.settings.optimize_timeout_seconds

        with log_context(symbol=symbol, timeframe=timeframe.value):
            bars = await self.bar_store.get_bars(symbol, timeframe)
            frame = prepare_bars(bars)
            contract_spec = lookup(symbol)

            logger.info(
                "Optimizing",
                bars=len(frame),
                leveraged=contract_spec is not None,
                seed=seed.to_dict(),
            )

            loop = asyncio.get_running_loop()
            run = functools.partial(
                self.optimizer.optimize,
                frame,
                seed,
                contract_spec=contract_spec,
                capital=capital_config,
                timeout=timeout,
                cancel_event=cancel_event,
                symbol=symbol,
                timeframe=timeframe.value,
            )
            try:
                return await loop.run_in_executor(None, run)
            except asyncio.CancelledError:
                cancel_event.set()
                raise

    def simulate(
        self,
        bars: pd.DataFrame | list[Bar],
        params: ParameterSet,
        capital_config: CapitalConfig | None = None,
        symbol: str | None = None,
        timeframe: str = "",
    ) -> SimulationResult:
        """Run one simulation; ``symbol`` selects futures economics when it names a contract."""
        contract_spec = lookup(symbol) if symbol else None
        sim = CrossoverSimulator(
            params,
            contract_spec=contract_spec,
            capital=capital_config,
            default_initial_capital=self.settings.default_initial_capital,
            position_mode=self.position_mode,
            indicator_cache=self.indicator_cache,
            symbol=normalize_symbol(symbol) if symbol else "",
            timeframe=timeframe,
        )
        return sim.run(bars)

    async def load_bars(self, symbol: str, timeframe: Timeframe | str) -> pd.DataFrame:
        """Filtered bars for an instrument, as the simulator would replay them."""
        if self.bar_store is None:
            raise DataUnavailableError("No bar store configured")
        return prepare_bars(await self.bar_store.get_bars(symbol, timeframe))
