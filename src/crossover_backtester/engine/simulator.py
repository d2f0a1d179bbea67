"""
CrossoverSimulator — deterministic replay of a two-SMA crossover strategy.

Per bar (after the first):
1. Warmup bars (either average missing on this or the previous bar) make no
   decision and carry capital forward.
2. An open position is tested for exits in fixed priority: stop-loss, then
   take-profit, then crossover reversal. The first hit wins.
3. When flat, a crossover opens a position (long checked before short).
4. Drawdown is updated and one equity point is emitted.

PnL is point-value based for futures (contract spec present) and
percentage-of-capital based otherwise. All arithmetic stays in floats.
"""

import time
from enum import Enum

import numpy as np
import pandas as pd

from crossover_backtester.caching.indicator_cache import IndicatorCache
from crossover_backtester.engine.indicators import AlignedSeries, cached_sma
from crossover_backtester.engine.models import (
    DEFAULT_INITIAL_CAPITAL,
    MIN_VALID_BARS,
    CapitalConfig,
    Direction,
    ParameterSet,
    Position,
    ResolvedCapital,
    SimulationLedger,
    SimulationResult,
    TradeKind,
    TradeSignal,
)
from crossover_backtester.errors import InsufficientDataError, InvalidParametersError
from crossover_backtester.market_data.contracts import ContractSpec
from crossover_backtester.market_data.models import BAR_COLUMNS, Bar, bars_to_frame
from crossover_backtester.logging import get_logger

logger = get_logger(__name__)

REQUIRED_COLUMNS = {"timestamp", "open", "high", "low", "close"}
PRICE_COLUMNS = ["open", "high", "low", "close"]


class PositionMode(str, Enum):
    """Which directions the strategy may open."""

    LONG_SHORT = "long-short"
    LONG_ONLY = "long-only"


def prepare_bars(bars: pd.DataFrame | list[Bar], min_bars: int = MIN_VALID_BARS) -> pd.DataFrame:
    """
    Filter a bar series down to what the simulator may replay.

    Drops bars with a non-finite price or a non-positive close, zeroes missing
    volume, orders by timestamp and collapses duplicate timestamps (last wins).
    Raises InsufficientDataError when fewer than ``min_bars`` remain.
    """
    frame = bars_to_frame(bars) if isinstance(bars, list) else bars

    missing = REQUIRED_COLUMNS - set(frame.columns)
    if missing:
        raise InvalidParametersError(f"Missing columns: {sorted(missing)}")

    frame = frame.copy()
    if "volume" not in frame.columns:
        frame["volume"] = 0.0
    for col in ("open", "high", "low", "close", "volume"):
        frame[col] = pd.to_numeric(frame[col], errors="coerce").astype("float64")

    frame["volume"] = frame["volume"].where(np.isfinite(frame["volume"]), 0.0)
    valid = np.isfinite(frame[PRICE_COLUMNS]).all(axis=1) & (frame["close"] > 0)
    frame = frame.loc[valid, BAR_COLUMNS]
    frame = (
        frame.sort_values("timestamp", kind="mergesort")
        .drop_duplicates(subset="timestamp", keep="last")
        .reset_index(drop=True)
    )

    if len(frame) < min_bars:
        raise InsufficientDataError(available=len(frame), required=min_bars)
    return frame


class CrossoverSimulator:
    """
    Runs one crossover backtest over OHLCV bars.

    Usage:
        sim = CrossoverSimulator(ParameterSet(fast_length=10, slow_length=20))
        result = sim.run(bars_df)
    """

    def __init__(
        self,
        params: ParameterSet,
        contract_spec: ContractSpec | None = None,
        capital: CapitalConfig | None = None,
        default_initial_capital: float = DEFAULT_INITIAL_CAPITAL,
        position_mode: PositionMode = PositionMode.LONG_SHORT,
        indicator_cache: IndicatorCache | None = None,
        symbol: str = "",
        timeframe: str = "",
    ) -> None:
        self.params = params
        self.contract_spec = contract_spec
        self.capital = capital or CapitalConfig.default_for(contract_spec, default_initial_capital)
        self.default_initial_capital = default_initial_capital
        self.position_mode = position_mode
        self.indicator_cache = indicator_cache
        self.symbol = symbol
        self.timeframe = timeframe

    def run(self, bars: pd.DataFrame | list[Bar], prepared: bool = False) -> SimulationResult:
        """Validate inputs and replay the bars. ``prepared`` skips re-filtering."""
        self.params.validate()
        resolved = self.capital.resolve(self.default_initial_capital)
        frame = bars if prepared else prepare_bars(bars)
        if len(frame) < MIN_VALID_BARS:
            raise InsufficientDataError(available=len(frame), required=MIN_VALID_BARS)
        return self._replay(frame, resolved)

    # =========================================================================
    # Replay loop
    # =========================================================================

    def _replay(self, frame: pd.DataFrame, resolved: ResolvedCapital) -> SimulationResult:
        start_time = time.perf_counter()
        p = self.params

        timestamps = [int(t) for t in frame["timestamp"]]
        highs = frame["high"].tolist()
        lows = frame["low"].tolist()
        closes = frame["close"].tolist()

        data_hash = IndicatorCache.hash_data(closes) if self.indicator_cache is not None else None
        fast = cached_sma(closes, p.fast_length, self.indicator_cache, data_hash)
        slow = cached_sma(closes, p.slow_length, self.indicator_cache, data_hash)

        ledger = SimulationLedger(
            capital=resolved.initial_capital,
            peak_capital=resolved.initial_capital,
        )
        position: Position | None = None

        for i in range(1, len(closes)):
            crossing = _crossing(fast, slow, i)
            if crossing is None:
                ledger.mark_equity(timestamps[i])
                continue
            prev_fast, prev_slow, cur_fast, cur_slow = crossing

            if position is not None:
                exit_hit = self._evaluate_exit(
                    position, highs[i], lows[i], closes[i],
                    prev_fast, prev_slow, cur_fast, cur_slow,
                )
                if exit_hit is not None:
                    exit_price, signal = exit_hit
                    self._close_position(ledger, position, exit_price, signal, resolved, timestamps[i], i)
                    position = None

            if position is None:
                direction = self._entry_direction(prev_fast, prev_slow, cur_fast, cur_slow)
                if direction is not None:
                    position = Position(direction=direction, entry_price=closes[i], entry_bar_index=i)
                    ledger.record(
                        TradeKind.ENTRY, direction, TradeSignal.CROSSOVER_ENTRY,
                        closes[i], timestamps[i], i,
                    )

            ledger.mark_equity(timestamps[i])

        result = SimulationResult(
            params=p,
            initial_capital=resolved.initial_capital,
            final_capital=ledger.capital,
            net_profit=ledger.capital - resolved.initial_capital,
            gross_profit=ledger.gross_profit,
            gross_loss=ledger.gross_loss,
            max_drawdown_abs=ledger.max_drawdown_abs,
            peak_capital=ledger.peak_capital,
            winning_trade_count=ledger.winning_trade_count,
            closed_trade_count=ledger.closed_trade_count,
            total_bars_held=ledger.total_bars_held,
            trades=tuple(ledger.trades),
            equity_curve=tuple(ledger.equity_curve),
            open_position=position,
            symbol=self.symbol,
            timeframe=self.timeframe,
        )

        logger.debug(
            "Simulation completed",
            symbol=self.symbol,
            fast=p.fast_length,
            slow=p.slow_length,
            bars=len(closes),
            closed_trades=ledger.closed_trade_count,
            net_profit=round(result.net_profit, 2),
            duration_s=round(time.perf_counter() - start_time, 4),
        )
        return result

    # =========================================================================
    # Decisions
    # =========================================================================

    def _distance(self, entry_price: float, units: float) -> float:
        """Price distance of a stop/target: points for futures, percent of entry otherwise."""
        if self.contract_spec is not None:
            return units
        return entry_price * units / 100

    def _evaluate_exit(
        self,
        position: Position,
        high: float,
        low: float,
        close: float,
        prev_fast: float,
        prev_slow: float,
        cur_fast: float,
        cur_slow: float,
    ) -> tuple[float, TradeSignal] | None:
        entry = position.entry_price
        stop = self._distance(entry, self.params.stop_loss) if self.params.stop_loss > 0 else None
        target = self._distance(entry, self.params.take_profit) if self.params.take_profit > 0 else None

        if position.direction == Direction.LONG:
            if stop is not None and entry - low >= stop:
                return entry - stop, TradeSignal.STOP_LOSS
            if target is not None and high - entry >= target:
                return entry + target, TradeSignal.TAKE_PROFIT
            if prev_fast >= prev_slow and cur_fast < cur_slow:
                return close, TradeSignal.CROSSOVER_REVERSAL
        else:
            if stop is not None and high - entry >= stop:
                return entry + stop, TradeSignal.STOP_LOSS
            if target is not None and entry - low >= target:
                return entry - target, TradeSignal.TAKE_PROFIT
            if prev_fast <= prev_slow and cur_fast > cur_slow:
                return close, TradeSignal.CROSSOVER_REVERSAL
        return None

    def _entry_direction(
        self,
        prev_fast: float,
        prev_slow: float,
        cur_fast: float,
        cur_slow: float,
    ) -> Direction | None:
        # Non-strict on the previous bar, strict on the current bar
        if prev_fast <= prev_slow and cur_fast > cur_slow:
            return Direction.LONG
        if (
            self.position_mode == PositionMode.LONG_SHORT
            and prev_fast >= prev_slow
            and cur_fast < cur_slow
        ):
            return Direction.SHORT
        return None

    def _close_position(
        self,
        ledger: SimulationLedger,
        position: Position,
        exit_price: float,
        signal: TradeSignal,
        resolved: ResolvedCapital,
        bar_timestamp: int,
        bar_index: int,
    ) -> None:
        if position.direction == Direction.LONG:
            price_diff = exit_price - position.entry_price
        else:
            price_diff = position.entry_price - exit_price

        if self.contract_spec is not None:
            pnl = price_diff * self.contract_spec.point_value * resolved.contract_count
        else:
            pnl = ledger.capital * resolved.exposure_fraction * (price_diff / position.entry_price)

        ledger.capital += pnl
        if pnl > 0:
            ledger.winning_trade_count += 1
            ledger.gross_profit += pnl
        else:
            ledger.gross_loss += abs(pnl)
        ledger.closed_trade_count += 1
        ledger.total_bars_held += bar_index - position.entry_bar_index

        ledger.record(
            TradeKind.EXIT, position.direction, signal,
            exit_price, bar_timestamp, bar_index, pnl=pnl,
        )


def _crossing(
    fast: AlignedSeries,
    slow: AlignedSeries,
    i: int,
) -> tuple[float, float, float, float] | None:
    """(prev_fast, prev_slow, cur_fast, cur_slow) or None inside the warmup period."""
    prev_fast, prev_slow = fast[i - 1], slow[i - 1]
    cur_fast, cur_slow = fast[i], slow[i]
    if prev_fast is None or prev_slow is None or cur_fast is None or cur_slow is None:
        return None
    return prev_fast, prev_slow, cur_fast, cur_slow


def simulate(
    bars: pd.DataFrame | list[Bar],
    params: ParameterSet,
    contract_spec: ContractSpec | None = None,
    capital: CapitalConfig | None = None,
    **kwargs,
) -> SimulationResult:
    """Run a single simulation. Raises InvalidParametersError / InsufficientDataError."""
    if not isinstance(params, ParameterSet):
        raise InvalidParametersError(f"Expected ParameterSet, got {type(params).__name__}")
    return CrossoverSimulator(params, contract_spec=contract_spec, capital=capital, **kwargs).run(bars)
