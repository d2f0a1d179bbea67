"""
MetricsCalculator — summary statistics of a simulation run.

Pure functions over a SimulationResult and the bar series it was run on.
Ratios are trade-based: Sharpe and Sortino use closed-trade PnL values, not
per-bar returns.
"""

import math
from dataclasses import dataclass
from typing import Any

import pandas as pd

from crossover_backtester.engine.models import SimulationResult


@dataclass(frozen=True)
class PerformanceMetrics:
    """Derived performance figures for one run."""

    net_profit: float
    net_profit_pct: float
    final_capital: float
    max_drawdown_abs: float
    max_drawdown_pct: float
    total_trades: int
    closed_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    gross_profit: float
    gross_loss: float
    profit_factor: float
    sharpe_ratio: float
    sortino_ratio: float
    avg_trade_pnl: float
    largest_win: float
    largest_loss: float
    buy_and_hold_return_pct: float
    avg_bars_in_trade: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "net_profit": round(self.net_profit, 2),
            "net_profit_pct": round(self.net_profit_pct, 2),
            "final_capital": round(self.final_capital, 2),
            "max_drawdown_abs": round(self.max_drawdown_abs, 2),
            "max_drawdown_pct": round(self.max_drawdown_pct, 2),
            "total_trades": self.total_trades,
            "closed_trades": self.closed_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": round(self.win_rate, 2),
            "gross_profit": round(self.gross_profit, 2),
            "gross_loss": round(self.gross_loss, 2),
            "profit_factor": _round_ratio(self.profit_factor),
            "sharpe_ratio": _round_ratio(self.sharpe_ratio),
            "sortino_ratio": _round_ratio(self.sortino_ratio),
            "avg_trade_pnl": round(self.avg_trade_pnl, 2),
            "largest_win": round(self.largest_win, 2),
            "largest_loss": round(self.largest_loss, 2),
            "buy_and_hold_return_pct": round(self.buy_and_hold_return_pct, 2),
            "avg_bars_in_trade": (
                round(self.avg_bars_in_trade, 2) if self.avg_bars_in_trade is not None else None
            ),
        }


def _round_ratio(value: float) -> float | str:
    """JSON has no infinity; infinite ratios are reported as the string 'inf'."""
    if math.isinf(value):
        return "inf"
    return round(value, 4)


class MetricsCalculator:
    """Computes PerformanceMetrics from a simulation result."""

    @staticmethod
    def net_profit_pct(result: SimulationResult) -> float:
        if result.initial_capital == 0:
            return 0.0
        return result.net_profit / result.initial_capital * 100

    @staticmethod
    def max_drawdown_pct(result: SimulationResult) -> float:
        if result.peak_capital <= 0:
            return 0.0
        return result.max_drawdown_abs / result.peak_capital * 100

    @staticmethod
    def win_rate(result: SimulationResult) -> float:
        if result.closed_trade_count == 0:
            return 0.0
        return result.winning_trade_count / result.closed_trade_count * 100

    @staticmethod
    def profit_factor(gross_profit: float, gross_loss: float) -> float:
        if gross_loss > 0:
            return gross_profit / gross_loss
        return float("inf") if gross_profit > 0 else 0.0

    @staticmethod
    def sharpe_ratio(pnls: list[float]) -> float:
        """Mean over population standard deviation of closed-trade PnL."""
        if len(pnls) < 2:
            return 0.0
        mean = sum(pnls) / len(pnls)
        variance = sum((x - mean) ** 2 for x in pnls) / len(pnls)
        std = math.sqrt(variance)
        if std == 0:
            return 0.0
        return mean / std

    @staticmethod
    def sortino_ratio(pnls: list[float]) -> float:
        """Mean over downside deviation, where only losing trades contribute."""
        if not pnls:
            return 0.0
        mean = sum(pnls) / len(pnls)
        losses = [x for x in pnls if x < 0]
        if not losses:
            return float("inf") if mean > 0 else 0.0
        downside = math.sqrt(sum(x ** 2 for x in losses) / len(losses))
        if downside == 0:
            return 0.0
        return mean / downside

    @staticmethod
    def buy_and_hold_return_pct(bars: pd.DataFrame) -> float:
        if bars is None or len(bars) == 0:
            return 0.0
        first_close = float(bars["close"].iloc[0])
        last_close = float(bars["close"].iloc[-1])
        if first_close == 0:
            return 0.0
        return (last_close - first_close) / first_close * 100

    @classmethod
    def calculate(cls, result: SimulationResult, bars: pd.DataFrame) -> PerformanceMetrics:
        """All metrics for ``result``; ``bars`` must be the filtered series it ran on."""
        pnls = result.closed_trade_pnls
        closed = result.closed_trade_count
        wins = [x for x in pnls if x > 0]
        losses = [x for x in pnls if x <= 0]

        return PerformanceMetrics(
            net_profit=result.net_profit,
            net_profit_pct=cls.net_profit_pct(result),
            final_capital=result.final_capital,
            max_drawdown_abs=result.max_drawdown_abs,
            max_drawdown_pct=cls.max_drawdown_pct(result),
            total_trades=len(result.trades),
            closed_trades=closed,
            winning_trades=result.winning_trade_count,
            losing_trades=closed - result.winning_trade_count,
            win_rate=cls.win_rate(result),
            gross_profit=result.gross_profit,
            gross_loss=result.gross_loss,
            profit_factor=cls.profit_factor(result.gross_profit, result.gross_loss),
            sharpe_ratio=cls.sharpe_ratio(pnls),
            sortino_ratio=cls.sortino_ratio(pnls),
            avg_trade_pnl=sum(pnls) / len(pnls) if pnls else 0.0,
            largest_win=max(wins) if wins else 0.0,
            largest_loss=min(losses) if losses else 0.0,
            buy_and_hold_return_pct=cls.buy_and_hold_return_pct(bars),
            avg_bars_in_trade=result.total_bars_held / closed if closed > 0 else None,
        )
