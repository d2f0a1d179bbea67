"""Crossover backtesting engine — simulator, metrics, optimizer, system."""

from crossover_backtester.engine.models import (
    CapitalConfig,
    CapitalMode,
    Direction,
    EquityPoint,
    ParameterSet,
    Position,
    SimulationResult,
    Trade,
    TradeKind,
    TradeSignal,
)
from crossover_backtester.engine.simulator import CrossoverSimulator, PositionMode, prepare_bars, simulate
from crossover_backtester.engine.metrics import MetricsCalculator, PerformanceMetrics
from crossover_backtester.engine.optimizer import (
    GridOptimizer,
    OptimizationResult,
    RankedCandidate,
    SearchSpace,
)
from crossover_backtester.engine.system import BacktestSystem

__all__ = [
    "CapitalConfig",
    "CapitalMode",
    "Direction",
    "EquityPoint",
    "ParameterSet",
    "Position",
    "SimulationResult",
    "Trade",
    "TradeKind",
    "TradeSignal",
    "CrossoverSimulator",
    "PositionMode",
    "prepare_bars",
    "simulate",
    "MetricsCalculator",
    "PerformanceMetrics",
    "GridOptimizer",
    "OptimizationResult",
    "RankedCandidate",
    "SearchSpace",
    "BacktestSystem",
]
