"""Market data — contract specs, symbol routing, timeframes, bar model."""

from crossover_backtester.market_data.contracts import (
    CONTRACT_SPECS,
    ContractSpec,
    FuturesContract,
    lookup,
)
from crossover_backtester.market_data.models import Bar, bars_to_frame, frame_to_bars, normalize_bars
from crossover_backtester.market_data.routing import DataSource, Route, resolve_route
from crossover_backtester.market_data.timeframes import Timeframe

__all__ = [
    "CONTRACT_SPECS",
    "ContractSpec",
    "FuturesContract",
    "lookup",
    "Bar",
    "bars_to_frame",
    "frame_to_bars",
    "normalize_bars",
    "DataSource",
    "Route",
    "resolve_route",
    "Timeframe",
]
