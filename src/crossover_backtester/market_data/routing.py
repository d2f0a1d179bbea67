"""
Symbol routing — which upstream provider serves an instrument.

Two disjoint tables: traditional-market instruments go to Yahoo Finance,
everything else is treated as a direct market pair served by Binance.
"""

from dataclasses import dataclass
from enum import Enum

from crossover_backtester.errors import InvalidParametersError


class DataSource(str, Enum):
    """Upstream market-data provider families."""

    BINANCE = "binance"
    YAHOO = "yahoo"


@dataclass(frozen=True)
class Route:
    source: DataSource
    external_symbol: str


TRADITIONAL_MARKET_ROUTES: dict[str, str] = {
    "NQ!": "NQ=F",
    "ES!": "ES=F",
    "YM!": "YM=F",
    "RTY!": "RTY=F",
    "GC!": "GC=F",
    "SIL!": "SI=F",
    "CL!": "CL=F",
    "NG!": "NG=F",
    "HG!": "HG=F",
    "ZB!": "ZB=F",
    "ZN!": "ZN=F",
    "DX!": "DX-Y.NYB",
}


def normalize_symbol(symbol: str) -> str:
    """Canonical instrument symbol ('btc/usdt' -> 'BTCUSDT')."""
    normalized = symbol.strip().upper().replace("/", "")
    if not normalized:
        raise InvalidParametersError("Empty instrument symbol")
    return normalized


def resolve_route(symbol: str) -> Route:
    """Resolve an instrument to its provider; total over all symbols."""
    normalized = normalize_symbol(symbol)
    external = TRADITIONAL_MARKET_ROUTES.get(normalized)
    if external is not None:
        return Route(source=DataSource.YAHOO, external_symbol=external)
    return Route(source=DataSource.BINANCE, external_symbol=normalized)
