"""Tests for symbol routing."""

import pytest

from crossover_backtester.errors import InvalidParametersError
from crossover_backtester.market_data.contracts import FuturesContract
from crossover_backtester.market_data.routing import (
    TRADITIONAL_MARKET_ROUTES,
    DataSource,
    Route,
    normalize_symbol,
    resolve_route,
)


class TestNormalizeSymbol:

    def test_strips_slash_and_uppercases(self):
        assert normalize_symbol(" btc/usdt ") == "BTCUSDT"

    def test_empty_rejected(self):
        with pytest.raises(InvalidParametersError):
            normalize_symbol("  ")


class TestResolveRoute:

    @pytest.mark.parametrize("symbol,external", [
        ("NQ!", "NQ=F"),
        ("ES!", "ES=F"),
        ("SIL!", "SI=F"),
        ("DX!", "DX-Y.NYB"),
    ])
    def test_traditional_markets_go_to_yahoo(self, symbol, external):
        assert resolve_route(symbol) == Route(source=DataSource.YAHOO, external_symbol=external)

    def test_direct_pairs_go_to_binance(self):
        assert resolve_route("eth/usdt") == Route(source=DataSource.BINANCE, external_symbol="ETHUSDT")

    def test_unknown_symbol_still_routed(self):
        assert resolve_route("FOO").source == DataSource.BINANCE

    def test_every_futures_contract_is_routed_to_yahoo(self):
        for contract in FuturesContract:
            assert contract.value in TRADITIONAL_MARKET_ROUTES
            assert resolve_route(contract.value).source == DataSource.YAHOO
