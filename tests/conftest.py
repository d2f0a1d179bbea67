"""Shared test fixtures and helpers for crossover backtester tests."""

import numpy as np
import pandas as pd
import pytest

from crossover_backtester.market_data.models import Bar

BASE_TS = 1_700_000_000_000
MINUTE_MS = 60_000


def make_bars(
    n: int = 200,
    start_price: float = 100.0,
    volatility: float = 0.01,
    seed: int = 42,
) -> pd.DataFrame:
    """Generate synthetic OHLCV bars with a random-walk close."""
    rng = np.random.RandomState(seed)
    prices = [start_price]
    for _ in range(n - 1):
        change = rng.normal(0, volatility)
        prices.append(prices[-1] * (1 + change))

    rows = []
    for i, close in enumerate(prices):
        high = close * (1 + abs(rng.normal(0, volatility / 2)))
        low = close * (1 - abs(rng.normal(0, volatility / 2)))
        open_price = prices[i - 1] if i > 0 else close
        rows.append({
            "timestamp": BASE_TS + i * MINUTE_MS,
            "open": open_price,
            "high": max(high, open_price, close),
            "low": min(low, open_price, close),
            "close": close,
            "volume": float(rng.uniform(100, 1000)),
        })

    return pd.DataFrame(rows)


def make_wave_bars(
    n: int = 300,
    center: float = 100.0,
    amplitude: float = 10.0,
    period: int = 40,
) -> pd.DataFrame:
    """Deterministic sine-wave closes, so crossovers happen at regular intervals."""
    closes = [center + amplitude * np.sin(2 * np.pi * i / period) for i in range(n)]
    return bars_from_closes(closes)


def bars_from_closes(
    closes: list[float],
    highs: list[float] | None = None,
    lows: list[float] | None = None,
) -> pd.DataFrame:
    """Bars whose high/low equal the close unless given explicitly."""
    highs = highs or list(closes)
    lows = lows or list(closes)
    return pd.DataFrame({
        "timestamp": [BASE_TS + i * MINUTE_MS for i in range(len(closes))],
        "open": list(closes),
        "high": highs,
        "low": lows,
        "close": list(closes),
        "volume": [1.0] * len(closes),
    })


def make_bar_list(n: int = 50, start_price: float = 100.0, seed: int = 7) -> list[Bar]:
    frame = make_bars(n=n, start_price=start_price, seed=seed)
    return [
        Bar(
            timestamp=int(r.timestamp),
            open=float(r.open),
            high=float(r.high),
            low=float(r.low),
            close=float(r.close),
            volume=float(r.volume),
        )
        for r in frame.itertuples(index=False)
    ]


# Falls to 5, then climbs: exactly one bullish crossover (fast=2, slow=3) at index 7
V_SHAPE_CLOSES = [10.0, 9.0, 8.0, 7.0, 6.0, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0, 11.0]


@pytest.fixture
def bars_200():
    return make_bars(n=200)


@pytest.fixture
def wave_bars():
    return make_wave_bars()
