"""
Bar model and conversions between bar lists and DataFrames.
"""

import math
from dataclasses import dataclass, replace
from typing import Iterable

import pandas as pd

BAR_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class Bar:
    """One OHLCV observation; timestamp is epoch milliseconds (UTC)."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def is_valid(self) -> bool:
        """Finite prices and a positive close; volume is not checked."""
        prices = (self.open, self.high, self.low, self.close)
        return all(math.isfinite(p) for p in prices) and self.close > 0

    @classmethod
    def from_row(cls, row: list | tuple) -> "Bar":
        """Build from a raw [timestamp, open, high, low, close, volume] row."""
        return cls(
            timestamp=int(row[0]),
            open=_to_float(row[1]),
            high=_to_float(row[2]),
            low=_to_float(row[3]),
            close=_to_float(row[4]),
            volume=_to_float(row[5]),
        )


def _to_float(value: object) -> float:
    if value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def normalize_bars(bars: Iterable[Bar]) -> list[Bar]:
    """
    Drop invalid bars, collapse duplicate timestamps (last wins), sort ascending.

    A missing or non-finite volume is stored as 0.0.
    """
    by_timestamp: dict[int, Bar] = {}
    for bar in bars:
        if not bar.is_valid:
            continue
        if not math.isfinite(bar.volume):
            bar = replace(bar, volume=0.0)
        by_timestamp[bar.timestamp] = bar
    return [by_timestamp[ts] for ts in sorted(by_timestamp)]


def bars_to_frame(bars: Iterable[Bar]) -> pd.DataFrame:
    rows = [
        (b.timestamp, b.open, b.high, b.low, b.close, b.volume)
        for b in bars
    ]
    frame = pd.DataFrame(rows, columns=BAR_COLUMNS)
    frame["timestamp"] = frame["timestamp"].astype("int64")
    return frame


def frame_to_bars(frame: pd.DataFrame) -> list[Bar]:
    volume = frame["volume"] if "volume" in frame.columns else pd.Series(0.0, index=frame.index)
    return [
        Bar(
            timestamp=int(ts),
            open=float(o),
            high=float(h),
            low=float(l),
            close=float(c),
            volume=float(v),
        )
        for ts, o, h, l, c, v in zip(  # noqa: E741
            frame["timestamp"], frame["open"], frame["high"],
            frame["low"], frame["close"], volume,
        )
    ]
