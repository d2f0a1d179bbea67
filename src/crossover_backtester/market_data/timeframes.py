"""
Bar timeframes — freshness windows and upstream interval mappings.
"""

from datetime import timedelta
from enum import Enum

from crossover_backtester.errors import InvalidParametersError


class Timeframe(str, Enum):
    """Supported bar timeframes (values match the symbols users pick)."""

    M1 = "1m"
    M3 = "3m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1H"
    H2 = "2H"
    H4 = "4H"
    D1 = "D"

    @classmethod
    def parse(cls, value: "str | Timeframe") -> "Timeframe":
        """Accept either the canonical value or a case-insensitive alias ('1h', '1d')."""
        if isinstance(value, Timeframe):
            return value
        try:
            return cls(value)
        except ValueError:
            alias = _ALIASES.get(value.strip().lower())
            if alias is None:
                raise InvalidParametersError(f"Unsupported timeframe: {value!r}") from None
            return alias

    @property
    def minutes(self) -> int:
        return _MINUTES[self]

    @property
    def freshness_window(self) -> timedelta:
        """Maximum age of a cached batch before it must be refreshed."""
        return timedelta(minutes=self.minutes)

    @property
    def binance_interval(self) -> str:
        return _BINANCE_INTERVALS[self]

    @property
    def yahoo_interval(self) -> str:
        """Native Yahoo interval fetched for this timeframe (may need resampling)."""
        return _YAHOO_INTERVALS[self]

    @property
    def pandas_rule(self) -> str:
        return f"{self.minutes}min"


_MINUTES: dict[Timeframe, int] = {
    Timeframe.M1: 1,
    Timeframe.M3: 3,
    Timeframe.M5: 5,
    Timeframe.M15: 15,
    Timeframe.M30: 30,
    Timeframe.H1: 60,
    Timeframe.H2: 120,
    Timeframe.H4: 240,
    Timeframe.D1: 1440,
}

_BINANCE_INTERVALS: dict[Timeframe, str] = {
    Timeframe.M1: "1m",
    Timeframe.M3: "3m",
    Timeframe.M5: "5m",
    Timeframe.M15: "15m",
    Timeframe.M30: "30m",
    Timeframe.H1: "1h",
    Timeframe.H2: "2h",
    Timeframe.H4: "4h",
    Timeframe.D1: "1d",
}

# Yahoo has no 3m/2h/4h bars; those are resampled from the finer interval
_YAHOO_INTERVALS: dict[Timeframe, str] = {
    Timeframe.M1: "1m",
    Timeframe.M3: "1m",
    Timeframe.M5: "5m",
    Timeframe.M15: "15m",
    Timeframe.M30: "30m",
    Timeframe.H1: "60m",
    Timeframe.H2: "60m",
    Timeframe.H4: "60m",
    Timeframe.D1: "1d",
}

_ALIASES: dict[str, Timeframe] = {
    "1m": Timeframe.M1,
    "3m": Timeframe.M3,
    "5m": Timeframe.M5,
    "15m": Timeframe.M15,
    "30m": Timeframe.M30,
    "1h": Timeframe.H1,
    "60m": Timeframe.H1,
    "2h": Timeframe.H2,
    "4h": Timeframe.H4,
    "d": Timeframe.D1,
    "1d": Timeframe.D1,
}
