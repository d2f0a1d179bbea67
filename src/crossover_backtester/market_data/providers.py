"""
Upstream market-data providers.

Two families implement the same ``fetch_bars`` contract:
- BinanceProvider: direct market pairs via the Binance REST klines endpoint
- YahooFinanceProvider: traditional-market instruments via yfinance

Transient failures (network, rate limits) are retried here with tenacity;
callers above this layer never retry.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import aiohttp
import pandas as pd
import yfinance as yf
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from crossover_backtester.errors import NetworkError, ProviderError, RateLimitError
from crossover_backtester.market_data.models import Bar
from crossover_backtester.market_data.routing import DataSource
from crossover_backtester.market_data.timeframes import Timeframe
from crossover_backtester.logging import get_logger

logger = get_logger(__name__)


class BarProvider(Protocol):
    """Fetches raw OHLCV bars for one instrument and timeframe."""

    async def fetch_bars(
        self,
        instrument_symbol: str,
        external_symbol: str,
        timeframe: Timeframe,
    ) -> list[Bar]: ...


# =============================================================================
# Binance
# =============================================================================


class BinanceProvider:
    """Binance spot klines over plain REST (no credentials needed)."""

    RATE_LIMIT_STATUSES = {418, 429}

    def __init__(
        self,
        base_url: str = "https://api.binance.com/api/v3",
        limit: int = 1000,
        timeout_seconds: float = 15.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.limit = min(limit, 1000)
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def fetch_bars(
        self,
        instrument_symbol: str,
        external_symbol: str,
        timeframe: Timeframe,
    ) -> list[Bar]:
        klines = await self._get_klines(external_symbol, timeframe.binance_interval)
        bars = [Bar.from_row(k[:6]) for k in klines]
        logger.debug(
            "Fetched klines",
            source=DataSource.BINANCE.value,
            symbol=instrument_symbol,
            timeframe=timeframe.value,
            count=len(bars),
        )
        return bars

    @retry(
        retry=retry_if_exception_type((NetworkError, RateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _get_klines(self, symbol: str, interval: str) -> list[list[Any]]:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

        url = f"{self.base_url}/klines"
        params = {"symbol": symbol, "interval": interval, "limit": self.limit}

        try:
            async with self._session.get(url, params=params) as response:
                if response.status in self.RATE_LIMIT_STATUSES:
                    raise RateLimitError(f"Binance rate limit hit ({response.status})")
                if response.status != 200:
                    body = await response.text()
                    raise ProviderError(
                        f"Binance klines request failed ({response.status}): {body[:200]}"
                    )
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Binance network error", symbol=symbol, error=str(e))
            raise NetworkError(f"Network error: {e}") from e


# =============================================================================
# Yahoo Finance
# =============================================================================


class YahooFinanceProvider:
    """Yahoo Finance chart history, resampled where Yahoo lacks the interval."""

    def __init__(
        self,
        intraday_lookback_days: int = 365,
        daily_lookback_days: int = 5 * 365,
    ) -> None:
        self.intraday_lookback_days = intraday_lookback_days
        self.daily_lookback_days = daily_lookback_days

    def lookback(self, timeframe: Timeframe) -> timedelta:
        """History window requested for a timeframe (bounded by Yahoo's limits)."""
        if timeframe == Timeframe.D1:
            return timedelta(days=self.daily_lookback_days)
        if timeframe.yahoo_interval == "1m":
            return timedelta(days=7)
        if timeframe.yahoo_interval != "60m":
            return timedelta(days=59)
        return timedelta(days=min(self.intraday_lookback_days, 729))

    async def fetch_bars(
        self,
        instrument_symbol: str,
        external_symbol: str,
        timeframe: Timeframe,
    ) -> list[Bar]:
        start = datetime.now(timezone.utc) - self.lookback(timeframe)
        history = await self._download(external_symbol, timeframe.yahoo_interval, start)
        bars = self.history_to_bars(history, timeframe)
        logger.debug(
            "Fetched chart history",
            source=DataSource.YAHOO.value,
            symbol=instrument_symbol,
            external_symbol=external_symbol,
            timeframe=timeframe.value,
            count=len(bars),
        )
        return bars

    @retry(
        retry=retry_if_exception_type(NetworkError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _download(self, symbol: str, interval: str, start: datetime) -> pd.DataFrame:
        def _fetch() -> pd.DataFrame:
            ticker = yf.Ticker(symbol)
            return ticker.history(start=start, interval=interval, auto_adjust=False)

        try:
            return await asyncio.to_thread(_fetch)
        except (OSError, ConnectionError) as e:
            raise NetworkError(f"Yahoo Finance network error: {e}") from e
        except Exception as e:
            raise ProviderError(f"Yahoo Finance request failed for {symbol}: {e}") from e

    @staticmethod
    def history_to_bars(history: pd.DataFrame, timeframe: Timeframe) -> list[Bar]:
        """Convert a yfinance history frame (DatetimeIndex, capitalized columns) to bars."""
        if history is None or history.empty:
            return []

        frame = history[["Open", "High", "Low", "Close", "Volume"]]
        index = frame.index
        if index.tz is None:
            frame = frame.tz_localize("UTC")
        else:
            frame = frame.tz_convert("UTC")

        native = Timeframe.parse(timeframe.yahoo_interval)
        if native != timeframe:
            frame = (
                frame.resample(timeframe.pandas_rule, label="left", closed="left")
                .agg({"Open": "first", "High": "max", "Low": "min", "Close": "last", "Volume": "sum"})
                .dropna(subset=["Close"])
            )

        return [
            Bar(
                timestamp=int(ts.timestamp() * 1000),
                open=float(row.Open),
                high=float(row.High),
                low=float(row.Low),
                close=float(row.Close),
                volume=float(row.Volume) if pd.notna(row.Volume) else 0.0,
            )
            for ts, row in zip(frame.index, frame.itertuples(index=False))
        ]


def build_default_providers(settings: Any) -> dict[DataSource, BarProvider]:
    """Provider per data source, configured from BacktesterSettings."""
    return {
        DataSource.BINANCE: BinanceProvider(
            base_url=settings.binance_base_url,
            limit=settings.binance_kline_limit,
            timeout_seconds=settings.http_timeout_seconds,
        ),
        DataSource.YAHOO: YahooFinanceProvider(
            intraday_lookback_days=settings.yahoo_intraday_lookback_days,
            daily_lookback_days=settings.yahoo_daily_lookback_days,
        ),
    }
