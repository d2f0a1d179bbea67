"""
BarCache — SQLite-backed storage of fetched bar batches.

One batch per (symbol, timeframe): writes replace the whole batch inside a
single transaction and stamp the refresh time used by the freshness policy.
All keys share one connection, so each transaction runs under a lock; a
rollback can only ever discard the statements of the write that failed.
Every backend failure surfaces as CacheUnavailableError so the BarStore can
fall back to serving network results directly.
"""

import asyncio
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from crossover_backtester.errors import CacheUnavailableError
from crossover_backtester.market_data.models import Bar
from crossover_backtester.logging import get_logger

logger = get_logger(__name__)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS historical_bars (
    symbol TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    open REAL NOT NULL,
    high REAL NOT NULL,
    low REAL NOT NULL,
    close REAL NOT NULL,
    volume REAL NOT NULL,
    UNIQUE(symbol, timeframe, timestamp)
);
CREATE INDEX IF NOT EXISTS idx_bars_symbol_timeframe ON historical_bars(symbol, timeframe);
CREATE TABLE IF NOT EXISTS bar_refreshes (
    symbol TEXT NOT NULL,
    timeframe TEXT NOT NULL,
    refreshed_at TEXT NOT NULL,
    bar_count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (symbol, timeframe)
);
"""


class BarCache:
    """Async SQLite bar cache keyed by (symbol, timeframe, timestamp)."""

    def __init__(self, db_path: str = "data/bars.db") -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def is_available(self) -> bool:
        return self._db is not None

    async def initialize(self) -> None:
        """Open the database and create tables."""
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.db_path)
            await self._db.executescript(CREATE_TABLES_SQL)
            await self._db.commit()
        except (sqlite3.Error, OSError) as e:
            self._db = None
            raise CacheUnavailableError(f"Cannot open bar cache at {self.db_path}: {e}") from e
        logger.info("BarCache initialized", db_path=self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        async with self._lock:
            if self._db:
                await self._db.close()
                self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise CacheUnavailableError("Bar cache is not initialized")
        return self._db

    async def read_cached_bars(self, symbol: str, timeframe: str) -> list[Bar]:
        """Return the cached batch ordered by timestamp (empty if none)."""
        db = self._conn()
        async with self._lock:
            try:
                async with db.execute(
                    """SELECT timestamp, open, high, low, close, volume
                       FROM historical_bars
                       WHERE symbol=? AND timeframe=?
                       ORDER BY timestamp ASC""",
                    (symbol, timeframe),
                ) as cursor:
                    rows = await cursor.fetchall()
            except sqlite3.Error as e:
                raise CacheUnavailableError(f"Bar cache read failed: {e}") from e
        return [Bar.from_row(r) for r in rows]

    async def write_cached_bars(
        self,
        symbol: str,
        timeframe: str,
        bars: list[Bar],
        refreshed_at: datetime | None = None,
    ) -> None:
        """Replace the cached batch for (symbol, timeframe) atomically."""
        db = self._conn()
        refreshed_at = refreshed_at or datetime.now(timezone.utc)
        async with self._lock:
            try:
                await db.execute(
                    "DELETE FROM historical_bars WHERE symbol=? AND timeframe=?",
                    (symbol, timeframe),
                )
                await db.executemany(
                    """INSERT INTO historical_bars
                       (symbol, timeframe, timestamp, open, high, low, close, volume)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(symbol, timeframe, timestamp) DO UPDATE SET
                       open=excluded.open, high=excluded.high, low=excluded.low,
                       close=excluded.close, volume=excluded.volume""",
                    [
                        (symbol, timeframe, b.timestamp, b.open, b.high, b.low, b.close, b.volume)
                        for b in bars
                    ],
                )
                await db.execute(
                    """INSERT INTO bar_refreshes (symbol, timeframe, refreshed_at, bar_count)
                       VALUES (?, ?, ?, ?)
                       ON CONFLICT(symbol, timeframe) DO UPDATE SET
                       refreshed_at=excluded.refreshed_at, bar_count=excluded.bar_count""",
                    (symbol, timeframe, refreshed_at.isoformat(), len(bars)),
                )
                await db.commit()
            except sqlite3.Error as e:
                await self._rollback(db)
                raise CacheUnavailableError(f"Bar cache write failed: {e}") from e

        logger.debug("Bars cached", symbol=symbol, timeframe=timeframe, count=len(bars))

    async def last_refreshed_at(self, symbol: str, timeframe: str) -> datetime | None:
        """When the batch for (symbol, timeframe) was last written, if ever."""
        db = self._conn()
        async with self._lock:
            try:
                async with db.execute(
                    "SELECT refreshed_at FROM bar_refreshes WHERE symbol=? AND timeframe=?",
                    (symbol, timeframe),
                ) as cursor:
                    row = await cursor.fetchone()
            except sqlite3.Error as e:
                raise CacheUnavailableError(f"Bar cache read failed: {e}") from e
        if row is None:
            return None
        return datetime.fromisoformat(row[0])

    async def _rollback(self, db: aiosqlite.Connection) -> None:
        try:
            await db.rollback()
        except sqlite3.Error as e:
            logger.warning("Bar cache rollback failed", error=str(e))
