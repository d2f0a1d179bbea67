"""Tests for BarStore — freshness policy, degraded mode, refresh coalescing."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from crossover_backtester.errors import DataUnavailableError, NetworkError
from crossover_backtester.market_data.bar_store import BarStore
from crossover_backtester.market_data.models import Bar
from crossover_backtester.market_data.routing import DataSource
from crossover_backtester.market_data.timeframes import Timeframe
from crossover_backtester.persistence.bar_cache import BarCache
from tests.conftest import make_bar_list

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeProvider:
    """Scripted provider: returns ``bars`` or raises ``error``; can be gated."""

    def __init__(self, bars=None, error=None, gate: asyncio.Event | None = None):
        self.bars = bars if bars is not None else make_bar_list(n=30)
        self.error = error
        self.gate = gate
        self.calls = 0

    async def fetch_bars(self, instrument_symbol, external_symbol, timeframe):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.bars)


@pytest_asyncio.fixture
async def cache():
    c = BarCache(db_path=":memory:")
    await c.initialize()
    yield c
    await c.close()


def make_store(cache, provider, now=NOW):
    return BarStore(
        cache,
        {DataSource.BINANCE: provider, DataSource.YAHOO: provider},
        clock=lambda: now,
    )


@pytest.mark.asyncio
class TestFreshness:

    async def test_miss_fetches_and_caches(self, cache):
        provider = FakeProvider()
        store = make_store(cache, provider)

        bars = await store.get_bar_list("BTCUSDT", "1H")

        assert bars == provider.bars
        assert provider.calls == 1
        assert await cache.read_cached_bars("BTCUSDT", "1H") == provider.bars
        assert await cache.last_refreshed_at("BTCUSDT", "1H") == NOW

    async def test_fresh_cache_served_without_fetch(self, cache):
        cached = make_bar_list(n=12, seed=3)
        await cache.write_cached_bars("BTCUSDT", "1H", cached, refreshed_at=NOW - timedelta(minutes=30))
        provider = FakeProvider()
        store = make_store(cache, provider)

        bars = await store.get_bar_list("BTCUSDT", Timeframe.H1)

        assert bars == cached
        assert provider.calls == 0
        assert store.stats["cache_hits"] == 1

    async def test_stale_cache_refreshed(self, cache):
        await cache.write_cached_bars(
            "BTCUSDT", "1H", make_bar_list(n=12, seed=3), refreshed_at=NOW - timedelta(minutes=61),
        )
        provider = FakeProvider()
        store = make_store(cache, provider)

        bars = await store.get_bar_list("BTCUSDT", "1H")

        assert provider.calls == 1
        assert bars == provider.bars
        assert await cache.read_cached_bars("BTCUSDT", "1H") == provider.bars

    async def test_window_follows_timeframe(self, cache):
        await cache.write_cached_bars(
            "BTCUSDT", "D", make_bar_list(n=12), refreshed_at=NOW - timedelta(hours=5),
        )
        provider = FakeProvider()
        await make_store(cache, provider).get_bar_list("BTCUSDT", "D")
        assert provider.calls == 0

    async def test_symbol_normalized(self, cache):
        provider = FakeProvider()
        store = make_store(cache, provider)
        await store.get_bar_list("btc/usdt", "1h")
        assert await cache.last_refreshed_at("BTCUSDT", "1H") == NOW

    async def test_get_bars_returns_frame(self, cache):
        store = make_store(cache, FakeProvider())
        frame = await store.get_bars("BTCUSDT", "1H")
        assert len(frame) == 30
        assert frame["timestamp"].is_monotonic_increasing


@pytest.mark.asyncio
class TestNormalization:

    async def test_invalid_and_duplicate_bars_dropped(self, cache):
        good = make_bar_list(n=5)
        raw = list(reversed(good)) + [
            Bar(timestamp=good[0].timestamp, open=1, high=1, low=1, close=0.0, volume=0),
            Bar(timestamp=10, open=1, high=1, low=1, close=float("nan"), volume=0),
        ]
        store = make_store(cache, FakeProvider(bars=raw))
        bars = await store.get_bar_list("BTCUSDT", "1H")
        assert bars == good

    async def test_non_finite_prices_dropped_and_batch_cached(self, cache):
        good = make_bar_list(n=20)
        raw = list(good)
        raw[5] = replace(raw[5], open=float("nan"))
        raw[6] = replace(raw[6], volume=float("nan"))
        store = make_store(cache, FakeProvider(bars=raw))

        bars = await store.get_bar_list("BTCUSDT", "1H")

        assert len(bars) == 19
        assert good[5].timestamp not in [b.timestamp for b in bars]
        assert bars[5].volume == 0.0
        assert store.stats["degraded"] == 0
        assert await cache.read_cached_bars("BTCUSDT", "1H") == bars


@pytest.mark.asyncio
class TestDegraded:

    async def test_no_cache_serves_network(self):
        provider = FakeProvider()
        store = make_store(None, provider)
        bars = await store.get_bar_list("BTCUSDT", "1H")
        assert bars == provider.bars
        assert store.stats["degraded"] == 1

    async def test_uninitialized_cache_serves_network(self):
        provider = FakeProvider()
        store = make_store(BarCache(db_path=":memory:"), provider)
        bars = await store.get_bar_list("BTCUSDT", "1H")
        assert bars == provider.bars
        assert store.stats["degraded"] == 1

    async def test_fetch_failure_serves_stale(self, cache):
        stale = make_bar_list(n=12, seed=5)
        await cache.write_cached_bars("BTCUSDT", "1H", stale, refreshed_at=NOW - timedelta(days=2))
        store = make_store(cache, FakeProvider(error=NetworkError("timeout")))

        bars = await store.get_bar_list("BTCUSDT", "1H")

        assert bars == stale
        assert store.stats["stale_served"] == 1

    async def test_fetch_failure_without_cache_is_fatal(self, cache):
        store = make_store(cache, FakeProvider(error=NetworkError("timeout")))
        with pytest.raises(DataUnavailableError):
            await store.get_bar_list("BTCUSDT", "1H")

    async def test_empty_upstream_without_cache_is_fatal(self):
        store = make_store(None, FakeProvider(bars=[]))
        with pytest.raises(DataUnavailableError):
            await store.get_bar_list("BTCUSDT", "1H")

    async def test_missing_provider(self, cache):
        store = BarStore(cache, {}, clock=lambda: NOW)
        with pytest.raises(DataUnavailableError):
            await store.get_bar_list("BTCUSDT", "1H")


@pytest.mark.asyncio
class TestCoalescing:

    async def test_concurrent_refreshes_share_one_fetch(self, cache):
        gate = asyncio.Event()
        provider = FakeProvider(gate=gate)
        store = make_store(cache, provider)

        first = asyncio.create_task(store.get_bar_list("BTCUSDT", "1H"))
        second = asyncio.create_task(store.get_bar_list("BTCUSDT", "1H"))
        while provider.calls == 0:
            await asyncio.sleep(0)
        await asyncio.sleep(0.01)
        gate.set()

        a, b = await asyncio.gather(first, second)
        assert a == b == provider.bars
        assert provider.calls == 1
        assert store.stats["refreshes"] == 1

    async def test_different_keys_fetch_separately(self, cache):
        provider = FakeProvider()
        store = make_store(cache, provider)
        await asyncio.gather(
            store.get_bar_list("BTCUSDT", "1H"),
            store.get_bar_list("ETHUSDT", "1H"),
        )
        assert provider.calls == 2

    async def test_inflight_cleared_after_refresh(self, cache):
        store = make_store(cache, FakeProvider())
        await store.get_bar_list("BTCUSDT", "1H")
        await asyncio.sleep(0)
        assert store._inflight == {}
