import asyncio

import pytest

from scalp_signal_bot.cache import DEFAULT_TTLS_MS, CacheEntry, TimeframeCache, is_stale
from scalp_signal_bot.errors import ApiError, InsufficientData
from scalp_signal_bot.models import IndicatorSnapshot, MacdReading, TimeframeReading, VolumeReading


def _reading(tf: str, rsi: float) -> TimeframeReading:
    return TimeframeReading(
        snapshot=IndicatorSnapshot(symbol="BTCUSDT", timeframe=tf, time_ms=0, rsi=rsi, macd=MacdReading(0.0, 0.0, 0.0)),
        volume=VolumeReading(spike=1.0, is_significant=False),
    )


class _Loader:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        r = self.results.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


def test_default_ttls():
    assert DEFAULT_TTLS_MS == {"1h": 300_000, "5m": 60_000}


def test_is_stale_is_strict():
    e = CacheEntry(value=1, last_updated_ms=1_000, ttl_ms=500)
    assert is_stale(None, 0)
    assert not is_stale(e, 1_000)
    assert not is_stale(e, 1_500)
    assert is_stale(e, 1_501)


def test_refresh_only_when_stale():
    async def _run():
        cache = TimeframeCache({"1h": 300_000})
        loader = _Loader(_reading("1h", 55.0), _reading("1h", 60.0))

        assert await cache.refresh("1h", 0, loader) is True
        assert await cache.refresh("1h", 60_000, loader) is False
        assert await cache.refresh("1h", 300_000, loader) is False
        assert loader.calls == 1
        assert cache.get("1h").snapshot.rsi == 55.0

        assert await cache.refresh("1h", 300_001, loader) is True
        assert loader.calls == 2
        assert cache.get("1h").snapshot.rsi == 60.0
        assert cache.entry("1h").last_updated_ms == 300_001

    asyncio.run(_run())


def test_failed_refresh_keeps_previous_value():
    async def _run():
        cache = TimeframeCache({"5m": 60_000})
        loader = _Loader(_reading("5m", 30.0), ApiError("boom"), InsufficientData("rsi", 9, 3))

        await cache.refresh("5m", 0, loader)
        assert await cache.refresh("5m", 70_000, loader) is False
        assert cache.get("5m").snapshot.rsi == 30.0
        # still stale, so the next tick retries
        assert await cache.refresh("5m", 71_000, loader) is False
        assert loader.calls == 3
        assert cache.get("5m").snapshot.rsi == 30.0
        assert cache.age_ms("5m", 71_000) == 71_000

    asyncio.run(_run())


def test_failed_first_load_leaves_cache_empty():
    async def _run():
        cache = TimeframeCache()
        ok = await cache.refresh("1h", 0, _Loader(ApiError("down")))
        assert ok is False
        assert cache.get("1h") is None
        assert cache.age_ms("1h", 10) is None

    asyncio.run(_run())


def test_refresh_all_uses_independent_ttls():
    async def _run():
        cache = TimeframeCache()
        hourly = _Loader(*[_reading("1h", 50.0)] * 3)
        five = _Loader(*[_reading("5m", 50.0)] * 3)
        loaders = {"1h": hourly, "5m": five}

        await cache.refresh_all(0, loaders)
        await cache.refresh_all(61_000, loaders)
        out = await cache.refresh_all(122_000, loaders)

        assert out == {"1h": False, "5m": True}
        assert hourly.calls == 1
        assert five.calls == 3

    asyncio.run(_run())


def test_put_unknown_timeframe():
    cache = TimeframeCache({"1h": 1})
    with pytest.raises(KeyError):
        cache.put("15m", _reading("15m", 50.0), 0)
