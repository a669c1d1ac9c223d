import asyncio
import dataclasses

from scalp_signal_bot.config import Config
from scalp_signal_bot.errors import ApiError
from scalp_signal_bot.models import LONG, NEUTRAL, Candle, SentimentResult, StopLoss, TakeProfit
from scalp_signal_bot.runner import NEUTRAL_MACD, NEUTRAL_RSI, SignalRunner

TF_MS = {"1m": 60_000, "5m": 300_000, "1h": 3_600_000}


def _flat(tf, n=100, close=100.0, volume=10.0):
    step = TF_MS[tf]
    return [
        Candle(i * step, (i + 1) * step - 1, close, close, close, close, volume)
        for i in range(n)
    ]


class FakeProvider:
    def __init__(self, fail=(), depth_error=None, stream=()):
        self.candles = {tf: _flat(tf) for tf in TF_MS}
        self.fail = set(fail)
        self.depth_error = depth_error
        self.stream = list(stream)
        self.calls = []
        self.pings = 0

    async def ping(self):
        self.pings += 1

    async def fetch_candles(self, symbol, timeframe, limit):
        self.calls.append((timeframe, limit))
        if timeframe in self.fail:
            raise ApiError(f"{timeframe} unavailable", status=503)
        return self.candles[timeframe][-limit:]

    async def fetch_depth(self, symbol, limit=20):
        if self.depth_error is not None:
            raise self.depth_error
        return {"bids": [(100.0, 1.0)], "asks": [(100.5, 1.0)]}

    async def stream_klines(self, symbol, timeframe):
        for c in self.stream:
            yield c

    def fetches(self, timeframe):
        return sum(1 for tf, _ in self.calls if tf == timeframe)


class FakeSentiment:
    def __init__(self, error=None):
        self.error = error

    async def fetch(self, now_ms=None):
        if self.error is not None:
            raise self.error
        return SentimentResult("Neutral", 0.0)


class FakeTelegram:
    def __init__(self, ok=True):
        self.ok = ok
        self.sent = []

    def enabled(self):
        return True

    async def deliver(self, text, *, parse_mode=None):
        self.sent.append((text, parse_mode))
        return self.ok


def _runner(cfg=None, **kw):
    cfg = cfg or Config()
    provider = kw.pop("provider", None) or FakeProvider()
    sentiment = kw.pop("sentiment", None) or FakeSentiment()
    telegram = kw.pop("telegram", None) or FakeTelegram()
    return SignalRunner(cfg, provider=provider, sentiment=sentiment, telegram=telegram)


def _event(provider):
    return provider.candles["1m"][-1]


def test_flat_market_is_neutral_and_not_sent():
    async def _run():
        r = _runner()
        sig = await r.process_candle(_event(r.provider), now_ms=0)
        assert sig.side == NEUTRAL
        # sellers dominate the book and price is not above its SMA
        assert (sig.long_score, sig.short_score) == (0, 2)
        assert sig.stop_loss is None and sig.take_profit is None
        assert r.tg.sent == []
        assert r.metrics["signals_total"] == 1

    asyncio.run(_run())


def test_neutral_sent_when_enabled():
    async def _run():
        cfg = Config()
        cfg.alerts.send_neutral = True
        r = _runner(cfg)
        await r.process_candle(_event(r.provider), now_ms=0)
        assert len(r.tg.sent) == 1
        assert "L 0/11 · S 2/11" in r.tg.sent[0][0]

    asyncio.run(_run())


def test_higher_timeframes_refresh_on_ttl():
    async def _run():
        r = _runner()
        event = _event(r.provider)
        await r.process_candle(event, now_ms=0)
        await r.process_candle(event, now_ms=60_000)
        assert r.provider.fetches("1h") == 1

        await r.process_candle(event, now_ms=300_001)
        assert r.provider.fetches("1h") == 2

    asyncio.run(_run())


def test_primary_window_aligned_to_event():
    async def _run():
        r = _runner()
        event = r.provider.candles["1m"][50]
        inputs = await r.build_inputs(event, now_ms=0)
        assert inputs.price == event.close
        assert inputs.rsi["1m"] == 50.0

    asyncio.run(_run())


def test_failed_trend_load_uses_neutral_defaults():
    async def _run():
        r = _runner(provider=FakeProvider(fail={"1h"}))
        inputs = await r.build_inputs(_event(r.provider), now_ms=0)
        assert inputs.rsi["1h"] == NEUTRAL_RSI
        assert inputs.macd["1h"] == NEUTRAL_MACD

        sig = await r.process_candle(_event(r.provider), now_ms=0)
        assert sig is not None
        assert sig.side == NEUTRAL

    asyncio.run(_run())


def test_depth_or_news_failure_skips_cycle():
    async def _run():
        r = _runner(provider=FakeProvider(depth_error=ApiError("depth down", status=500)))
        assert await r.process_candle(_event(r.provider), now_ms=0) is None
        assert r.metrics["skipped_total"] == 1

        r = _runner(sentiment=FakeSentiment(error=ApiError("CryptoPanic failed: 502", status=502)))
        assert await r.process_candle(_event(r.provider), now_ms=0) is None
        assert r.metrics["skipped_total"] == 1
        assert r.metrics["signals_total"] == 0

    asyncio.run(_run())


def test_actionable_signal_dispatch():
    async def _run():
        cfg = Config()
        cfg.alerts.trade_report = True
        tg = FakeTelegram(ok=False)
        r = _runner(cfg, telegram=tg)
        base = await r.process_candle(_event(r.provider), now_ms=0)
        sig = dataclasses.replace(
            base,
            side=LONG,
            score=7,
            long_score=7,
            stop_loss=StopLoss(percent=0.3, price=99.7),
            take_profit=TakeProfit(percent=0.5, price=100.5),
        )
        await r._dispatch(sig)
        assert len(tg.sent) == 2
        assert "<b>LONG</b>" in tg.sent[0][0]
        assert tg.sent[1][1] == ""
        assert "Trade Signal Alert" in tg.sent[1][0]
        assert r.metrics["dispatch_failures_total"] == 1

    asyncio.run(_run())


def test_duplicate_closes_are_ignored():
    r = _runner()
    c1, c2 = r.provider.candles["1m"][-2:]
    assert r._is_duplicate(c1) is False
    assert r._is_duplicate(c1) is True
    assert r._is_duplicate(c2) is False
    assert r._is_duplicate(c1) is True


def test_run_forever_processes_stream():
    async def _run():
        provider = FakeProvider()
        c1, c2 = provider.candles["1m"][-2:]
        provider.stream = [c1, c1, c2]
        cfg = Config()
        cfg.app.startup_message = True
        r = _runner(cfg, provider=provider)
        await r.run_forever()
        assert provider.pings == 1
        assert r.metrics["events_total"] == 2
        assert r.tg.sent[0][1] == ""
        assert "started" in r.tg.sent[0][0]

    asyncio.run(_run())
