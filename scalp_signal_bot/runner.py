from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Optional

from .cache import TimeframeCache
from .config import Config
from .errors import ApiError, InsufficientData, InvalidInput
from .formatters import format_signal, format_startup, format_trade_report
from .indicators import macd, macd_params, rsi, rsi_period, volume_spike
from .models import (
    NEUTRAL,
    Candle,
    IndicatorSnapshot,
    MacdReading,
    ScoringInputs,
    Signal,
    TimeframeReading,
    VolumeReading,
)
from .notifier.telegram import TelegramNotifier
from .notifier.webhook import WebhookNotifier
from .orderbook import analyze_depth
from .providers.binance import BinanceProvider
from .scoring import SignalGenerator, price_trend
from .sentiment import CryptoPanicSentiment

log = logging.getLogger("runner")

VOLUME_WINDOW = 10

# used for a higher timeframe that has never been loaded successfully
NEUTRAL_RSI = 50.0
NEUTRAL_MACD = MacdReading(macd=0.0, signal=0.0, histogram=0.0)
NEUTRAL_VOLUME = VolumeReading(spike=1.0, is_significant=False)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SignalRunner:
    def __init__(
        self,
        cfg: Config,
        *,
        provider=None,
        sentiment=None,
        telegram: Optional[TelegramNotifier] = None,
        webhook: Optional[WebhookNotifier] = None,
    ):
        self.cfg = cfg
        m = cfg.market
        self.symbol = m.symbol.upper()
        self.provider = provider or BinanceProvider(
            market=m.market,
            rest_timeout_s=m.rest_timeout_s,
            ws_heartbeat_s=m.ws_heartbeat_s,
            min_request_interval_s=m.min_request_interval_ms / 1000.0,
            reconnect_backoff_s=m.reconnect_backoff_s,
            api_key=m.api_key,
        )
        self.sentiment = sentiment or CryptoPanicSentiment(
            cfg.sentiment.api_key,
            asset_keywords=cfg.sentiment.asset_keywords,
            ttl_ms=cfg.sentiment.ttl_s * 1000,
            timeout_s=cfg.sentiment.timeout_s,
        )
        self.tg = telegram or TelegramNotifier(
            token=cfg.telegram.token if cfg.telegram.enabled else "",
            chat_ids=cfg.telegram.chat_ids or [],
            parse_mode=cfg.alerts.parse_mode,
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.webhook = webhook or WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers or {},
        )
        self.cache = TimeframeCache(cfg.cache.ttls_ms())
        self.generator = SignalGenerator(
            self.provider,
            threshold=cfg.scoring.threshold,
            risk_timeframe=cfg.risk.timeframe,
            risk_lookback=cfg.risk.lookback,
            take_profit_pct=cfg.risk.take_profit_pct,
        )

        # one evaluation at a time per symbol; the cache has a single writer
        self._locks: Dict[str, asyncio.Lock] = {}
        self._last_close: Optional[int] = None
        self._metrics = {
            "events_total": 0,
            "skipped_total": 0,
            "signals_total": 0,
            "dispatch_failures_total": 0,
        }

    def _lock(self, symbol: str) -> asyncio.Lock:
        lock = self._locks.get(symbol)
        if lock is None:
            lock = self._locks[symbol] = asyncio.Lock()
        return lock

    # ---- indicator loading -------------------------------------------------

    async def _reading(self, timeframe: str, *, upto_open_ms: Optional[int] = None, current_volume: Optional[float] = None) -> TimeframeReading:
        candles = await self.provider.fetch_candles(self.symbol, timeframe, self.cfg.market.candle_limit)
        if upto_open_ms is not None:
            # REST also returns the bar that just opened; align on the closed event bar
            candles = [c for c in candles if c.open_time_ms <= upto_open_ms]
        if not candles:
            raise InsufficientData(f"candles[{timeframe}]", 1, 0)

        snap = IndicatorSnapshot(
            symbol=self.symbol,
            timeframe=timeframe,
            time_ms=candles[-1].open_time_ms,
            rsi=rsi(candles, rsi_period(timeframe)),
            macd=macd(candles, *macd_params(timeframe)),
        )
        vol = volume_spike(
            candles[-VOLUME_WINDOW:],
            current_volume=current_volume,
            threshold=self.cfg.scoring.volume_spike_threshold,
        )
        return TimeframeReading(snapshot=snap, volume=vol)

    async def refresh_cache(self, now_ms: int) -> Dict[str, bool]:
        loaders = {}
        for tf in (self.cfg.market.trend_tf, self.cfg.market.confirmation_tf):
            loaders[tf] = (lambda tf=tf: self._reading(tf))
        return await self.cache.refresh_all(now_ms, loaders)

    def _cached_or_neutral(self, timeframe: str) -> TimeframeReading:
        reading = self.cache.get(timeframe)
        if reading is not None:
            return reading
        log.warning("cache_empty tf=%s using neutral defaults", timeframe)
        return TimeframeReading(
            snapshot=IndicatorSnapshot(
                symbol=self.symbol,
                timeframe=timeframe,
                time_ms=0,
                rsi=NEUTRAL_RSI,
                macd=NEUTRAL_MACD,
            ),
            volume=NEUTRAL_VOLUME,
        )

    # ---- event pipeline ----------------------------------------------------

    async def build_inputs(self, candle: Candle, now_ms: int) -> ScoringInputs:
        m = self.cfg.market
        p, c, t = m.primary_tf, m.confirmation_tf, m.trend_tf

        primary = await self._reading(p, upto_open_ms=candle.open_time_ms, current_volume=candle.volume)
        confirm = self._cached_or_neutral(c)
        trend = self._cached_or_neutral(t)

        trend_n = self.cfg.scoring.trend_sma_len
        trend_candles = await self.provider.fetch_candles(self.symbol, c, trend_n)
        direction = price_trend([x.close for x in trend_candles], candle.close, trend_n)

        depth = await self.provider.fetch_depth(self.symbol, m.depth_limit)
        book = analyze_depth(depth["bids"], depth["asks"], self.cfg.scoring.buyer_pressure_ratio)

        news = await self.sentiment.fetch(now_ms)

        return ScoringInputs(
            symbol=self.symbol,
            price=candle.close,
            rsi={p: primary.snapshot.rsi, c: confirm.snapshot.rsi, t: trend.snapshot.rsi},
            macd={
                p: primary.snapshot.macd,
                c: confirm.snapshot.macd or NEUTRAL_MACD,
                t: trend.snapshot.macd or NEUTRAL_MACD,
            },
            volume={p: primary.volume, c: confirm.volume, t: trend.volume},
            order_book=book,
            sentiment=news,
            trend=direction,
            primary_tf=p,
            confirmation_tf=c,
            trend_tf=t,
        )

    async def process_candle(self, candle: Candle, now_ms: Optional[int] = None) -> Optional[Signal]:
        """Run one closed-candle cycle. Returns None when the cycle was skipped."""
        now_ms = _now_ms() if now_ms is None else int(now_ms)
        async with self._lock(self.symbol):
            self._metrics["events_total"] += 1
            log.info("candle_closed symbol=%s tf=%s open_ms=%s close=%s volume=%s", self.symbol, self.cfg.market.primary_tf, candle.open_time_ms, candle.close, candle.volume)

            await self.refresh_cache(now_ms)
            try:
                inputs = await self.build_inputs(candle, now_ms)
                sig = await self.generator.generate(inputs, now_ms)
            except (InsufficientData, ApiError, InvalidInput) as e:
                self._metrics["skipped_total"] += 1
                log.warning("cycle_skipped symbol=%s err_type=%s err=%s", self.symbol, type(e).__name__, e)
                return None

            self._metrics["signals_total"] += 1
            await self._dispatch(sig)
            return sig

    async def _dispatch(self, sig: Signal) -> None:
        log.info(
            "signal symbol=%s side=%s confidence=%s price=%s sl=%s tp=%s",
            sig.symbol,
            sig.side,
            sig.confidence_label,
            sig.price,
            sig.stop_loss.price if sig.stop_loss else None,
            sig.take_profit.price if sig.take_profit else None,
        )
        if sig.side == NEUTRAL and not self.cfg.alerts.send_neutral:
            return

        if self.tg.enabled():
            ok = await self.tg.deliver(format_signal(sig, self.cfg.alerts))
            if self.cfg.alerts.trade_report and sig.is_actionable:
                ok = await self.tg.deliver(format_trade_report(sig), parse_mode="") and ok
            if not ok:
                self._metrics["dispatch_failures_total"] += 1

        if self.webhook.enabled:
            if not await self.webhook.deliver_signal(sig):
                self._metrics["dispatch_failures_total"] += 1

    def _is_duplicate(self, candle: Candle) -> bool:
        last = self._last_close
        ct = candle.close_time_ms
        if last is not None and ct <= last:
            return True
        self._last_close = ct
        return False

    async def startup(self) -> None:
        m = self.cfg.market
        log.info("startup symbol=%s primary=%s confirmation=%s trend=%s", self.symbol, m.primary_tf, m.confirmation_tf, m.trend_tf)
        await self.provider.ping()
        now_ms = _now_ms()
        refreshed = await self.refresh_cache(now_ms)
        log.info("warmup_done refreshed=%s", refreshed)
        if self.cfg.app.startup_message and self.tg.enabled():
            await self.tg.deliver(format_startup(self.cfg.app.name, self.symbol, self.cfg.timeframes, now_ms), parse_mode="")

    async def run_forever(self) -> None:
        await self.startup()
        async for candle in self.provider.stream_klines(self.symbol, self.cfg.market.primary_tf):
            if self._is_duplicate(candle):
                continue
            try:
                await self.process_candle(candle)
            except Exception as e:
                # keep the stream alive; the next close starts a fresh cycle
                log.exception("event_failed symbol=%s open_ms=%s err=%s", self.symbol, candle.open_time_ms, e)

    @property
    def metrics(self) -> Dict[str, int]:
        return dict(self._metrics)
