from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .errors import InsufficientData, InvalidInput
from .indicators import sma
from .models import (
    LONG,
    MAX_SCORE,
    NEGATIVE,
    NEUTRAL,
    POSITIVE,
    SHORT,
    TREND_DOWN,
    TREND_UP,
    ScoringInputs,
    Signal,
)
from .risk import RISK_LOOKBACK, RISK_TIMEFRAME, TAKE_PROFIT_PCT, CandleSource, fetch_risk_levels

log = logging.getLogger("scoring")

SCORE_THRESHOLD = 6
TREND_SMA_LEN = 5

# per-side weights; a side tops out at 11
W_TREND_MACD = 2
W_TREND_RSI = 1
W_CONFIRM_RSI_VOLUME = 1
W_PRIMARY_RSI = 2
W_PRIMARY_VOLUME = 1
W_ORDER_BOOK = 1
W_PRIMARY_MACD = 1
W_SENTIMENT = 1
W_PRICE_TREND = 1

CONFIRM_RSI_LOW = 25.0
CONFIRM_RSI_HIGH = 75.0
PRIMARY_RSI_LOW = 20.0
PRIMARY_RSI_HIGH = 80.0


def price_trend(closes: Sequence[float], price: float, length: int = TREND_SMA_LEN) -> str:
    avg = sma(list(closes), length)
    if avg is None:
        raise InsufficientData("price_trend", length, len(closes))
    return TREND_UP if price > avg else TREND_DOWN


@dataclass(frozen=True)
class ScoreCard:
    side: str
    long_score: int
    short_score: int
    long_reasons: Tuple[str, ...] = ()
    short_reasons: Tuple[str, ...] = ()

    @property
    def score(self) -> int:
        if self.side == LONG:
            return self.long_score
        if self.side == SHORT:
            return self.short_score
        return max(self.long_score, self.short_score)

    def breakdown(self) -> str:
        return (
            f"long={self.long_score} [{', '.join(self.long_reasons) or '-'}] "
            f"short={self.short_score} [{', '.join(self.short_reasons) or '-'}]"
        )


def _require(inputs: ScoringInputs) -> None:
    p, c, t = inputs.primary_tf, inputs.confirmation_tf, inputs.trend_tf
    missing = []
    for tf in (p, c, t):
        if tf not in inputs.rsi:
            missing.append(f"rsi[{tf}]")
    for tf in (p, t):
        if tf not in inputs.macd:
            missing.append(f"macd[{tf}]")
    for tf in (p, c):
        if tf not in inputs.volume:
            missing.append(f"volume[{tf}]")
    if missing:
        raise InvalidInput("scoring inputs missing " + ", ".join(missing))
    if inputs.price <= 0:
        raise InvalidInput(f"price must be positive, got {inputs.price}")
    if inputs.trend not in (TREND_UP, TREND_DOWN):
        raise InvalidInput(f"trend must be {TREND_UP} or {TREND_DOWN}, got {inputs.trend!r}")


def score_signal(inputs: ScoringInputs, threshold: int = SCORE_THRESHOLD) -> ScoreCard:
    """Weighted vote across timeframes; a pure function of `inputs`.

    Each side accumulates points independently (max 11). LONG wins with a
    strict majority at or above `threshold`. SHORT additionally requires the
    short-term trend not to be rising. Anything else is NEUTRAL.
    """
    _require(inputs)
    p, c, t = inputs.primary_tf, inputs.confirmation_tf, inputs.trend_tf
    rsi = inputs.rsi
    macd = inputs.macd
    vol = inputs.volume

    long_score = 0
    short_score = 0
    long_why: List[str] = []
    short_why: List[str] = []

    def award(is_long: bool, weight: int, why: str) -> None:
        nonlocal long_score, short_score
        if is_long:
            long_score += weight
            long_why.append(f"{why}+{weight}")
        else:
            short_score += weight
            short_why.append(f"{why}+{weight}")

    # trend timeframe carries the directional bias
    if macd[t].histogram > 0:
        award(True, W_TREND_MACD, f"{t}_macd")
    if macd[t].histogram < 0:
        award(False, W_TREND_MACD, f"{t}_macd")
    if rsi[t] > 50:
        award(True, W_TREND_RSI, f"{t}_rsi")
    if rsi[t] < 50:
        award(False, W_TREND_RSI, f"{t}_rsi")

    # confirmation extremes only count alongside a volume spike
    if vol[c].is_significant:
        if rsi[c] < CONFIRM_RSI_LOW:
            award(True, W_CONFIRM_RSI_VOLUME, f"{c}_rsi_vol")
        if rsi[c] > CONFIRM_RSI_HIGH:
            award(False, W_CONFIRM_RSI_VOLUME, f"{c}_rsi_vol")

    if rsi[p] < PRIMARY_RSI_LOW:
        award(True, W_PRIMARY_RSI, f"{p}_rsi")
    if rsi[p] > PRIMARY_RSI_HIGH:
        award(False, W_PRIMARY_RSI, f"{p}_rsi")

    if vol[p].is_significant:
        award(True, W_PRIMARY_VOLUME, f"{p}_vol")
        award(False, W_PRIMARY_VOLUME, f"{p}_vol")

    award(inputs.order_book.buyer_pressure, W_ORDER_BOOK, "book")

    if macd[p].histogram > 0:
        award(True, W_PRIMARY_MACD, f"{p}_macd")
    if macd[p].histogram < 0:
        award(False, W_PRIMARY_MACD, f"{p}_macd")

    if inputs.sentiment.sentiment == POSITIVE:
        award(True, W_SENTIMENT, "news")
    if inputs.sentiment.sentiment == NEGATIVE:
        award(False, W_SENTIMENT, "news")

    award(inputs.trend == TREND_UP, W_PRICE_TREND, "trend")

    if long_score >= threshold and long_score > short_score:
        side = LONG
    elif short_score >= threshold and short_score > long_score and inputs.trend != TREND_UP:
        side = SHORT
    else:
        side = NEUTRAL

    return ScoreCard(
        side=side,
        long_score=long_score,
        short_score=short_score,
        long_reasons=tuple(long_why),
        short_reasons=tuple(short_why),
    )


def confidence_bucket(score: int, threshold: int = SCORE_THRESHOLD) -> str:
    if score >= 9:
        return "High"
    if score >= threshold:
        return "Medium"
    return "Low"


class SignalGenerator:
    """Scores an input bundle and attaches stop-loss/take-profit to directional calls."""

    def __init__(
        self,
        candle_source: CandleSource,
        *,
        threshold: int = SCORE_THRESHOLD,
        risk_timeframe: str = RISK_TIMEFRAME,
        risk_lookback: int = RISK_LOOKBACK,
        take_profit_pct: float = TAKE_PROFIT_PCT,
    ):
        if not 0 < threshold <= MAX_SCORE:
            raise InvalidInput(f"threshold must be within 1..{MAX_SCORE}, got {threshold}")
        self.candle_source = candle_source
        self.threshold = threshold
        self.risk_timeframe = risk_timeframe
        self.risk_lookback = risk_lookback
        self.take_profit_pct = take_profit_pct

    async def generate(self, inputs: ScoringInputs, now_ms: Optional[int] = None) -> Signal:
        card = score_signal(inputs, self.threshold)
        log.info(
            "score symbol=%s price=%s trend=%s news=%s side=%s %s",
            inputs.symbol,
            inputs.price,
            inputs.trend,
            inputs.sentiment.sentiment,
            card.side,
            card.breakdown(),
        )

        stop_loss = None
        take_profit = None
        if card.side != NEUTRAL:
            stop_loss, take_profit = await fetch_risk_levels(
                self.candle_source,
                inputs.symbol,
                inputs.price,
                card.side,
                timeframe=self.risk_timeframe,
                lookback=self.risk_lookback,
                take_profit_pct=self.take_profit_pct,
            )

        return Signal(
            symbol=inputs.symbol,
            side=card.side,
            score=card.score,
            long_score=card.long_score,
            short_score=card.short_score,
            price=inputs.price,
            trend=inputs.trend,
            sentiment=inputs.sentiment.sentiment,
            inputs=inputs,
            created_ms=int(time.time() * 1000) if now_ms is None else int(now_ms),
            stop_loss=stop_loss,
            take_profit=take_profit,
        )
