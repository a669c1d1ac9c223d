from __future__ import annotations

import logging
from typing import List, Protocol, Sequence, Tuple

from .errors import InvalidInput
from .models import LONG, SHORT, Candle, StopLoss, TakeProfit

log = logging.getLogger("risk")

MIN_STOP_LOSS_PCT = 0.3
TAKE_PROFIT_PCT = 0.5
RISK_TIMEFRAME = "5m"
RISK_LOOKBACK = 10


class CandleSource(Protocol):
    async def fetch_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        ...


def _check(entry: float, side: str) -> None:
    if entry is None or entry <= 0:
        raise InvalidInput(f"entry price must be positive, got {entry}")
    if side not in (LONG, SHORT):
        raise InvalidInput(f"side must be {LONG} or {SHORT}, got {side!r}")


def calculate_stop_loss(candles: Sequence[Candle], entry: float, side: str) -> StopLoss:
    """Stop at the nearest support (LONG) or resistance (SHORT) in the window.

    The distance is floored at 0.3%.
    """
    _check(entry, side)
    if not candles:
        raise InvalidInput("empty candle window for stop-loss")

    if side == LONG:
        level = min(c.low for c in candles)
        raw = (entry - level) / entry * 100.0
    else:
        level = max(c.high for c in candles)
        raw = (level - entry) / entry * 100.0
    pct = max(round(raw, 2), MIN_STOP_LOSS_PCT)
    return StopLoss(percent=pct, price=level)


def calculate_take_profit(entry: float, side: str, percent: float = TAKE_PROFIT_PCT) -> TakeProfit:
    _check(entry, side)
    move = entry * percent / 100.0
    price = entry + move if side == LONG else entry - move
    return TakeProfit(percent=percent, price=price)


async def fetch_risk_levels(
    source: CandleSource,
    symbol: str,
    entry: float,
    side: str,
    *,
    timeframe: str = RISK_TIMEFRAME,
    lookback: int = RISK_LOOKBACK,
    take_profit_pct: float = TAKE_PROFIT_PCT,
) -> Tuple[StopLoss, TakeProfit]:
    _check(entry, side)
    candles = await source.fetch_candles(symbol, timeframe, lookback)
    sl = calculate_stop_loss(candles, entry, side)
    tp = calculate_take_profit(entry, side, take_profit_pct)
    log.info(
        "risk_levels symbol=%s side=%s entry=%s sl=%s (%.2f%%) tp=%s (%.2f%%) tf=%s lookback=%d",
        symbol,
        side,
        entry,
        sl.price,
        sl.percent,
        tp.price,
        tp.percent,
        timeframe,
        lookback,
    )
    return sl, tp
