from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional

LONG = "LONG"
SHORT = "SHORT"
NEUTRAL = "NEUTRAL"

POSITIVE = "Positive"
NEGATIVE = "Negative"
NEUTRAL_SENTIMENT = "Neutral"

TREND_UP = "Up"
TREND_DOWN = "Down"

MAX_SCORE = 11


@dataclass(frozen=True)
class Candle:
    open_time_ms: int
    close_time_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    trades: int = 0


@dataclass(frozen=True)
class MacdReading:
    macd: float
    signal: float
    histogram: float


@dataclass(frozen=True)
class IndicatorSnapshot:
    symbol: str
    timeframe: str
    time_ms: int
    rsi: float
    macd: Optional[MacdReading] = None


@dataclass(frozen=True)
class VolumeReading:
    spike: Optional[float]  # None when the trailing average is zero
    is_significant: bool


@dataclass(frozen=True)
class TimeframeReading:
    snapshot: IndicatorSnapshot
    volume: VolumeReading


@dataclass(frozen=True)
class OrderBookPressure:
    buyer_pressure: bool
    bid_sum: float
    ask_sum: float

    @property
    def ratio(self) -> Optional[float]:
        if self.ask_sum == 0:
            return None
        return self.bid_sum / self.ask_sum


@dataclass(frozen=True)
class SentimentResult:
    sentiment: str  # Positive | Negative | Neutral
    confidence: float  # -1..1
    titles: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class StopLoss:
    percent: float
    price: float


@dataclass(frozen=True)
class TakeProfit:
    percent: float
    price: float


@dataclass(frozen=True)
class ScoringInputs:
    symbol: str
    price: float
    rsi: Dict[str, float]
    macd: Dict[str, MacdReading]
    volume: Dict[str, VolumeReading]
    order_book: OrderBookPressure
    sentiment: SentimentResult
    trend: str  # Up | Down
    primary_tf: str = "1m"
    confirmation_tf: str = "5m"
    trend_tf: str = "1h"


@dataclass(frozen=True)
class Signal:
    symbol: str
    side: str  # LONG, SHORT or NEUTRAL
    score: int
    long_score: int
    short_score: int
    price: float
    trend: str
    sentiment: str
    inputs: ScoringInputs
    created_ms: int
    stop_loss: Optional[StopLoss] = None
    take_profit: Optional[TakeProfit] = None

    @property
    def confidence_label(self) -> str:
        if self.side == NEUTRAL:
            return f"L {self.long_score}/{MAX_SCORE} · S {self.short_score}/{MAX_SCORE}"
        return f"{self.score}/{MAX_SCORE}"

    @property
    def is_actionable(self) -> bool:
        return self.side in (LONG, SHORT)
