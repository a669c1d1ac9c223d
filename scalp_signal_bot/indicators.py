from __future__ import annotations
from typing import List, Optional, Sequence, Tuple

from .errors import InsufficientData, InvalidInput
from .models import Candle, MacdReading, VolumeReading

VOLUME_SPIKE_THRESHOLD = 2.0

# (fast, slow, signal); shorter sets react faster on scalping horizons
MACD_PARAMS = {
    "1m": (6, 13, 4),
    "5m": (6, 13, 4),
    "1h": (12, 26, 9),
}
DEFAULT_MACD_PARAMS = (12, 26, 9)


def rsi_period(timeframe: str) -> int:
    return 14 if timeframe == "1h" else 8


def macd_params(timeframe: str) -> Tuple[int, int, int]:
    return MACD_PARAMS.get(timeframe, DEFAULT_MACD_PARAMS)


def ema_next(prev_ema: Optional[float], x: float, length: int) -> float:
    if length <= 1:
        return x
    alpha = 2.0 / (length + 1.0)
    return x if prev_ema is None else (alpha * x + (1.0 - alpha) * prev_ema)


def sma(values: Sequence[float], length: int) -> Optional[float]:
    if length <= 0 or len(values) < length:
        return None
    return sum(values[-length:]) / float(length)


def ema_series(values: Sequence[float], length: int) -> List[float]:
    """EMA seeded with the SMA of the first `length` values.

    Output[0] lines up with values[length - 1].
    """
    if length <= 0 or len(values) < length:
        return []
    out = [sum(values[:length]) / float(length)]
    for x in values[length:]:
        out.append(ema_next(out[-1], x, length))
    return out


def rsi(candles: Sequence[Candle], period: int) -> float:
    """Latest Wilder RSI over closing prices."""
    if period <= 0:
        raise InvalidInput(f"RSI period must be positive, got {period}")
    closes = [c.close for c in candles]
    if len(closes) < period + 1:
        raise InsufficientData("rsi", period + 1, len(closes))

    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        ch = closes[i] - closes[i - 1]
        if ch >= 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / period
    avg_loss = losses / period

    # Wilder's smoothing over the rest of the window
    for i in range(period + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        avg_gain = (avg_gain * (period - 1) + max(ch, 0.0)) / period
        avg_loss = (avg_loss * (period - 1) + max(-ch, 0.0)) / period

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def macd(candles: Sequence[Candle], fast: int, slow: int, signal: int) -> MacdReading:
    if fast <= 0 or slow <= 0 or signal <= 0 or fast >= slow:
        raise InvalidInput(f"bad MACD periods fast={fast} slow={slow} signal={signal}")
    closes = [c.close for c in candles]
    need = slow + signal + 1
    if len(closes) < need:
        raise InsufficientData("macd", need, len(closes))

    fast_ema = ema_series(closes, fast)
    slow_ema = ema_series(closes, slow)
    offset = slow - fast  # align fast series to the start of the slow one
    line = [f - s for f, s in zip(fast_ema[offset:], slow_ema)]
    sig = ema_series(line, signal)

    m = line[-1]
    s = sig[-1]
    return MacdReading(macd=m, signal=s, histogram=m - s)


def volume_spike(
    candles: Sequence[Candle],
    current_volume: Optional[float] = None,
    threshold: float = VOLUME_SPIKE_THRESHOLD,
) -> VolumeReading:
    """Current volume against the trailing average of all but the latest bar."""
    if len(candles) < 2:
        raise InsufficientData("volume_spike", 2, len(candles))
    trailing = [c.volume for c in candles[:-1]]
    if any(v < 0 for v in trailing):
        raise InvalidInput("negative volume in candle window")
    current = candles[-1].volume if current_volume is None else float(current_volume)
    if current < 0:
        raise InvalidInput(f"negative current volume {current}")

    avg = sum(trailing) / len(trailing)
    if avg == 0:
        return VolumeReading(spike=None, is_significant=False)
    spike = current / avg
    return VolumeReading(spike=spike, is_significant=spike > threshold)
