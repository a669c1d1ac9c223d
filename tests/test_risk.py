import asyncio

import pytest

from scalp_signal_bot.errors import InvalidInput
from scalp_signal_bot.models import Candle
from scalp_signal_bot.risk import calculate_stop_loss, calculate_take_profit, fetch_risk_levels


def _c(idx: int, low: float, high: float) -> Candle:
    base = idx * 300_000
    return Candle(
        open_time_ms=base,
        close_time_ms=base + 300_000 - 1,
        open=low,
        high=high,
        low=low,
        close=high,
        volume=1.0,
    )


class _Source:
    def __init__(self, candles):
        self.candles = candles

    async def fetch_candles(self, symbol, timeframe, limit):
        return self.candles[-limit:]


def test_long_stop_at_support():
    window = [_c(0, 99.0, 101.0), _c(1, 98.0, 100.0), _c(2, 99.5, 100.5)]
    sl = calculate_stop_loss(window, 100.0, "LONG")
    assert sl.price == 98.0
    assert sl.percent == 2.0


def test_short_stop_at_resistance():
    window = [_c(0, 99.0, 101.0), _c(1, 98.0, 100.0)]
    sl = calculate_stop_loss(window, 100.0, "SHORT")
    assert sl.price == 101.0
    assert sl.percent == 1.0


def test_stop_loss_floor_for_tight_support():
    # support 0.05% under entry
    window = [_c(0, 49_975.0, 50_100.0)]
    sl = calculate_stop_loss(window, 50_000.0, "LONG")
    assert sl.percent == 0.3
    assert sl.price == 49_975.0


def test_stop_loss_floor_when_resistance_below_entry():
    window = [_c(0, 90.0, 99.0)]
    assert calculate_stop_loss(window, 100.0, "SHORT").percent == 0.3


def test_take_profit_is_signed():
    assert calculate_take_profit(50_000.0, "LONG").price == 50_250.0
    assert calculate_take_profit(50_000.0, "SHORT").price == 49_750.0
    assert calculate_take_profit(100.0, "LONG", percent=1.0).price == 101.0


@pytest.mark.parametrize("entry,side", [(0.0, "LONG"), (-5.0, "SHORT"), (100.0, "NEUTRAL"), (100.0, "long")])
def test_invalid_arguments(entry, side):
    with pytest.raises(InvalidInput):
        calculate_stop_loss([_c(0, 1.0, 2.0)], entry, side)
    with pytest.raises(InvalidInput):
        calculate_take_profit(entry, side)


def test_empty_window():
    with pytest.raises(InvalidInput):
        calculate_stop_loss([], 100.0, "LONG")


def test_fetch_risk_levels_uses_lookback():
    async def _run():
        candles = [_c(i, 90.0 + i, 110.0 - i) for i in range(20)]
        sl, tp = await fetch_risk_levels(_Source(candles), "BTCUSDT", 100.0, "LONG", lookback=10)
        # last ten bars have lows 100..109
        assert sl.price == 100.0
        assert sl.percent == 0.3
        assert tp.price == 100.5

    asyncio.run(_run())


def test_fetch_risk_levels_empty_window():
    async def _run():
        with pytest.raises(InvalidInput):
            await fetch_risk_levels(_Source([]), "BTCUSDT", 100.0, "SHORT")

    asyncio.run(_run())


def test_take_profit_keeps_direction_on_sub_dollar_pairs():
    long_tp = calculate_take_profit(0.12345, "LONG")
    assert long_tp.price > 0.12345
    assert long_tp.price == pytest.approx(0.12406725)

    short_tp = calculate_take_profit(0.004, "SHORT")
    assert 0 < short_tp.price < 0.004
    assert short_tp.price == pytest.approx(0.00398)
