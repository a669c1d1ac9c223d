from __future__ import annotations

import logging
from typing import Iterable, Tuple

from .models import OrderBookPressure

log = logging.getLogger("orderbook")

BUYER_PRESSURE_RATIO = 3.0

Level = Tuple[float, float]  # (price, quantity)


def analyze_depth(
    bids: Iterable[Level],
    asks: Iterable[Level],
    ratio_threshold: float = BUYER_PRESSURE_RATIO,
) -> OrderBookPressure:
    """Buyers dominate when bid quantity exceeds ask quantity by `ratio_threshold`."""
    bid_sum = sum(float(q) for _, q in bids)
    ask_sum = sum(float(q) for _, q in asks)

    if ask_sum == 0:
        pressure = bid_sum > 0
    else:
        pressure = (bid_sum / ask_sum) > ratio_threshold

    out = OrderBookPressure(buyer_pressure=pressure, bid_sum=bid_sum, ask_sum=ask_sum)
    log.debug("depth bid_sum=%.4f ask_sum=%.4f ratio=%s buyer_pressure=%s", bid_sum, ask_sum, out.ratio, pressure)
    return out
