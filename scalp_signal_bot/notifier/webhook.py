from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..models import Signal

log = logging.getLogger("webhook")


def format_price(x: Optional[float]) -> Optional[str]:
    """Fixed 8 decimals then strip trailing zeros/dot."""
    if x is None:
        return None
    s = f"{x:.8f}"
    s = s.rstrip("0").rstrip(".")
    return s or "0"


def signal_payload(sig: Signal, secret: str = "") -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "symbol": sig.symbol,
        "side": sig.side,
        "score": sig.score,
        "long_score": sig.long_score,
        "short_score": sig.short_score,
        "confidence": sig.confidence_label,
        "price": format_price(sig.price),
        "trend": sig.trend,
        "sentiment": sig.sentiment,
        "created_ms": int(sig.created_ms),
    }
    if sig.stop_loss is not None:
        payload["stop_loss"] = format_price(sig.stop_loss.price)
        payload["stop_loss_pct"] = sig.stop_loss.percent
    if sig.take_profit is not None:
        payload["take_profit"] = format_price(sig.take_profit.price)
        payload["take_profit_pct"] = sig.take_profit.percent
    if secret:
        payload["secret"] = secret
    return payload


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str, timeout_s: int, headers: dict):
        self.enabled = bool(enabled)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    async def deliver_signal(self, sig: Signal) -> bool:
        if not self.enabled or not self.url:
            return False

        body = json.dumps(signal_payload(sig, self.secret), separators=(",", ":"))
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, data=body, headers={"Content-Type": "application/json", **self.headers}) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status status=%s body=%s", resp.status, text[:200])
                        return False
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            # Log but do not crash
            log.warning("webhook_post_failed err=%s", e)
            return False
        return True
