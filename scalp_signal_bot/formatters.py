from __future__ import annotations

import html
from datetime import datetime, timezone
from typing import Optional

from .models import LONG, MAX_SCORE, SHORT, Signal, VolumeReading
from .notifier.webhook import format_price
from .scoring import PRIMARY_RSI_HIGH, PRIMARY_RSI_LOW, confidence_bucket

SIDE_MARKERS = {LONG: "🟢", SHORT: "🔴"}
NEUTRAL_MARKER = "🔵"


def _fmt_ms(ts_ms: int) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def _escape_markdown_v2(text: str) -> str:
    specials = r"\_*[]()~`>#+-=|{}.!"
    escaped = []
    for ch in str(text):
        if ch in specials:
            escaped.append("\\" + ch)
        else:
            escaped.append(ch)
    return "".join(escaped)


def _escape_text(text: str, parse_mode: str) -> str:
    if parse_mode == "MARKDOWNV2":
        return _escape_markdown_v2(text)
    return html.escape(str(text), quote=False)


def _bold(text: str, parse_mode: str) -> str:
    escaped = _escape_text(text, parse_mode)
    if parse_mode == "MARKDOWNV2":
        return f"*{escaped}*"
    return f"<b>{escaped}</b>"


def _fmt_price(val: Optional[float]) -> str:
    s = format_price(val)
    return "-" if s is None else s


def _fmt_spike(v: Optional[VolumeReading]) -> str:
    if v is None or v.spike is None:
        return "n/a"
    return f"{v.spike:.2f}x"


def rsi_label(value: float) -> str:
    if value < PRIMARY_RSI_LOW:
        return "Oversold"
    if value > PRIMARY_RSI_HIGH:
        return "Overbought"
    return "Normal"


def format_signal(signal: Signal, cfg=None, *, now_ms: Optional[int] = None) -> str:
    """Render a signal for Telegram (HTML by default, MarkdownV2 if configured)."""
    parse_mode = (getattr(cfg, "parse_mode", "HTML") or "HTML").upper()
    inp = signal.inputs
    p, c, t = inp.primary_tf, inp.confirmation_tf, inp.trend_tf
    marker = SIDE_MARKERS.get(signal.side, NEUTRAL_MARKER)

    lines = [
        f"{marker} {_bold(signal.side, parse_mode)} {marker}",
        _escape_text(f"Signal – {signal.symbol} ({p} entry) @ {_fmt_price(signal.price)}", parse_mode),
        "",
        _escape_text(f"• {p} RSI: {inp.rsi[p]:.2f} ({rsi_label(inp.rsi[p])})", parse_mode),
        _escape_text(f"• {c} RSI: {inp.rsi[c]:.2f}", parse_mode),
        _escape_text(f"• {t} Trend: {'Bullish' if inp.macd[t].histogram > 0 else 'Bearish'}", parse_mode),
        _escape_text(f"• Volume Spike: {p}={_fmt_spike(inp.volume.get(p))} {c}={_fmt_spike(inp.volume.get(c))}", parse_mode),
        _escape_text(f"• Order book: {'Buyers dominate' if inp.order_book.buyer_pressure else 'Sellers dominate'}", parse_mode),
        _escape_text(f"• News Sentiment: {signal.sentiment}", parse_mode),
        _escape_text(f"• Price trend ({c} SMA5): {signal.trend}", parse_mode),
    ]

    if signal.stop_loss is not None:
        lines.append(_escape_text(
            f"• SL: {_fmt_price(signal.stop_loss.price)} ({signal.stop_loss.percent:.2f}% from entry)",
            parse_mode,
        ))
    if signal.take_profit is not None:
        lines.append(_escape_text(
            f"• TP: {_fmt_price(signal.take_profit.price)} ({signal.take_profit.percent:.2f}%)",
            parse_mode,
        ))

    footer = (getattr(cfg, "footer", "") or "").strip()
    lines.extend([
        "",
        _escape_text(f"⏰ Time: {_fmt_ms(signal.created_ms if now_ms is None else now_ms)}", parse_mode),
        _escape_text("📊 Exchange: Binance", parse_mode),
        f"🧠 Confidence: {_bold(signal.confidence_label, parse_mode)}",
    ])
    if footer:
        lines.append("")
        lines.append(_escape_text(footer, parse_mode))
    return "\n".join(lines)


def format_trade_report(signal: Signal) -> str:
    """Plain-text trade card for a directional signal; outcome starts as Running."""
    side = "🟢 BUY 🟢" if signal.side == LONG else "🔴 SELL 🔴"
    confidence_pct = round(signal.score / MAX_SCORE * 100.0, 1)
    tp = signal.take_profit.price if signal.take_profit else None
    sl = signal.stop_loss.price if signal.stop_loss else None
    return "\n".join([
        "📈 Trade Signal Alert",
        "",
        f"Symbol: {signal.symbol}",
        f"Signal: {side}",
        f"Confidence: {confidence_pct}% ({confidence_bucket(signal.score)})",
        f"Entry: {_fmt_price(signal.price)}",
        f"TP: {_fmt_price(tp)}",
        f"SL: {_fmt_price(sl)}",
        f"Sentiment: {signal.sentiment}",
        "Outcome: Running",
        f"⏰ Time: {_fmt_ms(signal.created_ms)}",
    ])


def format_startup(app_name: str, symbol: str, timeframes, now_ms: int) -> str:
    return "\n".join([
        f"@@ {app_name} started @@",
        f"At: {_fmt_ms(now_ms)}",
        f"Check: {symbol}",
        f"Timeframes: {' / '.join(timeframes)}",
    ])
