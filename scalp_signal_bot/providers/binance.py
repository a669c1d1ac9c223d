from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import AsyncIterator, Dict, List, Optional, Tuple

import aiohttp
import websockets

from ..errors import ApiError
from ..models import Candle

log = logging.getLogger("binance")


def _rest_base(market: str) -> str:
    return "https://fapi.binance.com" if market == "futures" else "https://api.binance.com"


def _api_prefix(market: str) -> str:
    return "/fapi/v1" if market == "futures" else "/api/v3"


def _ws_url(market: str) -> str:
    return "wss://fstream.binance.com/ws" if market == "futures" else "wss://stream.binance.com:9443/ws"


def _stream_name(symbol: str, tf: str) -> str:
    return f"{symbol.lower()}@kline_{tf}"


def candle_from_rest(row: list) -> Candle:
    # [0]=open time, [6]=close time, [8]=number of trades
    return Candle(
        open_time_ms=int(row[0]),
        close_time_ms=int(row[6]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
        trades=int(row[8]) if len(row) > 8 else 0,
    )


def candle_from_ws(k: dict) -> Candle:
    return Candle(
        open_time_ms=int(k.get("t")),
        close_time_ms=int(k.get("T")),
        open=float(k.get("o")),
        high=float(k.get("h")),
        low=float(k.get("l")),
        close=float(k.get("c")),
        volume=float(k.get("v")),
        trades=int(k.get("n") or 0),
    )


def closed_kline(msg) -> Optional[Candle]:
    """Candle from a raw ws frame, or None for acks, other events and open bars."""
    j = json.loads(msg)
    if "result" in j and j.get("id") == 1:
        return None  # subscribe ack

    data = j.get("data") or j
    if not isinstance(data, dict) or data.get("e") != "kline":
        return None

    k = data.get("k", {})
    if not k.get("x", False):
        return None  # only closed candles
    return candle_from_ws(k)


class RequestLimiter:
    """One outstanding request at a time, request starts at least `min_interval_s` apart."""

    def __init__(self, min_interval_s: float = 0.05):
        self.min_interval_s = float(min_interval_s)
        self._lock = asyncio.Lock()
        self._last_start: Optional[float] = None

    async def __aenter__(self) -> "RequestLimiter":
        await self._lock.acquire()
        try:
            if self._last_start is not None:
                wait = self.min_interval_s - (time.monotonic() - self._last_start)
                if wait > 0:
                    await asyncio.sleep(wait)
            self._last_start = time.monotonic()
        except BaseException:
            self._lock.release()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._lock.release()


class BinanceProvider:
    def __init__(
        self,
        market: str = "spot",
        *,
        rest_timeout_s: int = 20,
        ws_heartbeat_s: int = 20,
        rest_max_retries: int = 4,
        rest_backoff_s: float = 0.8,
        min_request_interval_s: float = 0.05,
        reconnect_backoff_s: float = 5.0,
        api_key: str = "",
    ):
        self.market = market
        self.rest_timeout_s = rest_timeout_s
        self.ws_heartbeat_s = ws_heartbeat_s

        # REST robustness
        self.rest_max_retries = rest_max_retries
        self.rest_backoff_s = rest_backoff_s
        self.reconnect_backoff_s = reconnect_backoff_s
        self.api_key = api_key or ""

        self.limiter = RequestLimiter(min_request_interval_s)
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"X-MBX-APIKEY": self.api_key} if self.api_key else None
            self._session = aiohttp.ClientSession(timeout=self._timeout(), headers=headers)
        return self._session

    async def _get_json(self, path: str, params: Dict[str, object], what: str):
        url = _rest_base(self.market) + _api_prefix(self.market) + path
        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        last_err: Optional[BaseException] = None
        for attempt in range(1, int(self.rest_max_retries) + 1):
            try:
                async with self.limiter:
                    async with sess.get(url, params=params) as resp:
                        # Rate-limit / ban signals
                        if resp.status in (418, 429):
                            txt = await resp.text()
                            retry_after = resp.headers.get("Retry-After")
                            sleep_s = float(retry_after) if (retry_after and retry_after.isdigit()) else backoff
                            log.warning(
                                "rest_rate_limited status=%s what=%s params=%s sleep=%.1fs body=%s",
                                resp.status,
                                what,
                                params,
                                sleep_s,
                                txt[:200],
                            )
                            last_err = ApiError(f"Binance {what} rate limited: {resp.status}", status=resp.status)
                        elif resp.status != 200:
                            txt = await resp.text()
                            raise ApiError(f"Binance {what} failed: {resp.status} {txt[:500]}", status=resp.status)
                        else:
                            # Some proxies return a wrong content-type; be tolerant.
                            return await resp.json(content_type=None)
                if attempt >= int(self.rest_max_retries):
                    break
                await asyncio.sleep(sleep_s)
                backoff = min(backoff * 2.0, 20.0)

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                if attempt >= int(self.rest_max_retries):
                    break
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d what=%s backoff=%.1fs err=%s",
                    attempt,
                    self.rest_max_retries,
                    what,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if isinstance(last_err, ApiError):
            raise last_err
        raise ApiError(f"Binance {what} failed after {self.rest_max_retries} attempts: {last_err!r}")

    async def ping(self) -> None:
        await self._get_json("/ping", {}, "ping")

    async def fetch_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        params = {"symbol": symbol.upper(), "interval": timeframe, "limit": int(limit)}
        data = await self._get_json("/klines", params, "klines")
        try:
            return [candle_from_rest(row) for row in data]
        except (TypeError, ValueError, IndexError) as e:
            raise ApiError(f"Binance klines malformed for {symbol} {timeframe}: {e}") from e

    async def fetch_depth(self, symbol: str, limit: int = 20) -> Dict[str, List[Tuple[float, float]]]:
        params = {"symbol": symbol.upper(), "limit": int(limit)}
        data = await self._get_json("/depth", params, "depth")
        try:
            return {
                "bids": [(float(p), float(q)) for p, q in data.get("bids", [])],
                "asks": [(float(p), float(q)) for p, q in data.get("asks", [])],
            }
        except (AttributeError, TypeError, ValueError) as e:
            raise ApiError(f"Binance depth malformed for {symbol}: {e}") from e

    async def stream_klines(self, symbol: str, timeframe: str) -> AsyncIterator[Candle]:
        """Yields CLOSED klines for (symbol, tf). Reconnects after a fixed backoff."""
        stream = _stream_name(symbol, timeframe)
        ws_url = _ws_url(self.market)
        sub_msg = {"method": "SUBSCRIBE", "params": [stream], "id": 1}

        while True:
            try:
                async with websockets.connect(
                    ws_url,
                    ping_interval=self.ws_heartbeat_s,
                    ping_timeout=self.ws_heartbeat_s,
                    close_timeout=5,
                ) as ws:
                    await ws.send(json.dumps(sub_msg))
                    log.info("ws_subscribed stream=%s market=%s", stream, self.market)

                    async for msg in ws:
                        try:
                            candle = closed_kline(msg)
                        except (TypeError, ValueError, AttributeError) as e:
                            log.warning("ws_bad_frame stream=%s err=%s", stream, e)
                            continue
                        if candle is not None:
                            yield candle

            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                log.warning("ws_error stream=%s err=%s reconnect_in=%.1fs", stream, e, self.reconnect_backoff_s)
            else:
                log.warning("ws_closed stream=%s reconnect_in=%.1fs", stream, self.reconnect_backoff_s)
            await asyncio.sleep(self.reconnect_backoff_s)
