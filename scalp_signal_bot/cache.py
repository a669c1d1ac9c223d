from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from .models import TimeframeReading

log = logging.getLogger("cache")

T = TypeVar("T")

# Higher timeframes are re-evaluated far less often than the primary one ticks.
DEFAULT_TTLS_MS: Dict[str, int] = {
    "1h": 5 * 60 * 1000,
    "5m": 60 * 1000,
}


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    last_updated_ms: int
    ttl_ms: int


def is_stale(entry: Optional[CacheEntry[Any]], now_ms: int) -> bool:
    if entry is None:
        return True
    return (now_ms - entry.last_updated_ms) > entry.ttl_ms


class TimeframeCache:
    """Last indicator reading per higher timeframe; stale values are served until a refresh succeeds."""

    def __init__(self, ttls_ms: Optional[Dict[str, int]] = None) -> None:
        self.ttls_ms = dict(DEFAULT_TTLS_MS if ttls_ms is None else ttls_ms)
        self._entries: Dict[str, CacheEntry[TimeframeReading]] = {}

    def entry(self, timeframe: str) -> Optional[CacheEntry[TimeframeReading]]:
        return self._entries.get(timeframe)

    def get(self, timeframe: str) -> Optional[TimeframeReading]:
        e = self._entries.get(timeframe)
        return e.value if e is not None else None

    def put(self, timeframe: str, value: TimeframeReading, now_ms: int) -> None:
        ttl = self.ttls_ms.get(timeframe)
        if ttl is None:
            raise KeyError(f"timeframe not tracked: {timeframe}")
        self._entries[timeframe] = CacheEntry(value=value, last_updated_ms=now_ms, ttl_ms=ttl)

    def age_ms(self, timeframe: str, now_ms: int) -> Optional[int]:
        e = self._entries.get(timeframe)
        return None if e is None else now_ms - e.last_updated_ms

    async def refresh(
        self,
        timeframe: str,
        now_ms: int,
        loader: Callable[[], Awaitable[TimeframeReading]],
    ) -> bool:
        """Reload `timeframe` if stale. Returns True when a new value was stored.

        Loader failures are logged and the previous entry is kept.
        """
        if not is_stale(self._entries.get(timeframe), now_ms):
            return False
        try:
            value = await loader()
        except Exception as e:
            log.warning(
                "cache_refresh_failed tf=%s age_ms=%s err=%r",
                timeframe,
                self.age_ms(timeframe, now_ms),
                e,
            )
            return False
        self.put(timeframe, value, now_ms)
        log.info("cache_refreshed tf=%s rsi=%.2f spike=%s", timeframe, value.snapshot.rsi, value.volume.spike)
        return True

    async def refresh_all(
        self,
        now_ms: int,
        loaders: Dict[str, Callable[[], Awaitable[TimeframeReading]]],
    ) -> Dict[str, bool]:
        # requests share the single-outstanding limiter, so refresh one at a time
        out: Dict[str, bool] = {}
        for tf in self.ttls_ms:
            loader = loaders.get(tf)
            if loader is None:
                continue
            out[tf] = await self.refresh(tf, now_ms, loader)
        return out
