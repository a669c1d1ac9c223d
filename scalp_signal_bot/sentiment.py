from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Iterable, List, Optional, Sequence

import aiohttp

from .cache import CacheEntry, is_stale
from .errors import ApiError
from .models import NEGATIVE, NEUTRAL_SENTIMENT, POSITIVE, SentimentResult

log = logging.getLogger("sentiment")

CRYPTOPANIC_URL = "https://cryptopanic.com/api/v1/posts/"
SENTIMENT_TTL_MS = 5 * 60 * 1000

POSITIVE_KEYWORDS = (
    "bullish", "approved", "approval", "adoption", "partnership", "upgrade",
    "rally", "surge", "soars", "record high", "all time high", "inflows",
    "breakout", "etf approved",
)
NEGATIVE_KEYWORDS = (
    "bearish", "hack", "hacked", "ban", "banned", "regulation", "crash",
    "plunge", "dump", "selloff", "sell off", "lawsuit", "outflows", "liquidation",
    "liquidations", "exploit", "fraud", "sec charges",
)
DEFAULT_ASSET_KEYWORDS = ("btc", "bitcoin")

_NON_WORD = re.compile(r"[^\w\s]")


def normalize_text(text: str) -> str:
    return _NON_WORD.sub("", text.lower()).strip()


def count_matches(titles: Iterable[str], keywords: Sequence[str]) -> int:
    """Number of titles containing at least one keyword on word boundaries."""
    patterns = [re.compile(rf"\b{re.escape(normalize_text(k))}\b") for k in keywords]
    return sum(1 for t in titles if any(p.search(normalize_text(t)) for p in patterns))


def classify(
    titles: List[str],
    positive: Sequence[str] = POSITIVE_KEYWORDS,
    negative: Sequence[str] = NEGATIVE_KEYWORDS,
) -> SentimentResult:
    pos = count_matches(titles, positive)
    neg = count_matches(titles, negative)
    if pos > neg:
        sentiment = POSITIVE
    elif neg > pos:
        sentiment = NEGATIVE
    else:
        sentiment = NEUTRAL_SENTIMENT
    total = pos + neg
    confidence = round((pos - neg) / total, 2) if total > 0 else 0.0
    return SentimentResult(sentiment=sentiment, confidence=confidence, titles=list(titles))


class CryptoPanicSentiment:
    """Headline sentiment from CryptoPanic, cached for five minutes.

    A failed fetch raises `ApiError`; there is no fallback sentiment.
    """

    def __init__(
        self,
        api_key: str,
        *,
        asset_keywords: Sequence[str] = DEFAULT_ASSET_KEYWORDS,
        ttl_ms: int = SENTIMENT_TTL_MS,
        timeout_s: int = 15,
        url: str = CRYPTOPANIC_URL,
    ):
        self.api_key = (api_key or "").strip()
        self.asset_keywords = [k.lower() for k in asset_keywords]
        self.ttl_ms = int(ttl_ms)
        self.timeout_s = timeout_s
        self.url = url
        self._cache: Optional[CacheEntry[SentimentResult]] = None

    async def _fetch_posts(self) -> list:
        params = {"auth_token": self.api_key, "kind": "news"}
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as sess:
            async with sess.get(self.url, params=params) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise ApiError(f"CryptoPanic failed: {resp.status} {body[:300]}", status=resp.status)
                data = await resp.json(content_type=None)
        return (data or {}).get("results") or []

    def _relevant(self, posts: list) -> List[str]:
        titles = []
        for post in posts:
            title = (post or {}).get("title") or ""
            low = title.lower()
            if any(k in low for k in self.asset_keywords):
                titles.append(title)
        return titles

    async def fetch(self, now_ms: Optional[int] = None) -> SentimentResult:
        now_ms = int(time.time() * 1000) if now_ms is None else int(now_ms)
        if not is_stale(self._cache, now_ms):
            log.debug("sentiment_cache_hit age_ms=%d", now_ms - self._cache.last_updated_ms)
            return self._cache.value

        try:
            posts = await self._fetch_posts()
        except (asyncio.TimeoutError, aiohttp.ClientError, ValueError, AttributeError) as e:
            log.error("sentiment_fetch_failed err=%r", e)
            raise ApiError(f"CryptoPanic fetch failed: {e!r}") from e

        result = classify(self._relevant(posts))
        self._cache = CacheEntry(value=result, last_updated_ms=now_ms, ttl_ms=self.ttl_ms)
        log.info(
            "sentiment=%s confidence=%.2f titles=%d",
            result.sentiment,
            result.confidence,
            len(result.titles),
        )
        return result
