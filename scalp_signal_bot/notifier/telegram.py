from __future__ import annotations

import asyncio
import aiohttp
from typing import List, Optional
import logging

from ..errors import DispatchError

log = logging.getLogger("telegram")


class TelegramNotifier:
    def __init__(
        self,
        token: str,
        chat_ids: List[str],
        *,
        parse_mode: str = "HTML",
        disable_web_page_preview: bool = True,
        timeout_s: int = 15,
    ):
        self.token = (token or "").strip()
        self.chat_ids = [str(x).strip() for x in (chat_ids or []) if str(x).strip()]
        self.parse_mode = parse_mode
        self.disable_web_page_preview = disable_web_page_preview
        self.timeout_s = timeout_s

    def enabled(self) -> bool:
        return bool(self.token) and bool(self.chat_ids)

    async def _send_one(self, sess: aiohttp.ClientSession, chat_id: str, text: str, parse_mode: Optional[str]) -> None:
        url = f"https://api.telegram.org/bot{self.token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": self.disable_web_page_preview,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        try:
            async with sess.post(url, json=payload) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise DispatchError(f"telegram status={resp.status} body={body[:500]}")
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise DispatchError(f"telegram transport error: {e!r}") from e

    async def deliver(self, text: str, *, parse_mode: Optional[str] = None) -> bool:
        """Send `text` to every chat. Returns False if any chat failed; never raises."""
        if not self.enabled():
            return False
        mode = self.parse_mode if parse_mode is None else parse_mode
        ok = True
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s)) as sess:
            for chat_id in self.chat_ids:
                try:
                    await self._send_one(sess, chat_id, text, mode)
                except DispatchError as e:
                    ok = False
                    log.warning("telegram_send_failed chat_id=%s err=%s", chat_id, e)
        if ok:
            log.info("telegram_sent chats=%d", len(self.chat_ids))
        return ok
