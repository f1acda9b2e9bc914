from __future__ import annotations

import logging
from typing import Dict, Optional

import aiohttp

from ..models import Signal

log = logging.getLogger("webhook")


class WebhookNotifier:
    def __init__(self, *, enabled: bool, url: str, secret: str = "", timeout_s: int = 10, headers: Optional[Dict[str, str]] = None):
        self.enabled = bool(enabled)
        self.url = url or ""
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    def active(self) -> bool:
        return self.enabled and bool(self.url)

    def payload(self, sig: Signal) -> dict:
        body = sig.to_dict()
        if self.secret:
            body["secret"] = self.secret
        return body

    async def send_signal(self, sig: Signal) -> bool:
        if not self.active():
            return False
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=self.payload(sig), headers=self.headers) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        log.warning("webhook_bad_status symbol=%s status=%s body=%s", sig.symbol, resp.status, text[:200])
                        return False
        except Exception as e:
            # Log but do not crash
            log.warning("webhook_post_failed symbol=%s err=%s", sig.symbol, e)
            return False
        return True
