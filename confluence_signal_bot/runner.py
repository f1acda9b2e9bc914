from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Sequence, Tuple

from .config import Config
from .engine import SignalEngine
from .formatters import format_signal
from .models import CandleBundle, PivotSet, Signal, WiringError
from .notifier.telegram import TelegramNotifier
from .notifier.webhook import WebhookNotifier

log = logging.getLogger("runner")

Item = Tuple[CandleBundle, PivotSet]


def items_from_payload(raw: Any) -> List[Item]:
    """Accepts a list (or {"items": [...]}) of {bundle, pivots} objects."""
    if isinstance(raw, dict):
        raw = raw.get("items")
    if not isinstance(raw, list):
        raise WiringError("batch input must be a list of {bundle, pivots} objects")
    out: List[Item] = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict) or not isinstance(entry.get("bundle"), dict):
            raise WiringError(f"batch item {i} has no bundle")
        out.append((CandleBundle.from_dict(entry["bundle"]), PivotSet.from_dict(entry.get("pivots"))))
    return out


def load_items(path: str) -> List[Item]:
    with open(path, "r", encoding="utf-8") as f:
        return items_from_payload(json.load(f))


class DecisionRunner:
    def __init__(
        self,
        cfg: Config,
        *,
        engine: Optional[SignalEngine] = None,
        webhook: Optional[WebhookNotifier] = None,
        tg: Optional[TelegramNotifier] = None,
    ):
        self.cfg = cfg
        self.engine = engine or SignalEngine(cfg)
        self.webhook = webhook or WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers,
        )
        self.tg = tg or TelegramNotifier(
            token=cfg.telegram.token if cfg.telegram.enabled else "",
            chat_ids=cfg.telegram.chat_ids,
            parse_mode=cfg.telegram.parse_mode,
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )

    async def run_once(self, items: Sequence[Item]) -> List[Signal]:
        decisions = self.engine.evaluate_batch(items)
        for sig in decisions:
            log.info(
                "decision symbol=%s side=%s conf=%.2f type=%s regime=%s sl=%s tp=%s reason=%s",
                sig.symbol,
                sig.direction,
                sig.confidence,
                sig.signal_type,
                sig.regime,
                sig.sl_price,
                sig.tp_price,
                sig.reason,
            )
            await self._dispatch(sig)
        return decisions

    async def _dispatch(self, sig: Signal) -> None:
        if self.webhook.active():
            try:
                await self.webhook.send_signal(sig)
            except Exception as e:
                log.warning("webhook_send_failed symbol=%s err=%s", sig.symbol, e)

        if sig.is_flat or not self.tg.enabled():
            return
        try:
            await self.tg.send(format_signal(sig, self.tg.parse_mode))
        except Exception as e:
            log.warning("telegram_send_failed symbol=%s err=%s", sig.symbol, e)
