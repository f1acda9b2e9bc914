from __future__ import annotations

import html
from typing import Optional

from .models import Signal


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
    if val is None:
        return "-"
    return f"{val:g}"


def _fmt_pips(val: Optional[float]) -> str:
    if val is None:
        return ""
    return f" ({val:g} pips)"


def format_signal(signal: Signal, parse_mode: str = "HTML") -> str:
    """Telegram message for a final decision."""
    parse_mode = (parse_mode or "HTML").upper()
    pipe = "\\|" if parse_mode == "MARKDOWNV2" else "|"
    side = signal.direction.upper()

    lines = [
        f"{_bold(signal.symbol, parse_mode)}  {pipe}  {_bold(side, parse_mode)}",
        _escape_text(f"Confidence: {signal.confidence * 100:.0f}% | Setup: {signal.signal_type}", parse_mode),
        _escape_text(f"Regime: {signal.regime or '-'} / {signal.meta.get('volatility', '-')}", parse_mode),
        "",
        _escape_text(f"Price: {_fmt_price(signal.price)}", parse_mode),
    ]
    if not signal.is_flat:
        lines.append(_escape_text(f"SL: {_fmt_price(signal.sl_price)}{_fmt_pips(signal.recommended_sl_pips)}", parse_mode))
        lines.append(_escape_text(f"TP: {_fmt_price(signal.tp_price)}{_fmt_pips(signal.recommended_tp_pips)}", parse_mode))
    if signal.reason:
        lines.append(_escape_text(signal.reason, parse_mode))
    return "\n".join(lines)
