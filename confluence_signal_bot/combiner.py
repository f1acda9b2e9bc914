from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Sequence, Union

from .indicators import atr_series
from .models import TIMEFRAMES, Candle, CandleBundle, WiringError, resolve_pip_size

log = logging.getLogger("combiner")

HIST_ATR_4H_LEN = 90


def _payload(raw: Any, tf: str) -> Dict[str, Any]:
    if not isinstance(raw, Mapping) or not isinstance(raw.get("values"), list) or not isinstance(raw.get("meta"), Mapping):
        log.warning("combiner_bad_input tf=%s", tf)
        return {"values": [], "meta": {"interval": tf}}
    return dict(raw)


def _candles(values: Sequence[Any], tf: str) -> tuple:
    out: List[Candle] = []
    for raw in values:
        try:
            c = raw if isinstance(raw, Candle) else Candle.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            log.warning("combiner_bad_candle tf=%s err=%s", tf, e)
            continue
        out.append(c.with_typical())
    return tuple(out)


def combine_timeframes(frames: Union[Sequence[Any], Mapping[str, Any]], *, atr_period: int = 14) -> CandleBundle:
    """Five provider payloads (5m, 15m, 1h, 4h, 1day) -> one CandleBundle.

    Each payload is `{meta: {symbol, interval, pip_size?}, values: [candles newest-first]}`.
    """
    if isinstance(frames, Mapping):
        missing = [tf for tf in TIMEFRAMES if tf not in frames]
        if missing:
            raise WiringError(f"combiner expects timeframes {list(TIMEFRAMES)}, missing {missing}")
        frames = [frames[tf] for tf in TIMEFRAMES]
    if len(frames) != len(TIMEFRAMES):
        raise WiringError(f"combiner expects {len(TIMEFRAMES)} inputs (5m, 15m, 1h, 4h, 1day), got {len(frames)}")

    payloads = {tf: _payload(raw, tf) for tf, raw in zip(TIMEFRAMES, frames)}
    series = {tf: _candles(p["values"], tf) for tf, p in payloads.items()}

    hist_atr_4h = tuple(atr_series(series["4h"], atr_period)[-HIST_ATR_4H_LEN:])

    base_meta = dict(payloads["15m"]["meta"])
    symbol = base_meta.get("symbol") or payloads["1h"]["meta"].get("symbol") or "UNKNOWN"
    base_meta["symbol"] = symbol
    pip = resolve_pip_size(symbol, base_meta)
    if not base_meta.get("pip_size"):
        log.warning("combiner_pip_default symbol=%s pip_size=%s", symbol, pip)
    base_meta["pip_size"] = pip

    return CandleBundle(
        symbol=symbol,
        data_5m=series["5m"],
        data_15m=series["15m"],
        data_1h=series["1h"],
        data_4h=series["4h"],
        data_daily=series["1day"],
        hist_atr_4h=hist_atr_4h,
        meta=base_meta,
    )
