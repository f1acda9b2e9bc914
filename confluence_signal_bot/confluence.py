"""Regime-aware confluence: many scorer signals in, one decision per symbol out."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import AggregatorConfig
from .models import BUY, SELL, Signal, VetoKind, resolve_pip_size

log = logging.getLogger("confluence")

REGIME_KEYS = ("rsi_4h", "daily_price_above_ema_200", "atr_4h_norm")


def classify_regime(above_ema_200: Optional[bool], atr_4h_norm: Optional[float], threshold: float = 0.7) -> Tuple[str, str]:
    """(trend, volatility): trend Up/Down/Neutral from the daily EMA flag, volatility High/Low."""
    if above_ema_200 is True:
        trend = "Up"
    elif above_ema_200 is False:
        trend = "Down"
    else:
        trend = "Neutral"
    volatility = "High" if atr_4h_norm is not None and atr_4h_norm > threshold else "Low"
    return trend, volatility


def select_signals(signals: Sequence[Signal], trend: str, cfg: Optional[AggregatorConfig] = None) -> Tuple[List[Signal], str]:
    cfg = cfg or AggregatorConfig()
    technical = set(cfg.technical_types)
    dynamic = set(cfg.dynamic_types)

    buys = [s for s in signals if s.direction == BUY]
    sells = [s for s in signals if s.direction == SELL]

    def has(group: List[Signal], types) -> bool:
        return any(s.signal_type in types for s in group)

    def reversion(group: List[Signal]) -> List[Signal]:
        return [s for s in group if s.signal_type == cfg.reversion_type]

    tech_buys, dyn_buys, rev_buys = has(buys, technical), has(buys, dynamic), bool(reversion(buys))
    tech_sells, dyn_sells, rev_sells = has(sells, technical), has(sells, dynamic), bool(reversion(sells))

    if trend == "Up":
        if tech_buys or dyn_buys:
            tags = [t for t, on in (("Technical", tech_buys), ("Dynamic", dyn_buys)) if on]
            return buys, f"Signal: {' + '.join(tags)} BUYS (With Trend)"
        if rev_sells:
            return reversion(sells), "Signal: Reversion SELLS (Counter-Trend)"
        return [], "No Buy Signals or Reversion Sells Found"

    if trend == "Down":
        if tech_sells or dyn_sells:
            tags = [t for t, on in (("Technical", tech_sells), ("Dynamic", dyn_sells)) if on]
            return sells, f"Signal: {' + '.join(tags)} SELLS (With Trend)"
        if rev_buys:
            return reversion(buys), "Signal: Reversion BUYS (Counter-Trend)"
        return [], "No Sell Signals or Reversion Buys Found"

    # Neutral with low volatility: only range-friendly setups
    if rev_buys or dyn_buys:
        tags = [t for t, on in (("Reversion", rev_buys), ("Dynamic", dyn_buys)) if on]
        return buys, f"Signal: {' + '.join(tags)} BUYS (Range)"
    if rev_sells or dyn_sells:
        tags = [t for t, on in (("Reversion", rev_sells), ("Dynamic", dyn_sells)) if on]
        return sells, f"Signal: {' + '.join(tags)} SELLS (Range)"
    return [], "Range. No Reversion or Dynamic signals"


def _target_price(price: Optional[float], pips: Optional[float], explicit: Optional[float], pip: float, sign: int) -> Optional[float]:
    if price is not None and pips is not None and pips > 0:
        return price + sign * pips * pip
    return explicit


class ConfluenceAggregator:
    def __init__(self, cfg: Optional[AggregatorConfig] = None):
        self.cfg = cfg or AggregatorConfig()

    def aggregate_symbol(self, symbol: str, signals: Sequence[Signal]) -> Signal:
        first = next(
            (s for s in signals if all(s.indicators.get(k) is not None for k in REGIME_KEYS)),
            None,
        )
        if first is None:
            log.debug("veto symbol=%s kind=%s", symbol, VetoKind.INSUFFICIENT_DATA.value)
            return Signal.flat(symbol, "VETO: No valid indicator data from any scorer.", veto=VetoKind.INSUFFICIENT_DATA)

        trend, volatility = classify_regime(
            first.indicators["daily_price_above_ema_200"],
            first.indicators["atr_4h_norm"],
            self.cfg.volatility_threshold,
        )
        regime_meta = {"volatility": volatility}

        if trend == "Neutral" and volatility == "High":
            log.debug("veto symbol=%s kind=%s trend=%s vol=%s", symbol, VetoKind.REGIME.value, trend, volatility)
            return Signal.flat(symbol, "Regime: Veto. Volatile CHOP.", veto=VetoKind.REGIME, regime=trend, meta=regime_meta)

        selected, why = select_signals(signals, trend, self.cfg)
        if not selected:
            return Signal.flat(
                symbol,
                f"Regime: {trend}. {why}.",
                veto=VetoKind.NO_SETUP,
                regime=trend,
                meta=regime_meta,
            )

        avg = sum(s.confidence for s in selected) / len(selected)
        avg = min(1.0, max(0.0, avg))

        best = selected[0]
        for s in selected[1:]:
            if s.confidence > best.confidence:
                best = s

        pip = resolve_pip_size(symbol, best.meta)
        sign = 1 if best.direction == BUY else -1
        sl_price = _target_price(best.price, best.recommended_sl_pips, best.recommended_sl_price, pip, -sign)
        tp_price = _target_price(best.price, best.recommended_tp_pips, best.recommended_tp_price, pip, sign)

        meta = dict(best.meta)
        meta.update(regime_meta)
        meta["selected"] = [s.signal_type for s in selected]

        return Signal(
            symbol=symbol,
            direction=best.direction,
            confidence=avg,
            signal_type=best.signal_type,
            price=best.price,
            reason=why,
            recommended_sl_pips=best.recommended_sl_pips,
            recommended_tp_pips=best.recommended_tp_pips,
            recommended_sl_price=best.recommended_sl_price,
            recommended_tp_price=best.recommended_tp_price,
            sl_price=sl_price,
            tp_price=tp_price,
            regime=trend,
            indicators=dict(best.indicators),
            sr_data=best.sr_data,
            meta=meta,
        )

    def aggregate(self, signals: Iterable[Signal]) -> List[Signal]:
        grouped: Dict[str, List[Signal]] = {}
        for s in signals:
            if s is None or not s.symbol:
                continue
            grouped.setdefault(s.symbol, []).append(s)

        out = []
        for symbol, group in grouped.items():
            try:
                out.append(self.aggregate_symbol(symbol, group))
            except Exception as e:
                log.exception("aggregate_failed symbol=%s err=%s", symbol, e)
                out.append(Signal.flat(symbol, f"VETO: Aggregation error: {e}", veto=VetoKind.AGGREGATION_ERROR))
        return out
