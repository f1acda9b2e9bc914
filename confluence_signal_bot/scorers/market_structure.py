from __future__ import annotations

from typing import Any, Dict

from ..indicators import atr, rsi
from ..models import BUY, SELL, CandleBundle, PivotSet, VetoKind
from .base import Outcome, Scorer, Vetoed, round_pips, sl_pips_from_atr


class MarketStructureScorer(Scorer):
    """1h close through PDH/PDL: break of structure with the daily bias, change of character against it."""

    name = "market_structure"
    signal_type = "market_structure"

    def _evaluate(self, bundle: CandleBundle, pivots: PivotSet, snapshot: Dict[str, Any]) -> Outcome:
        sc = self.cfg.structure
        veto = self.require_data(
            bundle, {"1h": sc.min_1h, "4h": sc.min_4h, "15m": sc.min_15m, "1day": sc.min_daily}
        )
        if veto:
            return veto
        if pivots.pdh is None or pivots.pdl is None:
            return Vetoed(VetoKind.MISSING_FIELD, "VETO: Missing PDH/PDL from sr_data.")
        veto = self.volatility_gate(bundle)
        if veto:
            return veto

        atr_1h = atr(bundle.data_1h, self.cfg.atr_period)
        rsi_1h = rsi(bundle.data_1h, self.cfg.rsi_period)
        bias = self.daily_bias(snapshot)
        if atr_1h is None or bias is None:
            return Vetoed(VetoKind.INSUFFICIENT_DATA, "Failed to calculate ATR or daily bias.")

        pip = bundle.pip_size
        ind = {"rsi_1h": rsi_1h, "atr_1h": atr_1h, "atr_1h_pips": round_pips(atr_1h / pip)}
        price = bundle.data_1h[0].close
        prev = bundle.data_1h[1].close
        pdh, pdl = pivots.pdh, pivots.pdl

        bull_break = prev < pdh and price > pdh and rsi_1h > sc.rsi_buy
        bear_break = prev > pdl and price < pdl and rsi_1h < sc.rsi_sell

        direction = None
        conf = 0.0
        reason = ""
        if bias == "Up":
            if bull_break:
                direction, conf = BUY, sc.bos_confidence
                reason = "HTF Up, Bullish BOS (Break of PDH) w/ Momentum"
            elif bear_break:
                direction, conf = SELL, sc.choch_confidence
                reason = "HTF Up, Bearish CHOCH (Break of PDL)"
        else:
            if bear_break:
                direction, conf = SELL, sc.bos_confidence
                reason = "HTF Down, Bearish BOS (Break of PDL) w/ Momentum"
            elif bull_break:
                direction, conf = BUY, sc.choch_confidence
                reason = "HTF Down, Bullish CHOCH (Break of PDH)"

        if direction is None:
            return Vetoed(VetoKind.NO_SETUP, f"HTF {bias}, no 1H break of PDH/PDL (1H RSI: {rsi_1h:.1f})", ind)

        sl_pips = sl_pips_from_atr(atr_1h, pip, sc.sl_atr_mult, sc.min_sl_pips)
        return self.emit(
            bundle, pivots, snapshot,
            direction=direction,
            confidence=conf,
            price=price,
            reason=reason,
            sl_pips=sl_pips,
            tp_pips=round_pips(sl_pips * sc.reward_multiple),
            indicators=ind,
        )
