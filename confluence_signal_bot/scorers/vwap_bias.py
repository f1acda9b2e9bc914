from __future__ import annotations

from typing import Any, Dict

from ..indicators import atr, vwap
from ..models import BUY, SELL, CandleBundle, PivotSet, VetoKind
from .base import Outcome, Scorer, Vetoed, round_pips, sl_pips_from_atr


class VwapBiasScorer(Scorer):
    name = "vwap_bias"
    signal_type = "vwap_bias"

    def _evaluate(self, bundle: CandleBundle, pivots: PivotSet, snapshot: Dict[str, Any]) -> Outcome:
        vc = self.cfg.vwap
        veto = self.require_data(
            bundle, {"1h": vc.min_1h, "15m": vc.min_15m, "4h": vc.min_4h, "1day": vc.min_daily}
        )
        if veto:
            return veto
        for c in (bundle.data_15m[0], bundle.data_1h[0]):
            if c.volume is None or c.typical is None:
                return Vetoed(VetoKind.MISSING_FIELD, "VETO: candle data is missing volume/typical")
        veto = self.volatility_gate(bundle)
        if veto:
            return veto

        vwap_1h = vwap(bundle.data_1h)
        vwap_15m = vwap(bundle.data_15m)
        atr_1h = atr(bundle.data_1h, self.cfg.atr_period)
        bias = self.daily_bias(snapshot)
        if vwap_1h is None or vwap_15m is None or atr_1h is None or bias is None:
            return Vetoed(VetoKind.INSUFFICIENT_DATA, "Failed to calculate VWAP or ATR.")

        pip = bundle.pip_size
        ind = {"vwap_1h": vwap_1h, "vwap_15m": vwap_15m, "atr_1h": atr_1h, "atr_1h_pips": round_pips(atr_1h / pip)}
        zone = atr_1h * vc.zone_atr_mult
        price_1h = bundle.data_1h[0].close
        price = bundle.data_15m[0].close
        near_15m = (vwap_15m - zone) < price < (vwap_15m + zone)

        direction = None
        reason = ""
        if bias == "Up" and price_1h > vwap_1h and near_15m:
            direction = BUY
            reason = "HTF Up, Price > 1H VWAP, Pullback to 15m VWAP support"
        elif bias == "Down" and price_1h < vwap_1h and near_15m:
            direction = SELL
            reason = "HTF Down, Price < 1H VWAP, Pullback to 15m VWAP resistance"

        if direction is None:
            return Vetoed(VetoKind.NO_SETUP, f"HTF {bias}, no VWAP pullback setup", ind)

        sl_pips = sl_pips_from_atr(atr_1h, pip, vc.sl_atr_mult, vc.min_sl_pips)
        return self.emit(
            bundle, pivots, snapshot,
            direction=direction,
            confidence=vc.confidence,
            price=price,
            reason=reason,
            sl_pips=sl_pips,
            tp_pips=round_pips(sl_pips * vc.reward_multiple),
            indicators=ind,
        )
