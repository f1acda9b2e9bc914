from __future__ import annotations

from typing import Any, Dict

from ..indicators import atr, find_fvgs
from ..models import BUY, SELL, CandleBundle, PivotSet, VetoKind
from .base import Outcome, Scorer, Vetoed, round_pips


class LiquidityScorer(Scorer):
    """Pullback into the nearest unfilled 1h fair-value gap, in the daily bias direction."""

    name = "liquidity"
    signal_type = "liquidity"

    def _evaluate(self, bundle: CandleBundle, pivots: PivotSet, snapshot: Dict[str, Any]) -> Outcome:
        lc = self.cfg.liquidity
        veto = self.require_data(
            bundle, {"1h": lc.min_1h, "4h": lc.min_4h, "15m": lc.min_15m, "1day": lc.min_daily}
        )
        if veto:
            return veto
        veto = self.volatility_gate(bundle)
        if veto:
            return veto

        atr_1h = atr(bundle.data_1h, self.cfg.atr_period)
        bias = self.daily_bias(snapshot)
        if atr_1h is None or bias is None:
            return Vetoed(VetoKind.INSUFFICIENT_DATA, "Could not calculate 1H ATR or daily bias")

        pip = bundle.pip_size
        price = bundle.data_1h[0].close
        fvgs = find_fvgs(bundle.data_1h)
        ind = {
            "atr_1h": atr_1h,
            "atr_1h_pips": round_pips(atr_1h / pip),
            "fvg_bullish_open": sum(1 for g in fvgs.bullish if not g.filled),
            "fvg_bearish_open": sum(1 for g in fvgs.bearish if not g.filled),
        }
        max_dist = atr_1h * lc.max_distance_atr_mult
        buffer = atr_1h * lc.sl_buffer_atr_mult

        if bias == "Up":
            below = [g for g in fvgs.bullish if not g.filled and g.top < price]
            if below:
                gap = max(below, key=lambda g: g.top)
                dist = price - gap.top
                if 0 < dist < max_dist:
                    sl_price = gap.bottom - buffer
                    return self._entry(bundle, pivots, snapshot, BUY, price, sl_price, ind,
                                       "HTF Up, Price pulling back to nearest 1H Bullish FVG")
        else:
            above = [g for g in fvgs.bearish if not g.filled and g.bottom > price]
            if above:
                gap = min(above, key=lambda g: g.bottom)
                dist = gap.bottom - price
                if 0 < dist < max_dist:
                    sl_price = gap.top + buffer
                    return self._entry(bundle, pivots, snapshot, SELL, price, sl_price, ind,
                                       "HTF Down, Price pulling back to nearest 1H Bearish FVG")

        return Vetoed(
            VetoKind.NO_SETUP,
            f"HTF {bias}, no unfilled 1H FVG within {lc.max_distance_atr_mult:g}x ATR",
            ind,
        )

    def _entry(self, bundle, pivots, snapshot, direction, price, sl_price, ind, reason):
        lc = self.cfg.liquidity
        pip = bundle.pip_size
        risk_pips = abs(price - sl_price) / pip
        return self.emit(
            bundle, pivots, snapshot,
            direction=direction,
            confidence=lc.confidence,
            price=price,
            reason=reason,
            sl_pips=round_pips(risk_pips),
            tp_pips=round_pips(risk_pips * lc.reward_multiple),
            sl_price=sl_price,
            indicators=ind,
        )
