from __future__ import annotations

from typing import Any, Dict, Optional

from ..indicators import atr, ema, rsi
from ..models import BUY, SELL, CandleBundle, PivotSet, VetoKind
from ..timefilter import SessionWindows
from .base import Outcome, Scorer, Vetoed, round_pips


class BreakoutRetestScorer(Scorer):
    """Prior-day high/low broken on the previous 15m bar and retested on the current one."""

    name = "breakout_retest"
    signal_type = "breakout"

    def _evaluate(self, bundle: CandleBundle, pivots: PivotSet, snapshot: Dict[str, Any]) -> Outcome:
        bc = self.cfg.breakout
        veto = self.require_data(bundle, {"4h": bc.min_4h, "15m": bc.min_15m, "1h": bc.min_1h})
        if veto:
            return veto
        if pivots.pdh is None or pivots.pdl is None:
            return Vetoed(VetoKind.MISSING_FIELD, "Not enough data for breakout retest (needs PDH/PDL)")
        veto = self.volatility_gate(bundle)
        if veto:
            return veto

        ema_4h = ema(bundle.data_4h, bc.ema_htf_period)
        rsi_15m = rsi(bundle.data_15m, self.cfg.rsi_period)
        atr_1h = atr(bundle.data_1h, self.cfg.atr_period)
        if ema_4h is None or atr_1h is None:
            return Vetoed(VetoKind.INSUFFICIENT_DATA, "Indicator calculation failed, not enough data.")

        price_4h = bundle.data_4h[0].close
        if price_4h > ema_4h:
            htf_bias = "long"
        elif price_4h < ema_4h:
            htf_bias = "short"
        else:
            htf_bias = "flat"

        newest = bundle.data_15m[0]
        in_session = SessionWindows.from_config(bc.sessions).within(newest.time)
        ind = {"rsi_15m": rsi_15m, "ema_4h": ema_4h, "atr_1h": atr_1h, "in_session": in_session}

        price = newest.close
        prev_close = bundle.data_15m[1].close
        zone = atr_1h * self.cfg.sr_zone_atr_mult
        pdh, pdl = pivots.pdh, pivots.pdl

        direction = None
        reason = ""
        if htf_bias == "long" and in_session:
            if prev_close > pdh and pdh < price < pdh + zone and rsi_15m > bc.rsi_buy:
                direction = BUY
                reason = "4H Trend Up, 15m Break-and-Retest of PDH in high-liquidity session."
        elif htf_bias == "short" and in_session:
            if prev_close < pdl and pdl - zone < price < pdl and rsi_15m < bc.rsi_sell:
                direction = SELL
                reason = "4H Trend Down, 15m Break-and-Retest of PDL in high-liquidity session."

        if direction is None:
            return Vetoed(
                VetoKind.NO_SETUP,
                f"HTF bias {htf_bias}. No breakout retest setup (session: {in_session}, 15m RSI: {rsi_15m:.1f})",
                ind,
            )

        tp_price: Optional[float]
        if direction == BUY:
            sl_price = pdh - zone
            tp_price = pivots.r1
            if tp_price is not None and tp_price < price + (price - sl_price):
                # R1 pays less than the risk, reach for R2
                tp_price = pivots.r2 if pivots.r2 is not None else tp_price
        else:
            sl_price = pdl + zone
            tp_price = pivots.s1
            if tp_price is not None and tp_price > price - (sl_price - price):
                tp_price = pivots.s2 if pivots.s2 is not None else tp_price

        if tp_price is None:
            return Vetoed(
                VetoKind.NO_TARGET,
                f"VETO: {direction} triggered but no valid S/R pivot found for take profit.",
                ind,
            )

        sl_pips = max(bc.min_sl_pips, round_pips(abs(price - sl_price) / bundle.pip_size))
        return self.emit(
            bundle, pivots, snapshot,
            direction=direction,
            confidence=bc.confidence,
            price=price,
            reason=reason,
            sl_pips=sl_pips,
            sl_price=sl_price,
            tp_price=tp_price,
            indicators=ind,
        )
