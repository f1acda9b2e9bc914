from __future__ import annotations

from typing import Any, Dict

from ..indicators import atr, ema, rsi
from ..models import BUY, SELL, CandleBundle, PivotSet, VetoKind
from .base import Outcome, Scorer, Vetoed, apply_sr_context, derive_take_profit, sl_pips_from_atr, sr_levels


class MomentumScorer(Scorer):
    """4h trend filter with 15m momentum, pullback and shallow-pullback entries."""

    name = "momentum"
    signal_type = "momentum"

    def _evaluate(self, bundle: CandleBundle, pivots: PivotSet, snapshot: Dict[str, Any]) -> Outcome:
        mc = self.cfg.momentum
        veto = self.require_data(bundle, {"4h": mc.min_4h, "15m": mc.min_15m, "1h": mc.min_1h})
        if veto:
            return veto
        veto = self.volatility_gate(bundle)
        if veto:
            return veto

        rsi_4h = rsi(bundle.data_4h, self.cfg.rsi_period)
        ema_4h = ema(bundle.data_4h, mc.ema_htf_period)
        rsi_15m = rsi(bundle.data_15m, self.cfg.rsi_period)
        ema_15m = ema(bundle.data_15m, mc.ema_ltf_period)
        atr_1h = atr(bundle.data_1h, self.cfg.atr_period)
        if ema_4h is None or ema_15m is None or atr_1h is None:
            return Vetoed(VetoKind.INSUFFICIENT_DATA, "Indicator calculation failed, not enough data.")

        ind = {"rsi_15m": rsi_15m, "ema_4h": ema_4h, "ema_15m": ema_15m, "atr_1h": atr_1h}
        price_4h = bundle.data_4h[0].close
        price = bundle.data_15m[0].close

        if price_4h > ema_4h and rsi_4h > mc.bias_rsi_long:
            htf_bias = "long"
        elif price_4h < ema_4h and rsi_4h < mc.bias_rsi_short:
            htf_bias = "short"
        else:
            return Vetoed(VetoKind.NO_SETUP, f"HTF chop (4H Price vs 50EMA, 4H RSI: {rsi_4h:.1f})", ind)

        direction = None
        signal_type = "none"
        reason = ""
        conf = mc.base_confidence
        if htf_bias == "long":
            if price > ema_15m and rsi_15m > mc.momentum_rsi_buy:
                direction, signal_type = BUY, "momentum"
                reason = f"4H Trend Up, 15m Momentum (RSI > {mc.momentum_rsi_buy:g})"
                conf += mc.momentum_bonus
                if rsi_4h > mc.htf_rsi_strong_long:
                    conf += mc.htf_strong_bonus
                if rsi_15m > mc.ltf_rsi_strong_buy:
                    conf += mc.ltf_strong_bonus
            elif rsi_15m < mc.reversion_rsi_buy:
                direction, signal_type = BUY, "reversion"
                reason = f"4H Trend Up, 15m Pullback (RSI < {mc.reversion_rsi_buy:g})"
                if rsi_4h > mc.htf_rsi_strong_long:
                    conf += mc.reversion_htf_bonus
                if rsi_15m < mc.reversion_extreme_buy:
                    conf += mc.reversion_extreme_bonus
            elif price <= ema_15m and rsi_15m > mc.shallow_rsi_buy:
                direction, signal_type = BUY, "shallow_pullback"
                reason = "4H Trend Up, 15m Pullback to 21-EMA"
                conf = mc.shallow_base_confidence
                if rsi_4h > mc.htf_rsi_strong_long:
                    conf += mc.shallow_htf_bonus
        else:
            if price < ema_15m and rsi_15m < mc.momentum_rsi_sell:
                direction, signal_type = SELL, "momentum"
                reason = f"4H Trend Down, 15m Momentum (RSI < {mc.momentum_rsi_sell:g})"
                conf += mc.momentum_bonus
                if rsi_4h < mc.htf_rsi_strong_short:
                    conf += mc.htf_strong_bonus
                if rsi_15m < mc.ltf_rsi_strong_sell:
                    conf += mc.ltf_strong_bonus
            elif rsi_15m > mc.reversion_rsi_sell:
                direction, signal_type = SELL, "reversion"
                reason = f"4H Trend Down, 15m Pullback (RSI > {mc.reversion_rsi_sell:g})"
                if rsi_4h < mc.htf_rsi_strong_short:
                    conf += mc.reversion_htf_bonus
                if rsi_15m > mc.reversion_extreme_sell:
                    conf += mc.reversion_extreme_bonus
            elif price >= ema_15m and rsi_15m < mc.shallow_rsi_sell:
                direction, signal_type = SELL, "shallow_pullback"
                reason = "4H Trend Down, 15m Pullback to 21-EMA"
                conf = mc.shallow_base_confidence
                if rsi_4h < mc.htf_rsi_strong_short:
                    conf += mc.shallow_htf_bonus

        if direction is None:
            return Vetoed(VetoKind.NO_SETUP, f"HTF bias {htf_bias}, no 15m entry (15m RSI: {rsi_15m:.1f})", ind)

        zone = atr_1h * self.cfg.sr_zone_atr_mult
        supports, resistances = sr_levels(pivots, htf_bias=htf_bias, htf_ema=ema_4h)
        conf, reason = apply_sr_context(
            direction, price, conf, reason, supports, resistances, zone,
            penalty=self.cfg.sr_penalty, bonus=self.cfg.sr_bonus,
        )
        conf = min(1.0, conf)
        if conf < self.cfg.confidence_floor:
            return Vetoed(VetoKind.CONFIDENCE_FLOOR, f"{reason} (VETO: S/R context makes confidence too low)", ind)

        pip = bundle.pip_size
        sl_pips = sl_pips_from_atr(atr_1h, pip, mc.sl_atr_mult, mc.min_sl_pips)
        tp_pips = derive_take_profit(direction, price, supports, resistances, zone, sl_pips, pip, self.cfg.default_rr)

        return self.emit(
            bundle, pivots, snapshot,
            direction=direction,
            confidence=conf,
            price=price,
            reason=reason,
            signal_type=signal_type,
            sl_pips=sl_pips,
            tp_pips=tp_pips,
            indicators=ind,
        )
