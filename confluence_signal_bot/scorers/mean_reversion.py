from __future__ import annotations

from typing import Any, Dict, List, Tuple

from ..indicators import adx, atr, bollinger_bands, stoch_rsi
from ..models import BUY, SELL, CandleBundle, PivotSet, VetoKind
from .base import Outcome, Scorer, Vetoed, in_zone, sl_pips_from_atr


class MeanReversionScorer(Scorer):
    name = "mean_reversion"
    signal_type = "reversion"

    def _levels(self, direction: str, pivots: PivotSet) -> List[Tuple[float, str]]:
        if direction == BUY:
            raw = [(pivots.pdl, "major"), (pivots.s1, "major"), (pivots.s2, "major"), (pivots.s3, "major"), (pivots.p, "minor")]
        else:
            raw = [(pivots.pdh, "major"), (pivots.r1, "major"), (pivots.r2, "major"), (pivots.r3, "major"), (pivots.p, "minor")]
        return [(lvl, tier) for lvl, tier in raw if lvl is not None]

    def _evaluate(self, bundle: CandleBundle, pivots: PivotSet, snapshot: Dict[str, Any]) -> Outcome:
        mr = self.cfg.mean_reversion
        veto = self.require_data(bundle, {"4h": mr.min_4h, "15m": mr.min_15m, "1h": mr.min_1h})
        if veto:
            return veto
        if not pivots.has_pivots:
            return Vetoed(VetoKind.MISSING_FIELD, "Not enough data for mean reversion (needs candles + pivots)")
        veto = self.volatility_gate(bundle)
        if veto:
            return veto

        adx_4h = adx(bundle.data_4h, mr.adx_period)
        stoch = stoch_rsi(bundle.data_15m, mr.stoch_rsi_period, mr.stoch_period, mr.stoch_k_smooth, mr.stoch_d_smooth)
        bb = bollinger_bands(bundle.data_15m, mr.bb_period, mr.bb_std_dev)
        atr_1h = atr(bundle.data_1h, self.cfg.atr_period)
        if adx_4h is None or stoch is None or bb is None or atr_1h is None:
            return Vetoed(VetoKind.INSUFFICIENT_DATA, "Indicator calculation failed, not enough data.")

        ind = {
            "adx_4h": adx_4h.adx,
            "adx_4h_plus_di": adx_4h.plus_di,
            "adx_4h_minus_di": adx_4h.minus_di,
            "stoch_rsi_15m_k": stoch.k,
            "stoch_rsi_15m_d": stoch.d,
            "bb_15m_upper": bb.upper,
            "bb_15m_middle": bb.middle,
            "bb_15m_lower": bb.lower,
            "atr_1h": atr_1h,
        }

        trending = adx_4h.adx >= mr.adx_trend_threshold
        trend_up = trending and adx_4h.plus_di > adx_4h.minus_di
        trend_down = trending and adx_4h.minus_di > adx_4h.plus_di
        price = bundle.data_15m[0].close
        base = mr.base_confidence

        if price < bb.lower and stoch.k < mr.oversold:
            direction = BUY
            reason = f"15m Oversold (StochRSI < {mr.oversold:g}) + Below Lower BB"
            with_trend, against_trend = trend_up, trend_down
        elif price > bb.upper and stoch.k > mr.overbought:
            direction = SELL
            reason = f"15m Overbought (StochRSI > {mr.overbought:g}) + Above Upper BB"
            with_trend, against_trend = trend_down, trend_up
        else:
            return Vetoed(VetoKind.NO_SETUP, f"No reversion signal (15m StochRSI: {stoch.k:.1f})", ind)

        if not trending:
            conf = base + mr.ranging_bonus
            reason += " (Context: 4H Ranging)"
        elif with_trend:
            conf = base + mr.pullback_bonus
            reason += " (Context: 4H Trend Pullback)"
        elif against_trend:
            conf = base
            reason += " (Context: Fading 4H Trend)"
        else:
            # trending with +DI == -DI: no context credit, only an S/R bonus can lift it to the floor
            conf = 0.0

        zone = atr_1h * self.cfg.sr_zone_atr_mult
        side = "Support" if direction == BUY else "Resistance"
        for lvl, tier in self._levels(direction, pivots):
            if in_zone(price, lvl, zone):
                conf += mr.sr_bonus_major if tier == "major" else mr.sr_bonus_minor
                reason += f" (Bonus: At {tier} {side} {lvl:g})"
                break

        conf = min(1.0, conf)
        floor = max(self.cfg.confidence_floor, base)
        if conf < floor:
            return Vetoed(VetoKind.CONFIDENCE_FLOOR, f"{reason} (VETO: Context makes confidence too low)", ind)

        return self.emit(
            bundle, pivots, snapshot,
            direction=direction,
            confidence=conf,
            price=price,
            reason=reason,
            sl_pips=sl_pips_from_atr(atr_1h, bundle.pip_size, mr.sl_atr_mult, mr.min_sl_pips),
            tp_price=bb.middle,
            indicators=ind,
        )
