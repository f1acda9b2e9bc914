from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..config import ScorersConfig
from ..indicators import atr, atr_percentile, ema, rsi
from ..models import BUY, SELL, CandleBundle, PivotSet, Signal, VetoKind, WiringError


@dataclass(frozen=True)
class Vetoed:
    """A gate said no. Carries the kind, a human reason and any indicators computed so far."""

    kind: VetoKind
    reason: str
    indicators: Dict[str, Any] = field(default_factory=dict)


Outcome = Union[Signal, Vetoed]


def round_pips(x: float) -> int:
    # half-up, not banker's rounding
    return int(math.floor(x + 0.5))


def sl_pips_from_atr(atr_value: float, pip: float, mult: float, min_pips: int) -> int:
    return max(int(min_pips), round_pips(atr_value * mult / pip))


def in_zone(price: float, level: float, zone: float) -> bool:
    return (level - zone) < price < (level + zone)


def sr_levels(pivots: PivotSet, *, htf_bias: Optional[str] = None, htf_ema: Optional[float] = None) -> Tuple[List[float], List[float]]:
    """Candidate (supports, resistances); the central pivot sits in both lists."""
    supports = [pivots.s1, pivots.s2, pivots.s3, pivots.pdl, pivots.p]
    resistances = [pivots.r1, pivots.r2, pivots.r3, pivots.pdh, pivots.p]
    if htf_ema is not None:
        if htf_bias == "long":
            supports.append(htf_ema)
        elif htf_bias == "short":
            resistances.append(htf_ema)
    return [x for x in supports if x is not None], [x for x in resistances if x is not None]


def apply_sr_context(
    direction: str,
    price: float,
    confidence: float,
    reason: str,
    supports: Sequence[float],
    resistances: Sequence[float],
    zone: float,
    *,
    penalty: float,
    bonus: float,
) -> Tuple[float, str]:
    """Penalize trading into the opposing level, else reward trading off the friendly one.

    Only the first matching level applies and a penalty suppresses the bonus.
    """
    if direction == BUY:
        against, against_name, behind, behind_name = resistances, "Resistance", supports, "Support"
    elif direction == SELL:
        against, against_name, behind, behind_name = supports, "Support", resistances, "Resistance"
    else:
        return confidence, reason

    for lvl in against:
        if in_zone(price, lvl, zone):
            return confidence - penalty, f"{reason} (Penalty: At {against_name} {lvl:.2f})"
    for lvl in behind:
        if in_zone(price, lvl, zone):
            return confidence + bonus, f"{reason} (Bonus: At {behind_name} {lvl:.2f})"
    return confidence, reason


def derive_take_profit(
    direction: str,
    price: float,
    supports: Sequence[float],
    resistances: Sequence[float],
    zone: float,
    sl_pips: int,
    pip: float,
    rr: float,
) -> int:
    """Nearest level beyond price minus half a zone, else rr x the stop."""
    tp_pips: Optional[float] = None
    if direction == BUY:
        targets = [r for r in resistances if r > price]
        if targets:
            tp_pips = ((min(targets) - zone / 2.0) - price) / pip
    elif direction == SELL:
        targets = [s for s in supports if s < price]
        if targets:
            tp_pips = (price - (max(targets) + zone / 2.0)) / pip
    if tp_pips is None or tp_pips < sl_pips:
        return round_pips(sl_pips * rr)
    return round_pips(tp_pips)


class Scorer(ABC):
    """(CandleBundle, PivotSet) -> Signal.

    Subclasses implement `_evaluate` as a gate pipeline that returns either a
    Signal or a Vetoed value; `score` turns vetoes into flat signals and stamps
    the shared regime snapshot on every result.
    """

    name: str = ""
    signal_type: str = "none"

    def __init__(self, cfg: Optional[ScorersConfig] = None):
        self.cfg = cfg or ScorersConfig()
        self.log = logging.getLogger(f"scorer.{self.name}")

    def score(self, bundle: CandleBundle, pivots: PivotSet) -> Signal:
        if not isinstance(bundle, CandleBundle):
            raise WiringError(f"{self.name}: expected CandleBundle, got {type(bundle).__name__}")
        if not isinstance(pivots, PivotSet):
            raise WiringError(f"{self.name}: expected PivotSet, got {type(pivots).__name__}")

        snapshot = self.regime_snapshot(bundle)
        out = self._evaluate(bundle, pivots, snapshot)
        if isinstance(out, Vetoed):
            self.log.debug("veto symbol=%s kind=%s reason=%s", bundle.symbol, out.kind.value, out.reason)
            indicators = dict(snapshot)
            indicators.update(out.indicators)
            return Signal.flat(
                bundle.symbol,
                out.reason,
                veto=out.kind,
                signal_type=self.signal_type,
                price=bundle.data_15m[0].close if bundle.data_15m else None,
                indicators=indicators,
                sr_data=pivots,
                meta=dict(bundle.meta),
            )
        return out

    @abstractmethod
    def _evaluate(self, bundle: CandleBundle, pivots: PivotSet, snapshot: Dict[str, Any]) -> Outcome:
        raise NotImplementedError

    # --- shared gates -------------------------------------------------------

    def regime_snapshot(self, bundle: CandleBundle) -> Dict[str, Any]:
        rsi_4h = rsi(bundle.data_4h, self.cfg.rsi_period) if len(bundle.data_4h) > self.cfg.rsi_period else None
        daily_ema = ema(bundle.data_daily, self.cfg.regime_ema_period)
        above = None if daily_ema is None else bundle.data_daily[0].close > daily_ema
        atr_4h = atr(bundle.data_4h, self.cfg.atr_period)
        return {
            "rsi_4h": rsi_4h,
            "daily_price_above_ema_200": above,
            "atr_4h_norm": atr_percentile(atr_4h, bundle.hist_atr_4h, self.cfg.atr_norm_min_history),
        }

    def require_data(self, bundle: CandleBundle, minimums: Mapping[str, int]) -> Optional[Vetoed]:
        short = [f"{tf}={len(bundle.series(tf))}<{n}" for tf, n in minimums.items() if len(bundle.series(tf)) < n]
        if short:
            return Vetoed(VetoKind.INSUFFICIENT_DATA, f"Not enough candle data for {self.name} ({', '.join(short)})")
        return None

    def volatility_gate(self, bundle: CandleBundle) -> Optional[Vetoed]:
        atr_15m = atr(bundle.data_15m, self.cfg.atr_period)
        if atr_15m is None:
            return Vetoed(VetoKind.INSUFFICIENT_DATA, "Indicator calculation failed, not enough 15m data for ATR.")
        bar_range = bundle.data_15m[0].range
        mult = self.cfg.volatility_spike_mult
        if bar_range > atr_15m * mult:
            return Vetoed(
                VetoKind.VOLATILITY_SPIKE,
                f"VETO: Volatility spike detected. 15m range ({bar_range:.2f}) > {mult}x ATR ({atr_15m:.2f}). Market unsafe.",
                {"atr_15m": atr_15m},
            )
        return None

    def daily_bias(self, snapshot: Mapping[str, Any]) -> Optional[str]:
        flag = snapshot.get("daily_price_above_ema_200")
        if flag is None:
            return None
        return "Up" if flag else "Down"

    def emit(
        self,
        bundle: CandleBundle,
        pivots: PivotSet,
        snapshot: Mapping[str, Any],
        *,
        direction: str,
        confidence: float,
        price: float,
        reason: str,
        signal_type: Optional[str] = None,
        sl_pips: Optional[int] = None,
        tp_pips: Optional[int] = None,
        sl_price: Optional[float] = None,
        tp_price: Optional[float] = None,
        indicators: Optional[Dict[str, Any]] = None,
    ) -> Signal:
        merged = dict(snapshot)
        merged.update(indicators or {})
        confidence = min(1.0, max(0.0, confidence))
        self.log.debug(
            "signal symbol=%s side=%s conf=%.2f type=%s price=%s",
            bundle.symbol, direction, confidence, signal_type or self.signal_type, price,
        )
        return Signal(
            symbol=bundle.symbol,
            direction=direction,
            confidence=confidence,
            signal_type=signal_type or self.signal_type,
            price=price,
            reason=reason,
            recommended_sl_pips=sl_pips,
            recommended_tp_pips=tp_pips,
            recommended_sl_price=sl_price,
            recommended_tp_price=tp_price,
            indicators=merged,
            sr_data=pivots,
            meta=dict(bundle.meta),
        )
