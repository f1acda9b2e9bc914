from __future__ import annotations
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

log = logging.getLogger("models")

BUY = "buy"
SELL = "sell"
FLAT = "flat"
DIRECTIONS = (BUY, SELL, FLAT)

TIMEFRAMES = ("5m", "15m", "1h", "4h", "1day")


class WiringError(ValueError):
    """Inputs of the wrong shape reached the core (broken wiring, not a market condition)."""


class VetoKind(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    MISSING_FIELD = "missing_field"
    VOLATILITY_SPIKE = "volatility_spike"
    NO_SETUP = "no_setup"
    REGIME = "regime"
    CONFIDENCE_FLOOR = "confidence_floor"
    NO_TARGET = "no_target"
    AGGREGATION_ERROR = "aggregation_error"
    EVALUATION_ERROR = "evaluation_error"


def resolve_pip_size(symbol: Optional[str], meta: Optional[Mapping[str, Any]] = None) -> float:
    pip = (meta or {}).get("pip_size")
    if pip is not None:
        try:
            pip = float(pip)
        except (TypeError, ValueError):
            pip = None
    if pip is not None and pip > 0:
        return pip
    sym = (symbol or "").upper()
    if "JPY" in sym or "XAU" in sym:
        return 0.01
    return 0.0001


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _parse_time(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    s = str(value).strip()
    if s.lstrip("-").isdigit():
        return int(s)
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


@dataclass(frozen=True)
class Candle:
    time: int  # epoch seconds, UTC
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None
    typical: Optional[float] = None

    def with_typical(self) -> "Candle":
        if self.typical is not None:
            return self
        return Candle(
            time=self.time,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
            typical=(self.high + self.low + self.close) / 3.0,
        )

    @property
    def range(self) -> float:
        return self.high - self.low

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Candle":
        # Provider payloads quote prices as strings.
        return cls(
            time=_parse_time(raw.get("time", raw.get("datetime"))),
            open=float(raw["open"]),
            high=float(raw["high"]),
            low=float(raw["low"]),
            close=float(raw["close"]),
            volume=_opt_float(raw.get("volume")),
            typical=_opt_float(raw.get("typical")),
        )


def _series(raw: Optional[Sequence[Any]], symbol: str, tf: str) -> Tuple[Candle, ...]:
    out: List[Candle] = []
    for c in raw or ():
        try:
            out.append(c if isinstance(c, Candle) else Candle.from_dict(c))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            log.warning("bad_candle symbol=%s tf=%s err=%s", symbol, tf, e)
    return tuple(out)


def _floats(raw: Optional[Sequence[Any]], symbol: str) -> Tuple[float, ...]:
    out: List[float] = []
    for x in raw or ():
        if x is None:
            continue
        try:
            out.append(float(x))
        except (TypeError, ValueError):
            log.warning("bad_hist_atr symbol=%s value=%r", symbol, x)
    return tuple(out)


@dataclass(frozen=True)
class CandleBundle:
    """One symbol's synchronized candle series, newest candle first in every series."""

    symbol: str
    data_5m: Tuple[Candle, ...] = ()
    data_15m: Tuple[Candle, ...] = ()
    data_1h: Tuple[Candle, ...] = ()
    data_4h: Tuple[Candle, ...] = ()
    data_daily: Tuple[Candle, ...] = ()
    hist_atr_4h: Tuple[float, ...] = ()  # chronological
    meta: Dict[str, Any] = field(default_factory=dict)

    def series(self, timeframe: str) -> Tuple[Candle, ...]:
        return {
            "5m": self.data_5m,
            "15m": self.data_15m,
            "1h": self.data_1h,
            "4h": self.data_4h,
            "1day": self.data_daily,
        }[timeframe]

    @property
    def pip_size(self) -> float:
        return resolve_pip_size(self.symbol, self.meta)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CandleBundle":
        meta = dict(raw.get("meta") or {})
        symbol = raw.get("symbol") or meta.get("symbol") or "UNKNOWN"
        meta.setdefault("symbol", symbol)
        return cls(
            symbol=symbol,
            data_5m=_series(raw.get("data_5m"), symbol, "5m"),
            data_15m=_series(raw.get("data_15m"), symbol, "15m"),
            data_1h=_series(raw.get("data_1h"), symbol, "1h"),
            data_4h=_series(raw.get("data_4h"), symbol, "4h"),
            data_daily=_series(raw.get("data_daily"), symbol, "1day"),
            hist_atr_4h=_floats(raw.get("hist_atr_4h"), symbol),
            meta=meta,
        )


_PIVOT_KEYS = ("p", "r1", "r2", "r3", "s1", "s2", "s3")


@dataclass(frozen=True)
class PivotSet:
    p: Optional[float] = None
    r1: Optional[float] = None
    r2: Optional[float] = None
    r3: Optional[float] = None
    s1: Optional[float] = None
    s2: Optional[float] = None
    s3: Optional[float] = None
    pdh: Optional[float] = None
    pdl: Optional[float] = None
    pdc: Optional[float] = None

    @property
    def has_pivots(self) -> bool:
        return any(getattr(self, k) is not None for k in _PIVOT_KEYS)

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> "PivotSet":
        raw = raw or {}
        piv = raw.get("pivots") or {}

        def level(src: Mapping[str, Any], key: str) -> Optional[float]:
            v = src.get(key)
            if v is None:
                v = src.get(key.upper())
            try:
                return _opt_float(v)
            except (TypeError, ValueError):
                log.warning("bad_pivot key=%s value=%r", key, v)
                return None

        kwargs = {k: level(piv, k) for k in _PIVOT_KEYS}
        for k in ("pdh", "pdl", "pdc"):
            kwargs[k] = level(raw, k)
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pivots": {k: getattr(self, k) for k in _PIVOT_KEYS},
            "pdh": self.pdh,
            "pdl": self.pdl,
            "pdc": self.pdc,
        }


@dataclass(frozen=True)
class Signal:
    symbol: str
    direction: str  # buy | sell | flat
    confidence: float = 0.0
    signal_type: str = "none"
    price: Optional[float] = None
    reason: str = ""
    recommended_sl_pips: Optional[float] = None
    recommended_tp_pips: Optional[float] = None
    recommended_sl_price: Optional[float] = None
    recommended_tp_price: Optional[float] = None
    sl_price: Optional[float] = None
    tp_price: Optional[float] = None
    regime: Optional[str] = None
    indicators: Dict[str, Any] = field(default_factory=dict)
    sr_data: Optional[PivotSet] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.direction not in DIRECTIONS:
            raise ValueError(f"invalid direction {self.direction!r}")
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError(f"confidence out of range: {self.confidence}")
        if self.direction == FLAT and self.confidence != 0.0:
            raise ValueError("flat signal must carry zero confidence")

    @property
    def is_flat(self) -> bool:
        return self.direction == FLAT

    @property
    def veto(self) -> Optional[str]:
        return self.meta.get("veto")

    @classmethod
    def flat(
        cls,
        symbol: str,
        reason: str,
        *,
        veto: Optional[VetoKind] = None,
        signal_type: str = "none",
        price: Optional[float] = None,
        regime: Optional[str] = None,
        indicators: Optional[Dict[str, Any]] = None,
        sr_data: Optional[PivotSet] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> "Signal":
        m = dict(meta or {})
        if veto is not None:
            m["veto"] = VetoKind(veto).value
        return cls(
            symbol=symbol,
            direction=FLAT,
            confidence=0.0,
            signal_type=signal_type,
            price=price,
            reason=reason,
            regime=regime,
            indicators=dict(indicators or {}),
            sr_data=sr_data,
            meta=m,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["sr_data"] = self.sr_data.to_dict() if self.sr_data is not None else None
        return out
