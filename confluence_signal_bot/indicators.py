"""Indicator library.

Every function takes a candle sequence ordered newest-first (the order the
provider delivers) and works internally on the chronological order. Short
input never raises: RSI falls back to the neutral 50, everything else to None.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import math

from .models import Candle

RSI_NEUTRAL = 50.0


def ema_next(prev_ema: Optional[float], x: float, length: int) -> float:
    if length <= 1:
        return x
    alpha = 2.0 / (length + 1.0)
    return x if prev_ema is None else (alpha * x + (1.0 - alpha) * prev_ema)


def rma_next(prev: Optional[float], x: float, length: int) -> float:
    """Wilder's smoothing step: (prev * (n - 1) + x) / n."""
    if length <= 1:
        return x
    if prev is None:
        return x
    alpha = 1.0 / float(length)
    return prev + alpha * (x - prev)


def sma(values: List[float], length: int) -> Optional[float]:
    if length <= 0 or len(values) < length:
        return None
    return sum(values[-length:]) / float(length)


def _rolling_sma(values: List[float], length: int) -> List[float]:
    if length <= 0 or len(values) < length:
        return []
    return [sum(values[i - length + 1: i + 1]) / float(length) for i in range(length - 1, len(values))]


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def _chrono(candles: Sequence[Candle]) -> List[Candle]:
    return list(reversed(candles))


def _rsi_value(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return 100.0 - (100.0 / (1.0 + rs))


def rsi_series(candles: Sequence[Candle], period: int = 14) -> List[float]:
    """Wilder RSI, chronological. Empty when fewer than period + 1 candles."""
    if period <= 0 or len(candles) < period + 1:
        return []
    closes = [c.close for c in _chrono(candles)]
    gains = 0.0
    losses = 0.0
    for i in range(1, period + 1):
        ch = closes[i] - closes[i - 1]
        if ch >= 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / period
    avg_loss = losses / period
    out = [_rsi_value(avg_gain, avg_loss)]
    for i in range(period + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        avg_gain = rma_next(avg_gain, ch if ch > 0 else 0.0, period)
        avg_loss = rma_next(avg_loss, -ch if ch < 0 else 0.0, period)
        out.append(_rsi_value(avg_gain, avg_loss))
    return out


def rsi(candles: Sequence[Candle], period: int = 14) -> float:
    values = rsi_series(candles, period)
    return values[-1] if values else RSI_NEUTRAL


def atr_series(candles: Sequence[Candle], period: int = 14) -> List[float]:
    """Wilder ATR with SMA seed at first full window, chronological."""
    if period <= 0 or len(candles) < period + 1:
        return []
    chrono = _chrono(candles)
    trs = [true_range(c.high, c.low, chrono[i - 1].close) for i, c in enumerate(chrono) if i > 0]
    val = sum(trs[:period]) / float(period)
    out = [val]
    for tr in trs[period:]:
        val = rma_next(val, tr, period)
        out.append(val)
    return out


def atr(candles: Sequence[Candle], period: int = 14) -> Optional[float]:
    values = atr_series(candles, period)
    return values[-1] if values else None


def ema_series(candles: Sequence[Candle], period: int) -> List[float]:
    if period <= 0 or len(candles) < period:
        return []
    closes = [c.close for c in _chrono(candles)]
    val = sum(closes[:period]) / float(period)
    out = [val]
    for x in closes[period:]:
        val = ema_next(val, x, period)
        out.append(val)
    return out


def ema(candles: Sequence[Candle], period: int) -> Optional[float]:
    values = ema_series(candles, period)
    return values[-1] if values else None


@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


def bollinger_bands(candles: Sequence[Candle], period: int = 20, std_dev: float = 2.0) -> Optional[BollingerBands]:
    if period <= 0 or len(candles) < period:
        return None
    window = [c.close for c in candles[:period]]
    mean = sum(window) / period
    sd = math.sqrt(sum((x - mean) ** 2 for x in window) / period)
    return BollingerBands(upper=mean + std_dev * sd, middle=mean, lower=mean - std_dev * sd)


@dataclass(frozen=True)
class Adx:
    adx: float
    plus_di: float
    minus_di: float


def _directional(s_tr: float, s_plus: float, s_minus: float) -> Tuple[float, float, float]:
    plus_di = 0.0 if s_tr == 0 else 100.0 * s_plus / s_tr
    minus_di = 0.0 if s_tr == 0 else 100.0 * s_minus / s_tr
    di_sum = plus_di + minus_di
    dx = 0.0 if di_sum == 0 else 100.0 * abs(plus_di - minus_di) / di_sum
    return plus_di, minus_di, dx


def adx(candles: Sequence[Candle], period: int = 14) -> Optional[Adx]:
    if period <= 0 or len(candles) < 2 * period:
        return None
    chrono = _chrono(candles)
    trs: List[float] = []
    plus_dm: List[float] = []
    minus_dm: List[float] = []
    for i in range(1, len(chrono)):
        c, p = chrono[i], chrono[i - 1]
        trs.append(true_range(c.high, c.low, p.close))
        up = c.high - p.high
        down = p.low - c.low
        plus_dm.append(up if (up > down and up > 0) else 0.0)
        minus_dm.append(down if (down > up and down > 0) else 0.0)

    # Wilder running sums; the DI ratios are the same as with averaged smoothing.
    s_tr = sum(trs[:period])
    s_plus = sum(plus_dm[:period])
    s_minus = sum(minus_dm[:period])
    dis = [_directional(s_tr, s_plus, s_minus)]
    for i in range(period, len(trs)):
        s_tr = s_tr - s_tr / period + trs[i]
        s_plus = s_plus - s_plus / period + plus_dm[i]
        s_minus = s_minus - s_minus / period + minus_dm[i]
        dis.append(_directional(s_tr, s_plus, s_minus))

    dxs = [d[2] for d in dis]
    if len(dxs) < period:
        return None
    adx_val = sum(dxs[:period]) / float(period)
    for dx in dxs[period:]:
        adx_val = rma_next(adx_val, dx, period)
    plus_di, minus_di, _ = dis[-1]
    return Adx(adx=adx_val, plus_di=plus_di, minus_di=minus_di)


@dataclass(frozen=True)
class StochRsi:
    k: float
    d: Optional[float]


def stoch_rsi(
    candles: Sequence[Candle],
    rsi_period: int = 14,
    stoch_period: int = 14,
    k_smooth: int = 3,
    d_smooth: int = 3,
) -> Optional[StochRsi]:
    rsis = rsi_series(candles, rsi_period)
    if stoch_period <= 0 or len(rsis) < stoch_period:
        return None
    fast_k: List[float] = []
    for i in range(stoch_period - 1, len(rsis)):
        window = rsis[i - stoch_period + 1: i + 1]
        lo, hi = min(window), max(window)
        fast_k.append(100.0 * (rsis[i] - lo) / (hi - lo) if hi - lo > 0 else 0.0)
    slow_k = _rolling_sma(fast_k, k_smooth)
    if not slow_k:
        return None
    slow_d = _rolling_sma(slow_k, d_smooth)
    return StochRsi(k=slow_k[-1], d=slow_d[-1] if slow_d else None)


def vwap(candles: Sequence[Candle]) -> Optional[float]:
    """Cumulative typical*volume / volume over the whole window.

    None when the newest candle carries no volume or typical price, which is
    the normal state for providers without volume data.
    """
    if not candles:
        return None
    newest = candles[0]
    if newest.volume is None or newest.typical is None:
        return None
    cum_pv = 0.0
    cum_vol = 0.0
    for c in _chrono(candles):
        if c.volume is None or c.typical is None:
            continue
        cum_pv += c.typical * c.volume
        cum_vol += c.volume
    if cum_vol == 0:
        return None
    return cum_pv / cum_vol


@dataclass(frozen=True)
class FairValueGap:
    direction: str  # bullish | bearish
    top: float
    bottom: float
    time: int
    filled: bool = False


@dataclass(frozen=True)
class FairValueGaps:
    bullish: Tuple[FairValueGap, ...] = ()
    bearish: Tuple[FairValueGap, ...] = ()


def find_fvgs(candles: Sequence[Candle]) -> FairValueGaps:
    """3-candle imbalances, newest gap first.

    A gap counts as filled once a later candle trades back to its far edge.
    """
    bullish: List[FairValueGap] = []
    bearish: List[FairValueGap] = []
    for i in range(len(candles) - 2):
        newest = candles[i]
        oldest = candles[i + 2]
        later = candles[:i]
        if oldest.high < newest.low:
            bottom = oldest.high
            filled = any(c.low <= bottom for c in later)
            bullish.append(FairValueGap("bullish", top=newest.low, bottom=bottom, time=newest.time, filled=filled))
        if oldest.low > newest.high:
            top = oldest.low
            filled = any(c.high >= top for c in later)
            bearish.append(FairValueGap("bearish", top=top, bottom=newest.high, time=newest.time, filled=filled))
    return FairValueGaps(bullish=tuple(bullish), bearish=tuple(bearish))


def atr_percentile(current: Optional[float], history: Sequence[float], min_history: int = 20) -> Optional[float]:
    """Percentile rank (0..1) of the current ATR within its rolling history."""
    if current is None or history is None or len(history) < min_history or len(history) == 0:
        return None
    ordered = sorted(history)
    rank = next((i for i, v in enumerate(ordered) if v >= current), len(ordered))
    return rank / float(len(ordered))
