import math
import random

import pytest

from confluence_signal_bot.indicators import (
    RSI_NEUTRAL,
    adx,
    atr,
    atr_percentile,
    bollinger_bands,
    ema,
    find_fvgs,
    rsi,
    rsi_series,
    stoch_rsi,
    vwap,
)
from confluence_signal_bot.models import Candle

from builders import series


def _c(idx: int, o: float, h: float, l: float, c: float, v=None, typical=None) -> Candle:
    return Candle(time=idx * 900, open=o, high=h, low=l, close=c, volume=v, typical=typical)


def _newest_first(candles):
    return tuple(reversed(candles))


def test_rsi_strictly_rising_is_100():
    assert rsi(series([float(i) for i in range(1, 40)])) == pytest.approx(100.0)


def test_rsi_strictly_falling_is_0():
    assert rsi(series([float(i) for i in range(40, 1, -1)])) == pytest.approx(0.0)


def test_rsi_insufficient_data_is_neutral():
    assert rsi(series([1.0] * 14), 14) == RSI_NEUTRAL
    assert rsi_series(series([1.0] * 14), 14) == []


def test_rsi_stays_in_bounds_on_random_walk():
    rng = random.Random(7)
    closes = [100.0]
    for _ in range(300):
        closes.append(closes[-1] + rng.uniform(-1, 1))
    values = rsi_series(series(closes))
    assert values
    assert all(0.0 <= v <= 100.0 for v in values)


def test_atr_constant_spread():
    # high - low = 1.0 on every bar, closes flat
    assert atr(series([50.0] * 30, spread=0.5)) == pytest.approx(1.0)


def test_atr_insufficient_is_none():
    assert atr(series([50.0] * 14), 14) is None


def test_atr_never_negative():
    rng = random.Random(3)
    closes = [10.0 + rng.uniform(-2, 2) for _ in range(60)]
    assert atr(series(closes, spread=0.2)) >= 0.0


def test_ema_of_constant_is_constant():
    assert ema(series([3.5] * 40), 21) == pytest.approx(3.5)


def test_ema_seeded_by_sma_and_uses_newest_first_input():
    # seed = mean(1, 2, 3) = 2, k = 0.5, then 4 -> 3 ... 10 -> 9
    assert ema(series([float(i) for i in range(1, 11)]), 3) == pytest.approx(9.0)
    assert ema(series([1.0, 2.0]), 3) is None


def test_bollinger_population_std():
    bands = bollinger_bands(series([1.0, 2.0, 3.0, 4.0]), period=4, std_dev=2.0)
    sd = math.sqrt(1.25)
    assert bands.middle == pytest.approx(2.5)
    assert bands.upper == pytest.approx(2.5 + 2 * sd)
    assert bands.lower == pytest.approx(2.5 - 2 * sd)


def test_bollinger_uses_latest_window_only():
    bands = bollinger_bands(series([100.0] * 10 + [5.0] * 20), period=20)
    assert bands.upper == bands.middle == bands.lower == pytest.approx(5.0)
    assert bollinger_bands(series([1.0] * 19), period=20) is None


def test_adx_steady_uptrend():
    candles = _newest_first([_c(i, i, i + 0.5, i - 0.5, float(i)) for i in range(1, 60)])
    out = adx(candles, 14)
    assert out.minus_di == pytest.approx(0.0)
    assert out.plus_di > 60
    assert out.adx == pytest.approx(100.0)


def test_adx_needs_two_periods():
    assert adx(series([1.0] * 27), 14) is None
    assert adx(series([1.0] * 28), 14) is not None


def test_stoch_rsi_flat_range_reads_zero():
    out = stoch_rsi(series([10.0] * 60))
    assert out.k == pytest.approx(0.0)
    assert out.d == pytest.approx(0.0)


def test_stoch_rsi_insufficient_is_none():
    assert stoch_rsi(series([10.0] * 20)) is None


def test_vwap_cumulative():
    candles = _newest_first([
        _c(0, 10, 11, 9, 10, v=1.0, typical=10.0),
        _c(1, 20, 21, 19, 20, v=3.0, typical=20.0),
    ])
    assert vwap(candles) == pytest.approx(17.5)


def test_vwap_missing_volume_or_zero_volume_is_none():
    assert vwap(series([10.0] * 5)) is None
    assert vwap(series([10.0] * 5, volume=0.0)) is None
    assert vwap(()) is None


def test_find_fvgs_bullish_open_then_filled():
    c1 = _c(0, 9.5, 10.0, 9.0, 9.8)
    c2 = _c(1, 10.0, 12.0, 10.0, 11.5)
    c3 = _c(2, 11.5, 13.0, 11.0, 12.5)
    gaps = find_fvgs(_newest_first([c1, c2, c3]))
    assert len(gaps.bullish) == 1
    gap = gaps.bullish[0]
    assert (gap.top, gap.bottom, gap.time, gap.filled) == (11.0, 10.0, c3.time, False)
    assert gaps.bearish == ()

    c4 = _c(3, 12.0, 12.5, 9.9, 10.2)
    gaps = find_fvgs(_newest_first([c1, c2, c3, c4]))
    assert gaps.bullish[0].filled is True


def test_find_fvgs_bearish():
    c1 = _c(0, 13.0, 14.0, 12.0, 12.5)
    c2 = _c(1, 12.0, 12.0, 10.0, 10.5)
    c3 = _c(2, 10.5, 11.0, 9.0, 9.5)
    gaps = find_fvgs(_newest_first([c1, c2, c3]))
    assert len(gaps.bearish) == 1
    assert (gaps.bearish[0].top, gaps.bearish[0].bottom) == (12.0, 11.0)
    assert gaps.bearish[0].filled is False


def test_atr_percentile_rank():
    history = [float(i) for i in range(1, 21)]
    assert atr_percentile(10.5, history) == pytest.approx(0.5)
    assert atr_percentile(0.5, history) == pytest.approx(0.0)
    assert atr_percentile(99.0, history) == pytest.approx(1.0)


def test_atr_percentile_needs_history():
    assert atr_percentile(1.0, [1.0] * 19) is None
    assert atr_percentile(None, [1.0] * 30) is None
