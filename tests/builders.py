from typing import Optional, Sequence

from confluence_signal_bot.models import Candle, CandleBundle

# 2024-01-02 08:00 UTC
T_0800 = 1704182400


def series(closes: Sequence[float], *, spread: float = 0.5, end: int = T_0800, step: int = 900, volume: Optional[float] = None):
    """Chronological closes in, newest-first candles out. Constant spread keeps TR = 2 * spread."""
    n = len(closes)
    out = []
    for i, c in enumerate(closes):
        out.append(
            Candle(
                time=end - (n - 1 - i) * step,
                open=c,
                high=c + spread,
                low=c - spread,
                close=c,
                volume=volume,
                typical=c if volume is not None else None,
            )
        )
    return tuple(reversed(out))


def bundle(
    symbol: str = "XAUUSD",
    *,
    price: float = 100.0,
    n15: int = 60,
    n1h: int = 60,
    n4h: int = 60,
    ndaily: int = 0,
    daily_up: bool = True,
    hist_atr_4h=(),
    volume: Optional[float] = None,
    end: int = T_0800,
    data_15m=None,
    data_1h=None,
    meta=None,
) -> CandleBundle:
    if ndaily:
        step = 0.1 if daily_up else -0.1
        daily = series([price - step * (ndaily - 1 - i) for i in range(ndaily)], end=end, step=86400)
    else:
        daily = ()
    return CandleBundle(
        symbol=symbol,
        data_5m=series([price] * 30, end=end, step=300, volume=volume),
        data_15m=data_15m if data_15m is not None else series([price] * n15, end=end, volume=volume),
        data_1h=data_1h if data_1h is not None else series([price] * n1h, end=end, step=3600, volume=volume),
        data_4h=series([price] * n4h, end=end, step=14400),
        data_daily=daily,
        hist_atr_4h=tuple(hist_atr_4h),
        meta=dict(meta or {"symbol": symbol}),
    )


