"""Pure indicator math over ordered float lists (oldest first).

Every function returns a finite float for well-formed input and falls back to a
defined value on short input instead of raising. ``compute_indicator_set`` is
the one place that refuses short data, by raising InsufficientDataError.
"""
from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

from .config import StrategyConfig
from .errors import InsufficientDataError
from .models import Candle, IndicatorSet


def _finite(x: float, default: float = 0.0) -> float:
    try:
        x = float(x)
    except (TypeError, ValueError):
        return default
    return x if math.isfinite(x) else default


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, x))


def sma(values: Sequence[float], length: int) -> float:
    if not values:
        return 0.0
    if length <= 0 or len(values) < length:
        return float(values[-1])
    return sum(values[-length:]) / float(length)


def ema_next(prev_ema: Optional[float], x: float, length: int) -> float:
    if length <= 1:
        return x
    alpha = 2.0 / (length + 1.0)
    return x if prev_ema is None else (alpha * x + (1.0 - alpha) * prev_ema)


def ema_series(values: Sequence[float], length: int) -> List[Optional[float]]:
    """EMA seeded with the SMA of the first ``length`` values; None before the seed."""
    n = len(values)
    out: List[Optional[float]] = [None] * n
    if length <= 0 or n < length:
        return out
    prev = sum(values[:length]) / float(length)
    out[length - 1] = prev
    for i in range(length, n):
        prev = ema_next(prev, values[i], length)
        out[i] = prev
    return out


def ema(values: Sequence[float], length: int) -> float:
    if not values:
        return 0.0
    last = ema_series(values, length)[-1]
    return float(values[-1]) if last is None else last


def rsi(closes: Sequence[float], length: int = 14) -> float:
    if length <= 0 or len(closes) < length + 1:
        return 50.0
    # Wilder's smoothing
    gains = 0.0
    losses = 0.0
    for i in range(1, length + 1):
        ch = closes[i] - closes[i - 1]
        if ch >= 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / length
    avg_loss = losses / length
    for i in range(length + 1, len(closes)):
        ch = closes[i] - closes[i - 1]
        avg_gain = (avg_gain * (length - 1) + max(ch, 0.0)) / length
        avg_loss = (avg_loss * (length - 1) + max(-ch, 0.0)) / length
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return _clamp(100.0 - (100.0 / (1.0 + rs)))


def macd(closes: Sequence[float], fast: int = 12, slow: int = 26, signal: int = 9) -> Tuple[float, float, float]:
    """Returns (macd, signal, histogram); signal is the EMA of the MACD line itself."""
    fast_s = ema_series(closes, fast)
    slow_s = ema_series(closes, slow)
    line = [f - s for f, s in zip(fast_s, slow_s) if f is not None and s is not None]
    if not line:
        return 0.0, 0.0, 0.0
    sig = ema(line, signal)
    return line[-1], sig, line[-1] - sig


def stdev(values: Sequence[float]) -> float:
    """Population standard deviation; 0.0 for fewer than two values."""
    n = len(values)
    if n < 2:
        return 0.0
    m = sum(values) / n
    return math.sqrt(sum((v - m) * (v - m) for v in values) / n)


def bollinger_bands(closes: Sequence[float], length: int = 20, k: float = 2.0) -> Tuple[float, float, float]:
    """Returns (upper, middle, lower)."""
    if not closes:
        return 0.0, 0.0, 0.0
    mid = sma(closes, length)
    window = closes[-length:] if length > 0 else closes
    dev = k * stdev(window)
    return mid + dev, mid, mid - dev


def _stoch_k_at(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], i: int, length: int) -> float:
    a = max(0, i - length + 1)
    hh = max(highs[a:i + 1])
    ll = min(lows[a:i + 1])
    if hh == ll:
        return 50.0
    return _clamp(100.0 * (closes[i] - ll) / (hh - ll))


def stochastic(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    length: int = 14,
    d_len: int = 3,
) -> Tuple[float, float]:
    """Returns (%K, %D) with %D the SMA of the last ``d_len`` %K values."""
    n = len(closes)
    if length <= 0 or n < length:
        return 50.0, 50.0
    ks = [_stoch_k_at(highs, lows, closes, i, length) for i in range(max(length - 1, n - max(1, d_len)), n)]
    return ks[-1], _clamp(sma(ks, d_len))


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def atr(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], length: int = 14) -> float:
    if not closes:
        return 0.0
    if length <= 0 or len(closes) < length + 1:
        return float(highs[-1] - lows[-1])
    trs = []
    for i in range(-length, 0):
        tr = true_range(highs[i], lows[i], closes[i - 1])
        trs.append(tr)
    return sum(trs) / length


def _di(dm: float, tr: float) -> float:
    return 0.0 if tr <= 0 else _clamp(100.0 * dm / tr)


def _dx(plus_di: float, minus_di: float) -> float:
    total = plus_di + minus_di
    return 0.0 if total <= 0 else 100.0 * abs(plus_di - minus_di) / total


def adx(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], length: int = 14) -> Tuple[float, float, float]:
    """Wilder ADX. Returns (adx, +DI, -DI), each in [0, 100]."""
    n = len(closes)
    if length <= 0 or n < 2 * length + 1:
        return 0.0, 0.0, 0.0

    plus_dm: List[float] = []
    minus_dm: List[float] = []
    trs: List[float] = []
    for i in range(1, n):
        up = highs[i] - highs[i - 1]
        dn = lows[i - 1] - lows[i]
        plus_dm.append(up if (up > dn and up > 0) else 0.0)
        minus_dm.append(dn if (dn > up and dn > 0) else 0.0)
        trs.append(true_range(highs[i], lows[i], closes[i - 1]))

    s_tr = sum(trs[:length])
    s_p = sum(plus_dm[:length])
    s_m = sum(minus_dm[:length])
    plus_di = _di(s_p, s_tr)
    minus_di = _di(s_m, s_tr)
    dxs = [_dx(plus_di, minus_di)]
    for i in range(length, len(trs)):
        s_tr = s_tr - s_tr / length + trs[i]
        s_p = s_p - s_p / length + plus_dm[i]
        s_m = s_m - s_m / length + minus_dm[i]
        plus_di = _di(s_p, s_tr)
        minus_di = _di(s_m, s_tr)
        dxs.append(_dx(plus_di, minus_di))

    adx_val = sum(dxs[:length]) / float(length)
    for x in dxs[length:]:
        adx_val = (adx_val * (length - 1) + x) / length
    return _clamp(adx_val), plus_di, minus_di


def pct_returns(closes: Sequence[float]) -> List[float]:
    out = []
    for i in range(1, len(closes)):
        prev = closes[i - 1]
        out.append(0.0 if prev == 0 else (closes[i] - prev) / prev)
    return out


def volatility_expansion(returns: Sequence[float], recent: int, prior: int) -> float:
    """stdev of the last ``recent`` returns over stdev of the ``prior`` returns before them."""
    if recent <= 0 or prior <= 0 or len(returns) < 2:
        return 1.0
    recent_w = returns[-recent:]
    prior_w = returns[-(recent + prior):-recent] if len(returns) > recent else []
    sd_prior = stdev(prior_w)
    if sd_prior == 0:
        return 1.0
    return stdev(recent_w) / sd_prior


def highest(values: Sequence[float], length: int) -> float:
    if not values:
        return 0.0
    return max(values[-length:]) if length > 0 else float(values[-1])


def lowest(values: Sequence[float], length: int) -> float:
    if not values:
        return 0.0
    return min(values[-length:]) if length > 0 else float(values[-1])


def volume_ratio(volumes: Sequence[float], length: int) -> float:
    """Last volume over the mean of the ``length`` volumes before it."""
    if len(volumes) < 2:
        return 1.0
    avg = sma(volumes[:-1], length)
    if avg <= 0:
        return 1.0
    return volumes[-1] / avg


def compute_indicator_set(candles: Sequence[Candle], cfg: StrategyConfig, *, symbol: str = "?") -> IndicatorSet:
    need = cfg.required_lookback()
    if len(candles) < need:
        raise InsufficientDataError(symbol, len(candles), need)

    closes = [c.close for c in candles]
    highs = [c.high for c in candles]
    lows = [c.low for c in candles]
    volumes = [c.volume for c in candles]
    last = closes[-1]

    ema_s = ema_series(closes, cfg.fast_ema)
    ema_now = ema_s[-1]
    ema_prev = ema_s[-1 - cfg.slope_lookback]
    macd_line, macd_sig, macd_hist = macd(closes, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
    bb_up, bb_mid, bb_lo = bollinger_bands(closes, cfg.bb_len, cfg.bb_k)
    k, d = stochastic(highs, lows, closes, cfg.stoch_len, cfg.stoch_d)
    adx_val, plus_di, minus_di = adx(highs, lows, closes, cfg.adx_len)

    return IndicatorSet(
        close=last,
        sma_n=_finite(sma(closes, cfg.slow_sma), last),
        ema_n=_finite(ema_now, last),
        ema_prev=_finite(ema_prev, last),
        rsi=_finite(rsi(closes, cfg.rsi_len), 50.0),
        macd=_finite(macd_line),
        macd_signal=_finite(macd_sig),
        macd_hist=_finite(macd_hist),
        bb_upper=_finite(bb_up, last),
        bb_middle=_finite(bb_mid, last),
        bb_lower=_finite(bb_lo, last),
        stoch_k=_finite(k, 50.0),
        stoch_d=_finite(d, 50.0),
        atr=_finite(atr(highs, lows, closes, cfg.atr_len)),
        adx=_finite(adx_val),
        plus_di=_finite(plus_di),
        minus_di=_finite(minus_di),
        volume_ratio=_finite(volume_ratio(volumes, cfg.volume_period), 1.0),
        vol_expansion=_finite(volatility_expansion(pct_returns(closes), cfg.vol_recent, cfg.vol_prior), 1.0),
        recent_high=_finite(highest(highs[:-1], cfg.breakout_len), last),
        recent_low=_finite(lowest(lows[:-1], cfg.breakout_len), last),
    )
