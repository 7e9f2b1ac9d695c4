"""Synthetic candle series shared by the tests."""
from __future__ import annotations

import random
from typing import List

from signal_scanner.models import Candle

BASE_MS = 1_600_000_000_000
STEP_MS = 15 * 60_000


def _c(idx: int, o: float, h: float, l: float, c: float, v: float = 1000.0) -> Candle:
    return Candle(timestamp_ms=BASE_MS + idx * STEP_MS, open=o, high=h, low=l, close=c, volume=v)


def uptrend_breakout(n: int = 250, step: float = 0.4, jump: float = 3.4, spike: float = 3.0) -> List[Candle]:
    """Steady climb, then a final wide-range bar closing above recent highs on heavy volume."""
    out = []
    for i in range(n - 1):
        c = 100.0 + step * i
        o = c - step
        out.append(_c(i, o, c + 1.0, o - 1.0, c))
    prev = out[-1].close
    c = prev + jump
    out.append(_c(n - 1, prev, c + 1.0, prev - 1.0, c, 1000.0 * spike))
    return out


def downtrend_breakdown(n: int = 250, step: float = 0.4, drop: float = 3.0, spike: float = 3.0) -> List[Candle]:
    out = []
    for i in range(n - 1):
        c = 200.0 - step * i
        o = c + step
        out.append(_c(i, o, o + 1.0, c - 1.0, c))
    prev = out[-1].close
    c = prev - drop
    out.append(_c(n - 1, prev, prev + 1.0, c - 1.0, c, 1000.0 * spike))
    return out


def flat(n: int = 250, price: float = 100.0) -> List[Candle]:
    return [_c(i, price, price + 0.5, price - 0.5, price) for i in range(n)]


def random_walk(n: int = 250, seed: int = 7, start: float = 100.0) -> List[Candle]:
    rng = random.Random(seed)
    out = []
    price = start
    for i in range(n):
        o = price
        c = max(0.01, o * (1.0 + rng.uniform(-0.02, 0.02)))
        h = max(o, c) * (1.0 + rng.uniform(0.0, 0.01))
        l = min(o, c) * (1.0 - rng.uniform(0.0, 0.01))
        out.append(_c(i, o, h, l, c, rng.uniform(10.0, 5000.0)))
        price = c
    return out


def crossover_rally(base_bars: int = 220, dip_bars: int = 24, rally_bars: int = 6, spike: float = 3.0) -> List[Candle]:
    """Quiet range at 100, a dip to 99 that drags the fast EMA under the slow SMA,
    then a short rally that carries it back above on the final bars."""
    out = []
    i = 0
    for level, bars in ((100.0, base_bars), (99.0, dip_bars)):
        for _ in range(bars):
            c = level + (0.05 if i % 2 else -0.05)
            out.append(_c(i, c, c + 0.5, c - 0.5, c))
            i += 1
    prev = out[-1].close
    for k in range(1, rally_bars + 1):
        c = 99.0 + k
        v = 1000.0 * spike if k == rally_bars else 1000.0
        out.append(_c(i, prev, c + 0.5, min(prev, c) - 0.5, c, v))
        prev = c
        i += 1
    return out
