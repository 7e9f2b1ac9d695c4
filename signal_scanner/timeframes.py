from __future__ import annotations

from typing import Dict

# Bybit v5 kline interval codes by bar length in minutes.
BYBIT_INTERVALS: Dict[int, str] = {
    1: "1",
    3: "3",
    5: "5",
    15: "15",
    30: "30",
    60: "60",
    120: "120",
    240: "240",
    360: "360",
    720: "720",
    1440: "D",
}


def tf_minutes(tf: str) -> int:
    tf = (tf or "").strip().lower()
    try:
        if tf.endswith("m"):
            n = int(tf[:-1])
        elif tf.endswith("h"):
            n = int(tf[:-1]) * 60
        elif tf.endswith("d"):
            n = int(tf[:-1]) * 1440
        else:
            raise ValueError(f"Unsupported timeframe: {tf!r}")
    except ValueError:
        raise ValueError(f"Unsupported timeframe: {tf!r}") from None
    if n <= 0:
        raise ValueError(f"Unsupported timeframe: {tf!r}")
    return n


def tf_ms(tf: str) -> int:
    return tf_minutes(tf) * 60_000


def bybit_interval(minutes: int) -> str:
    code = BYBIT_INTERVALS.get(int(minutes))
    if code is None:
        raise ValueError(f"Bybit has no kline interval for {minutes} minutes")
    return code


def normalize_tf(tf: str) -> str:
    """Canonical spelling: 60 minutes -> '1h', 1440 -> '1d', else 'Nm'."""
    n = tf_minutes(tf)
    if n % 1440 == 0:
        return f"{n // 1440}d"
    if n % 60 == 0:
        return f"{n // 60}h"
    return f"{n}m"
