"""
Stop / target levels from ATR multiples.
  long : stop = entry - d, target = entry + tp_r_mult * d
  short: stop = entry + d, target = entry - tp_r_mult * d
with d = max(atr_mult * ATR, entry * min_stop_pct).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import StrategyConfig
from .models import LONG, SHORT


@dataclass(frozen=True)
class RiskLevels:
    direction: str
    entry: float
    stop_loss: float
    take_profit: float
    stop_distance: float

    @property
    def reward_risk(self) -> float:
        return abs(self.take_profit - self.entry) / self.stop_distance


def _round(x: float, decimals: int) -> float:
    return round(float(x), decimals)


class RiskCalculator:
    def __init__(self, cfg: StrategyConfig):
        self.atr_mult = float(cfg.atr_mult)
        self.tp_r_mult = float(cfg.tp_r_mult)
        self.min_stop_pct = float(cfg.min_stop_pct)
        self.decimals = int(cfg.price_decimals)

    def stop_distance(self, entry: float, atr: float) -> float:
        return max(self.atr_mult * max(atr, 0.0), entry * self.min_stop_pct)

    def levels(self, direction: str, entry: float, atr: float) -> Optional[RiskLevels]:
        """Stop/target for ``direction``; None when the levels are not tradable."""
        if entry is None or atr is None or entry <= 0:
            return None
        dist = self.stop_distance(entry, atr)
        if dist <= 0:
            return None

        if direction == LONG:
            stop = entry - dist
            tgt = entry + self.tp_r_mult * dist
            if stop <= 0:
                return None
        elif direction == SHORT:
            stop = entry + dist
            tgt = entry - self.tp_r_mult * dist
            if tgt <= 0:
                return None
        else:
            return None

        stop = _round(stop, self.decimals)
        tgt = _round(tgt, self.decimals)
        # Rounding must not collapse a level onto the entry.
        if direction == LONG and not (stop < entry < tgt):
            return None
        if direction == SHORT and not (tgt < entry < stop):
            return None
        return RiskLevels(direction=direction, entry=entry, stop_loss=stop, take_profit=tgt, stop_distance=dist)
