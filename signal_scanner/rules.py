from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .config import StrategyConfig
from .models import LONG, SHORT, Candle, IndicatorSet

# (name, points) in evaluation order; points sum to MAX_POINTS.
WEIGHTS: Tuple[Tuple[str, int], ...] = (
    ("trend", 20),
    ("ema_slope", 5),
    ("band_position", 5),
    ("adx_trend", 15),
    ("rsi_momentum", 8),
    ("macd", 10),
    ("stochastic", 8),
    ("volume", 12),
    ("volatility", 5),
    ("breakout", 12),
)
MAX_POINTS = sum(w for _, w in WEIGHTS)
SCORE_BASE = 50.0
SCORE_CAP = 95.0

GRADE_STEPS: Tuple[Tuple[float, str], ...] = (
    (90.0, "A+"),
    (85.0, "A"),
    (75.0, "B"),
    (65.0, "C"),
)


def grade(score: float) -> str:
    for floor, letter in GRADE_STEPS:
        if score >= floor:
            return letter
    return "F"


@dataclass(frozen=True)
class Evaluation:
    direction: Optional[str]  # None when both sides tie
    score: float
    confidence: float
    grade: str
    bullish: int
    bearish: int
    bullish_checks: Dict[str, bool] = field(default_factory=dict)
    bearish_checks: Dict[str, bool] = field(default_factory=dict)
    active: bool = True  # False when ADX and volume both show a dead market

    def diagnostics(self) -> Dict[str, object]:
        return {
            "bullish_points": self.bullish,
            "bearish_points": self.bearish,
            "bullish_checks": [k for k, v in self.bullish_checks.items() if v],
            "bearish_checks": [k for k, v in self.bearish_checks.items() if v],
            "market_active": self.active,
        }


class RuleEvaluator:
    """Weighted checklist scoring of one IndicatorSet. Stateless."""

    def __init__(self, cfg: StrategyConfig):
        self.cfg = cfg

    def checks(self, ind: IndicatorSet, candle: Candle) -> Tuple[Dict[str, bool], Dict[str, bool]]:
        cfg = self.cfg
        close = candle.close
        trending = ind.adx >= cfg.adx_threshold
        volume_ok = ind.volume_ratio >= cfg.vol_spike_mult
        expanding = ind.vol_expansion >= cfg.vol_expansion

        bull = {
            "trend": ind.ema_n > ind.sma_n,
            "ema_slope": ind.ema_n > ind.ema_prev,
            "band_position": close > ind.bb_middle,
            "adx_trend": trending and ind.plus_di > ind.minus_di,
            "rsi_momentum": cfg.rsi_long_min < ind.rsi < cfg.rsi_long_max,
            "macd": ind.macd > ind.macd_signal,
            "stochastic": ind.stoch_k > ind.stoch_d and ind.stoch_k < cfg.stoch_overbought,
            "volume": volume_ok,
            "volatility": expanding,
            "breakout": close > ind.recent_high,
        }
        bear = {
            "trend": ind.ema_n < ind.sma_n,
            "ema_slope": ind.ema_n < ind.ema_prev,
            "band_position": close < ind.bb_middle,
            "adx_trend": trending and ind.minus_di > ind.plus_di,
            "rsi_momentum": cfg.rsi_short_min < ind.rsi < cfg.rsi_short_max,
            "macd": ind.macd < ind.macd_signal,
            "stochastic": ind.stoch_k < ind.stoch_d and ind.stoch_k > cfg.stoch_oversold,
            "volume": volume_ok,
            "volatility": expanding,
            "breakout": close < ind.recent_low,
        }
        return bull, bear

    def score(self, ind: IndicatorSet, candle: Candle) -> Evaluation:
        bull, bear = self.checks(ind, candle)
        bull_pts = sum(w for name, w in WEIGHTS if bull[name])
        bear_pts = sum(w for name, w in WEIGHTS if bear[name])

        if bull_pts > bear_pts:
            direction: Optional[str] = LONG
            winning = bull_pts
        elif bear_pts > bull_pts:
            direction = SHORT
            winning = bear_pts
        else:
            direction = None
            winning = bull_pts

        score = min(SCORE_BASE + winning, SCORE_CAP)
        confidence = winning / float(MAX_POINTS)
        active = ind.adx >= self.cfg.adx_threshold or ind.volume_ratio >= self.cfg.vol_spike_mult
        return Evaluation(
            direction=direction,
            score=score,
            confidence=round(confidence, 4),
            grade=grade(score),
            bullish=bull_pts,
            bearish=bear_pts,
            bullish_checks=bull,
            bearish_checks=bear,
            active=active,
        )

    def evaluate(self, ind: IndicatorSet, candle: Candle) -> Optional[Evaluation]:
        """Scored evaluation if it clears every gate, else None (no signal)."""
        ev = self.score(ind, candle)
        if not ev.active or ev.direction is None:
            return None
        if ev.score < self.cfg.min_score or ev.confidence < self.cfg.min_confidence:
            return None
        return ev


def failed_gates(ev: Evaluation, cfg: StrategyConfig) -> List[str]:
    """Names of the gates an evaluation did not clear, for debug logging."""
    out = []
    if not ev.active:
        out.append("inactive_market")
    if ev.direction is None:
        out.append("no_direction")
    if ev.score < cfg.min_score:
        out.append("score")
    if ev.confidence < cfg.min_confidence:
        out.append("confidence")
    return out
