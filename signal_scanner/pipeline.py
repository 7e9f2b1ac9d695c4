from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Optional, Sequence

from .config import StrategyConfig
from .cooldown_store import CooldownStore
from .indicators import compute_indicator_set
from .models import Candle, IndicatorSet, Signal
from .risk import RiskCalculator
from .rules import Evaluation, RuleEvaluator, failed_gates
from .timeframes import tf_ms

log = logging.getLogger("pipeline")

SIGNAL = "signal"
NO_SIGNAL = "no_signal"
SUPPRESSED = "suppressed"
NO_RISK = "no_risk"


def signal_id(symbol: str, timeframe: str, direction: str, bar_time_ms: int) -> str:
    raw = f"{symbol}:{timeframe}:{direction}:{bar_time_ms}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


@dataclass(frozen=True)
class PipelineOutcome:
    status: str
    signal: Optional[Signal] = None
    evaluation: Optional[Evaluation] = None
    indicators: Optional[IndicatorSet] = None


class SignalPipeline:
    """Indicators -> rules -> risk -> cooldown for one symbol's candle series."""

    def __init__(self, cfg: StrategyConfig, cooldowns: CooldownStore):
        self.cfg = cfg
        self.cooldowns = cooldowns
        self.rules = RuleEvaluator(cfg)
        self.risk = RiskCalculator(cfg)
        self._sig = cfg.signature()

    def evaluate(
        self,
        symbol: str,
        timeframe: str,
        candles: Sequence[Candle],
        now_ms: Optional[int] = None,
    ) -> PipelineOutcome:
        """Raises InsufficientDataError when the series is shorter than the lookback."""
        now_ms = int(time.time() * 1000) if now_ms is None else int(now_ms)
        ind = compute_indicator_set(candles, self.cfg, symbol=symbol)
        last = candles[-1]

        ev = self.rules.evaluate(ind, last)
        if ev is None:
            if log.isEnabledFor(logging.DEBUG):
                scored = self.rules.score(ind, last)
                log.debug(
                    "no_signal symbol=%s tf=%s bull=%d bear=%d score=%.1f gates=%s",
                    symbol, timeframe, scored.bullish, scored.bearish, scored.score,
                    ",".join(failed_gates(scored, self.cfg)),
                )
            return PipelineOutcome(status=NO_SIGNAL, indicators=ind)

        levels = self.risk.levels(ev.direction, last.close, ind.atr)
        if levels is None:
            log.info("risk_rejected symbol=%s tf=%s dir=%s entry=%s atr=%s", symbol, timeframe, ev.direction, last.close, ind.atr)
            return PipelineOutcome(status=NO_RISK, evaluation=ev, indicators=ind)

        window_ms = self.cfg.cooldown_minutes(timeframe) * 60_000
        if not self.cooldowns.try_acquire(symbol, timeframe, ev.direction, window_ms, now_ms):
            log.info("cooldown_suppressed symbol=%s tf=%s dir=%s score=%.1f", symbol, timeframe, ev.direction, ev.score)
            return PipelineOutcome(status=SUPPRESSED, evaluation=ev, indicators=ind)

        diagnostics = {
            "profile": self.cfg.name,
            "strategy_sig": self._sig,
            "indicators": ind.as_dict(),
            "stop_distance": levels.stop_distance,
            "reward_risk": round(levels.reward_risk, 4),
            **ev.diagnostics(),
        }
        sig = Signal(
            symbol=symbol,
            timeframe=timeframe,
            direction=ev.direction,
            entry_price=last.close,
            stop_loss=levels.stop_loss,
            take_profit=levels.take_profit,
            score=ev.score,
            confidence=ev.confidence,
            grade=ev.grade,
            created_at_ms=now_ms,
            expires_at_ms=now_ms + int(self.cfg.signal_ttl_bars) * tf_ms(timeframe),
            bar_time_ms=last.timestamp_ms,
            diagnostics=diagnostics,
            signal_id=signal_id(symbol, timeframe, ev.direction, last.timestamp_ms),
        )
        return PipelineOutcome(status=SIGNAL, signal=sig, evaluation=ev, indicators=ind)
