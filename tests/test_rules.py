from dataclasses import replace

from signal_scanner.config import StrategyConfig
from signal_scanner.models import LONG, SHORT, Candle, IndicatorSet
from signal_scanner.rules import MAX_POINTS, WEIGHTS, RuleEvaluator, failed_gates, grade


def _ind(**kw) -> IndicatorSet:
    base = dict(
        close=100.0, sma_n=100.0, ema_n=100.0, ema_prev=100.0,
        rsi=50.0, macd=0.0, macd_signal=0.0, macd_hist=0.0,
        bb_upper=102.0, bb_middle=100.0, bb_lower=98.0,
        stoch_k=50.0, stoch_d=50.0, atr=1.0,
        adx=10.0, plus_di=20.0, minus_di=20.0,
        volume_ratio=1.0, vol_expansion=1.0,
        recent_high=101.0, recent_low=99.0,
    )
    base.update(kw)
    return IndicatorSet(**base)


def _bar(close: float) -> Candle:
    return Candle(timestamp_ms=0, open=close, high=close + 0.5, low=close - 0.5, close=close, volume=1000.0)


def _bullish() -> IndicatorSet:
    return _ind(
        close=102.0, sma_n=100.0, ema_n=101.0, ema_prev=99.5,
        rsi=58.0, macd=0.4, macd_signal=0.2, macd_hist=0.2,
        bb_middle=100.5, stoch_k=60.0, stoch_d=50.0,
        adx=30.0, plus_di=28.0, minus_di=12.0,
        volume_ratio=1.6, recent_high=101.5,
    )


def test_weights_sum_to_hundred():
    assert MAX_POINTS == 100
    assert len({name for name, _ in WEIGHTS}) == len(WEIGHTS)


def test_strong_uptrend_emits_long():
    ev = RuleEvaluator(StrategyConfig()).evaluate(_bullish(), _bar(102.0))
    assert ev is not None
    assert ev.direction == LONG
    # all bullish checks but volatility expansion
    assert ev.bullish == 95
    assert ev.bearish == 12
    assert ev.score == 95.0
    assert ev.confidence == 0.95
    assert ev.grade == "A+"


def test_minimal_bullish_set_still_clears_gates():
    ind = _ind(sma_n=100.0, ema_n=101.0, ema_prev=99.5, adx=25.0, plus_di=25.0, minus_di=15.0, volume_ratio=1.5)
    ev = RuleEvaluator(StrategyConfig()).evaluate(ind, _bar(100.0))
    assert ev is not None
    # trend + slope + adx + rsi + volume vs rsi + volume
    assert (ev.bullish, ev.bearish) == (60, 20)
    assert ev.score == 95.0
    assert ev.confidence == 0.6


def test_mirrored_set_emits_short():
    ind = _ind(
        close=98.0, sma_n=100.0, ema_n=99.0, ema_prev=100.5,
        rsi=42.0, macd=-0.4, macd_signal=-0.2,
        bb_middle=99.5, stoch_k=40.0, stoch_d=50.0,
        adx=30.0, plus_di=12.0, minus_di=28.0,
        volume_ratio=1.6, recent_low=98.5,
    )
    ev = RuleEvaluator(StrategyConfig()).evaluate(ind, _bar(98.0))
    assert ev is not None
    assert ev.direction == SHORT
    assert ev.bearish > ev.bullish


def test_quiet_market_is_gated_regardless_of_checklist():
    ind = replace(_bullish(), adx=12.0, volume_ratio=1.0)
    rules = RuleEvaluator(StrategyConfig())
    assert rules.evaluate(ind, _bar(102.0)) is None

    scored = rules.score(ind, _bar(102.0))
    assert scored.active is False
    assert scored.direction == LONG
    assert "inactive_market" in failed_gates(scored, rules.cfg)


def test_volume_spike_alone_keeps_market_active():
    ind = replace(_bullish(), adx=12.0)
    ev = RuleEvaluator(StrategyConfig()).evaluate(ind, _bar(102.0))
    assert ev is not None
    assert ev.direction == LONG


def test_tie_gives_no_signal():
    ind = _ind(adx=25.0)  # active, both sides score only the RSI band overlap
    rules = RuleEvaluator(StrategyConfig())
    scored = rules.score(ind, _bar(100.0))
    assert scored.bullish == scored.bearish == 8
    assert scored.direction is None
    assert rules.evaluate(ind, _bar(100.0)) is None


def test_confidence_gate():
    # trend + rsi on the bull side only: score 78, confidence 0.28
    ind = _ind(ema_n=101.0, ema_prev=101.0, adx=25.0, rsi=60.0)
    rules = RuleEvaluator(StrategyConfig())
    scored = rules.score(ind, _bar(100.0))
    assert scored.score == 78.0
    assert scored.confidence == 0.28
    assert rules.evaluate(ind, _bar(100.0)) is None
    assert failed_gates(scored, rules.cfg) == ["confidence"]


def test_score_gate():
    cfg = StrategyConfig(min_score=90.0, min_confidence=0.0)
    ind = _ind(ema_n=101.0, ema_prev=101.0, adx=25.0, rsi=60.0)
    assert RuleEvaluator(cfg).evaluate(ind, _bar(100.0)) is None
    assert RuleEvaluator(replace(cfg, min_score=70.0)).evaluate(ind, _bar(100.0)) is not None


def test_evaluation_is_deterministic():
    rules = RuleEvaluator(StrategyConfig())
    a = rules.evaluate(_bullish(), _bar(102.0))
    b = rules.evaluate(_bullish(), _bar(102.0))
    assert a == b


def test_grade_boundaries_and_monotonic():
    assert grade(95) == "A+"
    assert grade(90) == "A+"
    assert grade(89.9) == "A"
    assert grade(85) == "A"
    assert grade(75) == "B"
    assert grade(65) == "C"
    assert grade(64.9) == "F"

    rank = {"F": 0, "C": 1, "B": 2, "A": 3, "A+": 4}
    grades = [rank[grade(s)] for s in range(0, 101)]
    assert grades == sorted(grades)
