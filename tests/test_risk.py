import pytest

from signal_scanner.config import StrategyConfig
from signal_scanner.models import LONG, SHORT
from signal_scanner.risk import RiskCalculator


def test_long_levels():
    lv = RiskCalculator(StrategyConfig(atr_mult=2.0, tp_r_mult=1.5)).levels(LONG, 100.0, 2.0)
    assert lv is not None
    assert lv.stop_loss == 96.0
    assert lv.take_profit == 106.0
    assert lv.stop_distance == 4.0
    assert lv.reward_risk == pytest.approx(1.5)


def test_short_levels():
    lv = RiskCalculator(StrategyConfig(atr_mult=2.0, tp_r_mult=1.5)).levels(SHORT, 100.0, 2.0)
    assert lv is not None
    assert lv.stop_loss == 104.0
    assert lv.take_profit == 94.0


def test_percent_floor_applies_when_atr_is_tiny():
    calc = RiskCalculator(StrategyConfig(atr_mult=2.0, tp_r_mult=1.5, min_stop_pct=0.01))
    lv = calc.levels(LONG, 100.0, 0.1)
    assert lv.stop_distance == pytest.approx(1.0)
    assert lv.stop_loss == pytest.approx(99.0)
    assert lv.take_profit == pytest.approx(101.5)

    # zero ATR still yields a usable stop
    lv = calc.levels(SHORT, 100.0, 0.0)
    assert lv.stop_loss > 100.0 > lv.take_profit


def test_ordering_holds_across_inputs():
    calc = RiskCalculator(StrategyConfig())
    for entry in (0.05, 1.0, 37.5, 61000.0):
        for atr in (0.0, entry * 0.001, entry * 0.02):
            long_ = calc.levels(LONG, entry, atr)
            short = calc.levels(SHORT, entry, atr)
            assert long_.stop_loss < entry < long_.take_profit
            assert short.take_profit < entry < short.stop_loss


def test_unusable_levels_are_rejected():
    calc = RiskCalculator(StrategyConfig(atr_mult=2.0, tp_r_mult=1.5))
    # short target below zero
    assert calc.levels(SHORT, 1.0, 1.0) is None
    # long stop below zero
    assert calc.levels(LONG, 1.0, 1.0) is None
    assert calc.levels(LONG, 0.0, 1.0) is None
    assert calc.levels("FLAT", 100.0, 1.0) is None


def test_rounding_that_collapses_a_level_is_rejected():
    calc = RiskCalculator(StrategyConfig(price_decimals=0, min_stop_pct=0.0, atr_mult=1.0))
    assert calc.levels(LONG, 100.0, 0.2) is None
