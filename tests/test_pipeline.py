import pytest

from signal_scanner.config import StrategyConfig
from signal_scanner.cooldown_store import CooldownStore
from signal_scanner.errors import InsufficientDataError
from signal_scanner.indicators import ema_series, sma
from signal_scanner.models import LONG, SHORT
from signal_scanner.pipeline import NO_SIGNAL, SIGNAL, SUPPRESSED, SignalPipeline, signal_id

from candles import crossover_rally, downtrend_breakdown, flat, random_walk, uptrend_breakout

NOW = 1_700_000_000_000
MIN = 60_000


def _pipeline(cfg: StrategyConfig = None) -> SignalPipeline:
    cfg = cfg or StrategyConfig()
    return SignalPipeline(cfg, CooldownStore())


def test_breakout_after_uptrend_emits_long():
    candles = uptrend_breakout()
    out = _pipeline().evaluate("BTCUSDT", "15m", candles, NOW)

    assert out.status == SIGNAL
    sig = out.signal
    assert sig.direction == LONG
    assert sig.score >= 75
    assert sig.grade in ("A+", "A", "B")
    assert sig.entry_price == candles[-1].close
    assert sig.stop_loss < sig.entry_price < sig.take_profit
    assert sig.bar_time_ms == candles[-1].timestamp_ms
    assert sig.created_at_ms == NOW
    assert sig.expires_at_ms == NOW + 4 * 15 * MIN
    assert sig.signal_id == signal_id("BTCUSDT", "15m", LONG, candles[-1].timestamp_ms)

    diag = sig.diagnostics
    assert diag["profile"] == "tight"
    assert diag["strategy_sig"] == StrategyConfig().signature()
    assert "breakout" in diag["bullish_checks"]
    assert diag["indicators"]["adx"] > 20


def test_breakdown_after_downtrend_emits_short():
    out = _pipeline().evaluate("ETHUSDT", "15m", downtrend_breakdown(), NOW)
    assert out.status == SIGNAL
    assert out.signal.direction == SHORT
    assert out.signal.take_profit < out.signal.entry_price < out.signal.stop_loss


def test_flat_market_gives_nothing():
    out = _pipeline().evaluate("XRPUSDT", "15m", flat(), NOW)
    assert out.status == NO_SIGNAL
    assert out.signal is None
    assert out.indicators.adx == 0.0
    assert out.indicators.volume_ratio == 1.0


def test_cooldown_suppresses_repeat_until_window_passes():
    p = _pipeline()
    candles = uptrend_breakout()
    assert p.evaluate("SOLUSDT", "15m", candles, NOW).status == SIGNAL
    assert p.evaluate("SOLUSDT", "15m", candles, NOW + 10 * MIN).status == SUPPRESSED
    # other timeframes have their own windows
    assert p.evaluate("SOLUSDT", "1h", candles, NOW + 10 * MIN).status == SIGNAL
    assert p.evaluate("SOLUSDT", "15m", candles, NOW + 30 * MIN).status == SIGNAL


def test_short_history_is_reported_not_evaluated():
    with pytest.raises(InsufficientDataError):
        _pipeline().evaluate("NEWUSDT", "15m", random_walk(120), NOW)


def test_same_input_same_output():
    a = _pipeline().evaluate("BTCUSDT", "15m", uptrend_breakout(), NOW)
    b = _pipeline().evaluate("BTCUSDT", "15m", uptrend_breakout(), NOW)
    assert a.signal == b.signal


def test_cooldown_window_comes_from_the_strategy():
    p = _pipeline(StrategyConfig(cooldown_minutes_by_timeframe={"15m": 5}))
    candles = uptrend_breakout()
    assert p.evaluate("ADAUSDT", "15m", candles, NOW).status == SIGNAL
    assert p.evaluate("ADAUSDT", "15m", candles, NOW + 4 * MIN).status == SUPPRESSED
    assert p.evaluate("ADAUSDT", "15m", candles, NOW + 5 * MIN).status == SIGNAL
    # timeframes without an entry fall back to the default window
    assert p.evaluate("ADAUSDT", "1h", candles, NOW).status == SIGNAL
    assert p.cooldowns.get("ADAUSDT", "1h", LONG).window_ms == 30 * MIN


def test_fast_ema_crossing_above_slow_sma_emits_long():
    candles = crossover_rally()
    closes = [c.close for c in candles]
    ema_fast = ema_series(closes, 21)
    rally = 6

    # below before the rally, above on the last bar
    assert ema_fast[-rally - 1] < sma(closes[:-rally], 200)
    assert ema_fast[-1] > sma(closes, 200)

    out = _pipeline().evaluate("BTCUSDT", "15m", candles, NOW)
    assert out.status == SIGNAL
    assert out.signal.direction == LONG
    ind = out.indicators
    assert ind.ema_prev < ind.sma_n < ind.ema_n
    assert 20 <= ind.adx <= 60
    assert ind.plus_di > ind.minus_di
    assert {"trend", "adx_trend", "breakout", "volume"} <= set(out.signal.diagnostics["bullish_checks"])
