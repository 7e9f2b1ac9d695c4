from __future__ import annotations

import asyncio
from typing import List

from signal_scanner.config import default_config
from signal_scanner.cooldown_store import CooldownStore
from signal_scanner.errors import NetworkError
from signal_scanner.models import Candle
from signal_scanner.pipeline import SignalPipeline
from signal_scanner.providers.base import CandleSource
from signal_scanner.scanner import ScanOrchestrator
from signal_scanner.sinks import MemorySignalSink

STEP_MS = 15 * 60_000


def candle(idx: int, open_p: float, high: float, low: float, close: float, vol: float = 1000.0) -> Candle:
    return Candle(timestamp_ms=idx * STEP_MS, open=open_p, high=high, low=low, close=close, volume=vol)


def trend_sequence(n: int = 250, step: float = 0.4) -> List[Candle]:
    """Steady climb closed by a breakout bar on triple volume."""
    out = [candle(i, 100 + step * i - step, 101 + step * i, 99 + step * i - step, 100 + step * i) for i in range(n - 1)]
    prev = out[-1].close
    out.append(candle(n - 1, prev, prev + 4.4, prev - 1, prev + 3.4, 3000.0))
    return out


def flat_sequence(n: int = 250) -> List[Candle]:
    return [candle(i, 100, 100.5, 99.5, 100) for i in range(n)]


class SmokeSource(CandleSource):
    name = "smoke"

    async def fetch(self, symbol, interval_minutes, limit):
        if symbol.startswith("BAD"):
            raise NetworkError("smoke failure", symbol=symbol)
        return trend_sequence() if symbol.startswith("UP") else flat_sequence()


def run_case(name: str, pipeline: SignalPipeline, candles: List[Candle], now_ms: int):
    out = pipeline.evaluate("BTCUSDT", "15m", candles, now_ms)
    sig = out.signal
    if sig is None:
        print(f"{name}: status={out.status}")
    else:
        print(f"{name}: status={out.status} dir={sig.direction} score={sig.score} grade={sig.grade} "
              f"entry={sig.entry_price} sl={sig.stop_loss} tp={sig.take_profit}")


def main():
    cfg = default_config()
    strat = cfg.strategy_for("15m")
    print("strategy", strat.name, strat.signature()[:12], "lookback", strat.required_lookback())

    cooldowns = CooldownStore()
    pipeline = SignalPipeline(strat, cooldowns)
    now = 250 * STEP_MS

    # Case 1: trend + breakout emits
    run_case("trend_breakout", pipeline, trend_sequence(), now)
    # Case 2: same key inside the cooldown window is suppressed
    run_case("cooldown_block", pipeline, trend_sequence(), now + 60_000)
    # Case 3: dead market is gated
    run_case("flat_market", pipeline, flat_sequence(), now)

    # Case 4: a sweep with failures in it
    cfg.scan.inter_batch_delay_s = 0.0
    orch = ScanOrchestrator(cfg, SmokeSource(), MemorySignalSink())
    res = asyncio.run(orch.scan(["UP1USDT", "UP2USDT", "BAD1USDT", "FLATUSDT"], "15m", now_ms=now))
    print("sweep", res.to_response())


if __name__ == "__main__":
    main()
