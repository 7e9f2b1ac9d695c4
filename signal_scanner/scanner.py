from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Sequence, Set, Tuple

from .config import Config
from .cooldown_store import CooldownStore
from .errors import (
    DataFetchError,
    InsufficientDataError,
    InvalidSymbolError,
    NetworkError,
    RateLimitError,
)
from .models import ScanResult, check_series
from .pipeline import NO_RISK, NO_SIGNAL, SIGNAL, SUPPRESSED, PipelineOutcome, SignalPipeline
from .providers.base import CandleSource
from .sinks.base import SignalSink
from .timeframes import normalize_tf, tf_minutes

log = logging.getLogger("scanner")

FAILED = "failed"
INSUFFICIENT = "insufficient"
SKIPPED = "skipped"

Outcome = Tuple[str, str, object]  # (symbol, status, PipelineOutcome | error text | None)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _dedupe_symbols(symbols: Sequence[str]) -> List[str]:
    out: List[str] = []
    for s in symbols:
        sym = str(s or "").strip().upper()
        if sym and sym not in out:
            out.append(sym)
    return out


class _ScanState:
    def __init__(self) -> None:
        self.stopping = False
        self.rate_limit_pause_s = 0.0


class ScanOrchestrator:
    """Sweeps a symbol universe through the signal pipeline.

    Symbols go in batches of ``scan.batch_size``; within a batch at most
    ``scan.concurrency`` fetches run at once, each under ``scan.fetch_timeout_s``.
    A failing symbol is counted and skipped, never fatal to the sweep.
    """

    def __init__(
        self,
        cfg: Config,
        source: CandleSource,
        sink: SignalSink,
        cooldowns: Optional[CooldownStore] = None,
    ):
        self.cfg = cfg
        self.source = source
        self.sink = sink
        self.cooldowns = cooldowns if cooldowns is not None else CooldownStore()
        self._active: Set[_ScanState] = set()
        self.last_result: Optional[ScanResult] = None

    def cancel(self) -> None:
        """Stop issuing fetches in every running scan; in-flight ones finish on their own."""
        for st in self._active:
            st.stopping = True

    async def resolve_symbols(self, symbols: Optional[Sequence[str]]) -> List[str]:
        if symbols:
            return _dedupe_symbols(symbols)
        listed: List[str] = []
        try:
            listed = await self.source.list_symbols()
            log.info("universe_listed source=%s count=%d", self.source.name, len(listed))
        except NotImplementedError:
            pass
        except DataFetchError as e:
            log.warning("universe_list_failed err=%s fallback=default_symbols", e)
        return _dedupe_symbols(listed or self.cfg.scan.default_symbols or [])

    async def scan(
        self,
        symbols: Optional[Sequence[str]] = None,
        timeframe: Optional[str] = None,
        *,
        relaxed: bool = False,
        now_ms: Optional[int] = None,
    ) -> ScanResult:
        timeframe = normalize_tf(timeframe or self.cfg.scan.default_timeframe)
        strat = self.cfg.strategy_for(timeframe, relaxed=relaxed)
        pipeline = SignalPipeline(strat, self.cooldowns)
        minutes = tf_minutes(timeframe)
        limit = max(int(self.cfg.scan.fetch_limit), strat.required_lookback())

        universe = await self.resolve_symbols(symbols)
        result = ScanResult(timeframe=timeframe, started_at_ms=now_ms if now_ms is not None else _now_ms())
        st = _ScanState()
        self._active.add(st)

        sc = self.cfg.scan
        sem = asyncio.Semaphore(max(1, int(sc.concurrency)))
        batch_size = max(1, int(sc.batch_size))
        batches = [universe[i:i + batch_size] for i in range(0, len(universe), batch_size)]
        log.info(
            "scan_start tf=%s profile=%s symbols=%d batches=%d limit=%d",
            timeframe, strat.name, len(universe), len(batches), limit,
        )

        cancelled = False
        try:
            for bi, batch in enumerate(batches):
                if st.stopping:
                    result.symbols_skipped += sum(len(b) for b in batches[bi:])
                    break
                if bi > 0:
                    pause = max(float(sc.inter_batch_delay_s), st.rate_limit_pause_s)
                    st.rate_limit_pause_s = 0.0
                    if pause > 0:
                        try:
                            await asyncio.sleep(pause)
                        except asyncio.CancelledError:
                            cancelled = True
                            st.stopping = True
                            log.warning("scan_cancelled tf=%s before_batch=%d/%d", timeframe, bi + 1, len(batches))
                            result.symbols_skipped += sum(len(b) for b in batches[bi:])
                            break

                gathered = asyncio.gather(*[
                    self._one(sym, timeframe, minutes, limit, pipeline, sem, st, now_ms) for sym in batch
                ])
                try:
                    outcomes = await asyncio.shield(gathered)
                except asyncio.CancelledError:
                    # Caller went away: no new fetches, let the in-flight ones run out.
                    cancelled = True
                    st.stopping = True
                    log.warning("scan_cancelled tf=%s batch=%d/%d", timeframe, bi + 1, len(batches))
                    outcomes = await gathered
                self._tally(result, outcomes)
                if cancelled:
                    result.symbols_skipped += sum(len(b) for b in batches[bi + 1:])
                    break

            # Cooldown keys are already taken, so the signals must reach the sink.
            await asyncio.shield(self._persist(result))
        finally:
            self._active.discard(st)
            result.finished_at_ms = _now_ms()
            self.last_result = result

        log.info(
            "scan_done tf=%s signals=%d processed=%d failed=%d insufficient=%d suppressed=%d skipped=%d persist_failed=%d",
            timeframe,
            result.signals_generated,
            result.symbols_processed,
            result.symbols_failed,
            result.symbols_insufficient,
            result.symbols_suppressed,
            result.symbols_skipped,
            result.persist_failed,
        )
        if cancelled:
            raise asyncio.CancelledError()
        return result

    async def _one(
        self,
        symbol: str,
        timeframe: str,
        minutes: int,
        limit: int,
        pipeline: SignalPipeline,
        sem: asyncio.Semaphore,
        st: _ScanState,
        now_ms: Optional[int],
    ) -> Outcome:
        timeout_s = float(self.cfg.scan.fetch_timeout_s)
        async with sem:
            if st.stopping:
                return symbol, SKIPPED, None
            try:
                candles = await asyncio.wait_for(self.source.fetch(symbol, minutes, limit), timeout=timeout_s)
                check_series(candles, symbol=symbol)
            except asyncio.TimeoutError:
                err = NetworkError(f"fetch timed out after {timeout_s:.1f}s", symbol=symbol)
                log.warning("fetch_timeout symbol=%s tf=%s timeout=%.1fs", symbol, timeframe, timeout_s)
                return symbol, FAILED, str(err)
            except RateLimitError as e:
                st.rate_limit_pause_s = max(st.rate_limit_pause_s, float(e.retry_after_s or 0.0))
                log.warning("fetch_rate_limited symbol=%s tf=%s retry_after=%s err=%s", symbol, timeframe, e.retry_after_s, e)
                return symbol, FAILED, str(e)
            except InvalidSymbolError as e:
                log.info("fetch_invalid_symbol symbol=%s tf=%s err=%s", symbol, timeframe, e)
                return symbol, FAILED, str(e)
            except DataFetchError as e:
                log.warning("fetch_failed kind=%s symbol=%s tf=%s err=%s", e.kind, symbol, timeframe, e)
                return symbol, FAILED, str(e)
            except Exception as e:
                log.warning("fetch_unexpected symbol=%s tf=%s err=%r", symbol, timeframe, e)
                return symbol, FAILED, repr(e)

        try:
            outcome = pipeline.evaluate(symbol, timeframe, candles, now_ms)
        except InsufficientDataError as e:
            log.info("insufficient_data symbol=%s tf=%s have=%d need=%d", symbol, timeframe, e.have, e.need)
            return symbol, INSUFFICIENT, None
        except Exception as e:
            log.exception("evaluate_failed symbol=%s tf=%s err=%s", symbol, timeframe, e)
            return symbol, FAILED, repr(e)
        return symbol, outcome.status, outcome

    def _tally(self, result: ScanResult, outcomes: Sequence[Outcome]) -> None:
        for symbol, status, payload in outcomes:
            if status == SIGNAL and isinstance(payload, PipelineOutcome) and payload.signal is not None:
                result.symbols_processed += 1
                sig = payload.signal
                result.signals.append(sig)
                log.info(
                    "signal %s %s %s entry=%s sl=%s tp=%s score=%.1f conf=%.2f grade=%s",
                    sig.symbol, sig.timeframe, sig.direction, sig.entry_price, sig.stop_loss,
                    sig.take_profit, sig.score, sig.confidence, sig.grade,
                )
            elif status in (NO_SIGNAL, NO_RISK):
                result.symbols_processed += 1
            elif status == SUPPRESSED:
                result.symbols_processed += 1
                result.symbols_suppressed += 1
            elif status == INSUFFICIENT:
                result.symbols_insufficient += 1
            elif status == SKIPPED:
                result.symbols_skipped += 1
            else:
                result.symbols_failed += 1
                result.errors[symbol] = str(payload)

    async def _persist(self, result: ScanResult) -> None:
        if not result.signals:
            return
        try:
            report = await self.sink.persist_many(result.signals)
        except Exception as e:
            # Nothing is rolled back; the whole batch counts as failed.
            log.error("persist_batch_failed count=%d err=%s", len(result.signals), e)
            result.persist_failed = len(result.signals)
            return
        result.signals_persisted = report.persisted
        result.persist_failed = report.failed
