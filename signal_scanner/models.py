from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from .errors import MalformedDataError

LONG = "LONG"
SHORT = "SHORT"
DIRECTIONS = (LONG, SHORT)


def iso_ms(ts_ms: int) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Candle:
    timestamp_ms: int  # bar open time
    open: float
    high: float
    low: float
    close: float
    volume: float


def check_series(candles: Sequence[Candle], *, symbol: Optional[str] = None) -> None:
    """Raise MalformedDataError unless the series is ascending with sane prices."""
    prev_ts: Optional[int] = None
    for i, c in enumerate(candles):
        if prev_ts is not None and c.timestamp_ms <= prev_ts:
            raise MalformedDataError(f"timestamps not strictly increasing at index {i}", symbol=symbol)
        if min(c.open, c.high, c.low, c.close) <= 0:
            raise MalformedDataError(f"non-positive price at index {i}", symbol=symbol)
        if c.volume < 0:
            raise MalformedDataError(f"negative volume at index {i}", symbol=symbol)
        if c.high < c.low:
            raise MalformedDataError(f"high < low at index {i}", symbol=symbol)
        prev_ts = c.timestamp_ms


@dataclass(frozen=True)
class IndicatorSet:
    close: float
    sma_n: float
    ema_n: float
    ema_prev: float
    rsi: float
    macd: float
    macd_signal: float
    macd_hist: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    stoch_k: float
    stoch_d: float
    atr: float
    adx: float
    plus_di: float
    minus_di: float
    volume_ratio: float
    vol_expansion: float
    recent_high: float
    recent_low: float

    def as_dict(self) -> Dict[str, float]:
        return {k: round(float(v), 8) for k, v in asdict(self).items()}


@dataclass(frozen=True)
class Signal:
    symbol: str
    timeframe: str
    direction: str  # LONG or SHORT
    entry_price: float
    stop_loss: float
    take_profit: float
    score: float
    confidence: float
    grade: str
    created_at_ms: int
    expires_at_ms: int
    bar_time_ms: int
    diagnostics: dict = field(default_factory=dict)
    signal_id: Optional[str] = None

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expires_at_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signal_id": self.signal_id,
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "direction": self.direction,
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
            "score": self.score,
            "confidence": self.confidence,
            "grade": self.grade,
            "bar_time": iso_ms(self.bar_time_ms),
            "created_at": iso_ms(self.created_at_ms),
            "expires_at": iso_ms(self.expires_at_ms),
            "diagnostics": self.diagnostics,
        }


@dataclass(frozen=True)
class CooldownRecord:
    symbol: str
    timeframe: str
    direction: str
    last_emitted_ms: int
    window_ms: int = 0  # cooldown length this emission was gated with


@dataclass
class ScanResult:
    timeframe: str
    started_at_ms: int
    finished_at_ms: int = 0
    signals: List[Signal] = field(default_factory=list)
    symbols_processed: int = 0
    symbols_failed: int = 0
    symbols_insufficient: int = 0
    symbols_suppressed: int = 0
    symbols_skipped: int = 0
    signals_persisted: int = 0
    persist_failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def signals_generated(self) -> int:
        return len(self.signals)

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "timeframe": self.timeframe,
            "signals_generated": self.signals_generated,
            "signals_persisted": self.signals_persisted,
            "persist_failed": self.persist_failed,
            "symbols_processed": self.symbols_processed,
            "symbols_failed": self.symbols_failed,
            "symbols_insufficient": self.symbols_insufficient,
            "symbols_suppressed": self.symbols_suppressed,
            "symbols_skipped": self.symbols_skipped,
            "timestamp": iso_ms(self.finished_at_ms or self.started_at_ms),
        }
