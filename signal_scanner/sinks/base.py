from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from ..errors import PersistenceError
from ..models import Signal

log = logging.getLogger("sink")


@dataclass
class PersistReport:
    persisted: int = 0
    failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)  # signal_id -> error


class SignalSink(ABC):
    """Where emitted signals go. Not idempotent: the cooldown gate is the dedupe."""

    @abstractmethod
    async def persist(self, signal: Signal) -> None:
        """Store one signal; raise PersistenceError on failure."""

    async def persist_many(self, signals: Sequence[Signal]) -> PersistReport:
        """One by one; a failure never undoes the signals already stored."""
        report = PersistReport()
        for sig in signals:
            try:
                await self.persist(sig)
                report.persisted += 1
            except PersistenceError as e:
                report.failed += 1
                report.errors[sig.signal_id or sig.symbol] = str(e)
                log.warning("persist_failed symbol=%s tf=%s dir=%s err=%s", sig.symbol, sig.timeframe, sig.direction, e)
        return report

    async def close(self) -> None:
        return None


class MemorySignalSink(SignalSink):
    def __init__(self) -> None:
        self.signals: List[Signal] = []

    async def persist(self, signal: Signal) -> None:
        self.signals.append(signal)
