from __future__ import annotations

import asyncio
import json
import os
from typing import Sequence

from ..errors import PersistenceError
from ..models import Signal
from .base import PersistReport, SignalSink


class JsonlSignalSink(SignalSink):
    """Appends one JSON object per signal to a local file.

    The file I/O runs in a worker thread so a slow disk does not stall the scan loop.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def _write(self, lines: Sequence[str]) -> None:
        try:
            d = os.path.dirname(self.path)
            if d:
                os.makedirs(d, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                for line in lines:
                    f.write(line + "\n")
        except OSError as e:
            raise PersistenceError(f"write {self.path} failed: {e}") from e

    async def persist(self, signal: Signal) -> None:
        await asyncio.to_thread(self._write, [json.dumps(signal.to_dict(), sort_keys=True)])

    async def persist_many(self, signals: Sequence[Signal]) -> PersistReport:
        if not signals:
            return PersistReport()
        await asyncio.to_thread(self._write, [json.dumps(s.to_dict(), sort_keys=True) for s in signals])
        return PersistReport(persisted=len(signals))
