from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from .models import CooldownRecord
from .timeframes import normalize_tf

IDLE = "idle"
COOLING = "cooling"

Key = Tuple[str, str, str]


def _key(symbol: str, timeframe: str, direction: str) -> Key:
    try:
        tf = normalize_tf(timeframe)
    except ValueError:
        tf = timeframe
    return (symbol.upper(), tf, direction.upper())


def _now_ms(now_ms: Optional[int]) -> int:
    return int(time.time() * 1000) if now_ms is None else int(now_ms)


class CooldownStore:
    """Last emission per (symbol, timeframe, direction).

    ``try_acquire`` is the only write path: check and upsert happen under the
    key's lock, so concurrent scans cannot both emit for the same key. The
    window is supplied by the caller (the resolved strategy) and kept on the
    record, so ``state`` and ``prune`` judge a record by the window it was
    emitted under.
    """

    def __init__(self) -> None:
        self._records: Dict[Key, CooldownRecord] = {}
        self._locks: Dict[Key, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _locked(self, key: Key) -> Iterator[None]:
        # A lock dropped by prune/release while we waited on it is stale; retry with the live one.
        while True:
            with self._locks_guard:
                lock = self._locks.get(key)
                if lock is None:
                    lock = self._locks[key] = threading.Lock()
            lock.acquire()
            with self._locks_guard:
                live = self._locks.get(key) is lock
            if live:
                break
            lock.release()
        try:
            yield
        finally:
            lock.release()

    def _drop(self, key: Key) -> None:
        """Remove record and lock; caller holds the key's lock."""
        self._records.pop(key, None)
        with self._locks_guard:
            self._locks.pop(key, None)

    @staticmethod
    def _is_cooling(rec: Optional[CooldownRecord], now_ms: int) -> bool:
        if rec is None:
            return False
        return (now_ms - rec.last_emitted_ms) < rec.window_ms

    def get(self, symbol: str, timeframe: str, direction: str) -> Optional[CooldownRecord]:
        return self._records.get(_key(symbol, timeframe, direction))

    def state(self, symbol: str, timeframe: str, direction: str, now_ms: Optional[int] = None) -> str:
        rec = self.get(symbol, timeframe, direction)
        return COOLING if self._is_cooling(rec, _now_ms(now_ms)) else IDLE

    def try_acquire(
        self,
        symbol: str,
        timeframe: str,
        direction: str,
        window_ms: int,
        now_ms: Optional[int] = None,
    ) -> bool:
        """Idle -> Cooling for ``window_ms`` (returns True); Cooling -> unchanged (returns False)."""
        now_ms = _now_ms(now_ms)
        key = _key(symbol, timeframe, direction)
        with self._locked(key):
            if self._is_cooling(self._records.get(key), now_ms):
                return False
            self._records[key] = CooldownRecord(
                symbol=key[0],
                timeframe=key[1],
                direction=key[2],
                last_emitted_ms=now_ms,
                window_ms=int(window_ms),
            )
            return True

    def release(self, symbol: str, timeframe: str, direction: str) -> None:
        key = _key(symbol, timeframe, direction)
        with self._locked(key):
            self._drop(key)

    def prune(self, now_ms: Optional[int] = None) -> int:
        """Drop records whose window has elapsed; returns how many were dropped."""
        now_ms = _now_ms(now_ms)
        dropped = 0
        for key in list(self._records):
            with self._locked(key):
                rec = self._records.get(key)
                if rec is not None and not self._is_cooling(rec, now_ms):
                    self._drop(key)
                    dropped += 1
                elif rec is None:
                    self._drop(key)
        return dropped

    def snapshot(self) -> List[CooldownRecord]:
        return sorted(self._records.values(), key=lambda r: (r.symbol, r.timeframe, r.direction))

    def lock_count(self) -> int:
        with self._locks_guard:
            return len(self._locks)

    def __len__(self) -> int:
        return len(self._records)
