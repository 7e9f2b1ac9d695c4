"""Candle source interface consumed by the scanner."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from ..models import Candle


class CandleSource(ABC):
    """Something that returns closed OHLCV candles, oldest first.

    ``fetch`` raises one of NetworkError, RateLimitError, InvalidSymbolError or
    MalformedDataError (all DataFetchError) so the scanner can tell them apart.
    Any retry policy lives in the implementation, never in the scanner.
    """

    name: str = ""

    @abstractmethod
    async def fetch(self, symbol: str, interval_minutes: int, limit: int) -> List[Candle]:
        """Return up to ``limit`` most recent closed candles, ascending by timestamp."""

    async def list_symbols(self) -> List[str]:
        """Tradable symbols for a scan without an explicit universe."""
        raise NotImplementedError(f"{type(self).__name__} cannot list symbols")

    async def close(self) -> None:
        return None
