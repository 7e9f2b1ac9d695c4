from __future__ import annotations

from typing import Optional


class ScannerError(Exception):
    """Base class for every error raised by signal_scanner."""


class ConfigError(ScannerError):
    pass


class DataFetchError(ScannerError):
    """Candle fetch failed; the orchestrator skips the symbol and moves on."""

    kind = "fetch"

    def __init__(self, message: str, *, symbol: Optional[str] = None) -> None:
        super().__init__(message)
        self.symbol = symbol


class NetworkError(DataFetchError):
    kind = "network"


class RateLimitError(DataFetchError):
    kind = "rate_limit"

    def __init__(self, message: str, *, symbol: Optional[str] = None, retry_after_s: Optional[float] = None) -> None:
        super().__init__(message, symbol=symbol)
        self.retry_after_s = retry_after_s


class InvalidSymbolError(DataFetchError):
    kind = "invalid_symbol"


class MalformedDataError(DataFetchError):
    kind = "malformed"


class InsufficientDataError(ScannerError):
    def __init__(self, symbol: str, have: int, need: int) -> None:
        super().__init__(f"{symbol}: {have} candles, need {need}")
        self.symbol = symbol
        self.have = have
        self.need = need


class PersistenceError(ScannerError):
    pass
