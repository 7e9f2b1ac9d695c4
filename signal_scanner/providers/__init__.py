from .base import CandleSource
from .bybit import BybitCandleSource

__all__ = ["CandleSource", "BybitCandleSource"]
