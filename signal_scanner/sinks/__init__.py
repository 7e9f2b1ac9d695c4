from __future__ import annotations

from ..config import SinkConfig
from .base import MemorySignalSink, PersistReport, SignalSink
from .jsonl import JsonlSignalSink
from .webhook import WebhookSignalSink


def build_sink(cfg: SinkConfig) -> SignalSink:
    kind = (cfg.type or "memory").lower()
    if kind == "memory":
        return MemorySignalSink()
    if kind == "jsonl":
        return JsonlSignalSink(cfg.path)
    if kind == "webhook":
        return WebhookSignalSink(url=cfg.url, secret=cfg.secret, timeout_s=cfg.timeout_s, headers=cfg.headers)
    raise ValueError(f"Unsupported sink type: {cfg.type}")


__all__ = [
    "SignalSink",
    "PersistReport",
    "MemorySignalSink",
    "JsonlSignalSink",
    "WebhookSignalSink",
    "build_sink",
]
