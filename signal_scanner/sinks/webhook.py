from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from ..errors import PersistenceError
from ..models import Signal
from .base import PersistReport, SignalSink

log = logging.getLogger("webhook")


class WebhookSignalSink(SignalSink):
    """POSTs signals as JSON; a batch goes out as one array in one request."""

    def __init__(self, *, url: str, secret: str = "", timeout_s: int = 10, headers: Optional[dict] = None):
        if not url:
            raise ValueError("webhook sink needs a url")
        self.url = url
        self.secret = secret or ""
        self.timeout_s = int(timeout_s) if timeout_s is not None else 10
        self.headers = headers or {}

    def _headers(self) -> Dict[str, str]:
        h = {"Content-Type": "application/json", **self.headers}
        if self.secret:
            h["X-Signal-Secret"] = self.secret
        return h

    async def _post(self, payload: Any) -> None:
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout_s)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload, headers=self._headers()) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        raise PersistenceError(f"webhook status={resp.status} body={text[:200]}")
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise PersistenceError(f"webhook post failed: {e!r}") from e

    async def persist(self, signal: Signal) -> None:
        await self._post(signal.to_dict())

    async def persist_many(self, signals: Sequence[Signal]) -> PersistReport:
        if not signals:
            return PersistReport()
        batch: List[Dict[str, Any]] = [s.to_dict() for s in signals]
        await self._post(batch)
        log.info("webhook_batch_sent count=%d", len(batch))
        return PersistReport(persisted=len(batch))
