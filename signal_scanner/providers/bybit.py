from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp
import websockets

from ..errors import InvalidSymbolError, MalformedDataError, NetworkError, RateLimitError
from ..models import Candle, check_series
from ..timeframes import bybit_interval, tf_minutes
from .base import CandleSource

log = logging.getLogger("bybit")

REST_BASE = "https://api.bybit.com"
KLINE_PATH = "/v5/market/kline"
INSTRUMENTS_PATH = "/v5/market/instruments-info"
MAX_LIMIT = 1000

# retCodes that mean the request itself was wrong for this symbol
INVALID_SYMBOL_CODES = {10001, 110023}
RATE_LIMIT_CODES = {10006, 10018}


def _ws_url(category: str) -> str:
    return f"wss://stream.bybit.com/v5/public/{category}"


def _topic(symbol: str, interval_minutes: int) -> str:
    return f"kline.{bybit_interval(interval_minutes)}.{symbol.upper()}"


def parse_kline_rows(rows: List[Any], interval_minutes: int, now_ms: int, *, symbol: str = "?") -> List[Candle]:
    """Bybit rows are newest first: [start, open, high, low, close, volume, turnover].

    Returns closed bars only, oldest first.
    """
    interval_ms = int(interval_minutes) * 60_000
    out: List[Candle] = []
    try:
        for row in reversed(rows):
            start = int(row[0])
            if start + interval_ms > now_ms:
                continue  # still forming
            out.append(Candle(
                timestamp_ms=start,
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
            ))
    except (TypeError, ValueError, IndexError) as e:
        raise MalformedDataError(f"bad kline row: {e}", symbol=symbol) from e
    check_series(out, symbol=symbol)
    return out


def parse_ws_kline(item: Dict[str, Any]) -> Candle:
    return Candle(
        timestamp_ms=int(item["start"]),
        open=float(item["open"]),
        high=float(item["high"]),
        low=float(item["low"]),
        close=float(item["close"]),
        volume=float(item["volume"]),
    )


class BybitCandleSource(CandleSource):
    name = "bybit"

    def __init__(
        self,
        category: str = "linear",
        *,
        rest_timeout_s: int = 20,
        ws_heartbeat_s: int = 20,
        max_retries: int = 3,
        backoff_s: float = 0.5,
        rest_conn_limit: int = 40,
        rest_conn_limit_per_host: int = 10,
    ):
        self.category = category
        self.rest_timeout_s = rest_timeout_s
        self.ws_heartbeat_s = ws_heartbeat_s

        # REST robustness
        self.max_retries = max(1, int(max_retries))
        self.backoff_s = backoff_s
        self.rest_conn_limit = rest_conn_limit
        self.rest_conn_limit_per_host = rest_conn_limit_per_host

        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
            sock_connect=min(10, self.rest_timeout_s),
            sock_read=max(10, int(self.rest_timeout_s * 0.75)),
        )

    def _connector(self) -> aiohttp.TCPConnector:
        return aiohttp.TCPConnector(
            limit=self.rest_conn_limit,
            limit_per_host=self.rest_conn_limit_per_host,
            ttl_dns_cache=300,
            enable_cleanup_closed=True,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout(),
                connector=self._connector(),
                headers={"User-Agent": "signal-scanner/0.1"},
            )
        return self._session

    async def _get_json(self, path: str, params: Dict[str, Any], *, symbol: str = "?") -> Dict[str, Any]:
        url = REST_BASE + path
        sess = await self._get_session()

        backoff = float(self.backoff_s)
        last_err: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                async with sess.get(url, params=params) as resp:
                    if resp.status in (403, 429):
                        txt = await resp.text()
                        retry_after = resp.headers.get("Retry-After")
                        raise RateLimitError(
                            f"Bybit rate limited: {resp.status} {txt[:200]}",
                            symbol=symbol,
                            retry_after_s=float(retry_after) if (retry_after and retry_after.isdigit()) else None,
                        )
                    if resp.status >= 500:
                        txt = await resp.text()
                        raise aiohttp.ClientResponseError(
                            resp.request_info, resp.history, status=resp.status, message=txt[:200],
                        )
                    if resp.status != 200:
                        txt = await resp.text()
                        raise NetworkError(f"Bybit request failed: {resp.status} {txt[:500]}", symbol=symbol)
                    # Some proxies return a wrong content-type; be tolerant.
                    data = await resp.json(content_type=None)
                last_err = None
                break

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_err = e
                if attempt >= self.max_retries:
                    break
                log.warning(
                    "rest_timeout_or_client_err attempt=%d/%d symbol=%s backoff=%.1fs err=%s",
                    attempt,
                    self.max_retries,
                    symbol,
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 20.0)

        if last_err is not None:
            raise NetworkError(f"Bybit request failed after {self.max_retries} attempts: {last_err!r}", symbol=symbol) from last_err

        if not isinstance(data, dict):
            raise MalformedDataError("Bybit response is not an object", symbol=symbol)
        code = data.get("retCode")
        if code == 0:
            return data
        msg = str(data.get("retMsg") or code)
        if code in RATE_LIMIT_CODES:
            raise RateLimitError(f"Bybit rate limited: {msg}", symbol=symbol)
        if code in INVALID_SYMBOL_CODES:
            raise InvalidSymbolError(f"Bybit rejected symbol: {msg}", symbol=symbol)
        raise MalformedDataError(f"Bybit error {code}: {msg}", symbol=symbol)

    async def fetch(self, symbol: str, interval_minutes: int, limit: int) -> List[Candle]:
        symbol = symbol.upper()
        params = {
            "category": self.category,
            "symbol": symbol,
            "interval": bybit_interval(interval_minutes),
            # one extra bar because the forming bar is dropped
            "limit": min(int(limit) + 1, MAX_LIMIT),
        }
        data = await self._get_json(KLINE_PATH, params, symbol=symbol)
        rows = (data.get("result") or {}).get("list")
        if rows is None:
            raise MalformedDataError("kline response has no result.list", symbol=symbol)
        if not rows:
            return []
        candles = parse_kline_rows(rows, interval_minutes, int(time.time() * 1000), symbol=symbol)
        return candles[-int(limit):]

    async def list_symbols(self) -> List[str]:
        """All trading USDT-quoted instruments in this category."""
        out: List[str] = []
        cursor = ""
        while True:
            params = {"category": self.category, "limit": 1000}
            if cursor:
                params["cursor"] = cursor
            data = await self._get_json(INSTRUMENTS_PATH, params)
            result = data.get("result") or {}
            for inst in result.get("list") or []:
                sym = str(inst.get("symbol", ""))
                if inst.get("status") == "Trading" and sym.endswith("USDT"):
                    out.append(sym)
            cursor = result.get("nextPageCursor") or ""
            if not cursor:
                break
        return sorted(set(out))

    async def stream_closed_candles(self, symbol: str, timeframe: str) -> AsyncIterator[Candle]:
        """Yields CLOSED candles for (symbol, timeframe). Auto-reconnects."""
        minutes = tf_minutes(timeframe)
        topic = _topic(symbol, minutes)
        ws_url = _ws_url(self.category)
        sub_msg = {"op": "subscribe", "args": [topic]}

        backoff = 1
        last_start: Optional[int] = None
        while True:
            try:
                async with websockets.connect(
                    ws_url,
                    ping_interval=self.ws_heartbeat_s,
                    ping_timeout=self.ws_heartbeat_s,
                    close_timeout=5,
                    max_queue=1000,
                ) as ws:
                    backoff = 1
                    await ws.send(json.dumps(sub_msg))
                    log.info("ws_subscribed topic=%s category=%s", topic, self.category)
                    heartbeat = asyncio.create_task(self._app_ping(ws))
                    try:
                        async for msg in ws:
                            try:
                                j = json.loads(msg)
                            except ValueError:
                                continue
                            if j.get("topic") != topic:
                                continue  # acks and pongs
                            for item in j.get("data") or []:
                                if not item.get("confirm", False):
                                    continue  # only closed candles
                                c = parse_ws_kline(item)
                                if last_start is not None and c.timestamp_ms <= last_start:
                                    continue
                                last_start = c.timestamp_ms
                                yield c
                    finally:
                        heartbeat.cancel()

            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning("ws_error err=%s reconnect_in=%ss", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60)

    async def _app_ping(self, ws) -> None:
        # Bybit drops idle public connections without an application-level ping.
        while True:
            await asyncio.sleep(self.ws_heartbeat_s)
            await ws.send(json.dumps({"op": "ping"}))
