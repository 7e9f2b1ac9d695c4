from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Tuple

from aiohttp import web

from .errors import ConfigError
from .models import iso_ms
from .scanner import ScanOrchestrator, _now_ms
from .timeframes import normalize_tf

log = logging.getLogger("http")


def parse_scan_request(body: Any) -> Tuple[Optional[List[str]], str, bool]:
    """Validate ``{symbols?: [str], timeframe: str, relaxed_filters?: bool}``."""
    if not isinstance(body, dict):
        raise ValueError("body must be a JSON object")

    tf = body.get("timeframe")
    if not isinstance(tf, str) or not tf.strip():
        raise ValueError("timeframe is required")
    tf = normalize_tf(tf)

    symbols = body.get("symbols")
    if symbols is not None:
        if not isinstance(symbols, list) or not all(isinstance(s, str) for s in symbols):
            raise ValueError("symbols must be a list of strings")

    relaxed = body.get("relaxed_filters", False)
    if relaxed is None:
        relaxed = False
    if not isinstance(relaxed, bool):
        raise ValueError("relaxed_filters must be a boolean")
    return (symbols or None), tf, relaxed


def _error(status: int, msg: str) -> web.Response:
    return web.json_response(
        {"success": False, "error": msg, "timestamp": iso_ms(_now_ms())},
        status=status,
    )


def create_app(orchestrator: ScanOrchestrator) -> web.Application:
    async def handle_scan(request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError:
            return _error(400, "body must be valid JSON")
        try:
            symbols, tf, relaxed = parse_scan_request(body)
        except ValueError as e:
            return _error(400, str(e))

        log.info("scan_request tf=%s relaxed=%s symbols=%s", tf, relaxed, len(symbols) if symbols else "all")
        try:
            result = await orchestrator.scan(symbols, tf, relaxed=relaxed)
        except ConfigError as e:
            return _error(400, str(e))
        except Exception as e:
            log.exception("scan_request_failed tf=%s err=%s", tf, e)
            return _error(500, str(e))
        return web.json_response(result.to_response(), dumps=lambda o: json.dumps(o, sort_keys=True))

    async def handle_health(request: web.Request) -> web.Response:
        return web.json_response({"ok": True, "timestamp": iso_ms(_now_ms())})

    async def _close(app: web.Application) -> None:
        await orchestrator.source.close()
        await orchestrator.sink.close()

    app = web.Application()
    app.router.add_post("/scan", handle_scan)
    app.router.add_get("/health", handle_health)
    app.on_cleanup.append(_close)
    return app
