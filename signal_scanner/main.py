from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from .config import Config, load_config
from .providers.bybit import BybitCandleSource
from .scanner import ScanOrchestrator
from .sinks import build_sink


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_orchestrator(cfg: Config) -> ScanOrchestrator:
    if cfg.provider.type != "bybit":
        raise ValueError(f"Unsupported provider type: {cfg.provider.type}")
    source = BybitCandleSource(
        category=cfg.provider.category,
        rest_timeout_s=cfg.provider.rest_timeout_s,
        ws_heartbeat_s=cfg.provider.ws_heartbeat_s,
        max_retries=cfg.provider.max_retries,
        backoff_s=cfg.provider.backoff_s,
    )
    return ScanOrchestrator(cfg, source, build_sink(cfg.sink))


async def _scan_once(orch: ScanOrchestrator, symbols, timeframe: str, relaxed: bool) -> dict:
    try:
        result = await orch.scan(symbols, timeframe, relaxed=relaxed)
    finally:
        await orch.source.close()
        await orch.sink.close()
    return result.to_response()


async def _watch(orch: ScanOrchestrator, cfg: Config, timeframe: str, relaxed: bool) -> None:
    """One scan per closed bar of the heartbeat symbol."""
    log = logging.getLogger("watch")
    hb = cfg.scan.heartbeat_symbol
    try:
        async for candle in orch.source.stream_closed_candles(hb, timeframe):
            log.info("bar_closed symbol=%s tf=%s ts=%d", hb, timeframe, candle.timestamp_ms)
            try:
                await orch.scan(None, timeframe, relaxed=relaxed)
            except Exception as e:
                log.exception("watch_scan_failed tf=%s err=%s", timeframe, e)
            orch.cooldowns.prune()
    finally:
        await orch.source.close()
        await orch.sink.close()


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Signal Scanner - indicator signals for crypto pairs")
    p.add_argument("--config", default=None, help="Path to YAML config (defaults built in)")
    sub = p.add_subparsers(dest="cmd", required=True)

    ps = sub.add_parser("scan", help="Run one scan cycle and print the result")
    ps.add_argument("--timeframe", default=None)
    ps.add_argument("--symbols", default="", help="Comma separated; empty = all listed pairs")
    ps.add_argument("--relaxed", action="store_true")

    sub.add_parser("serve", help="Serve POST /scan over HTTP")

    pw = sub.add_parser("watch", help="Scan on every closed bar of the heartbeat symbol")
    pw.add_argument("--timeframe", default=None)
    pw.add_argument("--relaxed", action="store_true")

    args = p.parse_args(argv)

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)
    orch = build_orchestrator(cfg)

    try:
        if args.cmd == "scan":
            symbols = [s for s in args.symbols.split(",") if s.strip()] or None
            timeframe = args.timeframe or cfg.scan.default_timeframe
            resp = asyncio.run(_scan_once(orch, symbols, timeframe, args.relaxed))
            json.dump(resp, sys.stdout, indent=2, sort_keys=True)
            sys.stdout.write("\n")
        elif args.cmd == "serve":
            from aiohttp import web

            from .http_api import create_app

            web.run_app(create_app(orch), host=cfg.server.host, port=int(cfg.server.port))
        elif args.cmd == "watch":
            timeframe = args.timeframe or cfg.scan.default_timeframe
            asyncio.run(_watch(orch, cfg, timeframe, args.relaxed))
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
