from __future__ import annotations

import dataclasses
import hashlib
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from .errors import ConfigError
from .timeframes import normalize_tf


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _default_cooldowns() -> Dict[str, int]:
    return {"1m": 5, "5m": 15, "15m": 30, "30m": 45, "1h": 60, "4h": 180, "1d": 720}


@dataclass(frozen=True)
class StrategyConfig:
    """Everything the indicator, rule and risk stages read.

    adx_threshold      ADX at or above this counts as a trending market; below it,
                       and without a volume spike, nothing is emitted.
    vol_spike_mult     volume / average volume needed for volume confirmation.
    vol_expansion      recent / prior return stdev needed for volatility expansion.
    stoch_oversold     SHORT stochastic check requires %K above this (room to fall).
    stoch_overbought   LONG stochastic check requires %K below this (room to rise).
    atr_mult           stop distance in ATRs.
    tp_r_mult          take-profit distance as a multiple of the stop distance.
    min_stop_pct       stop distance floor as a fraction of entry.
    cooldown_minutes_by_timeframe
                       per timeframe re-emission window for (symbol, tf, direction).
    """

    name: str = "tight"

    # indicator periods
    fast_ema: int = 21
    slow_sma: int = 200
    slope_lookback: int = 3
    rsi_len: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bb_len: int = 20
    bb_k: float = 2.0
    stoch_len: int = 14
    stoch_d: int = 3
    atr_len: int = 14
    adx_len: int = 14
    volume_period: int = 20
    vol_recent: int = 10
    vol_prior: int = 30
    breakout_len: int = 5

    # rule thresholds
    adx_threshold: float = 20.0
    vol_spike_mult: float = 1.3
    vol_expansion: float = 1.1
    stoch_oversold: float = 20.0
    stoch_overbought: float = 80.0
    rsi_long_min: float = 45.0
    rsi_long_max: float = 70.0
    rsi_short_min: float = 30.0
    rsi_short_max: float = 55.0
    min_score: float = 70.0
    min_confidence: float = 0.55

    # risk
    atr_mult: float = 2.0
    tp_r_mult: float = 1.5
    min_stop_pct: float = 0.002
    price_decimals: int = 8

    # lifecycle
    cooldown_minutes_by_timeframe: Dict[str, int] = field(default_factory=_default_cooldowns)
    default_cooldown_minutes: int = 30
    signal_ttl_bars: int = 4
    min_lookback: int = 0  # 0 = derive from periods

    def required_lookback(self) -> int:
        derived = max(
            self.slow_sma,
            self.fast_ema + self.slope_lookback,
            self.macd_slow + self.macd_signal,
            self.rsi_len + 1,
            self.bb_len,
            self.stoch_len + self.stoch_d - 1,
            self.atr_len + 1,
            2 * self.adx_len + 1,
            self.volume_period + 1,
            self.vol_recent + self.vol_prior + 1,
            self.breakout_len + 1,
        )
        return max(derived, int(self.min_lookback))

    def cooldown_minutes(self, timeframe: str) -> int:
        try:
            tf = normalize_tf(timeframe)
        except ValueError:
            tf = timeframe
        for key, minutes in self.cooldown_minutes_by_timeframe.items():
            try:
                if normalize_tf(key) == tf:
                    return int(minutes)
            except ValueError:
                continue
        return int(self.default_cooldown_minutes)

    def signature(self) -> str:
        payload = json.dumps(dataclasses.asdict(self), sort_keys=True, separators=(",", ":"), ensure_ascii=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def with_overrides(self, overrides: Optional[Dict[str, Any]]) -> "StrategyConfig":
        if not overrides:
            return self
        known = {f.name for f in dataclasses.fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(f"Unknown strategy keys: {', '.join(unknown)}")
        return dataclasses.replace(self, **overrides)

    def validate(self) -> None:
        errs = []
        if not 0 <= self.min_score <= 100:
            errs.append("min_score must be within [0, 100]")
        if not 0 <= self.min_confidence <= 1:
            errs.append("min_confidence must be within [0, 1]")
        if self.atr_mult <= 0 or self.tp_r_mult <= 0:
            errs.append("atr_mult and tp_r_mult must be > 0")
        if self.min_stop_pct < 0:
            errs.append("min_stop_pct must be >= 0")
        if self.stoch_oversold >= self.stoch_overbought:
            errs.append("stoch_oversold must be below stoch_overbought")
        for name in ("fast_ema", "slow_sma", "rsi_len", "bb_len", "stoch_len", "atr_len", "adx_len",
                     "volume_period", "vol_recent", "vol_prior", "breakout_len", "slope_lookback"):
            if int(getattr(self, name)) <= 0:
                errs.append(f"{name} must be > 0")
        if errs:
            raise ConfigError(f"Invalid strategy '{self.name}': " + "; ".join(errs))


# Relaxed profile for discovery in quiet markets.
DEFAULT_PROFILES: Dict[str, Dict[str, Any]] = {
    "tight": {},
    "relaxed": {
        "adx_threshold": 15.0,
        "vol_spike_mult": 1.1,
        "vol_expansion": 1.0,
        "breakout_len": 3,
        "min_score": 60.0,
        "min_confidence": 0.55,
    },
}


@dataclass
class ProviderConfig:
    type: str = "bybit"
    category: str = "linear"  # linear|spot
    rest_timeout_s: int = 20
    ws_heartbeat_s: int = 20
    max_retries: int = 3
    backoff_s: float = 0.5


@dataclass
class ScanConfig:
    default_symbols: List[str] = None
    default_timeframe: str = "15m"
    batch_size: int = 10
    concurrency: int = 5
    inter_batch_delay_s: float = 0.5
    fetch_timeout_s: float = 15.0
    fetch_limit: int = 300
    heartbeat_symbol: str = "BTCUSDT"


@dataclass
class SinkConfig:
    type: str = "memory"  # memory|jsonl|webhook
    path: str = "signals.jsonl"
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass
class AppConfig:
    name: str = "Signal Scanner"
    log_level: str = "INFO"


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    scan: ScanConfig
    strategy: StrategyConfig
    sink: SinkConfig
    server: ServerConfig
    profiles: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    timeframes: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def strategy_for(self, timeframe: str, relaxed: bool = False) -> StrategyConfig:
        """Base strategy, then the profile overrides, then the timeframe overrides.

        A timeframe block may carry its own ``relaxed`` sub-block, applied last.
        """
        profile = "relaxed" if relaxed else "tight"
        strat = self.strategy.with_overrides(self.profiles.get(profile))
        strat = dataclasses.replace(strat, name=profile)

        tf_block = self._timeframe_block(timeframe)
        if tf_block:
            flat = {k: v for k, v in tf_block.items() if k not in ("tight", "relaxed")}
            strat = strat.with_overrides(flat)
            strat = strat.with_overrides(tf_block.get(profile))
        strat.validate()
        return strat

    def _timeframe_block(self, timeframe: str) -> Dict[str, Any]:
        try:
            want = normalize_tf(timeframe)
        except ValueError:
            return {}
        for key, block in self.timeframes.items():
            try:
                if normalize_tf(key) == want:
                    return block or {}
            except ValueError:
                continue
        return {}


def _build(cls, raw: Optional[Dict[str, Any]], section: str):
    try:
        return cls(**(raw or {}))
    except TypeError as e:
        raise ConfigError(f"Invalid '{section}' section: {e}") from e


def default_config() -> Config:
    return _finalize(Config(
        app=AppConfig(),
        provider=ProviderConfig(),
        scan=ScanConfig(),
        strategy=StrategyConfig(),
        sink=SinkConfig(),
        server=ServerConfig(),
        profiles={k: dict(v) for k, v in DEFAULT_PROFILES.items()},
        timeframes={},
    ))


def load_config(path: Optional[str]) -> Config:
    if not path:
        return default_config()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    strategy_raw = dict(raw.get("strategy") or {})
    profiles = {k: dict(v) for k, v in DEFAULT_PROFILES.items()}
    for name, block in (raw.get("profiles") or {}).items():
        profiles[name] = {**profiles.get(name, {}), **(block or {})}

    strategy = StrategyConfig().with_overrides(strategy_raw)

    cfg = Config(
        app=_build(AppConfig, raw.get("app"), "app"),
        provider=_build(ProviderConfig, raw.get("provider"), "provider"),
        scan=_build(ScanConfig, raw.get("scan"), "scan"),
        strategy=strategy,
        sink=_build(SinkConfig, raw.get("sink"), "sink"),
        server=_build(ServerConfig, raw.get("server"), "server"),
        profiles=profiles,
        timeframes=dict(raw.get("timeframes") or {}),
    )
    return _finalize(cfg)


def _finalize(cfg: Config) -> Config:
    # env overrides (useful on servers)
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")
    cfg.provider.category = _env_override(cfg.provider.category, "BYBIT_CATEGORY")
    cfg.sink.url = _env_override(cfg.sink.url, "SIGNAL_WEBHOOK_URL")
    cfg.sink.secret = _env_override(cfg.sink.secret, "SIGNAL_WEBHOOK_SECRET")
    cfg.server.port = _env_override(cfg.server.port, "PORT")
    if cfg.sink.headers is None:
        cfg.sink.headers = {}

    if cfg.scan.default_symbols is None:
        cfg.scan.default_symbols = ["BTCUSDT", "ETHUSDT", "SOLUSDT", "BNBUSDT", "XRPUSDT", "ADAUSDT", "DOGEUSDT"]
    # Allow SCAN_SYMBOLS="BTCUSDT,ETHUSDT"
    sym_env = os.getenv("SCAN_SYMBOLS")
    if sym_env:
        cfg.scan.default_symbols = [x.strip().upper() for x in sym_env.split(",") if x.strip()]

    if cfg.scan.batch_size <= 0 or cfg.scan.concurrency <= 0:
        raise ConfigError("scan.batch_size and scan.concurrency must be > 0")
    cfg.strategy.validate()
    for profile in ("tight", "relaxed"):
        needed = cfg.strategy_for(cfg.scan.default_timeframe, relaxed=(profile == "relaxed")).required_lookback()
        if cfg.scan.fetch_limit < needed:
            raise ConfigError(f"scan.fetch_limit={cfg.scan.fetch_limit} below required lookback {needed} ({profile})")
    return cfg
