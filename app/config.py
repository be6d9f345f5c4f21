"""Configuration management for the options decision engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import List, Tuple

from dotenv import load_dotenv

from services.strategy.universe import DEFAULT_WATCHLIST

load_dotenv()

log = logging.getLogger("optionpilot.config")

REQUIRED_ENV = (
    ("ALPACA_KEY_ID", "ALPACA_API_KEY_ID", "ALPACA_API_KEY"),
    ("ALPACA_SECRET_KEY", "ALPACA_API_SECRET_KEY", "ALPACA_API_SECRET"),
)
OPTIONAL_ENV = ("NEWS_API_KEY", "SLACK_WEBHOOK_URL")


def _env_pick(*names: str, default: str | None = None) -> str | None:
    """Return the first non-empty environment variable in *names*."""

    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def _bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        log.warning("config.invalid_float", extra={"name": name, "value": raw})
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        log.warning("config.invalid_int", extra={"name": name, "value": raw})
        return default


def _env_symbols(name: str, default: Tuple[str, ...]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    symbols = [s.strip().upper() for s in raw.split(",") if s.strip()]
    return symbols or list(default)


@dataclass(frozen=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    alpaca_key_id: str
    alpaca_secret_key: str
    alpaca_base_url: str | None
    paper: bool
    data_feed: str
    news_api_key: str | None
    slack_webhook_url: str | None
    environment: str


@dataclass(frozen=True)
class TradingParams:
    """Risk and strategy knobs; malformed values fall back to defaults."""

    max_position_size: float = 1000.0
    risk_percentage: float = 0.02
    min_volume: int = 10_000
    option_expiry_months: int = 8
    profit_target_pct: float = 0.15
    max_contracts: int = 5
    atm_tolerance: float = 0.02
    min_confidence: float = 0.5
    max_trades_per_cycle: int = 3
    cache_ttl_hours: float = 12.0
    synthetic_cache_ttl_min: float = 60.0
    request_timeout_sec: float = 10.0
    max_concurrency: int = 4
    watchlist: List[str] = field(default_factory=lambda: list(DEFAULT_WATCHLIST))

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_hours * 3600.0

    @property
    def synthetic_cache_ttl_seconds(self) -> float:
        return self.synthetic_cache_ttl_min * 60.0


def get_settings() -> Settings:
    """Load application settings from the environment."""

    key = _env_pick(*REQUIRED_ENV[0], default="") or ""
    secret = _env_pick(*REQUIRED_ENV[1], default="") or ""
    base_url = _env_pick("ALPACA_BASE_URL")
    if not key or not secret:
        raise RuntimeError(
            "Missing ALPACA_API_KEY_ID/ALPACA_API_KEY or "
            "ALPACA_API_SECRET_KEY/ALPACA_API_SECRET in environment."
        )

    paper_requested = _bool("ALPACA_PAPER", True)
    trading_mode = os.getenv("TRADING_MODE", "paper").lower()
    live_flag = os.getenv("LIVE_TRADING", "false").lower() == "true"
    live_requested = trading_mode == "live" or not paper_requested
    if live_requested and not live_flag:
        raise RuntimeError(
            "Refusing to enable live trading without LIVE_TRADING=true."
        )

    return Settings(
        alpaca_key_id=key,
        alpaca_secret_key=secret,
        alpaca_base_url=base_url,
        paper=not live_requested,
        data_feed=os.getenv("ALPACA_DATA_FEED", "iex").lower(),
        news_api_key=_env_pick("NEWS_API_KEY", "NEWSAPI_KEY"),
        slack_webhook_url=_env_pick("SLACK_WEBHOOK_URL"),
        environment=os.getenv("APP_ENV", "development").lower(),
    )


def get_trading_params() -> TradingParams:
    """Load risk and strategy parameters from the environment."""

    defaults = TradingParams()
    return TradingParams(
        max_position_size=_env_float("MAX_POSITION_SIZE", defaults.max_position_size),
        risk_percentage=_env_float("RISK_PERCENTAGE", defaults.risk_percentage),
        min_volume=_env_int("MIN_VOLUME", defaults.min_volume),
        option_expiry_months=_env_int("OPTION_EXPIRY_MONTHS", defaults.option_expiry_months),
        profit_target_pct=_env_float("PROFIT_TARGET_PCT", defaults.profit_target_pct),
        max_contracts=_env_int("MAX_CONTRACTS", defaults.max_contracts),
        atm_tolerance=_env_float("ATM_TOLERANCE", defaults.atm_tolerance),
        min_confidence=_env_float("MIN_CONFIDENCE", defaults.min_confidence),
        max_trades_per_cycle=_env_int("MAX_TRADES_PER_CYCLE", defaults.max_trades_per_cycle),
        cache_ttl_hours=_env_float("CACHE_TTL_HOURS", defaults.cache_ttl_hours),
        synthetic_cache_ttl_min=_env_float(
            "SYNTHETIC_CACHE_TTL_MIN", defaults.synthetic_cache_ttl_min
        ),
        request_timeout_sec=_env_float("REQUEST_TIMEOUT_SEC", defaults.request_timeout_sec),
        max_concurrency=max(1, _env_int("MAX_CONCURRENCY", defaults.max_concurrency)),
        watchlist=_env_symbols("WATCHLIST", DEFAULT_WATCHLIST),
    )


def missing_env() -> List[str]:
    """Names of required variables (first alias) that are not set."""

    return [names[0] for names in REQUIRED_ENV if not _env_pick(*names)]
