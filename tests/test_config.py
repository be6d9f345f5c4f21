"""Tests for configuration loading."""

import pytest

from app.config import REQUIRED_ENV, get_settings, get_trading_params, missing_env
from services.strategy.universe import DEFAULT_WATCHLIST

_MODE_VARS = ("ALPACA_PAPER", "TRADING_MODE", "LIVE_TRADING", "ALPACA_DATA_FEED", "ALPACA_BASE_URL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for names in REQUIRED_ENV:
        for name in names:
            monkeypatch.delenv(name, raising=False)
    for name in _MODE_VARS:
        monkeypatch.delenv(name, raising=False)


def test_missing_keys_raises() -> None:
    assert missing_env() == ["ALPACA_KEY_ID", "ALPACA_SECRET_KEY"]
    with pytest.raises(RuntimeError):
        get_settings()


def test_defaults_and_parsing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALPACA_API_KEY_ID", "abc")
    monkeypatch.setenv("ALPACA_API_SECRET_KEY", "def")
    monkeypatch.setenv("ALPACA_DATA_FEED", "SIP")
    settings = get_settings()
    assert settings.paper is True
    assert settings.data_feed == "sip"
    assert settings.alpaca_base_url is None
    assert missing_env() == []


def test_old_env_names(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALPACA_API_KEY", "oldkey")
    monkeypatch.setenv("ALPACA_API_SECRET", "oldsecret")

    settings = get_settings()
    assert settings.alpaca_key_id == "oldkey"
    assert settings.alpaca_secret_key == "oldsecret"


def test_live_trading_requires_explicit_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALPACA_KEY_ID", "k")
    monkeypatch.setenv("ALPACA_SECRET_KEY", "s")
    monkeypatch.setenv("TRADING_MODE", "live")
    with pytest.raises(RuntimeError):
        get_settings()

    monkeypatch.setenv("LIVE_TRADING", "true")
    assert get_settings().paper is False


def test_trading_params_defaults() -> None:
    params = get_trading_params()
    assert params.risk_percentage == 0.02
    assert params.max_contracts == 5
    assert params.option_expiry_months == 8
    assert params.profit_target_pct == 0.15
    assert params.cache_ttl_seconds == 12 * 3600
    assert params.synthetic_cache_ttl_seconds == 3600
    assert params.watchlist == list(DEFAULT_WATCHLIST)
    assert len(params.watchlist) == 32


def test_trading_params_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RISK_PERCENTAGE", "0.05")
    monkeypatch.setenv("MAX_CONTRACTS", "2")
    monkeypatch.setenv("MAX_CONCURRENCY", "0")
    monkeypatch.setenv("WATCHLIST", "aapl, spy ,")
    params = get_trading_params()
    assert params.risk_percentage == 0.05
    assert params.max_contracts == 2
    assert params.max_concurrency == 1
    assert params.watchlist == ["AAPL", "SPY"]


def test_malformed_numbers_fall_back(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PROFIT_TARGET_PCT", "lots")
    monkeypatch.setenv("MAX_TRADES_PER_CYCLE", "three")
    params = get_trading_params()
    assert params.profit_target_pct == 0.15
    assert params.max_trades_per_cycle == 3
