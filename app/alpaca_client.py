from __future__ import annotations

from typing import Optional

from alpaca.data.historical import StockHistoricalDataClient
from alpaca.trading.client import TradingClient

from app.config import Settings, get_settings


def build_trading_client(settings: Optional[Settings] = None) -> TradingClient:
    settings = settings or get_settings()
    if settings.alpaca_base_url:
        return TradingClient(
            settings.alpaca_key_id,
            settings.alpaca_secret_key,
            paper=settings.paper,
            url_override=settings.alpaca_base_url,
        )
    return TradingClient(settings.alpaca_key_id, settings.alpaca_secret_key, paper=settings.paper)


def build_data_client(settings: Optional[Settings] = None) -> StockHistoricalDataClient:
    settings = settings or get_settings()
    return StockHistoricalDataClient(settings.alpaca_key_id, settings.alpaca_secret_key)
