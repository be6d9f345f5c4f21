"""News sources: Alpaca news via alpaca-py, business headlines via NewsAPI."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Protocol

import requests

from services.sentiment.types import Article, normalize_article

NEWSAPI_URL = "https://newsapi.org/v2/top-headlines"


class NewsSource(Protocol):
    """What the engine needs from a news provider."""

    async def get_stock_news(self, symbol: str, limit: int = 5) -> List[Article]:
        ...

    async def get_market_news(self, limit: int = 20) -> List[Article]:
        ...


def _news_items(response: Any) -> List[Any]:
    items = getattr(response, "news", None)
    if items is None:
        data = getattr(response, "data", None)
        if isinstance(data, dict):
            items = data.get("news")
    if items is None and isinstance(response, dict):
        items = response.get("news")
    if items is None and isinstance(response, list):
        items = response
    return list(items or [])


class AlpacaNewsClient:
    """Recent headlines from Alpaca News, normalised to ``Article``."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        *,
        news_api_key: Optional[str] = None,
        hours_back: int = 72,
        http_timeout: float = 10.0,
        client: Optional[object] = None,
    ) -> None:
        self.api_key = api_key or os.getenv("ALPACA_API_KEY_ID") or os.getenv("ALPACA_API_KEY")
        self.secret_key = (
            secret_key or os.getenv("ALPACA_API_SECRET_KEY") or os.getenv("ALPACA_SECRET_KEY")
        )
        self.news_api_key = news_api_key if news_api_key is not None else os.getenv("NEWS_API_KEY")
        self.hours_back = hours_back
        self.http_timeout = http_timeout
        self._client = client
        self.log = logging.getLogger("optionpilot.news")

    def _get_client(self):  # type: ignore[no-untyped-def]
        if self._client is None:
            if not self.api_key or not self.secret_key:
                raise RuntimeError("Missing ALPACA_API_KEY_ID/ALPACA_API_SECRET_KEY")
            from alpaca.data.historical.news import NewsClient

            self._client = NewsClient(self.api_key, self.secret_key)
        return self._client

    def _fetch_alpaca(self, symbols: Optional[str], limit: int) -> List[Article]:
        from alpaca.data.requests import NewsRequest

        end = datetime.now(timezone.utc)
        start = end - timedelta(hours=self.hours_back)
        request = NewsRequest(symbols=symbols, start=start, end=end, limit=limit, include_content=False)
        response = self._get_client().get_news(request)
        return [normalize_article(item, symbols) for item in _news_items(response)][:limit]

    def _fetch_newsapi(self, limit: int) -> List[Article]:
        response = requests.get(
            NEWSAPI_URL,
            params={"category": "business", "country": "us", "pageSize": limit, "apiKey": self.news_api_key},
            timeout=self.http_timeout,
        )
        response.raise_for_status()
        articles = response.json().get("articles") or []
        return [normalize_article(item) for item in articles][:limit]

    async def get_stock_news(self, symbol: str, limit: int = 5) -> List[Article]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_alpaca, symbol, limit)

    async def get_market_news(self, limit: int = 20) -> List[Article]:
        loop = asyncio.get_running_loop()
        if self.news_api_key:
            try:
                return await loop.run_in_executor(None, self._fetch_newsapi, limit)
            except Exception as exc:  # noqa: BLE001 - fall through to Alpaca news
                self.log.warning("news.newsapi_failed", extra={"error": str(exc)})
        else:
            self.log.debug("NEWS_API_KEY not configured; using Alpaca news only")
        return await loop.run_in_executor(None, self._fetch_alpaca, None, limit)


__all__ = ["NewsSource", "AlpacaNewsClient"]
