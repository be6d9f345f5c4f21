"""Dataclasses for news sentiment processing."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Literal, Mapping, Optional

Sentiment = Literal["positive", "negative", "neutral"]


@dataclass(frozen=True, slots=True)
class Article:
    """Normalized news article; every upstream shape is converted at ingestion."""

    id: str
    headline: str
    summary: str = ""
    symbol: Optional[str] = None
    source: str = ""
    url: Optional[str] = None
    published_at: Optional[datetime] = None
    symbols: tuple[str, ...] = ()

    @property
    def text(self) -> str:
        return f"{self.headline} {self.summary}"


def _field(raw: Any, *names: str) -> Any:
    for name in names:
        value = raw.get(name) if isinstance(raw, Mapping) else getattr(raw, name, None)
        if value not in (None, ""):
            return value
    return None


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def normalize_article(raw: Any, symbol: Optional[str] = None) -> Article:
    """Resolve ``headline|title`` and ``summary|description`` once."""

    if isinstance(raw, Article):
        return raw
    headline = str(_field(raw, "headline", "title") or "")
    summary = str(_field(raw, "summary", "description") or "")
    source = _field(raw, "source")
    if isinstance(source, Mapping):
        source = source.get("name")
    symbols = _field(raw, "symbols") or ()
    article_id = _field(raw, "id", "uuid", "url")
    if not article_id:
        digest = hashlib.sha1(headline.encode("utf-8")).hexdigest()[:12]
        article_id = f"{symbol or 'news'}:{digest}"
    return Article(
        id=str(article_id),
        headline=headline,
        summary=summary,
        symbol=symbol,
        source=str(source or ""),
        url=_field(raw, "url"),
        published_at=_parse_time(_field(raw, "published_at", "created_at", "publishedAt", "updated_at")),
        symbols=tuple(str(s) for s in symbols),
    )


@dataclass(frozen=True, slots=True)
class ScoredArticle:
    article: Article
    sentiment: Sentiment
    sentiment_score: float
    detected_symbols: tuple[str, ...]
    trading_impact: str


@dataclass(slots=True)
class NewsImpact:
    """Aggregated news sentiment for one symbol."""

    symbol: str
    sentiment: Sentiment = "neutral"
    score: float = 0.0
    article_count: int = 0
    recent_articles: List[ScoredArticle] = field(default_factory=list)
    is_real_data: bool = True
