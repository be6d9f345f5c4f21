"""Keyword sentiment scoring and ticker detection for news articles."""

from __future__ import annotations

import re
from typing import Collection, Iterable, List, Optional

from services.sentiment.types import Article, ScoredArticle, Sentiment, normalize_article

POSITIVE_KEYWORDS = (
    "growth", "profit", "gain", "rise", "increase", "success", "positive",
    "bullish", "upgrade", "beat", "exceed", "strong", "boom", "rally",
    "outperform", "buy", "overweight", "target", "higher", "optimistic",
)

NEGATIVE_KEYWORDS = (
    "loss", "decline", "fall", "drop", "negative", "bearish", "downgrade",
    "miss", "weak", "crash", "recession", "concern", "risk", "uncertainty",
    "underperform", "sell", "underweight", "lower", "pessimistic",
)

KNOWN_TICKERS = frozenset({
    "AAPL", "MSFT", "AMZN", "GOOGL", "GOOG", "META", "TSLA", "NVDA", "JPM",
    "BAC", "WMT", "DIS", "NFLX", "INTC", "AMD", "IBM", "CSCO", "ORCL", "CRM",
    "V", "MA", "PG", "JNJ", "KO", "PEP", "MCD", "NKE", "SBUX", "GS", "MS",
    "SPY", "QQQ", "IWM", "DIA", "XLF", "XLE", "XLK", "XLV", "PYPL", "BABA",
    "UBER", "LYFT", "PLTR", "COIN", "ZM", "SHOP", "SQ", "ROKU", "TTD", "SNAP",
    "TWTR", "PINS", "ETSY", "DASH", "ABNB", "RBLX", "GME", "AMC", "BB", "NOK",
})

NON_TICKERS = frozenset({
    "CEO", "CFO", "CTO", "COO", "FBI", "SEC", "FED", "GDP", "IPO", "USA",
    "NYSE", "AI", "ML", "AR", "VR", "API", "EPS", "ETF",
    "ESG", "USD", "EUR", "GBP", "JPY", "CAD", "AUD", "CHF", "CPI", "PPI",
    "PMI", "FAQ", "CES", "CSS", "HTML", "JSON", "REST", "SQL", "AWS", "GCP",
    "UK", "EU", "UN", "WHO", "IMF", "ECB", "WTO", "CDC", "FDA", "EMA",
})

LONG_ARTICLE_CHARS = 500
LONG_ARTICLE_BOOST = 0.5
RELEVANCE_BOOST = 0.5

_SYMBOL = re.compile(r"\b([A-Z]{1,5})\b")


def keyword_hits(text: str, keywords: Iterable[str]) -> int:
    """Count substring occurrences of every keyword in lower-cased ``text``."""

    lowered = text.lower()
    return sum(lowered.count(word) for word in keywords)


def detect_symbols(text: str, watchlist: Optional[Collection[str]] = None) -> List[str]:
    """Find ticker-like tokens; watchlist symbols are matched first and always kept."""

    detected: dict[str, None] = {}
    for symbol in watchlist or ():
        if re.search(rf"\b{re.escape(symbol)}\b", text):
            detected.setdefault(symbol, None)
    for match in _SYMBOL.finditer(text):
        token = match.group(1)
        if token in KNOWN_TICKERS or (len(token) > 1 and token not in NON_TICKERS):
            detected.setdefault(token, None)
    return list(detected)


def trading_impact(score: float) -> str:
    if score > 1.5:
        return "Strong Bullish"
    if score > 0.5:
        return "Mildly Bullish"
    if score < -1.5:
        return "Strong Bearish"
    if score < -0.5:
        return "Mildly Bearish"
    return "Neutral"


def score_article(article: Article, watchlist: Optional[Collection[str]] = None) -> ScoredArticle:
    text = article.text
    lowered = text.lower()
    detected = detect_symbols(text, watchlist)

    positive = float(keyword_hits(lowered, POSITIVE_KEYWORDS))
    negative = float(keyword_hits(lowered, NEGATIVE_KEYWORDS))
    if len(lowered) > LONG_ARTICLE_CHARS:
        positive += LONG_ARTICLE_BOOST

    relevance = 0.0
    if watchlist:
        members = set(watchlist)
        relevance = RELEVANCE_BOOST * sum(1 for symbol in detected if symbol in members)

    sentiment: Sentiment = "neutral"
    if positive > negative:
        sentiment = "positive"
    elif negative > positive:
        sentiment = "negative"

    score = (positive - negative) + relevance
    return ScoredArticle(
        article=article,
        sentiment=sentiment,
        sentiment_score=score,
        detected_symbols=tuple(detected),
        trading_impact=trading_impact(score),
    )


class SentimentScorer:
    """Scores articles against a live view of the engine's watchlist."""

    def __init__(self, watchlist: Optional[Collection[str]] = None) -> None:
        self.watchlist = watchlist

    def score(self, articles: Optional[Iterable[object]]) -> List[ScoredArticle]:
        if not articles:
            return []
        members = list(self.watchlist) if self.watchlist is not None else None
        return [score_article(normalize_article(raw), members) for raw in articles]


__all__ = [
    "POSITIVE_KEYWORDS",
    "NEGATIVE_KEYWORDS",
    "KNOWN_TICKERS",
    "NON_TICKERS",
    "keyword_hits",
    "detect_symbols",
    "trading_impact",
    "score_article",
    "SentimentScorer",
]
