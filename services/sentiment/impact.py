"""Per-symbol news impact aggregation."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from services.errors import DataUnavailableError
from services.market.resilience import call_with_timeout
from services.sentiment.fetchers import NewsSource
from services.sentiment.rule_model import SentimentScorer
from services.sentiment.types import Article, NewsImpact, ScoredArticle

ARTICLES_PER_SYMBOL = 3
RECENT_ARTICLES = 2


def summarize_impact(symbol: str, scored: Sequence[ScoredArticle]) -> NewsImpact:
    if not scored:
        return NewsImpact(symbol=symbol)
    average = sum(item.sentiment_score for item in scored) / len(scored)
    if average > 0:
        sentiment = "positive"
    elif average < 0:
        sentiment = "negative"
    else:
        sentiment = "neutral"
    return NewsImpact(
        symbol=symbol,
        sentiment=sentiment,
        score=average,
        article_count=len(scored),
        recent_articles=list(scored[:RECENT_ARTICLES]),
    )


class NewsImpactService:
    """Fetch and score recent news for a batch of symbols."""

    def __init__(
        self,
        source: NewsSource,
        scorer: SentimentScorer,
        *,
        max_concurrency: int = 4,
        timeout: Optional[float] = 10.0,
    ) -> None:
        self.source = source
        self.scorer = scorer
        self.max_concurrency = max(1, int(max_concurrency))
        self.timeout = timeout
        self.log = logging.getLogger("optionpilot.sentiment")

    async def _fetch(self, symbol: str, gate: asyncio.Semaphore) -> List[Article]:
        async with gate:
            return await call_with_timeout(
                lambda: self.source.get_stock_news(symbol, ARTICLES_PER_SYMBOL), self.timeout
            )

    async def get_news_impact(self, symbols: Iterable[str]) -> Dict[str, NewsImpact]:
        """Return impact per symbol.

        A symbol whose fetch fails contributes a neutral impact; when every
        fetch fails the batch raises ``DataUnavailableError`` so the caller can
        fall back to cached or synthetic data.
        """

        ordered = list(dict.fromkeys(symbols))
        if not ordered:
            return {}
        gate = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(
            *(self._fetch(symbol, gate) for symbol in ordered), return_exceptions=True
        )

        impact: Dict[str, NewsImpact] = {}
        failures = 0
        for symbol, result in zip(ordered, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failures += 1
                self.log.warning(
                    "sentiment.fetch_failed",
                    extra={"symbol": symbol, "error": str(result) or type(result).__name__},
                )
                impact[symbol] = NewsImpact(symbol=symbol)
                continue
            scored = self.scorer.score(list(result)[:ARTICLES_PER_SYMBOL])
            impact[symbol] = summarize_impact(symbol, scored)

        if failures == len(ordered):
            raise DataUnavailableError(f"news unavailable for all {failures} symbols")
        return impact


__all__ = ["NewsImpactService", "summarize_impact", "ARTICLES_PER_SYMBOL"]
