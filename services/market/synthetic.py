"""Synthetic bars and news used only when live and cached data are unavailable."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import numpy as np

from services.market.bars import PriceBar
from services.sentiment.rule_model import trading_impact
from services.sentiment.types import Article, NewsImpact, ScoredArticle

MEGA_CAPS = {"AAPL", "MSFT", "GOOGL", "AMZN"}
INDEX_ETFS = {"SPY", "QQQ", "DIA", "IWM"}
HIGH_BETA = {"TSLA", "NVDA"}
VOLATILE = {"TSLA", "NVDA", "AMZN"}
HEAVY_VOLUME = {"AAPL", "MSFT", "SPY", "QQQ"}


def _rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


def base_price(symbol: str, rng: Optional[np.random.Generator] = None) -> float:
    gen = _rng(rng)
    if symbol in MEGA_CAPS:
        return 150 + gen.random() * 100
    if symbol in INDEX_ETFS:
        return 300 + gen.random() * 150
    if symbol in HIGH_BETA:
        return 200 + gen.random() * 150
    return 100.0


def daily_volatility(symbol: str) -> float:
    return 0.018 if symbol in VOLATILE else 0.01


def synthetic_bars(
    symbol: str,
    days: int = 100,
    *,
    rng: Optional[np.random.Generator] = None,
    now: Optional[datetime] = None,
) -> List[PriceBar]:
    """Random-walk daily bars with symbol-tuned price level, volatility and volume."""

    gen = _rng(rng)
    today = now or datetime.now(timezone.utc)
    price = base_price(symbol, gen)
    volatility = daily_volatility(symbol)
    heavy = symbol in HEAVY_VOLUME
    bars: List[PriceBar] = []
    for offset in range(days, 0, -1):
        change = (gen.random() * 2 - 1) * volatility * price
        open_ = price
        close = price + change
        high = max(open_, close) + gen.random() * 0.02 * price
        low = min(open_, close) - gen.random() * 0.02 * price
        volume = 5_000_000 + gen.random() * 3_000_000 if heavy else 1_000_000 + gen.random() * 1_000_000
        bars.append(
            PriceBar(
                timestamp=today - timedelta(days=offset),
                open=round(open_, 2),
                high=round(high, 2),
                low=round(low, 2),
                close=round(close, 2),
                volume=float(round(volume)),
            )
        )
        price = close
    return bars


def _synthetic_article(symbol: str, headline: str, summary: str, published: datetime, score: float, sentiment: str) -> ScoredArticle:
    article = Article(
        id=f"synthetic:{symbol}:{int(published.timestamp())}",
        headline=headline,
        summary=summary,
        symbol=symbol,
        source="synthetic",
        published_at=published,
        symbols=(symbol,),
    )
    return ScoredArticle(
        article=article,
        sentiment=sentiment,  # type: ignore[arg-type]
        sentiment_score=score,
        detected_symbols=(symbol,),
        trading_impact=trading_impact(score),
    )


def synthetic_news_impact(
    symbols: Iterable[str],
    *,
    rng: Optional[np.random.Generator] = None,
    now: Optional[datetime] = None,
) -> Dict[str, NewsImpact]:
    """Fabricated per-symbol impact, always flagged ``is_real_data=False``."""

    gen = _rng(rng)
    current = now or datetime.now(timezone.utc)
    impact: Dict[str, NewsImpact] = {}
    for symbol in dict.fromkeys(symbols):
        sentiment = ("positive", "neutral", "negative")[int(gen.integers(0, 3))]
        if sentiment == "positive":
            score = 0.3 + gen.random() * 0.5
        elif sentiment == "negative":
            score = -0.3 - gen.random() * 0.5
        else:
            score = -0.2 + gen.random() * 0.4
        recent = [
            _synthetic_article(
                symbol,
                f"{symbol} Announces Quarterly Results",
                f"{symbol} reported its quarterly earnings, showing performance aligned with market expectations.",
                current - timedelta(hours=float(gen.random() * 48)),
                score,
                sentiment,
            )
        ]
        if gen.random() > 0.5:
            recent.append(
                _synthetic_article(
                    symbol,
                    f"Analyst Updates Outlook for {symbol}",
                    f"Financial analysts have updated their projections for {symbol} based on recent market developments.",
                    current - timedelta(hours=float(gen.random() * 24)),
                    score * 0.8,
                    sentiment,
                )
            )
        impact[symbol] = NewsImpact(
            symbol=symbol,
            sentiment=sentiment,  # type: ignore[arg-type]
            score=float(score),
            article_count=len(recent),
            recent_articles=recent,
            is_real_data=False,
        )
    return impact


__all__ = ["synthetic_bars", "synthetic_news_impact", "base_price", "daily_volatility"]
