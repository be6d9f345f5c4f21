"""Combine technical, news and trending inputs into a ranked action list."""

from __future__ import annotations

from typing import Iterable, List, Optional

from services.market.indicators import TechnicalAnalysis
from services.sentiment.types import NewsImpact
from services.strategy.types import Action, Opportunity, PositionSide

NEWS_WEIGHT = 0.3
TRENDING_BONUS = 0.2
ACTION_THRESHOLD = 0.4
MIN_CONFIDENCE = 0.5
MAX_TRADES_PER_CYCLE = 3


def news_score(news: Optional[NewsImpact]) -> float:
    if news is None:
        return 0.0
    if news.sentiment == "positive":
        return NEWS_WEIGHT
    if news.sentiment == "negative":
        return -NEWS_WEIGHT
    return 0.0


def trending_bonus(is_trending: bool, technical_score: float) -> float:
    """Bonus follows the technical direction, not the news."""

    if not is_trending:
        return 0.0
    return TRENDING_BONUS if technical_score > 0 else -TRENDING_BONUS


def evaluate_opportunity(
    analysis: TechnicalAnalysis,
    news: Optional[NewsImpact],
    *,
    is_trending: bool = False,
    position_side: Optional[PositionSide] = None,
) -> Opportunity:
    technical = analysis.signal.strength / 100
    news_component = news_score(news)
    bonus = trending_bonus(is_trending, technical)
    combined = technical + news_component + bonus

    action: Action = "hold"
    option_type: Optional[str] = None
    if combined > ACTION_THRESHOLD:
        action, option_type = "buy", "call"
    elif combined < -ACTION_THRESHOLD:
        action, option_type = "sell", "put"

    if position_side == "long" and action == "sell":
        action = "close_long"
    elif position_side == "short" and action == "buy":
        action = "close_short"

    return Opportunity(
        symbol=analysis.symbol,
        action=action,
        option_type=option_type,
        confidence=abs(combined),
        combined_score=combined,
        technical_score=technical,
        news_score=news_component,
        trending_bonus=bonus,
        current_price=analysis.current_price,
        recommendation=analysis.signal.recommendation,
        rsi=analysis.snapshot.rsi,
        is_trending=is_trending,
        is_real_data=analysis.is_real_data and (news.is_real_data if news is not None else True),
    )


def rank_opportunities(opportunities: Iterable[Opportunity]) -> List[Opportunity]:
    """Drop holds and order by confidence, highest first."""

    actionable = [item for item in opportunities if item.action != "hold"]
    return sorted(actionable, key=lambda item: item.confidence, reverse=True)


def select_for_execution(
    ranked: Iterable[Opportunity],
    *,
    limit: int = MAX_TRADES_PER_CYCLE,
    min_confidence: float = MIN_CONFIDENCE,
) -> List[Opportunity]:
    """Top ``limit`` of an already-ranked list, then the confidence floor."""

    return [item for item in list(ranked)[:limit] if item.confidence >= min_confidence]


__all__ = [
    "evaluate_opportunity",
    "rank_opportunities",
    "select_for_execution",
    "news_score",
    "trending_bonus",
]
