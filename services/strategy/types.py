"""Shared data structures for the strategy layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

Action = Literal["buy", "sell", "hold", "close_long", "close_short"]
PositionSide = Literal["long", "short"]


@dataclass(slots=True)
class Opportunity:
    """One symbol's decision for the current cycle."""

    symbol: str
    action: Action
    option_type: Optional[str]
    confidence: float
    combined_score: float
    technical_score: float
    news_score: float
    trending_bonus: float
    current_price: float
    recommendation: str = "hold"
    rsi: Optional[float] = None
    is_trending: bool = False
    is_real_data: bool = True

    @property
    def is_entry(self) -> bool:
        return self.action in ("buy", "sell")

    @property
    def is_exit(self) -> bool:
        return self.action in ("close_long", "close_short")
