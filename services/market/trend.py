"""Volume/price-momentum trending detection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Set

from services.market.bars import PriceBar

VOLUME_THRESHOLD = 1.5
SHORT_PRICE_THRESHOLD = 0.02
FULL_PRICE_THRESHOLD = 0.05
FULL_WINDOW = 20
RECENT_BARS = 5


@dataclass(frozen=True, slots=True)
class TrendReading:
    symbol: str
    trending: bool
    volume_ratio: float
    price_change: float
    volume: float
    price: float


def _mean(values: Iterable[float]) -> float:
    items = list(values)
    return sum(items) / len(items) if items else 0.0


def check_short(symbol: str, bars: Sequence[PriceBar]) -> Optional[TrendReading]:
    """Compare the latest session against the previous one.

    Returns ``None`` when fewer than two bars are available.
    """

    if len(bars) < 2:
        return None
    latest, previous = bars[-1], bars[-2]
    if previous.volume <= 0 or previous.close <= 0:
        return TrendReading(symbol, False, 0.0, 0.0, latest.volume, latest.close)
    volume_ratio = latest.volume / previous.volume
    price_change = (latest.close - previous.close) / previous.close
    trending = volume_ratio > VOLUME_THRESHOLD and abs(price_change) > SHORT_PRICE_THRESHOLD
    return TrendReading(symbol, trending, volume_ratio, price_change, latest.volume, latest.close)


def check_full(symbol: str, bars: Sequence[PriceBar]) -> Optional[TrendReading]:
    """Last 5 sessions against the preceding 15; both volume and price must move."""

    if len(bars) < FULL_WINDOW:
        return None
    window = bars[-FULL_WINDOW:]
    recent = window[-RECENT_BARS:]
    older = window[:-RECENT_BARS]
    recent_volume = _mean(bar.volume for bar in recent)
    older_volume = _mean(bar.volume for bar in older)
    start_price = older[0].close
    end_price = recent[-1].close
    if older_volume <= 0 or start_price <= 0:
        return TrendReading(symbol, False, 0.0, 0.0, recent[-1].volume, end_price)
    volume_ratio = recent_volume / older_volume
    price_change = (end_price - start_price) / start_price
    trending = volume_ratio > VOLUME_THRESHOLD and abs(price_change) > FULL_PRICE_THRESHOLD
    return TrendReading(symbol, trending, volume_ratio, price_change, recent[-1].volume, end_price)


def trending_members(readings: Iterable[Optional[TrendReading]]) -> Set[str]:
    """Membership for one detection pass; callers replace, not union, the prior set."""

    return {reading.symbol for reading in readings if reading is not None and reading.trending}


__all__ = [
    "TrendReading",
    "check_short",
    "check_full",
    "trending_members",
    "VOLUME_THRESHOLD",
]
