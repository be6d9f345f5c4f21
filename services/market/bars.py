"""Daily OHLCV bar type and conversions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Sequence

import pandas as pd

_FIELD_ALIASES = {
    "timestamp": ("timestamp", "t", "time"),
    "open": ("open", "o"),
    "high": ("high", "h"),
    "low": ("low", "l"),
    "close": ("close", "c"),
    "volume": ("volume", "v"),
}


@dataclass(frozen=True, slots=True)
class PriceBar:
    """One session of price action for a single symbol."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


def _pick(raw: Any, names: Sequence[str]) -> Any:
    for name in names:
        if isinstance(raw, Mapping):
            if name in raw and raw[name] is not None:
                return raw[name]
        else:
            value = getattr(raw, name, None)
            if value is not None:
                return value
    return None


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"unparseable bar timestamp: {value!r}")


def to_price_bar(raw: Any) -> PriceBar:
    """Normalise an Alpaca-style bar (short or long field names) into a ``PriceBar``."""

    if isinstance(raw, PriceBar):
        return raw
    values = {field: _pick(raw, names) for field, names in _FIELD_ALIASES.items()}
    missing = [field for field, value in values.items() if value is None]
    if missing:
        raise ValueError(f"bar missing fields: {', '.join(missing)}")
    return PriceBar(
        timestamp=_to_datetime(values["timestamp"]),
        open=float(values["open"]),
        high=float(values["high"]),
        low=float(values["low"]),
        close=float(values["close"]),
        volume=float(values["volume"]),
    )


def to_price_bars(raw_bars: Iterable[Any]) -> List[PriceBar]:
    """Normalise and sort bars chronologically."""

    bars = [to_price_bar(item) for item in raw_bars or []]
    bars.sort(key=lambda bar: bar.timestamp)
    return bars


def bars_to_frame(bars: Sequence[PriceBar]) -> pd.DataFrame:
    if not bars:
        return pd.DataFrame(columns=["time", "open", "high", "low", "close", "volume"])
    df = pd.DataFrame(
        {
            "time": [bar.timestamp for bar in bars],
            "open": [bar.open for bar in bars],
            "high": [bar.high for bar in bars],
            "low": [bar.low for bar in bars],
            "close": [bar.close for bar in bars],
            "volume": [bar.volume for bar in bars],
        }
    )
    return df.sort_values("time").reset_index(drop=True)


__all__ = ["PriceBar", "to_price_bar", "to_price_bars", "bars_to_frame"]
