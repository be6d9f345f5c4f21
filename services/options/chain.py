"""Option chain abstractions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Literal, Optional, Protocol

OptionType = Literal["call", "put"]


@dataclass(frozen=True, slots=True)
class OptionContract:
    """Normalized listed option contract."""

    symbol: str
    underlying: str
    expiration: date
    strike: float
    option_type: OptionType
    price: Optional[float] = None
    open_interest: Optional[int] = None
    raw: Dict[str, Any] | None = None


class ChainSource(Protocol):
    """Interface for fetching the active contracts of an underlying."""

    async def fetch(self, underlying: str) -> List[OptionContract]:
        """Return contracts for the provided underlying symbol."""


def parse_occ_symbol(option_symbol: str) -> Optional[tuple[str, date, OptionType, float]]:
    """Split an OCC symbol such as ``AAPL250620C00190000``.

    Returns ``None`` for anything that is not an OCC option symbol.
    """

    text = option_symbol.strip().upper()
    if len(text) < 16:
        return None
    root, tail = text[:-15], text[-15:]
    if not root.isalpha() or not tail[:6].isdigit() or tail[6] not in "CP" or not tail[7:].isdigit():
        return None
    try:
        expiry = date(2000 + int(tail[0:2]), int(tail[2:4]), int(tail[4:6]))
    except ValueError:
        return None
    option_type: OptionType = "call" if tail[6] == "C" else "put"
    return root, expiry, option_type, int(tail[7:]) / 1000.0
