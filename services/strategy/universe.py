"""Watchlist and trending-set management for the strategy layer."""

from __future__ import annotations

from typing import Iterable, Iterator, List, Set

DEFAULT_WATCHLIST = (
    "AAPL", "MSFT", "GOOGL", "AMZN", "TSLA", "NVDA", "META", "NFLX",
    "SPY", "QQQ", "IWM", "DIA", "AMD", "BABA", "CRM", "PYPL",
    "JPM", "BAC", "XOM", "JNJ", "PG", "KO", "DIS", "V",
    "MA", "HD", "WMT", "UNH", "PFE", "INTC", "CSCO", "VZ",
)


def _normalise(symbols: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(sym.strip().upper() for sym in symbols if sym and sym.strip()))


class Watchlist:
    """Ordered symbol set plus the trending subset from the latest detection pass.

    The sentiment scorer holds a reference to this object, so membership
    changes are visible to it without re-registration.
    """

    def __init__(self, base: Iterable[str] = DEFAULT_WATCHLIST) -> None:
        self.base = _normalise(base) or list(DEFAULT_WATCHLIST)
        self.symbols: List[str] = list(self.base)
        self.trending: Set[str] = set()

    def reset(self) -> None:
        self.symbols = list(self.base)

    def replace_trending(self, members: Iterable[str]) -> Set[str]:
        """Install a fresh trending set; returns the symbols that dropped out."""

        fresh = {sym.upper() for sym in members if sym.upper() in self}
        dropped = self.trending - fresh
        self.trending = fresh
        return dropped

    def is_trending(self, symbol: str) -> bool:
        return symbol.strip().upper() in self.trending

    def get(self) -> List[str]:
        return list(self.symbols)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self.symbols))

    def __contains__(self, symbol: object) -> bool:
        return isinstance(symbol, str) and symbol.strip().upper() in self.symbols

    def __len__(self) -> int:
        return len(self.symbols)
