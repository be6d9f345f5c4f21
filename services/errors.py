"""Exception taxonomy shared by the analysis and execution layers."""

from __future__ import annotations

from typing import Optional


class TradingError(Exception):
    """Base class for recoverable trading failures scoped to one symbol."""

    def __init__(self, message: str, *, symbol: Optional[str] = None) -> None:
        super().__init__(message)
        self.symbol = symbol


class DataUnavailableError(TradingError):
    """An upstream fetch failed, timed out, or returned unusable data."""


class InsufficientDataError(TradingError):
    """Fewer bars than an indicator window requires."""

    def __init__(self, symbol: str, available: int, required: int) -> None:
        super().__init__(
            f"Insufficient data for {symbol}: {available} bars (need {required})",
            symbol=symbol,
        )
        self.available = available
        self.required = required


class NoMatchingContractError(TradingError):
    """No option contract satisfied the expiry/strike/type constraints."""


class InsufficientBuyingPowerError(TradingError):
    """The risk budget cannot afford a single contract."""


class OrderPlacementError(TradingError):
    """The brokerage rejected or failed to acknowledge an order."""


__all__ = [
    "TradingError",
    "DataUnavailableError",
    "InsufficientDataError",
    "NoMatchingContractError",
    "InsufficientBuyingPowerError",
    "OrderPlacementError",
]
