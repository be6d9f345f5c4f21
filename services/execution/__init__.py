"""Brokerage access and option trade execution."""

from .broker import AlpacaBroker, Broker
from .executor import TradeExecutor
from .types import Account, ActiveTrade, OrderResult, Position, Quote, TradeOutcome

__all__ = [
    "AlpacaBroker",
    "Broker",
    "TradeExecutor",
    "Account",
    "ActiveTrade",
    "OrderResult",
    "Position",
    "Quote",
    "TradeOutcome",
]
