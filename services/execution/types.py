"""Execution-side dataclasses: account mirror, orders and tracked trades."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Literal, Optional

Side = Literal["buy", "sell"]
PositionSide = Literal["long", "short"]
TradeStatus = Literal["active", "closed"]
CloseReason = Literal["target_hit", "signal", "manual", "missing", "error"]


@dataclass(slots=True)
class Account:
    buying_power: float
    equity: float = 0.0
    last_equity: float = 0.0
    cash: float = 0.0
    status: str = ""


@dataclass(slots=True)
class Position:
    """Brokerage holding mirrored read-only into the engine."""

    symbol: str
    qty: float
    side: PositionSide
    market_value: Optional[float] = None
    avg_entry_price: Optional[float] = None
    asset_class: str = "us_equity"
    underlying: Optional[str] = None

    @property
    def is_option(self) -> bool:
        return self.asset_class == "us_option" or self.underlying is not None


@dataclass(slots=True)
class Quote:
    symbol: str
    price: float
    bid: Optional[float] = None
    ask: Optional[float] = None
    timestamp: Optional[datetime] = None


@dataclass(slots=True)
class OrderResult:
    order_id: str
    symbol: str
    qty: int
    side: Side
    status: str = ""
    filled_avg_price: Optional[float] = None
    client_order_id: Optional[str] = None


@dataclass(slots=True)
class ActiveTrade:
    """Option trade opened by the executor; keyed by ``order_id``."""

    order_id: str
    symbol: str
    option_symbol: str
    option_type: str
    strike: float
    expiration: date
    contracts: int
    entry_price: float
    total_cost: float
    profit_target: float
    entry_date: datetime
    status: TradeStatus = "active"
    close_reason: Optional[CloseReason] = None
    exit_order_id: Optional[str] = None
    exit_value: Optional[float] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["expiration"] = self.expiration.isoformat()
        payload["entry_date"] = self.entry_date.isoformat()
        return payload


@dataclass(slots=True)
class TradeOutcome:
    """Result of one symbol's execution attempt."""

    symbol: str
    action: str
    ok: bool
    reason: str
    trade: Optional[ActiveTrade] = None
    order_ids: list[str] = field(default_factory=list)
    error: Optional[str] = None
