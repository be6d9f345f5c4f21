"""Risk-budget position sizing for option contracts."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

CONTRACT_MULTIPLIER = 100
DEFAULT_RISK_PERCENTAGE = 0.02
DEFAULT_MAX_CONTRACTS = 5
PREMIUM_ESTIMATE_PCT = 0.05


def _positive_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num) or num <= 0:
        return None
    return num


@dataclass(frozen=True, slots=True)
class SizingDecision:
    contracts: int
    max_risk: float
    estimated_premium: float
    max_affordable: int
    premium_estimated: bool
    reason: str

    @property
    def tradable(self) -> bool:
        return self.contracts > 0


def estimate_premium(option_price: Any, underlying_price: Any) -> tuple[float, bool]:
    """Observed option price, else 5% of the underlying."""

    observed = _positive_float(option_price)
    if observed is not None:
        return observed, False
    underlying = _positive_float(underlying_price) or 0.0
    return underlying * PREMIUM_ESTIMATE_PCT, True


def size_option_position(
    buying_power: Any,
    *,
    option_price: Any = None,
    underlying_price: Any = None,
    risk_percentage: float = DEFAULT_RISK_PERCENTAGE,
    max_contracts: int = DEFAULT_MAX_CONTRACTS,
) -> SizingDecision:
    """Return whole, non-negative contracts within the risk budget and the hard cap."""

    power = _positive_float(buying_power) or 0.0
    risk_pct = max(0.0, float(risk_percentage))
    max_risk = power * risk_pct
    premium, estimated = estimate_premium(option_price, underlying_price)

    cost_per_contract = premium * CONTRACT_MULTIPLIER
    if cost_per_contract <= 0:
        return SizingDecision(0, max_risk, premium, 0, estimated, "no_premium")

    affordable = max(0, math.floor(max_risk / cost_per_contract))
    contracts = max(0, min(affordable, int(max_contracts)))
    if contracts <= 0:
        reason = "insufficient_buying_power"
    elif contracts < affordable:
        reason = "capped"
    else:
        reason = "ok"
    return SizingDecision(contracts, max_risk, premium, affordable, estimated, reason)


__all__ = ["SizingDecision", "size_option_position", "estimate_premium", "CONTRACT_MULTIPLIER"]
