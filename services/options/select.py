"""Expiry and at-the-money contract selection."""

from __future__ import annotations

import calendar
from datetime import date
from typing import Iterable, List, Optional

from services.options.chain import OptionContract, OptionType

ATM_TOLERANCE = 0.02


def add_months(start: date, months: int) -> date:
    """Calendar-month offset, clamping the day to the target month's length."""

    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def target_expiration(today: date, months_out: int) -> date:
    return add_months(today, months_out)


def find_nearest_expiration(contracts: Iterable[OptionContract], target: date) -> Optional[date]:
    """Expiration with the smallest absolute day distance to ``target``; earliest wins ties."""

    best: Optional[date] = None
    best_diff: Optional[int] = None
    for contract in contracts:
        diff = abs((contract.expiration - target).days)
        if best_diff is None or diff < best_diff or (diff == best_diff and contract.expiration < best):
            best, best_diff = contract.expiration, diff
    return best


def is_at_the_money(stock_price: float, strike: float, tolerance: float = ATM_TOLERANCE) -> bool:
    if stock_price <= 0:
        return False
    return abs(stock_price - strike) / stock_price <= tolerance


def find_atm_contracts(
    contracts: Iterable[OptionContract],
    stock_price: float,
    expiration: date,
    tolerance: float = ATM_TOLERANCE,
) -> List[OptionContract]:
    return [
        contract
        for contract in contracts
        if contract.expiration == expiration and is_at_the_money(stock_price, contract.strike, tolerance)
    ]


def select_contract(
    contracts: List[OptionContract],
    option_type: OptionType,
    stock_price: float,
    target: date,
    tolerance: float = ATM_TOLERANCE,
) -> Optional[OptionContract]:
    """Pick the ATM contract of ``option_type`` on the expiry nearest ``target``."""

    expiration = find_nearest_expiration(contracts, target)
    if expiration is None:
        return None
    candidates = [
        contract
        for contract in find_atm_contracts(contracts, stock_price, expiration, tolerance)
        if contract.option_type == option_type
    ]
    if not candidates:
        return None
    candidates.sort(key=lambda c: (abs(c.strike - stock_price), c.strike))
    return candidates[0]
