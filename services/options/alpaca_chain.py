"""Alpaca-backed option contract source."""

from __future__ import annotations

import asyncio
import datetime as _dt
from typing import Any, List, Optional

from services.options.chain import ChainSource, OptionContract
from services.options.select import add_months

PAGE_LIMIT = 1000


def _to_float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_date(value: Any) -> Optional[_dt.date]:
    if isinstance(value, _dt.datetime):
        return value.date()
    if isinstance(value, _dt.date):
        return value
    if isinstance(value, str) and value:
        return _dt.date.fromisoformat(value[:10])
    return None


def contract_from_alpaca(item: Any, underlying: str) -> Optional[OptionContract]:
    expiration = _to_date(getattr(item, "expiration_date", None))
    strike = _to_float(getattr(item, "strike_price", None))
    if expiration is None or strike is None:
        return None
    kind = getattr(item, "type", "")
    kind = str(getattr(kind, "value", kind)).lower()
    open_interest = _to_float(getattr(item, "open_interest", None))
    return OptionContract(
        symbol=str(getattr(item, "symbol", "")),
        underlying=underlying,
        expiration=expiration,
        strike=strike,
        option_type="call" if kind == "call" else "put",
        price=_to_float(getattr(item, "close_price", None)),
        open_interest=int(open_interest) if open_interest is not None else None,
    )


class AlpacaChainSource(ChainSource):
    """Active contracts expiring in a window around the configured month offset."""

    def __init__(self, trading_client: Any, *, months_out: int = 8, window_months: int = 1) -> None:
        self._client = trading_client
        self.months_out = months_out
        self.window_months = window_months

    def _fetch_sync(self, underlying: str) -> List[OptionContract]:
        from alpaca.trading.enums import AssetStatus
        from alpaca.trading.requests import GetOptionContractsRequest

        today = _dt.date.today()
        contracts: List[OptionContract] = []
        page_token: Optional[str] = None
        while True:
            request = GetOptionContractsRequest(
                underlying_symbols=[underlying],
                status=AssetStatus.ACTIVE,
                expiration_date_gte=add_months(today, self.months_out - self.window_months),
                expiration_date_lte=add_months(today, self.months_out + self.window_months),
                limit=PAGE_LIMIT,
                page_token=page_token,
            )
            response = self._client.get_option_contracts(request)
            for item in getattr(response, "option_contracts", None) or []:
                contract = contract_from_alpaca(item, underlying)
                if contract is not None:
                    contracts.append(contract)
            page_token = getattr(response, "next_page_token", None)
            if not page_token:
                return contracts

    async def fetch(self, underlying: str) -> List[OptionContract]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._fetch_sync, underlying)
