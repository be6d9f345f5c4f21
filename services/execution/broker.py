"""Brokerage interface and its alpaca-py implementation."""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from app.rate_limit import backoff_request
from core.market_hours import market_is_open
from services.execution.types import Account, OrderResult, Position, Quote, Side
from services.market.bars import PriceBar, to_price_bars
from services.options.alpaca_chain import AlpacaChainSource
from services.options.chain import OptionContract, parse_occ_symbol

log = logging.getLogger("optionpilot.broker")


class Broker(Protocol):
    async def get_account(self) -> Account: ...

    async def get_positions(self) -> List[Position]: ...

    async def get_orders(self, limit: int = 50) -> List[OrderResult]: ...

    async def get_stock_bars(self, symbol: str, timeframe: str = "1Day", limit: int = 100) -> List[PriceBar]: ...

    async def get_option_chain(self, symbol: str) -> List[OptionContract]: ...

    async def place_option_order(self, option_symbol: str, qty: int, side: Side) -> OrderResult: ...

    async def get_quote(self, symbol: str) -> Quote: ...

    async def get_portfolio_history(self, period: str = "1D") -> Dict[str, Any]: ...

    async def is_market_open(self) -> bool: ...


def _float(value: Any) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _enum_text(value: Any) -> str:
    return str(getattr(value, "value", value) or "").lower()


def position_from_alpaca(item: Any) -> Position:
    symbol = str(getattr(item, "symbol", ""))
    qty = _float(getattr(item, "qty", 0)) or 0.0
    side = _enum_text(getattr(item, "side", "")) or ("short" if qty < 0 else "long")
    asset_class = _enum_text(getattr(item, "asset_class", "")) or "us_equity"
    underlying = None
    if asset_class == "us_option":
        parsed = parse_occ_symbol(symbol)
        underlying = parsed[0] if parsed else None
    return Position(
        symbol=symbol,
        qty=abs(qty),
        side="short" if side == "short" else "long",
        market_value=_float(getattr(item, "market_value", None)),
        avg_entry_price=_float(getattr(item, "avg_entry_price", None)),
        asset_class=asset_class,
        underlying=underlying,
    )


def order_from_alpaca(item: Any, *, fallback_qty: int = 0) -> OrderResult:
    qty = _float(getattr(item, "qty", None))
    return OrderResult(
        order_id=str(getattr(item, "id", "") or ""),
        symbol=str(getattr(item, "symbol", "")),
        qty=int(qty) if qty is not None else fallback_qty,
        side="sell" if _enum_text(getattr(item, "side", "")) == "sell" else "buy",
        status=_enum_text(getattr(item, "status", "")),
        filled_avg_price=_float(getattr(item, "filled_avg_price", None)),
        client_order_id=str(getattr(item, "client_order_id", "") or "") or None,
    )


_TIMEFRAMES = {"1day": "Day", "1hour": "Hour", "1min": "Minute", "1week": "Week"}


class AlpacaBroker:
    """Async wrapper around alpaca-py trading and market-data clients."""

    def __init__(
        self,
        trading_client: Any,
        data_client: Any,
        *,
        data_feed: str = "iex",
        option_expiry_months: int = 8,
        max_retries: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._trading = trading_client
        self._data = data_client
        self._feed = data_feed
        self._chain = AlpacaChainSource(trading_client, months_out=option_expiry_months)
        self._max_retries = max_retries if max_retries is not None else int(os.getenv("EXEC_MAX_RETRIES", "5"))
        self._sleep = sleep

    async def _run_blocking(self, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    async def _call(self, fn: Callable[[], Any]) -> Any:
        return await backoff_request(
            lambda: self._run_blocking(fn), max_retries=self._max_retries, sleep=self._sleep
        )

    def _data_feed(self):  # type: ignore[no-untyped-def]
        from alpaca.data.enums import DataFeed

        try:
            return DataFeed(self._feed)
        except ValueError:
            return DataFeed.IEX

    async def get_account(self) -> Account:
        raw = await self._call(self._trading.get_account)
        return Account(
            buying_power=_float(getattr(raw, "buying_power", None)) or 0.0,
            equity=_float(getattr(raw, "equity", None)) or 0.0,
            last_equity=_float(getattr(raw, "last_equity", None)) or 0.0,
            cash=_float(getattr(raw, "cash", None)) or 0.0,
            status=_enum_text(getattr(raw, "status", "")),
        )

    async def get_positions(self) -> List[Position]:
        raw = await self._call(self._trading.get_all_positions)
        return [position_from_alpaca(item) for item in raw or []]

    async def get_orders(self, limit: int = 50) -> List[OrderResult]:
        from alpaca.trading.enums import QueryOrderStatus
        from alpaca.trading.requests import GetOrdersRequest

        request = GetOrdersRequest(status=QueryOrderStatus.ALL, limit=limit)
        raw = await self._call(lambda: self._trading.get_orders(filter=request))
        return [order_from_alpaca(item) for item in raw or []]

    async def get_stock_bars(self, symbol: str, timeframe: str = "1Day", limit: int = 100) -> List[PriceBar]:
        from alpaca.data.requests import StockBarsRequest
        from alpaca.data.timeframe import TimeFrame

        unit = _TIMEFRAMES.get(timeframe.lower(), "Day")
        # calendar days cover weekends and holidays for the requested bar count
        start = datetime.now(timezone.utc) - timedelta(days=int(limit * 1.6) + 10)
        request = StockBarsRequest(
            symbol_or_symbols=symbol,
            timeframe=getattr(TimeFrame, unit),
            start=start,
            feed=self._data_feed(),
        )
        response = await self._call(lambda: self._data.get_stock_bars(request))
        data = getattr(response, "data", response)
        raw = data.get(symbol, []) if isinstance(data, dict) else []
        bars = to_price_bars(raw)
        return bars[-limit:]

    async def get_option_chain(self, symbol: str) -> List[OptionContract]:
        return await backoff_request(
            lambda: self._chain.fetch(symbol), max_retries=self._max_retries, sleep=self._sleep
        )

    async def place_option_order(self, option_symbol: str, qty: int, side: Side) -> OrderResult:
        from alpaca.trading.enums import OrderSide, TimeInForce
        from alpaca.trading.requests import MarketOrderRequest

        # one id per logical order, reused by every retry
        client_oid = str(uuid.uuid4())
        request = MarketOrderRequest(
            symbol=option_symbol,
            qty=qty,
            side=OrderSide.BUY if side == "buy" else OrderSide.SELL,
            time_in_force=TimeInForce.DAY,
            client_order_id=client_oid,
        )
        try:
            raw = await self._call(lambda: self._trading.submit_order(order_data=request))
        except Exception:
            raw = await self._find_order(client_oid)
            if raw is None:
                raise
            log.warning("broker.order_recovered", extra={"symbol": option_symbol, "client_order_id": client_oid})
        result = order_from_alpaca(raw, fallback_qty=qty)
        if result.client_order_id is None:
            result.client_order_id = client_oid
        log.info(
            "broker.order_submitted",
            extra={
                "symbol": option_symbol,
                "qty": qty,
                "side": side,
                "order_id": result.order_id,
                "client_order_id": client_oid,
            },
        )
        return result

    async def _find_order(self, client_oid: str) -> Any:
        """Order the broker accepted under ``client_oid``, or None."""

        try:
            return await self._run_blocking(lambda: self._trading.get_order_by_client_id(client_oid))
        except Exception as exc:  # noqa: BLE001 - the submit error is the one reported
            log.warning("broker.order_lookup_failed", extra={"client_order_id": client_oid, "error": str(exc)})
            return None

    async def get_quote(self, symbol: str) -> Quote:
        from alpaca.data.requests import StockLatestQuoteRequest, StockLatestTradeRequest

        feed = self._data_feed()
        trades = await self._call(
            lambda: self._data.get_stock_latest_trade(
                StockLatestTradeRequest(symbol_or_symbols=symbol, feed=feed)
            )
        )
        quotes = await self._call(
            lambda: self._data.get_stock_latest_quote(
                StockLatestQuoteRequest(symbol_or_symbols=symbol, feed=feed)
            )
        )
        trade = trades.get(symbol) if isinstance(trades, dict) else None
        quote = quotes.get(symbol) if isinstance(quotes, dict) else None
        bid = _float(getattr(quote, "bid_price", None))
        ask = _float(getattr(quote, "ask_price", None))
        price = _float(getattr(trade, "price", None))
        if price is None and bid and ask:
            price = (bid + ask) / 2
        return Quote(
            symbol=symbol,
            price=price or 0.0,
            bid=bid,
            ask=ask,
            timestamp=getattr(trade, "timestamp", None),
        )

    async def get_portfolio_history(self, period: str = "1D") -> Dict[str, Any]:
        from alpaca.trading.requests import GetPortfolioHistoryRequest

        request = GetPortfolioHistoryRequest(period=period, timeframe="1H")
        raw = await self._call(lambda: self._trading.get_portfolio_history(history_filter=request))
        return {
            "equity": list(getattr(raw, "equity", None) or []),
            "profit_loss": list(getattr(raw, "profit_loss", None) or []),
            "profit_loss_pct": list(getattr(raw, "profit_loss_pct", None) or []),
            "base_value": _float(getattr(raw, "base_value", None)),
        }

    async def is_market_open(self) -> bool:
        try:
            clock = await self._call(self._trading.get_clock)
        except Exception as exc:  # noqa: BLE001 - local session calendar is the fallback
            log.warning("broker.clock_unavailable", extra={"error": str(exc)})
            return market_is_open()
        return bool(getattr(clock, "is_open", False))


__all__ = ["Broker", "AlpacaBroker", "position_from_alpaca", "order_from_alpaca"]
