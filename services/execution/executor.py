"""Option trade execution and tracking of the trades it opens."""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from core.market_hours import trading_date
from services.errors import (
    InsufficientBuyingPowerError,
    NoMatchingContractError,
    OrderPlacementError,
)
from services.execution.broker import Broker
from services.execution.types import ActiveTrade, CloseReason, Position, TradeOutcome
from services.market.resilience import call_with_timeout
from services.ops.alerts import Notifier
from services.options.chain import OptionContract, parse_occ_symbol
from services.options.select import ATM_TOLERANCE, add_months, select_contract
from services.policy.sizing import CONTRACT_MULTIPLIER, size_option_position
from services.strategy.types import Opportunity

log = logging.getLogger("optionpilot.executor")


class TradeExecutor:
    """Opens long option premium for entry signals and manages the resulting trades.

    ``active_trades`` is keyed by broker order id and is only mutated here.
    Every public coroutine returns :class:`TradeOutcome` objects instead of
    raising, so one symbol's failure never reaches its siblings.
    """

    def __init__(
        self,
        broker: Broker,
        notifier: Notifier,
        *,
        risk_percentage: float = 0.02,
        max_contracts: int = 5,
        option_expiry_months: int = 8,
        profit_target_pct: float = 0.15,
        atm_tolerance: float = ATM_TOLERANCE,
        timeout: Optional[float] = 10.0,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.broker = broker
        self.notifier = notifier
        self.risk_percentage = risk_percentage
        self.max_contracts = max_contracts
        self.option_expiry_months = option_expiry_months
        self.profit_target_pct = profit_target_pct
        self.atm_tolerance = atm_tolerance
        self.timeout = timeout
        self._today = today
        self.active_trades: Dict[str, ActiveTrade] = {}
        self.total_trades = 0
        self.realized_pl = 0.0

    async def _notify(self, method: Callable[..., Any], *args: Any) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, method, *args)
        except Exception:  # noqa: BLE001 - alert delivery must not fail a trade
            log.exception("executor.alert_failed")

    def open_trades(self, symbol: Optional[str] = None) -> List[ActiveTrade]:
        trades = [trade for trade in self.active_trades.values() if trade.is_active]
        if symbol is not None:
            trades = [trade for trade in trades if trade.symbol == symbol]
        return trades

    def trades_since(self, day: date) -> List[ActiveTrade]:
        return [trade for trade in self.active_trades.values() if trading_date(trade.entry_date) >= day]

    # entry ---------------------------------------------------------------

    async def execute(
        self,
        opportunity: Opportunity,
        *,
        buying_power: float,
        chain: Optional[Sequence[OptionContract]] = None,
        positions: Optional[Mapping[str, Sequence[Position]]] = None,
    ) -> TradeOutcome:
        """Per-symbol boundary: dispatch an opportunity and convert failures to outcomes."""

        symbol = opportunity.symbol
        try:
            if opportunity.is_exit:
                return await self.close_positions(opportunity, positions or {})
            return await self.execute_option_trade(opportunity, buying_power=buying_power, chain=chain)
        except (NoMatchingContractError, InsufficientBuyingPowerError) as exc:
            log.info("executor.trade_skipped", extra={"symbol": symbol, "reason": type(exc).__name__, "detail": str(exc)})
            return TradeOutcome(symbol, opportunity.action, False, type(exc).__name__, error=str(exc))
        except OrderPlacementError as exc:
            log.error("executor.order_failed", extra={"symbol": symbol, "error": str(exc)})
            await self._notify(
                self.notifier.send_emergency_alert,
                f"Trade Execution Failed - {symbol}",
                f"Failed to place {opportunity.option_type or ''} option order for {symbol}",
                exc,
            )
            return TradeOutcome(symbol, opportunity.action, False, "order_failed", error=str(exc))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - isolate the symbol
            log.exception("executor.unexpected_error", extra={"symbol": symbol})
            await self._notify(
                self.notifier.send_emergency_alert,
                f"Trade Execution Failed - {symbol}",
                f"Unexpected error while handling {opportunity.action} for {symbol}",
                exc,
            )
            return TradeOutcome(symbol, opportunity.action, False, "unexpected_error", error=str(exc))

    async def execute_option_trade(
        self,
        opportunity: Opportunity,
        *,
        buying_power: float,
        chain: Optional[Sequence[OptionContract]] = None,
    ) -> TradeOutcome:
        symbol = opportunity.symbol
        option_type = opportunity.option_type
        if option_type not in ("call", "put"):
            raise NoMatchingContractError(f"no option type for action {opportunity.action}", symbol=symbol)

        if chain is None:
            chain = await call_with_timeout(lambda: self.broker.get_option_chain(symbol), self.timeout)
        contracts = list(chain or [])
        if not contracts:
            raise NoMatchingContractError(f"no listed options for {symbol}", symbol=symbol)

        target = add_months(self._today(), self.option_expiry_months)
        contract = select_contract(contracts, option_type, opportunity.current_price, target, self.atm_tolerance)
        if contract is None:
            raise NoMatchingContractError(
                f"no ATM {option_type} near {target.isoformat()} for {symbol}", symbol=symbol
            )

        sizing = size_option_position(
            buying_power,
            option_price=contract.price,
            underlying_price=opportunity.current_price,
            risk_percentage=self.risk_percentage,
            max_contracts=self.max_contracts,
        )
        if not sizing.tradable:
            raise InsufficientBuyingPowerError(
                f"max risk {sizing.max_risk:.2f} cannot cover one contract at {sizing.estimated_premium:.2f}",
                symbol=symbol,
            )

        try:
            order = await self.broker.place_option_order(contract.symbol, sizing.contracts, "buy")
        except Exception as exc:  # noqa: BLE001 - any broker rejection
            raise OrderPlacementError(str(exc) or type(exc).__name__, symbol=symbol) from exc
        if not order.order_id:
            raise OrderPlacementError("broker returned no order id", symbol=symbol)
        if order.order_id in self.active_trades:
            log.warning("executor.duplicate_order", extra={"symbol": symbol, "order_id": order.order_id})
            return TradeOutcome(symbol, opportunity.action, False, "duplicate_order", order_ids=[order.order_id])

        total_cost = sizing.contracts * sizing.estimated_premium * CONTRACT_MULTIPLIER
        trade = ActiveTrade(
            order_id=order.order_id,
            symbol=symbol,
            option_symbol=contract.symbol,
            option_type=option_type,
            strike=contract.strike,
            expiration=contract.expiration,
            contracts=sizing.contracts,
            entry_price=sizing.estimated_premium,
            total_cost=total_cost,
            profit_target=total_cost * (1 + self.profit_target_pct),
            entry_date=datetime.now(timezone.utc),
            meta={"premium_estimated": sizing.premium_estimated, "confidence": opportunity.confidence},
        )
        self.active_trades[trade.order_id] = trade
        self.total_trades += 1
        log.info(
            "executor.trade_opened",
            extra={
                "symbol": symbol,
                "option_symbol": contract.symbol,
                "contracts": sizing.contracts,
                "total_cost": round(total_cost, 2),
                "order_id": trade.order_id,
            },
        )

        details = {
            "symbol": symbol,
            "action": opportunity.action,
            "option_type": option_type,
            "strike": contract.strike,
            "expiration": contract.expiration.isoformat(),
            "contracts": sizing.contracts,
            "premium": round(sizing.estimated_premium, 2),
            "total_cost": round(total_cost, 2),
            "profit_target": round(trade.profit_target, 2),
            "confidence": round(opportunity.confidence, 3),
            "rsi": None if opportunity.rsi is None else round(opportunity.rsi, 2),
            "technical_score": round(opportunity.technical_score, 3),
            "news_score": round(opportunity.news_score, 3),
        }
        await self._notify(
            self.notifier.send_trading_alert,
            f"New {option_type.upper()} Trade: {symbol} {contract.strike:g} {contract.expiration:%b %d}",
            f"A new options trade has been executed with a {self.profit_target_pct:.0%} profit target.",
            details,
        )
        return TradeOutcome(symbol, opportunity.action, True, "opened", trade=trade, order_ids=[trade.order_id])

    # exit ----------------------------------------------------------------

    async def _sell(self, option_symbol: str, qty: int, symbol: str) -> str:
        try:
            order = await self.broker.place_option_order(option_symbol, qty, "sell")
        except Exception as exc:  # noqa: BLE001 - any broker rejection
            raise OrderPlacementError(str(exc) or type(exc).__name__, symbol=symbol) from exc
        return order.order_id

    def _mark_closed(
        self, trade: ActiveTrade, reason: CloseReason, exit_order_id: Optional[str], value: Optional[float]
    ) -> None:
        trade.status = "closed"
        trade.close_reason = reason
        trade.exit_order_id = exit_order_id
        trade.exit_value = value
        if value is not None:
            self.realized_pl += value - trade.total_cost
        log.info(
            "executor.trade_closed",
            extra={"symbol": trade.symbol, "order_id": trade.order_id, "reason": reason, "exit_value": value},
        )

    async def _liquidate(self, trade: ActiveTrade, reason: CloseReason, value: Optional[float]) -> str:
        exit_id = await self._sell(trade.option_symbol, trade.contracts, trade.symbol)
        self._mark_closed(trade, reason, exit_id, value)
        return exit_id

    async def close_positions(
        self,
        opportunity: Opportunity,
        positions: Mapping[str, Sequence[Position]],
    ) -> TradeOutcome:
        """Sell the held long options a close_long/close_short signal points at.

        Tracked trades on a held contract close with it; tracked trades whose
        contract is no longer held are left to :meth:`monitor_active_trades`.
        """

        symbol = opportunity.symbol
        exposure = "long" if opportunity.action == "close_long" else "short"
        option_type = "call" if exposure == "long" else "put"

        tracked: Dict[str, List[ActiveTrade]] = {}
        for trade in self.open_trades(symbol):
            if trade.option_type == option_type:
                tracked.setdefault(trade.option_symbol, []).append(trade)

        order_ids: List[str] = []
        closed_tracked = False
        for position in positions.get(symbol, ()):
            if not position.is_option or position.side != "long" or int(position.qty) <= 0:
                continue
            if not _matches_type(position.symbol, option_type):
                continue
            exit_id = await self._sell(position.symbol, int(position.qty), symbol)
            order_ids.append(exit_id)
            trades = tracked.pop(position.symbol, [])
            held_contracts = sum(trade.contracts for trade in trades)
            for trade in trades:
                value = None
                if position.market_value is not None and held_contracts:
                    value = position.market_value * trade.contracts / held_contracts
                self._mark_closed(trade, "signal", exit_id, value)
                closed_tracked = True

        for stale in tracked.values():
            for trade in stale:
                log.warning(
                    "executor.tracked_position_not_held",
                    extra={"symbol": symbol, "order_id": trade.order_id, "option_symbol": trade.option_symbol},
                )

        if not order_ids:
            log.info("executor.nothing_to_close", extra={"symbol": symbol, "exposure": exposure})
            return TradeOutcome(symbol, opportunity.action, False, "no_option_position")
        log.info("executor.positions_closed", extra={"symbol": symbol, "orders": order_ids})
        reason = "closed_tracked" if closed_tracked else "closed_positions"
        return TradeOutcome(symbol, opportunity.action, True, reason, order_ids=order_ids)

    async def close_trade(self, order_id: str, reason: CloseReason = "manual") -> TradeOutcome:
        trade = self.active_trades.get(order_id)
        if trade is None or not trade.is_active:
            return TradeOutcome(trade.symbol if trade else "", "close", False, "not_active")
        try:
            exit_id = await self._liquidate(trade, reason, None)
        except OrderPlacementError as exc:
            log.error("executor.close_failed", extra={"order_id": order_id, "error": str(exc)})
            return TradeOutcome(trade.symbol, "close", False, "order_failed", trade=trade, error=str(exc))
        return TradeOutcome(trade.symbol, "close", True, reason, trade=trade, order_ids=[exit_id])

    async def monitor_active_trades(
        self, positions: Iterable[Position], *, positions_current: bool = True
    ) -> List[TradeOutcome]:
        """Close every active trade whose option position reached its profit target.

        When ``positions`` is a fresh account snapshot (``positions_current``),
        trades whose contract is no longer held are closed as ``missing``.
        """

        by_symbol = {pos.symbol: pos for pos in positions}
        outcomes: List[TradeOutcome] = []
        for trade in self.open_trades():
            position = by_symbol.get(trade.option_symbol)
            if position is None or position.qty <= 0:
                if positions_current:
                    log.warning(
                        "executor.position_missing",
                        extra={"symbol": trade.symbol, "order_id": trade.order_id, "option_symbol": trade.option_symbol},
                    )
                    self._mark_closed(trade, "missing", None, None)
                    outcomes.append(TradeOutcome(trade.symbol, "close", True, "missing", trade=trade))
                continue
            value = position.market_value
            if value is None:
                log.debug("executor.value_unavailable", extra={"order_id": trade.order_id})
                continue
            if value < trade.profit_target:
                continue
            try:
                exit_id = await self._liquidate(trade, "target_hit", value)
            except OrderPlacementError as exc:
                log.error("executor.target_close_failed", extra={"order_id": trade.order_id, "error": str(exc)})
                await self._notify(
                    self.notifier.send_emergency_alert,
                    f"Profit Target Close Failed - {trade.symbol}",
                    f"Could not close {trade.option_symbol} at its profit target",
                    exc,
                )
                outcomes.append(TradeOutcome(trade.symbol, "close", False, "order_failed", trade=trade, error=str(exc)))
                continue
            gain = value - trade.total_cost
            await self._notify(
                self.notifier.send_trading_alert,
                f"Profit Target Hit: {trade.symbol}",
                f"Closed {trade.contracts} x {trade.option_symbol} for a gain of ${gain:,.2f}.",
                {"order_id": trade.order_id, "exit_order_id": exit_id, "exit_value": round(value, 2)},
            )
            outcomes.append(TradeOutcome(trade.symbol, "close", True, "target_hit", trade=trade, order_ids=[exit_id]))
        return outcomes


def _matches_type(option_symbol: str, option_type: str) -> bool:
    parsed = parse_occ_symbol(option_symbol)
    return parsed is not None and parsed[2] == option_type


__all__ = ["TradeExecutor"]
