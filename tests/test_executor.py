import asyncio
from datetime import date, datetime, timezone
from typing import Optional

import pytest

from services.execution.executor import TradeExecutor
from services.execution.types import Position
from services.options.select import add_months
from services.strategy.types import Opportunity
from tests.fakes.broker import FakeBroker
from tests.fakes.market import make_chain, occ_symbol
from tests.fakes.news import FakeNotifier

TODAY = date(2024, 3, 15)
EXPIRY = add_months(TODAY, 8)


def _opportunity(action: str = "buy", *, symbol: str = "AAPL", price: float = 100.0) -> Opportunity:
    option_type = {"buy": "call", "sell": "put", "close_long": "put", "close_short": "call"}.get(action)
    return Opportunity(
        symbol=symbol,
        action=action,  # type: ignore[arg-type]
        option_type=option_type,
        confidence=0.7,
        combined_score=0.7 if action in ("buy", "close_short") else -0.7,
        technical_score=0.4,
        news_score=0.3,
        trending_bonus=0.0,
        current_price=price,
        rsi=61.0,
    )


def _setup(*, price: float = 4.0, buying_power: float = 100_000.0, **broker_kwargs):
    chain = make_chain("AAPL", [98, 99, 100, 101, 102], expiration=EXPIRY, price=price)
    broker = FakeBroker(chains={"AAPL": chain}, buying_power=buying_power, **broker_kwargs)
    notifier = FakeNotifier()
    executor = TradeExecutor(broker, notifier, today=lambda: TODAY)
    return broker, notifier, executor


def test_buy_opens_an_atm_call_sized_by_risk_budget() -> None:
    broker, notifier, executor = _setup()

    outcome = asyncio.run(executor.execute(_opportunity("buy"), buying_power=100_000))

    assert outcome.ok and outcome.reason == "opened"
    order = broker.orders[0]
    assert order.symbol == occ_symbol("AAPL", EXPIRY, "call", 100)
    assert order.side == "buy"
    assert order.qty == 5
    trade = executor.active_trades[order.order_id]
    assert trade.total_cost == pytest.approx(2_000)
    assert trade.profit_target == pytest.approx(2_300)
    assert trade.expiration == EXPIRY
    assert executor.total_trades == 1
    subject, _, details = notifier.trading[0]
    assert subject == "New CALL Trade: AAPL 100 Nov 15"
    assert details["contracts"] == 5
    assert details["rsi"] == 61.0


def test_sell_buys_a_put() -> None:
    broker, _, executor = _setup()
    outcome = asyncio.run(executor.execute(_opportunity("sell"), buying_power=100_000))
    assert outcome.ok
    assert broker.orders[0].symbol == occ_symbol("AAPL", EXPIRY, "put", 100)
    assert broker.orders[0].side == "buy"


def test_insufficient_buying_power_places_nothing() -> None:
    broker, notifier, executor = _setup(price=10.0, buying_power=1_000)
    outcome = asyncio.run(executor.execute(_opportunity("buy"), buying_power=1_000))
    assert not outcome.ok
    assert outcome.reason == "InsufficientBuyingPowerError"
    assert broker.orders == []
    assert notifier.emergency == []
    assert executor.active_trades == {}


def test_empty_chain_is_no_matching_contract() -> None:
    _, _, executor = _setup()
    outcome = asyncio.run(executor.execute(_opportunity("buy", symbol="MSFT"), buying_power=100_000))
    assert outcome.reason == "NoMatchingContractError"


def test_far_from_the_money_chain_is_no_matching_contract() -> None:
    _, _, executor = _setup()
    outcome = asyncio.run(executor.execute(_opportunity("buy", price=150.0), buying_power=100_000))
    assert outcome.reason == "NoMatchingContractError"


def test_rejected_order_raises_emergency_alert() -> None:
    broker, notifier, executor = _setup()
    broker.reject_orders = True
    outcome = asyncio.run(executor.execute(_opportunity("buy"), buying_power=100_000))
    assert outcome.reason == "order_failed"
    assert "insufficient options approval" in (outcome.error or "")
    assert len(notifier.emergency) == 1
    assert executor.total_trades == 0


def test_unexpected_failure_is_contained() -> None:
    broker, notifier, executor = _setup()
    broker.failing_chains.add("AAPL")
    outcome = asyncio.run(executor.execute(_opportunity("buy"), buying_power=100_000))
    assert outcome.reason == "unexpected_error"
    assert len(notifier.emergency) == 1


def test_duplicate_order_id_is_not_tracked_twice() -> None:
    broker, _, executor = _setup()
    broker.fixed_order_id = "same-id"

    async def scenario():
        first = await executor.execute(_opportunity("buy"), buying_power=100_000)
        second = await executor.execute(_opportunity("buy"), buying_power=100_000)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.ok
    assert second.reason == "duplicate_order"
    assert executor.total_trades == 1
    assert len(executor.active_trades) == 1


def _option_position(option_symbol: str, value: Optional[float], qty: float = 5) -> Position:
    return Position(symbol=option_symbol, qty=qty, side="long", market_value=value, asset_class="us_option", underlying="AAPL")


def test_profit_target_closes_the_trade() -> None:
    broker, notifier, executor = _setup()

    async def scenario():
        opened = await executor.execute(_opportunity("buy"), buying_power=100_000)
        trade = opened.trade
        below = await executor.monitor_active_trades([_option_position(trade.option_symbol, 2_299.0)])
        unpriced = await executor.monitor_active_trades([_option_position(trade.option_symbol, None)])
        hit = await executor.monitor_active_trades([_option_position(trade.option_symbol, 2_400.0)])
        return trade, below, unpriced, hit

    trade, below, unpriced, hit = asyncio.run(scenario())
    assert below == [] and unpriced == []
    assert [outcome.reason for outcome in hit] == ["target_hit"]
    assert trade.status == "closed"
    assert trade.close_reason == "target_hit"
    assert trade.exit_value == 2_400.0
    assert executor.realized_pl == pytest.approx(400.0)
    sell = broker.orders[-1]
    assert sell.side == "sell" and sell.qty == 5 and sell.symbol == trade.option_symbol
    assert notifier.trading[-1][0] == "Profit Target Hit: AAPL"


def test_failed_target_close_keeps_trade_active() -> None:
    broker, notifier, executor = _setup()

    async def scenario():
        opened = await executor.execute(_opportunity("buy"), buying_power=100_000)
        broker.reject_orders = True
        outcomes = await executor.monitor_active_trades([_option_position(opened.trade.option_symbol, 3_000.0)])
        return opened.trade, outcomes

    trade, outcomes = asyncio.run(scenario())
    assert outcomes[0].reason == "order_failed"
    assert trade.is_active
    assert len(notifier.emergency) == 1


def test_close_long_closes_tracked_call_trades() -> None:
    broker, _, executor = _setup()

    async def scenario():
        opened = await executor.execute(_opportunity("buy"), buying_power=100_000)
        held = {"AAPL": [_option_position(opened.trade.option_symbol, 1_800.0)]}
        closed = await executor.execute(_opportunity("close_long"), buying_power=100_000, positions=held)
        return opened.trade, closed

    trade, closed = asyncio.run(scenario())
    assert closed.reason == "closed_tracked"
    assert trade.close_reason == "signal"
    assert executor.realized_pl == pytest.approx(-200.0)
    assert broker.orders[-1].side == "sell"


def test_close_long_sells_untracked_call_positions_only() -> None:
    broker, _, executor = _setup()
    call = occ_symbol("AAPL", EXPIRY, "call", 100)
    put = occ_symbol("AAPL", EXPIRY, "put", 100)
    held = {
        "AAPL": [
            _option_position(call, 500.0, qty=2),
            _option_position(put, 500.0, qty=3),
            Position(symbol="AAPL", qty=10, side="long", market_value=1_000.0),
        ]
    }
    outcome = asyncio.run(executor.execute(_opportunity("close_long"), buying_power=100_000, positions=held))
    assert outcome.reason == "closed_positions"
    assert [(order.symbol, order.qty, order.side) for order in broker.orders] == [(call, 2, "sell")]


def test_close_short_without_puts_is_a_noop() -> None:
    broker, _, executor = _setup()
    held = {"AAPL": [Position(symbol="AAPL", qty=-10, side="short")]}
    outcome = asyncio.run(executor.execute(_opportunity("close_short"), buying_power=100_000, positions=held))
    assert not outcome.ok
    assert outcome.reason == "no_option_position"
    assert broker.orders == []


def test_manual_close() -> None:
    _, _, executor = _setup()

    async def scenario():
        opened = await executor.execute(_opportunity("buy"), buying_power=100_000)
        first = await executor.close_trade(opened.trade.order_id)
        second = await executor.close_trade(opened.trade.order_id)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.ok and first.reason == "manual"
    assert second.reason == "not_active"
    assert executor.open_trades() == []
    assert len(executor.trades_since(TODAY)) == 1


def test_trade_whose_contract_is_no_longer_held_is_closed_as_missing() -> None:
    broker, _, executor = _setup()
    other_call = occ_symbol("AAPL", EXPIRY, "call", 102)
    held = [_option_position(other_call, 900.0, qty=2)]

    async def scenario():
        opened = await executor.execute(_opportunity("buy"), buying_power=100_000)
        stale = await executor.monitor_active_trades(held, positions_current=False)
        refreshed = await executor.monitor_active_trades(held)
        return opened.trade, stale, refreshed

    trade, stale, refreshed = asyncio.run(scenario())
    assert stale == []
    assert [outcome.reason for outcome in refreshed] == ["missing"]
    assert trade.status == "closed"
    assert trade.close_reason == "missing"
    assert executor.open_trades() == []
    assert executor.realized_pl == 0.0
    assert [order.side for order in broker.orders] == ["buy"]


def test_close_long_sells_held_contracts_rather_than_a_stale_trade() -> None:
    broker, _, executor = _setup()
    held_call = occ_symbol("AAPL", EXPIRY, "call", 102)

    async def scenario():
        opened = await executor.execute(_opportunity("buy"), buying_power=100_000)
        held = {"AAPL": [_option_position(held_call, 900.0, qty=2)]}
        closed = await executor.execute(_opportunity("close_long"), buying_power=100_000, positions=held)
        return opened.trade, closed

    trade, closed = asyncio.run(scenario())
    assert closed.reason == "closed_positions"
    assert [(order.symbol, order.qty) for order in broker.orders if order.side == "sell"] == [(held_call, 2)]
    assert trade.is_active


def test_close_long_sells_the_held_quantity_of_a_tracked_trade() -> None:
    broker, _, executor = _setup()

    async def scenario():
        opened = await executor.execute(_opportunity("buy"), buying_power=100_000)
        held = {"AAPL": [_option_position(opened.trade.option_symbol, 1_200.0, qty=3)]}
        closed = await executor.execute(_opportunity("close_long"), buying_power=100_000, positions=held)
        return opened.trade, closed

    trade, closed = asyncio.run(scenario())
    assert closed.reason == "closed_tracked"
    assert (broker.orders[-1].symbol, broker.orders[-1].qty) == (trade.option_symbol, 3)
    assert trade.close_reason == "signal"
    assert trade.exit_value == 1_200.0
    assert executor.realized_pl == pytest.approx(-800.0)


def test_trades_since_uses_the_eastern_trading_date() -> None:
    _, _, executor = _setup()

    async def scenario():
        return await executor.execute(_opportunity("buy"), buying_power=100_000)

    trade = asyncio.run(scenario()).trade
    # 02:00 UTC on June 4 is still June 3 in New York
    trade.entry_date = datetime(2024, 6, 4, 2, 0, tzinfo=timezone.utc)
    assert executor.trades_since(date(2024, 6, 3)) == [trade]
    assert executor.trades_since(date(2024, 6, 4)) == []
