import asyncio
from datetime import date

import numpy as np
import pytest

from app.config import TradingParams
from services.execution.types import Position
from services.strategy.engine import NEWS_CACHE_KEY, TradingEngine, bars_key, exposure_of
from tests.fakes.broker import FakeBroker
from tests.fakes.market import bars_from_closes, falling_bars, make_chain, occ_symbol, rising_bars, zigzag_closes
from tests.fakes.news import FakeNews, FakeNotifier, article

STRIKES = range(105, 117)
BULLISH = "AAPL shares rise on strong growth and record profit"
BEARISH = "AAPL shares fall as weak demand raises concern"


def _engine(broker: FakeBroker, news: FakeNews, *, watchlist=("AAPL",)) -> tuple[TradingEngine, FakeNotifier]:
    notifier = FakeNotifier()
    params = TradingParams(watchlist=list(watchlist), request_timeout_sec=1.0)
    engine = TradingEngine(broker, news, notifier, params=params, rng=np.random.default_rng(11))
    return engine, notifier


def _broker(bars=None, **kwargs) -> FakeBroker:
    return FakeBroker(
        bars={"AAPL": bars if bars is not None else rising_bars(60)},
        chains={"AAPL": make_chain("AAPL", STRIKES, price=4.0)},
        **kwargs,
    )


def _bullish_news() -> FakeNews:
    return FakeNews({"AAPL": [article(BULLISH, symbol="AAPL")]})


def test_bullish_cycle_buys_an_atm_call() -> None:
    broker = _broker()
    engine, notifier = _engine(broker, _bullish_news())
    engine.start()

    report = asyncio.run(engine.execute_trading_strategy())

    assert report is not None and report.error is None
    assert report.analyzed == ["AAPL"]
    assert report.data_sources == {"AAPL": "live"}
    assert report.news_source == "live" and report.news_is_real
    opportunity = report.opportunities[0]
    assert opportunity.action == "buy"
    assert opportunity.option_type == "call"
    assert opportunity.confidence > 0.6
    assert opportunity.is_real_data

    order = broker.orders[0]
    assert order.side == "buy"
    assert order.qty == 5
    assert order.symbol.startswith("AAPL") and order.symbol[10] == "C"
    trade = engine.active_trades[order.order_id]
    assert trade.strike == 111.0
    assert trade.total_cost == 2_000.0
    assert trade.profit_target == pytest.approx(2_300.0)
    assert engine.total_trades == 1
    assert len(notifier.trading) == 1
    assert engine.last_update is not None


def test_bearish_signal_with_long_exposure_closes_calls() -> None:
    expiry = make_chain("AAPL", [110])[0].expiration
    call = occ_symbol("AAPL", expiry, "call", 110)
    held = Position(symbol=call, qty=2, side="long", market_value=900.0, asset_class="us_option", underlying="AAPL")
    broker = _broker(falling_bars(60), positions=[held])
    engine, _ = _engine(broker, FakeNews({"AAPL": [article(BEARISH, symbol="AAPL")]}))
    engine.start()

    report = asyncio.run(engine.execute_trading_strategy())

    assert engine.exposure == {"AAPL": "long"}
    assert report.opportunities[0].action == "close_long"
    assert [(order.symbol, order.qty, order.side) for order in broker.orders] == [(call, 2, "sell")]
    assert report.outcomes[0].reason == "closed_positions"


def test_news_outage_falls_back_to_flagged_synthetic_news() -> None:
    broker = _broker()
    engine, _ = _engine(broker, FakeNews(fail=True))
    engine.start()

    report = asyncio.run(engine.execute_trading_strategy())

    assert report.news_source == "synthetic"
    assert not report.news_is_real
    entry = engine.news_cache.get_entry(NEWS_CACHE_KEY)
    assert entry is not None and entry.synthetic
    assert all(not impact.is_real_data for impact in entry.data.values())
    assert all(not opp.is_real_data for opp in report.opportunities)


def test_insufficient_buying_power_aborts_only_that_trade() -> None:
    broker = FakeBroker(
        bars={"AAPL": rising_bars(60)},
        chains={"AAPL": make_chain("AAPL", STRIKES, price=10.0)},
        buying_power=1_000.0,
    )
    engine, notifier = _engine(broker, _bullish_news())
    engine.start()

    report = asyncio.run(engine.execute_trading_strategy())

    assert broker.orders == []
    assert report.error is None
    assert report.outcomes[0].reason == "InsufficientBuyingPowerError"
    assert notifier.emergency == []
    assert engine.total_trades == 0


def test_cycle_is_noop_when_stopped_or_closed() -> None:
    broker = _broker()
    engine, _ = _engine(broker, _bullish_news())
    assert asyncio.run(engine.execute_trading_strategy()) is None

    closed = _broker(market_open=False)
    engine, _ = _engine(closed, _bullish_news())
    engine.start()
    assert asyncio.run(engine.execute_trading_strategy()) is None
    assert closed.bar_calls == []


def test_overlapping_tick_is_skipped() -> None:
    broker = _broker()
    engine, _ = _engine(broker, _bullish_news())
    engine.start()

    async def scenario():
        async with engine._cycle_lock:
            assert engine.status()["cycle_in_progress"]
            return await engine.execute_trading_strategy()

    assert asyncio.run(scenario()) is None
    assert broker.orders == []


def test_bar_outage_uses_cache_then_synthetic() -> None:
    broker = _broker()
    engine, _ = _engine(broker, FakeNews())
    engine.start()

    async def scenario():
        first = await engine.execute_trading_strategy()
        broker.failing_bars.add("AAPL")
        second = await engine.execute_trading_strategy()
        engine.price_cache.clear()
        third = await engine.execute_trading_strategy()
        return first, second, third

    first, second, third = asyncio.run(scenario())
    assert first.data_sources["AAPL"] == "live"
    assert second.data_sources["AAPL"] == "cache"
    assert third.data_sources["AAPL"] == "synthetic"
    entry = engine.price_cache.get_entry(bars_key("AAPL"))
    assert entry is not None and entry.synthetic


def test_symbols_without_options_are_skipped() -> None:
    broker = _broker()
    broker.bars["MSFT"] = rising_bars(60)
    engine, _ = _engine(broker, _bullish_news(), watchlist=("AAPL", "MSFT"))
    engine.start()

    report = asyncio.run(engine.execute_trading_strategy())

    assert report.analyzed == ["AAPL"]
    assert report.skipped == {"MSFT": "no_options"}


def test_initial_trending_set_is_replaced_by_the_cycle() -> None:
    closes = zigzag_closes(59)
    closes.append(round(closes[-1] * 1.05, 2))
    volumes = [1_000_000.0] * 59 + [3_000_000.0]
    broker = _broker(bars_from_closes(closes, volumes=volumes))
    engine, _ = _engine(broker, FakeNews())

    async def scenario():
        await engine.initialize()
        seeded = set(engine.watchlist.trending)
        engine.start()
        report = await engine.execute_trading_strategy()
        return seeded, report

    seeded, report = asyncio.run(scenario())
    assert seeded == {"AAPL"}
    assert ("AAPL", 5) in broker.bar_calls
    assert report.trending == []
    assert engine.watchlist.trending == set()


def test_stop_during_cycle_skips_execution() -> None:
    broker = _broker()
    engine, _ = _engine(broker, _bullish_news())
    engine.start()
    original = broker.get_option_chain

    async def stopping_chain(symbol):
        engine.stop()
        return await original(symbol)

    broker.get_option_chain = stopping_chain  # type: ignore[method-assign]
    report = asyncio.run(engine.execute_trading_strategy())

    assert report.stopped
    assert report.outcomes == []
    assert broker.orders == []


def test_position_load_failure_keeps_previous_mirror() -> None:
    held = Position(symbol="AAPL", qty=10, side="long")
    broker = _broker(positions=[held])
    engine, _ = _engine(broker, FakeNews())

    async def broken():
        raise ConnectionError("positions endpoint down")

    async def scenario():
        await engine.load_positions()
        broker.get_positions = broken  # type: ignore[method-assign]
        await engine.load_positions()

    asyncio.run(scenario())
    assert engine.positions == {"AAPL": held}
    assert engine.exposure == {"AAPL": "long"}
    assert engine.errors[-1]["context"] == "load_positions"


def test_exposure_of_option_positions() -> None:
    expiry = make_chain("AAPL", [100])[0].expiration
    call = occ_symbol("AAPL", expiry, "call", 100)
    put = occ_symbol("AAPL", expiry, "put", 100)
    assert exposure_of(Position(symbol=call, qty=1, side="long", asset_class="us_option")) == "long"
    assert exposure_of(Position(symbol=put, qty=1, side="long", asset_class="us_option")) == "short"
    assert exposure_of(Position(symbol=put, qty=1, side="short", asset_class="us_option")) == "long"
    assert exposure_of(Position(symbol="AAPL", qty=5, side="short")) == "short"


def test_performance_and_daily_report() -> None:
    broker = _broker(equity=100_500.0, equity_history=[100_000.0, 100_500.0])
    engine, notifier = _engine(broker, FakeNews())

    performance = asyncio.run(engine.send_daily_report())

    assert performance["day_pl"] == 500.0
    assert performance["total_value"] == 100_500.0
    assert engine.profit_loss == 500.0
    assert len(notifier.reports) == 1
    assert notifier.reports[0][0]["day_pl"] == 500.0


def test_performance_failure_is_zeroed() -> None:
    broker = _broker()
    broker.fail_account = True
    engine, _ = _engine(broker, FakeNews())
    performance = asyncio.run(engine.calculate_performance())
    assert performance["total_value"] == 0.0
    assert engine.errors[-1]["context"] == "performance"


def test_watchlist_and_news_views() -> None:
    bars = bars_from_closes([100.0, 102.0])
    broker = FakeBroker(bars={"AAPL": bars}, chains={"AAPL": make_chain("AAPL", [100])})
    market = [
        article("Chip stocks rally on strong demand", id="1"),
        article("Chip stocks rally on strong demand", id="1"),
        article("Oil slips", id="2"),
    ]
    news = FakeNews({"AAPL": [article(BULLISH)]}, market)
    engine, _ = _engine(broker, news)

    rows = asyncio.run(engine.get_watchlist())
    assert rows == [
        {
            "symbol": "AAPL",
            "price": 102.0,
            "change_pct": 2.0,
            "volume": 1_000_000.0,
            "headline": BULLISH,
            "is_trending": False,
        }
    ]

    scored = asyncio.run(engine.get_market_news(keywords=["chip"]))
    assert len(scored) == 1
    assert scored[0].sentiment == "positive"


def test_trending_view_reports_volume_ratio() -> None:
    bars = bars_from_closes([100.0, 104.0], volumes=[1_000_000.0, 2_500_000.0])
    broker = FakeBroker(bars={"AAPL": bars}, chains={"AAPL": make_chain("AAPL", [100, 105])})
    engine, _ = _engine(broker, FakeNews())
    engine.watchlist.replace_trending({"AAPL"})

    rows = asyncio.run(engine.get_trending_stocks())

    assert rows[0]["symbol"] == "AAPL"
    assert rows[0]["volume_ratio"] == 2.5
    assert rows[0]["price_change_pct"] == 4.0
    assert rows[0]["reason"] == "Volume spike with price increase"
    assert rows[0]["options_count"] == 4


def test_short_real_history_skips_the_symbol() -> None:
    broker = _broker(rising_bars(30))
    engine, _ = _engine(broker, _bullish_news())
    engine.start()

    report = asyncio.run(engine.execute_trading_strategy())

    assert report.error is None
    assert report.analyzed == []
    assert report.skipped == {"AAPL": "insufficient_data"}
    assert report.opportunities == []
    assert broker.orders == []


def test_missing_contracts_are_closed_only_after_a_fresh_position_load() -> None:
    broker = _broker()
    engine, _ = _engine(broker, _bullish_news())
    engine.start()
    original = broker.get_positions

    async def broken():
        raise ConnectionError("positions endpoint down")

    async def scenario():
        first = await engine.execute_trading_strategy()
        trade = first.outcomes[0].trade
        broker.get_positions = broken  # type: ignore[method-assign]
        stale = await engine.execute_trading_strategy()
        active_after_stale = trade.is_active
        broker.get_positions = original  # type: ignore[method-assign]
        fresh = await engine.execute_trading_strategy()
        return trade, stale, active_after_stale, fresh

    trade, stale, active_after_stale, fresh = asyncio.run(scenario())
    assert stale.closed == []
    assert active_after_stale
    assert trade.close_reason == "missing"
    assert fresh.closed and all(outcome.reason == "missing" for outcome in fresh.closed)


def test_error_journal_is_filtered_by_eastern_trading_date() -> None:
    engine, _ = _engine(_broker(), FakeNews())
    engine.record_error("analysis", "late failure", symbol="AAPL")
    # 02:00 UTC on June 4 is still June 3 in New York
    engine.errors[-1]["ts"] = "2024-06-04T02:00:00+00:00"

    assert engine.errors_since(date(2024, 6, 4)) == []
    assert [entry["message"] for entry in engine.errors_since(date(2024, 6, 3))] == ["late failure"]
