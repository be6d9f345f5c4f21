"""Top-level orchestration for the options decision engine."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

import numpy as np

from app.config import TradingParams
from core.market_hours import trading_date
from services.errors import InsufficientDataError, NoMatchingContractError
from services.execution.broker import Broker
from services.execution.executor import TradeExecutor
from services.execution.types import Account, ActiveTrade, Position, PositionSide, TradeOutcome
from services.market.bars import PriceBar
from services.market.cache import DataCache
from services.market.indicators import TechnicalAnalysis, analyze
from services.market.resilience import FallbackFetcher, call_with_timeout
from services.market.synthetic import synthetic_bars, synthetic_news_impact
from services.market.trend import TrendReading, check_full, check_short, trending_members
from services.ops.alerts import Notifier
from services.options.chain import OptionContract, parse_occ_symbol
from services.sentiment.fetchers import NewsSource
from services.sentiment.filters import dedupe, filter_relevant
from services.sentiment.impact import NewsImpactService
from services.sentiment.rule_model import SentimentScorer
from services.sentiment.types import NewsImpact, ScoredArticle
from services.strategy.evaluator import evaluate_opportunity, rank_opportunities, select_for_execution
from services.strategy.types import Opportunity
from services.strategy.universe import Watchlist

T = TypeVar("T")

NEWS_CACHE_KEY = "watchlistNews"
ANALYSIS_BARS = 100
TREND_BARS = 5
ERROR_JOURNAL_SIZE = 200


def bars_key(symbol: str) -> str:
    return f"bars:{symbol}"


@dataclass
class CycleReport:
    """Summary of one strategy cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    analyzed: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    data_sources: Dict[str, str] = field(default_factory=dict)
    news_source: Optional[str] = None
    news_is_real: bool = True
    trending: List[str] = field(default_factory=list)
    opportunities: List[Opportunity] = field(default_factory=list)
    outcomes: List[TradeOutcome] = field(default_factory=list)
    closed: List[TradeOutcome] = field(default_factory=list)
    stopped: bool = False
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "analyzed": list(self.analyzed),
            "skipped": dict(self.skipped),
            "data_sources": dict(self.data_sources),
            "news_source": self.news_source,
            "news_is_real": self.news_is_real,
            "trending": list(self.trending),
            "opportunities": [
                {
                    "symbol": opp.symbol,
                    "action": opp.action,
                    "option_type": opp.option_type,
                    "confidence": round(opp.confidence, 3),
                }
                for opp in self.opportunities
            ],
            "outcomes": [
                {"symbol": out.symbol, "action": out.action, "ok": out.ok, "reason": out.reason}
                for out in self.outcomes + self.closed
            ],
            "stopped": self.stopped,
            "error": self.error,
        }


def exposure_of(position: Position) -> Optional[PositionSide]:
    """Directional exposure: long calls and short puts are long the underlying."""

    if not position.is_option:
        return position.side
    parsed = parse_occ_symbol(position.symbol)
    if parsed is None:
        return None
    option_type = parsed[2]
    if position.side == "long":
        return "long" if option_type == "call" else "short"
    return "short" if option_type == "call" else "long"


class TradingEngine:
    """Owns every piece of mutable trading state: caches, trending set,
    position mirror, active trades and counters.

    Cycles are serialised by an ``asyncio.Lock``; a tick that arrives while a
    cycle is running returns immediately.
    """

    def __init__(
        self,
        broker: Broker,
        news: NewsSource,
        notifier: Notifier,
        *,
        params: Optional[TradingParams] = None,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.log = logging.getLogger("optionpilot.strategy.engine")
        self.params = params or TradingParams()
        self.broker = broker
        self.news = news
        self.notifier = notifier
        self.timeout = self.params.request_timeout_sec
        self.max_concurrency = max(1, int(self.params.max_concurrency))
        self._rng = rng if rng is not None else np.random.default_rng()

        self.watchlist = Watchlist(self.params.watchlist)
        self.scorer = SentimentScorer(self.watchlist)
        self.news_service = NewsImpactService(
            news, self.scorer, max_concurrency=self.max_concurrency, timeout=self.timeout
        )
        self.price_cache: DataCache[List[PriceBar]] = DataCache(
            self.params.cache_ttl_seconds, self.params.synthetic_cache_ttl_seconds, clock=clock
        )
        self.news_cache: DataCache[Dict[str, NewsImpact]] = DataCache(
            self.params.cache_ttl_seconds, self.params.synthetic_cache_ttl_seconds, clock=clock
        )
        self.price_fetcher = FallbackFetcher(self.price_cache, timeout=self.timeout, clock=clock)
        # per-symbol calls inside the news batch carry their own timeouts
        self.news_fetcher = FallbackFetcher(self.news_cache, timeout=None, clock=clock)
        self.executor = TradeExecutor(
            broker,
            notifier,
            risk_percentage=self.params.risk_percentage,
            max_contracts=self.params.max_contracts,
            option_expiry_months=self.params.option_expiry_months,
            profit_target_pct=self.params.profit_target_pct,
            atm_tolerance=self.params.atm_tolerance,
            timeout=self.timeout,
        )

        self.positions: Dict[str, Position] = {}
        self.positions_by_underlying: Dict[str, List[Position]] = {}
        self.exposure: Dict[str, PositionSide] = {}
        self.errors: Deque[Dict[str, Any]] = deque(maxlen=ERROR_JOURNAL_SIZE)
        self.is_running = False
        self.last_update: Optional[datetime] = None
        self.last_report: Optional[CycleReport] = None
        self.profit_loss = 0.0
        self._cycle_lock = asyncio.Lock()

    # state ---------------------------------------------------------------

    @property
    def total_trades(self) -> int:
        return self.executor.total_trades

    @property
    def active_trades(self) -> Dict[str, ActiveTrade]:
        return self.executor.active_trades

    def record_error(self, context: str, exc: BaseException | str, *, symbol: Optional[str] = None) -> None:
        self.errors.append(
            {
                "ts": datetime.now(timezone.utc).isoformat(),
                "context": context,
                "symbol": symbol,
                "message": str(exc) or type(exc).__name__,
            }
        )

    async def _upstream(self, fn: Callable[[], Awaitable[T]]) -> T:
        return await call_with_timeout(fn, self.timeout)

    async def _notify(self, method: Callable[..., Any], *args: Any) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, method, *args)
        except Exception:  # noqa: BLE001 - alerting never fails the caller
            self.log.exception("strategy.alert_failed")

    async def _fan_out(self, symbols: Iterable[str], worker: Callable[[str], Awaitable[T]]) -> List[T | BaseException]:
        gate = asyncio.Semaphore(self.max_concurrency)

        async def _guarded(symbol: str) -> T:
            async with gate:
                return await worker(symbol)

        return await asyncio.gather(*(_guarded(sym) for sym in symbols), return_exceptions=True)

    # lifecycle -----------------------------------------------------------

    async def initialize(self) -> Account:
        """Check the account, seed the trending set and mirror positions.

        Account failures propagate to the caller.
        """

        account = await self._upstream(self.broker.get_account)
        self.log.info(
            "strategy.account",
            extra={"status": account.status, "buying_power": round(account.buying_power, 2)},
        )
        self.watchlist.reset()
        await self.identify_trending_stocks()
        await self.load_positions()
        self.log.info(
            "strategy.initialized",
            extra={"watchlist": len(self.watchlist), "trending": sorted(self.watchlist.trending)},
        )
        return account

    def start(self) -> None:
        self.is_running = True
        self.log.info("strategy.started")

    def stop(self) -> None:
        self.is_running = False
        self.log.info("strategy.stopped")

    def status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "cycle_in_progress": self._cycle_lock.locked(),
            "total_trades": self.total_trades,
            "profit_loss": self.profit_loss,
            "active_trades": len(self.executor.open_trades()),
            "watchlist": len(self.watchlist),
            "trending": sorted(self.watchlist.trending),
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "errors": len(self.errors),
        }

    async def identify_trending_stocks(self) -> List[TrendReading]:
        """Short-form detection pass over the watchlist; replaces the trending set."""

        symbols = self.watchlist.get()

        async def _read(symbol: str) -> Optional[TrendReading]:
            bars = await self._upstream(lambda: self.broker.get_stock_bars(symbol, "1Day", TREND_BARS))
            return check_short(symbol, bars)

        results = await self._fan_out(symbols, _read)
        readings: List[TrendReading] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                self.log.warning("strategy.trend_check_failed", extra={"symbol": symbol, "error": str(result)})
                continue
            if result is not None:
                readings.append(result)
        self.watchlist.replace_trending(trending_members(readings))
        for reading in readings:
            if reading.trending:
                self.log.info(
                    "strategy.trending_detected",
                    extra={
                        "symbol": reading.symbol,
                        "volume_ratio": round(reading.volume_ratio, 2),
                        "price_change": round(reading.price_change * 100, 2),
                    },
                )
        return readings

    async def load_positions(self) -> bool:
        """Refresh the read-only position mirror; keeps the previous mirror on failure."""

        try:
            positions = await self._upstream(self.broker.get_positions)
        except Exception as exc:  # noqa: BLE001
            self.log.error("strategy.positions_failed", extra={"error": str(exc)})
            self.record_error("load_positions", exc)
            return False
        self.positions = {pos.symbol: pos for pos in positions}
        grouped: Dict[str, List[Position]] = {}
        net: Dict[str, float] = {}
        for pos in positions:
            underlying = pos.underlying or pos.symbol
            grouped.setdefault(underlying, []).append(pos)
            side = exposure_of(pos)
            if side is None:
                continue
            net[underlying] = net.get(underlying, 0.0) + (pos.qty if side == "long" else -pos.qty)
        self.positions_by_underlying = grouped
        self.exposure = {sym: ("long" if value > 0 else "short") for sym, value in net.items() if value != 0}
        self.log.info("strategy.positions_loaded", extra={"count": len(positions)})
        return True

    # cycle ---------------------------------------------------------------

    async def execute_trading_strategy(self) -> Optional[CycleReport]:
        """Run one cycle. No-op when stopped, already running or the market is closed."""

        if not self.is_running:
            return None
        if self._cycle_lock.locked():
            self.log.info("strategy.cycle_skipped", extra={"reason": "in_progress"})
            return None
        async with self._cycle_lock:
            try:
                is_open = await self._upstream(self.broker.is_market_open)
            except Exception as exc:  # noqa: BLE001
                self.log.warning("strategy.clock_failed", extra={"error": str(exc)})
                is_open = False
            if not is_open:
                self.log.debug("strategy.market_closed")
                return None
            return await self._run_cycle()

    async def _run_cycle(self) -> CycleReport:
        report = CycleReport(started_at=datetime.now(timezone.utc))
        self.log.info("strategy.cycle_start", extra={"symbols": len(self.watchlist)})
        try:
            refreshed = await self.load_positions()
            report.closed = await self.executor.monitor_active_trades(
                self.positions.values(), positions_current=refreshed
            )

            analyses, chains = await self.analyze_watchlist(report)
            if not self.is_running:
                report.stopped = True
                return report

            news = await self.fetch_news_impact(report)
            ranked = self.find_trading_opportunities(analyses, news)
            report.opportunities = ranked
            selected = select_for_execution(
                ranked,
                limit=self.params.max_trades_per_cycle,
                min_confidence=self.params.min_confidence,
            )
            report.outcomes = await self.execute_trades(selected, chains)
            report.stopped = not self.is_running
            self.last_update = datetime.now(timezone.utc)
        except Exception as exc:  # noqa: BLE001 - the cycle caller never sees an exception
            self.log.exception("strategy.cycle_failed")
            self.record_error("cycle", exc)
            report.error = str(exc) or type(exc).__name__
            await self._notify(
                self.notifier.send_emergency_alert,
                "Trading Cycle Failed",
                "The strategy cycle aborted with an unexpected error.",
                exc,
            )
        finally:
            report.finished_at = datetime.now(timezone.utc)
            self.last_report = report
        self.log.info(
            "strategy.cycle_complete",
            extra={
                "analyzed": len(report.analyzed),
                "opportunities": len(report.opportunities),
                "executed": sum(1 for out in report.outcomes if out.ok),
                "news_source": report.news_source,
                "stopped": report.stopped,
            },
        )
        return report

    async def _analyze_symbol(
        self, symbol: str
    ) -> Optional[Tuple[TechnicalAnalysis, List[OptionContract], Optional[TrendReading]]]:
        if not self.is_running:
            return None
        result = await self.price_fetcher.fetch(
            bars_key(symbol),
            live=lambda: self.broker.get_stock_bars(symbol, "1Day", ANALYSIS_BARS),
            synthetic=lambda: synthetic_bars(symbol, ANALYSIS_BARS, rng=self._rng),
            # empty is a failed fetch; a short real history is skipped by analyze()
            validate=bool,
        )
        bars = result.data

        try:
            chain = await self._upstream(lambda: self.broker.get_option_chain(symbol))
        except Exception as exc:  # noqa: BLE001 - no chain means no options for the symbol
            self.log.info("strategy.options_unavailable", extra={"symbol": symbol, "error": str(exc)})
            chain = []
        if not chain:
            raise NoMatchingContractError("no options available", symbol=symbol)

        analysis = analyze(symbol, bars)
        analysis.data_source = result.source
        analysis.is_real_data = result.is_real_data
        reading = check_full(symbol, bars) if result.is_real_data else None
        analysis.is_trending = bool(reading and reading.trending)
        return analysis, list(chain), reading

    async def analyze_watchlist(
        self, report: CycleReport
    ) -> Tuple[List[TechnicalAnalysis], Dict[str, List[OptionContract]]]:
        symbols = self.watchlist.get()
        results = await self._fan_out(symbols, self._analyze_symbol)

        analyses: List[TechnicalAnalysis] = []
        chains: Dict[str, List[OptionContract]] = {}
        readings: List[TrendReading] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, InsufficientDataError):
                self.log.info("strategy.insufficient_data", extra={"symbol": symbol, "error": str(result)})
                report.skipped[symbol] = "insufficient_data"
                continue
            if isinstance(result, NoMatchingContractError):
                report.skipped[symbol] = "no_options"
                continue
            if isinstance(result, BaseException):
                self.log.error(
                    "strategy.analysis_failed",
                    extra={"symbol": symbol, "error": str(result) or type(result).__name__},
                    exc_info=result,
                )
                self.record_error("analysis", result, symbol=symbol)
                report.skipped[symbol] = "error"
                continue
            if result is None:
                report.skipped[symbol] = "stopped"
                continue
            analysis, chain, reading = result
            analyses.append(analysis)
            chains[symbol] = chain
            if reading is not None:
                readings.append(reading)
            report.analyzed.append(symbol)
            report.data_sources[symbol] = analysis.data_source

        self.watchlist.replace_trending(trending_members(readings))
        report.trending = sorted(self.watchlist.trending)
        return analyses, chains

    async def fetch_news_impact(self, report: Optional[CycleReport] = None) -> Dict[str, NewsImpact]:
        symbols = self.watchlist.get()
        result = await self.news_fetcher.fetch(
            NEWS_CACHE_KEY,
            live=lambda: self.news_service.get_news_impact(symbols),
            synthetic=lambda: synthetic_news_impact(symbols, rng=self._rng),
        )
        if report is not None:
            report.news_source = result.source
            report.news_is_real = result.is_real_data
        if not result.is_real_data:
            self.log.warning("strategy.synthetic_news", extra={"source": result.source})
        return result.data

    def find_trading_opportunities(
        self, analyses: Sequence[TechnicalAnalysis], news: Dict[str, NewsImpact]
    ) -> List[Opportunity]:
        opportunities = [
            evaluate_opportunity(
                analysis,
                news.get(analysis.symbol),
                is_trending=analysis.is_trending,
                position_side=self.exposure.get(analysis.symbol),
            )
            for analysis in analyses
        ]
        return rank_opportunities(opportunities)

    async def execute_trades(
        self, selected: Sequence[Opportunity], chains: Dict[str, List[OptionContract]]
    ) -> List[TradeOutcome]:
        """Execute sequentially; buying power is re-read before every trade."""

        outcomes: List[TradeOutcome] = []
        for opportunity in selected:
            if not self.is_running:
                self.log.info("strategy.stop_requested", extra={"remaining": opportunity.symbol})
                break
            buying_power = 0.0
            if opportunity.is_entry:
                try:
                    account = await self._upstream(self.broker.get_account)
                except Exception as exc:  # noqa: BLE001
                    self.log.error("strategy.account_failed", extra={"symbol": opportunity.symbol, "error": str(exc)})
                    self.record_error("account", exc, symbol=opportunity.symbol)
                    outcomes.append(
                        TradeOutcome(opportunity.symbol, opportunity.action, False, "account_unavailable", error=str(exc))
                    )
                    continue
                buying_power = account.buying_power
            outcome = await self.executor.execute(
                opportunity,
                buying_power=buying_power,
                chain=chains.get(opportunity.symbol),
                positions=self.positions_by_underlying,
            )
            if not outcome.ok and outcome.error and outcome.reason in ("order_failed", "unexpected_error"):
                self.record_error("execution", outcome.error, symbol=opportunity.symbol)
            outcomes.append(outcome)
        return outcomes

    # views ---------------------------------------------------------------

    async def get_watchlist(self) -> List[Dict[str, Any]]:
        """Quote, day change, latest headline and trending flag per watchlist symbol."""

        symbols = self.watchlist.get()

        async def _row(symbol: str) -> Dict[str, Any]:
            quote = await self._upstream(lambda: self.broker.get_quote(symbol))
            bars = await self._upstream(lambda: self.broker.get_stock_bars(symbol, "1Day", 2))
            change = 0.0
            volume = 0.0
            if len(bars) >= 2 and bars[-2].close > 0:
                change = (bars[-1].close - bars[-2].close) / bars[-2].close * 100
                volume = bars[-1].volume
            try:
                articles = await self._upstream(lambda: self.news.get_stock_news(symbol, 2))
            except Exception as exc:  # noqa: BLE001 - the row stays useful without news
                self.log.debug("strategy.watchlist_news_failed", extra={"symbol": symbol, "error": str(exc)})
                articles = []
            return {
                "symbol": symbol,
                "price": quote.price,
                "change_pct": round(change, 2),
                "volume": volume,
                "headline": articles[0].headline if articles else None,
                "is_trending": self.watchlist.is_trending(symbol),
            }

        results = await self._fan_out(symbols, _row)
        rows: List[Dict[str, Any]] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                self.log.warning("strategy.watchlist_row_failed", extra={"symbol": symbol, "error": str(result)})
                rows.append(
                    {
                        "symbol": symbol,
                        "price": 0.0,
                        "change_pct": 0.0,
                        "volume": 0.0,
                        "headline": None,
                        "is_trending": False,
                    }
                )
                continue
            rows.append(result)
        return rows

    async def get_trending_stocks(self) -> List[Dict[str, Any]]:
        """Trending members with price move, volume ratio and listed option count."""

        symbols = sorted(self.watchlist.trending)

        async def _row(symbol: str) -> Dict[str, Any]:
            quote = await self._upstream(lambda: self.broker.get_quote(symbol))
            bars = await self._upstream(lambda: self.broker.get_stock_bars(symbol, "1Day", TREND_BARS))
            reading = check_short(symbol, bars)
            try:
                chain = await self._upstream(lambda: self.broker.get_option_chain(symbol))
            except Exception as exc:  # noqa: BLE001
                self.log.debug("strategy.trending_chain_failed", extra={"symbol": symbol, "error": str(exc)})
                chain = []
            change = reading.price_change if reading else 0.0
            return {
                "symbol": symbol,
                "price": quote.price or (reading.price if reading else 0.0),
                "price_change_pct": round(change * 100, 2),
                "volume": reading.volume if reading else 0.0,
                "volume_ratio": round(reading.volume_ratio, 2) if reading else 0.0,
                "reason": "Volume spike with price increase" if change > 0 else "Volume spike with price decrease",
                "options_count": len(chain),
                "has_options": bool(chain),
            }

        results = await self._fan_out(symbols, _row)
        rows: List[Dict[str, Any]] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                self.log.warning("strategy.trending_row_failed", extra={"symbol": symbol, "error": str(result)})
                continue
            rows.append(result)
        rows.sort(key=lambda row: row["volume_ratio"], reverse=True)
        return rows

    async def get_market_news(self, limit: int = 20, keywords: Sequence[str] = ()) -> List[ScoredArticle]:
        articles = await self._upstream(lambda: self.news.get_market_news(limit))
        return self.scorer.score(filter_relevant(dedupe(articles), keywords))

    async def calculate_performance(self) -> Dict[str, Any]:
        """Equity, day P&L from the 1-day portfolio history, and trade counters."""

        try:
            account = await self._upstream(self.broker.get_account)
            history = await self._upstream(lambda: self.broker.get_portfolio_history("1D"))
        except Exception as exc:  # noqa: BLE001
            self.log.error("strategy.performance_failed", extra={"error": str(exc)})
            self.record_error("performance", exc)
            return {
                "total_value": 0.0,
                "day_pl": 0.0,
                "buying_power": 0.0,
                "total_trades": self.total_trades,
                "active_trades": len(self.executor.open_trades()),
                "realized_pl": self.executor.realized_pl,
            }
        equity = [float(value) for value in history.get("equity") or [] if value is not None]
        if len(equity) > 1:
            self.profit_loss = equity[-1] - equity[-2]
        return {
            "total_value": account.equity,
            "day_pl": self.profit_loss,
            "buying_power": account.buying_power,
            "total_trades": self.total_trades,
            "active_trades": len(self.executor.open_trades()),
            "realized_pl": self.executor.realized_pl,
        }

    def errors_since(self, day: date) -> List[Dict[str, Any]]:
        """Journal entries whose US/Eastern trading date is on or after ``day``."""

        return [entry for entry in self.errors if trading_date(datetime.fromisoformat(entry["ts"])) >= day]

    async def send_daily_report(self) -> Dict[str, Any]:
        performance = await self.calculate_performance()
        today = trading_date()
        trades = [trade.as_dict() for trade in self.executor.trades_since(today)]
        errors = self.errors_since(today)
        await self._notify(self.notifier.send_daily_report, performance, trades, errors)
        self.log.info("strategy.daily_report", extra={"trades": len(trades), "errors": len(errors)})
        return performance


__all__ = ["TradingEngine", "CycleReport", "exposure_of", "bars_key"]
