"""Typer-powered operator CLI for the options decision engine."""

from __future__ import annotations

import asyncio
import os
from datetime import date
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from app.config import OPTIONAL_ENV, TradingParams, get_settings, get_trading_params, missing_env
from core.market_hours import after_close, trading_date
from services.market.indicators import analyze as analyze_bars
from services.market.synthetic import synthetic_bars
from services.ops.alerts import SlackNotifier
from services.runtime.logging import setup_logging
from services.strategy.engine import CycleReport, TradingEngine

console = Console()
app = typer.Typer(add_completion=False, help="Options decision engine operator CLI")

INTERVAL_OPTION = typer.Option(300.0, "--interval", min=5.0, help="Seconds between strategy cycles")
SYNTHETIC_OPTION = typer.Option(False, "--synthetic", help="Skip the broker and analyse synthetic bars")


def _load_env() -> None:
    """Load environment variables from the default `.env` file."""

    load_dotenv(override=False)
    os.environ.setdefault("ALPACA_PAPER", "true")


def build_engine(params: Optional[TradingParams] = None) -> TradingEngine:
    from app.alpaca_client import build_data_client, build_trading_client
    from services.execution.broker import AlpacaBroker
    from services.sentiment.fetchers import AlpacaNewsClient

    settings = get_settings()
    params = params or get_trading_params()
    broker = AlpacaBroker(
        build_trading_client(settings),
        build_data_client(settings),
        data_feed=settings.data_feed,
        option_expiry_months=params.option_expiry_months,
    )
    news = AlpacaNewsClient(
        settings.alpaca_key_id,
        settings.alpaca_secret_key,
        news_api_key=settings.news_api_key,
        http_timeout=params.request_timeout_sec,
    )
    notifier = SlackNotifier(settings.slack_webhook_url)
    return TradingEngine(broker, news, notifier, params=params)


def _print_report(report: CycleReport) -> None:
    console.rule("[bold cyan]Strategy cycle")
    summary = (
        f"Analyzed: {len(report.analyzed)}  Skipped: {len(report.skipped)}\n"
        f"News source: {report.news_source} ({'real' if report.news_is_real else 'SYNTHETIC'})\n"
        f"Trending: {', '.join(report.trending) or '-'}"
    )
    if report.error:
        summary += f"\n[red]Error:[/red] {report.error}"
    console.print(Panel.fit(summary, border_style="cyan"))

    table = Table(title="Opportunities", show_header=True, header_style="bold magenta")
    table.add_column("Symbol")
    table.add_column("Action")
    table.add_column("Type")
    table.add_column("Confidence", justify="right")
    table.add_column("Data")
    for opp in report.opportunities:
        table.add_row(
            opp.symbol,
            opp.action,
            opp.option_type or "-",
            f"{opp.confidence:.2f}",
            report.data_sources.get(opp.symbol, "-"),
        )
    console.print(table)
    for outcome in report.outcomes + report.closed:
        colour = "green" if outcome.ok else "yellow"
        console.print(f"[{colour}]{outcome.symbol}[/{colour}] {outcome.action}: {outcome.reason}")


async def _initialize(engine: TradingEngine) -> None:
    try:
        account = await engine.initialize()
    except Exception as exc:  # noqa: BLE001 - reported, then the command exits
        engine.notifier.send_emergency_alert("Engine initialisation failed", "Could not reach the trading account.", exc)
        console.print(f"[red]Initialisation failed:[/red] {exc}")
        raise typer.Exit(code=1) from None
    console.print(
        f"Account [bold]{account.status or 'unknown'}[/bold] buying power ${account.buying_power:,.2f}; "
        f"watching {len(engine.watchlist)} symbols, trending: {', '.join(sorted(engine.watchlist.trending)) or '-'}"
    )


@app.command()
def check() -> None:
    """Report missing environment variables and the effective trading parameters."""

    _load_env()
    missing = missing_env()
    table = Table(title="Environment", show_header=True)
    table.add_column("Variable")
    table.add_column("Status")
    for name in missing:
        table.add_row(name, "[red]missing[/red]")
    for name in OPTIONAL_ENV:
        table.add_row(name, "set" if os.getenv(name) else "[yellow]unset (optional)[/yellow]")
    console.print(table)

    params = get_trading_params()
    console.print(
        Panel.fit(
            f"Risk: {params.risk_percentage:.2%}  Max contracts: {params.max_contracts}\n"
            f"Expiry: {params.option_expiry_months} months  Profit target: {params.profit_target_pct:.0%}\n"
            f"Watchlist: {len(params.watchlist)} symbols",
            title="Trading parameters",
        )
    )
    if missing:
        console.print(f"[red]NOT READY:[/red] missing {', '.join(missing)}")
        raise typer.Exit(code=1)
    console.print("[green]READY[/green]")


@app.command()
def once() -> None:
    """Initialise, run a single strategy cycle and print the report."""

    _load_env()
    setup_logging()
    engine = build_engine()

    async def _run() -> Optional[CycleReport]:
        await _initialize(engine)
        engine.start()
        try:
            return await engine.execute_trading_strategy()
        finally:
            engine.stop()

    report = asyncio.run(_run())
    if report is None:
        console.print("[yellow]Market closed; nothing to do.[/yellow]")
        return
    _print_report(report)


@app.command()
def run(interval: float = INTERVAL_OPTION) -> None:
    """Trade until interrupted, sending the daily report after the close."""

    _load_env()
    setup_logging()
    engine = build_engine()

    async def _loop() -> None:
        await _initialize(engine)
        engine.start()
        reported: Optional[date] = None
        try:
            while engine.is_running:
                report = await engine.execute_trading_strategy()
                if report is not None:
                    _print_report(report)
                today = trading_date()
                if after_close() and reported != today:
                    await engine.send_daily_report()
                    reported = today
                await asyncio.sleep(interval)
        finally:
            engine.stop()

    try:
        asyncio.run(_loop())
    except KeyboardInterrupt:
        console.print("[cyan]Stopped.[/cyan]")


@app.command()
def analyze(symbol: str, synthetic: bool = SYNTHETIC_OPTION) -> None:
    """Print the indicator snapshot and signal for SYMBOL."""

    _load_env()
    symbol = symbol.strip().upper()
    source = "synthetic"
    bars = None
    if not synthetic:
        try:
            engine = build_engine()
            bars = asyncio.run(engine.broker.get_stock_bars(symbol, "1Day", 100))
            source = "live"
        except Exception as exc:  # noqa: BLE001 - fall back to synthetic bars
            console.print(f"[yellow]Live bars unavailable ({exc}); using synthetic data.[/yellow]")
    if not bars:
        bars = synthetic_bars(symbol)
        source = "synthetic"

    result = analyze_bars(symbol, bars)
    snap = result.snapshot
    macd, bands, stoch = snap.macd, snap.bollinger, snap.stochastic
    table = Table(title=f"{symbol} ({source}, {len(bars)} bars)", show_header=True)
    table.add_column("Indicator")
    table.add_column("Value", justify="right")
    rows = [
        ("Price", snap.price),
        ("SMA20", snap.sma20),
        ("SMA50", snap.sma50),
        ("EMA12", snap.ema12),
        ("EMA26", snap.ema26),
        ("RSI", snap.rsi),
        ("MACD", macd.value if macd else None),
        ("MACD signal", macd.signal if macd else None),
        ("BB upper", bands.upper if bands else None),
        ("BB lower", bands.lower if bands else None),
        ("Stoch %K", stoch.k if stoch else None),
        ("Stoch %D", stoch.d if stoch else None),
    ]
    for name, value in rows:
        table.add_row(name, "-" if value is None else f"{value:.2f}")
    console.print(table)
    signal = result.signal
    console.print(
        Panel.fit(
            f"Recommendation: [bold]{signal.recommendation}[/bold]  Strength: {signal.strength}\n"
            + "\n".join(result.notes),
            title="Signal",
        )
    )


if __name__ == "__main__":  # pragma: no cover - manual execution only
    app()
