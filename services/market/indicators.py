"""Technical indicators and rule-based signal scoring over daily bars."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Literal, Optional, Sequence

import numpy as np
import pandas as pd

from services.errors import InsufficientDataError
from services.market.bars import PriceBar, bars_to_frame

EPS = 1e-9
MIN_BARS = 50

Recommendation = Literal["buy", "sell", "hold"]


def sma(series: pd.Series, period: int) -> pd.Series:
    return series.rolling(period, min_periods=period).mean()


def ema(series: pd.Series, span: int) -> pd.Series:
    return series.ewm(span=span, adjust=False, min_periods=span).mean()


def rsi(series: pd.Series, period: int = 14) -> pd.Series:
    diff = series.diff()
    gain = diff.clip(lower=0)
    loss = -diff.clip(upper=0)
    avg_gain = gain.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    avg_loss = loss.ewm(alpha=1 / period, adjust=False, min_periods=period).mean()
    rs = avg_gain / (avg_loss + EPS)
    return 100 - (100 / (1 + rs))


def macd(
    series: pd.Series, fast: int = 12, slow: int = 26, signal_period: int = 9
) -> tuple[pd.Series, pd.Series, pd.Series]:
    macd_line = ema(series, fast) - ema(series, slow)
    signal = macd_line.ewm(span=signal_period, adjust=False, min_periods=signal_period).mean()
    return macd_line, signal, macd_line - signal


def bollinger(
    series: pd.Series, period: int = 20, std: float = 2.0
) -> tuple[pd.Series, pd.Series, pd.Series]:
    mid = sma(series, period)
    dev = series.rolling(period, min_periods=period).std(ddof=0)
    return mid + std * dev, mid, mid - std * dev


def stochastic(
    high: pd.Series, low: pd.Series, close: pd.Series, k_period: int = 14, d_period: int = 3
) -> tuple[pd.Series, pd.Series]:
    lowest_low = low.rolling(k_period, min_periods=k_period).min()
    highest_high = high.rolling(k_period, min_periods=k_period).max()
    k = 100 * (close - lowest_low) / (highest_high - lowest_low + EPS)
    d = k.rolling(d_period, min_periods=d_period).mean()
    return k, d


def historical_volatility(closes: Sequence[float], period: int = 20) -> float:
    """Annualised standard deviation of daily log returns."""

    if len(closes) < period:
        return 0.0
    prices = np.asarray(closes, dtype=float)
    returns = np.log(prices[1:] / prices[:-1])
    if returns.size == 0:
        return 0.0
    return float(math.sqrt(np.var(returns) * 252))


@dataclass(frozen=True, slots=True)
class MacdValue:
    value: float
    signal: float
    histogram: float


@dataclass(frozen=True, slots=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float


@dataclass(frozen=True, slots=True)
class StochasticValue:
    k: float
    d: float


@dataclass(frozen=True, slots=True)
class IndicatorSnapshot:
    """Indicator values at the latest bar."""

    price: float
    sma20: float
    sma50: float
    ema12: float
    ema26: float
    rsi: float
    macd: Optional[MacdValue]
    bollinger: Optional[BollingerBands]
    stochastic: Optional[StochasticValue]
    volume: float
    avg_volume: float


@dataclass(slots=True)
class Signal:
    trend: str = "neutral"
    momentum: str = "neutral"
    volatility: str = "normal"
    volume_state: str = "normal"
    overall: str = "neutral"
    strength: int = 0
    recommendation: Recommendation = "hold"
    bullish_votes: float = 0.0
    bearish_votes: float = 0.0


@dataclass(slots=True)
class TechnicalAnalysis:
    """Everything the evaluator needs to know about one symbol's chart."""

    symbol: str
    current_price: float
    snapshot: IndicatorSnapshot
    signal: Signal
    notes: List[str] = field(default_factory=list)
    is_trending: bool = False
    data_source: str = "live"
    is_real_data: bool = True


def _last(series: pd.Series) -> Optional[float]:
    if series.empty:
        return None
    value = series.iloc[-1]
    if value is None or pd.isna(value):
        return None
    return float(value)


def compute_snapshot(symbol: str, bars: Sequence[PriceBar]) -> IndicatorSnapshot:
    """Compute the indicator set at the latest bar.

    Raises ``InsufficientDataError`` when fewer than 50 bars are supplied.
    """

    if len(bars) < MIN_BARS:
        raise InsufficientDataError(symbol, len(bars), MIN_BARS)

    df = bars_to_frame(bars)
    close = df["close"].astype(float)
    volume = df["volume"].astype(float)

    macd_line, macd_signal, macd_hist = macd(close)
    upper, middle, lower = bollinger(close)
    k, d = stochastic(df["high"].astype(float), df["low"].astype(float), close)

    macd_value = None
    if _last(macd_line) is not None and _last(macd_signal) is not None:
        macd_value = MacdValue(_last(macd_line), _last(macd_signal), _last(macd_hist))
    bands = None
    if _last(middle) is not None:
        bands = BollingerBands(_last(upper), _last(middle), _last(lower))
    stoch = None
    if _last(k) is not None and _last(d) is not None:
        stoch = StochasticValue(_last(k), _last(d))

    return IndicatorSnapshot(
        price=float(close.iloc[-1]),
        sma20=_last(sma(close, 20)),
        sma50=_last(sma(close, 50)),
        ema12=_last(ema(close, 12)),
        ema26=_last(ema(close, 26)),
        rsi=_last(rsi(close)),
        macd=macd_value,
        bollinger=bands,
        stochastic=stoch,
        volume=float(volume.iloc[-1]),
        avg_volume=float(volume.iloc[-20:].mean()),
    )


def generate_signal(snapshot: IndicatorSnapshot) -> Signal:
    """Additive vote scoring; strength in [-100, 100]."""

    signal = Signal()
    bullish = 0.0
    bearish = 0.0
    price = snapshot.price

    if price > snapshot.sma20 > snapshot.sma50:
        signal.trend = "bullish"
        bullish += 2
    elif price < snapshot.sma20 < snapshot.sma50:
        signal.trend = "bearish"
        bearish += 2

    if snapshot.rsi < 30:
        signal.momentum = "oversold"
        bullish += 1
    elif snapshot.rsi > 70:
        signal.momentum = "overbought"
        bearish += 1
    elif snapshot.rsi > 50:
        bullish += 0.5
    else:
        bearish += 0.5

    if snapshot.macd is not None:
        if snapshot.macd.value > snapshot.macd.signal:
            bullish += 1
        elif snapshot.macd.value < snapshot.macd.signal:
            bearish += 1

    if snapshot.bollinger is not None:
        if price < snapshot.bollinger.lower:
            signal.volatility = "oversold"
            bullish += 1
        elif price > snapshot.bollinger.upper:
            signal.volatility = "overbought"
            bearish += 1

    # volume confirms whichever side already leads
    if snapshot.volume > snapshot.avg_volume * 1.5:
        signal.volume_state = "high"
        if bullish > bearish:
            bullish += 0.5
        else:
            bearish += 0.5
    elif snapshot.volume < snapshot.avg_volume * 0.5:
        signal.volume_state = "low"

    if snapshot.stochastic is not None:
        if snapshot.stochastic.k < 20 and snapshot.stochastic.d < 20:
            bullish += 0.5
        elif snapshot.stochastic.k > 80 and snapshot.stochastic.d > 80:
            bearish += 0.5

    signal.bullish_votes = bullish
    signal.bearish_votes = bearish
    total = bullish + bearish
    if total > 0:
        signal.strength = int(round((bullish - bearish) / total * 100))
        if signal.strength > 30:
            signal.overall = "bullish"
            signal.recommendation = "buy"
        elif signal.strength < -30:
            signal.overall = "bearish"
            signal.recommendation = "sell"
    return signal


def describe_signal(signal: Signal) -> List[str]:
    notes: List[str] = []
    if signal.trend == "bullish":
        notes.append("Stock is in an uptrend with price above moving averages")
    elif signal.trend == "bearish":
        notes.append("Stock is in a downtrend with price below moving averages")

    if signal.momentum == "oversold":
        notes.append("RSI indicates oversold conditions - potential bounce")
    elif signal.momentum == "overbought":
        notes.append("RSI indicates overbought conditions - potential pullback")

    if signal.volatility == "oversold":
        notes.append("Price at lower Bollinger Band - potential support")
    elif signal.volatility == "overbought":
        notes.append("Price at upper Bollinger Band - potential resistance")

    if signal.volume_state == "high":
        notes.append("Above average volume confirms the move")
    elif signal.volume_state == "low":
        notes.append("Below average volume suggests weak conviction")
    return notes


def analyze(symbol: str, bars: Sequence[PriceBar]) -> TechnicalAnalysis:
    snapshot = compute_snapshot(symbol, bars)
    signal = generate_signal(snapshot)
    return TechnicalAnalysis(
        symbol=symbol,
        current_price=snapshot.price,
        snapshot=snapshot,
        signal=signal,
        notes=describe_signal(signal),
    )


__all__ = [
    "MIN_BARS",
    "sma",
    "ema",
    "rsi",
    "macd",
    "bollinger",
    "stochastic",
    "historical_volatility",
    "MacdValue",
    "BollingerBands",
    "StochasticValue",
    "IndicatorSnapshot",
    "Signal",
    "TechnicalAnalysis",
    "compute_snapshot",
    "generate_signal",
    "describe_signal",
    "analyze",
]
