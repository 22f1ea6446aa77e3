"""
Market regime classification: trend strength, volatility level and market
phase at a point in history, plus the strategy recommended for each regime.
"""
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from pydantic import ConfigDict

from quantsim.backtester.results import ResultModel
from quantsim.data.candle import Candle, closes, highs, lows
from quantsim.indicators.factory import adx, atr, sma

ADX_PERIOD = 14
ATR_PERIOD = 14
SMA_PERIOD = 200
RECENT_CHANGE_WINDOW = 20

STRONG_TREND_ADX = 25.0
WEAK_TREND_ADX = 20.0
HIGH_VOLATILITY_ATR_PERCENT = 3.0
MEDIUM_VOLATILITY_ATR_PERCENT = 1.0


class TrendRegime(str, Enum):
    STRONG_TRENDING = "StrongTrending"
    WEAK_TRENDING = "WeakTrending"
    RANGING = "Ranging"


class VolatilityRegime(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class MarketPhase(str, Enum):
    BULL = "Bull"
    BEAR = "Bear"
    SIDEWAYS = "Sideways"


class MarketRegime(ResultModel):
    """
    The classification of market conditions at one candle.

    Args:
        trend (TrendRegime): Trend strength from ADX.
        volatility (VolatilityRegime): Volatility level from ATR%.
        phase (MarketPhase): Direction relative to the long-term average.
        adx (Optional[float]): The ADX value used, if it could be computed.
        atr_percent (Optional[float]): ATR as a percentage of the price.
        recommended_strategy (str): Name of the strategy suited to the regime.
    """
    model_config = ConfigDict(frozen=True)

    trend: TrendRegime
    volatility: VolatilityRegime
    phase: MarketPhase
    adx: Optional[float] = None
    atr_percent: Optional[float] = None
    recommended_strategy: str


_RECOMMENDATIONS: Dict[Tuple[TrendRegime, VolatilityRegime], str] = {
    (TrendRegime.STRONG_TRENDING, VolatilityRegime.HIGH): "MACD Trend",
    (TrendRegime.STRONG_TRENDING, VolatilityRegime.MEDIUM): "Triple EMA + RSI",
    (TrendRegime.STRONG_TRENDING, VolatilityRegime.LOW): "Triple EMA + RSI",
    (TrendRegime.WEAK_TRENDING, VolatilityRegime.HIGH): "Triple EMA + RSI",
    (TrendRegime.WEAK_TRENDING, VolatilityRegime.MEDIUM): "Support/Resistance Breakout",
    (TrendRegime.WEAK_TRENDING, VolatilityRegime.LOW): "Support/Resistance Breakout",
    (TrendRegime.RANGING, VolatilityRegime.HIGH): "Bollinger Bands Breakout",
    (TrendRegime.RANGING, VolatilityRegime.MEDIUM): "Support/Resistance Breakout",
    (TrendRegime.RANGING, VolatilityRegime.LOW): "Support/Resistance Breakout",
}


def recommend_strategy(trend: TrendRegime, volatility: VolatilityRegime) -> str:
    return _RECOMMENDATIONS[(trend, volatility)]


def classify_trend(adx_value: Optional[float]) -> TrendRegime:
    if adx_value is None:
        return TrendRegime.RANGING
    if adx_value >= STRONG_TREND_ADX:
        return TrendRegime.STRONG_TRENDING
    if adx_value >= WEAK_TREND_ADX:
        return TrendRegime.WEAK_TRENDING
    return TrendRegime.RANGING


def classify_volatility(atr_percent: Optional[float]) -> VolatilityRegime:
    if atr_percent is None:
        return VolatilityRegime.MEDIUM
    if atr_percent >= HIGH_VOLATILITY_ATR_PERCENT:
        return VolatilityRegime.HIGH
    if atr_percent >= MEDIUM_VOLATILITY_ATR_PERCENT:
        return VolatilityRegime.MEDIUM
    return VolatilityRegime.LOW


def _recent_change(close_prices: Sequence[float]) -> float:
    recent = close_prices[-RECENT_CHANGE_WINDOW:]
    return recent[-1] - recent[0] if len(recent) >= 2 else 0.0


def classify_phase(close_prices: Sequence[float]) -> MarketPhase:
    """
    Bull or Bear when the price and its recent direction agree relative to
    the 200-candle SMA. With less history than that, the recent direction
    alone decides.
    """
    change = _recent_change(close_prices)
    price = close_prices[-1]

    if len(close_prices) >= SMA_PERIOD:
        long_average = sma(close_prices, SMA_PERIOD)[-1]
        if long_average is None:
            return MarketPhase.SIDEWAYS
        if price > long_average and change > 0:
            return MarketPhase.BULL
        if price < long_average and change < 0:
            return MarketPhase.BEAR
        return MarketPhase.SIDEWAYS

    if change > 0:
        return MarketPhase.BULL
    if change < 0:
        return MarketPhase.BEAR
    return MarketPhase.SIDEWAYS


def detect_regime(candles: Sequence[Candle], index: int) -> Optional[MarketRegime]:
    """
    Classifies the market at `candles[index]`, using only candles up to and
    including that index.

    Args:
        candles (Sequence[Candle]): Chronologically ordered candles.
        index (int): Position of the candle to classify.

    Returns:
        Optional[MarketRegime]: The regime, or None for an out-of-range index
        or fewer than `2 * ADX_PERIOD + 1` candles of history.
    """
    if index < 0 or index >= len(candles):
        return None
    window = candles[:index + 1]
    if len(window) < ADX_PERIOD * 2 + 1:
        return None

    high_prices = highs(window)
    low_prices = lows(window)
    close_prices = closes(window)

    last_adx = adx(high_prices, low_prices, close_prices, ADX_PERIOD)[-1]
    adx_value = last_adx.adx if last_adx is not None else None

    last_atr = atr(high_prices, low_prices, close_prices, ATR_PERIOD)[-1]
    price = close_prices[-1]
    atr_percent = last_atr / price * 100.0 if last_atr is not None and price > 0 else None

    trend = classify_trend(adx_value)
    volatility = classify_volatility(atr_percent)
    return MarketRegime(
        trend=trend,
        volatility=volatility,
        phase=classify_phase(close_prices),
        adx=adx_value,
        atr_percent=atr_percent,
        recommended_strategy=recommend_strategy(trend, volatility),
    )
