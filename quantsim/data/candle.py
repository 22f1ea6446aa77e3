"""
Core market-data structures: the OHLCV candle and the supported timeframes.
"""
from datetime import datetime
from enum import Enum
from typing import List, Sequence

from pydantic import BaseModel, ConfigDict


class Candle(BaseModel):
    """
    A single OHLCV candle.

    Args:
        timestamp (datetime): The open time of the candle.
        open (float): Opening price.
        high (float): Highest price during the period.
        low (float): Lowest price during the period.
        close (float): Closing price.
        volume (float): Traded volume during the period.
        symbol (str): Trading symbol (e.g. 'BTCUSDT').
        exchange (str): Exchange tag the candle came from.
    """
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    symbol: str = ""
    exchange: str = ""


class Timeframe(str, Enum):
    """The fixed set of candle timeframes a data provider can serve."""
    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1h"
    H4 = "4h"
    D1 = "1d"

    @property
    def minutes(self) -> int:
        return _TIMEFRAME_MINUTES[self]


_TIMEFRAME_MINUTES = {
    Timeframe.M1: 1,
    Timeframe.M5: 5,
    Timeframe.M15: 15,
    Timeframe.M30: 30,
    Timeframe.H1: 60,
    Timeframe.H4: 240,
    Timeframe.D1: 1440,
}


def parse_timeframe(value) -> Timeframe:
    """
    Converts a string such as '1h' into a Timeframe.

    Raises:
        ValueError: If the timeframe is not one of the supported values.
    """
    if isinstance(value, Timeframe):
        return value
    try:
        return Timeframe(value)
    except ValueError:
        valid = ", ".join(t.value for t in Timeframe)
        raise ValueError(f"Invalid timeframe '{value}'. Valid: {valid}") from None


def validate_candles(candles: Sequence[Candle]) -> None:
    """
    Checks that a candle sequence can be simulated.

    Raises:
        ValueError: If the sequence is empty or timestamps go backwards.
    """
    if not candles:
        raise ValueError("Historical data cannot be empty.")
    for prev, current in zip(candles, candles[1:]):
        if current.timestamp < prev.timestamp:
            raise ValueError(
                f"Candles must be in chronological order: {current.timestamp} follows {prev.timestamp}."
            )


def closes(candles: Sequence[Candle]) -> List[float]:
    return [c.close for c in candles]


def highs(candles: Sequence[Candle]) -> List[float]:
    return [c.high for c in candles]


def lows(candles: Sequence[Candle]) -> List[float]:
    return [c.low for c in candles]
