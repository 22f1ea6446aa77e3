"""
Rolls finer-grained candles up into daily and weekly candles.
"""
from typing import List

import pandas as pd

from quantsim.data.candle import Candle
from quantsim.data.provider import candles_from_frame, candles_to_frame

_AGGREGATION = {
    "open": "first",
    "high": "max",
    "low": "min",
    "close": "last",
    "volume": "sum",
    "symbol": "first",
    "exchange": "first",
    "opened_at": "first",
}


def _resample(candles: List[Candle], rule: str, **kwargs) -> pd.DataFrame:
    frame = candles_to_frame(candles).sort_index()
    frame["opened_at"] = frame.index
    # Periods without any candle come back empty and are dropped.
    return frame.resample(rule, **kwargs).agg(_AGGREGATION).dropna(subset=["open"])


def to_daily(candles: List[Candle]) -> List[Candle]:
    """
    Aggregates candles into one candle per calendar date, stamped at midnight.
    """
    if not candles:
        return []
    return candles_from_frame(_resample(candles, "1D"))


def to_weekly(candles: List[Candle]) -> List[Candle]:
    """
    Aggregates candles into one candle per ISO week (Monday to Sunday),
    stamped with the timestamp of the week's first candle.
    """
    if not candles:
        return []
    weekly = _resample(candles, "W-MON", closed="left", label="left")
    return candles_from_frame(weekly.set_index("opened_at"))
