"""
Technical indicators over ordered price sequences.

The calculations run on pandas Series. Every function returns a list the
same length as its input; positions where there is not yet enough history
hold `None` rather than a numeric placeholder, so "not computable yet" can
never be mistaken for a price.
"""
from typing import List, NamedTuple, Optional, Sequence

import numpy as np
import pandas as pd

OptionalSeries = List[Optional[float]]


class MACDResult(NamedTuple):
    macd: OptionalSeries
    signal: OptionalSeries
    histogram: OptionalSeries


class BandResult(NamedTuple):
    upper: OptionalSeries
    middle: OptionalSeries
    lower: OptionalSeries


class ADXValue(NamedTuple):
    adx: float
    plus_di: float
    minus_di: float


def _check_period(period: int) -> None:
    if period <= 0:
        raise ValueError("Period must be positive.")


def _check_lengths(*series: Sequence[float]) -> None:
    if len({len(s) for s in series}) > 1:
        raise ValueError("Input series must have the same length.")


def _series(values: Sequence[Optional[float]]) -> pd.Series:
    return pd.Series(list(values), dtype=float)


def _to_list(series: pd.Series) -> OptionalSeries:
    return [None if pd.isna(v) else float(v) for v in series]


def _seeded_ewm(series: pd.Series, period: int, alpha: float) -> pd.Series:
    """
    Exponentially weighted mean whose first value, at position `period - 1`,
    is the simple mean of the first `period` values.
    """
    result = pd.Series(np.nan, index=series.index)
    if len(series) < period:
        return result
    seeded = series.iloc[period - 1:].copy()
    seeded.iloc[0] = series.iloc[:period].mean()
    result.iloc[period - 1:] = seeded.ewm(alpha=alpha, adjust=False).mean().to_numpy()
    return result


def sma(values: Sequence[float], period: int = 20) -> OptionalSeries:
    """
    Calculates the Simple Moving Average (SMA).

    Args:
        values (Sequence[float]): The input values, oldest first.
        period (int): The trailing window length.

    Returns:
        OptionalSeries: The SMA, `None` for indices below `period - 1`.
    """
    _check_period(period)
    return _to_list(_series(values).rolling(window=period).mean())


def ema(values: Sequence[float], period: int = 20) -> OptionalSeries:
    """
    Calculates the Exponential Moving Average (EMA).

    The EMA is seeded with the SMA of the first `period` values and then
    follows `ema[i] = (value[i] - ema[i-1]) * k + ema[i-1]` with
    `k = 2 / (period + 1)`.
    """
    _check_period(period)
    return _to_list(_seeded_ewm(_series(values), period, 2.0 / (period + 1.0)))


def rsi(closes: Sequence[float], period: int = 14) -> OptionalSeries:
    """
    Calculates the Relative Strength Index (RSI) using Wilder's smoothing.

    The average gain and loss are seeded with the simple means of the first
    `period` price changes and smoothed with each following change; the first
    RSI value appears at index `period + 1`. When the average loss is exactly
    zero the RSI is 100, unless there was no movement at all, in which case
    it sits at the neutral 50.

    Returns:
        OptionalSeries: RSI values bounded to [0, 100].
    """
    _check_period(period)
    n = len(closes)
    if n <= period:
        return [None] * n

    changes = _series(closes).diff().iloc[1:]
    avg_gain = _seeded_ewm(changes.clip(lower=0.0), period, 1.0 / period)
    avg_loss = _seeded_ewm((-changes).clip(lower=0.0), period, 1.0 / period)

    values = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss.where(avg_loss != 0))
    flat = pd.Series(np.where(avg_gain == 0, 50.0, 100.0), index=values.index)
    values = values.mask(avg_loss == 0, flat)
    # The seed itself is not reported.
    values.iloc[:period] = np.nan
    return [None] + _to_list(values)


def macd(
    closes: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> MACDResult:
    """
    Calculates the MACD line, its signal line and the histogram.

    The signal line is an EMA of the MACD line starting from the MACD line's
    first defined index.
    """
    _check_period(fast_period)
    _check_period(slow_period)
    _check_period(signal_period)
    close = _series(closes)
    macd_line = (_seeded_ewm(close, fast_period, 2.0 / (fast_period + 1.0))
                 - _seeded_ewm(close, slow_period, 2.0 / (slow_period + 1.0)))

    signal_line = pd.Series(np.nan, index=close.index)
    first_valid = macd_line.first_valid_index()
    if first_valid is not None:
        defined = macd_line.loc[first_valid:]
        signal_line.loc[first_valid:] = _seeded_ewm(defined, signal_period, 2.0 / (signal_period + 1.0))

    return MACDResult(_to_list(macd_line), _to_list(signal_line), _to_list(macd_line - signal_line))


def _true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    previous_close = close.shift(1)
    candidates = pd.concat([high - low, (high - previous_close).abs(), (low - previous_close).abs()], axis=1)
    return candidates.max(axis=1)


def true_range(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float]) -> List[float]:
    """True range per bar; the first bar uses high - low only."""
    _check_lengths(highs, lows, closes)
    return [float(v) for v in _true_range(_series(highs), _series(lows), _series(closes))]


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> OptionalSeries:
    """
    Calculates the Average True Range (ATR) as an EMA of the true range.
    """
    _check_period(period)
    return ema(true_range(highs, lows, closes), period)


def adx(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> List[Optional[ADXValue]]:
    """
    Calculates the Average Directional Index together with +DI and -DI.

    Directional movement only counts the larger positive delta of the two
    (ties cancel both). True range and DM are Wilder-smoothed, DX is derived
    from the DIs, and ADX is the mean of the first `period` DX values,
    Wilder-smoothed afterwards. At least `2 * period` bars are required; the
    first value appears at index `2 * period`.
    """
    _check_period(period)
    _check_lengths(highs, lows, closes)
    count = len(highs)
    if count < period * 2:
        return [None] * count

    high, low, close = _series(highs), _series(lows), _series(closes)
    up = high.diff()
    down = -low.diff()
    plus_dm = up.where((up > down) & (up > 0), 0.0)
    minus_dm = down.where((down > up) & (down > 0), 0.0)
    tr = _true_range(high, low, close)

    # Wilder's running sums are the seeded means scaled by `period`, which
    # cancels out of the DI ratios. Bar 0 has no previous bar.
    alpha = 1.0 / period
    smooth_tr = _seeded_ewm(tr.iloc[1:], period, alpha)
    smooth_plus = _seeded_ewm(plus_dm.iloc[1:], period, alpha)
    smooth_minus = _seeded_ewm(minus_dm.iloc[1:], period, alpha)

    valid_tr = smooth_tr.where(smooth_tr > 0)
    plus_di = (smooth_plus / valid_tr * 100.0).fillna(0.0)
    minus_di = (smooth_minus / valid_tr * 100.0).fillna(0.0)
    di_sum = plus_di + minus_di
    dx = ((plus_di - minus_di).abs() / di_sum.where(di_sum > 0) * 100.0).fillna(0.0)

    # DX starts one bar after the smoothing seed.
    dx = dx.iloc[period:]
    adx_line = _seeded_ewm(dx, period, alpha).reindex(high.index)
    plus_di = plus_di.reindex(high.index)
    minus_di = minus_di.reindex(high.index)

    return [
        None if pd.isna(a) else ADXValue(float(a), float(p), float(m))
        for a, p, m in zip(adx_line, plus_di, minus_di)
    ]


def bollinger_bands(
    closes: Sequence[float],
    period: int = 20,
    std_dev_multiplier: float = 2.0,
) -> BandResult:
    """
    Calculates Bollinger Bands: the SMA plus and minus a multiple of the
    population standard deviation of the trailing window.
    """
    _check_period(period)
    window = _series(closes).rolling(window=period)
    middle = window.mean()
    half_width = std_dev_multiplier * window.std(ddof=0)
    return BandResult(_to_list(middle + half_width), _to_list(middle), _to_list(middle - half_width))


def donchian_channel(highs: Sequence[float], lows: Sequence[float], period: int = 20) -> BandResult:
    """
    Calculates the Donchian Channel: highest high and lowest low over the
    trailing window, and their midpoint.
    """
    _check_period(period)
    _check_lengths(highs, lows)
    upper = _series(highs).rolling(window=period).max()
    lower = _series(lows).rolling(window=period).min()
    return BandResult(_to_list(upper), _to_list((upper + lower) / 2.0), _to_list(lower))


def current_profit_percentage(trade_entry: float, current_price: float) -> Optional[float]:
    """
    Calculates the current profit percentage of a position.

    Returns:
        Optional[float]: The profit in percent, or None if the entry is zero.
    """
    if trade_entry == 0:
        return None
    return (current_price - trade_entry) / trade_entry * 100.0
