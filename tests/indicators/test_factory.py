"""
Tests for the indicator functions.
"""
import random

import pytest

from quantsim.indicators import factory


@pytest.fixture
def sample_close_prices():
    """
    Provides a sample list of close prices for testing.
    """
    return [
        100.0, 101.0, 102.5, 101.75, 103.0, 104.25, 103.5, 105.0,
        106.5, 105.75, 107.0, 108.5, 107.75, 109.0, 110.0, 111.5,
        112.5, 111.75, 113.25, 114.0, 115.5, 116.0, 115.25, 117.0,
        118.5, 117.75, 119.0, 120.5, 119.75, 121.0, 122.5, 121.75,
        123.0, 124.5, 123.75, 125.0, 126.5, 125.75, 127.0, 128.5
    ]


def test_sma_known_values():
    assert factory.sma([1, 2, 3, 4, 5], 3) == [None, None, 2.0, 3.0, 4.0]


def test_sma_last_value(sample_close_prices):
    result = factory.sma(sample_close_prices, 5)
    assert len(result) == len(sample_close_prices)
    assert sum(v is not None for v in result) == len(sample_close_prices) - 5 + 1
    assert result[-1] == pytest.approx(126.55)


def test_ema_seeded_with_sma():
    """
    EMA(3) seeds at index 2 with the SMA 2.0, then follows the recurrence
    with k = 0.5.
    """
    result = factory.ema([1, 2, 3, 4, 5], 3)
    assert result[:2] == [None, None]
    assert result[2] == pytest.approx(2.0)
    assert result[3] == pytest.approx((4 - 2.0) * 0.5 + 2.0)
    assert result[4] == pytest.approx((5 - 3.0) * 0.5 + 3.0)


def test_rsi_first_value_index():
    prices = [10, 11, 12, 13, 12, 11, 10, 9, 10, 11, 12]
    result = factory.rsi(prices, 3)
    assert result[:4] == [None] * 4
    assert all(v is not None for v in result[4:])


def test_rsi_known_value():
    """
    Seed over the first three changes (+1, +1, +1): gain 1, loss 0. The
    change at index 4 (-1) is then smoothed in: gain 2/3, loss 1/3.
    """
    result = factory.rsi([10, 11, 12, 13, 12], 3)
    assert result[4] == pytest.approx(100 - 100 / (1 + 2.0))


def test_rsi_bounded_for_random_walk():
    rng = random.Random(42)
    prices = [100.0]
    for _ in range(500):
        prices.append(max(1.0, prices[-1] + rng.uniform(-3, 3)))

    result = factory.rsi(prices, 14)
    defined = [v for v in result if v is not None]
    assert defined
    assert all(0.0 <= v <= 100.0 for v in defined)


def test_rsi_only_gains_is_100():
    result = factory.rsi([float(i) for i in range(1, 30)], 14)
    assert result[-1] == 100.0


def test_rsi_flat_is_neutral():
    result = factory.rsi([100.0] * 30, 14)
    assert result[-1] == 50.0


def test_rsi_too_short_is_all_none():
    assert factory.rsi([1.0, 2.0, 3.0], 14) == [None, None, None]


def test_macd_flat_series_is_zero():
    result = factory.macd([100.0] * 60)
    assert result.macd[25] == pytest.approx(0.0)
    assert result.macd[24] is None
    # Signal starts 9 values after the first MACD value.
    assert result.signal[25 + 7] is None
    assert result.signal[25 + 8] == pytest.approx(0.0)
    assert result.histogram[-1] == pytest.approx(0.0)


def test_macd_uptrend_positive(sample_close_prices):
    result = factory.macd(sample_close_prices, 5, 10, 3)
    assert result.macd[-1] > 0


def test_true_range_first_bar_uses_high_low():
    ranges = factory.true_range([10, 12], [8, 11], [9, 11.5])
    assert ranges[0] == 2
    # max(1, |12 - 9|, |11 - 9|)
    assert ranges[1] == 3


def test_atr_constant_range():
    highs = [11.0] * 20
    lows = [9.0] * 20
    closes = [10.0] * 20
    result = factory.atr(highs, lows, closes, 5)
    assert result[3] is None
    assert result[4] == pytest.approx(2.0)
    assert result[-1] == pytest.approx(2.0)


def test_adx_requires_two_periods():
    highs = [float(i + 1) for i in range(27)]
    lows = [float(i) for i in range(27)]
    closes = [float(i) + 0.5 for i in range(27)]
    assert factory.adx(highs, lows, closes, 14) == [None] * 27


def test_adx_first_value_at_two_periods():
    n = 40
    highs = [float(i + 1) for i in range(n)]
    lows = [float(i) for i in range(n)]
    closes = [float(i) + 0.5 for i in range(n)]
    result = factory.adx(highs, lows, closes, 14)
    assert result[27] is None
    assert result[28] is not None


def test_adx_strong_uptrend():
    n = 60
    highs = [float(2 * i + 1) for i in range(n)]
    lows = [float(2 * i) for i in range(n)]
    closes = [float(2 * i) + 0.5 for i in range(n)]
    value = factory.adx(highs, lows, closes, 14)[-1]
    assert value.plus_di > value.minus_di
    assert value.minus_di == 0.0
    assert value.adx == pytest.approx(100.0)


def test_adx_flat_is_zero():
    flat = [100.0] * 40
    value = factory.adx(flat, flat, flat, 14)[-1]
    assert value.adx == 0.0


def test_bollinger_bands():
    closes = [1.0, 2.0, 3.0, 4.0, 5.0]
    bands = factory.bollinger_bands(closes, 5, 2.0)
    # Population std of 1..5 is sqrt(2).
    assert bands.middle[-1] == pytest.approx(3.0)
    assert bands.upper[-1] == pytest.approx(3.0 + 2 * 2 ** 0.5)
    assert bands.lower[-1] == pytest.approx(3.0 - 2 * 2 ** 0.5)
    assert bands.upper[3] is None


def test_bollinger_flat_collapses():
    bands = factory.bollinger_bands([50.0] * 25, 20)
    assert bands.upper[-1] == bands.middle[-1] == bands.lower[-1] == 50.0


def test_donchian_channel():
    highs = [5, 7, 6, 9, 8]
    lows = [1, 2, 0, 3, 4]
    channel = factory.donchian_channel(highs, lows, 3)
    assert channel.upper == [None, None, 7, 9, 9]
    assert channel.lower == [None, None, 0, 0, 0]
    assert channel.middle[-1] == pytest.approx(4.5)


@pytest.mark.parametrize("func", [factory.sma, factory.ema, factory.rsi])
def test_non_positive_period_raises(func):
    with pytest.raises(ValueError, match="Period must be positive"):
        func([1.0, 2.0, 3.0], 0)


def test_mismatched_lengths_raise():
    with pytest.raises(ValueError, match="same length"):
        factory.atr([1.0, 2.0], [0.5], [1.0, 2.0], 1)


def test_current_profit_percentage():
    assert factory.current_profit_percentage(100.0, 110.0) == pytest.approx(10.0)
    assert factory.current_profit_percentage(0.0, 110.0) is None


def _random_walk(n: int, seed: int = 7) -> list:
    rng = random.Random(seed)
    prices = [100.0]
    for _ in range(n - 1):
        prices.append(max(1.0, prices[-1] + rng.uniform(-2, 2)))
    return prices


def test_ema_matches_recurrence_on_long_series():
    prices = _random_walk(1000)
    period = 21
    k = 2.0 / (period + 1)
    expected = [None] * (period - 1) + [sum(prices[:period]) / period]
    for price in prices[period:]:
        expected.append((price - expected[-1]) * k + expected[-1])

    result = factory.ema(prices, period)

    assert result[:period - 1] == [None] * (period - 1)
    assert result[period - 1:] == pytest.approx(expected[period - 1:])


def test_rolling_indicators_on_long_series():
    prices = _random_walk(1000)
    period = 30
    window = prices[-period:]

    assert factory.sma(prices, period)[-1] == pytest.approx(sum(window) / period)
    channel = factory.donchian_channel(prices, prices, period)
    assert channel.upper[-1] == max(window)
    assert channel.lower[-1] == min(window)
    assert channel.upper[period - 2] is None
