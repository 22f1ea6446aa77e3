"""
Tests for rolling candles up into daily and weekly candles.
"""
from datetime import datetime, timedelta

from quantsim.data.aggregator import to_daily, to_weekly


def test_to_daily_reduces_ohlcv(candle_factory):
    # 48 hourly candles starting at 00:00 on 2024-01-01 -> two days.
    closes = [100.0 + i for i in range(48)]
    candles = candle_factory(closes, step=timedelta(hours=1), spread=0.5, volumes=[1.0] * 48)

    daily = to_daily(candles)

    assert len(daily) == 2
    first = daily[0]
    assert first.timestamp == datetime(2024, 1, 1)
    assert first.open == candles[0].open
    assert first.close == candles[23].close
    assert first.high == max(c.high for c in candles[:24])
    assert first.low == min(c.low for c in candles[:24])
    assert first.volume == 24.0
    assert first.symbol == "BTCUSDT"
    assert daily[1].timestamp == datetime(2024, 1, 2)


def test_to_daily_stamps_midnight(candle_factory):
    candles = candle_factory([1.0, 2.0, 3.0], start=datetime(2024, 3, 5, 9, 30), step=timedelta(hours=2))
    daily = to_daily(candles)
    assert len(daily) == 1
    assert daily[0].timestamp == datetime(2024, 3, 5)


def test_to_weekly_groups_by_iso_week(candle_factory):
    # 2024-01-01 is a Monday; 14 days span exactly two ISO weeks.
    candles = candle_factory([float(i) for i in range(1, 15)])

    weekly = to_weekly(candles)

    assert len(weekly) == 2
    assert weekly[0].timestamp == datetime(2024, 1, 1)
    assert weekly[1].timestamp == datetime(2024, 1, 8)
    assert weekly[0].close == 7.0
    assert weekly[1].open == candles[7].open
    assert weekly[1].volume == 7 * 1000.0


def test_to_weekly_across_year_boundary(candle_factory):
    # 2024-12-30 (Mon) to 2025-01-05 (Sun) is ISO week 1 of 2025.
    candles = candle_factory([1.0] * 7, start=datetime(2024, 12, 30))
    assert len(to_weekly(candles)) == 1


def test_output_sorted_from_unsorted_input(candle_factory):
    candles = candle_factory([1.0, 2.0, 3.0])
    daily = to_daily(list(reversed(candles)))
    assert [c.timestamp for c in daily] == [c.timestamp for c in candles]
    assert [c.close for c in daily] == [1.0, 2.0, 3.0]


def test_to_daily_skips_days_without_candles(candle_factory):
    candles = candle_factory([1.0, 2.0, 3.0], step=timedelta(days=2))
    daily = to_daily(candles)
    assert [c.timestamp for c in daily] == [datetime(2024, 1, 1), datetime(2024, 1, 3), datetime(2024, 1, 5)]


def test_to_weekly_keeps_sunday_evening_in_its_week(candle_factory):
    # Monday 00:00 to Sunday 23:00 of the same ISO week.
    candles = candle_factory([1.0] * 168, step=timedelta(hours=1))
    weekly = to_weekly(candles)
    assert len(weekly) == 1
    assert weekly[0].volume == 168 * 1000.0


def test_empty_input():
    assert to_daily([]) == []
    assert to_weekly([]) == []
