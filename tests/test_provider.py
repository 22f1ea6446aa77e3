"""
Tests for the data provider implementations.
"""
from datetime import datetime, timedelta

import pandas as pd
import pytest

from quantsim.data.candle import Candle, Timeframe, parse_timeframe, validate_candles
from quantsim.data.provider import (
    CSVProvider, FileHistoricalDataProvider, candles_from_frame, candles_to_frame, check_gaps,
)


@pytest.fixture
def sample_csv(tmp_path) -> str:
    """
    Writes a small OHLCV CSV with capitalized headers and rows out of order.
    """
    index = pd.date_range("2024-01-01", periods=10, freq="D")
    df = pd.DataFrame({
        "Open": [100.0 + i for i in range(10)],
        "High": [101.0 + i for i in range(10)],
        "Low": [99.0 + i for i in range(10)],
        "Close": [100.5 + i for i in range(10)],
        "Volume": [1000.0] * 10,
    }, index=index)
    path = tmp_path / "sample_data.csv"
    df.iloc[::-1].to_csv(path, index_label="timestamp")
    return str(path)


def test_valid_csv_loading(sample_csv):
    df = CSVProvider(path=sample_csv).load()

    assert isinstance(df, pd.DataFrame)
    assert isinstance(df.index, pd.DatetimeIndex)
    assert 'close' in df.columns
    assert df.index.is_monotonic_increasing


def test_load_candles(sample_csv):
    candles = CSVProvider(path=sample_csv, symbol="BTCUSDT", exchange="binance").load_candles()

    assert len(candles) == 10
    assert candles[0].timestamp == datetime(2024, 1, 1)
    assert candles[0].close == 100.5
    assert candles[-1].symbol == "BTCUSDT"
    assert candles[-1].exchange == "binance"


def test_missing_columns_raises_error(tmp_path):
    path = tmp_path / "bad_columns.csv"
    pd.DataFrame(
        {"open": [1.0], "close": [1.0], "volume": [1.0]},
        index=pd.DatetimeIndex(["2024-01-01"]),
    ).to_csv(path)

    with pytest.raises(ValueError, match="missing required columns"):
        CSVProvider(path=str(path)).load()


def test_csv_invalid_index_raises_error(tmp_path):
    path = tmp_path / "bad_index.csv"
    pd.DataFrame({
        "id": ["a", "b"], "open": [1.0, 2.0], "high": [1.0, 2.0],
        "low": [1.0, 2.0], "close": [1.0, 2.0], "volume": [1.0, 2.0],
    }).to_csv(path, index=False)

    with pytest.raises(ValueError, match="must have a DatetimeIndex"):
        CSVProvider(path=str(path)).load()


def test_frame_round_trip(candle_factory):
    candles = candle_factory([1.0, 2.0, 3.0])
    df = candles_to_frame(candles)
    assert list(df.index) == [c.timestamp for c in candles]
    assert candles_from_frame(df) == candles


def test_parse_timeframe():
    assert parse_timeframe("4h") is Timeframe.H4
    assert Timeframe.H4.minutes == 240
    with pytest.raises(ValueError, match="Invalid timeframe '2h'"):
        parse_timeframe("2h")


def test_validate_candles():
    with pytest.raises(ValueError, match="cannot be empty"):
        validate_candles([])

    later = Candle(timestamp=datetime(2024, 1, 2), open=1, high=1, low=1, close=1)
    earlier = Candle(timestamp=datetime(2024, 1, 1), open=1, high=1, low=1, close=1)
    with pytest.raises(ValueError, match="chronological order"):
        validate_candles([later, earlier])


def test_check_gaps(candle_factory):
    candles = candle_factory([1.0] * 5, step=timedelta(hours=1))
    assert check_gaps(candles, "1h") == []

    gapped = candles[:2] + candles[4:]
    gaps = check_gaps(gapped, "1h")
    assert gaps == [(candles[1].timestamp, candles[4].timestamp)]


def test_check_gaps_tolerance(candle_factory):
    candles = candle_factory([1.0] * 2, step=timedelta(minutes=65))
    assert check_gaps(candles, "1h") == []


def test_historical_provider_slices_range(sample_csv):
    provider = FileHistoricalDataProvider(sample_csv)
    candles = provider.get_candles("binance", "BTCUSDT", datetime(2024, 1, 3), datetime(2024, 1, 5), "1d")

    assert [c.timestamp.day for c in candles] == [3, 4, 5]
    assert all(c.symbol == "BTCUSDT" for c in candles)


@pytest.mark.parametrize("exchange, symbol, start, end, timeframe, message", [
    ("", "BTCUSDT", datetime(2024, 1, 1), datetime(2024, 2, 1), "1d", "Exchange cannot be empty"),
    ("binance", " ", datetime(2024, 1, 1), datetime(2024, 2, 1), "1d", "Symbol cannot be empty"),
    ("binance", "BTCUSDT", datetime(2024, 2, 1), datetime(2024, 1, 1), "1d", "Start date must be before"),
    ("binance", "BTCUSDT", datetime(2024, 1, 1), datetime(2024, 2, 1), "3d", "Invalid timeframe"),
])
def test_historical_provider_validation(sample_csv, exchange, symbol, start, end, timeframe, message):
    provider = FileHistoricalDataProvider(sample_csv)
    with pytest.raises(ValueError, match=message):
        provider.get_candles(exchange, symbol, start, end, timeframe)
