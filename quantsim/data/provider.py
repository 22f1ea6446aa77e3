"""
Data provider interfaces and implementations.

This module defines the abstract interfaces for sources of historical candles
and provides concrete implementations for loading OHLCV time-series data from
CSV and Parquet files. Fetching from live exchanges is left to other
implementations of `HistoricalDataProvider`.
"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import List, Tuple

import pandas as pd
from loguru import logger

from quantsim.data.candle import Candle, Timeframe, parse_timeframe


class DataProvider(ABC):
    """
    Base class for providers that read OHLCV bars from a local file.

    Subclasses only parse the file; column normalisation and index checks are
    shared in `_validate`.
    """
    REQUIRED_COLUMNS: List[str] = ["open", "high", "low", "close", "volume"]

    def __init__(self, path: str, symbol: str = "", exchange: str = ""):
        """
        Args:
            path (str): File to read.
            symbol (str): Symbol to stamp on candles when the file has no
                'symbol' column.
            exchange (str): Exchange tag to stamp on candles when the file has
                no 'exchange' column.
        """
        self._path = path
        self._symbol = symbol
        self._exchange = exchange

    @abstractmethod
    def load(self) -> pd.DataFrame:
        """
        Reads the file.

        Returns:
            pd.DataFrame: OHLCV frame indexed by timestamp, oldest bar first.
        """
        raise NotImplementedError

    def load_candles(self) -> List[Candle]:
        """
        Loads the data and converts it into a chronologically sorted list of
        Candle objects.
        """
        return candles_from_frame(self.load(), symbol=self._symbol, exchange=self._exchange)

    def _validate(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Lower-cases the column names, checks that every OHLCV column is present
        and that the index holds timestamps, then sorts by time.

        Raises:
            ValueError: On a missing column or a non-datetime index.
        """
        df.columns = [col.lower() for col in df.columns]

        if not all(col in df.columns for col in self.REQUIRED_COLUMNS):
            missing = set(self.REQUIRED_COLUMNS) - set(df.columns)
            raise ValueError(f"DataFrame is missing required columns: {missing}")

        if not isinstance(df.index, pd.DatetimeIndex):
            raise ValueError("DataFrame must have a DatetimeIndex.")

        return df.sort_index()


class ParquetProvider(DataProvider):
    """
    Reads bars from a Parquet file (needs the `parquet` extra).
    """

    def load(self) -> pd.DataFrame:
        df = pd.read_parquet(self._path)
        return self._validate(df)


class CSVProvider(DataProvider):
    """
    Reads bars from a CSV file whose first column holds the timestamps.
    """

    def load(self) -> pd.DataFrame:
        df = pd.read_csv(self._path, index_col=0, parse_dates=True)
        return self._validate(df)


def candles_from_frame(df: pd.DataFrame, symbol: str = "", exchange: str = "") -> List[Candle]:
    """
    Converts a validated OHLCV DataFrame into a list of Candle objects.

    Optional 'symbol' and 'exchange' columns take precedence over the
    defaults passed in.
    """
    has_symbol = "symbol" in df.columns
    has_exchange = "exchange" in df.columns
    candles = []
    for timestamp, row in zip(df.index, df.itertuples(index=False)):
        candles.append(Candle(
            timestamp=pd.Timestamp(timestamp).to_pydatetime(),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
            symbol=str(row.symbol) if has_symbol else symbol,
            exchange=str(row.exchange) if has_exchange else exchange,
        ))
    return candles


def candles_to_frame(candles: List[Candle]) -> pd.DataFrame:
    """Converts candles back into an OHLCV DataFrame indexed by timestamp."""
    df = pd.DataFrame([c.model_dump() for c in candles])
    if df.empty:
        return df
    return df.set_index("timestamp")


def check_gaps(candles: List[Candle], timeframe) -> List[Tuple[datetime, datetime]]:
    """
    Detects gaps between consecutive candles larger than the timeframe
    interval plus a 10% tolerance.

    Each gap is logged as a warning; the list of (before, after) timestamps
    is returned so callers can act on it.
    """
    interval = timedelta(minutes=parse_timeframe(timeframe).minutes)
    tolerance = interval * 0.1
    gaps = []
    for prev, current in zip(candles, candles[1:]):
        gap = current.timestamp - prev.timestamp
        if gap > interval + tolerance:
            logger.warning(
                "Data gap detected between {} and {} ({:.0f} min, expected {:.0f} min)",
                prev.timestamp, current.timestamp,
                gap.total_seconds() / 60, interval.total_seconds() / 60,
            )
            gaps.append((prev.timestamp, current.timestamp))
    return gaps


class HistoricalDataProvider(ABC):
    """
    Produces an ordered, gap-checked candle sequence for an exchange, symbol,
    date range and timeframe.
    """

    def get_candles(
        self,
        exchange: str,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe,
    ) -> List[Candle]:
        """
        Validates the request, fetches the candles and runs the gap check.

        Raises:
            ValueError: On an empty exchange or symbol, an inverted date range
                or an unsupported timeframe.
        """
        tf = self._validate_request(exchange, symbol, start, end, timeframe)
        candles = sorted(self._fetch(exchange, symbol, start, end, tf), key=lambda c: c.timestamp)
        check_gaps(candles, tf)
        logger.info("Loaded {} {} candles for {} on {}", len(candles), tf.value, symbol, exchange)
        return candles

    @abstractmethod
    def _fetch(
        self,
        exchange: str,
        symbol: str,
        start: datetime,
        end: datetime,
        timeframe: Timeframe,
    ) -> List[Candle]:
        raise NotImplementedError

    @staticmethod
    def _validate_request(exchange: str, symbol: str, start: datetime, end: datetime, timeframe) -> Timeframe:
        if not exchange or not exchange.strip():
            raise ValueError("Exchange cannot be empty.")
        if not symbol or not symbol.strip():
            raise ValueError("Symbol cannot be empty.")
        if start >= end:
            raise ValueError("Start date must be before end date.")
        return parse_timeframe(timeframe)


class FileHistoricalDataProvider(HistoricalDataProvider):
    """
    A HistoricalDataProvider that serves candles from a local CSV or Parquet
    file, restricted to the requested date range.
    """

    def __init__(self, path: str):
        self._path = path

    def _fetch(self, exchange, symbol, start, end, timeframe) -> List[Candle]:
        if self._path.endswith(".parquet"):
            provider: DataProvider = ParquetProvider(self._path, symbol=symbol, exchange=exchange)
        else:
            provider = CSVProvider(self._path, symbol=symbol, exchange=exchange)
        df = provider.load()
        df = df.loc[(df.index >= pd.Timestamp(start)) & (df.index <= pd.Timestamp(end))]
        return candles_from_frame(df, symbol=symbol, exchange=exchange)
