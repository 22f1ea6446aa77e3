"""
Input/Output operations for the quantsim framework.

This module loads run configurations from YAML and candle data from the
files a configuration points at.
"""
from typing import List

import yaml

from quantsim.config import Config, DataConfig
from quantsim.data.candle import Candle
from quantsim.data.provider import CSVProvider, DataProvider, ParquetProvider, check_gaps


def load_config(path: str) -> Config:
    """
    Loads a YAML configuration file and parses it into a strongly-typed
    Config object.

    Args:
        path (str): The path to the YAML configuration file.

    Returns:
        Config: A Pydantic Config object with the validated configuration.
    """
    with open(path, 'r') as f:
        raw_config = yaml.safe_load(f)
    return Config(**(raw_config or {}))


def provider_for(data_config: DataConfig) -> DataProvider:
    """Picks the file provider matching the data file's extension."""
    if data_config.path.endswith(".parquet"):
        return ParquetProvider(data_config.path, symbol=data_config.symbol, exchange=data_config.exchange)
    return CSVProvider(data_config.path, symbol=data_config.symbol, exchange=data_config.exchange)


def load_candles(data_config: DataConfig) -> List[Candle]:
    """
    Loads the configured data file as candles and logs any gaps found for the
    configured timeframe.
    """
    candles = provider_for(data_config).load_candles()
    check_gaps(candles, data_config.timeframe)
    return candles
