"""
Configuration models for the quantsim framework.

This module defines the Pydantic models for validating and managing the
framework's configuration, which is typically loaded from a YAML file.
"""
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quantsim.data.candle import Timeframe
from quantsim.parameters import ParameterGrid, ParamValue


class DataConfig(BaseModel):
    """
    Configuration for data loading.

    Args:
        path (str): The file path to the dataset (e.g., './data/btc_1d.csv').
        symbol (str): The symbol the candles belong to (e.g., 'BTCUSDT').
        exchange (str): The exchange tag stamped on every candle.
        timeframe (Timeframe): The candle timeframe, used for gap checks.
    """
    path: str = Field(..., description="Path to the dataset file.")
    symbol: str = Field(..., description="The symbol traded in the backtest.")
    exchange: str = Field("", description="Exchange tag of the data.")
    timeframe: Timeframe = Field(Timeframe.D1, description="Candle timeframe.")


class PositionSizingMode(str, Enum):
    PERCENTAGE_OF_PORTFOLIO = "percentage_of_portfolio"
    FIXED_AMOUNT = "fixed_amount"


class BacktestConfig(BaseModel):
    """
    Simulation settings for a single backtest run. Immutable once built.

    Args:
        initial_balance (float): Starting cash; must be positive.
        taker_fee_rate (float): Fee rate charged on market orders.
        maker_fee_rate (float): Fee rate charged on resting limit orders.
        slippage_rate (float): Adverse price move applied to market fills.
        position_sizing_mode (PositionSizingMode): How `position_size` is read.
        position_size (float): Fraction of portfolio value in percentage mode,
            or a quote-currency amount in fixed mode.
        max_position_size_percent (float): Cap on a single position as a
            fraction of portfolio value; 0 disables the cap.
        max_loss_per_trade_percent (float): Loss fraction from entry that
            triggers the hard stop; 0 disables it.
        max_daily_loss_percent (float): Loss fraction within a calendar day
            after which new entries are refused until the next day; 0
            disables it.
    """
    model_config = ConfigDict(frozen=True)

    initial_balance: float = Field(10000.0, gt=0, description="Starting cash balance.")
    taker_fee_rate: float = Field(0.001, ge=0)
    maker_fee_rate: float = Field(0.0008, ge=0)
    slippage_rate: float = Field(0.0001, ge=0)
    position_sizing_mode: PositionSizingMode = PositionSizingMode.PERCENTAGE_OF_PORTFOLIO
    position_size: float = Field(0.95, gt=0)
    max_position_size_percent: float = Field(0.05, ge=0)
    max_loss_per_trade_percent: float = Field(0.05, ge=0)
    max_daily_loss_percent: float = Field(0.10, ge=0)


class OptimizationConfig(BaseModel):
    """
    Configuration for a grid search.

    Args:
        metric (str): Name of the ranking objective (see `quantsim.metrics`).
        parameter_grid (ParameterGrid): Range to search for each parameter.
        max_workers (int): Number of combinations evaluated concurrently.
    """
    metric: str = Field("sharpe_ratio", description="Objective used to rank combinations.")
    parameter_grid: ParameterGrid = Field(default_factory=dict)
    max_workers: int = Field(1, gt=0)

    @field_validator("parameter_grid")
    @classmethod
    def _grid_not_empty(cls, value: ParameterGrid) -> ParameterGrid:
        if not value:
            raise ValueError("Parameter grid must define at least one parameter.")
        return value


class WalkForwardConfig(BaseModel):
    """
    Configuration for walk-forward optimization.

    Args:
        in_sample_months (int): Length of each optimization window.
        out_of_sample_months (int): Length of each validation window, and the
            step between consecutive windows.
        window_steps (int): Number of windows to attempt.
        min_in_sample_candles (int): Windows with fewer in-sample candles are
            skipped.
        min_out_of_sample_candles (int): Windows with fewer out-of-sample
            candles are skipped.
    """
    in_sample_months: int = Field(6, gt=0)
    out_of_sample_months: int = Field(2, gt=0)
    window_steps: int = Field(3, gt=0)
    min_in_sample_candles: int = Field(50, gt=0)
    min_out_of_sample_candles: int = Field(10, gt=0)


class Config(BaseModel):
    """
    Top-level configuration object for a quantsim run.

    Args:
        data (DataConfig): Data loading configuration.
        strategy (str): Name of the strategy to run (see
            `quantsim.example_strategies.ALL_STRATEGIES`).
        strategy_parameters (Dict[str, ParamValue]): Parameters for the single
            backtest; missing names fall back to the strategy defaults.
        backtest (BacktestConfig): Simulation settings.
        optimization (Optional[OptimizationConfig]): Grid search settings;
            no grid search is run when absent.
        walk_forward (Optional[WalkForwardConfig]): Walk-forward settings;
            requires `optimization`.
        multi_period (bool): Also run the strategy across the standard
            market eras.
        strategy_candidates (List[str]): Registered strategies to compare
            for the current market phase; no selection is made when empty.
        report_dir (str): Directory the report files are written to.
    """
    data: DataConfig
    strategy: str
    strategy_parameters: Dict[str, ParamValue] = Field(default_factory=dict)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    optimization: Optional[OptimizationConfig] = None
    walk_forward: Optional[WalkForwardConfig] = None
    multi_period: bool = False
    strategy_candidates: List[str] = Field(default_factory=list)
    report_dir: str = "reports"
