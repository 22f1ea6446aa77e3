"""
Data structures for holding the results of a backtest.
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field

from quantsim.config import BacktestConfig


class ResultModel(BaseModel):
    """
    Base of every result model. JSON output writes unbounded ratios as
    "Infinity" / "-Infinity" and durations as seconds.
    """
    model_config = ConfigDict(ser_json_inf_nan="strings", ser_json_timedelta="float")


class TradeDirection(str, Enum):
    LONG = "Long"
    SHORT = "Short"


class Trade(ResultModel):
    """
    A single round-trip position. Exit fields stay empty while it is open.

    Args:
        id (int): Identity assigned by the owning portfolio, starting at 1.
        symbol (str): The traded symbol.
        direction (TradeDirection): Always long in this simulator.
        entry_time (datetime): Timestamp of the fill that opened the trade.
        entry_price (float): Fill price of the entry.
        quantity (float): Quantity bought.
        exit_time (Optional[datetime]): Timestamp of the closing fill.
        exit_price (Optional[float]): Fill price of the exit.
        profit_loss (Optional[float]): Realized PnL net of all fees.
        profit_loss_percentage (Optional[float]): PnL relative to entry cost,
            in percent.
        fees (float): Fees accumulated over entry and exit.
    """
    id: int
    symbol: str
    direction: TradeDirection = TradeDirection.LONG
    entry_time: datetime
    entry_price: float
    quantity: float
    exit_time: Optional[datetime] = None
    exit_price: Optional[float] = None
    profit_loss: Optional[float] = None
    profit_loss_percentage: Optional[float] = None
    fees: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.exit_time is None

    @property
    def holding_period(self) -> Optional[timedelta]:
        if self.exit_time is None:
            return None
        return self.exit_time - self.entry_time


class PortfolioSnapshot(ResultModel):
    """One equity-curve point, recorded for every simulated candle."""
    timestamp: datetime
    total_value: float
    cash_balance: float
    position_value: float


class PerformanceMetrics(ResultModel):
    """
    Summary statistics of a backtest.

    Percentages (`total_return_percentage`, `annualized_return`,
    `max_drawdown_percentage`) are in percent; `win_rate` is a fraction in
    [0, 1]. Unbounded ratios hold `math.inf`.
    """
    total_return: float = 0.0
    total_return_percentage: float = 0.0
    annualized_return: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percentage: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    backtest_duration: timedelta = timedelta(0)
    average_holding_period_hours: float = 0.0


class BacktestResult(ResultModel):
    """
    Holds all the results from a single backtest run of a strategy.

    Args:
        strategy_name (str): Name of the strategy that produced the trades.
        symbol (str): Symbol of the simulated candles.
        timeframe (str): Timeframe label of the candles, if known.
        start_date (datetime): Timestamp of the first candle.
        end_date (datetime): Timestamp of the last candle.
        initial_balance (float): Starting cash.
        final_balance (float): Cash plus holdings at the last close.
        metrics (PerformanceMetrics): Calculated performance metrics.
        trades (List[Trade]): The closed-trade ledger.
        equity_curve (List[PortfolioSnapshot]): One snapshot per candle.
        config (BacktestConfig): The configuration used for the run.
    """
    strategy_name: str
    symbol: str = ""
    timeframe: str = ""
    start_date: datetime
    end_date: datetime
    initial_balance: float
    final_balance: float
    metrics: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    trades: List[Trade] = Field(default_factory=list)
    equity_curve: List[PortfolioSnapshot] = Field(default_factory=list)
    config: BacktestConfig = Field(default_factory=BacktestConfig)

    def equity_series(self) -> pd.Series:
        """Returns the total portfolio value over time as a pandas Series."""
        return pd.Series(
            [s.total_value for s in self.equity_curve],
            index=pd.DatetimeIndex([s.timestamp for s in self.equity_curve], name="timestamp"),
            name="equity",
        )
