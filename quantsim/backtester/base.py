"""
Abstract base class for backtesting engines.
"""
from abc import ABC, abstractmethod
from typing import Mapping, Optional, Sequence

from quantsim.backtester.results import BacktestResult
from quantsim.config import BacktestConfig
from quantsim.data.candle import Candle
from quantsim.parameters import ParamValue
from quantsim.strategy import Strategy


class BaseBacktester(ABC):
    """
    Abstract base class for all backtesting engines.

    It defines the common interface the optimizers use to run a strategy
    over a candle sequence. Implementations must not keep per-run state on
    the engine, so one engine can serve concurrent runs.
    """

    @abstractmethod
    def run(
        self,
        strategy: Strategy,
        candles: Sequence[Candle],
        config: BacktestConfig,
        parameters: Optional[Mapping[str, ParamValue]] = None,
        timeframe: str = "",
    ) -> BacktestResult:
        """
        Runs a backtest for the given strategy.

        Args:
            strategy (Strategy): The strategy to simulate. It is initialized
                with `parameters` before the first candle.
            candles (Sequence[Candle]): Chronologically ordered candles.
            config (BacktestConfig): Simulation settings.
            parameters (Optional[Mapping[str, ParamValue]]): Strategy
                parameters; None or empty means the strategy defaults.
            timeframe (str): Timeframe label recorded on the result.

        Returns:
            BacktestResult: An object containing the results of the backtest.
        """
        raise NotImplementedError
