"""
Walk-forward optimization.

The candle history is cut into rolling windows. Each window's in-sample part
is grid-searched and the winning parameters are validated on the following
out-of-sample part, which the search never saw. Comparing the two returns
estimates how much of the in-sample performance came from overfitting.
"""
import threading
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger
from pydantic import Field

from quantsim.analysis.statistics import StatisticalSummary
from quantsim.backtester.base import BaseBacktester
from quantsim.backtester.engine import BacktestEngine
from quantsim.backtester.results import BacktestResult, ResultModel
from quantsim.config import BacktestConfig, WalkForwardConfig
from quantsim.data.candle import Candle, validate_candles
from quantsim.metrics import get_objective, score
from quantsim.optimizer import StrategyFactory, StrategyOptimizer
from quantsim.parameters import ParameterGrid, StrategyParameters


class WalkForwardWindow(ResultModel):
    """
    One optimize-then-validate step. Both ranges are half-open: start
    inclusive, end exclusive.
    """
    in_sample_start: datetime
    in_sample_end: datetime
    out_of_sample_start: datetime
    out_of_sample_end: datetime
    optimal_parameters: StrategyParameters
    in_sample_result: BacktestResult
    out_of_sample_result: BacktestResult


class WalkForwardResult(ResultModel):
    """
    Aggregate of all completed windows.

    Args:
        best_parameters (StrategyParameters): Parameters of the window with
            the best out-of-sample score; empty when no window completed.
        windows (List[WalkForwardWindow]): Completed windows in time order.
        average_in_sample_return (float): Mean in-sample return, in percent.
        average_out_of_sample_return (float): Mean out-of-sample return, in
            percent.
        degradation (float): In-sample minus out-of-sample average return.
        metric (str): The objective used for ranking.
    """
    best_parameters: StrategyParameters = Field(default_factory=dict)
    windows: List[WalkForwardWindow] = Field(default_factory=list)
    average_in_sample_return: float = 0.0
    average_out_of_sample_return: float = 0.0
    degradation: float = 0.0
    metric: str = "sharpe_ratio"

    @property
    def efficiency(self) -> Optional[float]:
        """Out-of-sample over in-sample average return; None when in-sample is 0."""
        if self.average_in_sample_return == 0:
            return None
        return self.average_out_of_sample_return / self.average_in_sample_return

    def statistics(self) -> StatisticalSummary:
        """Paired comparison of the windows' in-sample and out-of-sample returns."""
        return StatisticalSummary.compare(
            treatment_values=[w.out_of_sample_result.metrics.total_return_percentage for w in self.windows],
            baseline_values=[w.in_sample_result.metrics.total_return_percentage for w in self.windows],
            metric_name="Total Return (%)",
        )


def window_bounds(
    first: datetime, step: int, in_sample_months: int, out_of_sample_months: int
) -> Tuple[datetime, datetime, datetime, datetime]:
    """
    Calendar bounds of window `step`: the in-sample part starts
    `step * out_of_sample_months` after `first`, and the out-of-sample part
    follows it directly.
    """
    origin = pd.Timestamp(first)
    in_sample_start = origin + pd.DateOffset(months=step * out_of_sample_months)
    in_sample_end = in_sample_start + pd.DateOffset(months=in_sample_months)
    out_of_sample_end = in_sample_end + pd.DateOffset(months=out_of_sample_months)
    return (
        in_sample_start.to_pydatetime(),
        in_sample_end.to_pydatetime(),
        in_sample_end.to_pydatetime(),
        out_of_sample_end.to_pydatetime(),
    )


def _slice(candles: Sequence[Candle], start: datetime, end: datetime) -> List[Candle]:
    return [c for c in candles if start <= c.timestamp < end]


class WalkForwardOptimizer:
    """
    Runs a grid search per rolling window and validates the winner on the
    adjacent out-of-sample window.
    """

    def __init__(
        self,
        strategy_factory: StrategyFactory,
        engine: Optional[BaseBacktester] = None,
        max_workers: int = 1,
    ):
        self.strategy_factory = strategy_factory
        self.engine = engine or BacktestEngine()
        self.optimizer = StrategyOptimizer(strategy_factory, self.engine, max_workers)

    def optimize(
        self,
        candles: Sequence[Candle],
        grid: ParameterGrid,
        config: BacktestConfig,
        walk_forward: Optional[WalkForwardConfig] = None,
        metric: str = "sharpe_ratio",
        cancel_event: Optional[threading.Event] = None,
    ) -> WalkForwardResult:
        """
        Runs the walk-forward analysis.

        Args:
            candles (Sequence[Candle]): The full, ordered history.
            grid (ParameterGrid): Range per parameter name.
            config (BacktestConfig): Simulation settings.
            walk_forward (Optional[WalkForwardConfig]): Window sizes and
                minimum candle counts; defaults to 6/2 months and 3 steps.
            metric (str): Registered objective used for both the in-sample
                search and the choice of the overall best window.
            cancel_event (Optional[threading.Event]): Checked between windows.

        Returns:
            WalkForwardResult: The completed windows and their aggregates.
        """
        validate_candles(candles)
        get_objective(metric)
        settings = walk_forward or WalkForwardConfig()
        last_timestamp = candles[-1].timestamp

        windows: List[WalkForwardWindow] = []
        for step in range(settings.window_steps):
            if cancel_event is not None and cancel_event.is_set():
                logger.warning("Walk-forward cancelled before window {}", step + 1)
                break

            is_start, is_end, oos_start, oos_end = window_bounds(
                candles[0].timestamp, step, settings.in_sample_months, settings.out_of_sample_months
            )
            if oos_end > last_timestamp:
                logger.info("Walk-forward window {} exceeds available data; stopping", step + 1)
                break

            in_sample = _slice(candles, is_start, is_end)
            out_of_sample = _slice(candles, oos_start, oos_end)
            if len(in_sample) < settings.min_in_sample_candles or len(out_of_sample) < settings.min_out_of_sample_candles:
                logger.warning(
                    "Insufficient data for walk-forward window {} ({} in-sample, {} out-of-sample candles); skipping",
                    step + 1, len(in_sample), len(out_of_sample),
                )
                continue

            logger.info(
                "Walk-forward window {}/{}: in-sample {} -> {} ({} candles), out-of-sample {} -> {} ({} candles)",
                step + 1, settings.window_steps, is_start.date(), is_end.date(), len(in_sample),
                oos_start.date(), oos_end.date(), len(out_of_sample),
            )

            try:
                optimization = self.optimizer.optimize(in_sample, grid, config, metric, cancel_event)
                if optimization.best_result is None:
                    logger.warning("Walk-forward window {} produced no in-sample result; skipping", step + 1)
                    continue
                oos_result = self.engine.run(
                    self.strategy_factory(), out_of_sample, config, optimization.best_parameters
                )
            except Exception as e:
                logger.warning("Walk-forward window {} failed: {}", step + 1, e)
                continue

            logger.info(
                "IS return: {:+.2f}%  |  OOS return: {:+.2f}%",
                optimization.best_result.metrics.total_return_percentage,
                oos_result.metrics.total_return_percentage,
            )
            windows.append(WalkForwardWindow(
                in_sample_start=is_start,
                in_sample_end=is_end,
                out_of_sample_start=oos_start,
                out_of_sample_end=oos_end,
                optimal_parameters=optimization.best_parameters,
                in_sample_result=optimization.best_result,
                out_of_sample_result=oos_result,
            ))

        if not windows:
            logger.warning("No walk-forward windows could be completed")
            return WalkForwardResult(metric=metric)

        # max() keeps the earliest window on ties.
        best_window = max(windows, key=lambda w: score(w.out_of_sample_result, metric))
        avg_is = float(np.mean([w.in_sample_result.metrics.total_return_percentage for w in windows]))
        avg_oos = float(np.mean([w.out_of_sample_result.metrics.total_return_percentage for w in windows]))

        return WalkForwardResult(
            best_parameters=best_window.optimal_parameters,
            windows=windows,
            average_in_sample_return=avg_is,
            average_out_of_sample_return=avg_oos,
            degradation=avg_is - avg_oos,
            metric=metric,
        )
