"""
Grid-search optimization of strategy parameters.

Every point of the Cartesian product of the parameter ranges is backtested
with a fresh strategy instance and scored with a registered objective.
"""
import itertools
import os
import threading
import time
from datetime import timedelta
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import pandas as pd
import ray
from loguru import logger
from pydantic import Field

from quantsim.backtester.base import BaseBacktester
from quantsim.backtester.engine import BacktestEngine
from quantsim.backtester.results import BacktestResult, ResultModel
from quantsim.config import BacktestConfig
from quantsim.data.candle import Candle, validate_candles
from quantsim.metrics import get_objective, score
from quantsim.parameters import ParameterGrid, StrategyParameters
from quantsim.strategy import Strategy

StrategyFactory = Callable[[], Strategy]
# (combination index, result, error message)
Outcome = Tuple[int, Optional[BacktestResult], Optional[str]]


def generate_combinations(grid: ParameterGrid) -> List[StrategyParameters]:
    """
    Expands a parameter grid into every parameter assignment, varying the
    last parameter fastest.

    Args:
        grid (ParameterGrid): Range per parameter name.

    Returns:
        List[StrategyParameters]: One mapping per combination. An empty grid
        yields a single empty mapping.
    """
    names = list(grid.keys())
    value_lists = [grid[name].values() for name in names]
    return [dict(zip(names, values)) for values in itertools.product(*value_lists)]


class ParameterTestResult(ResultModel):
    """Summary of one backtested parameter combination."""
    parameters: StrategyParameters
    metric_value: float
    total_return: float
    sharpe_ratio: float
    max_drawdown: float
    total_trades: int
    win_rate: float

    @classmethod
    def from_backtest(cls, parameters: StrategyParameters, result: BacktestResult, metric: str) -> "ParameterTestResult":
        m = result.metrics
        return cls(
            parameters=parameters,
            metric_value=score(result, metric),
            total_return=m.total_return_percentage,
            sharpe_ratio=m.sharpe_ratio,
            max_drawdown=m.max_drawdown_percentage,
            total_trades=m.total_trades,
            win_rate=m.win_rate,
        )


class OptimizationResult(ResultModel):
    """
    Outcome of a grid search.

    Args:
        best_parameters (StrategyParameters): The highest-scoring combination.
        best_result (Optional[BacktestResult]): Its backtest; None when no
            combination finished.
        best_metric_value (float): Its score.
        metric (str): The objective that was ranked by.
        all_results (List[ParameterTestResult]): Every finished combination,
            best first.
        duration (timedelta): Wall-clock time of the search.
        combinations_tested (int): Number of combinations that finished.
    """
    best_parameters: StrategyParameters = Field(default_factory=dict)
    best_result: Optional[BacktestResult] = None
    best_metric_value: float = float("-inf")
    metric: str
    all_results: List[ParameterTestResult] = Field(default_factory=list)
    duration: timedelta = timedelta(0)
    combinations_tested: int = 0

    def top(self, n: int = 10) -> List[ParameterTestResult]:
        return self.all_results[:n]

    def to_frame(self) -> pd.DataFrame:
        """One row per combination: its parameters followed by its metrics."""
        rows = []
        for r in self.all_results:
            row = dict(r.parameters)
            row.update(r.model_dump(exclude={"parameters"}))
            rows.append(row)
        return pd.DataFrame(rows)


class StrategyOptimizer:
    """
    Exhaustive grid search over strategy parameters.

    Each combination gets its own strategy instance from `strategy_factory`.
    With more than one worker the combinations run as Ray tasks, so the
    engine, the factory and the candles must be picklable. Failures of single
    combinations are logged and skipped.
    """

    def __init__(
        self,
        strategy_factory: StrategyFactory,
        engine: Optional[BaseBacktester] = None,
        max_workers: int = 1,
    ):
        """
        Initializes the optimizer.

        Args:
            strategy_factory (StrategyFactory): Builds a fresh, uninitialized
                strategy instance.
            engine (Optional[BaseBacktester]): Backtester to run; defaults to
                a BacktestEngine.
            max_workers (int): Upper bound on concurrent backtests; capped by
                the number of CPUs.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1.")
        self.strategy_factory = strategy_factory
        self.engine = engine or BacktestEngine()
        self.max_workers = min(max_workers, os.cpu_count() or 1)

    def optimize(
        self,
        candles: Sequence[Candle],
        grid: ParameterGrid,
        config: BacktestConfig,
        metric: str = "sharpe_ratio",
        cancel_event: Optional[threading.Event] = None,
        timeframe: str = "",
    ) -> OptimizationResult:
        """
        Backtests every combination of the grid and ranks them by `metric`.

        Args:
            candles (Sequence[Candle]): Candles to backtest on; shared
                read-only by all combinations.
            grid (ParameterGrid): Range per parameter name.
            config (BacktestConfig): Simulation settings.
            metric (str): Registered objective to rank by.
            cancel_event (Optional[threading.Event]): When set, no further
                combinations are started and the finished ones are returned.
            timeframe (str): Timeframe label recorded on each result.

        Returns:
            OptimizationResult: The best combination and all finished ones.
        """
        validate_candles(candles)
        get_objective(metric)

        combinations = generate_combinations(grid)
        total = len(combinations)
        logger.info("Grid search over {} combinations ranked by {}", total, metric)

        started = time.monotonic()
        if self.max_workers > 1 and total > 1:
            outcomes = self._run_parallel(combinations, candles, config, timeframe, cancel_event)
        else:
            outcomes = self._run_sequential(combinations, candles, config, timeframe, cancel_event)

        finished: List[tuple] = []
        log_every = max(1, total // 10)
        for done, (index, result, error) in enumerate(outcomes, start=1):
            parameters = combinations[index]
            if error is not None:
                logger.warning("Combination {} failed: {}", parameters, error)
            else:
                finished.append((index, parameters, result, ParameterTestResult.from_backtest(parameters, result, metric)))
            if done % log_every == 0 or done == total:
                logger.info("Grid search progress: {}/{} ({:.0f}%)", done, total, done / total * 100)

        if _cancelled(cancel_event):
            logger.warning("Grid search cancelled after {} of {} combinations", len(finished), total)

        # Ties go to the combination that comes first in the grid.
        finished.sort(key=lambda e: (-e[3].metric_value, e[0]))
        duration = timedelta(seconds=time.monotonic() - started)

        if not finished:
            logger.warning("No parameter combination completed")
            return OptimizationResult(metric=metric, duration=duration)

        _, best_parameters, best_result, best_summary = finished[0]
        logger.info("Best {} = {:.4f} with {}", metric, best_summary.metric_value, best_parameters)
        return OptimizationResult(
            best_parameters=best_parameters,
            best_result=best_result,
            best_metric_value=best_summary.metric_value,
            metric=metric,
            all_results=[e[3] for e in finished],
            duration=duration,
            combinations_tested=len(finished),
        )

    def _run_sequential(self, combinations, candles, config, timeframe, cancel_event) -> Iterator[Outcome]:
        for index, parameters in enumerate(combinations):
            if _cancelled(cancel_event):
                return
            result, error = _backtest_task(self.engine, self.strategy_factory, candles, config, parameters, timeframe)
            yield index, result, error

    def _run_parallel(self, combinations, candles, config, timeframe, cancel_event) -> Iterator[Outcome]:
        """
        Runs the combinations as Ray tasks, keeping at most `max_workers` of
        them in flight. Outcomes are yielded in completion order.
        """
        if not ray.is_initialized():
            ray.init(num_cpus=self.max_workers, ignore_reinit_error=True, include_dashboard=False)

        run_remote = ray.remote(_backtest_task)
        engine_ref = ray.put(self.engine)
        factory_ref = ray.put(self.strategy_factory)
        candles_ref = ray.put(list(candles))

        queue = iter(enumerate(combinations))
        pending = {}
        while True:
            while len(pending) < self.max_workers and not _cancelled(cancel_event):
                item = next(queue, None)
                if item is None:
                    break
                index, parameters = item
                ref = run_remote.remote(engine_ref, factory_ref, candles_ref, config, parameters, timeframe)
                pending[ref] = index
            if not pending:
                return
            ready, _ = ray.wait(list(pending), num_returns=1)
            index = pending.pop(ready[0])
            result, error = ray.get(ready[0])
            yield index, result, error


def _cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _backtest_task(
    engine: BaseBacktester,
    strategy_factory: StrategyFactory,
    candles: Sequence[Candle],
    config: BacktestConfig,
    parameters: StrategyParameters,
    timeframe: str,
) -> Tuple[Optional[BacktestResult], Optional[str]]:
    """Backtests one combination, returning the result or the error message."""
    try:
        return engine.run(strategy_factory(), candles, config, parameters, timeframe), None
    except Exception as e:
        return None, str(e)
