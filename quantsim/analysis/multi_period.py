"""
Runs one strategy across a list of named market eras and compounds the
results, recording the regime each era was in.
"""
from datetime import date
from typing import List, Optional, Sequence

import numpy as np
from loguru import logger
from pydantic import Field

from quantsim.analysis.regime import MarketRegime, detect_regime
from quantsim.backtester.base import BaseBacktester
from quantsim.backtester.engine import BacktestEngine
from quantsim.backtester.results import BacktestResult, ResultModel
from quantsim.config import BacktestConfig
from quantsim.data.candle import Candle
from quantsim.strategy import Strategy

MIN_PERIOD_CANDLES = 50


class PeriodDefinition(ResultModel):
    """A named era; both dates are inclusive."""
    label: str
    description: str = ""
    start_date: date
    end_date: date

    def contains(self, candle: Candle) -> bool:
        return self.start_date <= candle.timestamp.date() <= self.end_date


STANDARD_PERIODS: List[PeriodDefinition] = [
    PeriodDefinition(label="Bull 2020-2021", description="Major bull run",
                     start_date=date(2020, 1, 1), end_date=date(2021, 12, 31)),
    PeriodDefinition(label="Bear 2022", description="Bear market crash",
                     start_date=date(2022, 1, 1), end_date=date(2022, 12, 31)),
    PeriodDefinition(label="Recovery 2023", description="Recovery year",
                     start_date=date(2023, 1, 1), end_date=date(2023, 12, 31)),
    PeriodDefinition(label="Bull 2024", description="Bull market",
                     start_date=date(2024, 1, 1), end_date=date(2024, 12, 31)),
    PeriodDefinition(label="Current 2025-2026", description="Current period",
                     start_date=date(2025, 1, 1), end_date=date(2026, 2, 22)),
]


class PeriodResult(ResultModel):
    period: PeriodDefinition
    backtest_result: BacktestResult
    regime: Optional[MarketRegime] = None
    candle_count: int


class MultiPeriodResult(ResultModel):
    """
    Per-era results and their aggregates.

    Args:
        period_results (List[PeriodResult]): Eras that ran, in input order.
        overall_return (float): Era returns compounded as sequential
            re-investment, in percent.
        average_sharpe (float): Mean Sharpe ratio across eras.
        total_trades (int): Trades summed across eras.
    """
    period_results: List[PeriodResult] = Field(default_factory=list)
    overall_return: float = 0.0
    average_sharpe: float = 0.0
    total_trades: int = 0


def compound_return(returns_pct: Sequence[float]) -> float:
    """Chains percentage returns: `(prod(1 + r / 100) - 1) * 100`."""
    factor = 1.0
    for r in returns_pct:
        factor *= 1.0 + r / 100.0
    return (factor - 1.0) * 100.0


class MultiPeriodBacktester:
    """Backtests a strategy on each era of a fixed list of periods."""

    def __init__(self, engine: Optional[BaseBacktester] = None):
        self.engine = engine or BacktestEngine()

    def run(
        self,
        strategy: Strategy,
        candles: Sequence[Candle],
        config: BacktestConfig,
        periods: Optional[Sequence[PeriodDefinition]] = None,
    ) -> MultiPeriodResult:
        """
        Runs the strategy, with its default parameters, on every era that has
        at least MIN_PERIOD_CANDLES candles. Eras that fail are logged and
        left out.

        Args:
            strategy (Strategy): Strategy to run; it is re-initialized per era.
            candles (Sequence[Candle]): The full, ordered history.
            config (BacktestConfig): Simulation settings.
            periods (Optional[Sequence[PeriodDefinition]]): Eras to run;
                defaults to STANDARD_PERIODS.

        Returns:
            MultiPeriodResult: Per-era results and their aggregates.
        """
        results: List[PeriodResult] = []
        for period in periods if periods is not None else STANDARD_PERIODS:
            period_candles = [c for c in candles if period.contains(c)]
            if len(period_candles) < MIN_PERIOD_CANDLES:
                logger.info("Skipping {}: insufficient data ({} candles)", period.label, len(period_candles))
                continue

            try:
                result = self.engine.run(strategy, period_candles, config)
            except Exception as e:
                logger.warning("Error running {}: {}", period.label, e)
                continue

            results.append(PeriodResult(
                period=period,
                backtest_result=result,
                regime=detect_regime(period_candles, len(period_candles) // 2),
                candle_count=len(period_candles),
            ))

        if not results:
            return MultiPeriodResult()

        return MultiPeriodResult(
            period_results=results,
            overall_return=compound_return(
                [r.backtest_result.metrics.total_return_percentage for r in results]
            ),
            average_sharpe=float(np.mean([r.backtest_result.metrics.sharpe_ratio for r in results])),
            total_trades=sum(r.backtest_result.metrics.total_trades for r in results),
        )
