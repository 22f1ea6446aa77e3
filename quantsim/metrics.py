"""
Functions for calculating performance metrics of backtests.

The calculators turn an equity curve and a closed-trade ledger into
PerformanceMetrics. The objective registry exposes the metrics that grid
search and walk-forward optimization can rank by.
"""
import math
from datetime import timedelta
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np
import pandas as pd

from quantsim.backtester.results import BacktestResult, PerformanceMetrics, PortfolioSnapshot, Trade

# Value stored for ratios with a zero denominator and a positive numerator.
UNBOUNDED = math.inf

# Ranking substitutes this for any infinite metric so scores stay comparable.
RANKING_CAP = 999.0

# Registry for objective functions
OBJECTIVE_REGISTRY: Dict[str, Callable[[BacktestResult], float]] = {}


def register_objective(name: str, func: Callable[[BacktestResult], float]):
    """
    Registers a new objective function for use by the optimizers.

    Args:
        name (str): The name of the objective function.
        func (Callable[[BacktestResult], float]): Maps a backtest result to a
            score; higher is better.
    """
    if name in OBJECTIVE_REGISTRY:
        raise ValueError(f"Objective '{name}' is already registered.")
    OBJECTIVE_REGISTRY[name] = func


def get_objective(name: str) -> Callable[[BacktestResult], float]:
    """
    Retrieves an objective function from the registry.

    Args:
        name (str): The name of the objective function to retrieve.

    Returns:
        Callable[[BacktestResult], float]: The requested objective function.
    """
    if name not in OBJECTIVE_REGISTRY:
        raise ValueError(f"Objective '{name}' is not registered. Available: {list(OBJECTIVE_REGISTRY.keys())}")
    return OBJECTIVE_REGISTRY[name]


def score(result: BacktestResult, metric: str) -> float:
    """
    Evaluates `metric` on a result for ranking. Infinite values are capped to
    plus or minus RANKING_CAP.
    """
    value = get_objective(metric)(result)
    if math.isinf(value):
        return RANKING_CAP if value > 0 else -RANKING_CAP
    return value


def equity_returns(values: Sequence[float]) -> pd.Series:
    """
    Simple period-over-period returns of an equity curve. Periods whose
    previous value is not positive are skipped.
    """
    returns = [
        (current - prev) / prev
        for prev, current in zip(values, values[1:])
        if prev > 0
    ]
    return pd.Series(returns, dtype=float)


def calculate_max_drawdown(values: Sequence[float]) -> Tuple[float, float]:
    """
    Calculates the largest peak-to-trough decline of an equity curve.

    Args:
        values (Sequence[float]): Portfolio values in time order.

    Returns:
        Tuple[float, float]: The absolute drawdown and the drawdown as a
        percentage of the running peak.
    """
    if len(values) == 0:
        return 0.0, 0.0
    equity = np.asarray(values, dtype=float)
    peaks = np.maximum.accumulate(equity)
    drawdowns = peaks - equity
    with np.errstate(divide="ignore", invalid="ignore"):
        drawdown_pcts = np.where(peaks > 0, drawdowns / peaks * 100.0, 0.0)
    return float(drawdowns.max()), float(drawdown_pcts.max())


def calculate_sharpe_ratio(returns: pd.Series, periods_per_year: int = 252) -> float:
    """
    Calculates the annualized Sharpe ratio from a series of periodic returns.

    Args:
        returns (pd.Series): A Series of periodic returns.
        periods_per_year (int): The number of periods in a year.

    Returns:
        float: The annualized Sharpe ratio. Returns 0.0 with fewer than two
        returns or a zero standard deviation.
    """
    if len(returns) < 2:
        return 0.0
    std_dev = returns.std(ddof=0)
    if std_dev == 0:
        return 0.0
    return float(returns.mean() / std_dev * np.sqrt(periods_per_year))


def calculate_sortino_ratio(returns: pd.Series, periods_per_year: int = 252) -> float:
    """
    Calculates the annualized Sortino ratio, which only penalizes negative
    returns.

    Returns:
        float: The annualized Sortino ratio. With no negative returns it is
        UNBOUNDED when the mean return is positive and 0.0 otherwise.
    """
    if returns.empty:
        return 0.0
    mean = returns.mean()
    negatives = returns[returns < 0]
    if negatives.empty:
        return UNBOUNDED if mean > 0 else 0.0
    downside_deviation = np.sqrt((negatives ** 2).mean())
    if downside_deviation == 0:
        return 0.0
    return float(mean / downside_deviation * np.sqrt(periods_per_year))


def calculate_annualized_return(initial_balance: float, final_balance: float, duration: timedelta) -> float:
    """
    Calculates the compound annual growth rate in percent.

    Returns:
        float: `((final / initial) ** (365 / days) - 1) * 100`, or 0.0 when
        the duration or either balance is not positive.
    """
    years = duration.total_seconds() / 86400.0 / 365.0
    if years <= 0 or initial_balance <= 0 or final_balance <= 0:
        return 0.0
    return ((final_balance / initial_balance) ** (1.0 / years) - 1.0) * 100.0


def calculate_profit_factor(trades: Sequence[Trade]) -> float:
    """
    Gross profit divided by gross loss.

    Returns:
        float: UNBOUNDED when there are profits but no losses, 0.0 when
        there are neither.
    """
    gross_profit = math.fsum(t.profit_loss for t in trades if (t.profit_loss or 0) > 0)
    gross_loss = abs(math.fsum(t.profit_loss for t in trades if (t.profit_loss or 0) <= 0))
    if gross_loss > 0:
        return gross_profit / gross_loss
    return UNBOUNDED if gross_profit > 0 else 0.0


def calculate_performance_metrics(
    trades: List[Trade],
    equity_curve: List[PortfolioSnapshot],
    initial_balance: float,
    final_balance: float,
) -> PerformanceMetrics:
    """
    Derives every PerformanceMetrics field from a finished run.

    Args:
        trades (List[Trade]): The closed-trade ledger.
        equity_curve (List[PortfolioSnapshot]): One snapshot per candle.
        initial_balance (float): Starting cash.
        final_balance (float): Ending portfolio value.

    Returns:
        PerformanceMetrics: The calculated metrics.
    """
    duration = (
        equity_curve[-1].timestamp - equity_curve[0].timestamp if equity_curve else timedelta(0)
    )
    values = [s.total_value for s in equity_curve]
    returns = equity_returns(values)
    max_drawdown, max_drawdown_pct = calculate_max_drawdown(values)

    pnls = [t.profit_loss or 0.0 for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]
    holding_hours = [
        t.holding_period.total_seconds() / 3600.0 for t in trades if t.holding_period is not None
    ]

    total_return = final_balance - initial_balance
    return PerformanceMetrics(
        total_return=total_return,
        total_return_percentage=total_return / initial_balance * 100.0 if initial_balance else 0.0,
        annualized_return=calculate_annualized_return(initial_balance, final_balance, duration),
        max_drawdown=max_drawdown,
        max_drawdown_percentage=max_drawdown_pct,
        sharpe_ratio=calculate_sharpe_ratio(returns),
        sortino_ratio=calculate_sortino_ratio(returns),
        total_trades=len(trades),
        winning_trades=len(wins),
        losing_trades=len(losses),
        win_rate=len(wins) / len(trades) if trades else 0.0,
        profit_factor=calculate_profit_factor(trades),
        average_win=float(np.mean(wins)) if wins else 0.0,
        average_loss=abs(float(np.mean(losses))) if losses else 0.0,
        largest_win=max(wins) if wins else 0.0,
        largest_loss=abs(min(losses)) if losses else 0.0,
        backtest_duration=duration,
        average_holding_period_hours=float(np.mean(holding_hours)) if holding_hours else 0.0,
    )


def composite_fitness(result: BacktestResult) -> float:
    """
    Return x win rate x profit factor / max drawdown, rewarding strategies
    that earn steadily. Runs without trades score -inf.
    """
    m = result.metrics
    if m.total_trades == 0:
        return -math.inf
    return_score = max(0.0, m.total_return_percentage)
    win_rate = m.win_rate if m.win_rate > 0 else 0.01
    profit_factor = 10.0 if math.isinf(m.profit_factor) else max(0.0, m.profit_factor)
    max_drawdown = m.max_drawdown_percentage if m.max_drawdown_percentage > 0 else 1.0
    return return_score * win_rate * profit_factor / max_drawdown


# Register the default objective functions
register_objective("total_return", lambda r: r.metrics.total_return_percentage)
register_objective("sharpe_ratio", lambda r: r.metrics.sharpe_ratio)
register_objective("sortino_ratio", lambda r: r.metrics.sortino_ratio)
register_objective("profit_factor", lambda r: r.metrics.profit_factor)
register_objective("win_rate", lambda r: r.metrics.win_rate)
register_objective("composite", composite_fitness)
