"""
Tabular exports, JSON serialization and static report files for backtest,
optimization, walk-forward and multi-period results.
"""
import math
import os
from typing import Optional

import matplotlib.pyplot as plt
import pandas as pd
from loguru import logger

from quantsim.analysis.multi_period import MultiPeriodResult
from quantsim.backtester.results import BacktestResult, ResultModel
from quantsim.optimizer import OptimizationResult
from quantsim.walk_forward import WalkForwardResult

TRADE_COLUMNS = [
    "Id", "Symbol", "Direction", "EntryTime", "ExitTime", "EntryPrice", "ExitPrice",
    "Quantity", "ProfitLoss", "ProfitLossPercentage", "Fees",
]
EQUITY_COLUMNS = ["Timestamp", "TotalValue", "CashBalance", "PositionValue"]
MULTI_PERIOD_COLUMNS = [
    "Period", "Description", "StartDate", "EndDate", "TrendRegime", "VolatilityRegime",
    "Phase", "Return%", "Sharpe", "MaxDD%", "Trades", "WinRate",
]


def trades_to_frame(result: BacktestResult) -> pd.DataFrame:
    rows = [
        [t.id, t.symbol, t.direction.value, t.entry_time, t.exit_time, t.entry_price, t.exit_price,
         t.quantity, t.profit_loss, t.profit_loss_percentage, t.fees]
        for t in result.trades
    ]
    return pd.DataFrame(rows, columns=TRADE_COLUMNS)


def equity_curve_to_frame(result: BacktestResult) -> pd.DataFrame:
    rows = [[s.timestamp, s.total_value, s.cash_balance, s.position_value] for s in result.equity_curve]
    return pd.DataFrame(rows, columns=EQUITY_COLUMNS)


def multi_period_to_frame(result: MultiPeriodResult) -> pd.DataFrame:
    """One row per era followed by an OVERALL row with the aggregates."""
    rows = []
    for pr in result.period_results:
        m = pr.backtest_result.metrics
        regime = pr.regime
        rows.append([
            pr.period.label, pr.period.description, pr.period.start_date, pr.period.end_date,
            regime.trend.value if regime else "N/A",
            regime.volatility.value if regime else "N/A",
            regime.phase.value if regime else "N/A",
            m.total_return_percentage, m.sharpe_ratio, m.max_drawdown_percentage, m.total_trades, m.win_rate,
        ])
    rows.append([
        "OVERALL", None, None, None, None, None, None,
        result.overall_return, result.average_sharpe, None, result.total_trades, None,
    ])
    return pd.DataFrame(rows, columns=MULTI_PERIOD_COLUMNS)


def export_trades_csv(result: BacktestResult, path: str) -> None:
    trades_to_frame(result).to_csv(path, index=False)
    logger.info("Trades exported to {}", path)


def export_equity_curve_csv(result: BacktestResult, path: str) -> None:
    equity_curve_to_frame(result).to_csv(path, index=False)
    logger.info("Equity curve exported to {}", path)


def to_json(result: ResultModel) -> str:
    """Serializes any result model. Durations are written in seconds."""
    return result.model_dump_json(indent=2)


def export_json(result: ResultModel, path: str) -> None:
    with open(path, "w") as f:
        f.write(to_json(result))
    logger.info("Result exported to {}", path)


def format_summary(result: BacktestResult) -> str:
    """A human-readable summary of a backtest's headline numbers."""
    m = result.metrics
    profit_factor = "inf" if math.isinf(m.profit_factor) else f"{m.profit_factor:.2f}"
    sortino = "inf" if math.isinf(m.sortino_ratio) else f"{m.sortino_ratio:.2f}"
    lines = [
        f"=== {result.strategy_name} on {result.symbol or 'n/a'} ===",
        f"Period:            {result.start_date:%Y-%m-%d} -> {result.end_date:%Y-%m-%d}",
        f"Initial balance:   {result.initial_balance:,.2f}",
        f"Final balance:     {result.final_balance:,.2f}",
        f"Total return:      {m.total_return:,.2f} ({m.total_return_percentage:+.2f}%)",
        f"Annualized return: {m.annualized_return:+.2f}%",
        f"Max drawdown:      {m.max_drawdown:,.2f} ({m.max_drawdown_percentage:.2f}%)",
        f"Sharpe / Sortino:  {m.sharpe_ratio:.2f} / {sortino}",
        f"Trades:            {m.total_trades} ({m.winning_trades} won, {m.losing_trades} lost, "
        f"win rate {m.win_rate:.0%})",
        f"Profit factor:     {profit_factor}",
    ]
    return "\n".join(lines)


def _plot_equity_curve(result: BacktestResult, output_dir: str) -> None:
    if not result.equity_curve:
        return
    equity = result.equity_series()
    fig, ax = plt.subplots(figsize=(10, 6))
    ax.plot(equity.index, equity.values, linestyle='-')
    ax.axhline(result.initial_balance, color="grey", linestyle="--", linewidth=0.8)
    ax.set_xlabel("Time")
    ax.set_ylabel("Portfolio Value")
    ax.set_title(f"Equity Curve: {result.strategy_name}")
    ax.grid(True)

    plt.savefig(os.path.join(output_dir, "equity_curve.png"))
    plt.close(fig)


def _plot_walk_forward(result: WalkForwardResult, output_dir: str) -> None:
    """Bar chart of in-sample vs out-of-sample return per window."""
    if not result.windows:
        return
    labels = [f"{w.out_of_sample_start:%Y-%m}" for w in result.windows]
    positions = range(len(labels))
    fig, ax = plt.subplots(figsize=(10, 6))
    ax.bar([p - 0.2 for p in positions],
           [w.in_sample_result.metrics.total_return_percentage for w in result.windows],
           width=0.4, label="In-sample")
    ax.bar([p + 0.2 for p in positions],
           [w.out_of_sample_result.metrics.total_return_percentage for w in result.windows],
           width=0.4, label="Out-of-sample")
    ax.set_xticks(list(positions))
    ax.set_xticklabels(labels)
    ax.set_xlabel("Out-of-sample window start")
    ax.set_ylabel("Total Return (%)")
    ax.set_title("Walk-Forward Returns")
    ax.legend()
    ax.grid(True, axis="y")

    plt.savefig(os.path.join(output_dir, "walk_forward.png"))
    plt.close(fig)


def generate_report(
    result: BacktestResult,
    output_dir: str,
    optimization: Optional[OptimizationResult] = None,
    walk_forward: Optional[WalkForwardResult] = None,
    multi_period: Optional[MultiPeriodResult] = None,
) -> None:
    """
    Writes a collection of static report files into `output_dir`: the trades
    and equity-curve CSVs, the result as JSON, an equity-curve plot, and the
    optional optimization, walk-forward and multi-period outputs.
    """
    os.makedirs(output_dir, exist_ok=True)

    export_trades_csv(result, os.path.join(output_dir, "trades.csv"))
    export_equity_curve_csv(result, os.path.join(output_dir, "equity_curve.csv"))
    export_json(result, os.path.join(output_dir, "backtest_result.json"))
    _plot_equity_curve(result, output_dir)

    if optimization is not None:
        optimization.to_frame().to_csv(os.path.join(output_dir, "optimization_results.csv"), index=False)

    if walk_forward is not None:
        export_json(walk_forward, os.path.join(output_dir, "walk_forward.json"))
        _plot_walk_forward(walk_forward, output_dir)
        with open(os.path.join(output_dir, "walk_forward_statistics.txt"), 'w') as f:
            f.write(walk_forward.statistics().format_summary())
            f.write("\n")

    if multi_period is not None:
        multi_period_to_frame(multi_period).to_csv(os.path.join(output_dir, "multi_period.csv"), index=False)

    logger.info("Report written to {}", output_dir)
