"""
Picks the strategy best suited to the current market.

Every candidate is backtested on the same history, scored by its Sharpe
ratio, and trend-following strategies get a bonus when the recent market
is trending.
"""
from typing import Dict, Optional, Sequence

from loguru import logger
from pydantic import Field

from quantsim.analysis.regime import MarketPhase, detect_regime
from quantsim.backtester.base import BaseBacktester
from quantsim.backtester.engine import BacktestEngine
from quantsim.backtester.results import BacktestResult, ResultModel
from quantsim.config import BacktestConfig
from quantsim.data.candle import Candle
from quantsim.strategy import Strategy

DEFAULT_LOOKBACK = 90

# Costs used when no config is given: flat 5 bps fees, no hard stop.
SELECTION_CONFIG = BacktestConfig(
    taker_fee_rate=0.0005,
    maker_fee_rate=0.0005,
    slippage_rate=0.0001,
    position_size=0.95,
    max_loss_per_trade_percent=0.0,
)


def classify_market(candles: Sequence[Candle], lookback: int = DEFAULT_LOOKBACK) -> MarketPhase:
    """
    Classifies the market phase at the last candle from the trailing
    `lookback` candles. Too little history counts as sideways.
    """
    window = list(candles[-lookback:])
    if not window:
        return MarketPhase.SIDEWAYS
    regime = detect_regime(window, len(window) - 1)
    if regime is None:
        return MarketPhase.SIDEWAYS
    return regime.phase


def regime_bonus(strategy_name: str, phase: MarketPhase) -> float:
    """Score bonus for strategies whose style fits the market phase."""
    name = strategy_name.lower()
    is_trend = "macro" in name or "trend" in name
    if phase == MarketPhase.BULL:
        if is_trend:
            return 0.3
        if "buy" in name and "hold" in name:
            return 0.2
    elif phase == MarketPhase.BEAR and is_trend:
        return 0.2
    return 0.0


def select_best_strategy(results: Dict[str, BacktestResult], phase: MarketPhase) -> str:
    """
    Returns the name with the highest Sharpe ratio plus regime bonus; the
    first one wins ties. An empty mapping gives an empty name.
    """
    if not results:
        return ""
    return max(results, key=lambda name: results[name].metrics.sharpe_ratio + regime_bonus(name, phase))


class StrategySelection(ResultModel):
    """
    Outcome of a strategy selection.

    Args:
        phase (MarketPhase): The market phase the choice was made for.
        best_strategy (str): Name of the chosen strategy; empty when no
            candidate finished.
        scores (Dict[str, float]): Sharpe ratio plus bonus per candidate.
        results (Dict[str, BacktestResult]): Backtest of each candidate.
    """
    phase: MarketPhase
    best_strategy: str = ""
    scores: Dict[str, float] = Field(default_factory=dict)
    results: Dict[str, BacktestResult] = Field(default_factory=dict)


class StrategySelector:
    """Backtests candidate strategies and chooses one for the current regime."""

    def __init__(self, engine: Optional[BaseBacktester] = None, config: Optional[BacktestConfig] = None):
        self.engine = engine or BacktestEngine()
        self.config = config or SELECTION_CONFIG

    def evaluate(self, strategies: Sequence[Strategy], candles: Sequence[Candle]) -> Dict[str, BacktestResult]:
        """
        Backtests every strategy with its default parameters. Strategies that
        fail are logged and left out.
        """
        results: Dict[str, BacktestResult] = {}
        if not candles:
            return results
        for strategy in strategies:
            try:
                results[strategy.name] = self.engine.run(strategy, candles, self.config)
            except Exception as e:
                logger.warning("Error evaluating {}: {}", strategy.name, e)
        return results

    def select(
        self,
        strategies: Sequence[Strategy],
        candles: Sequence[Candle],
        lookback: int = DEFAULT_LOOKBACK,
    ) -> StrategySelection:
        phase = classify_market(candles, lookback)
        results = self.evaluate(strategies, candles)
        scores = {name: r.metrics.sharpe_ratio + regime_bonus(name, phase) for name, r in results.items()}
        best = select_best_strategy(results, phase)
        logger.info("Market phase {}: selected {!r} out of {} strategies", phase.value, best, len(results))
        return StrategySelection(phase=phase, best_strategy=best, scores=scores, results=results)
