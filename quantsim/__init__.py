"""
This __init__.py file exposes the public API of the quantsim framework.
"""

from .config import BacktestConfig, Config, OptimizationConfig, WalkForwardConfig
from .io import load_candles, load_config
from .backtester.engine import BacktestEngine
from .strategy import RateLimitedStrategy, Signal, Strategy
from .example_strategies import ALL_STRATEGIES, create_strategy
from .optimizer import StrategyOptimizer
from .walk_forward import WalkForwardOptimizer
from .analysis.multi_period import MultiPeriodBacktester
from .analysis.regime import detect_regime
from .analysis.selector import StrategySelector
from .metrics import register_objective
from .report import generate_report

__all__ = [
    "BacktestConfig",
    "Config",
    "OptimizationConfig",
    "WalkForwardConfig",
    "load_candles",
    "load_config",
    "BacktestEngine",
    "RateLimitedStrategy",
    "Signal",
    "Strategy",
    "ALL_STRATEGIES",
    "create_strategy",
    "StrategyOptimizer",
    "WalkForwardOptimizer",
    "MultiPeriodBacktester",
    "detect_regime",
    "StrategySelector",
    "register_objective",
    "generate_report",
]
