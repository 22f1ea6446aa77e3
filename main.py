"""
Main entry point for running a quantsim backtest.

Usage: python main.py [config.yaml]
"""
import functools
import os
import sys

# Ensure the project root is in the python path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from loguru import logger

import quantsim
from quantsim.report import format_summary


def main(config_path: str = "config.yaml") -> int:
    """
    Main execution function.
    """
    print("--- quantsim: Backtest & Optimization ---")

    try:
        # 1. Load configuration and data
        config = quantsim.load_config(config_path)
        candles = quantsim.load_candles(config.data)
        print(f"Loaded {len(candles)} candles for {config.data.symbol} from {config.data.path}")

        timeframe = config.data.timeframe.value
        engine = quantsim.BacktestEngine()
        factory = functools.partial(quantsim.create_strategy, config.strategy)

        # 2. Single backtest with the configured parameters
        result = engine.run(factory(), candles, config.backtest, config.strategy_parameters, timeframe)
        print(format_summary(result))

        # 3. Optional grid search and walk-forward analysis
        optimization = None
        walk_forward = None
        if config.optimization is not None:
            opt = config.optimization
            optimizer = quantsim.StrategyOptimizer(factory, engine, opt.max_workers)
            optimization = optimizer.optimize(candles, opt.parameter_grid, config.backtest, opt.metric,
                                              timeframe=timeframe)
            print(f"Best parameters ({opt.metric} = {optimization.best_metric_value:.4f}): "
                  f"{optimization.best_parameters}")

            if config.walk_forward is not None:
                wfo = quantsim.WalkForwardOptimizer(factory, engine, opt.max_workers)
                walk_forward = wfo.optimize(candles, opt.parameter_grid, config.backtest,
                                            config.walk_forward, opt.metric)
                print(f"Walk-forward: IS {walk_forward.average_in_sample_return:+.2f}% | "
                      f"OOS {walk_forward.average_out_of_sample_return:+.2f}% | "
                      f"degradation {walk_forward.degradation:+.2f}%")

        # 4. Optional run across the standard market eras
        multi_period = None
        if config.multi_period:
            multi_period = quantsim.MultiPeriodBacktester(engine).run(factory(), candles, config.backtest)
            print(f"Multi-period: {len(multi_period.period_results)} eras, "
                  f"compounded return {multi_period.overall_return:+.2f}%")

        # 5. Optional choice among candidate strategies for the current market
        if config.strategy_candidates:
            candidates = [quantsim.create_strategy(name) for name in config.strategy_candidates]
            selection = quantsim.StrategySelector(engine).select(candidates, candles)
            print(f"Selected for the {selection.phase.value} market: {selection.best_strategy or 'none'}")

        # 6. Generate the final report
        quantsim.generate_report(result, config.report_dir, optimization=optimization,
                                 walk_forward=walk_forward, multi_period=multi_period)
        print(f"Report generated in '{config.report_dir}'.")
    except (FileNotFoundError, ValueError) as e:
        logger.error("Run aborted: {}", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else "config.yaml"))
