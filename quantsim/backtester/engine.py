"""
The event-driven backtest engine.

The engine walks the candles in order. On each candle the strategy sees only
the history up to and including that candle, the hard stop-loss may override
it, the resulting signal is filled through the OrderSimulator, and one
equity snapshot is recorded.
"""
from datetime import date
from typing import Mapping, Optional, Sequence

from loguru import logger

from quantsim.backtester.base import BaseBacktester
from quantsim.backtester.order_simulator import OrderSimulator
from quantsim.backtester.portfolio import VirtualPortfolio
from quantsim.backtester.results import BacktestResult, PortfolioSnapshot
from quantsim.config import BacktestConfig
from quantsim.data.candle import Candle, validate_candles
from quantsim.metrics import calculate_performance_metrics
from quantsim.parameters import ParamValue
from quantsim.strategy import Signal, Strategy


class _DailyLossGuard:
    """Tracks the portfolio value at the first candle of each calendar day."""

    def __init__(self, max_daily_loss_percent: float):
        self._limit = max_daily_loss_percent
        self._day: Optional[date] = None
        self._day_start_value = 0.0

    def blocks_entries(self, candle: Candle, value: float) -> bool:
        day = candle.timestamp.date()
        if day != self._day:
            self._day = day
            self._day_start_value = value
        if self._limit <= 0 or self._day_start_value <= 0:
            return False
        return (self._day_start_value - value) / self._day_start_value > self._limit


class BacktestEngine(BaseBacktester):
    """
    Simulates a long-only strategy with at most one open trade.

    The engine itself is stateless between runs; every call to `run` builds
    its own portfolio and order simulator.
    """

    def run(
        self,
        strategy: Strategy,
        candles: Sequence[Candle],
        config: BacktestConfig,
        parameters: Optional[Mapping[str, ParamValue]] = None,
        timeframe: str = "",
    ) -> BacktestResult:
        validate_candles(candles)
        if config.initial_balance <= 0:
            raise ValueError("Initial balance must be positive.")

        strategy.initialize(parameters or {})
        portfolio = VirtualPortfolio(config.initial_balance)
        simulator = OrderSimulator(config)
        guard = _DailyLossGuard(config.max_daily_loss_percent)
        symbol = candles[0].symbol
        equity_curve = []

        for i, candle in enumerate(candles):
            history = candles[:i + 1]

            if self._stop_loss_triggered(portfolio, candle, config):
                logger.debug(
                    "Hard stop-loss hit at {}: close {:.4f} vs entry {:.4f}",
                    candle.timestamp, candle.close, portfolio.open_trade.entry_price,
                )
                signal = Signal.SELL
            else:
                signal = strategy.on_candle(candle, portfolio, history)

            value = portfolio.total_value(symbol, candle.close)
            if guard.blocks_entries(candle, value) and signal == Signal.BUY:
                logger.debug("Daily loss limit reached on {}; entry ignored", candle.timestamp.date())
                signal = Signal.HOLD

            if signal == Signal.BUY:
                self._buy(portfolio, simulator, candle, symbol)
            elif signal == Signal.SELL:
                self._sell(portfolio, simulator, candle, symbol)

            position_value = portfolio.quantity(symbol) * candle.close
            equity_curve.append(PortfolioSnapshot(
                timestamp=candle.timestamp,
                total_value=portfolio.cash_balance + position_value,
                cash_balance=portfolio.cash_balance,
                position_value=position_value,
            ))

        last = candles[-1]
        if portfolio.open_trade is not None and portfolio.quantity(symbol) > 0:
            self._sell(portfolio, simulator, last, symbol)

        final_balance = portfolio.cash_balance + portfolio.quantity(symbol) * last.close
        trades = portfolio.trades
        metrics = calculate_performance_metrics(trades, equity_curve, config.initial_balance, final_balance)

        return BacktestResult(
            strategy_name=strategy.name,
            symbol=symbol,
            timeframe=timeframe,
            start_date=candles[0].timestamp,
            end_date=last.timestamp,
            initial_balance=config.initial_balance,
            final_balance=final_balance,
            metrics=metrics,
            trades=trades,
            equity_curve=equity_curve,
            config=config,
        )

    @staticmethod
    def _stop_loss_triggered(portfolio: VirtualPortfolio, candle: Candle, config: BacktestConfig) -> bool:
        trade = portfolio.open_trade
        if trade is None or config.max_loss_per_trade_percent <= 0 or trade.entry_price <= 0:
            return False
        return (candle.close - trade.entry_price) / trade.entry_price < -config.max_loss_per_trade_percent

    @staticmethod
    def _buy(portfolio: VirtualPortfolio, simulator: OrderSimulator, candle: Candle, symbol: str) -> None:
        if portfolio.open_trade is not None:
            return
        price = simulator.market_buy(candle)
        quantity = simulator.buy_quantity(
            portfolio.cash_balance, price, portfolio.total_value(symbol, candle.close)
        )
        if quantity <= 0 or not portfolio.can_buy(price, quantity, simulator.config.taker_fee_rate):
            return
        portfolio.execute_buy(symbol, price, quantity, simulator.taker_fee(price * quantity), candle.timestamp)

    @staticmethod
    def _sell(portfolio: VirtualPortfolio, simulator: OrderSimulator, candle: Candle, symbol: str) -> None:
        quantity = portfolio.quantity(symbol)
        if portfolio.open_trade is None or quantity <= 0:
            return
        price = simulator.market_sell(candle)
        portfolio.execute_sell(symbol, price, quantity, simulator.taker_fee(price * quantity), candle.timestamp)
