"""
The contract between trading strategies and the backtest engine.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional, Sequence

from quantsim.backtester.portfolio import VirtualPortfolio
from quantsim.data.candle import Candle
from quantsim.parameters import ParamValue, get_param


class Signal(str, Enum):
    BUY = "Buy"
    SELL = "Sell"
    HOLD = "Hold"


class Strategy(ABC):
    """
    Abstract base class for all trading strategies.

    A strategy instance carries mutable per-run state, so every concurrent
    backtest needs its own instance. `initialize` must reset that state.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError

    @property
    def description(self) -> str:
        return ""

    @abstractmethod
    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        """
        Resets the strategy's state and reads its parameters.

        Args:
            parameters (Mapping[str, ParamValue]): Named parameter values.
                Unknown names are ignored; missing names use the strategy's
                defaults.
        """
        raise NotImplementedError

    @abstractmethod
    def on_candle(self, candle: Candle, portfolio: VirtualPortfolio, history: Sequence[Candle]) -> Signal:
        """
        Decides what to do on a new candle.

        Args:
            candle (Candle): The candle just closed.
            portfolio (VirtualPortfolio): The simulated account.
            history (Sequence[Candle]): All candles up to and including
                `candle`; never anything later.

        Returns:
            Signal: BUY, SELL or HOLD.
        """
        raise NotImplementedError


class RateLimitedStrategy(Strategy):
    """
    Wraps a strategy so that new entries are only allowed once
    `minimum_holding_hours` have passed since the wrapped strategy last
    signalled a BUY or SELL the portfolio could act on. Signals while a
    trade is open always pass, so exits are never delayed.
    """
    DEFAULT_MINIMUM_HOLDING_HOURS = 4

    def __init__(self, inner: Strategy):
        self._inner = inner
        self._minimum_holding_hours: float = self.DEFAULT_MINIMUM_HOLDING_HOURS
        self._last_signal_time: Optional[datetime] = None

    @property
    def inner(self) -> Strategy:
        return self._inner

    @property
    def name(self) -> str:
        return self._inner.name

    @property
    def description(self) -> str:
        return self._inner.description

    @property
    def minimum_holding_hours(self) -> float:
        return self._minimum_holding_hours

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self._minimum_holding_hours = get_param(
            parameters, "minimum_holding_hours", self.DEFAULT_MINIMUM_HOLDING_HOURS
        )
        self._last_signal_time = None
        self._inner.initialize(parameters)

    def can_trade(self, now: datetime) -> bool:
        if self._last_signal_time is None:
            return True
        return (now - self._last_signal_time).total_seconds() / 3600.0 >= self._minimum_holding_hours

    def on_candle(self, candle: Candle, portfolio: VirtualPortfolio, history: Sequence[Candle]) -> Signal:
        if portfolio.open_trade is None and not self.can_trade(candle.timestamp):
            return Signal.HOLD
        signal = self._inner.on_candle(candle, portfolio, history)
        if _is_actionable(signal, portfolio):
            self._last_signal_time = candle.timestamp
        return signal


def _is_actionable(signal: Signal, portfolio: VirtualPortfolio) -> bool:
    """Whether the engine would act on `signal` given the portfolio state."""
    if signal == Signal.BUY:
        return portfolio.open_trade is None and portfolio.cash_balance > 0
    if signal == Signal.SELL:
        return portfolio.open_trade is not None
    return False
