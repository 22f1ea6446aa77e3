"""
Fill-price, fee and quantity rules for simulated orders.
"""
from typing import Optional

from quantsim.config import BacktestConfig, PositionSizingMode
from quantsim.data.candle import Candle


class OrderSimulator:
    """
    Converts a signal into a fill price, a fee and a quantity under a given
    BacktestConfig. Holds no state besides the configuration.
    """

    def __init__(self, config: BacktestConfig):
        self._config = config

    @property
    def config(self) -> BacktestConfig:
        return self._config

    def market_buy(self, candle: Candle) -> float:
        """Market buys fill at the close plus slippage."""
        return candle.close * (1 + self._config.slippage_rate)

    def market_sell(self, candle: Candle) -> float:
        """Market sells fill at the close minus slippage."""
        return candle.close * (1 - self._config.slippage_rate)

    def limit_buy(self, candle: Candle, limit_price: float) -> Optional[float]:
        """
        Returns the fill price of a limit buy, or None if the candle never
        traded down to the limit.
        """
        if candle.low <= limit_price:
            return min(limit_price, candle.high)
        return None

    def limit_sell(self, candle: Candle, limit_price: float) -> Optional[float]:
        """
        Returns the fill price of a limit sell, or None if the candle never
        traded up to the limit.
        """
        if candle.high >= limit_price:
            return max(limit_price, candle.low)
        return None

    def taker_fee(self, trade_value: float) -> float:
        return trade_value * self._config.taker_fee_rate

    def maker_fee(self, trade_value: float) -> float:
        return trade_value * self._config.maker_fee_rate

    def buy_quantity(self, available_cash: float, price: float, portfolio_value: float) -> float:
        """
        Calculates how much to buy at `price`.

        The desired trade value comes from the sizing mode, is capped by the
        maximum position size when one is configured, and the resulting
        quantity is capped again to what the cash can pay for including the
        estimated fee and slippage.

        Args:
            available_cash (float): Cash the portfolio can spend.
            price (float): Expected fill price.
            portfolio_value (float): Current total portfolio value.

        Returns:
            float: The quantity to buy; 0 means the signal should not trade.
        """
        if price <= 0 or available_cash <= 0:
            return 0.0

        config = self._config
        if config.position_sizing_mode == PositionSizingMode.PERCENTAGE_OF_PORTFOLIO:
            trade_value = portfolio_value * config.position_size
        else:
            trade_value = config.position_size

        if config.max_position_size_percent > 0:
            trade_value = min(trade_value, portfolio_value * config.max_position_size_percent)

        desired = trade_value / price
        affordable = available_cash / (price * (1 + config.taker_fee_rate + config.slippage_rate))
        return max(0.0, min(desired, affordable))
