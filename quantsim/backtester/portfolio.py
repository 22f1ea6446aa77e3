"""
The virtual portfolio a backtest mutates: cash, holdings, the open position
with its risk state, and the ledger of closed trades.
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel

from quantsim.backtester.results import Trade, TradeDirection


class OpenTradeInfo(BaseModel):
    """
    Risk-management state of the open trade. Strategies update the levels;
    the portfolio discards the object when the trade closes.

    Args:
        entry_price (float): Fill price of the entry.
        stop_loss (float): Stop level; 0 means not set yet.
        take_profit (Optional[float]): Target level, if any.
        highest_price (float): Highest price seen since entry.
        trailing_stop (Optional[float]): Trailing stop level, if any.
    """
    entry_price: float
    stop_loss: float = 0.0
    take_profit: Optional[float] = None
    highest_price: float
    trailing_stop: Optional[float] = None


class VirtualPortfolio:
    """
    Cash and holdings of a single simulated account. At most one trade is
    open at a time. Each instance numbers its trades from 1.
    """

    def __init__(self, initial_balance: float):
        self._initial_balance = initial_balance
        self.cash_balance = initial_balance
        self.holdings: Dict[str, float] = {}
        self.open_trade: Optional[Trade] = None
        self.open_trade_info: Optional[OpenTradeInfo] = None
        self._trades: List[Trade] = []
        self._next_trade_id = 1

    @property
    def initial_balance(self) -> float:
        return self._initial_balance

    @property
    def trades(self) -> List[Trade]:
        """The closed-trade ledger, oldest first."""
        return list(self._trades)

    def quantity(self, symbol: str) -> float:
        return self.holdings.get(symbol, 0.0)

    def total_value(self, symbol: str, price: float) -> float:
        """Cash plus the holding of `symbol` marked at `price`."""
        return self.cash_balance + self.quantity(symbol) * price

    def can_buy(self, price: float, quantity: float, fee_rate: float) -> bool:
        cost = price * quantity
        return self.cash_balance >= cost + cost * fee_rate

    def can_sell(self, symbol: str, quantity: float) -> bool:
        return self.quantity(symbol) >= quantity

    def execute_buy(self, symbol: str, price: float, quantity: float, fee: float, timestamp: datetime) -> Trade:
        """
        Debits cost plus fee, adds the holding and opens a new trade.

        Raises:
            RuntimeError: If a trade is already open.
        """
        if self.open_trade is not None:
            raise RuntimeError(f"Trade {self.open_trade.id} is still open; close it before buying again.")

        self.cash_balance -= price * quantity + fee
        self.holdings[symbol] = self.quantity(symbol) + quantity

        trade = Trade(
            id=self._next_trade_id,
            symbol=symbol,
            direction=TradeDirection.LONG,
            entry_time=timestamp,
            entry_price=price,
            quantity=quantity,
            fees=fee,
        )
        self._next_trade_id += 1
        self.open_trade = trade
        self.open_trade_info = OpenTradeInfo(entry_price=price, highest_price=price)
        return trade

    def execute_sell(
        self, symbol: str, price: float, quantity: float, fee: float, timestamp: datetime
    ) -> Optional[Trade]:
        """
        Credits proceeds minus fee and reduces the holding. If a trade is open
        it is finalized and moved to the ledger.

        Returns:
            Optional[Trade]: The closed trade, or None when none was open.
        """
        proceeds = price * quantity
        self.cash_balance += proceeds - fee

        remaining = self.quantity(symbol) - quantity
        if remaining <= 0:
            self.holdings.pop(symbol, None)
        else:
            self.holdings[symbol] = remaining

        trade = self.open_trade
        if trade is None:
            return None

        entry_cost = trade.entry_price * trade.quantity
        trade.exit_time = timestamp
        trade.exit_price = price
        trade.fees += fee
        trade.profit_loss = proceeds - entry_cost - trade.fees
        trade.profit_loss_percentage = trade.profit_loss / entry_cost * 100 if entry_cost else 0.0

        self._trades.append(trade)
        self.open_trade = None
        self.open_trade_info = None
        return trade
