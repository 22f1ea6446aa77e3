"""
Ready-made strategies built on the indicator library.

Each class keeps its settings on the instance and resets them in
`initialize`, so one instance must be created per concurrent backtest.
`ALL_STRATEGIES` maps each strategy's name to a factory.
"""
from typing import Callable, Dict, Mapping, NamedTuple, Optional, Sequence

import numpy as np

from quantsim.analysis.regime import detect_regime
from quantsim.backtester.portfolio import VirtualPortfolio
from quantsim.backtester.risk import stop_loss_from_atr, take_profit_from_risk_reward, trailing_stop
from quantsim.data.aggregator import to_daily, to_weekly
from quantsim.data.candle import Candle, closes, highs, lows
from quantsim.indicators.factory import (
    OptionalSeries, atr, bollinger_bands, donchian_channel, ema, macd, rsi, sma,
)
from quantsim.parameters import ParamValue, get_param
from quantsim.strategy import RateLimitedStrategy, Signal, Strategy


def _crossover(fast: OptionalSeries, slow: OptionalSeries) -> Optional[Signal]:
    """
    BUY when `fast` crossed above `slow` on the last value, SELL when it
    crossed below, None otherwise or when any value is undefined.
    """
    if len(fast) < 2:
        return None
    f_prev, f_last, s_prev, s_last = fast[-2], fast[-1], slow[-2], slow[-1]
    if None in (f_prev, f_last, s_prev, s_last):
        return None
    if f_prev <= s_prev and f_last > s_last:
        return Signal.BUY
    if f_prev >= s_prev and f_last < s_last:
        return Signal.SELL
    return None


def _average_volume(history: Sequence[Candle], period: int) -> float:
    window = history[-min(period, len(history)):]
    return float(np.mean([c.volume for c in window]))


class HoldStrategy(Strategy):
    """Never trades."""

    @property
    def name(self) -> str:
        return "Hold"

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        pass

    def on_candle(self, candle, portfolio, history) -> Signal:
        return Signal.HOLD


class BuyAndHoldStrategy(Strategy):
    """Buys on the first candle and keeps the position to the end."""

    def __init__(self):
        self._bought = False

    @property
    def name(self) -> str:
        return "Buy & Hold"

    @property
    def description(self) -> str:
        return "Buys once at the start and holds until the end of the backtest."

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self._bought = False

    def on_candle(self, candle, portfolio, history) -> Signal:
        if self._bought or portfolio.open_trade is not None:
            return Signal.HOLD
        self._bought = True
        return Signal.BUY


class SmaCrossoverStrategy(Strategy):
    """Golden cross / death cross of a fast and a slow SMA."""

    def __init__(self):
        self.initialize({})

    @property
    def name(self) -> str:
        return "SMA Crossover"

    @property
    def description(self) -> str:
        return (f"Buys when the {self.fast_period}-period SMA crosses above the {self.slow_period}-period SMA; "
                f"sells on the reverse crossover.")

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self.fast_period = get_param(parameters, "fast_period", 50)
        self.slow_period = get_param(parameters, "slow_period", 200)

    def on_candle(self, candle, portfolio, history) -> Signal:
        if len(history) < self.slow_period + 1:
            return Signal.HOLD
        prices = closes(history)
        cross = _crossover(sma(prices, self.fast_period), sma(prices, self.slow_period))
        if cross == Signal.BUY and portfolio.open_trade is None:
            return Signal.BUY
        if cross == Signal.SELL and portfolio.open_trade is not None:
            return Signal.SELL
        return Signal.HOLD


class RsiMeanReversionStrategy(Strategy):
    """
    Buys oversold RSI readings. Exits when RSI turns overbought, or when it
    is back at 50 or above with the position at least 1% in profit.
    """

    def __init__(self):
        self.initialize({})

    @property
    def name(self) -> str:
        return "RSI Mean Reversion"

    @property
    def description(self) -> str:
        return (f"Buys when RSI({self.rsi_period}) < {self.oversold}; sells when RSI > {self.overbought} "
                f"or RSI >= 50 with at least 1% profit.")

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self.rsi_period = get_param(parameters, "rsi_period", 14)
        self.oversold = get_param(parameters, "oversold", 35.0)
        self.overbought = get_param(parameters, "overbought", 65.0)

    def on_candle(self, candle, portfolio, history) -> Signal:
        if len(history) < self.rsi_period + 10:
            return Signal.HOLD
        current = rsi(closes(history), self.rsi_period)[-1]
        if current is None:
            return Signal.HOLD

        trade = portfolio.open_trade
        if trade is None:
            return Signal.BUY if current < self.oversold else Signal.HOLD

        if current > self.overbought:
            return Signal.SELL
        if current >= 50.0 and (candle.close - trade.entry_price) / trade.entry_price >= 0.01:
            return Signal.SELL
        return Signal.HOLD


class MacdTrendStrategy(Strategy):
    """MACD line crossing its signal line."""

    def __init__(self):
        self.initialize({})

    @property
    def name(self) -> str:
        return "MACD Trend"

    @property
    def description(self) -> str:
        return (f"Buys when MACD({self.fast_period},{self.slow_period},{self.signal_period}) crosses above "
                f"its signal line; sells on the reverse crossover.")

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self.fast_period = get_param(parameters, "fast_period", 12)
        self.slow_period = get_param(parameters, "slow_period", 26)
        self.signal_period = get_param(parameters, "signal_period", 9)

    def on_candle(self, candle, portfolio, history) -> Signal:
        if len(history) < self.slow_period + self.signal_period + 1:
            return Signal.HOLD
        result = macd(closes(history), self.fast_period, self.slow_period, self.signal_period)
        cross = _crossover(result.macd, result.signal)
        if cross == Signal.BUY and portfolio.open_trade is None:
            return Signal.BUY
        if cross == Signal.SELL and portfolio.open_trade is not None:
            return Signal.SELL
        return Signal.HOLD


class BollingerBandsStrategy(Strategy):
    """
    Buys a close breaking above the upper band on above-average volume.
    Exits on the stop loss, the take profit, or a close at the lower band.
    """

    def __init__(self):
        self.initialize({})

    @property
    def name(self) -> str:
        return "Bollinger Bands Breakout"

    @property
    def description(self) -> str:
        return "Buys upper-band breakouts with volume confirmation; sells on a lower-band touch or SL/TP."

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self.period = get_param(parameters, "bollinger_period", 20)
        self.std_dev_multiplier = get_param(parameters, "std_dev_multiplier", 2.0)
        self.stop_loss_percent = get_param(parameters, "stop_loss_percent", 0.02)
        self.take_profit_percent = get_param(parameters, "take_profit_percent", 0.04)
        self.volume_period = get_param(parameters, "volume_avg_period", 20)

    def on_candle(self, candle, portfolio, history) -> Signal:
        if len(history) < self.period + 1:
            return Signal.HOLD
        bands = bollinger_bands(closes(history), self.period, self.std_dev_multiplier)
        upper, lower = bands.upper, bands.lower
        if upper[-1] is None or lower[-1] is None or upper[-2] is None:
            return Signal.HOLD

        info = portfolio.open_trade_info
        if portfolio.open_trade is not None and info is not None:
            if info.stop_loss == 0:
                info.stop_loss = info.entry_price * (1 - self.stop_loss_percent)
                info.take_profit = info.entry_price * (1 + self.take_profit_percent)
            if candle.low <= info.stop_loss:
                return Signal.SELL
            if info.take_profit is not None and candle.high >= info.take_profit:
                return Signal.SELL
            if candle.close <= lower[-1]:
                return Signal.SELL
            return Signal.HOLD

        high_volume = candle.volume > _average_volume(history, self.volume_period)
        broke_above = history[-2].close <= upper[-2] and candle.close > upper[-1]
        return Signal.BUY if broke_above and high_volume else Signal.HOLD


class SupportResistanceStrategy(Strategy):
    """
    Buys a close clearly above the highest high of the lookback window, with
    an ATR-based stop and a risk/reward target. Exits on either level or a
    close below support.
    """

    def __init__(self):
        self.initialize({})

    @property
    def name(self) -> str:
        return "Support/Resistance Breakout"

    @property
    def description(self) -> str:
        return "Trades breakouts of dynamic support/resistance levels with an ATR-based stop loss."

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self.lookback_period = get_param(parameters, "lookback_period", 50)
        self.breakout_threshold = get_param(parameters, "breakout_threshold", 0.005)
        self.volume_multiplier = get_param(parameters, "volume_multiplier", 1.0)
        self.risk_reward_ratio = get_param(parameters, "risk_reward_ratio", 2.0)
        self.atr_period = get_param(parameters, "atr_period", 14)

    def on_candle(self, candle, portfolio, history) -> Signal:
        if len(history) < self.lookback_period + self.atr_period + 1:
            return Signal.HOLD
        current_atr = atr(highs(history), lows(history), closes(history), self.atr_period)[-1]
        if current_atr is None:
            return Signal.HOLD

        last = len(history) - 1
        window = history[max(0, last - self.lookback_period):last]

        info = portfolio.open_trade_info
        if portfolio.open_trade is not None and info is not None:
            if info.stop_loss == 0:
                info.stop_loss = stop_loss_from_atr(info.entry_price, current_atr, 1.5)
                info.take_profit = take_profit_from_risk_reward(
                    info.entry_price, info.stop_loss, self.risk_reward_ratio
                )
            if candle.low <= info.stop_loss:
                return Signal.SELL
            if info.take_profit is not None and candle.high >= info.take_profit:
                return Signal.SELL
            support = min(c.low for c in window)
            if candle.close < support * (1 - self.breakout_threshold):
                return Signal.SELL
            return Signal.HOLD

        if not window:
            return Signal.HOLD
        resistance = max(c.high for c in window)
        if resistance <= 0:
            return Signal.HOLD

        # A multiplier of 0 or less switches the volume filter off.
        high_volume = (
            self.volume_multiplier <= 0
            or candle.volume >= _average_volume(history, self.lookback_period) * self.volume_multiplier
        )
        breakout = candle.close > resistance * (1 + self.breakout_threshold)
        return Signal.BUY if breakout and high_volume else Signal.HOLD


class TripleEmaRsiStrategy(Strategy):
    """
    Trend following on aligned fast, mid and slow EMAs with RSI momentum,
    protected by a trailing stop that only ratchets upwards.
    """

    def __init__(self):
        self.initialize({})

    @property
    def name(self) -> str:
        return "Triple EMA + RSI"

    @property
    def description(self) -> str:
        return "Buys when fast EMA > mid EMA > slow EMA with RSI above 50; exits on a trailing stop or trend reversal."

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self.fast_period = get_param(parameters, "fast_ema_period", 8)
        self.mid_period = get_param(parameters, "mid_ema_period", 21)
        self.slow_period = get_param(parameters, "slow_ema_period", 55)
        self.rsi_period = get_param(parameters, "rsi_period", 14)
        self.trailing_stop_percent = get_param(parameters, "trailing_stop_percent", 0.05)

    def on_candle(self, candle, portfolio, history) -> Signal:
        if len(history) < self.slow_period + self.rsi_period + 2:
            return Signal.HOLD
        prices = closes(history)
        fast = ema(prices, self.fast_period)[-1]
        mid = ema(prices, self.mid_period)[-1]
        slow = ema(prices, self.slow_period)[-1]
        momentum = rsi(prices, self.rsi_period)[-1]
        if None in (fast, mid, slow, momentum):
            return Signal.HOLD

        info = portfolio.open_trade_info
        if portfolio.open_trade is not None and info is not None:
            info.highest_price = max(info.highest_price, candle.high)
            level = trailing_stop(info.highest_price, self.trailing_stop_percent)
            if info.trailing_stop is None or level > info.trailing_stop:
                info.trailing_stop = level
            if candle.low <= info.trailing_stop:
                return Signal.SELL
            if fast < mid or momentum < 40.0:
                return Signal.SELL
            return Signal.HOLD

        if fast > mid > slow and momentum > 50.0:
            return Signal.BUY
        return Signal.HOLD


class VolatilityBreakoutStrategy(Strategy):
    """
    Turtle-style Donchian breakout. The entry compares the close with the
    previous candle's channel so the current high is never part of the
    level it has to break.
    """

    def __init__(self):
        self.initialize({})

    @property
    def name(self) -> str:
        return "Volatility Breakout"

    @property
    def description(self) -> str:
        return "Buys Donchian channel breakouts with an ATR-based stop loss."

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self.channel_period = get_param(parameters, "channel_period", 20)
        self.atr_period = get_param(parameters, "atr_period", 14)
        self.atr_multiplier = get_param(parameters, "atr_multiplier", 2.0)

    def on_candle(self, candle, portfolio, history) -> Signal:
        if len(history) < max(self.channel_period, self.atr_period) + 1:
            return Signal.HOLD
        high_prices = highs(history)
        low_prices = lows(history)
        channel = donchian_channel(high_prices, low_prices, self.channel_period)
        current_atr = atr(high_prices, low_prices, closes(history), self.atr_period)[-1]
        if channel.upper[-1] is None or channel.lower[-1] is None or current_atr is None:
            return Signal.HOLD

        info = portfolio.open_trade_info
        if portfolio.open_trade is not None and info is not None:
            if info.stop_loss == 0:
                info.stop_loss = stop_loss_from_atr(info.entry_price, current_atr, self.atr_multiplier)
            if candle.low <= info.stop_loss:
                return Signal.SELL
            previous_lower = channel.lower[-2]
            if previous_lower is not None and candle.close <= previous_lower:
                return Signal.SELL
            return Signal.HOLD

        previous_upper = channel.upper[-2]
        if previous_upper is not None and candle.close > previous_upper:
            return Signal.BUY
        return Signal.HOLD

class _BullBand(NamedTuple):
    lower: float
    previous_lower: float
    previous_daily_close: float
    daily_sma: float


def _bull_band(history: Sequence[Candle]) -> Optional[_BullBand]:
    """
    The Bull Market Support Band: the lower of the 20-week SMA and the
    21-week EMA, now and one week earlier, plus the 200-day SMA. Needs 200
    daily and 22 weekly closes.
    """
    if len(history) < 50:
        return None
    daily = to_daily(list(history))
    weekly = to_weekly(list(history))
    if len(daily) < 200 or len(weekly) < 21:
        return None

    daily_sma = sma(closes(daily), 200)[-1]
    weekly_closes = closes(weekly)
    sma_20w = sma(weekly_closes, 20)
    ema_21w = ema(weekly_closes, 21)
    if None in (daily_sma, sma_20w[-1], ema_21w[-1], sma_20w[-2], ema_21w[-2]):
        return None
    return _BullBand(
        lower=min(sma_20w[-1], ema_21w[-1]),
        previous_lower=min(sma_20w[-2], ema_21w[-2]),
        previous_daily_close=daily[-2].close,
        daily_sma=daily_sma,
    )


class BtcMacroMaStrategy(Strategy):
    """
    Trades the Bull Market Support Band on daily and weekly aggregates of the
    incoming candles. Enters when the price moves from below the band into
    or above it, exits on the reverse move or on a trailing stop.
    """

    def __init__(self):
        self.initialize({})

    @property
    def name(self) -> str:
        return "BTC Macro MA Trend (Bull Band)"

    @property
    def description(self) -> str:
        return ("Buys when the price climbs back into the 20W SMA / 21W EMA band from below; sells when it "
                "falls below the band or gives back the trailing stop.")

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        self.use_200d_filter = get_param(parameters, "use_200d_filter", False)
        self.use_trailing = get_param(parameters, "use_trailing", True)
        self.trail_percent = get_param(parameters, "trail_percent", 5.0)
        self._trail_base: Optional[float] = None

    def _flips(self, candle: Candle, band: _BullBand):
        was_below = band.previous_daily_close < band.previous_lower
        flip_up = was_below and candle.close >= band.lower
        flip_down = not was_below and candle.close < band.lower
        return flip_up, flip_down

    def _passes_filter(self, candle: Candle, band: _BullBand) -> bool:
        return not self.use_200d_filter or candle.close > band.daily_sma

    def _trailing_stop_hit(self, candle: Candle, portfolio: VirtualPortfolio) -> bool:
        if not self.use_trailing or portfolio.open_trade is None:
            return False
        self._trail_base = candle.high if self._trail_base is None else max(self._trail_base, candle.high)
        if candle.close < trailing_stop(self._trail_base, self.trail_percent / 100.0):
            self._trail_base = None
            return True
        return False

    def on_candle(self, candle, portfolio, history) -> Signal:
        band = _bull_band(history)
        if band is None:
            return Signal.HOLD
        flip_up, flip_down = self._flips(candle, band)

        if self._trailing_stop_hit(candle, portfolio):
            return Signal.SELL
        if portfolio.open_trade is not None and flip_down:
            self._trail_base = None
            return Signal.SELL
        if flip_up and self._passes_filter(candle, band) and portfolio.open_trade is None:
            self._trail_base = None
            return Signal.BUY
        return Signal.HOLD


class BtcMacroMaScaleInStrategy(BtcMacroMaStrategy):
    """
    The Bull Band strategy with stepped take-profit levels. Reaching a level
    arms a re-entry: after an exit, a pullback of `pullback_percent` from the
    peak followed by a new move into the band opens a fresh position.
    """

    @property
    def name(self) -> str:
        return "BTC Macro MA Trend + TP Scale-in"

    @property
    def description(self) -> str:
        return (f"Bull Band trend entries with take-profit steps every {self.tp_step_percent:g}% and "
                f"re-entry after a {self.pullback_percent:g}% pullback.")

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        super().initialize(parameters)
        self.tp_step_percent = get_param(parameters, "tp_step_percent", 10.0)
        self.max_steps = get_param(parameters, "max_steps", 5)
        self.use_scale_in = get_param(parameters, "use_scale_in", True)
        self.pullback_percent = get_param(parameters, "pullback_percent", 6.0)
        self._entry_price: Optional[float] = None
        self._next_step = 1
        self._last_peak: Optional[float] = None
        self._can_add = False
        self._pullback_seen = False

    @property
    def can_add(self) -> bool:
        return self._can_add

    def _enter(self, candle: Candle) -> Signal:
        self._entry_price = candle.close
        self._next_step = 1
        self._can_add = False
        self._pullback_seen = False
        self._trail_base = None
        return Signal.BUY

    def _exit(self) -> Signal:
        self._trail_base = None
        self._entry_price = None
        self._next_step = 1
        return Signal.SELL

    def on_candle(self, candle, portfolio, history) -> Signal:
        band = _bull_band(history)
        if band is None:
            return Signal.HOLD
        flip_up, flip_down = self._flips(candle, band)
        in_position = portfolio.open_trade is not None

        if in_position:
            self._last_peak = candle.high if self._last_peak is None else max(self._last_peak, candle.high)
            if self._entry_price is not None and self._next_step <= self.max_steps:
                target = self._entry_price * (1.0 + self.tp_step_percent * self._next_step / 100.0)
                if candle.close >= target:
                    self._next_step += 1
                    self._can_add = True

        if self._trailing_stop_hit(candle, portfolio):
            return self._exit()
        if in_position and flip_down:
            return self._exit()

        if not in_position and self._can_add and self.use_scale_in and self._last_peak is not None:
            if candle.low <= self._last_peak * (1.0 - self.pullback_percent / 100.0):
                self._pullback_seen = True
            if self._pullback_seen and flip_up and self._passes_filter(candle, band):
                return self._enter(candle)

        if flip_up and self._passes_filter(candle, band) and not in_position:
            return self._enter(candle)
        return Signal.HOLD


class AdaptiveMultiStrategy(Strategy):
    """
    Delegates to the strategy the regime detector recommends. The active
    strategy only changes while flat, so an open trade is always managed by
    the strategy that opened it.
    """

    def __init__(self):
        self._strategies: Dict[str, Strategy] = {
            s.name: s for s in (
                MacdTrendStrategy(),
                TripleEmaRsiStrategy(),
                BollingerBandsStrategy(),
                SupportResistanceStrategy(),
            )
        }
        self._fallback = "Support/Resistance Breakout"
        self._active: Optional[Strategy] = None

    @property
    def name(self) -> str:
        return "Adaptive Multi-Strategy"

    @property
    def description(self) -> str:
        return "Switches between " + ", ".join(self._strategies) + " based on the detected market regime."

    @property
    def active_strategy(self) -> Optional[Strategy]:
        return self._active

    def initialize(self, parameters: Mapping[str, ParamValue]) -> None:
        for strategy in self._strategies.values():
            strategy.initialize(parameters)
        self._active = None

    def on_candle(self, candle, portfolio: VirtualPortfolio, history) -> Signal:
        if portfolio.open_trade is None:
            regime = detect_regime(history, len(history) - 1)
            if regime is not None:
                self._active = self._strategies.get(regime.recommended_strategy, self._strategies[self._fallback])
        if self._active is None:
            self._active = self._strategies[self._fallback]
        return self._active.on_candle(candle, portfolio, history)


ALL_STRATEGIES: Dict[str, Callable[[], Strategy]] = {
    "Buy & Hold": BuyAndHoldStrategy,
    "SMA Crossover": SmaCrossoverStrategy,
    "RSI Mean Reversion": lambda: RateLimitedStrategy(RsiMeanReversionStrategy()),
    "MACD Trend": MacdTrendStrategy,
    "Bollinger Bands Breakout": BollingerBandsStrategy,
    "Support/Resistance Breakout": SupportResistanceStrategy,
    "Triple EMA + RSI": TripleEmaRsiStrategy,
    "Volatility Breakout": VolatilityBreakoutStrategy,
    "Adaptive Multi-Strategy": AdaptiveMultiStrategy,
    "BTC Macro MA Trend (Bull Band)": BtcMacroMaStrategy,
    "BTC Macro MA Trend + TP Scale-in": BtcMacroMaScaleInStrategy,
    "Hold": HoldStrategy,
}


def create_strategy(name: str) -> Strategy:
    """
    Builds a fresh instance of a named strategy.

    Raises:
        ValueError: If no strategy is registered under `name`.
    """
    if name not in ALL_STRATEGIES:
        raise ValueError(f"Strategy '{name}' is not registered. Available: {list(ALL_STRATEGIES.keys())}")
    return ALL_STRATEGIES[name]()
