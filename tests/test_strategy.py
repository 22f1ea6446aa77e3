"""
Tests for the strategy contract, the rate limiter and the bundled strategies.
"""
from datetime import datetime, timedelta

import pytest

from quantsim.backtester.engine import BacktestEngine
from quantsim.backtester.portfolio import VirtualPortfolio
from quantsim.config import BacktestConfig
from quantsim.data.candle import Candle
from quantsim.example_strategies import (
    ALL_STRATEGIES, AdaptiveMultiStrategy, BtcMacroMaScaleInStrategy, BtcMacroMaStrategy, RsiMeanReversionStrategy,
    SmaCrossoverStrategy, VolatilityBreakoutStrategy, create_strategy,
)
from quantsim.parameters import get_param
from quantsim.strategy import RateLimitedStrategy, Signal, Strategy


def _at(timestamp: datetime) -> Candle:
    return Candle(timestamp=timestamp, open=100, high=100, low=100, close=100)


class AlwaysBuy(Strategy):
    """Buys whenever flat and sells whenever in a position."""

    @property
    def name(self) -> str:
        return "Always"

    def initialize(self, parameters):
        self.parameters = dict(parameters)

    def on_candle(self, candle, portfolio, history):
        return Signal.BUY if portfolio.open_trade is None else Signal.SELL


def test_strategy_is_abstract():
    with pytest.raises(TypeError):
        Strategy()


def test_get_param_coerces_to_default_type():
    assert get_param({"period": 20.0}, "period", 14) == 20
    assert isinstance(get_param({"period": 20.4}, "period", 14), int)
    assert get_param({"level": 30}, "level", 35.0) == 30.0
    assert isinstance(get_param({"level": 30}, "level", 35.0), float)
    assert get_param({}, "period", 14) == 14
    assert get_param({"use_filter": 1.0}, "use_filter", False) is True
    assert get_param({"use_filter": 0}, "use_filter", True) is False


def test_rate_limiter_blocks_entries_within_window():
    limited = RateLimitedStrategy(AlwaysBuy())
    limited.initialize({"minimum_holding_hours": 4})
    portfolio = VirtualPortfolio(1000)
    t0 = datetime(2024, 1, 1)

    assert limited.can_trade(t0)
    assert limited.on_candle(_at(t0), portfolio, [_at(t0)]) == Signal.BUY
    assert not limited.can_trade(t0 + timedelta(hours=3))
    assert limited.on_candle(_at(t0 + timedelta(hours=3)), portfolio, []) == Signal.HOLD
    assert limited.on_candle(_at(t0 + timedelta(hours=4)), portfolio, []) == Signal.BUY


def test_rate_limiter_never_delays_exits():
    limited = RateLimitedStrategy(AlwaysBuy())
    limited.initialize({"minimum_holding_hours": 24})
    portfolio = VirtualPortfolio(1000)
    t0 = datetime(2024, 1, 1)

    limited.on_candle(_at(t0), portfolio, [])
    portfolio.execute_buy("BTCUSDT", 100.0, 1.0, 0.0, t0)
    assert limited.on_candle(_at(t0 + timedelta(hours=1)), portfolio, []) == Signal.SELL


def test_rate_limiter_forwards_parameters_and_resets():
    inner = AlwaysBuy()
    limited = RateLimitedStrategy(inner)
    limited.initialize({"minimum_holding_hours": 2, "period": 5})
    assert limited.minimum_holding_hours == 2
    assert inner.parameters == {"minimum_holding_hours": 2, "period": 5}
    assert limited.name == "Always"

    limited.on_candle(_at(datetime(2024, 1, 1)), VirtualPortfolio(1000), [])
    limited.initialize({})
    assert limited.minimum_holding_hours == RateLimitedStrategy.DEFAULT_MINIMUM_HOLDING_HOURS
    assert limited.can_trade(datetime(2024, 1, 1))


class SellWhenFlat(Strategy):
    """Signals SELL on every candle, which a flat portfolio cannot act on."""

    @property
    def name(self) -> str:
        return "Sell"

    def initialize(self, parameters):
        pass

    def on_candle(self, candle, portfolio, history):
        return Signal.SELL


def test_rate_limiter_ignores_signals_the_portfolio_cannot_act_on():
    limited = RateLimitedStrategy(SellWhenFlat())
    limited.initialize({"minimum_holding_hours": 4})
    t0 = datetime(2024, 1, 1)

    assert limited.on_candle(_at(t0), VirtualPortfolio(1000), []) == Signal.SELL
    assert limited.can_trade(t0 + timedelta(hours=1))
    # BUY without cash is not an entry either.
    buyer = RateLimitedStrategy(AlwaysBuy())
    buyer.initialize({"minimum_holding_hours": 4})
    buyer.on_candle(_at(t0), VirtualPortfolio(0), [])
    assert buyer.can_trade(t0 + timedelta(hours=1))


def test_rate_limited_backtest_respects_gap(candle_factory, frictionless_config):
    candles = candle_factory([100.0] * 12, step=timedelta(hours=1))
    limited = RateLimitedStrategy(AlwaysBuy())

    result = BacktestEngine().run(limited, candles, frictionless_config, parameters={"minimum_holding_hours": 3})

    # Entry at 0h, exit at 1h, next entry three hours after the exit.
    entries = [t.entry_time for t in result.trades]
    assert entries[0] == candles[0].timestamp
    assert entries[1] == candles[4].timestamp


def test_create_strategy():
    assert isinstance(create_strategy("SMA Crossover"), SmaCrossoverStrategy)
    rsi_strategy = create_strategy("RSI Mean Reversion")
    assert isinstance(rsi_strategy, RateLimitedStrategy)
    assert isinstance(rsi_strategy.inner, RsiMeanReversionStrategy)
    with pytest.raises(ValueError, match="not registered"):
        create_strategy("Nope")


def test_factories_build_fresh_instances():
    assert create_strategy("MACD Trend") is not create_strategy("MACD Trend")


@pytest.mark.parametrize("name", sorted(n for n in ALL_STRATEGIES if n != "Buy & Hold"))
def test_strategies_never_trade_flat_market(name, flat_candles):
    result = BacktestEngine().run(create_strategy(name), flat_candles, BacktestConfig())
    assert result.trades == []
    assert result.final_balance == result.initial_balance


@pytest.mark.parametrize("name", sorted(ALL_STRATEGIES))
def test_strategies_run_on_moving_market(name, wave_candles):
    strategy = create_strategy(name)
    assert strategy.name == name
    assert isinstance(strategy.description, str)

    result = BacktestEngine().run(strategy, wave_candles, BacktestConfig())

    assert len(result.equity_curve) == len(wave_candles)
    assert all(not t.is_open for t in result.trades)


def test_strategy_parameters_override_defaults():
    strategy = SmaCrossoverStrategy()
    assert (strategy.fast_period, strategy.slow_period) == (50, 200)
    strategy.initialize({"fast_period": 5.0, "slow_period": 20})
    assert (strategy.fast_period, strategy.slow_period) == (5, 20)
    assert "5-period" in strategy.description


def test_sma_crossover_trades_on_wave(wave_candles, frictionless_config):
    result = BacktestEngine().run(
        SmaCrossoverStrategy(), wave_candles, frictionless_config, parameters={"fast_period": 5, "slow_period": 20},
    )
    assert result.metrics.total_trades > 0


def test_volatility_breakout_enters_on_new_high(candle_factory, frictionless_config):
    closes = [100.0] * 30 + [110.0, 111.0, 112.0]
    result = BacktestEngine().run(VolatilityBreakoutStrategy(), candle_factory(closes, spread=0.5), frictionless_config)
    assert result.trades[0].entry_time.day == 31


def test_adaptive_strategy_picks_a_delegate(wave_candles):
    strategy = AdaptiveMultiStrategy()
    BacktestEngine().run(strategy, wave_candles, BacktestConfig())
    assert strategy.active_strategy is not None


def _band_reclaim(candle_factory, tail=()):
    """200 days at 100, 20 days at 80, then a close back above the weekly band."""
    return candle_factory([100.0] * 200 + [80.0] * 20 + [120.0] + list(tail))


def test_bull_band_waits_for_enough_weekly_history(candle_factory):
    strategy = BtcMacroMaStrategy()
    candles = candle_factory([100.0] * 100 + [120.0])
    assert strategy.on_candle(candles[-1], VirtualPortfolio(1000), candles) == Signal.HOLD


def test_bull_band_buys_when_price_reclaims_band(candle_factory):
    candles = _band_reclaim(candle_factory)
    strategy = BtcMacroMaStrategy()
    portfolio = VirtualPortfolio(1000)

    assert strategy.on_candle(candles[219], portfolio, candles[:220]) == Signal.HOLD
    assert strategy.on_candle(candles[220], portfolio, candles) == Signal.BUY

    strategy.initialize({"use_200d_filter": True})
    assert strategy.use_200d_filter is True
    assert strategy.on_candle(candles[220], portfolio, candles) == Signal.BUY


def test_bull_band_trailing_stop_exits(candle_factory, frictionless_config):
    candles = _band_reclaim(candle_factory, [125.0, 130.0, 110.0])
    result = BacktestEngine().run(BtcMacroMaStrategy(), candles, frictionless_config)

    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.entry_time == candles[220].timestamp
    assert trade.exit_time == candles[223].timestamp


def test_scale_in_arms_after_take_profit_step(candle_factory, frictionless_config):
    candles = _band_reclaim(candle_factory, [125.0, 130.0, 133.0, 135.0, 100.0])
    strategy = BtcMacroMaScaleInStrategy()

    result = BacktestEngine().run(strategy, candles, frictionless_config)

    assert len(result.trades) == 1
    assert result.trades[0].exit_time == candles[225].timestamp
    assert strategy.can_add

    strategy.initialize({})
    assert not strategy.can_add


def test_scale_in_without_reaching_a_step(candle_factory, frictionless_config):
    candles = _band_reclaim(candle_factory, [125.0, 130.0, 110.0])
    strategy = BtcMacroMaScaleInStrategy()
    BacktestEngine().run(strategy, candles, frictionless_config, parameters={"tp_step_percent": 20.0})
    assert not strategy.can_add
