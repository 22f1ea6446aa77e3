"""
Tests for choosing a strategy by backtest score and market phase.
"""
import pytest

from quantsim.analysis.regime import MarketPhase
from quantsim.analysis.selector import (
    SELECTION_CONFIG, StrategySelector, classify_market, regime_bonus, select_best_strategy,
)
from quantsim.backtester.engine import BacktestEngine
from quantsim.example_strategies import BuyAndHoldStrategy, HoldStrategy
from quantsim.strategy import Strategy


class Broken(Strategy):

    @property
    def name(self) -> str:
        return "Broken"

    def initialize(self, parameters):
        pass

    def on_candle(self, candle, portfolio, history):
        raise RuntimeError("no data feed")


@pytest.fixture
def rising_candles(candle_factory):
    return candle_factory([100.0 * 1.02 ** i for i in range(60)], spread=0.1)


@pytest.mark.parametrize("name, phase, bonus", [
    ("BTC Macro MA Trend (Bull Band)", MarketPhase.BULL, 0.3),
    ("MACD Trend", MarketPhase.BEAR, 0.2),
    ("Buy & Hold", MarketPhase.BULL, 0.2),
    ("Buy & Hold", MarketPhase.BEAR, 0.0),
    ("MACD Trend", MarketPhase.SIDEWAYS, 0.0),
    ("RSI Mean Reversion", MarketPhase.BULL, 0.0),
])
def test_regime_bonus(name, phase, bonus):
    assert regime_bonus(name, phase) == bonus


def test_classify_market(rising_candles, flat_candles):
    assert classify_market(rising_candles) is MarketPhase.BULL
    assert classify_market(flat_candles) is MarketPhase.SIDEWAYS
    assert classify_market(rising_candles[:10]) is MarketPhase.SIDEWAYS
    assert classify_market([]) is MarketPhase.SIDEWAYS


def test_select_best_strategy_keeps_first_of_ties(flat_candles):
    result = BacktestEngine().run(HoldStrategy(), flat_candles, SELECTION_CONFIG)
    assert select_best_strategy({"Alpha": result, "Beta": result}, MarketPhase.SIDEWAYS) == "Alpha"
    assert select_best_strategy({}, MarketPhase.BULL) == ""


def test_selector_prefers_buy_and_hold_in_bull_market(rising_candles):
    selection = StrategySelector().select([HoldStrategy(), BuyAndHoldStrategy()], rising_candles)

    assert selection.phase is MarketPhase.BULL
    assert selection.best_strategy == "Buy & Hold"
    assert selection.scores["Hold"] == 0.0
    assert selection.scores["Buy & Hold"] == pytest.approx(
        selection.results["Buy & Hold"].metrics.sharpe_ratio + 0.2
    )


def test_selector_skips_failing_strategies(rising_candles, frictionless_config):
    selector = StrategySelector(config=frictionless_config)
    selection = selector.select([Broken(), HoldStrategy()], rising_candles)

    assert list(selection.results) == ["Hold"]
    assert selection.best_strategy == "Hold"
    assert selection.results["Hold"].initial_balance == frictionless_config.initial_balance


def test_selector_without_candles():
    selection = StrategySelector().select([HoldStrategy()], [])
    assert selection.phase is MarketPhase.SIDEWAYS
    assert selection.best_strategy == ""
    assert selection.results == {}
