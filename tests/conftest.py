"""
Shared fixtures for building candle sequences.
"""
import math
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

import pytest

from quantsim.config import BacktestConfig
from quantsim.data.candle import Candle


def build_candles(
    closes: Sequence[float],
    start: datetime = datetime(2024, 1, 1),
    step: timedelta = timedelta(days=1),
    spread: float = 0.0,
    volumes: Optional[Sequence[float]] = None,
    symbol: str = "BTCUSDT",
) -> List[Candle]:
    """Candles opening at the previous close, with high/low `spread` around the body."""
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        candles.append(Candle(
            timestamp=start + step * i,
            open=prev,
            high=max(prev, close) + spread,
            low=min(prev, close) - spread,
            close=close,
            volume=volumes[i] if volumes is not None else 1000.0,
            symbol=symbol,
            exchange="test",
        ))
        prev = close
    return candles


@pytest.fixture
def candle_factory():
    """Provides the `build_candles` helper to tests."""
    return build_candles


@pytest.fixture
def flat_candles() -> List[Candle]:
    """300 daily candles with the close pinned at 100."""
    return build_candles([100.0] * 300)


@pytest.fixture
def wave_candles() -> List[Candle]:
    """400 daily candles oscillating around an upward drift, so crossovers fire."""
    closes = [100.0 + 0.05 * i + 10.0 * math.sin(i / 8.0) for i in range(400)]
    return build_candles(closes, spread=1.0)


@pytest.fixture
def frictionless_config() -> BacktestConfig:
    """No fees, no slippage, full-size positions and no risk limits."""
    return BacktestConfig(
        initial_balance=10000.0,
        taker_fee_rate=0.0,
        maker_fee_rate=0.0,
        slippage_rate=0.0,
        position_size=1.0,
        max_position_size_percent=0.0,
        max_loss_per_trade_percent=0.0,
        max_daily_loss_percent=0.0,
    )
