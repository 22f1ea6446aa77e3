"""
Stop, target and sizing helpers shared by the example strategies.
"""


def stop_loss_from_atr(entry_price: float, atr_value: float, multiplier: float = 2.0) -> float:
    """Stop placed `multiplier` ATRs below the entry."""
    return entry_price - atr_value * multiplier


def take_profit_from_risk_reward(entry_price: float, stop_loss: float, risk_reward_ratio: float = 2.0) -> float:
    """Target placed `risk_reward_ratio` times the entry-to-stop distance above the entry."""
    return entry_price + (entry_price - stop_loss) * risk_reward_ratio


def trailing_stop(highest_price: float, trail_percent: float) -> float:
    return highest_price * (1 - trail_percent)


def risk_position_size(balance: float, risk_percent: float, entry_price: float, stop_loss: float) -> float:
    """
    Quantity such that hitting the stop loses `risk_percent` of `balance`.

    Returns:
        float: The quantity, or 0 when the stop is not below the entry.
    """
    risk_per_unit = entry_price - stop_loss
    if risk_per_unit <= 0:
        return 0.0
    return balance * risk_percent / risk_per_unit
