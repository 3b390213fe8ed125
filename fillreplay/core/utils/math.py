"""
Numeric helpers shared by every replay.

Fills arrive as floats, so zero-crossings are detected against EPSILON
instead of exact equality.
"""
from fillreplay.core.entities.trade import Side, Trade

EPSILON = 1e-9


def is_zero(value: float) -> bool:
    return abs(value) < EPSILON


def signed_size(trade: Trade) -> float:
    """+sz for Buy, -sz for Sell."""
    return trade.sz if trade.side == Side.BUY else -trade.sz


def weighted_average(current_val: float, current_weight: float, new_val: float, new_weight: float) -> float:
    """
    Weighted average of two values using absolute weights.
    Returns 0 when both weights are zero.
    """
    total_weight = abs(current_weight) + abs(new_weight)
    if total_weight == 0:
        return 0.0
    return (abs(current_weight) * current_val + abs(new_weight) * new_val) / total_weight


def safe_div(numerator: float, denominator: float) -> float:
    if is_zero(denominator):
        return 0.0
    return numerator / denominator
