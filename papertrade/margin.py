"""
margin.py - Educational margin estimate for short option legs

Per short leg, with S the underlying spot:

    otm         = max(0, S - K) for puts, max(0, K - S) for calls
    requirement = (max(0.20*S - otm, 0.10*S) + entry_price) * quantity * multiplier

summed over short legs and floored at 0. Long legs need no margin.

This is a simplified retail-style rule for teaching purposes, not a
brokerage-accurate calculation.
"""

from decimal import Decimal

from .core import ZERO, Right, Side, Numberish, round_cents, to_decimal
from .options import OpenPosition


BASE_RATE = Decimal("0.20")
FLOOR_RATE = Decimal("0.10")


def margin_requirement(position: OpenPosition, s: Numberish) -> Decimal:
    """Estimated margin for the position's short legs at spot s, in cents."""
    s = to_decimal(s)
    total = ZERO
    for leg in position.legs:
        if leg.side is not Side.SHORT:
            continue
        if leg.right is Right.PUT:
            otm = max(ZERO, s - leg.strike)
        else:
            otm = max(ZERO, leg.strike - s)
        per_share = max(BASE_RATE * s - otm, FLOOR_RATE * s) + leg.entry_price
        total += per_share * leg.quantity * position.multiplier
    return round_cents(max(ZERO, total))


def margin_utilization(requirement: Numberish, equity: Numberish) -> float:
    """requirement / equity; inf when equity <= 0 and something is required."""
    requirement = to_decimal(requirement)
    equity = to_decimal(equity)
    if equity <= 0:
        return 0.0 if requirement <= 0 else float("inf")
    return float(requirement / equity)
