"""
options.py - Multi-Leg Option Position Manager

Owns the lifecycle of one multi-leg option position on a single underlying:

    Empty --open_strategy--> Open --add_legs / close_selected--> Open
    Open --close_all / full close_selected / settlement--> Empty
    Open --roll_to--> (close_all, then open_strategy)

All legs of a position share one expiry_index. A position object is never
destroyed: it is emptied and may be reused for the next trade, carrying its
cumulative realized P&L forward.

Everything here is pricing and bookkeeping only. Cash, collateral and ledger
entries for option trades are applied by TradingSession (lifecycle.py);
the cash_change_* helpers give the signed deltas it applies.

Units:
- entry_price / fill prices are per share (Decimal, 8 places)
- value, cost, realized, curves and margin are currency units, i.e.
  per-share amount * quantity * multiplier
- aggregate Greeks are scaled the same way (delta in shares)
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
import math
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from .core import (
    CONTRACT_MULTIPLIER, DAYS_PER_YEAR, MIN_TAU, ZERO,
    Environment, NoExistingExpiry, Right, Side,
    parse_right, parse_side, round_cents, to_decimal, format_leg_id,
)
from .black_scholes import Greeks, bsm_greeks, bsm_price, intrinsic_value, option_price
from .pricing_source import PriceHistory


# Curve sampling: [max(0.1, 0.7*Sref), 1.3*Sref] in CURVE_STEPS intervals.
CURVE_LOW = 0.7
CURVE_HIGH = 1.3
CURVE_FLOOR = 0.1
CURVE_STEPS = 200


# ============================================================================
# TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LegDraft:
    """An order line before pricing: side, right, contracts, strike."""
    side: Side
    right: Right
    quantity: int
    strike: Decimal

    def __post_init__(self):
        object.__setattr__(self, "side", parse_side(self.side))
        object.__setattr__(self, "right", parse_right(self.right))
        if int(self.quantity) != self.quantity or self.quantity <= 0:
            raise ValueError(f"quantity must be a positive integer, got {self.quantity}")
        object.__setattr__(self, "quantity", int(self.quantity))
        strike = to_decimal(self.strike)
        if strike <= 0:
            raise ValueError(f"strike must be positive, got {strike}")
        object.__setattr__(self, "strike", strike)


@dataclass(frozen=True, slots=True)
class StrategyDraft:
    """Legs to open together plus days to expiry (rounded, minimum 1)."""
    expiry_days: float
    legs: Tuple[LegDraft, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "legs", tuple(self.legs))


@dataclass(slots=True)
class OptionLeg:
    """
    One priced option line inside an OpenPosition.

    reserved_cash / reserved_shares hold the collateral secured for a short
    leg opened through a TradingSession; both stay zero otherwise.
    """
    id: str
    side: Side
    right: Right
    quantity: int
    strike: Decimal
    entry_price: Decimal
    entry_index: Optional[int] = None
    entry_timestamp: Optional[datetime] = None
    reserved_cash: Decimal = ZERO
    reserved_shares: int = 0

    @property
    def sign(self) -> int:
        return self.side.sign


@dataclass(slots=True)
class OpenPosition:
    """
    Multi-leg option position on one underlying.

    Invariant: entry_index and expiry_index are None iff legs is empty.

    Not thread-safe.
    """
    symbol: str = ""
    legs: List[OptionLeg] = field(default_factory=list)
    entry_index: Optional[int] = None
    expiry_index: Optional[int] = None
    realized: Decimal = ZERO
    multiplier: int = CONTRACT_MULTIPLIER
    leg_sequence: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.legs

    def tau_at(self, index: int) -> float:
        """Years to expiry at a day index (0 when empty or past expiry)."""
        if self.expiry_index is None:
            return 0.0
        return max(0.0, (self.expiry_index - index) / DAYS_PER_YEAR)

    def next_leg_id(self) -> str:
        self.leg_sequence += 1
        return format_leg_id(self.leg_sequence)

    def leg(self, leg_id: str) -> Optional[OptionLeg]:
        for leg in self.legs:
            if leg.id == leg_id:
                return leg
        return None

    def clear(self) -> None:
        """Drop all legs and the indices; realized is kept."""
        self.legs = []
        self.entry_index = None
        self.expiry_index = None


@dataclass(frozen=True, slots=True)
class LegClose:
    """
    Fill of one leg in a close.

    requested is what the caller asked for; quantity is what was applied
    after clamping to the leg's open contracts.
    """
    leg_id: str
    side: Side
    right: Right
    strike: Decimal
    requested: int
    quantity: int
    remaining: int
    price: Decimal
    realized: Decimal


@dataclass(frozen=True, slots=True)
class Adjusted:
    """Result of a tolerant close: the position plus the applied fills."""
    position: OpenPosition
    fills: Tuple[LegClose, ...] = ()

    @property
    def realized(self) -> Decimal:
        return sum((f.realized for f in self.fills), ZERO)

    @property
    def clamped(self) -> bool:
        """True if any requested quantity was reduced."""
        return any(f.requested != f.quantity for f in self.fills)


@dataclass(frozen=True, slots=True)
class PositionValue:
    value: Decimal
    cost: Decimal
    unrealized: Decimal
    realized: Decimal


@dataclass(frozen=True)
class GreeksSeries:
    """Daily aggregate Greeks from day 0 to the current index."""
    idx_start: int
    delta: np.ndarray
    gamma: np.ndarray
    vega: np.ndarray
    theta: np.ndarray


# ============================================================================
# PRICING HELPERS
# ============================================================================

def expiry_offset(expiry_days: float) -> int:
    """Days from today to expiry: half-up rounding, at least 1."""
    return max(1, math.floor(expiry_days + 0.5))


def leg_now_price(leg, env: Environment, s: float, tau: float) -> Decimal:
    """BSM price per share of a leg (or LegDraft) at spot s and tau."""
    return option_price(s, leg.strike, env, max(0.0, tau), leg.right)


def _new_leg(position: OpenPosition, draft: LegDraft, price: Decimal,
             index: int, timestamp: Optional[datetime]) -> OptionLeg:
    return OptionLeg(
        id=position.next_leg_id(),
        side=draft.side,
        right=draft.right,
        quantity=draft.quantity,
        strike=draft.strike,
        entry_price=price,
        entry_index=index,
        entry_timestamp=timestamp,
    )


# ============================================================================
# TRADING OPERATIONS (bookkeeping only)
# ============================================================================

def open_strategy(
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
    draft: StrategyDraft,
) -> OpenPosition:
    """
    Open a new strategy on an empty position.

    expiry_index = index + max(1, round(expiry_days)); every leg is priced
    at the day's spot with tau = (expiry_index - index) / 365. An empty
    draft leaves the position Empty.

    Raises:
        ValueError: If the position still has open legs (close or roll first)
    """
    if not draft.legs:
        return position
    if not position.is_empty:
        raise ValueError(
            f"{position.symbol}: position already open; use add_legs or roll_to"
        )

    expiry_index = index + expiry_offset(draft.expiry_days)
    s = history.spot(index)
    tau = (expiry_index - index) / DAYS_PER_YEAR
    ts = history.timestamp(index)

    legs = [_new_leg(position, d, leg_now_price(d, env, s, tau), index, ts) for d in draft.legs]
    position.legs = legs
    position.entry_index = index
    position.expiry_index = expiry_index
    return position


def add_legs(
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
    legs: Sequence[LegDraft],
) -> List[OptionLeg]:
    """
    Append legs at the position's existing expiry.

    Returns:
        The newly created legs

    Raises:
        NoExistingExpiry: If the position has no expiry (is Empty)
    """
    if position.expiry_index is None:
        raise NoExistingExpiry(f"{position.symbol}: no existing expiry to add legs to")

    s = history.spot(index)
    tau = position.tau_at(index)
    ts = history.timestamp(index)
    added = [_new_leg(position, d, leg_now_price(d, env, s, tau), index, ts) for d in legs]
    position.legs.extend(added)
    return added


def close_selected(
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
    close_map: Dict[str, int],
) -> Adjusted:
    """
    Close part or all of selected legs at the current BSM price.

    Each leg closes min(requested, quantity) contracts; requests above the
    open quantity are clamped and negative requests count as zero. Realized
    P&L per leg is sign * qty * (now - entry) * multiplier, in cents.
    Legs left with zero contracts are dropped; if none remain the position
    becomes Empty. Unknown leg ids are ignored.
    """
    if position.is_empty:
        return Adjusted(position)

    s = history.spot(index)
    tau = position.tau_at(index)
    fills: List[LegClose] = []
    remaining_legs: List[OptionLeg] = []

    for leg in position.legs:
        requested = int(close_map.get(leg.id, 0))
        applied = max(0, min(leg.quantity, requested))
        if applied > 0:
            now_price = leg_now_price(leg, env, s, tau)
            realized = round_cents(
                leg.sign * applied * (now_price - leg.entry_price) * position.multiplier
            )
            position.realized += realized
            fills.append(LegClose(
                leg_id=leg.id,
                side=leg.side,
                right=leg.right,
                strike=leg.strike,
                requested=requested,
                quantity=applied,
                remaining=leg.quantity - applied,
                price=now_price,
                realized=realized,
            ))
            leg.quantity -= applied
        if leg.quantity > 0:
            remaining_legs.append(leg)

    position.legs = remaining_legs
    if not remaining_legs:
        position.clear()
    return Adjusted(position, tuple(fills))


def close_all(
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
) -> Adjusted:
    """Close every leg in full; the Empty position keeps cumulative realized."""
    return close_selected(
        position, env, index, history,
        {leg.id: leg.quantity for leg in position.legs},
    )


def roll_to(
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
    draft: StrategyDraft,
) -> Adjusted:
    """close_all, then open_strategy with the new draft."""
    closed = close_all(position, env, index, history)
    open_strategy(position, env, index, history, draft)
    return closed


# ============================================================================
# VALUATION
# ============================================================================

def value_now(
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
) -> PositionValue:
    """
    Mark the position at the day's spot.

    value = sum(sign * qty * price_now) * multiplier
    cost  = sum(sign * qty * entry_price) * multiplier
    """
    if position.is_empty:
        return PositionValue(ZERO, ZERO, ZERO, position.realized)

    s = history.spot(index)
    tau = position.tau_at(index)
    mult = position.multiplier
    value = sum(
        (leg.sign * leg.quantity * leg_now_price(leg, env, s, tau) * mult for leg in position.legs),
        ZERO,
    )
    cost = sum((leg.sign * leg.quantity * leg.entry_price * mult for leg in position.legs), ZERO)
    return PositionValue(value, cost, value - cost, position.realized)


def _aggregate_greeks(position: OpenPosition, env: Environment, s: float, tau: float) -> Greeks:
    total = Greeks()
    tau = max(MIN_TAU, tau)
    for leg in position.legs:
        g = bsm_greeks(s, float(leg.strike), env.r, env.q, env.sigma, tau, leg.right)
        total = total + g.scaled(leg.sign * leg.quantity * position.multiplier)
    return total


def greeks_now(
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
) -> Greeks:
    """Signed sum of per-leg Greeks (zero for an empty position)."""
    if position.is_empty:
        return Greeks()
    return _aggregate_greeks(position, env, history.spot(index), position.tau_at(index))


def greeks_time_series(
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
) -> GreeksSeries:
    """
    Aggregate Greeks for days 0..index, holding zero before entry_index.

    The current legs are marked on every past day, so the series shows how
    today's position would have behaved, not a replay of past positions.
    """
    n = index + 1
    out = {name: np.zeros(n) for name in ("delta", "gamma", "vega", "theta")}
    start = position.entry_index if position.entry_index is not None else index

    if not position.is_empty:
        for i in range(start, n):
            g = _aggregate_greeks(position, env, history.spot(i), position.tau_at(i))
            out["delta"][i] = g.delta
            out["gamma"][i] = g.gamma
            out["vega"][i] = g.vega
            out["theta"][i] = g.theta

    return GreeksSeries(idx_start=start, **out)


def pnl_time_series(
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
) -> np.ndarray:
    """realized + unrealized for days 0..index, zero before entry_index."""
    series = np.zeros(index + 1)
    if position.is_empty:
        return series

    realized = float(position.realized)
    mult = position.multiplier
    cost = sum(leg.sign * leg.quantity * float(leg.entry_price) for leg in position.legs) * mult
    for i in range(position.entry_index, index + 1):
        s = history.spot(i)
        tau = position.tau_at(i)
        value = sum(
            leg.sign * leg.quantity
            * bsm_price(s, float(leg.strike), env.r, env.q, env.sigma, tau, leg.right)
            for leg in position.legs
        ) * mult
        series[i] = realized + value - cost
    return series


# ============================================================================
# CURVES
# ============================================================================

def spot_grid(s_ref: float) -> np.ndarray:
    """CURVE_STEPS + 1 spots over [max(0.1, 0.7*Sref), 1.3*Sref]."""
    low = max(CURVE_FLOOR, s_ref * CURVE_LOW)
    return np.linspace(low, s_ref * CURVE_HIGH, CURVE_STEPS + 1)


def _entry_premium(legs: Iterable[OptionLeg]) -> float:
    """Signed premium per contract set: LONG paid (-), SHORT received (+)."""
    return sum(-leg.sign * leg.quantity * float(leg.entry_price) for leg in legs)


def payoff_at_expiry(position: OpenPosition, s_ref: float) -> Tuple[np.ndarray, np.ndarray]:
    """P&L at expiry over the spot grid: signed intrinsic plus entry premium."""
    if position.is_empty:
        return np.array([]), np.array([])
    xs = spot_grid(s_ref)
    raw = np.zeros_like(xs)
    for leg in position.legs:
        raw += leg.sign * leg.quantity * intrinsic_value(xs, float(leg.strike), leg.right)
    return xs, (raw + _entry_premium(position.legs)) * position.multiplier


def pnl_at_tau(
    position: OpenPosition,
    env: Environment,
    s_ref: float,
    tau: float,
) -> Tuple[np.ndarray, np.ndarray]:
    """P&L over the spot grid with tau years left: BSM value plus entry premium."""
    if position.is_empty:
        return np.array([]), np.array([])
    xs = spot_grid(s_ref)
    tau = max(0.0, tau)
    val = np.zeros_like(xs)
    for leg in position.legs:
        val += leg.sign * leg.quantity * bsm_price(
            xs, float(leg.strike), env.r, env.q, env.sigma, tau, leg.right
        )
    return xs, (val + _entry_premium(position.legs)) * position.multiplier


# ============================================================================
# DRAFT PREVIEWS
# ============================================================================

def preview_draft_premium(
    env: Environment,
    s: float,
    tau: float,
    legs: Sequence[LegDraft],
    multiplier: int = CONTRACT_MULTIPLIER,
) -> float:
    """Signed order premium: + debit for LONG, - credit for SHORT."""
    tau = max(0.0, tau)
    per_share = sum(
        leg.side.sign * leg.quantity
        * bsm_price(s, float(leg.strike), env.r, env.q, env.sigma, tau, leg.right)
        for leg in legs
    )
    return per_share * multiplier


def payoff_curve_for_draft(
    env: Environment,
    s_ref: float,
    tau: float,
    legs: Sequence[LegDraft],
    multiplier: int = CONTRACT_MULTIPLIER,
) -> Tuple[np.ndarray, np.ndarray]:
    """Expiry P&L of a draft priced at (s_ref, tau), before placing it."""
    if not legs:
        return np.array([]), np.array([])
    debit = preview_draft_premium(env, s_ref, tau, legs, multiplier)
    xs = spot_grid(s_ref)
    raw = np.zeros_like(xs)
    for leg in legs:
        raw += leg.side.sign * leg.quantity * intrinsic_value(xs, float(leg.strike), leg.right)
    return xs, raw * multiplier - debit


# ============================================================================
# CASH DELTAS
# ============================================================================

def open_cash_delta(leg: OptionLeg, multiplier: int = CONTRACT_MULTIPLIER) -> Decimal:
    """Cash for opening a leg: pay for LONG, receive for SHORT."""
    return round_cents(-leg.sign * leg.quantity * leg.entry_price * multiplier)


def close_cash_delta(fill: LegClose, multiplier: int = CONTRACT_MULTIPLIER) -> Decimal:
    """Cash for closing: receive for LONG, pay for SHORT."""
    return round_cents(fill.side.sign * fill.quantity * fill.price * multiplier)


def cash_change_open(legs: Iterable[OptionLeg], multiplier: int = CONTRACT_MULTIPLIER) -> Decimal:
    return sum((open_cash_delta(leg, multiplier) for leg in legs), ZERO)


def cash_change_close(fills: Iterable[LegClose], multiplier: int = CONTRACT_MULTIPLIER) -> Decimal:
    return sum((close_cash_delta(f, multiplier) for f in fills), ZERO)
