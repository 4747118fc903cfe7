"""
expiry.py - Expiry and Assignment Settlement

When the simulated day reaches a position's expiry_index, every leg is
resolved at intrinsic value using the day's spot S:

    LONG (any)        cash-settled: credit intrinsic * mult * qty,
                      realized (intrinsic - entry) * mult * qty   CLOSE_LONG_OPTION
    SHORT, OTM        expires worthless: premium kept,
                      realized entry * mult * qty, no cash        CLOSE_SHORT_OPTION
    SHORT PUT, ITM    assigned: buy mult * qty shares at strike   BUY_STOCK + ASSIGN_SHORT_PUT
    SHORT CALL, ITM   assigned: deliver mult * qty shares FIFO    SELL_STOCK + ASSIGN_SHORT_CALL

Assignment writes two entries: the stock leg carries the cash delta, the
option leg carries the option's realized P&L with cash_delta = 0, so
per-entry cash deltas are never double counted.

Collateral held by a short leg (reserved cash / reserved shares) is released
before the leg is resolved.

Each leg settles atomically and leaves the position as it settles. Settling
an Empty position, or one whose expiry has not been reached, is a no-op, so
running settlement again on the same day changes nothing.

Assignment is system-triggered: a leg that cannot be settled (e.g. a covered
call whose shares are gone) means upstream state is corrupt. It raises
InvariantViolation, leaving that leg and the legs after it in the position
and the ledger at the last settled leg.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from .core import (
    CONTRACT_MULTIPLIER, ZERO,
    EntryType, Environment, InvariantViolation, PaperTradeError, Right, Side,
    Numberish, parse_right, round_cents, to_decimal,
)
from .lots import add_lot, consume_fifo
from .ledger import LedgerEntry, Assignment, OptionTrade, StockTrade
from .options import OpenPosition, OptionLeg
from .portfolio import (
    PortfolioSnapshot, ensure_position,
    release_reserved_cash, release_reserved_shares,
    _event_time, _record,
)
from .pricing_source import PriceHistory


class SettlementOutcome(Enum):
    CASH_SETTLED = "CASH_SETTLED"
    EXPIRED_WORTHLESS = "EXPIRED_WORTHLESS"
    ASSIGNED = "ASSIGNED"


@dataclass(frozen=True, slots=True)
class LegSettlement:
    """How one leg was resolved; realized is the option leg's P&L only."""
    leg_id: str
    side: Side
    right: Right
    strike: Decimal
    quantity: int
    outcome: SettlementOutcome
    intrinsic: Decimal
    realized: Decimal
    entries: Tuple[LedgerEntry, ...]


@dataclass
class SettlementReport:
    index: int
    spot: Optional[Decimal] = None
    legs: List[LegSettlement] = field(default_factory=list)

    @property
    def settled(self) -> bool:
        return bool(self.legs)

    @property
    def entries(self) -> List[LedgerEntry]:
        return [e for leg in self.legs for e in leg.entries]

    @property
    def realized(self) -> Decimal:
        """Option-leg realized P&L of this settlement."""
        return sum((leg.realized for leg in self.legs), ZERO)


def intrinsic_at_expiry(right, s: Numberish, strike: Numberish) -> Decimal:
    """Per-share intrinsic value at expiry."""
    s = to_decimal(s)
    strike = to_decimal(strike)
    if parse_right(right) is Right.CALL:
        return max(ZERO, s - strike)
    return max(ZERO, strike - s)


# ============================================================================
# ASSIGNMENT
# ============================================================================

def assign_short_put(
    snapshot: PortfolioSnapshot,
    symbol: str,
    contracts: int,
    strike: Numberish,
    s: Numberish,
    premium_per_share: Numberish,
    timestamp: Optional[datetime] = None,
    multiplier: int = CONTRACT_MULTIPLIER,
) -> Tuple[LedgerEntry, LedgerEntry]:
    """
    Assign a short put: buy contracts * multiplier shares at strike.

    Cash falls by strike * shares (BUY_STOCK); the option leg realizes
    (premium - intrinsic) * multiplier * contracts (ASSIGN_SHORT_PUT).

    Raises:
        InsufficientCash: If available cash cannot pay for the shares
    """
    strike = to_decimal(strike)
    premium = to_decimal(premium_per_share)
    shares = contracts * multiplier
    ts = _event_time(snapshot, timestamp)
    cost = round_cents(shares * strike)

    snapshot.cash.debit(cost)
    add_lot(ensure_position(snapshot, symbol), snapshot.next_lot_id(symbol), shares, strike, ts)

    buy = _record(
        snapshot, EntryType.BUY_STOCK, symbol,
        StockTrade(qty=shares, price=strike, cost_basis=cost),
        cash_delta=-cost, timestamp=ts,
    )
    intrinsic = intrinsic_at_expiry(Right.PUT, s, strike)
    assign = _record(
        snapshot, EntryType.ASSIGN_SHORT_PUT, symbol,
        Assignment(right=Right.PUT, strike=strike, qty=contracts, price=premium, shares=shares),
        realized_pnl=(premium - intrinsic) * multiplier * contracts, timestamp=ts,
    )
    return buy, assign


def assign_short_call(
    snapshot: PortfolioSnapshot,
    symbol: str,
    contracts: int,
    strike: Numberish,
    s: Numberish,
    premium_per_share: Numberish,
    timestamp: Optional[datetime] = None,
    multiplier: int = CONTRACT_MULTIPLIER,
) -> Tuple[LedgerEntry, LedgerEntry]:
    """
    Assign a short call: deliver contracts * multiplier shares FIFO at strike.

    Cash rises by strike * shares and the stock leg realizes proceeds minus
    the FIFO cost consumed (SELL_STOCK); the option leg realizes
    (premium - intrinsic) * multiplier * contracts (ASSIGN_SHORT_CALL).

    Raises:
        InvariantViolation: If total_shares - reserved_shares < shares
    """
    strike = to_decimal(strike)
    premium = to_decimal(premium_per_share)
    shares = contracts * multiplier
    position = ensure_position(snapshot, symbol)
    deliverable = position.total_shares - position.reserved_shares
    if deliverable < shares:
        raise InvariantViolation(
            f"{symbol}: covered call assignment requires {shares} deliverable shares; "
            f"available={deliverable}, reserved={position.reserved_shares}"
        )
    ts = _event_time(snapshot, timestamp)

    consumed = consume_fifo(position, shares)
    proceeds = round_cents(shares * strike)
    snapshot.cash.credit(proceeds)

    sell = _record(
        snapshot, EntryType.SELL_STOCK, symbol,
        StockTrade(qty=shares, price=strike, cost_basis=consumed.cost_consumed,
                   lots=consumed.breakdown),
        cash_delta=proceeds, realized_pnl=proceeds - consumed.cost_consumed, timestamp=ts,
    )
    intrinsic = intrinsic_at_expiry(Right.CALL, s, strike)
    assign = _record(
        snapshot, EntryType.ASSIGN_SHORT_CALL, symbol,
        Assignment(right=Right.CALL, strike=strike, qty=contracts, price=premium, shares=shares),
        realized_pnl=(premium - intrinsic) * multiplier * contracts, timestamp=ts,
    )
    return sell, assign


# ============================================================================
# SETTLEMENT
# ============================================================================

def _check_settleable(
    snapshot: PortfolioSnapshot,
    symbol: str,
    leg: OptionLeg,
    intrinsic: Decimal,
    multiplier: int,
) -> None:
    """Verify an ITM short leg can be assigned once its collateral is released."""
    if leg.side is Side.LONG or intrinsic <= 0:
        return
    shares = leg.quantity * multiplier
    if leg.right is Right.PUT:
        cost = round_cents(shares * leg.strike)
        available = snapshot.cash.available + min(leg.reserved_cash, snapshot.cash.reserved)
        if available < cost:
            raise InvariantViolation(
                f"{symbol}: put assignment needs {cost:.2f} cash; available={available:.2f}"
            )
    else:
        position = ensure_position(snapshot, symbol)
        reserved_after = position.reserved_shares - min(leg.reserved_shares, position.reserved_shares)
        deliverable = position.total_shares - reserved_after
        if deliverable < shares:
            raise InvariantViolation(
                f"{symbol}: covered call assignment requires {shares} deliverable shares; "
                f"available={deliverable}, reserved={reserved_after}"
            )


def _release_collateral(
    snapshot: PortfolioSnapshot,
    symbol: str,
    leg: OptionLeg,
    timestamp: datetime,
    multiplier: int,
) -> List[LedgerEntry]:
    entries = []
    if leg.reserved_cash > 0:
        entries.append(release_reserved_cash(snapshot, symbol, leg.reserved_cash, timestamp))
        leg.reserved_cash = ZERO
    if leg.reserved_shares > 0:
        contracts = leg.reserved_shares // multiplier
        entries.append(release_reserved_shares(snapshot, symbol, contracts, timestamp, multiplier))
        leg.reserved_shares = 0
    return entries


def _settle_leg(
    snapshot: PortfolioSnapshot,
    symbol: str,
    leg: OptionLeg,
    s: Decimal,
    timestamp: datetime,
    multiplier: int,
) -> LegSettlement:
    intrinsic = intrinsic_at_expiry(leg.right, s, leg.strike)
    qty = leg.quantity
    _check_settleable(snapshot, symbol, leg, intrinsic, multiplier)

    entries: List[LedgerEntry] = []
    if leg.side is Side.LONG:
        payout = round_cents(intrinsic * multiplier * qty)
        snapshot.cash.credit(payout)
        realized = round_cents((intrinsic - leg.entry_price) * multiplier * qty)
        entries.append(_record(
            snapshot, EntryType.CLOSE_LONG_OPTION, symbol,
            OptionTrade(side=leg.side, right=leg.right, strike=leg.strike, qty=qty,
                        price=intrinsic, leg_id=leg.id),
            cash_delta=payout, realized_pnl=realized, timestamp=timestamp,
        ))
        outcome = SettlementOutcome.CASH_SETTLED
    else:
        entries.extend(_release_collateral(snapshot, symbol, leg, timestamp, multiplier))
        if intrinsic <= 0:
            realized = round_cents(leg.entry_price * multiplier * qty)
            entries.append(_record(
                snapshot, EntryType.CLOSE_SHORT_OPTION, symbol,
                OptionTrade(side=leg.side, right=leg.right, strike=leg.strike, qty=qty,
                            price=ZERO, leg_id=leg.id),
                realized_pnl=realized, timestamp=timestamp,
            ))
            outcome = SettlementOutcome.EXPIRED_WORTHLESS
        else:
            assign = assign_short_put if leg.right is Right.PUT else assign_short_call
            pair = assign(snapshot, symbol, qty, leg.strike, s, leg.entry_price, timestamp, multiplier)
            entries.extend(pair)
            realized = pair[1].realized_pnl
            outcome = SettlementOutcome.ASSIGNED

    return LegSettlement(
        leg_id=leg.id,
        side=leg.side,
        right=leg.right,
        strike=leg.strike,
        quantity=qty,
        outcome=outcome,
        intrinsic=intrinsic,
        realized=realized,
        entries=tuple(entries),
    )


def settle_expired(
    snapshot: PortfolioSnapshot,
    position: OpenPosition,
    env: Environment,
    index: int,
    history: PriceHistory,
    timestamp: Optional[datetime] = None,
) -> SettlementReport:
    """
    Settle every leg of an expired position at the day's spot.

    Runs only when the position has legs and index >= expiry_index;
    otherwise returns an empty report. env is accepted for a uniform call
    signature with the other position operations; intrinsic settlement
    does not use it.

    Args:
        snapshot: Portfolio whose cash, lots and ledger are updated
        position: Option position to settle (emptied on success)
        env: Market parameters
        index: Current day index
        history: Price series (spot at index)
        timestamp: Event time (default: the day's date)

    Returns:
        SettlementReport with one LegSettlement per settled leg

    Raises:
        InvariantViolation: If a leg cannot be settled; earlier legs stay
            settled, the failing leg and later legs stay in the position
    """
    report = SettlementReport(index=index)
    if position.is_empty or position.expiry_index is None or index < position.expiry_index:
        return report

    s = to_decimal(history.spot(index))
    report.spot = s
    ts = _event_time(snapshot, timestamp or history.timestamp(index))
    symbol = position.symbol
    verbose = snapshot.ledger.verbose

    for leg in list(position.legs):
        try:
            settled = _settle_leg(snapshot, symbol, leg, s, ts, position.multiplier)
        except PaperTradeError as exc:
            if verbose:
                print(f"[SETTLEMENT] {symbol} {leg.id} failed: {exc}")
            if isinstance(exc, InvariantViolation):
                raise
            raise InvariantViolation(f"{symbol} {leg.id}: settlement failed: {exc}") from exc
        position.legs.remove(leg)
        position.realized += settled.realized
        report.legs.append(settled)

    position.clear()
    return report
