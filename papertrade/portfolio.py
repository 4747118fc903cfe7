"""
portfolio.py - Portfolio Snapshot and Stock / Collateral Operations

PortfolioSnapshot is the root aggregate of one paper-trading account: cash,
per-symbol stock positions, option positions and the ledger. It is created
explicitly (new_portfolio) and passed by reference into every operation;
there is no process-wide default portfolio.

Each operation below follows the same shape:
    1. validate (amounts, free shares / available cash, ledger time order)
    2. mutate cash and/or lots
    3. append exactly one ledger entry carrying the cash delta

Reserve/release entries carry cash_delta = 0: moving cash between available
and reserved does not change available + reserved, so the sum of ledger
cash deltas always equals the change of cash.total.

All money amounts written here are rounded to cents before they move, so
the cash account and the ledger agree to the cent.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from .core import (
    CONTRACT_MULTIPLIER, ZERO,
    EntryType, InsufficientShares, Numberish, Right,
    format_lot_id, round_cents, to_decimal,
)
from .cash import CashAccount
from .lots import StockPosition, add_lot, consume_fifo
from .ledger import (
    Ledger, LedgerEntry,
    StockTrade, Exercise, CashReservation, ShareReservation, DividendPayment,
)
from .options import OpenPosition


# ============================================================================
# SNAPSHOT
# ============================================================================

@dataclass
class PortfolioSnapshot:
    """
    Root aggregate: cash, stock positions, option positions, ledger.

    Not thread-safe. A multi-threaded host must serialize all mutating
    calls on one snapshot.
    """
    timestamp: datetime
    cash: CashAccount
    positions: Dict[str, StockPosition] = field(default_factory=dict)
    ledger: Ledger = field(default_factory=Ledger)
    option_positions: Dict[str, OpenPosition] = field(default_factory=dict)
    lot_sequence: int = 0

    def next_lot_id(self, symbol: str) -> str:
        self.lot_sequence += 1
        return format_lot_id(symbol, self.lot_sequence)

    def option_position(self, symbol: str) -> OpenPosition:
        """The option position for symbol, created empty on first use."""
        if symbol not in self.option_positions:
            self.option_positions[symbol] = OpenPosition(symbol=symbol)
        return self.option_positions[symbol]


@dataclass(frozen=True, slots=True)
class UnrealizedEntry:
    symbol: str
    shares: int
    avg_cost: Decimal
    price: Decimal
    unrealized: Decimal


def new_portfolio(
    initial_cash: Numberish = Decimal("100000"),
    currency: str = "USD",
    timestamp: Optional[datetime] = None,
    verbose: bool = False,
) -> PortfolioSnapshot:
    """Create an empty portfolio holding initial_cash."""
    amount = round_cents(initial_cash)
    return PortfolioSnapshot(
        timestamp=timestamp or datetime.now(),
        cash=CashAccount(currency=currency, available=amount, initial=amount),
        ledger=Ledger(verbose=verbose),
    )


def ensure_position(snapshot: PortfolioSnapshot, symbol: str) -> StockPosition:
    """The stock position for symbol, created empty on first use."""
    if symbol not in snapshot.positions:
        snapshot.positions[symbol] = StockPosition(symbol=symbol)
    return snapshot.positions[symbol]


def _event_time(snapshot: PortfolioSnapshot, timestamp: Optional[datetime]) -> datetime:
    """Resolve and validate the event time before anything is mutated."""
    return snapshot.ledger.check_order(timestamp or snapshot.timestamp)


def _record(snapshot: PortfolioSnapshot, *args, **kwargs) -> LedgerEntry:
    """Append to the ledger and move the snapshot clock to the entry."""
    entry = snapshot.ledger.append(*args, **kwargs)
    snapshot.timestamp = entry.timestamp
    return entry


def _require_positive(value: int, what: str) -> int:
    if int(value) != value or value <= 0:
        raise ValueError(f"{what} must be a positive integer, got {value}")
    return int(value)


def _require_price(value: Numberish, what: str = "price") -> Decimal:
    price = to_decimal(value)
    if price <= 0:
        raise ValueError(f"{what} must be positive, got {price}")
    return price


# ============================================================================
# STOCK
# ============================================================================

def buy_shares(
    snapshot: PortfolioSnapshot,
    symbol: str,
    shares: int,
    price: Numberish,
    timestamp: Optional[datetime] = None,
) -> LedgerEntry:
    """
    Buy shares: debit cash, open a lot at price, record BUY_STOCK.

    Raises:
        InsufficientCash: If available cash < shares * price
    """
    shares = _require_positive(shares, "shares")
    price = _require_price(price)
    ts = _event_time(snapshot, timestamp)
    cost = round_cents(shares * price)

    snapshot.cash.debit(cost)
    add_lot(ensure_position(snapshot, symbol), snapshot.next_lot_id(symbol), shares, price, ts)
    return _record(
        snapshot, EntryType.BUY_STOCK, symbol,
        StockTrade(qty=shares, price=price, cost_basis=cost),
        cash_delta=-cost, timestamp=ts,
    )


def sell_shares(
    snapshot: PortfolioSnapshot,
    symbol: str,
    shares: int,
    price: Numberish,
    timestamp: Optional[datetime] = None,
) -> LedgerEntry:
    """
    Sell free (unreserved) shares FIFO and record SELL_STOCK with realized P&L.

    Raises:
        InsufficientShares: If shares > total_shares - reserved_shares
    """
    shares = _require_positive(shares, "shares")
    price = _require_price(price)
    position = ensure_position(snapshot, symbol)
    if shares > position.free_shares:
        raise InsufficientShares(
            f"{symbol}: insufficient free shares: need {shares}, have {position.free_shares}"
        )
    ts = _event_time(snapshot, timestamp)

    consumed = consume_fifo(position, shares)
    proceeds = round_cents(shares * price)
    snapshot.cash.credit(proceeds)
    return _record(
        snapshot, EntryType.SELL_STOCK, symbol,
        StockTrade(qty=shares, price=price, cost_basis=consumed.cost_consumed,
                   lots=consumed.breakdown),
        cash_delta=proceeds, realized_pnl=proceeds - consumed.cost_consumed, timestamp=ts,
    )


def pay_dividend(
    snapshot: PortfolioSnapshot,
    symbol: str,
    amount_per_share: Numberish,
    timestamp: Optional[datetime] = None,
) -> Optional[LedgerEntry]:
    """
    Credit a cash dividend on all shares held (reserved shares included).

    The payment is income, so it is also booked as realized P&L. Returns
    None when no shares are held.
    """
    per_share = _require_price(amount_per_share, "amount_per_share")
    position = ensure_position(snapshot, symbol)
    if position.total_shares == 0:
        return None
    ts = _event_time(snapshot, timestamp)

    amount = round_cents(position.total_shares * per_share)
    snapshot.cash.credit(amount)
    return _record(
        snapshot, EntryType.DIVIDEND, symbol,
        DividendPayment(amount_per_share=per_share, shares=position.total_shares),
        cash_delta=amount, realized_pnl=amount, timestamp=ts,
    )


# ============================================================================
# COLLATERAL
# ============================================================================

def reserve_cash_for_short_put(
    snapshot: PortfolioSnapshot,
    symbol: str,
    strike: Numberish,
    contracts: int,
    timestamp: Optional[datetime] = None,
    multiplier: int = CONTRACT_MULTIPLIER,
) -> LedgerEntry:
    """
    Earmark strike * multiplier * contracts of cash for a cash-secured put.

    Raises:
        InsufficientCash: If available cash is short
    """
    contracts = _require_positive(contracts, "contracts")
    strike = _require_price(strike, "strike")
    amount = round_cents(strike * multiplier * contracts)
    ts = _event_time(snapshot, timestamp)

    snapshot.cash.reserve(amount)
    return _record(
        snapshot, EntryType.RESERVE_CASH, symbol,
        CashReservation(amount=amount, strike=strike, contracts=contracts),
        timestamp=ts,
    )


def release_reserved_cash(
    snapshot: PortfolioSnapshot,
    symbol: str,
    amount: Numberish,
    timestamp: Optional[datetime] = None,
) -> LedgerEntry:
    """Move up to amount of reserved cash back to available."""
    amount = round_cents(amount)
    ts = _event_time(snapshot, timestamp)
    released = snapshot.cash.release(amount)
    return _record(
        snapshot, EntryType.RELEASE_CASH, symbol, CashReservation(amount=released), timestamp=ts,
    )


def reserve_shares_for_short_call(
    snapshot: PortfolioSnapshot,
    symbol: str,
    contracts: int,
    timestamp: Optional[datetime] = None,
    multiplier: int = CONTRACT_MULTIPLIER,
) -> LedgerEntry:
    """
    Earmark multiplier * contracts free shares to cover a short call.

    Raises:
        InsufficientShares: If free shares are short
    """
    contracts = _require_positive(contracts, "contracts")
    need = contracts * multiplier
    position = ensure_position(snapshot, symbol)
    if position.free_shares < need:
        raise InsufficientShares(
            f"{symbol}: not enough shares to cover short call: "
            f"need {need}, have {position.free_shares}"
        )
    ts = _event_time(snapshot, timestamp)

    position.reserved_shares += need
    return _record(
        snapshot, EntryType.RESERVE_SHARES, symbol,
        ShareReservation(contracts=contracts, shares=need), timestamp=ts,
    )


def release_reserved_shares(
    snapshot: PortfolioSnapshot,
    symbol: str,
    contracts: int,
    timestamp: Optional[datetime] = None,
    multiplier: int = CONTRACT_MULTIPLIER,
) -> LedgerEntry:
    """Un-earmark up to multiplier * contracts shares."""
    contracts = _require_positive(contracts, "contracts")
    position = ensure_position(snapshot, symbol)
    ts = _event_time(snapshot, timestamp)

    released = min(contracts * multiplier, position.reserved_shares)
    position.reserved_shares -= released
    return _record(
        snapshot, EntryType.RELEASE_SHARES, symbol,
        ShareReservation(contracts=contracts, shares=released), timestamp=ts,
    )


# ============================================================================
# EXERCISE OF LONG OPTIONS
# ============================================================================

def exercise_long_call(
    snapshot: PortfolioSnapshot,
    symbol: str,
    strike: Numberish,
    contracts: int,
    timestamp: Optional[datetime] = None,
    multiplier: int = CONTRACT_MULTIPLIER,
) -> LedgerEntry:
    """
    Buy multiplier * contracts shares at strike.

    Raises:
        InsufficientCash: If available cash < strike * shares
    """
    contracts = _require_positive(contracts, "contracts")
    strike = _require_price(strike, "strike")
    shares = contracts * multiplier
    ts = _event_time(snapshot, timestamp)
    cost = round_cents(strike * shares)

    snapshot.cash.debit(cost)
    add_lot(ensure_position(snapshot, symbol), snapshot.next_lot_id(symbol), shares, strike, ts)
    return _record(
        snapshot, EntryType.EXERCISE_LONG_CALL, symbol,
        Exercise(right=Right.CALL, strike=strike, qty=contracts, shares=shares),
        cash_delta=-cost, timestamp=ts,
    )


def exercise_long_put(
    snapshot: PortfolioSnapshot,
    symbol: str,
    strike: Numberish,
    contracts: int,
    timestamp: Optional[datetime] = None,
    multiplier: int = CONTRACT_MULTIPLIER,
) -> LedgerEntry:
    """
    Deliver multiplier * contracts free shares FIFO at strike.

    Raises:
        InsufficientShares: If free shares are short
    """
    contracts = _require_positive(contracts, "contracts")
    strike = _require_price(strike, "strike")
    shares = contracts * multiplier
    position = ensure_position(snapshot, symbol)
    if position.free_shares < shares:
        raise InsufficientShares(
            f"{symbol}: insufficient shares to exercise long put: "
            f"need {shares}, have {position.free_shares}"
        )
    ts = _event_time(snapshot, timestamp)

    consumed = consume_fifo(position, shares)
    proceeds = round_cents(strike * shares)
    snapshot.cash.credit(proceeds)
    return _record(
        snapshot, EntryType.EXERCISE_LONG_PUT, symbol,
        Exercise(right=Right.PUT, strike=strike, qty=contracts, shares=shares),
        cash_delta=proceeds, realized_pnl=proceeds - consumed.cost_consumed, timestamp=ts,
    )


# ============================================================================
# VIEWS
# ============================================================================

def compute_unrealized_pnl(
    snapshot: PortfolioSnapshot,
    prices: Mapping[str, Numberish],
) -> List[UnrealizedEntry]:
    """(price - avg_cost) * total_shares per stock position; missing prices count as 0."""
    entries = []
    for symbol, position in snapshot.positions.items():
        price = to_decimal(prices.get(symbol, 0))
        entries.append(UnrealizedEntry(
            symbol=symbol,
            shares=position.total_shares,
            avg_cost=position.avg_cost,
            price=price,
            unrealized=(price - position.avg_cost) * position.total_shares,
        ))
    return entries


def cash_total(snapshot: PortfolioSnapshot) -> Decimal:
    return snapshot.cash.total


def realized_pnl(snapshot: PortfolioSnapshot) -> Decimal:
    return snapshot.ledger.total_realized()


def stock_value(snapshot: PortfolioSnapshot, prices: Mapping[str, Numberish]) -> Decimal:
    """Market value of all stock holdings."""
    return sum(
        (to_decimal(prices.get(sym, 0)) * pos.total_shares for sym, pos in snapshot.positions.items()),
        ZERO,
    )
