"""
ledger.py - Append-Only Event Ledger

The Ledger is the audit trail of a paper-trading portfolio. Every cash- or
position-affecting event is recorded as exactly one LedgerEntry.

Key responsibilities:
    - Assigns deterministic ids and enforces non-decreasing timestamps
    - Rounds cash_delta / realized_pnl to cents at write time, so running
      sums are reproducible from the entries themselves
    - Validates that each entry's payload matches its EntryType
    - Aggregates (total_realized, total_cash_delta, realized_series)
    - CSV export with a fixed column order

The ledger is purely observational: it never touches cash or positions.
State changes happen in portfolio.py / expiry.py / lifecycle.py, which then
append the matching entry here.
"""

from __future__ import annotations
from bisect import bisect_right
import csv
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
import io
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .core import (
    ZERO, EntryType, Right, Side, Numberish,
    round_cents, to_decimal, format_entry_id,
)
from .lots import LotConsumption


# ============================================================================
# PAYLOADS
# ============================================================================

@dataclass(frozen=True, slots=True)
class StockTrade:
    """BUY_STOCK / SELL_STOCK: shares moved at a per-share price."""
    qty: int
    price: Decimal
    cost_basis: Optional[Decimal] = None
    lots: Tuple[LotConsumption, ...] = ()


@dataclass(frozen=True, slots=True)
class OptionTrade:
    """Premium paid or received on an option leg (qty in contracts)."""
    side: Side
    right: Right
    strike: Decimal
    qty: int
    price: Decimal
    leg_id: str


@dataclass(frozen=True, slots=True)
class Assignment:
    """Short option assigned: qty contracts, price = premium per share at open."""
    right: Right
    strike: Decimal
    qty: int
    price: Decimal
    shares: int


@dataclass(frozen=True, slots=True)
class Exercise:
    right: Right
    strike: Decimal
    qty: int
    shares: int


@dataclass(frozen=True, slots=True)
class CashReservation:
    amount: Decimal
    strike: Optional[Decimal] = None
    contracts: Optional[int] = None


@dataclass(frozen=True, slots=True)
class ShareReservation:
    contracts: int
    shares: int


@dataclass(frozen=True, slots=True)
class DividendPayment:
    amount_per_share: Decimal
    shares: int


Payload = Union[
    StockTrade, OptionTrade, Assignment, Exercise,
    CashReservation, ShareReservation, DividendPayment,
]

PAYLOAD_TYPES: Dict[EntryType, type] = {
    EntryType.BUY_STOCK: StockTrade,
    EntryType.SELL_STOCK: StockTrade,
    EntryType.DIVIDEND: DividendPayment,
    EntryType.ASSIGN_SHORT_CALL: Assignment,
    EntryType.ASSIGN_SHORT_PUT: Assignment,
    EntryType.EXERCISE_LONG_CALL: Exercise,
    EntryType.EXERCISE_LONG_PUT: Exercise,
    EntryType.RESERVE_CASH: CashReservation,
    EntryType.RELEASE_CASH: CashReservation,
    EntryType.RESERVE_SHARES: ShareReservation,
    EntryType.RELEASE_SHARES: ShareReservation,
    EntryType.BUY_OPTION: OptionTrade,
    EntryType.SELL_OPTION: OptionTrade,
    EntryType.CLOSE_LONG_OPTION: OptionTrade,
    EntryType.CLOSE_SHORT_OPTION: OptionTrade,
}

CSV_COLUMNS = [
    "id", "timestamp", "type", "symbol", "qty", "price", "strike",
    "cashDelta", "realizedPnL",
]


# ============================================================================
# ENTRY
# ============================================================================

@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """
    One immutable audit record.

    Attributes:
        id: Deterministic entry id (led:00000001, ...)
        timestamp: Simulated time of the event
        type: EntryType discriminant
        symbol: Underlying symbol (None for account-level events)
        details: Typed payload selected by `type`
        cash_delta: Signed change of available + reserved cash, in cents
        realized_pnl: Realized P&L attributed to this event, in cents
    """
    id: str
    timestamp: datetime
    type: EntryType
    symbol: Optional[str]
    details: Payload
    cash_delta: Decimal
    realized_pnl: Decimal

    def __repr__(self) -> str:
        sym = self.symbol or "-"
        return (
            f"{self.id} {self.timestamp.isoformat()} {self.type.value:<18} {sym:<6} "
            f"cash={self.cash_delta:+.2f} realized={self.realized_pnl:+.2f}"
        )


def _fmt2(value) -> str:
    if value is None:
        return ""
    return f"{to_decimal(value):.2f}"


def _csv_fields(details: Payload) -> Tuple[str, str, str]:
    """(qty, price, strike) for the CSV row; qty falls back to shares."""
    qty = getattr(details, "qty", None)
    if qty is None:
        qty = getattr(details, "shares", None)
    price = getattr(details, "price", None)
    if price is None:
        price = getattr(details, "amount_per_share", None)
    strike = getattr(details, "strike", None)
    return ("" if qty is None else str(qty), _fmt2(price), _fmt2(strike))


# ============================================================================
# LEDGER
# ============================================================================

class Ledger:
    """
    Append-only, time-ordered list of LedgerEntry.

    Thread Safety:
        Not thread-safe. One writer per portfolio.

    Example:
        ledger = Ledger()
        ledger.append(EntryType.BUY_STOCK, "XYZ", StockTrade(100, Decimal("50")),
                      cash_delta=Decimal("-5000"), timestamp=datetime(2025, 1, 2))
        ledger.total_cash_delta()   # Decimal("-5000.00")
    """

    def __init__(self, verbose: bool = False):
        self.entries: List[LedgerEntry] = []
        self.verbose = verbose
        self._next_sequence: int = 1

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[LedgerEntry]:
        return iter(self.entries)

    def __getitem__(self, index: int) -> LedgerEntry:
        return self.entries[index]

    @property
    def last_timestamp(self) -> Optional[datetime]:
        return self.entries[-1].timestamp if self.entries else None

    # ========================================================================
    # APPEND (the only mutating method)
    # ========================================================================

    def check_order(self, timestamp: Optional[datetime]) -> datetime:
        """
        Resolve the timestamp of the next entry and validate ordering.

        Callers that mutate cash or positions call this before mutating, so
        an out-of-order event is rejected with state untouched.

        Raises:
            ValueError: If timestamp is older than the last entry
        """
        last = self.last_timestamp
        if timestamp is None:
            return last or datetime.now()
        if last is not None and timestamp < last:
            raise ValueError(
                f"Cannot append entry before the last one: {timestamp} < {last}"
            )
        return timestamp

    def append(
        self,
        entry_type: EntryType,
        symbol: Optional[str],
        details: Payload,
        cash_delta: Numberish = ZERO,
        realized_pnl: Numberish = ZERO,
        timestamp: Optional[datetime] = None,
        entry_id: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Record one event.

        Args:
            entry_type: EntryType discriminant
            symbol: Underlying symbol, if any
            details: Payload matching entry_type (see PAYLOAD_TYPES)
            cash_delta: Signed cash change (rounded to cents here)
            realized_pnl: Realized P&L (rounded to cents here)
            timestamp: Simulated event time; the tail entry's time (or now)
                is used when omitted
            entry_id: Explicit id; generated from the sequence when omitted

        Returns:
            The appended LedgerEntry

        Raises:
            ValueError: If the payload type does not match entry_type, or if
                timestamp is older than the last entry
        """
        expected = PAYLOAD_TYPES[entry_type]
        if not isinstance(details, expected):
            raise ValueError(
                f"{entry_type.value} requires {expected.__name__} details, "
                f"got {type(details).__name__}"
            )

        timestamp = self.check_order(timestamp)

        if entry_id is None:
            entry_id = format_entry_id(self._next_sequence)
        self._next_sequence += 1

        entry = LedgerEntry(
            id=entry_id,
            timestamp=timestamp,
            type=entry_type,
            symbol=symbol,
            details=details,
            cash_delta=round_cents(cash_delta),
            realized_pnl=round_cents(realized_pnl),
        )
        self.entries.append(entry)

        if self.verbose:
            print(f"[LEDGER] {entry!r}")
        return entry

    # ========================================================================
    # AGGREGATES
    # ========================================================================

    def total_realized(self) -> Decimal:
        """Sum of realized_pnl over all entries."""
        return sum((e.realized_pnl for e in self.entries), ZERO)

    def total_cash_delta(self) -> Decimal:
        """Sum of cash_delta over all entries."""
        return sum((e.cash_delta for e in self.entries), ZERO)

    def entries_of(self, entry_type: EntryType) -> List[LedgerEntry]:
        return [e for e in self.entries if e.type is entry_type]

    def entries_for(self, symbol: str) -> List[LedgerEntry]:
        return [e for e in self.entries if e.symbol == symbol]

    def realized_series(self, timestamps: Sequence[datetime]) -> List[Decimal]:
        """
        Cumulative realized P&L as of each timestamp (inclusive).

        Used to reconstruct a historical realized curve aligned with the
        price series. Entries are time-ordered, so each lookup is a
        binary search over the entry timestamps.
        """
        times = [e.timestamp for e in self.entries]
        running: List[Decimal] = []
        total = ZERO
        for e in self.entries:
            total += e.realized_pnl
            running.append(total)

        series: List[Decimal] = []
        for ts in timestamps:
            idx = bisect_right(times, ts)
            series.append(running[idx - 1] if idx > 0 else ZERO)
        return series

    # ========================================================================
    # EXPORT
    # ========================================================================

    def export_csv(self) -> str:
        """
        Export all entries as CSV.

        Columns: id,timestamp,type,symbol,qty,price,strike,cashDelta,realizedPnL
        Timestamps are ISO-8601; money columns have 2 decimals; qty is the
        payload's qty, falling back to its shares.
        """
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for e in self.entries:
            qty, price, strike = _csv_fields(e.details)
            writer.writerow([
                e.id,
                e.timestamp.isoformat(),
                e.type.value,
                e.symbol or "",
                qty,
                price,
                strike,
                _fmt2(e.cash_delta),
                _fmt2(e.realized_pnl),
            ])
        return buf.getvalue()
